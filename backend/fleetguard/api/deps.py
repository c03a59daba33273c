from fastapi import Request

from fleetguard.core.repository.scan_repository import ScanRepository
from fleetguard.core.scanner.coordinator import ScanCoordinator


def get_coordinator(request: Request) -> ScanCoordinator:
    """Coordinator built at startup"""
    return request.app.state.coordinator


def get_repository(request: Request) -> ScanRepository:
    return request.app.state.coordinator.repository
