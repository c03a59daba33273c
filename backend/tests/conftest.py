"""
Shared fixtures: an in-memory database and scriptable probes
"""

import asyncio
from typing import Optional

import pytest

from fleetguard.clients.registry import InMemoryWebsiteRegistry
from fleetguard.core.database.connection_manager import DatabaseConnectionManager
from fleetguard.core.probes.base_probe import BaseProbe
from fleetguard.core.probes.results import (
    RESULT_TYPES,
    BaseProbeResult,
    ProbeKind,
)
from fleetguard.core.repository.scan_repository import ScanRepository
from fleetguard.core.target import ScanTarget
from fleetguard.database import init_db


class StubProbe(BaseProbe):
    """Returns a canned result, optionally after a delay or with an error"""

    def __init__(
        self,
        kind: ProbeKind,
        result: Optional[BaseProbeResult] = None,
        delay: float = 0.0,
        error: Optional[Exception] = None,
        budget: float = 1.0,
    ):
        super().__init__(budget)
        self.kind = kind
        self.result_type = RESULT_TYPES[kind]
        self.result = result if result is not None else self.result_type()
        self.delay = delay
        self.error = error
        self.calls = 0

    async def probe(self, target: ScanTarget) -> BaseProbeResult:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.result


class EscapingProbe(StubProbe):
    """Breaks the run() contract and lets its error escape"""

    async def run(self, target: ScanTarget, budget: Optional[float] = None) -> BaseProbeResult:
        raise RuntimeError("probe crashed outside its boundary")


def clean_probes(budget: float = 1.0):
    return [StubProbe(kind, budget=budget) for kind in ProbeKind]


@pytest.fixture
def connection_manager():
    manager = DatabaseConnectionManager("sqlite://")
    init_db(manager)
    yield manager
    manager.close()


@pytest.fixture
def repository(connection_manager):
    return ScanRepository(connection_manager)


@pytest.fixture
def target():
    return ScanTarget(website_id=1, url="https://example.com", management_api_key="secret-key", name="Example")


@pytest.fixture
def registry(target):
    return InMemoryWebsiteRegistry({target.website_id: target})
