"""
Append-only persistence for security scan records.

A record moves pending -> running -> completed, or to failed from either
non-terminal state. Once terminal it is never written again.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

from sqlalchemy import select
from sqlalchemy.orm import Session

from fleetguard.core.aggregator.score_aggregator import ScoreOutcome
from fleetguard.core.database.connection_manager import DatabaseConnectionManager
from fleetguard.core.error_handling.exceptions import DatabaseException, ScanRecordImmutableException
from fleetguard.core.probes.results import ProbeKind, ProbeResultSet, utcnow
from fleetguard.models.scan import ScanStatus, ScanTrigger, SecurityScan

logger = logging.getLogger(__name__)

STALE_SCAN_MESSAGE = "Scan timeout - exceeded maximum duration"

ALLOWED_TRANSITIONS: Dict[ScanStatus, Set[ScanStatus]] = {
    ScanStatus.PENDING: {ScanStatus.RUNNING, ScanStatus.FAILED},
    ScanStatus.RUNNING: {ScanStatus.COMPLETED, ScanStatus.FAILED},
    ScanStatus.COMPLETED: set(),
    ScanStatus.FAILED: set(),
}

RESULT_COLUMNS = {
    ProbeKind.MALWARE: "malware_result",
    ProbeKind.BLACKLIST: "blacklist_result",
    ProbeKind.VULNERABILITY: "vulnerability_result",
    ProbeKind.SECURITY_HEADERS: "security_headers_result",
    ProbeKind.WEB_TRUST: "web_trust_result",
    ProbeKind.HARDENING: "hardening_result",
}


def probe_results_of(scan: SecurityScan) -> ProbeResultSet:
    """Rebuild the typed result set from a stored record"""
    return ProbeResultSet.model_validate({
        kind.value: getattr(scan, column) for kind, column in RESULT_COLUMNS.items()
    })


class ScanRepository:
    def __init__(self, connection_manager: DatabaseConnectionManager):
        self.connection_manager = connection_manager

    # Write path

    def create_pending(self, website_id: int, trigger: ScanTrigger = ScanTrigger.MANUAL) -> SecurityScan:
        with self.connection_manager.get_session() as session:
            scan = SecurityScan(
                website_id=website_id,
                scan_status=ScanStatus.PENDING.value,
                scan_trigger=ScanTrigger(trigger).value,
                scan_started_at=utcnow(),
                threats_detected=0,
            )
            session.add(scan)
            session.flush()
            logger.info(f"[REPO] Created pending scan {scan.id} for website {website_id}")
            return scan

    def mark_running(self, scan_id: int) -> SecurityScan:
        with self.connection_manager.get_session() as session:
            scan = self._transition(session, scan_id, ScanStatus.RUNNING)
            return scan

    def mark_completed(self, scan_id: int, results: ProbeResultSet, outcome: ScoreOutcome) -> SecurityScan:
        with self.connection_manager.get_session() as session:
            scan = self._transition(session, scan_id, ScanStatus.COMPLETED)
            completed_at = utcnow()

            for kind, column in RESULT_COLUMNS.items():
                result = getattr(results, kind.value)
                setattr(scan, column, result.model_dump(mode="json") if result is not None else None)

            scan.scan_completed_at = completed_at
            scan.scan_duration_ms = self._duration_ms(scan.scan_started_at, completed_at)
            scan.overall_security_score = outcome.score
            scan.threat_level = outcome.threat_level.value
            scan.threats_detected = (
                results.malware.threats_detected
                if results.malware is not None and results.malware.is_available else 0
            )
            scan.score_deductions = [
                {"probe": d.probe, "reason": d.reason, "points": d.points}
                for d in outcome.deductions
            ]
            logger.info(
                f"[REPO] Scan {scan_id} completed: score={outcome.score} "
                f"threat_level={outcome.threat_level.value}"
            )
            return scan

    def mark_failed(self, scan_id: int, error_message: str) -> SecurityScan:
        with self.connection_manager.get_session() as session:
            scan = self._transition(session, scan_id, ScanStatus.FAILED)
            completed_at = utcnow()
            scan.scan_completed_at = completed_at
            scan.scan_duration_ms = self._duration_ms(scan.scan_started_at, completed_at)
            scan.error_message = error_message
            logger.warning(f"[REPO] Scan {scan_id} failed: {error_message}")
            return scan

    def fail_stale_scans(self, older_than: timedelta) -> int:
        """Fail records a crashed process left pending or running"""
        cutoff = utcnow() - older_than
        with self.connection_manager.get_session() as session:
            stale = session.scalars(
                select(SecurityScan).where(
                    SecurityScan.scan_status.in_([ScanStatus.PENDING.value, ScanStatus.RUNNING.value]),
                    SecurityScan.scan_started_at < cutoff,
                )
            ).all()

            now = utcnow()
            for scan in stale:
                scan.scan_status = ScanStatus.FAILED.value
                scan.scan_completed_at = now
                scan.scan_duration_ms = self._duration_ms(scan.scan_started_at, now)
                scan.error_message = STALE_SCAN_MESSAGE

            if stale:
                logger.warning(f"[REPO] Marked {len(stale)} stale scan(s) as failed")
            return len(stale)

    # Read path

    def get(self, website_id: int, scan_id: int) -> Optional[SecurityScan]:
        with self.connection_manager.get_session() as session:
            scan = session.get(SecurityScan, scan_id)
            if scan is None or scan.website_id != website_id:
                return None
            return scan

    def latest_completed(self, website_id: int) -> Optional[SecurityScan]:
        with self.connection_manager.get_session() as session:
            return session.scalars(
                select(SecurityScan)
                .where(
                    SecurityScan.website_id == website_id,
                    SecurityScan.scan_status == ScanStatus.COMPLETED.value,
                )
                .order_by(SecurityScan.scan_started_at.desc(), SecurityScan.id.desc())
                .limit(1)
            ).first()

    def history(self, website_id: int, page: int = 1, page_size: int = 20) -> List[SecurityScan]:
        if page < 1 or page_size < 1:
            raise ValueError("page and page_size must be positive")

        with self.connection_manager.get_session() as session:
            return list(session.scalars(
                select(SecurityScan)
                .where(SecurityScan.website_id == website_id)
                .order_by(SecurityScan.scan_started_at.desc(), SecurityScan.id.desc())
                .offset((page - 1) * page_size)
                .limit(page_size)
            ).all())

    # Internals

    @staticmethod
    def _transition(session: Session, scan_id: int, new_status: ScanStatus) -> SecurityScan:
        scan = session.get(SecurityScan, scan_id, with_for_update=True)
        if scan is None:
            raise DatabaseException(f"Scan {scan_id} does not exist")

        current = ScanStatus(scan.scan_status)
        if current.is_terminal:
            raise ScanRecordImmutableException(scan_id, current.value)
        if new_status not in ALLOWED_TRANSITIONS[current]:
            raise DatabaseException(f"Scan {scan_id} cannot move from {current.value} to {new_status.value}")

        scan.scan_status = new_status.value
        return scan

    @staticmethod
    def _duration_ms(started_at: Optional[datetime], finished_at: datetime) -> Optional[int]:
        if started_at is None:
            return None
        return max(0, int((finished_at - started_at).total_seconds() * 1000))
