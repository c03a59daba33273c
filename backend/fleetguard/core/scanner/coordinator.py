"""
Scan Coordinator - runs every probe for one website and records the outcome
"""

import asyncio
import time
import logging
from typing import Dict, List, Optional, Sequence

from fleetguard.clients.registry import WebsiteRegistry
from fleetguard.core.aggregator.score_aggregator import ScoreAggregator
from fleetguard.core.error_handling.exceptions import (
    DatabaseException,
    InvalidTargetException,
    ScanAlreadyRunningException,
)
from fleetguard.core.logging.structured_logger import scan_context
from fleetguard.core.probes.base_probe import BaseProbe
from fleetguard.core.probes.results import BaseProbeResult, ProbeResultSet
from fleetguard.core.repository.scan_repository import ScanRepository
from fleetguard.core.scanner.locks import WebsiteLockRegistry
from fleetguard.core.target import ScanTarget
from fleetguard.models.scan import ScanTrigger, SecurityScan

logger = logging.getLogger(__name__)

CANCEL_GRACE_SECONDS = 1.0


class ScanCoordinator:
    """
    Coordinates one composite scan per website at a time.

    Probes run concurrently, each under its own budget. The whole fan-out is
    bounded by the largest budget plus a fixed overhead; probes still running
    at that point are cancelled and their slots stay empty. A scan only fails
    when it cannot start; probe failures become unavailable results.
    """

    def __init__(
        self,
        registry: WebsiteRegistry,
        repository: ScanRepository,
        probes: Sequence[BaseProbe],
        aggregator: Optional[ScoreAggregator] = None,
        locks: Optional[WebsiteLockRegistry] = None,
        deadline_overhead: float = 2.0,
        retry_interval: int = 30,
    ):
        kinds = [probe.kind for probe in probes]
        if len(set(kinds)) != len(kinds):
            raise ValueError("Each probe kind may only be registered once")

        self.registry = registry
        self.repository = repository
        self.probes = list(probes)
        self.aggregator = aggregator or ScoreAggregator()
        self.locks = locks or WebsiteLockRegistry()
        self.deadline_overhead = deadline_overhead
        self.retry_interval = retry_interval

    @property
    def scan_deadline(self) -> float:
        longest = max((probe.budget for probe in self.probes), default=0.0)
        return longest + self.deadline_overhead

    async def start_scan(self, website_id: int, trigger: ScanTrigger = ScanTrigger.MANUAL) -> SecurityScan:
        """
        Run a full scan for ``website_id`` and return the terminal record.

        Raises TargetNotFoundException for unknown websites and
        ScanAlreadyRunningException when a scan for the website is in flight;
        neither creates a record.
        """
        target = self.registry.get_target(website_id)

        if not self.locks.try_acquire(website_id):
            logger.info(f"[SCAN] Rejected scan for website {website_id}: already running")
            raise ScanAlreadyRunningException(website_id, retry_after=self.retry_interval)

        try:
            scan = self.repository.create_pending(website_id, trigger)
            with scan_context(scan.id, website_id):
                return await self._run(scan, target)
        finally:
            self.locks.release(website_id)
            logger.debug(f"[SCAN] Released lock for website {website_id}")

    async def _run(self, scan: SecurityScan, target: ScanTarget) -> SecurityScan:
        try:
            target.validate()
        except InvalidTargetException as e:
            return self.repository.mark_failed(scan.id, e.message)

        self.repository.mark_running(scan.id)
        logger.info(f"[SCAN] Scan {scan.id} running {len(self.probes)} probes against {target.base_url}")

        start_time = time.monotonic()
        results = await self.collect_results(target)
        outcome = self.aggregator.aggregate(results)

        logger.info(
            f"[SCAN] Scan {scan.id} scored {outcome.score} ({outcome.threat_level.value}) "
            f"from {len(results.returned())}/{len(self.probes)} probes in {time.monotonic() - start_time:.2f}s"
        )

        try:
            return self.repository.mark_completed(scan.id, results, outcome)
        except DatabaseException:
            logger.error(f"[SCAN] Could not persist results of scan {scan.id}", exc_info=True)
            self._try_mark_failed(scan.id, "Failed to persist scan results")
            raise

    async def collect_results(self, target: ScanTarget) -> ProbeResultSet:
        """Fan out to every probe; whatever returned before the deadline is kept"""
        if not self.probes:
            return ProbeResultSet()

        tasks: Dict[asyncio.Task, BaseProbe] = {
            asyncio.create_task(probe.run(target), name=f"probe-{probe.kind.value}"): probe
            for probe in self.probes
        }

        done, pending = await asyncio.wait(tasks.keys(), timeout=self.scan_deadline)

        for task in pending:
            logger.warning(f"[SCAN] Probe {tasks[task].kind.value} missed the scan deadline; abandoning it")
            task.cancel()
        if pending:
            # Late results are never read; this only gives cancellation a moment to unwind
            await asyncio.wait(pending, timeout=CANCEL_GRACE_SECONDS)

        returned: List[BaseProbeResult] = []
        for task in done:
            probe = tasks[task]
            if task.cancelled():
                continue
            error = task.exception()
            if error is not None:
                logger.error(f"[SCAN] Probe {probe.kind.value} escaped its boundary: {error!r}")
                returned.append(probe.unavailable(f"{type(error).__name__}: {error}"))
                continue
            returned.append(task.result())

        return ProbeResultSet.from_results(returned)

    def _try_mark_failed(self, scan_id: int, message: str) -> None:
        try:
            self.repository.mark_failed(scan_id, message)
        except DatabaseException:
            logger.error(f"[SCAN] Could not mark scan {scan_id} as failed", exc_info=True)

