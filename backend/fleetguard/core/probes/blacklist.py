import asyncio
import logging
from typing import List, Sequence

from fleetguard.clients.reputation import ReputationService
from fleetguard.core.probes.base_probe import BaseProbe
from fleetguard.core.probes.results import BlacklistResult, BlacklistStatus, ProbeKind, ProbeStatus
from fleetguard.core.target import ScanTarget

logger = logging.getLogger(__name__)


class BlacklistProbe(BaseProbe):
    """
    Queries every reputation service concurrently.

    A service that errors or misses its own deadline is left out of
    ``services_checked``; it is never counted as a listing.
    """

    kind = ProbeKind.BLACKLIST
    result_type = BlacklistResult

    def __init__(self, budget: float, services: Sequence[ReputationService], service_timeout: float = 5.0):
        super().__init__(budget)
        self.services = list(services)
        self.service_timeout = service_timeout

    async def probe(self, target: ScanTarget) -> BlacklistResult:
        if not self.services:
            return self.unavailable("no blacklist services configured")

        outcomes = await asyncio.gather(
            *(self._check(service, target) for service in self.services),
            return_exceptions=True
        )

        services_checked: List[str] = []
        flagged_by: List[str] = []
        for service, outcome in zip(self.services, outcomes):
            if isinstance(outcome, BaseException):
                logger.info(f"[PROBE:blacklist] {service.name} skipped: {type(outcome).__name__}: {outcome}")
                continue
            services_checked.append(service.name)
            if outcome:
                flagged_by.append(service.name)

        if not services_checked:
            return self.unavailable("no blacklist service answered")

        return BlacklistResult(
            status=ProbeStatus.OK if len(services_checked) == len(self.services) else ProbeStatus.DEGRADED,
            blacklist_status=BlacklistStatus.FLAGGED if flagged_by else BlacklistStatus.CLEAN,
            services_checked=services_checked,
            flagged_by=flagged_by,
        )

    async def _check(self, service: ReputationService, target: ScanTarget) -> bool:
        return await asyncio.wait_for(service.check(target), timeout=self.service_timeout)
