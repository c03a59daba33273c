"""
Vulnerability probe.

Every pending update reported by the site is an outdated component. Installed
components are additionally looked up in the vulnerability reference; any
component with applicable advisories counts once, at its highest advisory
severity.
"""

import asyncio
import logging
from typing import Callable, Dict, List, Optional, Tuple

from fleetguard.clients.base import default_rate_limiter
from fleetguard.clients.management import InstalledSoftware, ManagementClient, SoftwareUpdate
from fleetguard.clients.wpscan import Advisory, VulnerabilityReference
from fleetguard.core.probes.base_probe import BaseProbe
from fleetguard.core.probes.results import (
    OutdatedSoftware,
    ProbeKind,
    ProbeStatus,
    Severity,
    VulnerabilityResult,
)
from fleetguard.core.resilience.rate_limiter import RateLimiter
from fleetguard.core.target import ScanTarget

logger = logging.getLogger(__name__)

# Severity of a pending update when the reference has nothing to say
UPDATE_SEVERITY = {
    "core": Severity.HIGH,
    "plugin": Severity.MEDIUM,
    "theme": Severity.LOW,
}

ComponentKey = Tuple[str, str]


def highest_severity(advisories: List[Advisory]) -> Optional[Severity]:
    if not advisories:
        return None
    return max((a.severity for a in advisories), key=lambda s: s.rank)


class VulnerabilityProbe(BaseProbe):
    kind = ProbeKind.VULNERABILITY
    result_type = VulnerabilityResult

    def __init__(
        self,
        budget: float,
        reference: Optional[VulnerabilityReference] = None,
        management_factory: Callable[..., ManagementClient] = ManagementClient.for_target,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        super().__init__(budget)
        self.reference = reference
        self.management_factory = management_factory
        self.rate_limiter = rate_limiter or default_rate_limiter(f"management:{self.kind.value}")

    async def probe(self, target: ScanTarget) -> VulnerabilityResult:
        if not target.has_management_credential:
            return self.unavailable("no management credential registered")

        client = self.management_factory(target, rate_limiter=self.rate_limiter)
        updates, installed = await asyncio.gather(
            client.get_updates(),
            client.get_installed_software(),
        )

        components: Dict[ComponentKey, OutdatedSoftware] = {}
        for update in updates:
            components[self._key(update.component_type, update.slug or update.name)] = self._from_update(update)

        lookup_failures = 0
        if self.reference is not None:
            advisories, lookup_failures = await self._lookup_advisories(installed)
            for (component_type, slug), (name, version, found) in advisories.items():
                key = self._key(component_type, slug)
                existing = components.get(key)
                severity = highest_severity(found)
                components[key] = OutdatedSoftware(
                    name=existing.name if existing else name,
                    component_type=component_type,
                    current_version=existing.current_version if existing else version,
                    latest_version=existing.latest_version if existing else None,
                    severity=severity,
                    advisories=[a.title for a in found],
                )

        outdated = sorted(
            components.values(),
            key=lambda c: (-c.severity.rank, c.component_type, c.name.lower()),
        )
        counts = {"core": 0, "plugin": 0, "theme": 0}
        for component in outdated:
            counts[component.component_type] += 1

        return VulnerabilityResult(
            status=ProbeStatus.DEGRADED if lookup_failures else ProbeStatus.OK,
            detail=f"{lookup_failures} reference lookup(s) failed" if lookup_failures else None,
            core_vulnerabilities=counts["core"],
            plugin_vulnerabilities=counts["plugin"],
            theme_vulnerabilities=counts["theme"],
            outdated_software=outdated,
            wordpress_version=installed.wordpress_version,
        )

    async def _lookup_advisories(
        self, installed: InstalledSoftware
    ) -> Tuple[Dict[ComponentKey, Tuple[str, str, List[Advisory]]], int]:
        queries: List[Tuple[str, str, str, str]] = []
        if installed.wordpress_version:
            queries.append(("core", "wordpress", "WordPress", installed.wordpress_version))
        for component in installed.plugins + installed.themes:
            queries.append((component.component_type, component.slug, component.name, component.version))

        outcomes = await asyncio.gather(
            *(self.reference.lookup(kind, slug, version) for kind, slug, _, version in queries),
            return_exceptions=True
        )

        found: Dict[ComponentKey, Tuple[str, str, List[Advisory]]] = {}
        failures = 0
        for (kind, slug, name, version), outcome in zip(queries, outcomes):
            if isinstance(outcome, BaseException):
                failures += 1
                logger.info(f"[PROBE:vulnerability] Lookup for {kind} {slug} failed: {outcome}")
                continue
            if outcome:
                found[(kind, slug)] = (name, version, outcome)
        return found, failures

    @staticmethod
    def _key(component_type: str, slug: str) -> ComponentKey:
        return (component_type, (slug or "").lower())

    @staticmethod
    def _from_update(update: SoftwareUpdate) -> OutdatedSoftware:
        return OutdatedSoftware(
            name=update.name,
            component_type=update.component_type,
            current_version=update.current_version,
            latest_version=update.new_version,
            severity=UPDATE_SEVERITY.get(update.component_type, Severity.MEDIUM),
        )
