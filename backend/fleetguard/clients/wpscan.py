"""
WPScan vulnerability database client.

Implements the ``VulnerabilityReference`` lookup used by the vulnerability
probe: component kind plus slug plus installed version in, advisories that
still apply to that version out.
"""

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Protocol, Tuple

import httpx

from fleetguard.clients.base import JsonApiClient
from fleetguard.core.probes.results import Severity
from fleetguard.core.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

WPSCAN_API_URL = "https://wpscan.com/api/v3"


@dataclass(frozen=True)
class Advisory:
    title: str
    severity: Severity
    fixed_in: Optional[str] = None


class VulnerabilityReference(Protocol):
    async def lookup(self, component_type: str, slug: str, version: str) -> List[Advisory]:
        ...


def version_tuple(version: Optional[str]) -> Tuple[int, ...]:
    parts = re.findall(r"\d+", version or "")
    return tuple(int(p) for p in parts)


def is_fixed(installed: str, fixed_in: Optional[str]) -> bool:
    """True when the installed version already contains the fix"""
    if not fixed_in:
        return False
    installed_parts = version_tuple(installed)
    if not installed_parts:
        return False
    return installed_parts >= version_tuple(fixed_in)


def _advisory_severity(item: Dict[str, Any]) -> Severity:
    cvss = item.get("cvss") or {}
    label = item.get("severity") or (cvss.get("severity") if isinstance(cvss, dict) else None)
    return Severity.parse(label, default=Severity.MEDIUM)


class WPScanClient(JsonApiClient):
    service_name = "wpscan"

    def __init__(
        self,
        api_token: str,
        timeout: float = 10.0,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            WPSCAN_API_URL,
            headers={"Authorization": f"Token token={api_token}"},
            timeout=timeout,
            rate_limiter=rate_limiter,
            transport=transport,
        )

    async def lookup(self, component_type: str, slug: str, version: str) -> List[Advisory]:
        if component_type == "core":
            key = version
            path = f"/wordpresses/{version.replace('.', '')}"
        elif component_type == "plugin":
            key = slug
            path = f"/plugins/{slug}"
        elif component_type == "theme":
            key = slug
            path = f"/themes/{slug}"
        else:
            raise ValueError(f"Unknown component type: {component_type}")

        data = await self._request_json("GET", path, allow_not_found=True)
        if not data:
            return []

        # Responses are keyed by slug (or version for core)
        entry = data.get(key) if isinstance(data, dict) and key in data else data
        vulnerabilities = (entry or {}).get("vulnerabilities") or []

        advisories = []
        for item in vulnerabilities:
            if component_type != "core" and is_fixed(version, item.get("fixed_in")):
                continue
            advisories.append(Advisory(
                title=item.get("title") or "Unnamed advisory",
                severity=_advisory_severity(item),
                fixed_in=item.get("fixed_in"),
            ))

        if advisories:
            logger.debug(f"[WPSCAN] {component_type} {slug} {version}: {len(advisories)} advisories")
        return advisories
