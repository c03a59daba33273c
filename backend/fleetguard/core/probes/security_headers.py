import logging
from typing import Dict, Optional, Tuple

from fleetguard.clients.site import SiteFetcher
from fleetguard.core.probes.base_probe import BaseProbe
from fleetguard.core.probes.results import ProbeKind, SecurityHeadersResult
from fleetguard.core.target import ScanTarget

logger = logging.getLogger(__name__)

# Canonical header name -> response header names that satisfy it
RECOGNIZED_HEADERS: Dict[str, Tuple[str, ...]] = {
    "Strict-Transport-Security": ("strict-transport-security",),
    "Content-Security-Policy": ("content-security-policy", "content-security-policy-report-only"),
    "X-Content-Type-Options": ("x-content-type-options",),
    "X-Frame-Options": ("x-frame-options",),
    "X-XSS-Protection": ("x-xss-protection",),
    "Referrer-Policy": ("referrer-policy",),
    "Permissions-Policy": ("permissions-policy", "feature-policy"),
}


def evaluate_headers(response_headers: Dict[str, str]) -> SecurityHeadersResult:
    """Score a set of response headers against the recognized set"""
    present_names = {name.lower() for name in response_headers}
    headers = {
        canonical: any(alias in present_names for alias in aliases)
        for canonical, aliases in RECOGNIZED_HEADERS.items()
    }
    present = sum(1 for is_present in headers.values() if is_present)
    return SecurityHeadersResult(
        headers=headers,
        header_score=round(present / len(RECOGNIZED_HEADERS) * 100),
    )


class SecurityHeadersProbe(BaseProbe):
    """One request to the site root, headers checked against a fixed set"""

    kind = ProbeKind.SECURITY_HEADERS
    result_type = SecurityHeadersResult

    def __init__(self, budget: float, fetcher: Optional[SiteFetcher] = None):
        super().__init__(budget)
        self.fetcher = fetcher or SiteFetcher(timeout=budget)

    async def probe(self, target: ScanTarget) -> SecurityHeadersResult:
        response = await self.fetcher.fetch(target.base_url, read_body=False)
        result = evaluate_headers(response.headers)
        logger.debug(f"[PROBE:security_headers] {target.base_url} scored {result.header_score}/100")
        return result
