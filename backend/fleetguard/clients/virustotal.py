import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from fleetguard.clients.base import JsonApiClient
from fleetguard.core.resilience.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)

VIRUSTOTAL_API_URL = "https://www.virustotal.com/vtapi/v2"


@dataclass
class UrlReport:
    positives: int
    total: int
    permalink: Optional[str] = None
    scan_date: Optional[str] = None


class VirusTotalClient(JsonApiClient):
    """Multi-engine URL reputation lookup"""

    service_name = "virustotal"
    # The public API answers 204 when the per-minute quota is spent
    quota_status_codes = (204, 429)

    def __init__(
        self,
        api_key: str,
        timeout: float = 10.0,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(VIRUSTOTAL_API_URL, timeout=timeout, rate_limiter=rate_limiter, transport=transport)
        self.api_key = api_key

    async def url_report(self, url: str) -> Optional[UrlReport]:
        """
        Fetch the latest report for ``url``, queueing a scan when none exists.

        Returns None while VirusTotal has no finished report yet.
        """
        data = await self._request_json(
            "GET",
            "/url/report",
            params={"apikey": self.api_key, "resource": url, "scan": 1},
        )

        if not isinstance(data, dict) or data.get("response_code") != 1 or "positives" not in data:
            logger.debug(f"[VT] No finished report for {url} yet")
            return None

        return UrlReport(
            positives=int(data.get("positives") or 0),
            total=int(data.get("total") or 0),
            permalink=data.get("permalink"),
            scan_date=data.get("scan_date"),
        )
