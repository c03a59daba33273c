"""
Direct requests to the scanned site
"""

import logging
from dataclasses import dataclass, field
from typing import Dict

import aiohttp

from fleetguard.core.error_handling.exceptions import ExternalServiceException

logger = logging.getLogger(__name__)

USER_AGENT = "FleetGuard-Security-Scanner/1.0"
MAX_BODY_BYTES = 2 * 1024 * 1024


@dataclass
class SiteResponse:
    url: str
    status: int
    headers: Dict[str, str] = field(default_factory=dict)
    body: str = ""

    def header(self, name: str) -> str:
        return self.headers.get(name.lower(), "")


def _decode(raw: bytes, charset) -> str:
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


class SiteFetcher:
    """Fetches a page from the target site; headers are normalized to lower case"""

    def __init__(self, timeout: float = 10.0, verify_ssl: bool = False):
        self.timeout = timeout
        self.verify_ssl = verify_ssl

    async def fetch(self, url: str, read_body: bool = True) -> SiteResponse:
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout, headers={"User-Agent": USER_AGENT}) as session:
                async with session.get(url, ssl=self.verify_ssl, allow_redirects=True) as response:
                    body = ""
                    if read_body:
                        raw = await response.content.read(MAX_BODY_BYTES)
                        body = _decode(raw, response.charset)
                    return SiteResponse(
                        url=str(response.url),
                        status=response.status,
                        headers={k.lower(): v for k, v in response.headers.items()},
                        body=body,
                    )
        except aiohttp.ClientError as e:
            raise ExternalServiceException("site", f"request to {url} failed: {e}", cause=e)
