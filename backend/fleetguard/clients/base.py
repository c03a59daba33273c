"""
Shared plumbing for authenticated JSON API clients
"""

import logging
from typing import Any, Dict, Optional

import httpx

from fleetguard.config import settings
from fleetguard.core.error_handling.exceptions import (
    CredentialRejectedException,
    ExternalServiceException,
    MalformedResponseException,
    ServiceQuotaExceededException,
)
from fleetguard.core.resilience.rate_limiter import RateLimitConfig, RateLimiter

logger = logging.getLogger(__name__)


def default_rate_limiter(name: str) -> RateLimiter:
    return RateLimiter(
        name,
        RateLimitConfig(
            max_requests=settings.external_max_requests,
            time_window_seconds=settings.external_time_window_seconds,
            burst_capacity=settings.external_burst_capacity,
        ),
    )


class JsonApiClient:
    """
    Thin httpx wrapper that turns transport problems into typed exceptions.

    Subclasses set ``service_name`` and call ``_request_json``. Every call goes
    through the client's own rate limiter first.
    """

    service_name = "external"
    quota_status_codes = (429,)

    def __init__(
        self,
        base_url: str,
        headers: Optional[Dict[str, str]] = None,
        timeout: float = 10.0,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.headers = headers or {}
        self.timeout = timeout
        self.rate_limiter = rate_limiter or default_rate_limiter(self.service_name)
        self.transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            headers=self.headers,
            timeout=self.timeout,
            transport=self.transport,
        )

    async def _request_json(
        self,
        method: str,
        path: str,
        allow_not_found: bool = False,
        **kwargs
    ) -> Any:
        await self.rate_limiter.acquire()

        try:
            async with self._client() as client:
                response = await client.request(method, path, **kwargs)
        except httpx.TimeoutException as e:
            raise ExternalServiceException(self.service_name, f"request timed out: {path}", cause=e)
        except httpx.HTTPError as e:
            raise ExternalServiceException(self.service_name, f"request failed: {e}", cause=e)

        if response.status_code in (401, 403):
            raise CredentialRejectedException(self.service_name, response.status_code)

        if response.status_code in self.quota_status_codes:
            retry_after = _parse_retry_after(response.headers.get("Retry-After"))
            self.rate_limiter.record_failure(retry_after)
            raise ServiceQuotaExceededException(self.service_name, retry_after=retry_after)

        if response.status_code == 404 and allow_not_found:
            return None

        if response.status_code >= 400:
            raise ExternalServiceException(
                self.service_name, f"HTTP {response.status_code} from {path}"
            )

        self.rate_limiter.record_success()

        try:
            return response.json()
        except ValueError as e:
            raise MalformedResponseException(self.service_name, f"non-JSON body from {path}", cause=e)


def _parse_retry_after(value: Optional[str]) -> Optional[int]:
    if not value:
        return None
    try:
        return max(0, int(float(value)))
    except ValueError:
        return None
