"""
Reputation and blacklist services.

Each service answers one question for a target: is it listed? Failures raise;
callers decide what a failure means for their result.
"""

import ipaddress
import logging
from typing import Optional, Protocol

import dns.asyncresolver
import dns.exception
import dns.resolver
import httpx

from fleetguard.clients.base import JsonApiClient
from fleetguard.core.error_handling.exceptions import ExternalServiceException
from fleetguard.core.resilience.rate_limiter import RateLimiter
from fleetguard.core.target import ScanTarget

logger = logging.getLogger(__name__)

SAFE_BROWSING_API_URL = "https://safebrowsing.googleapis.com/v4"

# Free TLDs historically abused for phishing and spam
SUSPICIOUS_TLDS = (".tk", ".ml", ".ga", ".cf")


class ReputationService(Protocol):
    name: str

    async def check(self, target: ScanTarget) -> bool:
        """Return True when the target is listed"""
        ...


class SafeBrowsingClient(JsonApiClient):
    service_name = "Google Safe Browsing"

    def __init__(
        self,
        api_key: str,
        timeout: float = 5.0,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(SAFE_BROWSING_API_URL, timeout=timeout, rate_limiter=rate_limiter, transport=transport)
        self.api_key = api_key
        self.name = self.service_name

    async def check(self, target: ScanTarget) -> bool:
        payload = {
            "client": {"clientId": "fleetguard", "clientVersion": "1.0"},
            "threatInfo": {
                "threatTypes": [
                    "MALWARE",
                    "SOCIAL_ENGINEERING",
                    "UNWANTED_SOFTWARE",
                    "POTENTIALLY_HARMFUL_APPLICATION"
                ],
                "platformTypes": ["ANY_PLATFORM"],
                "threatEntryTypes": ["URL"],
                "threatEntries": [{"url": target.base_url}]
            }
        }
        data = await self._request_json(
            "POST", "/threatMatches:find", params={"key": self.api_key}, json=payload
        )
        return bool(isinstance(data, dict) and data.get("matches"))


class DnsBlacklistService:
    """Domain blacklist (DNSBL) lookup: an A record under the zone means listed"""

    def __init__(self, zone: str, timeout: float = 5.0, resolver: Optional[dns.asyncresolver.Resolver] = None):
        self.zone = zone
        self.name = zone
        self.resolver = resolver or dns.asyncresolver.Resolver()
        self.resolver.lifetime = timeout

    async def check(self, target: ScanTarget) -> bool:
        host = target.hostname
        if host.startswith("www."):
            host = host[4:]
        query = f"{host}.{self.zone}"

        try:
            answer = await self.resolver.resolve(query, "A")
        except (dns.resolver.NXDOMAIN, dns.resolver.NoAnswer):
            return False
        except dns.exception.DNSException as e:
            raise ExternalServiceException(self.name, f"DNS lookup failed: {e}", cause=e)

        addresses = [rdata.to_text() for rdata in answer]
        # 127.255.255.x answers are zone error codes (query refused, quota), not listings
        if any(address.startswith("127.255.255.") for address in addresses):
            raise ExternalServiceException(self.name, f"lookup refused ({', '.join(addresses)})")
        return any(address.startswith("127.") for address in addresses)


class DomainHeuristicService:
    """Local check for hostnames that reputation services routinely flag"""

    name = "Domain Analysis"

    async def check(self, target: ScanTarget) -> bool:
        host = target.hostname
        if host.endswith(SUSPICIOUS_TLDS):
            return True
        try:
            ipaddress.ip_address(host)
            return True
        except ValueError:
            return False
