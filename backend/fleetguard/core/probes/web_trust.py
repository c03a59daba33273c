import asyncio
import logging
from typing import List, Optional, Sequence

from fleetguard.clients.reputation import ReputationService
from fleetguard.clients.tls import CertificateInfo, CertificateInspector
from fleetguard.core.probes.base_probe import BaseProbe
from fleetguard.core.probes.results import ProbeKind, ProbeStatus, TrustListing, TrustStatus, WebTrustResult
from fleetguard.core.target import ScanTarget

logger = logging.getLogger(__name__)

# Cipher suites considered weak
WEAK_CIPHERS = ("RC4", "DES", "3DES", "DES-CBC3", "RC2", "EXPORT", "NULL", "ANON", "MD5")
LEGACY_PROTOCOLS = ("SSLv2", "SSLv3", "TLSv1", "TLSv1.1")
EXPIRY_WARNING_DAYS = 14


def is_weak_cipher(name: Optional[str], bits: Optional[int]) -> bool:
    if bits is not None and bits < 128:
        return True
    upper = (name or "").upper()
    return any(marker in upper for marker in WEAK_CIPHERS)


def grade_certificate(info: CertificateInfo) -> str:
    """
    SSL grade rubric:

    F  no TLS handshake, expired or self-signed certificate
    D  certificate not trusted for this host (hostname mismatch, incomplete chain)
    C  trusted certificate served with a weak cipher
    B  trusted certificate on a legacy protocol, or expiring within two weeks
    A  trusted certificate, modern protocol, strong cipher
    """
    if not info.handshake_ok or info.expired or info.self_signed:
        return "F"
    if not info.verified:
        return "D"
    if is_weak_cipher(info.cipher_name, info.cipher_bits):
        return "C"
    if info.protocol in LEGACY_PROTOCOLS:
        return "B"
    if info.days_until_expiry is not None and info.days_until_expiry <= EXPIRY_WARNING_DAYS:
        return "B"
    return "A"


class WebTrustProbe(BaseProbe):
    """TLS certificate validation plus browser/AV reputation listings"""

    kind = ProbeKind.WEB_TRUST
    result_type = WebTrustResult

    def __init__(
        self,
        budget: float,
        inspector: Optional[CertificateInspector] = None,
        services: Sequence[ReputationService] = (),
        service_timeout: float = 5.0,
    ):
        super().__init__(budget)
        self.inspector = inspector or CertificateInspector(timeout=service_timeout)
        self.services = list(services)
        self.service_timeout = service_timeout

    async def probe(self, target: ScanTarget) -> WebTrustResult:
        trusted_by_task = asyncio.ensure_future(self._reputation(target))
        try:
            if target.is_https:
                info = await self.inspector.inspect(target.hostname)
            else:
                info = CertificateInfo(handshake_ok=False, error="site is not served over HTTPS")
        except BaseException:
            trusted_by_task.cancel()
            raise
        trusted_by = await trusted_by_task

        cert_expiry_days = info.days_until_expiry
        unknown = [listing for listing in trusted_by if listing.status == TrustStatus.UNKNOWN]

        return WebTrustResult(
            status=ProbeStatus.DEGRADED if unknown else ProbeStatus.OK,
            detail=info.error,
            ssl_enabled=info.handshake_ok,
            certificate_valid=info.handshake_ok and info.verified,
            ssl_grade=grade_certificate(info),
            cert_expiry_days=cert_expiry_days,
            trusted_by=trusted_by,
        )

    async def _reputation(self, target: ScanTarget) -> List[TrustListing]:
        async def check(service: ReputationService) -> TrustListing:
            try:
                listed = await asyncio.wait_for(service.check(target), timeout=self.service_timeout)
            except Exception as e:
                logger.info(f"[PROBE:web_trust] {service.name} unavailable: {type(e).__name__}: {e}")
                return TrustListing(service=service.name, status=TrustStatus.UNKNOWN)
            return TrustListing(
                service=service.name,
                status=TrustStatus.FLAGGED if listed else TrustStatus.TRUSTED,
            )

        return list(await asyncio.gather(*(check(service) for service in self.services)))
