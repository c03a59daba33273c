"""
TLS certificate inspection.

Blocking socket work runs in the default executor. A handshake that fails
certificate verification is retried without verification so the protocol and
cipher can still be reported.
"""

import asyncio
import socket
import ssl
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

from fleetguard.core.error_handling.exceptions import ExternalServiceException

logger = logging.getLogger(__name__)

# OpenSSL X509_V_ERR_* codes
VERIFY_CERT_EXPIRED = 10
VERIFY_SELF_SIGNED = (18, 19)
VERIFY_HOSTNAME_MISMATCH = 62


@dataclass
class CertificateInfo:
    handshake_ok: bool
    verified: bool = False
    error: Optional[str] = None
    expired: bool = False
    self_signed: bool = False
    hostname_mismatch: bool = False
    protocol: Optional[str] = None
    cipher_name: Optional[str] = None
    cipher_bits: Optional[int] = None
    not_after: Optional[datetime] = None
    days_until_expiry: Optional[int] = None


class CertificateInspector:
    def __init__(self, timeout: float = 5.0):
        self.timeout = timeout

    async def inspect(self, hostname: str, port: int = 443) -> CertificateInfo:
        """
        Handshake with ``hostname`` and describe its certificate.

        Raises ExternalServiceException when no TCP connection could be made,
        since nothing can be concluded about the certificate then.
        """
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, self._inspect_sync, hostname, port)

    def _inspect_sync(self, hostname: str, port: int) -> CertificateInfo:
        context = ssl.create_default_context()
        try:
            return self._handshake(context, hostname, port, verified=True)
        except ssl.SSLCertVerificationError as e:
            verify_code = e.verify_code
            verify_message = e.verify_message or str(e)
        except ssl.SSLError as e:
            logger.info(f"[TLS] Handshake with {hostname}:{port} failed: {e}")
            return CertificateInfo(handshake_ok=False, error=str(e))
        except OSError as e:
            raise ExternalServiceException("tls", f"cannot connect to {hostname}:{port}: {e}", cause=e)

        insecure = ssl.create_default_context()
        insecure.check_hostname = False
        insecure.verify_mode = ssl.CERT_NONE
        try:
            info = self._handshake(insecure, hostname, port, verified=False)
        except ssl.SSLError as e:
            info = CertificateInfo(handshake_ok=False)
            logger.info(f"[TLS] Unverified handshake with {hostname}:{port} failed: {e}")
        except OSError as e:
            raise ExternalServiceException("tls", f"cannot connect to {hostname}:{port}: {e}", cause=e)

        info.error = verify_message
        info.expired = verify_code == VERIFY_CERT_EXPIRED
        info.self_signed = verify_code in VERIFY_SELF_SIGNED
        info.hostname_mismatch = verify_code == VERIFY_HOSTNAME_MISMATCH
        return info

    def _handshake(self, context: ssl.SSLContext, hostname: str, port: int, verified: bool) -> CertificateInfo:
        with socket.create_connection((hostname, port), timeout=self.timeout) as sock:
            with context.wrap_socket(sock, server_hostname=hostname) as ssock:
                cipher = ssock.cipher()
                cert = ssock.getpeercert() if verified else {}

        info = CertificateInfo(
            handshake_ok=True,
            verified=verified,
            protocol=cipher[1] if cipher else None,
            cipher_name=cipher[0] if cipher else None,
            cipher_bits=cipher[2] if cipher else None,
        )

        not_after = (cert or {}).get("notAfter")
        if not_after:
            expires = datetime.fromtimestamp(ssl.cert_time_to_seconds(not_after), tz=timezone.utc)
            info.not_after = expires.replace(tzinfo=None)
            info.days_until_expiry = (expires - datetime.now(timezone.utc)).days
        return info
