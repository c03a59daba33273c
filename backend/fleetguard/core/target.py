from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urlparse

from fleetguard.core.error_handling.exceptions import InvalidTargetException


@dataclass(frozen=True)
class ScanTarget:
    """What gets scanned: a registered website and its management credential"""
    website_id: int
    url: str
    management_api_key: Optional[str] = field(default=None, repr=False)
    name: Optional[str] = None

    @property
    def base_url(self) -> str:
        url = self.url.strip()
        if "://" not in url:
            url = f"https://{url}"
        return url.rstrip("/")

    @property
    def hostname(self) -> str:
        return (urlparse(self.base_url).hostname or "").lower()

    @property
    def is_https(self) -> bool:
        return urlparse(self.base_url).scheme == "https"

    @property
    def has_management_credential(self) -> bool:
        return bool(self.management_api_key)

    def validate(self) -> None:
        """Basic target validation"""
        if not self.url or not self.url.strip():
            raise InvalidTargetException(self.url or "", "empty URL")

        parsed = urlparse(self.base_url)
        if parsed.scheme not in ("http", "https"):
            raise InvalidTargetException(self.url, f"unsupported scheme '{parsed.scheme}'")

        host = parsed.hostname or ""
        if len(host.split(".")) < 2 and host != "localhost":
            raise InvalidTargetException(self.url, "missing or incomplete hostname")
