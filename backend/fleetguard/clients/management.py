"""
Client for the management plugin installed on each WordPress site.

The plugin answers under ``<site>/wp-json/wrms/v1``. Older plugin builds read
the legacy ``X-WRM-API-Key`` header, so both headers are always sent.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import httpx

from fleetguard.clients.base import JsonApiClient
from fleetguard.core.error_handling.exceptions import MalformedResponseException
from fleetguard.core.resilience.rate_limiter import RateLimiter
from fleetguard.core.target import ScanTarget

logger = logging.getLogger(__name__)

API_PREFIX = "/wp-json/wrms/v1"


@dataclass
class SoftwareUpdate:
    component_type: str  # core | plugin | theme
    name: str
    current_version: str
    new_version: Optional[str] = None
    slug: Optional[str] = None


@dataclass
class InstalledComponent:
    component_type: str  # plugin | theme
    name: str
    slug: str
    version: str
    active: bool = False


@dataclass
class InstalledSoftware:
    wordpress_version: Optional[str] = None
    plugins: List[InstalledComponent] = field(default_factory=list)
    themes: List[InstalledComponent] = field(default_factory=list)


@dataclass
class FileEntry:
    path: str
    permissions: Optional[str] = None
    world_writable: bool = False

    @property
    def mode(self) -> Optional[int]:
        if not self.permissions:
            return None
        try:
            return int(str(self.permissions)[-3:], 8)
        except ValueError:
            return None


@dataclass
class SiteUser:
    username: str
    roles: List[str] = field(default_factory=list)

    @property
    def is_administrator(self) -> bool:
        return "administrator" in self.roles


def slugify(name: str) -> str:
    slug = "".join(ch if ch.isalnum() or ch == "-" else "-" for ch in name.lower())
    return slug.strip("-")


def _unwrap(data: Any, key: str) -> Any:
    """Accept both ``{success, <key>: ...}`` and the flat legacy shape"""
    if isinstance(data, dict) and data.get("success") and key in data:
        return data[key]
    return data


class ManagementClient(JsonApiClient):
    service_name = "management"

    def __init__(
        self,
        site_url: str,
        api_key: str,
        timeout: float = 10.0,
        rate_limiter: Optional[RateLimiter] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(
            base_url=f"{site_url.rstrip('/')}{API_PREFIX}",
            headers={
                "X-WRMS-API-Key": api_key,
                "X-WRM-API-Key": api_key,
                "Accept": "application/json",
            },
            timeout=timeout,
            rate_limiter=rate_limiter,
            transport=transport,
        )

    @classmethod
    def for_target(cls, target: ScanTarget, **kwargs) -> "ManagementClient":
        return cls(target.base_url, target.management_api_key or "", **kwargs)

    async def get_updates(self) -> List[SoftwareUpdate]:
        data = _unwrap(await self._request_json("GET", "/updates"), "updates")
        if not isinstance(data, dict):
            raise MalformedResponseException(self.service_name, "updates payload is not an object")

        updates: List[SoftwareUpdate] = []

        core = data.get("wordpress") or {}
        if core.get("update_available"):
            updates.append(SoftwareUpdate(
                component_type="core",
                name="WordPress",
                current_version=str(core.get("current_version") or "unknown"),
                new_version=core.get("new_version"),
                slug="wordpress",
            ))

        for component_type, key in (("plugin", "plugins"), ("theme", "themes")):
            for item in data.get(key) or []:
                name = item.get("name") or item.get(component_type) or "unknown"
                updates.append(SoftwareUpdate(
                    component_type=component_type,
                    name=name,
                    current_version=str(item.get("current_version") or "unknown"),
                    new_version=item.get("new_version"),
                    slug=item.get("slug") or slugify(name),
                ))

        return updates

    async def get_installed_software(self) -> InstalledSoftware:
        status = _unwrap(await self._request_json("GET", "/status"), "site_info")
        plugins = _unwrap(await self._request_json("GET", "/plugins"), "plugins")
        themes = _unwrap(await self._request_json("GET", "/themes"), "themes")

        if not isinstance(status, dict) or not isinstance(plugins, list) or not isinstance(themes, list):
            raise MalformedResponseException(self.service_name, "unexpected installed software payload")

        return InstalledSoftware(
            wordpress_version=status.get("wordpress_version"),
            plugins=[self._component("plugin", item) for item in plugins],
            themes=[self._component("theme", item) for item in themes],
        )

    async def get_file_listing(self) -> List[FileEntry]:
        data = _unwrap(await self._request_json("GET", "/files"), "files")
        if not isinstance(data, list):
            raise MalformedResponseException(self.service_name, "file listing is not a list")

        entries = []
        for item in data:
            if isinstance(item, str):
                entries.append(FileEntry(path=item))
            elif isinstance(item, dict) and item.get("path"):
                entries.append(FileEntry(
                    path=item["path"],
                    permissions=item.get("permissions"),
                    world_writable=bool(item.get("world_writable", False)),
                ))
        return entries

    async def get_security_settings(self) -> Dict[str, Any]:
        data = _unwrap(await self._request_json("GET", "/security"), "settings")
        if not isinstance(data, dict):
            raise MalformedResponseException(self.service_name, "security settings payload is not an object")
        return data

    async def get_users(self) -> List[SiteUser]:
        data = _unwrap(await self._request_json("GET", "/users"), "users")
        if not isinstance(data, list):
            raise MalformedResponseException(self.service_name, "users payload is not a list")

        users = []
        for item in data:
            if not isinstance(item, dict):
                continue
            username = item.get("username") or item.get("user_login") or ""
            roles = item.get("roles") or ([item["role"]] if item.get("role") else [])
            users.append(SiteUser(username=username, roles=[str(r).lower() for r in roles]))
        return users

    @staticmethod
    def _component(component_type: str, item: Dict[str, Any]) -> InstalledComponent:
        name = item.get("name") or item.get("slug") or "unknown"
        slug = item.get("slug") or item.get("stylesheet") or slugify(name)
        if "/" in slug:
            slug = slug.split("/", 1)[0]
        return InstalledComponent(
            component_type=component_type,
            name=name,
            slug=slug,
            version=str(item.get("version") or "unknown"),
            active=bool(item.get("active", False)),
        )
