"""
WordPress hardening probe.

All checks go through the management credential. Each of the four management
calls feeds separate checks, so a failed call leaves only its own checks at
their secure default and marks the result degraded.
"""

import asyncio
import logging
from typing import Any, Callable, Dict, List, Optional

from fleetguard.clients.base import default_rate_limiter
from fleetguard.clients.management import FileEntry, InstalledSoftware, ManagementClient, SiteUser
from fleetguard.core.probes.base_probe import BaseProbe
from fleetguard.core.probes.results import HardeningResult, ProbeKind, ProbeStatus
from fleetguard.core.resilience.rate_limiter import RateLimiter
from fleetguard.core.target import ScanTarget

logger = logging.getLogger(__name__)

DEFAULT_ADMIN_USERNAMES = {"admin", "administrator", "root"}

# Plugin slug -> display name
SECURITY_PLUGINS = {
    "wordfence": "Wordfence Security",
    "limit-login-attempts-reloaded": "Limit Login Attempts Reloaded",
    "better-wp-security": "Solid Security",
    "ithemes-security-pro": "Solid Security Pro",
    "all-in-one-wp-security-and-firewall": "All In One WP Security",
    "loginizer": "Loginizer",
    "jetpack": "Jetpack",
    "sucuri-scanner": "Sucuri Security",
    "wp-cerber": "WP Cerber Security",
}

# Plugins whose presence means failed logins are throttled
LOGIN_THROTTLING_PLUGINS = {
    "wordfence",
    "limit-login-attempts-reloaded",
    "better-wp-security",
    "ithemes-security-pro",
    "all-in-one-wp-security-and-firewall",
    "loginizer",
    "jetpack",
    "wp-cerber",
}

SENSITIVE_FILES = {"wp-config.php", ".htaccess"}


def admin_user_secure(users: List[SiteUser]) -> bool:
    return not any(
        user.is_administrator and user.username.lower() in DEFAULT_ADMIN_USERNAMES
        for user in users
    )


def file_permissions_secure(entries: List[FileEntry]) -> bool:
    for entry in entries:
        mode = entry.mode
        if entry.world_writable or (mode is not None and mode & 0o002):
            return False
        filename = entry.path.replace("\\", "/").rsplit("/", 1)[-1]
        if filename in SENSITIVE_FILES and mode is not None and mode & 0o020:
            return False
    return True


def active_security_plugins(software: InstalledSoftware) -> List[str]:
    return sorted(
        SECURITY_PLUGINS[plugin.slug]
        for plugin in software.plugins
        if plugin.active and plugin.slug in SECURITY_PLUGINS
    )


def has_login_throttling(software: InstalledSoftware) -> bool:
    return any(plugin.active and plugin.slug in LOGIN_THROTTLING_PLUGINS for plugin in software.plugins)


class HardeningProbe(BaseProbe):
    kind = ProbeKind.HARDENING
    result_type = HardeningResult

    def __init__(
        self,
        budget: float,
        management_factory: Callable[..., ManagementClient] = ManagementClient.for_target,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        super().__init__(budget)
        self.management_factory = management_factory
        self.rate_limiter = rate_limiter or default_rate_limiter(f"management:{self.kind.value}")

    async def probe(self, target: ScanTarget) -> HardeningResult:
        if not target.has_management_credential:
            return self.unavailable("no management credential registered")

        client = self.management_factory(target, rate_limiter=self.rate_limiter)
        settings_, users, files, software = await asyncio.gather(
            client.get_security_settings(),
            client.get_users(),
            client.get_file_listing(),
            client.get_installed_software(),
            return_exceptions=True
        )

        failures = [o for o in (settings_, users, files, software) if isinstance(o, BaseException)]
        for error in failures:
            logger.info(f"[PROBE:hardening] Management call failed: {type(error).__name__}: {error}")
        if len(failures) == 4:
            return self.unavailable(f"management endpoint unavailable: {failures[0]}")

        checks: Dict[str, Any] = {}
        if not isinstance(settings_, BaseException):
            checks.update(self._from_settings(settings_))
        if not isinstance(users, BaseException):
            checks["admin_user_secure"] = admin_user_secure(users)
        if not isinstance(files, BaseException):
            checks["file_permissions_secure"] = file_permissions_secure(files)
        if not isinstance(software, BaseException):
            plugins = active_security_plugins(software)
            checks["security_plugins_active"] = plugins
            settings_limit = False
            if not isinstance(settings_, BaseException):
                settings_limit = bool(settings_.get("login_attempts_limited"))
            checks["login_attempts_limited"] = has_login_throttling(software) or settings_limit

        return HardeningResult(
            status=ProbeStatus.DEGRADED if failures else ProbeStatus.OK,
            detail="; ".join(str(e) for e in failures) or None,
            **checks
        )

    @staticmethod
    def _from_settings(settings_: Dict[str, Any]) -> Dict[str, Any]:
        checks: Dict[str, Any] = {}
        if "wp_version_exposed" in settings_:
            checks["wp_version_hidden"] = not bool(settings_["wp_version_exposed"])
        elif "wp_version_hidden" in settings_:
            checks["wp_version_hidden"] = bool(settings_["wp_version_hidden"])
        if "login_attempts_limited" in settings_:
            checks["login_attempts_limited"] = bool(settings_["login_attempts_limited"])
        return checks
