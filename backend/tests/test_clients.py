"""
Tests for the external API clients, using httpx mock transports
"""

import json

import dns.exception
import dns.resolver
import httpx
import pytest
from unittest.mock import AsyncMock, Mock

from fleetguard.clients.management import ManagementClient
from fleetguard.clients.reputation import DnsBlacklistService, DomainHeuristicService, SafeBrowsingClient
from fleetguard.clients.virustotal import VirusTotalClient
from fleetguard.clients.wpscan import WPScanClient, is_fixed
from fleetguard.core.error_handling.exceptions import (
    CredentialRejectedException,
    ExternalServiceException,
    MalformedResponseException,
    RateLimitExceededException,
    ServiceQuotaExceededException,
)
from fleetguard.core.probes.results import Severity
from fleetguard.core.resilience.rate_limiter import RateLimitConfig, RateLimiter
from fleetguard.core.target import ScanTarget


def json_transport(routes, status_codes=None, seen=None):
    """Route table of path -> JSON body"""
    status_codes = status_codes or {}

    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        path = request.url.path
        if path not in routes and path not in status_codes:
            return httpx.Response(404, json={"message": "not found"})
        return httpx.Response(status_codes.get(path, 200), json=routes.get(path))

    return httpx.MockTransport(handler)


class TestManagementClient:

    PREFIX = "/wp-json/wrms/v1"

    def make_client(self, routes, **kwargs):
        return ManagementClient(
            "https://example.com/",
            "site-key",
            transport=json_transport({f"{self.PREFIX}{p}": body for p, body in routes.items()}, **kwargs),
        )

    @pytest.mark.asyncio
    async def test_updates_wrapped_shape(self):
        seen = []
        client = self.make_client({
            "/updates": {
                "success": True,
                "updates": {
                    "wordpress": {"update_available": True, "current_version": "6.4.2", "new_version": "6.5"},
                    "plugins": [{"name": "Akismet Anti-Spam", "current_version": "5.0", "new_version": "5.3"}],
                    "themes": [{"name": "Astra", "slug": "astra", "current_version": "4.0", "new_version": "4.6"}],
                },
            },
        }, seen=seen)

        updates = await client.get_updates()

        assert [(u.component_type, u.slug) for u in updates] == [
            ("core", "wordpress"), ("plugin", "akismet-anti-spam"), ("theme", "astra"),
        ]
        assert seen[0].headers["X-WRMS-API-Key"] == "site-key"
        assert seen[0].headers["X-WRM-API-Key"] == "site-key"

    @pytest.mark.asyncio
    async def test_installed_software_flat_shape(self):
        client = self.make_client({
            "/status": {"wordpress_version": "6.4.2"},
            "/plugins": [{"name": "Wordfence", "slug": "wordfence/wordfence.php", "version": "7.11", "active": True}],
            "/themes": [{"name": "Astra", "stylesheet": "astra", "version": "4.0"}],
        })

        software = await client.get_installed_software()

        assert software.wordpress_version == "6.4.2"
        assert software.plugins[0].slug == "wordfence"
        assert software.plugins[0].active
        assert software.themes[0].slug == "astra"

    @pytest.mark.asyncio
    async def test_files_and_users(self):
        client = self.make_client({
            "/files": {"success": True, "files": [
                "wp-content/uploads/a.php",
                {"path": "wp-config.php", "permissions": "0644"},
            ]},
            "/users": [{"user_login": "admin", "role": "Administrator"}],
        })

        files = await client.get_file_listing()
        users = await client.get_users()

        assert files[1].mode == 0o644
        assert users[0].username == "admin"
        assert users[0].is_administrator

    @pytest.mark.asyncio
    async def test_rejected_key(self):
        client = self.make_client({"/security": {}}, status_codes={f"{self.PREFIX}/security": 401})

        with pytest.raises(CredentialRejectedException):
            await client.get_security_settings()

    @pytest.mark.asyncio
    async def test_malformed_payload(self):
        client = self.make_client({"/users": {"unexpected": True}})

        with pytest.raises(MalformedResponseException):
            await client.get_users()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        client = ManagementClient("https://example.com", "k", transport=httpx.MockTransport(handler))

        with pytest.raises(ExternalServiceException):
            await client.get_updates()

    @pytest.mark.asyncio
    async def test_rate_limiter_is_consulted_first(self):
        limiter = RateLimiter("management", RateLimitConfig(max_requests=1, burst_capacity=1))
        client = ManagementClient(
            "https://example.com", "k",
            rate_limiter=limiter,
            transport=json_transport({f"{self.PREFIX}/security": {"wp_version_exposed": True}}),
        )

        assert await client.get_security_settings() == {"wp_version_exposed": True}
        with pytest.raises(RateLimitExceededException):
            await client.get_security_settings()


class TestVirusTotalClient:

    @pytest.mark.asyncio
    async def test_finished_report(self):
        seen = []
        client = VirusTotalClient("vt-key", transport=json_transport({
            "/vtapi/v2/url/report": {"response_code": 1, "positives": 3, "total": 70, "permalink": "https://vt/x"},
        }, seen=seen))

        report = await client.url_report("https://example.com")

        assert (report.positives, report.total) == (3, 70)
        assert seen[0].url.params["resource"] == "https://example.com"
        assert seen[0].url.params["apikey"] == "vt-key"

    @pytest.mark.asyncio
    async def test_report_not_ready(self):
        client = VirusTotalClient("vt-key", transport=json_transport({
            "/vtapi/v2/url/report": {"response_code": 0, "verbose_msg": "queued"},
        }))
        assert await client.url_report("https://example.com") is None

    @pytest.mark.asyncio
    async def test_quota_starts_backoff(self):
        client = VirusTotalClient("vt-key", transport=httpx.MockTransport(lambda request: httpx.Response(204)))

        with pytest.raises(ServiceQuotaExceededException):
            await client.url_report("https://example.com")

        assert client.rate_limiter.get_metrics()["current_backoff_seconds"] > 0
        with pytest.raises(RateLimitExceededException):
            await client.url_report("https://example.com")


class TestWPScanClient:

    def test_is_fixed(self):
        assert is_fixed("5.9", "5.8.4")
        assert not is_fixed("5.7", "5.8")
        assert not is_fixed("5.7", None)

    @pytest.mark.asyncio
    async def test_plugin_lookup_drops_fixed_advisories(self):
        seen = []
        client = WPScanClient("token", transport=json_transport({
            "/api/v3/plugins/contact-form-7": {"contact-form-7": {"vulnerabilities": [
                {"title": "Old XSS", "fixed_in": "5.0", "cvss": {"severity": "high"}},
                {"title": "Upload bypass", "fixed_in": "5.8.4", "cvss": {"severity": "critical"}},
                {"title": "Unpatched CSRF", "fixed_in": None},
            ]}},
        }, seen=seen))

        advisories = await client.lookup("plugin", "contact-form-7", "5.7")

        assert [a.title for a in advisories] == ["Upload bypass", "Unpatched CSRF"]
        assert advisories[0].severity == Severity.CRITICAL
        assert advisories[1].severity == Severity.MEDIUM
        assert seen[0].headers["Authorization"] == "Token token=token"

    @pytest.mark.asyncio
    async def test_core_lookup_by_version(self):
        client = WPScanClient("token", transport=json_transport({
            "/api/v3/wordpresses/642": {"6.4.2": {"vulnerabilities": [{"title": "Core issue", "fixed_in": "6.4.3"}]}},
        }))

        advisories = await client.lookup("core", "wordpress", "6.4.2")

        assert [a.title for a in advisories] == ["Core issue"]

    @pytest.mark.asyncio
    async def test_unknown_component(self):
        client = WPScanClient("token", transport=json_transport({}))
        assert await client.lookup("theme", "custom-theme", "1.0") == []


class TestReputationServices:

    def setup_method(self):
        self.target = ScanTarget(website_id=1, url="https://www.example.com")

    @pytest.mark.asyncio
    async def test_safe_browsing_match(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(200, json={"matches": [{"threatType": "MALWARE"}]})

        client = SafeBrowsingClient("gsb-key", transport=httpx.MockTransport(handler))

        assert await client.check(self.target)
        assert seen[0]["threatInfo"]["threatEntries"] == [{"url": "https://www.example.com"}]

    @pytest.mark.asyncio
    async def test_safe_browsing_clean(self):
        client = SafeBrowsingClient("gsb-key", transport=httpx.MockTransport(lambda r: httpx.Response(200, json={})))
        assert not await client.check(self.target)

    def _resolver(self, addresses=None, error=None):
        resolver = Mock()
        if error is not None:
            resolver.resolve = AsyncMock(side_effect=error)
        else:
            answer = [Mock(to_text=Mock(return_value=address)) for address in addresses]
            resolver.resolve = AsyncMock(return_value=answer)
        return resolver

    @pytest.mark.asyncio
    async def test_dnsbl_listed(self):
        resolver = self._resolver(["127.0.0.2"])
        service = DnsBlacklistService("dbl.spamhaus.org", resolver=resolver)

        assert await service.check(self.target)
        resolver.resolve.assert_awaited_once_with("example.com.dbl.spamhaus.org", "A")

    @pytest.mark.asyncio
    async def test_dnsbl_not_listed(self):
        service = DnsBlacklistService("multi.surbl.org", resolver=self._resolver(error=dns.resolver.NXDOMAIN()))
        assert not await service.check(self.target)

    @pytest.mark.asyncio
    async def test_dnsbl_refusal_is_an_error(self):
        service = DnsBlacklistService("dbl.spamhaus.org", resolver=self._resolver(["127.255.255.254"]))
        with pytest.raises(ExternalServiceException):
            await service.check(self.target)

    @pytest.mark.asyncio
    async def test_dnsbl_timeout_is_an_error(self):
        service = DnsBlacklistService("multi.surbl.org", resolver=self._resolver(error=dns.exception.Timeout()))
        with pytest.raises(ExternalServiceException):
            await service.check(self.target)

    @pytest.mark.asyncio
    async def test_domain_heuristics(self):
        service = DomainHeuristicService()
        assert await service.check(ScanTarget(website_id=1, url="https://free-stuff.tk"))
        assert await service.check(ScanTarget(website_id=1, url="http://203.0.113.7"))
        assert not await service.check(self.target)
