"""
Unit tests for the six probes, with their collaborators mocked
"""

import asyncio
from datetime import datetime
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from fleetguard.clients.management import (
    FileEntry,
    InstalledComponent,
    InstalledSoftware,
    ManagementClient,
    SiteUser,
    SoftwareUpdate,
)
from fleetguard.clients.site import SiteResponse
from fleetguard.clients.tls import CertificateInfo
from fleetguard.clients.virustotal import UrlReport
from fleetguard.clients.wpscan import Advisory
from fleetguard.core.error_handling.exceptions import (
    CredentialRejectedException,
    ExternalServiceException,
)
from fleetguard.core.probes.blacklist import BlacklistProbe
from fleetguard.core.probes.hardening import (
    HardeningProbe,
    admin_user_secure,
    file_permissions_secure,
)
from fleetguard.core.probes.malware import MalwareProbe, classify, scan_content, scan_file_listing
from fleetguard.core.probes.results import (
    BlacklistStatus,
    MalwareStatus,
    ProbeStatus,
    Severity,
    TrustStatus,
)
from fleetguard.core.probes.security_headers import SecurityHeadersProbe, evaluate_headers
from fleetguard.core.probes.vulnerability import VulnerabilityProbe
from fleetguard.core.probes.web_trust import WebTrustProbe, grade_certificate
from fleetguard.core.target import ScanTarget


def site_response(body="", headers=None, url="https://example.com"):
    return SiteResponse(url=url, status=200, headers=headers or {}, body=body)


def fake_service(name, listed=False, error=None, delay=0.0):
    async def check(target):
        if delay:
            await asyncio.sleep(delay)
        if error is not None:
            raise error
        return listed

    service = Mock()
    service.name = name
    service.check = check
    return service


class TestSecurityHeadersProbe:

    def test_all_headers_present(self):
        result = evaluate_headers({
            "Strict-Transport-Security": "max-age=31536000",
            "Content-Security-Policy": "default-src 'self'",
            "X-Content-Type-Options": "nosniff",
            "X-Frame-Options": "DENY",
            "X-XSS-Protection": "1; mode=block",
            "Referrer-Policy": "no-referrer",
            "Permissions-Policy": "camera=()",
        })
        assert result.header_score == 100
        assert all(result.headers.values())

    def test_partial_headers_and_aliases(self):
        result = evaluate_headers({
            "x-frame-options": "SAMEORIGIN",
            "content-security-policy-report-only": "default-src 'self'",
        })
        assert result.header_score == 29
        assert result.headers["Content-Security-Policy"] is True
        assert result.headers["Strict-Transport-Security"] is False

    def test_no_headers(self):
        assert evaluate_headers({}).header_score == 0

    @pytest.mark.asyncio
    async def test_unreachable_site_is_unavailable(self):
        fetcher = Mock()
        fetcher.fetch = AsyncMock(side_effect=ExternalServiceException("site", "connection refused"))
        probe = SecurityHeadersProbe(1.0, fetcher=fetcher)

        result = await probe.run(ScanTarget(website_id=1, url="https://example.com"))

        assert result.status == ProbeStatus.UNAVAILABLE
        assert "connection refused" in result.detail


class TestBlacklistProbe:

    def setup_method(self):
        self.target = ScanTarget(website_id=1, url="https://example.com")

    @pytest.mark.asyncio
    async def test_clean_when_all_services_answer(self):
        probe = BlacklistProbe(1.0, [fake_service("SURBL"), fake_service("Spamhaus DBL")])

        result = await probe.run(self.target)

        assert result.status == ProbeStatus.OK
        assert result.blacklist_status == BlacklistStatus.CLEAN
        assert result.services_checked == ["SURBL", "Spamhaus DBL"]
        assert result.flagged_by == []

    @pytest.mark.asyncio
    async def test_failed_service_is_not_a_listing(self):
        probe = BlacklistProbe(1.0, [
            fake_service("SURBL", listed=True),
            fake_service("URIBL", error=ExternalServiceException("URIBL", "SERVFAIL")),
            fake_service("Slow", delay=1.0),
        ], service_timeout=0.05)

        result = await probe.run(self.target)

        assert result.status == ProbeStatus.DEGRADED
        assert result.blacklist_status == BlacklistStatus.FLAGGED
        assert result.services_checked == ["SURBL"]
        assert result.flagged_by == ["SURBL"]

    @pytest.mark.asyncio
    async def test_unavailable_when_nothing_answers(self):
        probe = BlacklistProbe(1.0, [fake_service("URIBL", error=ExternalServiceException("URIBL", "down"))])

        result = await probe.run(self.target)

        assert result.status == ProbeStatus.UNAVAILABLE
        assert result.blacklist_status == BlacklistStatus.ERROR

    @pytest.mark.asyncio
    async def test_unavailable_without_services(self):
        result = await BlacklistProbe(1.0, []).run(self.target)
        assert result.status == ProbeStatus.UNAVAILABLE


class TestMalwareProbe:

    def setup_method(self):
        self.fetcher = Mock()
        self.fetcher.fetch = AsyncMock(return_value=site_response("<html><body>Hello</body></html>"))
        self.management = Mock()
        self.management.get_file_listing = AsyncMock(return_value=[])
        self.public_target = ScanTarget(website_id=1, url="https://example.com")
        self.managed_target = ScanTarget(website_id=1, url="https://example.com", management_api_key="k")

    def make_probe(self, reputation=None):
        return MalwareProbe(
            2.0,
            fetcher=self.fetcher,
            reputation=reputation,
            management_factory=lambda target, **kwargs: self.management,
        )

    def test_classification_thresholds(self):
        assert classify(0, 0) == MalwareStatus.CLEAN
        assert classify(1, 0) == MalwareStatus.SUSPICIOUS
        assert classify(2, 1) == MalwareStatus.SUSPICIOUS
        assert classify(3, 0) == MalwareStatus.INFECTED
        assert classify(2, 2) == MalwareStatus.INFECTED

    def test_content_signatures(self):
        body = (
            "<?php eval(base64_decode($x)); ?>"
            "<script src='http://cdn.evil.tk/x.js'></script>"
        )
        findings = scan_content(site_response(body, headers={"x-backdoor": "1"}))
        assert findings.threats == 3

    def test_file_listing_heuristics(self):
        findings = scan_file_listing([
            FileEntry(path="wp-content/uploads/2024/01/image.php"),
            FileEntry(path="wp-content/plugins/akismet/akismet.php"),
            FileEntry(path="wp-includes/a8f3k2m9x1.php"),
            FileEntry(path="wp-content/themes/x/wso.php"),
            FileEntry(path="wp-includes/version.php"),
        ])
        assert findings.threats == 3

    @pytest.mark.asyncio
    async def test_clean_site(self):
        result = await self.make_probe().run(self.public_target)

        assert result.status == ProbeStatus.OK
        assert result.malware_status == MalwareStatus.CLEAN
        assert result.threats_detected == 0
        self.management.get_file_listing.assert_not_called()

    @pytest.mark.asyncio
    async def test_infected_from_reputation_engines(self):
        reputation = Mock()
        reputation.url_report = AsyncMock(return_value=UrlReport(positives=4, total=70))

        result = await self.make_probe(reputation).run(self.public_target)

        assert result.malware_status == MalwareStatus.INFECTED
        assert result.engines_detected == 4
        assert result.total_engines == 70
        assert result.threats_detected == 4

    @pytest.mark.asyncio
    async def test_reputation_quota_degrades(self):
        reputation = Mock()
        reputation.url_report = AsyncMock(side_effect=ExternalServiceException("virustotal", "quota"))

        result = await self.make_probe(reputation).run(self.public_target)

        assert result.status == ProbeStatus.DEGRADED
        assert result.malware_status == MalwareStatus.CLEAN

    @pytest.mark.asyncio
    async def test_file_findings_reported(self):
        self.management.get_file_listing = AsyncMock(return_value=[
            FileEntry(path=f"wp-content/uploads/shell{i}.php") for i in range(12)
        ])

        result = await self.make_probe().run(self.managed_target)

        assert result.malware_status == MalwareStatus.INFECTED
        assert result.threats_detected == 12
        assert len(result.infected_files) == 10

    @pytest.mark.asyncio
    async def test_every_source_failing_is_unavailable(self):
        self.fetcher.fetch = AsyncMock(side_effect=ExternalServiceException("site", "timeout"))
        self.management.get_file_listing = AsyncMock(
            side_effect=CredentialRejectedException("management", 401)
        )

        result = await self.make_probe().run(self.managed_target)

        assert result.status == ProbeStatus.UNAVAILABLE
        assert result.malware_status == MalwareStatus.ERROR

    @pytest.mark.asyncio
    async def test_infected_files_hold_only_paths(self):
        self.fetcher.fetch = AsyncMock(return_value=site_response(
            "<?php eval(base64_decode($x)); ?>", headers={"x-shell": "1"}
        ))
        self.management.get_file_listing = AsyncMock(return_value=[
            FileEntry(path="/wp-content/uploads/2024/01/cache.php"),
            FileEntry(path="wp-content/themes/x/wso.php"),
        ])

        result = await self.make_probe().run(self.managed_target)

        assert result.threats_detected == 4
        assert result.infected_files == [
            "wp-content/uploads/2024/01/cache.php",
            "wp-content/themes/x/wso.php",
        ]
        assert any(item.startswith("Malware signature") for item in result.findings)
        assert "Suspicious response header: x-shell" in result.findings


class TestVulnerabilityProbe:

    def setup_method(self):
        self.management = Mock()
        self.management.get_updates = AsyncMock(return_value=[])
        self.management.get_installed_software = AsyncMock(return_value=InstalledSoftware(wordpress_version="6.4.2"))
        self.target = ScanTarget(website_id=1, url="https://example.com", management_api_key="k")

    def make_probe(self, reference=None):
        return VulnerabilityProbe(2.0, reference=reference, management_factory=lambda target, **kwargs: self.management)

    @pytest.mark.asyncio
    async def test_without_credential_is_unavailable(self):
        result = await self.make_probe().run(ScanTarget(website_id=1, url="https://example.com"))
        assert result.status == ProbeStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_pending_updates_are_counted(self):
        self.management.get_updates = AsyncMock(return_value=[
            SoftwareUpdate("core", "WordPress", "6.4.2", "6.5", slug="wordpress"),
            SoftwareUpdate("plugin", "Akismet", "5.0", "5.3", slug="akismet"),
            SoftwareUpdate("plugin", "Yoast SEO", "21.0", "22.1", slug="wordpress-seo"),
            SoftwareUpdate("theme", "Astra", "4.0", "4.6", slug="astra"),
        ])

        result = await self.make_probe().run(self.target)

        assert result.status == ProbeStatus.OK
        assert (result.core_vulnerabilities, result.plugin_vulnerabilities, result.theme_vulnerabilities) == (1, 2, 1)
        assert result.outdated_software[0].component_type == "core"
        assert result.outdated_software[0].severity == Severity.HIGH
        assert result.outdated_software[-1].severity == Severity.LOW
        assert result.wordpress_version == "6.4.2"

    @pytest.mark.asyncio
    async def test_advisories_merge_with_updates(self):
        self.management.get_updates = AsyncMock(return_value=[
            SoftwareUpdate("plugin", "Contact Form 7", "5.7", "5.9", slug="contact-form-7"),
        ])
        self.management.get_installed_software = AsyncMock(return_value=InstalledSoftware(
            wordpress_version="6.4.2",
            plugins=[
                InstalledComponent("plugin", "Contact Form 7", "contact-form-7", "5.7", active=True),
                InstalledComponent("plugin", "Hello Dolly", "hello-dolly", "1.7"),
            ],
        ))

        async def lookup(component_type, slug, version):
            if slug == "contact-form-7":
                return [
                    Advisory("Stored XSS", Severity.MEDIUM, "5.8"),
                    Advisory("File upload bypass", Severity.CRITICAL, "5.8.4"),
                ]
            if slug == "hello-dolly":
                raise ExternalServiceException("wpscan", "HTTP 500")
            return []

        reference = Mock()
        reference.lookup = lookup

        result = await self.make_probe(reference).run(self.target)

        assert result.status == ProbeStatus.DEGRADED
        assert result.plugin_vulnerabilities == 1
        component = result.outdated_software[0]
        assert component.severity == Severity.CRITICAL
        assert component.latest_version == "5.9"
        assert component.advisories == ["Stored XSS", "File upload bypass"]

    @pytest.mark.asyncio
    async def test_management_failure_is_unavailable(self):
        self.management.get_updates = AsyncMock(side_effect=CredentialRejectedException("management", 403))

        result = await self.make_probe().run(self.target)

        assert result.status == ProbeStatus.UNAVAILABLE


class TestWebTrustProbe:

    def setup_method(self):
        self.inspector = Mock()
        self.target = ScanTarget(website_id=1, url="https://example.com")

    @pytest.mark.parametrize("info,grade", [
        (CertificateInfo(handshake_ok=False), "F"),
        (CertificateInfo(handshake_ok=True, expired=True), "F"),
        (CertificateInfo(handshake_ok=True, self_signed=True), "F"),
        (CertificateInfo(handshake_ok=True, verified=False, hostname_mismatch=True), "D"),
        (CertificateInfo(handshake_ok=True, verified=True, protocol="TLSv1.3", cipher_name="RC4-SHA", cipher_bits=128), "C"),
        (CertificateInfo(handshake_ok=True, verified=True, protocol="TLSv1.1", cipher_name="AES256-SHA", cipher_bits=256), "B"),
        (CertificateInfo(handshake_ok=True, verified=True, protocol="TLSv1.3",
                         cipher_name="TLS_AES_256_GCM_SHA384", cipher_bits=256, days_until_expiry=10), "B"),
        (CertificateInfo(handshake_ok=True, verified=True, protocol="TLSv1.3",
                         cipher_name="TLS_AES_256_GCM_SHA384", cipher_bits=256, days_until_expiry=80), "A"),
    ])
    def test_grade_rubric(self, info, grade):
        assert grade_certificate(info) == grade

    @pytest.mark.asyncio
    async def test_valid_certificate_and_listings(self):
        self.inspector.inspect = AsyncMock(return_value=CertificateInfo(
            handshake_ok=True,
            verified=True,
            protocol="TLSv1.3",
            cipher_name="TLS_AES_128_GCM_SHA256",
            cipher_bits=128,
            not_after=datetime(2030, 1, 1),
            days_until_expiry=90,
        ))
        probe = WebTrustProbe(2.0, inspector=self.inspector, services=[
            fake_service("Google Safe Browsing"),
            fake_service("Norton", error=ExternalServiceException("Norton", "down")),
        ])

        result = await probe.run(self.target)

        assert result.status == ProbeStatus.DEGRADED
        assert result.ssl_enabled and result.certificate_valid
        assert result.ssl_grade == "A"
        assert result.cert_expiry_days == 90
        assert [(t.service, t.status) for t in result.trusted_by] == [
            ("Google Safe Browsing", TrustStatus.TRUSTED),
            ("Norton", TrustStatus.UNKNOWN),
        ]

    @pytest.mark.asyncio
    async def test_plain_http_site(self):
        self.inspector.inspect = AsyncMock()
        probe = WebTrustProbe(2.0, inspector=self.inspector)

        result = await probe.run(ScanTarget(website_id=1, url="http://example.com"))

        assert result.status == ProbeStatus.OK
        assert not result.ssl_enabled
        assert not result.certificate_valid
        assert result.ssl_grade == "F"
        self.inspector.inspect.assert_not_called()

    @pytest.mark.asyncio
    async def test_connection_failure_is_unavailable(self):
        self.inspector.inspect = AsyncMock(side_effect=ExternalServiceException("tls", "connection refused"))

        result = await WebTrustProbe(2.0, inspector=self.inspector).run(self.target)

        assert result.status == ProbeStatus.UNAVAILABLE


class TestHardeningProbe:

    def setup_method(self):
        self.management = Mock()
        self.management.get_security_settings = AsyncMock(return_value={
            "wp_version_exposed": False,
            "login_attempts_limited": False,
        })
        self.management.get_users = AsyncMock(return_value=[SiteUser("editor", ["administrator"])])
        self.management.get_file_listing = AsyncMock(return_value=[
            FileEntry(path="wp-config.php", permissions="0640"),
        ])
        self.management.get_installed_software = AsyncMock(return_value=InstalledSoftware())
        self.target = ScanTarget(website_id=1, url="https://example.com", management_api_key="k")

    def make_probe(self):
        return HardeningProbe(2.0, management_factory=lambda target, **kwargs: self.management)

    def test_default_admin_username(self):
        assert not admin_user_secure([SiteUser("admin", ["administrator"])])
        assert admin_user_secure([SiteUser("admin", ["subscriber"]), SiteUser("jane", ["administrator"])])

    def test_file_permissions(self):
        assert file_permissions_secure([FileEntry("wp-config.php", "0600"), FileEntry("index.php", "0644")])
        assert not file_permissions_secure([FileEntry("index.php", "0666")])
        assert not file_permissions_secure([FileEntry("wp-config.php", "0660")])
        assert not file_permissions_secure([FileEntry("uploads", world_writable=True)])

    @pytest.mark.asyncio
    async def test_all_checks_evaluated(self):
        result = await self.make_probe().run(self.target)

        assert result.status == ProbeStatus.OK
        assert result.wp_version_hidden
        assert not result.login_attempts_limited
        assert result.admin_user_secure
        assert result.file_permissions_secure
        assert result.security_plugins_active == []

    @pytest.mark.asyncio
    async def test_security_plugin_limits_logins(self):
        self.management.get_installed_software = AsyncMock(return_value=InstalledSoftware(plugins=[
            InstalledComponent("plugin", "Wordfence Security", "wordfence", "7.11", active=True),
            InstalledComponent("plugin", "Sucuri Security", "sucuri-scanner", "1.8", active=False),
        ]))

        result = await self.make_probe().run(self.target)

        assert result.login_attempts_limited
        assert result.security_plugins_active == ["Wordfence Security"]

    @pytest.mark.asyncio
    async def test_partial_failure_keeps_secure_defaults(self):
        self.management.get_users = AsyncMock(side_effect=ExternalServiceException("management", "HTTP 500"))
        self.management.get_file_listing = AsyncMock(side_effect=ExternalServiceException("management", "HTTP 500"))

        result = await self.make_probe().run(self.target)

        assert result.status == ProbeStatus.DEGRADED
        assert result.admin_user_secure
        assert result.file_permissions_secure
        assert not result.login_attempts_limited

    @pytest.mark.asyncio
    async def test_all_calls_failing_is_unavailable(self):
        error = CredentialRejectedException("management", 401)
        for name in ("get_security_settings", "get_users", "get_file_listing", "get_installed_software"):
            setattr(self.management, name, AsyncMock(side_effect=error))

        result = await self.make_probe().run(self.target)

        assert result.status == ProbeStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_without_credential_is_unavailable(self):
        result = await self.make_probe().run(ScanTarget(website_id=1, url="https://example.com"))
        assert result.status == ProbeStatus.UNAVAILABLE

    @pytest.mark.asyncio
    async def test_checked_site_without_throttling_is_not_limited(self):
        self.management.get_security_settings = AsyncMock(return_value={})
        self.management.get_installed_software = AsyncMock(return_value=InstalledSoftware(plugins=[
            InstalledComponent("plugin", "Hello Dolly", "hello-dolly", "1.7.2", active=True),
        ]))

        result = await self.make_probe().run(self.target)

        assert result.status == ProbeStatus.OK
        assert result.login_attempts_limited is False

    @pytest.mark.asyncio
    async def test_settings_flag_limits_logins(self):
        self.management.get_security_settings = AsyncMock(return_value={"login_attempts_limited": True})

        result = await self.make_probe().run(self.target)

        assert result.login_attempts_limited

    @pytest.mark.asyncio
    async def test_unknown_login_limiting_keeps_secure_default(self):
        error = ExternalServiceException("management", "HTTP 500")
        self.management.get_security_settings = AsyncMock(side_effect=error)
        self.management.get_installed_software = AsyncMock(side_effect=error)

        result = await self.make_probe().run(self.target)

        assert result.status == ProbeStatus.DEGRADED
        assert result.login_attempts_limited

    @pytest.mark.asyncio
    async def test_quota_backoff_carries_over_to_next_scan(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(429, headers={"Retry-After": "120"}, json={"message": "slow down"})

        transport = httpx.MockTransport(handler)
        probe = HardeningProbe(
            2.0,
            management_factory=lambda target, **kwargs: ManagementClient.for_target(
                target, transport=transport, **kwargs
            ),
        )

        first = await probe.run(self.target)
        requests_after_first_scan = len(seen)
        second = await probe.run(self.target)

        assert first.status == ProbeStatus.UNAVAILABLE
        assert requests_after_first_scan > 0
        assert second.status == ProbeStatus.UNAVAILABLE
        assert len(seen) == requests_after_first_scan
        assert probe.rate_limiter.get_metrics()["current_backoff_seconds"] > 0

    def test_each_instance_owns_its_limiter(self):
        assert self.make_probe().rate_limiter is not self.make_probe().rate_limiter
