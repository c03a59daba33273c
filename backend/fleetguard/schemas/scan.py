"""
API models for security scans.

Responses use camelCase. The nested probe results are the canonical shape;
``to_flat_view`` derives the older flat field set for dashboards that still
read it.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field, field_validator
from pydantic.alias_generators import to_camel

from fleetguard.core.probes.results import (
    BlacklistResult,
    HardeningResult,
    MalwareResult,
    SecurityHeadersResult,
    VulnerabilityResult,
    WebTrustResult,
)
from fleetguard.models.scan import ScanStatus, ScanTrigger


class ApiModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


class ScanCreate(ApiModel):
    trigger: ScanTrigger = ScanTrigger.MANUAL


class ScoreDeduction(ApiModel):
    probe: str
    reason: str
    points: int


class ScanRecordResponse(ApiModel):
    id: int
    website_id: int
    scan_status: ScanStatus
    scan_trigger: ScanTrigger
    scan_started_at: datetime
    scan_completed_at: Optional[datetime] = None
    scan_duration_ms: Optional[int] = None

    malware_result: Optional[MalwareResult] = None
    blacklist_result: Optional[BlacklistResult] = None
    vulnerability_result: Optional[VulnerabilityResult] = None
    security_headers_result: Optional[SecurityHeadersResult] = None
    web_trust_result: Optional[WebTrustResult] = None
    hardening_result: Optional[HardeningResult] = None

    overall_security_score: Optional[int] = None
    threat_level: Optional[str] = None
    threats_detected: int = 0
    score_deductions: List[ScoreDeduction] = Field(default_factory=list)
    error_message: Optional[str] = None

    @field_validator("score_deductions", mode="before")
    @classmethod
    def _no_deductions_yet(cls, value):
        return value or []

    @computed_field(alias="probesReturned")
    @property
    def probes_returned(self) -> int:
        return sum(
            1 for result in (
                self.malware_result,
                self.blacklist_result,
                self.vulnerability_result,
                self.security_headers_result,
                self.web_trust_result,
                self.hardening_result,
            )
            if result is not None
        )


def to_flat_view(record: ScanRecordResponse) -> Dict[str, Any]:
    """Legacy flat fields derived from the nested probe results"""
    malware = record.malware_result
    blacklist = record.blacklist_result
    vulnerability = record.vulnerability_result
    headers = record.security_headers_result
    web_trust = record.web_trust_result
    hardening = record.hardening_result

    return {
        "malwareStatus": malware.malware_status.value if malware else None,
        "threatsDetected": malware.threats_detected if malware else 0,
        "infectedFiles": list(malware.infected_files) if malware else [],
        "blacklistStatus": blacklist.blacklist_status.value if blacklist else None,
        "servicesChecked": list(blacklist.services_checked) if blacklist else [],
        "flaggedBy": list(blacklist.flagged_by) if blacklist else [],
        "coreVulnerabilities": vulnerability.core_vulnerabilities if vulnerability else 0,
        "pluginVulnerabilities": vulnerability.plugin_vulnerabilities if vulnerability else 0,
        "themeVulnerabilities": vulnerability.theme_vulnerabilities if vulnerability else 0,
        "outdatedSoftware": [
            f"{item.name} {item.current_version}"
            + (f" (latest: {item.latest_version})" if item.latest_version else "")
            for item in (vulnerability.outdated_software if vulnerability else [])
        ],
        "securityHeaders": dict(headers.headers) if headers else {},
        "headerScore": headers.header_score if headers else None,
        "sslEnabled": web_trust.ssl_enabled if web_trust else None,
        "sslGrade": web_trust.ssl_grade if web_trust else None,
        "filePermissionsSecure": hardening.file_permissions_secure if hardening else None,
        "adminUserSecure": hardening.admin_user_secure if hardening else None,
        "wpVersionHidden": hardening.wp_version_hidden if hardening else None,
        "loginAttemptsLimited": hardening.login_attempts_limited if hardening else None,
        "securityPluginsActive": list(hardening.security_plugins_active) if hardening else [],
    }
