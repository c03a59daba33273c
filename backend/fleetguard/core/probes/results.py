"""
Typed probe results.

Every probe returns exactly one of these models. ``status`` says how much of the
probe's signal arrived (``ok``, ``degraded`` or ``unavailable``); the remaining
fields are the probe-specific payload. An unavailable result is a normal value,
never an exception.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Dict, Iterable, List, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow() -> datetime:
    """Naive UTC timestamp, the form stored by the repository"""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class ProbeStatus(str, Enum):
    OK = "ok"
    DEGRADED = "degraded"
    UNAVAILABLE = "unavailable"


class ProbeKind(str, Enum):
    MALWARE = "malware"
    BLACKLIST = "blacklist"
    VULNERABILITY = "vulnerability"
    SECURITY_HEADERS = "security_headers"
    WEB_TRUST = "web_trust"
    HARDENING = "hardening"


class MalwareStatus(str, Enum):
    CLEAN = "clean"
    SUSPICIOUS = "suspicious"
    INFECTED = "infected"
    ERROR = "error"


class BlacklistStatus(str, Enum):
    CLEAN = "clean"
    FLAGGED = "flagged"
    ERROR = "error"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return SEVERITY_RANK[self]

    @classmethod
    def parse(cls, value: Optional[str], default: "Severity" = None) -> "Severity":
        """Parse an upstream severity label; unknown labels fall back to ``default``"""
        if value:
            normalized = str(value).strip().lower()
            for member in cls:
                if member.value == normalized:
                    return member
        return default or cls.MEDIUM


SEVERITY_RANK = {
    Severity.LOW: 1,
    Severity.MEDIUM: 2,
    Severity.HIGH: 3,
    Severity.CRITICAL: 4,
}


class TrustStatus(str, Enum):
    TRUSTED = "trusted"
    FLAGGED = "flagged"
    UNKNOWN = "unknown"


class ResultModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        alias_generator=to_camel,
        populate_by_name=True,
        use_enum_values=False,
    )


class BaseProbeResult(ResultModel):
    kind: ProbeKind
    status: ProbeStatus = ProbeStatus.OK
    completed_at: datetime = Field(default_factory=utcnow)
    detail: Optional[str] = None

    @property
    def is_available(self) -> bool:
        return self.status != ProbeStatus.UNAVAILABLE

    @classmethod
    def unavailable(cls, reason: str):
        return cls(status=ProbeStatus.UNAVAILABLE, detail=reason)


class MalwareResult(BaseProbeResult):
    kind: Literal[ProbeKind.MALWARE] = ProbeKind.MALWARE
    malware_status: MalwareStatus = MalwareStatus.CLEAN
    threats_detected: int = 0
    infected_files: List[str] = Field(default_factory=list)
    findings: List[str] = Field(default_factory=list)
    engines_detected: int = 0
    total_engines: int = 0

    @classmethod
    def unavailable(cls, reason: str):
        return cls(status=ProbeStatus.UNAVAILABLE, detail=reason, malware_status=MalwareStatus.ERROR)


class BlacklistResult(BaseProbeResult):
    kind: Literal[ProbeKind.BLACKLIST] = ProbeKind.BLACKLIST
    blacklist_status: BlacklistStatus = BlacklistStatus.CLEAN
    services_checked: List[str] = Field(default_factory=list)
    flagged_by: List[str] = Field(default_factory=list)

    @classmethod
    def unavailable(cls, reason: str):
        return cls(status=ProbeStatus.UNAVAILABLE, detail=reason, blacklist_status=BlacklistStatus.ERROR)


class OutdatedSoftware(ResultModel):
    name: str
    component_type: Literal["core", "plugin", "theme"]
    current_version: str
    latest_version: Optional[str] = None
    severity: Severity = Severity.MEDIUM
    advisories: List[str] = Field(default_factory=list)


class VulnerabilityResult(BaseProbeResult):
    kind: Literal[ProbeKind.VULNERABILITY] = ProbeKind.VULNERABILITY
    core_vulnerabilities: int = 0
    plugin_vulnerabilities: int = 0
    theme_vulnerabilities: int = 0
    outdated_software: List[OutdatedSoftware] = Field(default_factory=list)
    wordpress_version: Optional[str] = None

    @property
    def total_vulnerabilities(self) -> int:
        return self.core_vulnerabilities + self.plugin_vulnerabilities + self.theme_vulnerabilities


class SecurityHeadersResult(BaseProbeResult):
    kind: Literal[ProbeKind.SECURITY_HEADERS] = ProbeKind.SECURITY_HEADERS
    headers: Dict[str, bool] = Field(default_factory=dict)
    header_score: int = 100


class TrustListing(ResultModel):
    service: str
    status: TrustStatus = TrustStatus.UNKNOWN


class WebTrustResult(BaseProbeResult):
    kind: Literal[ProbeKind.WEB_TRUST] = ProbeKind.WEB_TRUST
    ssl_enabled: bool = True
    certificate_valid: bool = True
    ssl_grade: str = "A"
    cert_expiry_days: Optional[int] = None
    trusted_by: List[TrustListing] = Field(default_factory=list)


class HardeningResult(BaseProbeResult):
    # Checks that could not be evaluated stay at their secure default.
    kind: Literal[ProbeKind.HARDENING] = ProbeKind.HARDENING
    file_permissions_secure: bool = True
    admin_user_secure: bool = True
    wp_version_hidden: bool = True
    login_attempts_limited: bool = True
    security_plugins_active: List[str] = Field(default_factory=list)


ProbeResult = Annotated[
    Union[
        MalwareResult,
        BlacklistResult,
        VulnerabilityResult,
        SecurityHeadersResult,
        WebTrustResult,
        HardeningResult,
    ],
    Field(discriminator="kind"),
]


RESULT_TYPES = {
    ProbeKind.MALWARE: MalwareResult,
    ProbeKind.BLACKLIST: BlacklistResult,
    ProbeKind.VULNERABILITY: VulnerabilityResult,
    ProbeKind.SECURITY_HEADERS: SecurityHeadersResult,
    ProbeKind.WEB_TRUST: WebTrustResult,
    ProbeKind.HARDENING: HardeningResult,
}


class ProbeResultSet(ResultModel):
    """The six (possibly absent) probe results of one scan"""
    malware: Optional[MalwareResult] = None
    blacklist: Optional[BlacklistResult] = None
    vulnerability: Optional[VulnerabilityResult] = None
    security_headers: Optional[SecurityHeadersResult] = None
    web_trust: Optional[WebTrustResult] = None
    hardening: Optional[HardeningResult] = None

    @classmethod
    def from_results(cls, results: Iterable[BaseProbeResult]) -> "ProbeResultSet":
        """Place results by kind; arrival order is irrelevant"""
        slots = {}
        for result in results:
            if result is None:
                continue
            if result.kind.value in slots:
                raise ValueError(f"Duplicate {result.kind.value} result")
            slots[result.kind.value] = result
        return cls(**slots)

    def returned(self) -> List[BaseProbeResult]:
        return [getattr(self, kind.value) for kind in ProbeKind if getattr(self, kind.value) is not None]

    def available(self) -> List[BaseProbeResult]:
        return [result for result in self.returned() if result.is_available]
