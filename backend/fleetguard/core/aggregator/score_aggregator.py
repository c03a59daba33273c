"""
Score aggregation for composite security scans.

Maps the (possibly partial) set of probe results of one scan to an overall
0-100 score and a threat level. No I/O, no clock, no shared state: the same
result set always produces the same outcome.
"""

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import List, Optional

from fleetguard.core.probes.results import (
    MalwareStatus,
    ProbeResultSet,
)

logger = logging.getLogger(__name__)


class ThreatLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


THREAT_ORDER = [ThreatLevel.LOW, ThreatLevel.MEDIUM, ThreatLevel.HIGH, ThreatLevel.CRITICAL]


@dataclass(frozen=True)
class ScoringWeights:
    """Deduction table; every value is a product decision and comes from settings"""
    malware_infected: int = 30
    malware_suspicious: int = 15
    blacklisted: int = 25
    per_vulnerability: int = 2
    vulnerability_cap: int = 25
    no_ssl: int = 8
    wp_version_exposed: int = 2
    login_unlimited: int = 1
    file_permissions: int = 2
    admin_insecure: int = 2
    header_factor: float = 0.1

    @classmethod
    def from_settings(cls, settings) -> "ScoringWeights":
        return cls(
            malware_infected=settings.score_malware_infected,
            malware_suspicious=settings.score_malware_suspicious,
            blacklisted=settings.score_blacklisted,
            per_vulnerability=settings.score_per_vulnerability,
            vulnerability_cap=settings.score_vulnerability_cap,
            no_ssl=settings.score_no_ssl,
            wp_version_exposed=settings.score_wp_version_exposed,
            login_unlimited=settings.score_login_unlimited,
            file_permissions=settings.score_file_permissions,
            admin_insecure=settings.score_admin_insecure,
            header_factor=settings.score_header_factor,
        )


@dataclass(frozen=True)
class Deduction:
    probe: str
    reason: str
    points: int


@dataclass(frozen=True)
class ScoreOutcome:
    score: int
    threat_level: ThreatLevel
    deductions: List[Deduction] = field(default_factory=list)
    override_applied: Optional[str] = None


def threat_level_for_score(score: int) -> ThreatLevel:
    if score >= 90:
        return ThreatLevel.LOW
    if score >= 70:
        return ThreatLevel.MEDIUM
    if score >= 50:
        return ThreatLevel.HIGH
    return ThreatLevel.CRITICAL


def _round_half_up(value: float) -> int:
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class ScoreAggregator:
    """Applies the deduction table and the threat-level override rule"""

    def __init__(self, weights: Optional[ScoringWeights] = None):
        self.weights = weights or ScoringWeights()

    def aggregate(self, results: ProbeResultSet) -> ScoreOutcome:
        deductions = [d for d in self.collect_deductions(results) if d.points > 0]

        score = 100 - sum(d.points for d in deductions)
        score = max(0, min(100, score))

        threat_level = threat_level_for_score(score)
        override = self._override_reason(results)
        if override and THREAT_ORDER.index(threat_level) < THREAT_ORDER.index(ThreatLevel.HIGH):
            logger.debug(f"[SCORE] Threat level raised from {threat_level.value} to high: {override}")
            threat_level = ThreatLevel.HIGH
        else:
            override = None

        return ScoreOutcome(
            score=score,
            threat_level=threat_level,
            deductions=deductions,
            override_applied=override,
        )

    def collect_deductions(self, results: ProbeResultSet) -> List[Deduction]:
        """Deductions from confirmed findings only; unavailable probes contribute nothing"""
        w = self.weights
        deductions: List[Deduction] = []

        malware = results.malware
        if malware is not None and malware.is_available:
            if malware.malware_status == MalwareStatus.INFECTED:
                deductions.append(Deduction("malware", "Malware infection detected", w.malware_infected))
            elif malware.malware_status == MalwareStatus.SUSPICIOUS:
                deductions.append(Deduction("malware", "Suspicious content detected", w.malware_suspicious))

        blacklist = results.blacklist
        if blacklist is not None and blacklist.is_available and blacklist.flagged_by:
            deductions.append(Deduction(
                "blacklist",
                f"Listed by {', '.join(sorted(blacklist.flagged_by))}",
                w.blacklisted,
            ))

        vulnerability = results.vulnerability
        if vulnerability is not None and vulnerability.is_available:
            beyond_first = max(0, vulnerability.total_vulnerabilities - 1)
            points = min(w.vulnerability_cap, beyond_first * w.per_vulnerability)
            deductions.append(Deduction(
                "vulnerability",
                f"{vulnerability.total_vulnerabilities} known vulnerabilities",
                points,
            ))

        web_trust = results.web_trust
        if web_trust is not None and web_trust.is_available:
            if not web_trust.ssl_enabled or not web_trust.certificate_valid:
                deductions.append(Deduction("web_trust", "No SSL or invalid certificate", w.no_ssl))

        hardening = results.hardening
        if hardening is not None and hardening.is_available:
            if not hardening.wp_version_hidden:
                deductions.append(Deduction("hardening", "WordPress version exposed", w.wp_version_exposed))
            if not hardening.login_attempts_limited:
                deductions.append(Deduction("hardening", "No login attempt limiting", w.login_unlimited))
            if not hardening.file_permissions_secure:
                deductions.append(Deduction("hardening", "Insecure file permissions", w.file_permissions))
            if not hardening.admin_user_secure:
                deductions.append(Deduction("hardening", "Insecure admin account", w.admin_insecure))

        headers = results.security_headers
        if headers is not None and headers.is_available:
            header_score = max(0, min(100, headers.header_score))
            deductions.append(Deduction(
                "security_headers",
                f"Security header score {header_score}/100",
                _round_half_up((100 - header_score) * w.header_factor),
            ))

        return deductions

    @staticmethod
    def _override_reason(results: ProbeResultSet) -> Optional[str]:
        malware = results.malware
        if malware is not None and malware.is_available and malware.malware_status == MalwareStatus.INFECTED:
            return "confirmed malware infection"

        blacklist = results.blacklist
        if blacklist is not None and blacklist.is_available and blacklist.flagged_by:
            return "blacklist listing"

        return None


def aggregate_score(results: ProbeResultSet, weights: Optional[ScoringWeights] = None) -> ScoreOutcome:
    """Convenience wrapper for one-off scoring"""
    return ScoreAggregator(weights).aggregate(results)
