"""
Malware / threat probe.

Combines up to three independent sources: the multi-engine URL reputation
service, signature checks over the homepage, and (when the management
credential exposes one) a scan of the file listing. Sources that fail are
reported through the result status; they never count as threats.
"""

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from fleetguard.clients.base import default_rate_limiter
from fleetguard.clients.management import FileEntry, ManagementClient
from fleetguard.clients.site import SiteFetcher, SiteResponse
from fleetguard.clients.virustotal import VirusTotalClient
from fleetguard.core.probes.base_probe import BaseProbe
from fleetguard.core.probes.results import MalwareResult, MalwareStatus, ProbeKind, ProbeStatus
from fleetguard.core.resilience.rate_limiter import RateLimiter
from fleetguard.core.target import ScanTarget

logger = logging.getLogger(__name__)

MAX_REPORTED_FILES = 10
MAX_REPORTED_FINDINGS = 20

CONTENT_SIGNATURES = [
    ("eval(base64_decode) chain", re.compile(r"eval\s*\(\s*base64_decode\s*\([^)]+\)\s*\)", re.I)),
    ("gzinflate(base64_decode) chain", re.compile(r"gzinflate\s*\(\s*base64_decode\s*\([^)]+\)\s*\)", re.I)),
    ("str_rot13(base64_decode) chain", re.compile(r"str_rot13\s*\(\s*base64_decode\s*\([^)]+\)\s*\)", re.I)),
    ("long base64 payload", re.compile(r"\$[a-zA-Z_]\w*\s*=\s*base64_decode\s*\(\s*[\"'][A-Za-z0-9+/=]{100,}[\"']\s*\)")),
    ("obfuscated document.write", re.compile(r"document\.write\s*\(\s*unescape\s*\(", re.I)),
    ("javascript: eval URL", re.compile(r"javascript:\s*(?:eval|unescape|document\.write)", re.I)),
    ("spam iframe", re.compile(r"<iframe[^>]*src=[\"'][^\"']*(?:pharmacy|casino|poker|loan|viagra)", re.I)),
    ("spam meta refresh", re.compile(r"<meta[^>]*http-equiv=[\"']refresh[\"'][^>]*url=[^>]*(?:pharmacy|casino|poker)", re.I)),
    ("script from abused TLD", re.compile(r"<script[^>]*src=[\"'][^\"']*\.(?:tk|ml|ga|cf)/[^\"']*[\"']", re.I)),
    ("stylesheet from abused TLD", re.compile(r"<link[^>]*href=[\"'][^\"']*\.(?:tk|ml|ga|cf)/[^\"']*[\"']", re.I)),
]

SUSPICIOUS_HEADERS = ("x-backdoor", "x-shell", "x-exploit")

KNOWN_SHELL_NAMES = {"wso.php", "c99.php", "r57.php", "shell.php", "alfa.php", "b374k.php", "adminer.php"}
RANDOM_PHP_NAME = re.compile(r"^(?=[a-z0-9]*\d)(?=[a-z0-9]*[a-z])[a-z0-9]{8,}\.php$", re.I)


@dataclass
class SourceFindings:
    source: str
    threats: int = 0
    findings: List[str] = field(default_factory=list)
    files: List[str] = field(default_factory=list)
    engines_detected: int = 0
    total_engines: int = 0


def scan_content(response: SiteResponse) -> SourceFindings:
    findings = SourceFindings(source="content")

    for label, pattern in CONTENT_SIGNATURES:
        matches = pattern.findall(response.body)
        if matches:
            findings.threats += len(matches)
            findings.findings.append(f"Malware signature '{label}': {len(matches)} instance(s) on {response.url}")

    for header in SUSPICIOUS_HEADERS:
        if response.header(header):
            findings.threats += 1
            findings.findings.append(f"Suspicious response header: {header}")

    return findings


def scan_file_listing(entries: List[FileEntry]) -> SourceFindings:
    findings = SourceFindings(source="files")

    for entry in entries:
        path = entry.path.replace("\\", "/").lstrip("/")
        filename = path.rsplit("/", 1)[-1].lower()
        if not filename.endswith(".php"):
            continue

        reason = None
        if "wp-content/uploads/" in path:
            reason = "PHP file in uploads directory"
        elif filename in KNOWN_SHELL_NAMES:
            reason = "known web shell name"
        elif (path.startswith("wp-admin/") or path.startswith("wp-includes/")) and RANDOM_PHP_NAME.match(filename):
            reason = "random-named PHP file in core directory"

        if reason:
            findings.threats += 1
            findings.findings.append(f"{path} ({reason})")
            findings.files.append(path)

    return findings


def classify(threats: int, engines_detected: int) -> MalwareStatus:
    if threats == 0 and engines_detected == 0:
        return MalwareStatus.CLEAN
    if threats >= 3 or engines_detected >= 2:
        return MalwareStatus.INFECTED
    return MalwareStatus.SUSPICIOUS


class MalwareProbe(BaseProbe):
    kind = ProbeKind.MALWARE
    result_type = MalwareResult

    def __init__(
        self,
        budget: float,
        fetcher: Optional[SiteFetcher] = None,
        reputation: Optional[VirusTotalClient] = None,
        management_factory: Callable[..., ManagementClient] = ManagementClient.for_target,
        rate_limiter: Optional[RateLimiter] = None,
    ):
        super().__init__(budget)
        self.fetcher = fetcher or SiteFetcher(timeout=budget)
        self.reputation = reputation
        self.management_factory = management_factory
        self.rate_limiter = rate_limiter or default_rate_limiter(f"management:{self.kind.value}")

    async def probe(self, target: ScanTarget) -> MalwareResult:
        sources = [self._content_source(target)]
        if self.reputation is not None:
            sources.append(self._reputation_source(target))
        if target.has_management_credential:
            sources.append(self._file_source(target))

        outcomes = await asyncio.gather(*sources, return_exceptions=True)

        answered = [o for o in outcomes if isinstance(o, SourceFindings)]
        failed = [o for o in outcomes if isinstance(o, BaseException)]
        for error in failed:
            logger.info(f"[PROBE:malware] Source failed: {type(error).__name__}: {error}")

        if not answered:
            return self.unavailable("; ".join(str(e) for e in failed) or "no malware source answered")

        threats = sum(f.threats for f in answered)
        engines_detected = sum(f.engines_detected for f in answered)
        total_engines = sum(f.total_engines for f in answered)
        files = [path for f in answered for path in f.files]
        reported = [item for f in answered for item in f.findings]

        return MalwareResult(
            status=ProbeStatus.DEGRADED if failed else ProbeStatus.OK,
            detail="; ".join(str(e) for e in failed) or None,
            malware_status=classify(threats, engines_detected),
            threats_detected=threats,
            infected_files=files[:MAX_REPORTED_FILES],
            findings=reported[:MAX_REPORTED_FINDINGS],
            engines_detected=engines_detected,
            total_engines=total_engines,
        )

    async def _content_source(self, target: ScanTarget) -> SourceFindings:
        response = await self.fetcher.fetch(target.base_url)
        return scan_content(response)

    async def _reputation_source(self, target: ScanTarget) -> SourceFindings:
        report = await self.reputation.url_report(target.base_url)
        if report is None:
            raise LookupError("URL report not ready")

        findings = SourceFindings(
            source="reputation",
            engines_detected=report.positives,
            total_engines=report.total,
        )
        if report.positives:
            findings.threats = report.positives
            findings.findings.append(f"{report.positives}/{report.total} engines flagged this URL")
        return findings

    async def _file_source(self, target: ScanTarget) -> SourceFindings:
        client = self.management_factory(target, rate_limiter=self.rate_limiter)
        return scan_file_listing(await client.get_file_listing())
