"""
Builds the production probe set and coordinator from settings
"""

import logging
from typing import List, Optional

from fleetguard.clients.reputation import DnsBlacklistService, DomainHeuristicService, SafeBrowsingClient
from fleetguard.clients.registry import SqlWebsiteRegistry, WebsiteRegistry
from fleetguard.clients.virustotal import VirusTotalClient
from fleetguard.clients.wpscan import WPScanClient
from fleetguard.config import Settings
from fleetguard.core.aggregator.score_aggregator import ScoreAggregator, ScoringWeights
from fleetguard.core.database.connection_manager import DatabaseConnectionManager
from fleetguard.core.probes.base_probe import BaseProbe
from fleetguard.core.probes.blacklist import BlacklistProbe
from fleetguard.core.probes.hardening import HardeningProbe
from fleetguard.core.probes.malware import MalwareProbe
from fleetguard.core.probes.security_headers import SecurityHeadersProbe
from fleetguard.core.probes.vulnerability import VulnerabilityProbe
from fleetguard.core.probes.web_trust import WebTrustProbe
from fleetguard.core.repository.scan_repository import ScanRepository
from fleetguard.core.scanner.coordinator import ScanCoordinator

logger = logging.getLogger(__name__)


def build_probes(settings: Settings) -> List[BaseProbe]:
    """One fresh probe set; every external client gets its own rate limiter"""
    service_timeout = settings.blacklist_service_timeout

    blacklist_services = [DomainHeuristicService()]
    blacklist_services.extend(
        DnsBlacklistService(zone, timeout=service_timeout) for zone in settings.dnsbl_zones
    )

    trust_services = []
    if settings.google_safe_browsing_api_key:
        trust_services.append(SafeBrowsingClient(settings.google_safe_browsing_api_key, timeout=service_timeout))
        blacklist_services.append(SafeBrowsingClient(settings.google_safe_browsing_api_key, timeout=service_timeout))
    else:
        logger.info("[SCAN] Google Safe Browsing key not configured; reputation listings skipped")

    virustotal = None
    if settings.virustotal_api_key:
        virustotal = VirusTotalClient(settings.virustotal_api_key)
    else:
        logger.info("[SCAN] VirusTotal key not configured; malware probe uses local heuristics only")

    wpscan = None
    if settings.wpscan_api_key:
        wpscan = WPScanClient(settings.wpscan_api_key)
    else:
        logger.info("[SCAN] WPScan token not configured; vulnerability probe uses pending updates only")

    return [
        MalwareProbe(settings.malware_probe_timeout, reputation=virustotal),
        BlacklistProbe(settings.blacklist_probe_timeout, blacklist_services, service_timeout=service_timeout),
        VulnerabilityProbe(settings.vulnerability_probe_timeout, reference=wpscan),
        SecurityHeadersProbe(settings.security_headers_probe_timeout),
        WebTrustProbe(settings.web_trust_probe_timeout, services=trust_services, service_timeout=service_timeout),
        HardeningProbe(settings.hardening_probe_timeout),
    ]


def build_coordinator(
    settings: Settings,
    connection_manager: DatabaseConnectionManager,
    registry: Optional[WebsiteRegistry] = None,
) -> ScanCoordinator:
    return ScanCoordinator(
        registry=registry or SqlWebsiteRegistry(connection_manager),
        repository=ScanRepository(connection_manager),
        probes=build_probes(settings),
        aggregator=ScoreAggregator(ScoringWeights.from_settings(settings)),
        deadline_overhead=settings.scan_deadline_overhead,
        retry_interval=settings.scan_retry_interval_seconds,
    )
