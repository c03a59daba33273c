from sqlalchemy import Column, Integer, String, DateTime, Text, JSON, ForeignKey, Index
from fleetguard.core.probes.results import utcnow
from fleetguard.database import Base
from enum import Enum


class ScanStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (ScanStatus.COMPLETED, ScanStatus.FAILED)


class ScanTrigger(str, Enum):
    MANUAL = "manual"
    SCHEDULED = "scheduled"


class SecurityScan(Base):
    __tablename__ = "security_scan_history"

    id = Column(Integer, primary_key=True, index=True)
    website_id = Column(Integer, ForeignKey("websites.id"), nullable=False, index=True)
    scan_status = Column(String(20), default=ScanStatus.PENDING.value, nullable=False)
    scan_trigger = Column(String(20), default=ScanTrigger.MANUAL.value, nullable=False)

    # Timing
    scan_started_at = Column(DateTime, nullable=False)
    scan_completed_at = Column(DateTime)
    scan_duration_ms = Column(Integer)

    # Probe results, one JSON document each; NULL means the probe never returned
    malware_result = Column(JSON)
    blacklist_result = Column(JSON)
    vulnerability_result = Column(JSON)
    security_headers_result = Column(JSON)
    web_trust_result = Column(JSON)
    hardening_result = Column(JSON)

    # Scoring
    overall_security_score = Column(Integer)
    threat_level = Column(String(20))
    threats_detected = Column(Integer, default=0)
    score_deductions = Column(JSON)

    error_message = Column(Text)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index("ix_security_scan_history_website_started", "website_id", "scan_started_at"),
    )

    @property
    def status(self) -> ScanStatus:
        return ScanStatus(self.scan_status)
