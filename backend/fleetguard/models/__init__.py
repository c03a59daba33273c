from .scan import SecurityScan, ScanStatus, ScanTrigger
from .website import Website

__all__ = ["SecurityScan", "ScanStatus", "ScanTrigger", "Website"]
