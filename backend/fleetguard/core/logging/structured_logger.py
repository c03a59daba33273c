"""
Structured Logging with Correlation IDs and scan context
"""

import json
import uuid
import logging
import traceback
from typing import Dict, Any, Optional, Iterator
from datetime import datetime
from dataclasses import dataclass, asdict
from contextlib import contextmanager
from contextvars import ContextVar

# Context variables for correlation tracking
correlation_id: ContextVar[Optional[str]] = ContextVar('correlation_id', default=None)
scan_id: ContextVar[Optional[str]] = ContextVar('scan_id', default=None)
website_id: ContextVar[Optional[str]] = ContextVar('website_id', default=None)


@dataclass
class LogContext:
    """Context information for structured logging"""
    correlation_id: Optional[str] = None
    scan_id: Optional[str] = None
    website_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary, excluding None values"""
        return {k: v for k, v in asdict(self).items() if v is not None}


class StructuredFormatter(logging.Formatter):
    """Formats log records as JSON lines enriched with the current context"""

    def format(self, record: logging.LogRecord) -> str:
        context = LogContext(
            correlation_id=correlation_id.get(),
            scan_id=scan_id.get(),
            website_id=website_id.get()
        )

        event = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "context": context.to_dict(),
        }

        metadata = getattr(record, 'metadata', None)
        if metadata:
            event["metadata"] = metadata

        error_details = self._extract_error_details(record)
        if error_details:
            event["error"] = error_details

        return json.dumps(event, default=str)

    def _extract_error_details(self, record: logging.LogRecord) -> Optional[Dict[str, Any]]:
        if record.exc_info:
            return {
                "exception_type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "exception_message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
                "module": record.module,
                "function": record.funcName,
                "line_number": record.lineno
            }
        return None


def configure_logging(level: str = "INFO", json_output: bool = True) -> None:
    """Install the structured (or plain) formatter on the root logger"""
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        ))

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(getattr(logging, level.upper(), logging.INFO))


def generate_correlation_id() -> str:
    """Generate a new correlation ID"""
    return str(uuid.uuid4())


def set_correlation_id(correlation_id_value: Optional[str]):
    """Set correlation ID for current context"""
    return correlation_id.set(correlation_id_value)


def reset_correlation_id(token) -> None:
    correlation_id.reset(token)


@contextmanager
def scan_context(scan_id_value: Any, website_id_value: Any) -> Iterator[None]:
    """Bind scan and website identifiers to every log line emitted inside the block"""
    scan_token = scan_id.set(str(scan_id_value))
    website_token = website_id.set(str(website_id_value))
    cid_token = None
    if not correlation_id.get():
        cid_token = correlation_id.set(generate_correlation_id())
    try:
        yield
    finally:
        scan_id.reset(scan_token)
        website_id.reset(website_token)
        if cid_token is not None:
            correlation_id.reset(cid_token)
