"""
Standardized Exception Classes for FleetGuard
"""

from typing import Optional, Dict, Any
from enum import Enum

from fleetguard.core.probes.results import utcnow


class ErrorCategory(Enum):
    """Categories of errors for classification and handling"""
    VALIDATION = "validation"
    BUSINESS_LOGIC = "business_logic"
    EXTERNAL_SERVICE = "external_service"
    AUTHENTICATION = "authentication"
    DATABASE = "database"
    RATE_LIMITING = "rate_limiting"
    TIMEOUT = "timeout"
    UNKNOWN = "unknown"


class ErrorSeverity(Enum):
    """Severity levels for errors"""
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class FleetGuardBaseException(Exception):
    """Base exception for all FleetGuard errors"""

    def __init__(
        self,
        message: str,
        category: ErrorCategory = ErrorCategory.UNKNOWN,
        severity: ErrorSeverity = ErrorSeverity.MEDIUM,
        error_code: Optional[str] = None,
        cause: Optional[Exception] = None,
        retry_after: Optional[int] = None,
        user_message: Optional[str] = None
    ):
        super().__init__(message)
        self.message = message
        self.category = category
        self.severity = severity
        self.error_code = error_code or self._generate_error_code()
        self.cause = cause
        self.retry_after = retry_after
        self.user_message = user_message or self._get_user_friendly_message()
        self.timestamp = utcnow()

    def _generate_error_code(self) -> str:
        """Generate error code based on exception class"""
        class_name = self.__class__.__name__
        return f"{self.category.value.upper()}_{class_name.upper().replace('EXCEPTION', '')}"

    def _get_user_friendly_message(self) -> str:
        user_messages = {
            ErrorCategory.VALIDATION: "The provided data is invalid. Please check your input.",
            ErrorCategory.EXTERNAL_SERVICE: "An external service is currently unavailable. Please try again later.",
            ErrorCategory.RATE_LIMITING: "Too many requests. Please wait before trying again.",
            ErrorCategory.TIMEOUT: "The operation timed out. Please try again.",
            ErrorCategory.DATABASE: "Scan storage is temporarily unavailable. Please try again later.",
        }
        return user_messages.get(self.category, self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for API responses"""
        return {
            "error": True,
            "error_code": self.error_code,
            "message": self.message,
            "user_message": self.user_message,
            "category": self.category.value,
            "severity": self.severity.value,
            "timestamp": self.timestamp.isoformat(),
            "retry_after": self.retry_after,
        }


# Validation Exceptions
class ValidationException(FleetGuardBaseException):
    """Data validation errors"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.VALIDATION,
            severity=ErrorSeverity.MEDIUM,
            **kwargs
        )


class InvalidTargetException(ValidationException):
    """Scan target cannot be scanned (malformed URL, unsupported scheme)"""

    def __init__(self, target: str, reason: str = "invalid URL", **kwargs):
        super().__init__(f"Invalid scan target '{target}': {reason}", **kwargs)
        self.target = target


# Business Logic Exceptions
class BusinessLogicException(FleetGuardBaseException):
    """Business logic violation errors"""

    def __init__(self, message: str, **kwargs):
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        super().__init__(
            message,
            category=ErrorCategory.BUSINESS_LOGIC,
            **kwargs
        )


class ScanAlreadyRunningException(BusinessLogicException):
    """A scan is already in flight for this website"""

    def __init__(self, website_id: int, retry_after: int = 30, **kwargs):
        message = f"A security scan is already in progress for website {website_id}"
        super().__init__(
            message,
            retry_after=retry_after,
            user_message=message,
            **kwargs
        )
        self.website_id = website_id


class TargetNotFoundException(BusinessLogicException):
    """Website is unknown to the registry"""

    def __init__(self, website_id: int, **kwargs):
        message = f"Website with ID '{website_id}' not found"
        super().__init__(message, user_message=message, **kwargs)
        self.website_id = website_id


class ScanNotFoundException(BusinessLogicException):
    """Scan not found"""

    def __init__(self, website_id: int, scan_id: Optional[int] = None, **kwargs):
        if scan_id is None:
            message = f"No completed security scans found for website {website_id}"
        else:
            message = f"Scan with ID '{scan_id}' not found for website {website_id}"
        super().__init__(message, user_message=message, **kwargs)
        self.website_id = website_id
        self.scan_id = scan_id


# Database Exceptions
class DatabaseException(FleetGuardBaseException):
    """Database related errors"""

    def __init__(self, message: str, **kwargs):
        super().__init__(
            message,
            category=ErrorCategory.DATABASE,
            severity=ErrorSeverity.HIGH,
            **kwargs
        )


class ScanRecordImmutableException(DatabaseException):
    """Attempt to modify a scan record that already reached a terminal status"""

    def __init__(self, scan_id: int, status: str, **kwargs):
        message = f"Scan {scan_id} is {status} and can no longer be modified"
        super().__init__(message, user_message=message, **kwargs)
        self.scan_id = scan_id
        self.status = status


# External Service Exceptions (never leave a probe)
class ExternalServiceException(FleetGuardBaseException):
    """External service errors"""

    def __init__(self, service_name: str, message: str, **kwargs):
        kwargs.setdefault("category", ErrorCategory.EXTERNAL_SERVICE)
        kwargs.setdefault("severity", ErrorSeverity.MEDIUM)
        super().__init__(f"{service_name}: {message}", **kwargs)
        self.service_name = service_name


class ServiceQuotaExceededException(ExternalServiceException):
    """Upstream returned 429 or an equivalent quota signal"""

    def __init__(self, service_name: str, retry_after: Optional[int] = None, **kwargs):
        super().__init__(
            service_name,
            "quota exceeded",
            category=ErrorCategory.RATE_LIMITING,
            retry_after=retry_after,
            **kwargs
        )


class CredentialRejectedException(ExternalServiceException):
    """Management credential was refused by the site"""

    def __init__(self, service_name: str, status_code: int, **kwargs):
        super().__init__(
            service_name,
            f"credential rejected (HTTP {status_code})",
            category=ErrorCategory.AUTHENTICATION,
            **kwargs
        )
        self.status_code = status_code


class MalformedResponseException(ExternalServiceException):
    """Upstream answered with something we cannot parse"""

    def __init__(self, service_name: str, detail: str = "unexpected response format", **kwargs):
        super().__init__(service_name, detail, **kwargs)


# Rate Limiting Exceptions
class RateLimitExceededException(FleetGuardBaseException):
    """Outbound request budget for an external client is exhausted"""

    def __init__(self, service_name: str, retry_after: int = 60, **kwargs):
        super().__init__(
            f"Rate limit exceeded for {service_name}",
            category=ErrorCategory.RATE_LIMITING,
            severity=ErrorSeverity.LOW,
            retry_after=retry_after,
            **kwargs
        )
        self.service_name = service_name
