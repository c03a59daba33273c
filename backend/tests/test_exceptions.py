"""
Tests for the exception hierarchy
"""

import warnings
from datetime import datetime, timedelta, timezone

from fleetguard.core.error_handling.exceptions import (
    ErrorCategory,
    ScanAlreadyRunningException,
    ServiceQuotaExceededException,
)


class TestFleetGuardExceptions:

    def test_timestamp_is_naive_utc_without_deprecation(self):
        with warnings.catch_warnings():
            warnings.simplefilter("error", DeprecationWarning)
            error = ScanAlreadyRunningException(7, retry_after=45)

        now = datetime.now(timezone.utc).replace(tzinfo=None)
        assert error.timestamp.tzinfo is None
        assert abs(now - error.timestamp) < timedelta(seconds=5)

    def test_quota_error_keeps_retry_after(self):
        error = ServiceQuotaExceededException("virustotal", retry_after=60)

        assert error.retry_after == 60
        assert error.category == ErrorCategory.RATE_LIMITING
