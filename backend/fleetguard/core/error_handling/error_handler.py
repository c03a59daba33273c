"""
Maps FleetGuard exceptions onto HTTP responses
"""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from fleetguard.core.error_handling.exceptions import (
    DatabaseException,
    FleetGuardBaseException,
    ScanAlreadyRunningException,
    ScanNotFoundException,
    ScanRecordImmutableException,
    TargetNotFoundException,
    ValidationException,
)

logger = logging.getLogger(__name__)


def status_code_for(exc: FleetGuardBaseException) -> int:
    if isinstance(exc, (ScanAlreadyRunningException, ScanRecordImmutableException)):
        return 409
    if isinstance(exc, (TargetNotFoundException, ScanNotFoundException)):
        return 404
    if isinstance(exc, ValidationException):
        return 400
    if isinstance(exc, DatabaseException):
        return 503
    return 500


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(FleetGuardBaseException)
    async def fleetguard_exception_handler(request: Request, exc: FleetGuardBaseException):
        status_code = status_code_for(exc)
        if status_code >= 500:
            logger.error(f"[API] {request.method} {request.url.path} failed: {exc.message}", exc_info=exc)
        else:
            logger.info(f"[API] {request.method} {request.url.path} -> {status_code}: {exc.message}")

        body = exc.to_dict()
        if status_code >= 500:
            # Internal details stay in the logs
            body["message"] = exc.user_message

        headers = {}
        if exc.retry_after is not None:
            headers["Retry-After"] = str(exc.retry_after)
        return JSONResponse(status_code=status_code, content=body, headers=headers)

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        logger.error(f"[API] Unhandled error on {request.method} {request.url.path}", exc_info=exc)
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error occurred"}
        )
