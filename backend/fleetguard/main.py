from contextlib import asynccontextmanager
from datetime import timedelta
import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from fleetguard.api.routes import scans
from fleetguard.config import settings
from fleetguard.core.error_handling.error_handler import register_exception_handlers
from fleetguard.core.logging.structured_logger import (
    configure_logging,
    generate_correlation_id,
    reset_correlation_id,
    set_correlation_id,
)
from fleetguard.core.probes.results import utcnow
from fleetguard.core.scanner.factory import build_coordinator
from fleetguard.database import connection_manager, get_db_health, init_db

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    configure_logging(settings.log_level, settings.log_json)
    init_db()

    if getattr(app.state, "coordinator", None) is None:
        app.state.coordinator = build_coordinator(settings, connection_manager)

    recovered = app.state.coordinator.repository.fail_stale_scans(
        timedelta(minutes=settings.stale_scan_minutes)
    )
    logger.info(f"[API] FleetGuard started ({settings.environment}); {recovered} stale scan(s) recovered")
    yield
    connection_manager.close()


app = FastAPI(
    title="FleetGuard Security Scanner",
    description="Composite security scanning and scoring for WordPress fleets",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.backend_cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def correlation_id_middleware(request: Request, call_next):
    correlation = request.headers.get("X-Correlation-ID") or generate_correlation_id()
    token = set_correlation_id(correlation)
    try:
        response = await call_next(request)
    finally:
        reset_correlation_id(token)
    response.headers["X-Correlation-ID"] = correlation
    return response


register_exception_handlers(app)

app.include_router(scans.router, prefix="/api/websites", tags=["security-scans"])


@app.get("/")
async def root():
    return {"message": "FleetGuard Security Scanner API", "status": "running"}


@app.get("/health")
async def health_check():
    database = get_db_health()
    return {
        "status": "healthy" if database.get("status") == "healthy" else "unhealthy",
        "database": database,
        "version": "1.0.0",
        "timestamp": utcnow().isoformat(),
    }
