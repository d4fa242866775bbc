"""FastAPI server for ERP integration and FIRS compliance.

Main entry point for the API server.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from api.deps import BackendFactory, ServiceRegistry
from api.routes import compliance, connections, health, providers, sync
from backend.http_client import HttpPlatformBackend
from core.audit.events import AuditLogger, JSONFileAuditBackend
from core.config import get_settings
from core.errors import (
    BackendError,
    ComplianceError,
    ComplianceGuardError,
    ConnectionTestError,
    DuplicateSubmissionError,
    NotFoundError,
    PendingJobsError,
    PermissionDenied,
    PlatformError,
    ProviderStateError,
    StateRegressionError,
    ValidationError,
)
from core.observability.logging import configure_logging, get_logger

logger = get_logger(__name__)

# Most specific first
ERROR_STATUS = [
    (ValidationError, 422),
    (ComplianceError, 422),
    (ConnectionTestError, 422),
    (PermissionDenied, 403),
    (NotFoundError, 404),
    (ComplianceGuardError, 409),
    (DuplicateSubmissionError, 409),
    (PendingJobsError, 409),
    (ProviderStateError, 409),
    (StateRegressionError, 409),
    (BackendError, 502),
]


def status_for(error: PlatformError) -> int:
    for error_type, status in ERROR_STATUS:
        if isinstance(error, error_type):
            return status
    return 500


async def platform_error_handler(request: Request, exc: PlatformError) -> JSONResponse:
    status = status_for(exc)
    if status >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc.message}")
    return JSONResponse(status_code=status, content=exc.to_dict())


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    logger.info("ERP integration API starting up...")

    yield

    await app.state.registry.close()
    logger.info("ERP integration API shutting down...")


def create_app(backend_factory: Optional[BackendFactory] = None,
               audit: Optional[AuditLogger] = None) -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()
    configure_logging(level=settings.log_level_value, json_format=settings.log_json)

    if audit is None:
        audit = AuditLogger()
        if settings.audit_log_dir:
            audit.add_backend(JSONFileAuditBackend(settings.audit_log_dir))

    app = FastAPI(
        title="ERP Integration API",
        description="ERP connection profiles, dependency-ordered sync and FIRS e-invoice compliance",
        version="1.0.0",
        lifespan=lifespan,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
    )
    app.state.registry = ServiceRegistry(
        backend_factory or HttpPlatformBackend.from_settings,
        audit=audit,
        poll_interval=settings.sync_poll_interval_seconds,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],  # Configure for production
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.add_exception_handler(PlatformError, platform_error_handler)

    # Include routers
    app.include_router(health.router, tags=["Health"])
    app.include_router(connections.router, prefix="/settings/erp", tags=["ERP Connections"])
    app.include_router(sync.router, prefix="/settings/erp", tags=["Sync"])
    app.include_router(compliance.router, prefix="/invoices", tags=["FIRS Compliance"])
    app.include_router(providers.router, prefix="/settings/access-point-providers", tags=["Access-Point Providers"])

    return app


if __name__ == "__main__":
    import uvicorn
    uvicorn.run("api.server:create_app", factory=True, host="0.0.0.0", port=8000, reload=True)
