"""
FastAPI backend for the Mailboard multi-account dashboard.

On startup the app loads accounts.yaml, connects every enabled account and
keeps the MultiAccountManager/DeletionCoordinator on app.state for the
route handlers. Run with:

    uvicorn mailboard.api.main:app --port 8000
"""
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from mailboard.api.routes import accounts, audit, emails, insights, stats
from mailboard.api.schemas import HealthResponse
from mailboard.core.accounts.multi_account import MultiAccountManager
from mailboard.core.accounts.registry import AccountRegistry
from mailboard.core.config import get_settings
from mailboard.core.deletion.audit import AuditLog
from mailboard.core.deletion.coordinator import DeletionCoordinator

logger = logging.getLogger(__name__)
error_logger = logging.getLogger("mailboard.api.errors")

API_VERSION = "1.0.0"


def build_services(registry: Optional[AccountRegistry] = None):
    """Create the manager/coordinator pair from configuration."""
    settings = get_settings()
    registry = registry or AccountRegistry()
    manager = MultiAccountManager(registry, settings=settings)
    coordinator = DeletionCoordinator(manager, AuditLog(settings.audit_log_path))
    return manager, coordinator


@asynccontextmanager
async def lifespan(app: FastAPI):
    if getattr(app.state, "manager", None) is None:
        manager, coordinator = build_services()
        app.state.manager = manager
        app.state.coordinator = coordinator
    results = await app.state.manager.initialize_all_accounts()
    failed = [account_id for account_id, result in results.items() if not result.ok]
    if failed:
        logger.warning(f"Accounts failed to connect at startup: {', '.join(failed)}")
    logger.info(f"✅ Mailboard API ready ({len(results) - len(failed)}/{len(results)} accounts connected)")
    try:
        yield
    finally:
        await app.state.manager.close()
        logger.info("Disconnected all accounts")


def create_app(manager: Optional[MultiAccountManager] = None,
               coordinator: Optional[DeletionCoordinator] = None) -> FastAPI:
    settings = get_settings()
    app = FastAPI(
        title="Mailboard API",
        description="Unified Gmail/Yahoo/AOL inbox dashboard",
        version=API_VERSION,
        lifespan=lifespan,
    )
    app.state.manager = manager
    app.state.coordinator = coordinator

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
    )

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Log unexpected errors with an id; return a generic message."""
        error_id = str(uuid.uuid4())
        error_logger.error(
            f"Error {error_id}: {type(exc).__name__}: {exc}",
            exc_info=True,
            extra={"error_id": error_id, "path": request.url.path, "method": request.method},
        )
        return JSONResponse(
            status_code=500,
            content={"detail": "An internal error occurred", "error_id": error_id},
        )

    @app.get("/api/health", response_model=HealthResponse)
    async def health_check(request: Request):
        """Health check endpoint (no auth required)."""
        manager = request.app.state.manager
        if manager is None:
            return HealthResponse(status="starting", accounts_configured=0, accounts_connected=0)
        summaries = manager.get_account_summary()
        connected = sum(1 for s in summaries if s.status.value == "connected")
        enabled = sum(1 for s in summaries if s.status.value != "disabled")
        return HealthResponse(
            status="healthy" if connected == enabled else "degraded",
            accounts_configured=len(summaries),
            accounts_connected=connected,
        )

    app.include_router(accounts.router)
    app.include_router(stats.router)
    app.include_router(emails.router)
    app.include_router(audit.router)
    app.include_router(insights.router)
    return app


def run():
    """Console entry point: configure logging and serve the API."""
    import uvicorn

    settings = get_settings()
    logging.basicConfig(level=settings.log_level, format=settings.log_format)
    uvicorn.run("mailboard.api.main:app", host="127.0.0.1", port=settings.api_port)


app = create_app()
