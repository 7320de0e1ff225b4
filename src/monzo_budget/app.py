import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from monzo_budget.api.routes import bills, budget, debts, settings as settings_routes, sync
from monzo_budget.core import settings
from monzo_budget.core.errors import (
    AuthenticationError,
    InvalidConfigError,
    RecordNotFoundError,
    RemoteAPIError,
    SyncError,
)
from monzo_budget.integration.monzo import MonzoClient
from monzo_budget.logger import get_logger, setup_logging
from monzo_budget.services.bills import BillService
from monzo_budget.services.debt_processing import DebtProcessor
from monzo_budget.services.preferences import PreferencesService
from monzo_budget.services.sync import SyncEngine
from monzo_budget.services.sync_state import SyncState
from monzo_budget.storage.store import Database, KeyValueStore

logger = get_logger(__name__)


def _register_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AuthenticationError)
    async def handle_auth_error(request: Request, exc: AuthenticationError) -> JSONResponse:
        logger.warning("[API] %s %s: authentication failed", request.method, request.url.path)
        return JSONResponse(
            status_code=401,
            content={"detail": f"{exc}. Please re-authenticate with Monzo.", "reauthenticate": True},
        )

    @app.exception_handler(InvalidConfigError)
    async def handle_config_error(request: Request, exc: InvalidConfigError) -> JSONResponse:
        return JSONResponse(status_code=422, content={"detail": str(exc)})

    @app.exception_handler(RecordNotFoundError)
    async def handle_not_found(request: Request, exc: RecordNotFoundError) -> JSONResponse:
        return JSONResponse(status_code=404, content={"detail": str(exc)})

    @app.exception_handler(SyncError)
    @app.exception_handler(RemoteAPIError)
    async def handle_upstream_error(request: Request, exc: Exception) -> JSONResponse:
        logger.error("[API] %s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=502, content={"detail": str(exc)})


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        if not os.getenv("MONZO_TOKEN"):
            logger.warning("MONZO_TOKEN not set. Syncing will fail until a token is supplied via /api/token.")

        db = Database(data_dir=settings.DATA_DIR)
        kv = KeyValueStore(os.path.join(settings.DATA_DIR, "sync_state.json"))
        monzo = MonzoClient(base_url=settings.MONZO_API_URL)
        sync_engine = SyncEngine(
            monzo,
            db,
            SyncState(kv),
            max_retries=settings.SYNC_MAX_RETRIES,
            backoff_seconds=settings.SYNC_BACKOFF_SECONDS,
            page_limit=settings.SYNC_PAGE_LIMIT,
            metrics_cap=settings.SYNC_METRICS_CAP,
            recent_pull_minutes=settings.SYNC_RECENT_PULL_MINUTES,
        )

        app.state.db = db
        app.state.monzo = monzo
        app.state.sync_engine = sync_engine
        app.state.preferences = PreferencesService(db)
        app.state.debt_processor = DebtProcessor(db)
        app.state.bill_service = BillService(db)

        logger.info("Services initialized.")
        yield
        await kv.flush()
        await monzo.aclose()
        logger.info("Service shutting down.")

    app = FastAPI(title="Monzo Budget", lifespan=lifespan)
    _register_error_handlers(app)

    app.include_router(sync.router)
    app.include_router(settings_routes.router)
    app.include_router(budget.router)
    app.include_router(debts.router)
    app.include_router(bills.router)

    return app


app = create_app()
