from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware

from .config import settings
from .logging import setup_logging, RequestIdMiddleware
from .rate_limit import limiter
from .routes.collections import router as collections_router
from .routes.data import router as data_router
from .routes.estimates import public_router as public_estimates_router
from .routes.estimates import router as estimates_router
from .routes.jobs import router as jobs_router
from .routes.sync import router as sync_router
from .services.sync_manager import SyncManager, build_sync_manager
from .storage.local_provider import LocalStateStorage
from .store.local_store import LocalStore


logger = structlog.get_logger(__name__)


def create_app(
    store: Optional[LocalStore] = None,
    sync_manager: Optional[SyncManager] = None,
    enable_metrics: Optional[bool] = None,
) -> FastAPI:
    setup_logging()
    app = FastAPI(title=settings.app_name)

    # Built lazily on startup unless injected
    app.state.store = store
    app.state.sync_manager = sync_manager

    # Middlewares
    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)
    app.add_middleware(SlowAPIMiddleware)

    # Routers
    app.include_router(jobs_router)
    app.include_router(estimates_router)
    app.include_router(public_estimates_router)
    app.include_router(collections_router)
    app.include_router(sync_router)
    app.include_router(data_router)

    # Metrics
    if enable_metrics is None:
        enable_metrics = settings.enable_metrics
    if enable_metrics:
        Instrumentator().instrument(app).expose(app)

    @app.get("/health")
    def health():
        manager = app.state.sync_manager
        return {
            "status": "ok",
            "sync": manager.get_status().state if manager is not None else None,
        }

    @app.on_event("startup")
    async def _startup():
        if app.state.store is None:
            app.state.store = LocalStore.load(LocalStateStorage())
        if app.state.sync_manager is None:
            app.state.sync_manager = build_sync_manager(app.state.store)
        if settings.sync_on_startup:
            result = await app.state.sync_manager.initialize()
            logger.info("startup_sync", success=result.success, message=result.message)

    @app.on_event("shutdown")
    async def _shutdown():
        manager = app.state.sync_manager
        if manager is not None:
            await manager.cleanup()
            manager.gateways.backend.dispose()

    return app


app = create_app()
