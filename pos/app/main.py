# main.py

"""FastAPI application for the POS core.

:func:`create_app` wires the engine, event bus, audit log, services,
broadcaster and scheduler inside the application lifespan and stores them on
``app.state``; routes resolve them from there through :mod:`pos.app.deps.context`.
"""

from __future__ import annotations

import logging
import os
from contextlib import asynccontextmanager

import redis.asyncio as redis
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config import Settings, get_settings

from .audit import AuditLog
from .db import create_engine, create_sessionmaker, init_models
from .domain import PosError
from .events import EventBus
from .hooks.redis_relay import make_relay
from .integrity import IntegrityChecker
from .middlewares import LoggingMiddleware, PrometheusMiddleware, RequestIdMiddleware
from .obs import capture_exception, init_sentry
from .obs.logging import configure_logging
from .realtime import Broadcaster
from .routes_audit import router as audit_router
from .routes_backup import router as backup_router
from .routes_inventory import router as inventory_router
from .routes_metrics import router as metrics_router
from .routes_orders import router as orders_router
from .routes_products import router as products_router
from .routes_reservations import router as reservations_router
from .routes_sync import router as sync_router
from .routes_tables import router as tables_router
from .routes_ws import router as ws_router
from .services.backup import BackupService
from .services.catalog import CatalogService
from .services.inventory import InventoryService
from .services.orders import OrderService
from .services.scheduler import build_scheduler
from .services.sync import SyncService
from .services.tables import TableService
from .utils.responses import err, ok

logger = logging.getLogger("api")


def _lifespan(settings: Settings):
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        configure_logging(getattr(logging, settings.log_level.upper(), logging.INFO))
        init_sentry(env=os.getenv("ENV"))

        engine = create_engine(settings.database_url)
        await init_models(engine)
        sessionmaker = create_sessionmaker(engine)

        bus = EventBus()
        audit = AuditLog(sessionmaker)
        audit.start()

        inventory = InventoryService(sessionmaker, bus, audit, settings)
        sync = SyncService(sessionmaker)
        redis_client = (
            redis.from_url(settings.redis_url, decode_responses=True)
            if settings.redis_url
            else None
        )
        broadcaster = Broadcaster(
            bus,
            metrics_provider=sync.dashboard_metrics,
            relay=make_relay(redis_client) if redis_client is not None else None,
        )
        integrity = IntegrityChecker(sessionmaker, audit)
        backups = BackupService(
            engine, sessionmaker, audit, settings.backup_dir, settings.max_backups
        )

        state = app.state
        state.settings = settings
        state.engine = engine
        state.sessionmaker = sessionmaker
        state.bus = bus
        state.audit = audit
        state.inventory = inventory
        state.catalog = CatalogService(sessionmaker, bus, audit, inventory)
        state.orders = OrderService(sessionmaker, bus, audit, inventory)
        state.tables = TableService(sessionmaker, bus, audit)
        state.sync = sync
        state.broadcaster = broadcaster
        state.integrity = integrity
        state.backups = backups
        state.redis = redis_client
        state.scheduler = build_scheduler(settings, integrity, backups, audit)
        if settings.scheduler_enabled:
            state.scheduler.start()
        logger.info("pos core started db=%s", engine.url.render_as_string(hide_password=True))

        try:
            yield
        finally:
            await state.scheduler.stop()
            await broadcaster.close()
            await audit.close()
            bus.close()
            if redis_client is not None:
                await redis_client.aclose()
            await engine.dispose()
            logger.info("pos core stopped")

    return lifespan


def create_app(settings: Settings | None = None) -> FastAPI:
    settings = settings or get_settings()
    app = FastAPI(title="POS Core API", version="1.0.0", lifespan=_lifespan(settings))

    app.add_middleware(PrometheusMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(RequestIdMiddleware)

    @app.exception_handler(PosError)
    async def pos_error_handler(request: Request, exc: PosError):
        logger.warning(
            exc.message,
            extra={"status": exc.status_code, "route": request.url.path},
        )
        return JSONResponse(
            err(exc.status_code, exc.message, exc.details or None),
            status_code=exc.status_code,
        )

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            err(400, "Invalid request", {"errors": jsonable_errors(exc)}),
            status_code=400,
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_error_handler(request: Request, exc: StarletteHTTPException):
        logger.warning(
            exc.detail,
            extra={"status": exc.status_code, "route": request.url.path},
        )
        return JSONResponse(err(exc.status_code, exc.detail), status_code=exc.status_code)

    @app.exception_handler(Exception)
    async def general_error_handler(request: Request, exc: Exception):
        logger.exception(
            "unhandled_error",
            extra={"status": 500, "route": request.url.path},
        )
        capture_exception(exc)
        return JSONResponse(err(500, "Internal Server Error"), status_code=500)

    @app.get("/health")
    async def health() -> dict:
        return ok({"status": "ok"})

    for router in (
        orders_router,
        inventory_router,
        products_router,
        tables_router,
        reservations_router,
        sync_router,
        audit_router,
        backup_router,
        ws_router,
        metrics_router,
    ):
        app.include_router(router)
    return app


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(e.get("loc", ())), "msg": e.get("msg"), "type": e.get("type")}
        for e in exc.errors()
    ]


app = create_app()
