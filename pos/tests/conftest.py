import pathlib
import sys
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

sys.path.append(str(pathlib.Path(__file__).resolve().parents[2]))

from config import Settings
from pos.app.audit import AuditLog
from pos.app.db import create_engine, create_sessionmaker, init_models
from pos.app.events import EventBus
from pos.app.integrity import IntegrityChecker
from pos.app.main import create_app
from pos.app.middlewares import realtime_guard
from pos.app.services.backup import BackupService
from pos.app.services.catalog import CatalogService
from pos.app.services.inventory import InventoryService
from pos.app.services.orders import OrderService
from pos.app.services.sync import SyncService
from pos.app.services.tables import TableService


@pytest.fixture
def anyio_backend() -> str:
    return "asyncio"


@pytest.fixture
def settings(tmp_path) -> Settings:
    # file-backed: every connection must see the same database
    return Settings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'pos.db'}",
        backup_dir=str(tmp_path / "backups"),
        redis_url=None,
        scheduler_enabled=False,
        low_stock_alerts=True,
        max_backups=30,
        max_conn_per_ip=20,
    )


@pytest.fixture
async def core(settings):
    """Wired services over a fresh database; the audit log writes inline."""

    engine = create_engine(settings.database_url)
    await init_models(engine)
    sessionmaker = create_sessionmaker(engine)
    bus = EventBus()
    audit = AuditLog(sessionmaker)
    inventory = InventoryService(sessionmaker, bus, audit, settings)
    ns = SimpleNamespace(
        engine=engine,
        sessionmaker=sessionmaker,
        bus=bus,
        audit=audit,
        inventory=inventory,
        catalog=CatalogService(sessionmaker, bus, audit, inventory),
        orders=OrderService(sessionmaker, bus, audit, inventory),
        tables=TableService(sessionmaker, bus, audit),
        sync=SyncService(sessionmaker),
        integrity=IntegrityChecker(sessionmaker, audit),
        backups=BackupService(
            engine, sessionmaker, audit, settings.backup_dir, settings.max_backups
        ),
    )
    try:
        yield ns
    finally:
        await engine.dispose()


@pytest.fixture
def events(core):
    """Record every published event as ``(name, payload)``."""

    seen = []
    core.bus.subscribe_all(lambda name, payload: seen.append((name, payload)))
    return seen



@pytest.fixture
def client(settings):
    """HTTP and WebSocket client over a fully wired application."""

    app = create_app(settings)
    with TestClient(app) as client:
        yield client
    realtime_guard.connections.clear()
