"""Full-state pull endpoints used by clients after (re)connecting."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from .deps.context import get_sync
from .services.sync import SyncService
from .utils.responses import ok

router = APIRouter()


@router.get("/api/sync/inventory")
async def sync_inventory(sync: SyncService = Depends(get_sync)) -> dict:
    return ok(await sync.inventory_snapshot())


@router.get("/api/sync/tables")
async def sync_tables(sync: SyncService = Depends(get_sync)) -> dict:
    return ok(await sync.tables_snapshot())


@router.get("/api/sync/orders")
async def sync_orders(sync: SyncService = Depends(get_sync)) -> dict:
    return ok(await sync.orders_snapshot())


@router.get("/api/dashboard/metrics")
async def dashboard_metrics(sync: SyncService = Depends(get_sync)) -> dict:
    return ok(await sync.dashboard_metrics())
