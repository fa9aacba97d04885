"""Inventory ledger endpoints.

Fixed paths are declared before ``/api/inventory/{product_id}`` so they are
not captured by it.
"""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .deps.context import get_actor, get_inventory
from .schemas import BulkAdjustRequest, StockAdjustment
from .services import Actor
from .services.inventory import InventoryService
from .utils.responses import ok

router = APIRouter()


@router.get("/api/inventory/low-stock")
async def low_stock(inventory: InventoryService = Depends(get_inventory)) -> dict:
    return ok(await inventory.low_stock())


@router.get("/api/inventory/movements")
async def movements(
    product_id: Optional[int] = Query(None, alias="productId"),
    reference_type: Optional[str] = Query(None, alias="referenceType"),
    limit: int = Query(200, ge=1, le=1000),
    inventory: InventoryService = Depends(get_inventory),
) -> dict:
    return ok(await inventory.movements(product_id, reference_type, limit))


@router.post("/api/inventory/bulk-adjust")
async def bulk_adjust(
    body: BulkAdjustRequest,
    inventory: InventoryService = Depends(get_inventory),
    actor: Actor = Depends(get_actor),
) -> dict:
    """Apply every adjustment or none of them."""

    return ok(await inventory.bulk_adjust(body.adjustments, actor))


@router.get("/api/inventory/{product_id}")
async def get_inventory_row(
    product_id: int, inventory: InventoryService = Depends(get_inventory)
) -> dict:
    return ok(await inventory.get_inventory(product_id))


@router.post("/api/inventory/{product_id}/adjust")
async def adjust(
    product_id: int,
    body: StockAdjustment,
    inventory: InventoryService = Depends(get_inventory),
    actor: Actor = Depends(get_actor),
) -> dict:
    return ok(await inventory.adjust_stock(product_id, body, actor))
