"""Order endpoints."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .deps.context import get_actor, get_orders
from .schemas import CancelRequest, OrderCreate, StatusUpdate
from .services import Actor
from .services.orders import OrderService
from .utils.responses import ok

router = APIRouter()


@router.post("/api/orders", status_code=status.HTTP_201_CREATED)
async def create_order(
    body: OrderCreate,
    orders: OrderService = Depends(get_orders),
    actor: Actor = Depends(get_actor),
) -> dict:
    """Create an order, decrement stock and occupy the table atomically."""

    return ok(await orders.create_order(body, actor))


@router.get("/api/orders")
async def list_orders(
    status_: Optional[str] = Query(None, alias="status"),
    table_id: Optional[int] = Query(None, alias="tableId"),
    orders: OrderService = Depends(get_orders),
) -> dict:
    return ok(await orders.list_orders(status_, table_id))


@router.get("/api/orders/{order_id}")
async def get_order(order_id: int, orders: OrderService = Depends(get_orders)) -> dict:
    return ok(await orders.get_order(order_id))


@router.put("/api/orders/{order_id}/status")
async def update_status(
    order_id: int,
    body: StatusUpdate,
    orders: OrderService = Depends(get_orders),
    actor: Actor = Depends(get_actor),
) -> dict:
    return ok(await orders.update_order_status(order_id, body.status, body.served_by, actor))


@router.post("/api/orders/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    body: Optional[CancelRequest] = None,
    orders: OrderService = Depends(get_orders),
    actor: Actor = Depends(get_actor),
) -> dict:
    """Cancel an order and restore the stock it consumed."""

    body = body or CancelRequest()
    return ok(await orders.cancel_order(order_id, body.reason, actor))
