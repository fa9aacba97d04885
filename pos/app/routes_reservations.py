from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .deps.context import get_actor, get_tables
from .schemas import ReservationCreate, ReservationStatusUpdate
from .services import Actor
from .services.tables import TableService
from .utils.responses import ok

router = APIRouter()


@router.post("/api/reservations", status_code=status.HTTP_201_CREATED)
async def create_reservation(
    body: ReservationCreate,
    tables: TableService = Depends(get_tables),
    actor: Actor = Depends(get_actor),
) -> dict:
    return ok(await tables.create_reservation(body, actor))


@router.get("/api/reservations")
async def list_reservations(
    date: Optional[str] = None,
    table_id: Optional[int] = Query(None, alias="tableId"),
    status_: Optional[str] = Query(None, alias="status"),
    tables: TableService = Depends(get_tables),
) -> dict:
    return ok(await tables.list_reservations(date, table_id, status_))


@router.put("/api/reservations/{reservation_id}/status")
async def update_reservation_status(
    reservation_id: int,
    body: ReservationStatusUpdate,
    tables: TableService = Depends(get_tables),
    actor: Actor = Depends(get_actor),
) -> dict:
    return ok(await tables.update_reservation_status(reservation_id, body.status, actor))
