"""Dining table endpoints."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from .deps.context import get_actor, get_tables
from .schemas import TableCreate, TableStatusUpdate
from .services import Actor
from .services.tables import TableService
from .utils.responses import ok

router = APIRouter()


@router.post("/api/tables", status_code=status.HTTP_201_CREATED)
async def create_table(
    body: TableCreate,
    tables: TableService = Depends(get_tables),
    actor: Actor = Depends(get_actor),
) -> dict:
    return ok(await tables.create_table(body, actor))


@router.get("/api/tables")
async def list_tables(tables: TableService = Depends(get_tables)) -> dict:
    return ok(await tables.list_tables())


@router.get("/api/tables/{table_id}")
async def get_table(table_id: int, tables: TableService = Depends(get_tables)) -> dict:
    return ok(await tables.get_table(table_id))


@router.put("/api/tables/{table_id}/status")
async def set_table_status(
    table_id: int,
    body: TableStatusUpdate,
    tables: TableService = Depends(get_tables),
    actor: Actor = Depends(get_actor),
) -> dict:
    """Manual override; bypasses the order and reservation driven transitions."""

    return ok(await tables.set_status(table_id, body.status, actor))
