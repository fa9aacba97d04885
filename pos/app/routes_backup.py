# routes_backup.py
"""Backup management routes."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from .deps.context import get_actor, get_backups
from .schemas import BackupRequest
from .services import Actor
from .services.backup import BackupService
from .utils.responses import ok

router = APIRouter()


@router.post("/api/backup/full", status_code=status.HTTP_201_CREATED)
async def full_backup(
    body: Optional[BackupRequest] = None,
    backups: BackupService = Depends(get_backups),
    actor: Actor = Depends(get_actor),
) -> dict:
    """Snapshot the database file and return the backup metadata."""

    body = body or BackupRequest()
    return ok(await backups.create_full_backup(body.description, actor))


@router.post("/api/backup/incremental", status_code=status.HTTP_201_CREATED)
async def incremental_backup(
    body: Optional[BackupRequest] = None,
    backups: BackupService = Depends(get_backups),
    actor: Actor = Depends(get_actor),
) -> dict:
    body = body or BackupRequest()
    return ok(await backups.create_incremental_backup(body.since, body.description, actor))


@router.get("/api/backup/list")
async def list_backups(backups: BackupService = Depends(get_backups)) -> dict:
    return ok(await backups.list_backups())


@router.get("/api/backup/{name}/verify")
async def verify_backup(
    name: str,
    backups: BackupService = Depends(get_backups),
    actor: Actor = Depends(get_actor),
) -> dict:
    return ok(await backups.verify_backup(name, actor))


@router.delete("/api/backup/{name}")
async def delete_backup(
    name: str,
    backups: BackupService = Depends(get_backups),
    actor: Actor = Depends(get_actor),
) -> dict:
    return ok(await backups.delete_backup(name, actor))


@router.post("/api/backup/{name}/restore")
async def restore_backup(
    name: str,
    pre_backup: bool = Query(True, alias="preBackup"),
    backups: BackupService = Depends(get_backups),
    actor: Actor = Depends(get_actor),
) -> dict:
    """Verify ``name`` and load it into the live database."""

    return ok(await backups.restore_backup(name, pre_backup, actor))
