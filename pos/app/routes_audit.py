"""Audit trail queries and on-demand integrity checks."""

from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, Query

from .audit import AuditLog
from .deps.context import get_audit, get_integrity
from .integrity import IntegrityChecker
from .utils.responses import ok

router = APIRouter()


@router.get("/api/audit/logs")
async def list_audit_logs(
    table_name: Optional[str] = Query(None, alias="tableName"),
    action: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    audit: AuditLog = Depends(get_audit),
) -> dict:
    return ok(await audit.list_logs(table_name, action, limit))


@router.get("/api/audit/trail/{table_name}/{record_id}")
async def audit_trail(
    table_name: str, record_id: str, audit: AuditLog = Depends(get_audit)
) -> dict:
    return ok(await audit.trail(table_name, record_id))


@router.get("/api/audit/summary")
async def audit_summary(audit: AuditLog = Depends(get_audit)) -> dict:
    return ok(await audit.summary())


@router.post("/api/audit/integrity-check")
async def run_integrity_check(
    checker: IntegrityChecker = Depends(get_integrity),
) -> dict:
    """Run every integrity check family now and return the report."""

    return ok(await checker.run())
