# audit.py

"""Audit logging side channel.

Every mutating operation calls :meth:`AuditLog.record` after its transaction
commits. Records are queued and written by a background worker using their
own session, so a slow or failing audit store never holds up or rolls back
the primary operation. Failures are logged and counted, never raised.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import timedelta
from typing import Any, Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import get_settings

from .db import transaction
from .models import AuditLogEntry, utcnow
from .routes_metrics import audit_write_failures_total

logger = logging.getLogger("pos.audit")

QUEUE_MAX = 10_000


class AuditLog:
    """Best-effort recorder of mutations."""

    def __init__(
        self, sessionmaker: async_sessionmaker[AsyncSession], queue_max: int = QUEUE_MAX
    ) -> None:
        self._sessionmaker = sessionmaker
        self._queue: asyncio.Queue[dict] = asyncio.Queue(maxsize=queue_max)
        self._worker: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    def start(self) -> None:
        """Launch the background writer on the running loop."""

        if not self.running:
            self._worker = asyncio.create_task(self._run(), name="audit-writer")

    async def record(
        self,
        table_name: str,
        record_id: Any,
        action: str,
        old_values: Optional[dict] = None,
        new_values: Optional[dict] = None,
        user_id: Optional[str] = None,
        ip_address: Optional[str] = None,
    ) -> None:
        """Queue (or, without a worker, write) one audit row. Never raises."""

        try:
            entry = {
                "table_name": table_name,
                "record_id": None if record_id is None else str(record_id),
                "action": action,
                "old_values": jsonable_encoder(old_values) if old_values else None,
                "new_values": jsonable_encoder(new_values) if new_values else None,
                "user_id": user_id,
                "ip_address": ip_address,
                "created_at": utcnow(),
            }
            if self.running:
                self._queue.put_nowait(entry)
            else:
                await self._write(entry)
        except Exception:
            audit_write_failures_total.inc()
            logger.exception(
                "audit record dropped", extra={"event": f"{table_name}:{action}"}
            )

    async def _write(self, entry: dict) -> None:
        async with transaction(self._sessionmaker) as session:
            session.add(AuditLogEntry(**entry))

    async def _run(self) -> None:
        while True:
            entry = await self._queue.get()
            try:
                await self._write(entry)
            except Exception:
                audit_write_failures_total.inc()
                logger.exception(
                    "audit write failed",
                    extra={"event": f"{entry['table_name']}:{entry['action']}"},
                )
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every queued record has been attempted."""

        if self.running:
            await self._queue.join()

    async def close(self) -> None:
        """Drain the queue and stop the worker."""

        await self.flush()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None

    async def purge_old_logs(self, days: Optional[int] = None) -> int:
        """Delete audit rows older than ``days`` and return number purged.

        If ``days`` is omitted the retention period from
        :func:`config.get_settings` is used.
        """

        retention = days or get_settings().audit_retention_days
        cutoff = utcnow() - timedelta(days=retention)
        async with transaction(self._sessionmaker) as session:
            result = await session.execute(
                delete(AuditLogEntry).where(AuditLogEntry.created_at < cutoff)
            )
        removed = result.rowcount or 0
        logger.info("purged %d audit rows older than %d days", removed, retention)
        return removed

    async def list_logs(
        self,
        table_name: Optional[str] = None,
        action: Optional[str] = None,
        limit: int = 100,
    ) -> list[dict]:
        stmt = select(AuditLogEntry).order_by(AuditLogEntry.id.desc()).limit(limit)
        if table_name:
            stmt = stmt.where(AuditLogEntry.table_name == table_name)
        if action:
            stmt = stmt.where(AuditLogEntry.action == action)
        async with self._sessionmaker() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_as_dict(row) for row in rows]

    async def trail(self, table_name: str, record_id: Any) -> list[dict]:
        """Return the oldest-first history of one record."""

        stmt = (
            select(AuditLogEntry)
            .where(
                AuditLogEntry.table_name == table_name,
                AuditLogEntry.record_id == str(record_id),
            )
            .order_by(AuditLogEntry.id)
        )
        async with self._sessionmaker() as session:
            rows = (await session.execute(stmt)).scalars().all()
        return [_as_dict(row) for row in rows]

    async def summary(self) -> list[dict]:
        stmt = (
            select(
                AuditLogEntry.table_name,
                AuditLogEntry.action,
                func.count().label("count"),
                func.max(AuditLogEntry.created_at).label("last_seen"),
            )
            .group_by(AuditLogEntry.table_name, AuditLogEntry.action)
            .order_by(AuditLogEntry.table_name, AuditLogEntry.action)
        )
        async with self._sessionmaker() as session:
            rows = (await session.execute(stmt)).all()
        return [
            {
                "table_name": row.table_name,
                "action": row.action,
                "count": row.count,
                "last_seen": row.last_seen,
            }
            for row in rows
        ]


def _as_dict(row: AuditLogEntry) -> dict:
    return {
        "id": row.id,
        "table_name": row.table_name,
        "record_id": row.record_id,
        "action": row.action,
        "old_values": row.old_values,
        "new_values": row.new_values,
        "user_id": row.user_id,
        "ip_address": row.ip_address,
        "created_at": row.created_at,
    }
