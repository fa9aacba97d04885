"""Backup producer and verifier.

Full backups copy the live SQLite file through the online backup API;
incremental backups export rows changed since a point in time as JSON. Each
backup file has a ``<name>.meta.json`` sidecar with size and checksum that
:meth:`BackupService.verify_backup` checks against. :meth:`BackupService.restore_backup`
loads a verified backup back into the live database. File and SQLite work runs
in a worker thread so the event loop keeps serving requests.
"""

from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import sqlite3
from datetime import datetime, timedelta
from pathlib import Path
from typing import Optional

from fastapi.encoders import jsonable_encoder
from sqlalchemy import DateTime, or_, select
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from ..audit import AuditLog
from ..db import sqlite_path, transaction
from ..domain import ConflictError, InternalError, NotFoundError, ValidationError
from ..models import TRACKED_TABLES, Base, utcnow
from ..routes_metrics import backups_total
from . import SYSTEM, Actor

BACKUP_PREFIX = "pos_backup_"
META_SUFFIX = ".meta.json"

logger = logging.getLogger("pos.backup")


def _sha256(path: Path) -> str:
    digest = hashlib.sha256()
    with path.open("rb") as fh:
        for chunk in iter(lambda: fh.read(1 << 16), b""):
            digest.update(chunk)
    return digest.hexdigest()


def _stamp(now: datetime) -> str:
    return now.strftime("%Y%m%dT%H%M%S%f")


def _load(column, value):
    """Turn an exported JSON value back into what ``column`` binds."""
    if isinstance(value, str) and isinstance(column.type, DateTime):
        return datetime.fromisoformat(value)
    return value


def verify_file(path: Path) -> dict:
    """Check one backup file against its sidecar and its own format.

    ``.db`` files must pass ``PRAGMA integrity_check`` and contain tables;
    anything else must parse as JSON.
    """

    checks: list[dict] = []

    def check(name: str, passed: bool, message: str = "") -> None:
        checks.append({"check": name, "passed": passed, "message": message})

    meta_path = path.with_name(path.name + META_SUFFIX)
    meta = json.loads(meta_path.read_text()) if meta_path.exists() else None
    check("metadata_present", meta is not None)
    if meta is not None:
        size = path.stat().st_size
        check("size_matches", size == meta.get("size"), f"{size} bytes on disk")
        check("checksum_matches", _sha256(path) == meta.get("sha256"))

    if path.suffix == ".db":
        try:
            conn = sqlite3.connect(f"{path.resolve().as_uri()}?mode=ro", uri=True)
            try:
                status = conn.execute("PRAGMA integrity_check").fetchone()[0]
                tables = conn.execute(
                    "SELECT COUNT(*) FROM sqlite_master WHERE type='table'"
                ).fetchone()[0]
            finally:
                conn.close()
            check("integrity_check", status == "ok", status)
            check("has_tables", tables > 0, f"{tables} tables")
        except sqlite3.Error as exc:
            check("opens", False, str(exc))
    else:
        try:
            json.loads(path.read_text())
            check("parses", True)
        except ValueError as exc:
            check("parses", False, str(exc))

    return {
        "filename": path.name,
        "valid": all(c["passed"] for c in checks),
        "checks": checks,
    }


class BackupService:
    def __init__(
        self,
        engine: AsyncEngine,
        sessionmaker: async_sessionmaker[AsyncSession],
        audit: AuditLog,
        backup_dir: str | Path,
        max_backups: int = 30,
    ) -> None:
        self._engine = engine
        self._sessionmaker = sessionmaker
        self._audit = audit
        self.backup_dir = Path(backup_dir)
        self.max_backups = max_backups

    def _path(self, name: str) -> Path:
        if Path(name).name != name or not name.startswith(BACKUP_PREFIX):
            raise ValidationError(f"Invalid backup name: {name}")
        return self.backup_dir / name

    async def create_full_backup(
        self, description: Optional[str] = None, actor: Actor = SYSTEM
    ) -> dict:
        """Snapshot the whole database file."""

        source = sqlite_path(self._engine)
        if source is None:
            raise ValidationError("Full backups need a file-backed SQLite database")
        now = utcnow()
        target = self.backup_dir / f"{BACKUP_PREFIX}{_stamp(now)}.db"
        try:
            meta = await asyncio.to_thread(
                self._write_full, Path(source), target, description or "Manual backup", now
            )
        except (OSError, sqlite3.Error) as exc:
            await self._failed("full", exc, actor)
            raise InternalError(f"Backup failed: {exc}") from exc
        await self._created(meta, actor)
        return meta

    def _write_full(
        self, source: Path, target: Path, description: str, now: datetime
    ) -> dict:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        src = sqlite3.connect(str(source))
        dst = sqlite3.connect(str(target))
        try:
            src.backup(dst)
            tables = [
                r[0]
                for r in dst.execute(
                    "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
                )
            ]
        finally:
            dst.close()
            src.close()
        meta = {
            "filename": target.name,
            "type": "full",
            "description": description,
            "created_at": now.isoformat(),
            "size": target.stat().st_size,
            "sha256": _sha256(target),
            "tables": tables,
        }
        self._write_meta(target, meta)
        return meta

    async def create_incremental_backup(
        self,
        since: Optional[datetime] = None,
        description: Optional[str] = None,
        actor: Actor = SYSTEM,
    ) -> dict:
        """Export rows created or updated at or after ``since``.

        Without ``since`` the newest existing backup's timestamp is used, or
        the last 24 hours when there is none.
        """

        if since is None:
            backups = await self.list_backups()
            since = (
                datetime.fromisoformat(backups[0]["created_at"])
                if backups
                else utcnow() - timedelta(days=1)
            )
        if since.tzinfo is not None:
            since = since.replace(tzinfo=None) - (since.utcoffset() or timedelta(0))
        now = utcnow()
        data = await self._changed_since(since)
        target = self.backup_dir / f"{BACKUP_PREFIX}{_stamp(now)}.json"
        try:
            meta = await asyncio.to_thread(
                self._write_incremental,
                target,
                data,
                description or "Incremental backup",
                since,
                now,
            )
        except OSError as exc:
            await self._failed("incremental", exc, actor)
            raise InternalError(f"Backup failed: {exc}") from exc
        await self._created(meta, actor)
        return meta

    async def _changed_since(self, since: datetime) -> dict:
        data: dict[str, list] = {}
        async with self._sessionmaker() as session:
            for name in TRACKED_TABLES:
                table = Base.metadata.tables[name]
                conds = [
                    table.c[col] >= since
                    for col in ("created_at", "updated_at")
                    if col in table.c
                ]
                rows = await session.execute(select(table).where(or_(*conds)))
                data[name] = [jsonable_encoder(dict(r._mapping)) for r in rows]
        return data

    def _write_incremental(
        self, target: Path, data: dict, description: str, since: datetime, now: datetime
    ) -> dict:
        self.backup_dir.mkdir(parents=True, exist_ok=True)
        target.write_text(
            json.dumps({"since": since.isoformat(), "created_at": now.isoformat(), "data": data})
        )
        meta = {
            "filename": target.name,
            "type": "incremental",
            "description": description,
            "created_at": now.isoformat(),
            "since": since.isoformat(),
            "size": target.stat().st_size,
            "sha256": _sha256(target),
            "records_count": sum(len(rows) for rows in data.values()),
            "tables": sorted(data),
        }
        self._write_meta(target, meta)
        return meta

    @staticmethod
    def _write_meta(target: Path, meta: dict) -> None:
        target.with_name(target.name + META_SUFFIX).write_text(json.dumps(meta, indent=2))

    async def _created(self, meta: dict, actor: Actor, rotate: bool = True) -> None:
        backups_total.labels(kind=meta["type"], result="ok").inc()
        logger.info("backup %s created size=%d", meta["filename"], meta["size"])
        await self._audit.record(
            "backups",
            meta["filename"],
            "BACKUP_CREATED",
            None,
            meta,
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        if rotate:
            await self.rotate(actor)

    async def _failed(self, kind: str, exc: Exception, actor: Actor) -> None:
        backups_total.labels(kind=kind, result="failed").inc()
        logger.error("%s backup failed: %s", kind, exc)
        await self._audit.record(
            "backups",
            None,
            "BACKUP_FAILED",
            None,
            {"type": kind, "error": str(exc)},
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )

    async def list_backups(self) -> list[dict]:
        """Return metadata for every backup on disk, newest first."""

        return await asyncio.to_thread(self._list_sync)

    def _list_sync(self) -> list[dict]:
        if not self.backup_dir.exists():
            return []
        backups = []
        for meta_path in self.backup_dir.glob(f"{BACKUP_PREFIX}*{META_SUFFIX}"):
            data_path = meta_path.with_name(meta_path.name[: -len(META_SUFFIX)])
            if not data_path.exists():
                continue
            try:
                backups.append(json.loads(meta_path.read_text()))
            except ValueError:
                logger.warning("unreadable backup metadata %s", meta_path.name)
        return sorted(backups, key=lambda m: m["created_at"], reverse=True)

    async def verify_backup(self, name: str, actor: Actor = SYSTEM) -> dict:
        path = self._path(name)
        if not path.exists():
            raise NotFoundError(f"Backup {name} not found")
        result = await asyncio.to_thread(verify_file, path)
        await self._audit.record(
            "backups",
            name,
            "BACKUP_VERIFIED",
            None,
            {"valid": result["valid"]},
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        return result

    async def delete_backup(self, name: str, actor: Actor = SYSTEM) -> dict:
        path = self._path(name)
        if not path.exists():
            raise NotFoundError(f"Backup {name} not found")
        await asyncio.to_thread(self._delete_sync, path)
        logger.info("backup %s deleted", name)
        await self._audit.record(
            "backups",
            name,
            "BACKUP_DELETED",
            None,
            None,
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        return {"filename": name, "deleted": True}

    @staticmethod
    def _delete_sync(path: Path) -> None:
        path.unlink(missing_ok=True)
        path.with_name(path.name + META_SUFFIX).unlink(missing_ok=True)

    async def rotate(self, actor: Actor = SYSTEM) -> list[str]:
        """Delete the oldest backups beyond ``max_backups``."""

        backups = await self.list_backups()
        stale = [b["filename"] for b in backups[self.max_backups :]]
        for name in stale:
            await asyncio.to_thread(self._delete_sync, self.backup_dir / name)
        if stale:
            logger.info("rotated out %d backups", len(stale))
            await self._audit.record(
                "backups",
                None,
                "BACKUP_ROTATED",
                None,
                {"deleted": stale},
                user_id=actor.user_id,
                ip_address=actor.ip_address,
            )
        return stale

    async def restore_backup(
        self, name: str, pre_backup: bool = True, actor: Actor = SYSTEM
    ) -> dict:
        """Load a verified backup into the live database.

        A full backup replaces the database file's contents through the
        SQLite backup API; an incremental one upserts its exported rows in one
        transaction. Unless ``pre_backup`` is false the current state is first
        saved as a full backup.
        """

        path = self._path(name)
        if not path.exists():
            raise NotFoundError(f"Backup {name} not found")
        report = await asyncio.to_thread(verify_file, path)
        if not report["valid"]:
            raise ValidationError(
                f"Backup {name} failed verification",
                {"failed": [c["check"] for c in report["checks"] if not c["passed"]]},
            )
        meta = json.loads(path.with_name(name + META_SUFFIX).read_text())
        kind = meta.get("type")
        if kind not in ("full", "incremental"):
            raise ValidationError(f"Unknown backup type: {kind}")
        live = sqlite_path(self._engine)
        if kind == "full" and live is None:
            raise ValidationError("Full restores need a file-backed SQLite database")

        safety = None
        if pre_backup and live is not None:
            now = utcnow()
            target = self.backup_dir / f"{BACKUP_PREFIX}{_stamp(now)}.db"
            try:
                safety = await asyncio.to_thread(
                    self._write_full, Path(live), target, "Pre-restore backup", now
                )
            except (OSError, sqlite3.Error) as exc:
                await self._failed("full", exc, actor)
                raise InternalError(f"Pre-restore backup failed: {exc}") from exc
            # rotated after the restore; ``name`` may be the oldest file
            await self._created(safety, actor, rotate=False)

        try:
            if kind == "full":
                # pooled connections would hold stale pages
                await self._engine.dispose()
                await asyncio.to_thread(self._copy_into, path, Path(live))
                restored = {"tables": meta.get("tables", [])}
            else:
                payload = json.loads(path.read_text())
                restored = {"records": await self._upsert(payload.get("data", {}))}
        except (OSError, sqlite3.Error, sa_exc.SQLAlchemyError) as exc:
            await self._audit.record(
                "backups",
                name,
                "RESTORE_FAILED",
                None,
                {"type": kind, "error": str(exc)},
                user_id=actor.user_id,
                ip_address=actor.ip_address,
            )
            logger.error("restore of %s failed: %s", name, exc)
            if isinstance(exc, sa_exc.IntegrityError):
                raise ConflictError(
                    "Backup rows conflict with current data", {"filename": name}
                ) from exc
            raise InternalError(f"Restore failed: {exc}") from exc

        result = {
            "filename": name,
            "type": kind,
            "pre_restore_backup": safety["filename"] if safety else None,
            **restored,
        }
        logger.warning("database restored from %s", name)
        await self._audit.record(
            "backups",
            name,
            "BACKUP_RESTORED",
            None,
            result,
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        await self.rotate(actor)
        return result

    @staticmethod
    def _copy_into(source: Path, live: Path) -> None:
        src = sqlite3.connect(f"{source.resolve().as_uri()}?mode=ro", uri=True)
        dst = sqlite3.connect(str(live), timeout=30)
        try:
            src.backup(dst)
        finally:
            dst.close()
            src.close()

    async def _upsert(self, data: dict) -> dict:
        counts: dict[str, int] = {}
        async with transaction(self._sessionmaker) as session:
            # parents before children
            for name in TRACKED_TABLES:
                rows = data.get(name) or []
                if not rows:
                    continue
                table = Base.metadata.tables[name]
                columns = [c for c in table.columns if c.name in rows[0]]
                stmt = sqlite_insert(table)
                stmt = stmt.on_conflict_do_update(
                    index_elements=[c.name for c in table.primary_key.columns],
                    set_={c.name: stmt.excluded[c.name] for c in columns if not c.primary_key},
                )
                await session.execute(
                    stmt, [{c.name: _load(c, row.get(c.name)) for c in columns} for row in rows]
                )
                counts[name] = len(rows)
        skipped = set(data) - set(TRACKED_TABLES)
        if skipped:
            logger.warning("restore ignored unknown tables %s", sorted(skipped))
        return counts

