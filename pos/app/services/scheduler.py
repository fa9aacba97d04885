"""Background jobs: integrity checks, backups and audit retention.

Each job is a loop on its own task that sleeps until its next slot and runs
once. A failing run is logged and the loop keeps going.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Iterable, List, Optional

from ..models import utcnow

PURGE_HOUR = 3

logger = logging.getLogger("pos.scheduler")


def next_at_hours(now: datetime, hours: Iterable[int]) -> datetime:
    """Return the first top of an hour in ``hours`` strictly after ``now``."""

    wanted = sorted({h for h in hours if 0 <= h < 24})
    if not wanted:
        raise ValueError("no valid hours to schedule")
    base = now.replace(minute=0, second=0, microsecond=0)
    for day in range(2):
        for hour in wanted:
            candidate = base.replace(hour=hour) + timedelta(days=day)
            if candidate > now:
                return candidate
    raise AssertionError("unreachable")


def every(seconds: float) -> Callable[[datetime], datetime]:
    return lambda now: now + timedelta(seconds=seconds)


def at_hours(hours: Iterable[int]) -> Callable[[datetime], datetime]:
    hours = list(hours)
    return lambda now: next_at_hours(now, hours)


class Scheduler:
    def __init__(self) -> None:
        self._jobs: List[tuple[str, Callable[[datetime], datetime], Callable[[], Awaitable]]] = []
        self._tasks: List[asyncio.Task] = []

    def add_job(
        self,
        name: str,
        when: Callable[[datetime], datetime],
        job: Callable[[], Awaitable],
    ) -> None:
        self._jobs.append((name, when, job))

    @property
    def job_names(self) -> list[str]:
        return [name for name, _, _ in self._jobs]

    async def run_job(self, name: str) -> bool:
        """Run one job by name; return ``False`` if it raised."""

        for job_name, _, job in self._jobs:
            if job_name == name:
                try:
                    await job()
                except Exception:
                    logger.exception("scheduled job %s failed", name)
                    return False
                return True
        raise KeyError(name)

    async def _loop(self, name: str, when: Callable[[datetime], datetime]) -> None:
        while True:
            now = utcnow()
            delay = (when(now) - now).total_seconds()
            await asyncio.sleep(max(delay, 0))
            logger.info("running scheduled job %s", name)
            await self.run_job(name)

    def start(self) -> None:
        if self._tasks:
            return
        for name, when, _ in self._jobs:
            self._tasks.append(asyncio.create_task(self._loop(name, when), name=f"job:{name}"))
        logger.info("scheduler started jobs=%s", ",".join(self.job_names))

    async def stop(self) -> None:
        tasks, self._tasks = self._tasks, []
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)


def build_scheduler(
    settings,
    integrity,
    backups,
    audit,
    *,
    scheduler: Optional[Scheduler] = None,
) -> Scheduler:
    """Register the standard maintenance jobs on a scheduler."""

    scheduler = scheduler or Scheduler()
    scheduler.add_job(
        "integrity_check", every(settings.integrity_check_interval_secs), integrity.run
    )
    scheduler.add_job(
        "full_backup",
        at_hours([settings.backup_full_hour]),
        lambda: backups.create_full_backup("Scheduled daily backup"),
    )
    if settings.backup_incremental_hours:
        scheduler.add_job(
            "incremental_backup",
            at_hours(settings.backup_incremental_hours),
            lambda: backups.create_incremental_backup(description="Scheduled hourly backup"),
        )
    scheduler.add_job(
        "audit_purge",
        at_hours([PURGE_HOUR]),
        lambda: audit.purge_old_logs(settings.audit_retention_days),
    )
    return scheduler
