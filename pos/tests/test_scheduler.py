import asyncio
from datetime import datetime
from types import SimpleNamespace

import pytest

from pos.app.services.scheduler import Scheduler, build_scheduler, every, next_at_hours


def test_next_at_hours_picks_next_slot() -> None:
    now = datetime(2030, 5, 1, 10, 30)

    assert next_at_hours(now, [9, 12, 18]) == datetime(2030, 5, 1, 12, 0)
    assert next_at_hours(now, [2]) == datetime(2030, 5, 2, 2, 0)
    assert next_at_hours(datetime(2030, 5, 1, 12, 0), [12]) == datetime(2030, 5, 2, 12, 0)
    with pytest.raises(ValueError):
        next_at_hours(now, [24, -1])


def test_every_adds_interval() -> None:
    now = datetime(2030, 5, 1, 10, 30)
    assert every(90)(now) == datetime(2030, 5, 1, 10, 31, 30)


@pytest.mark.anyio
async def test_run_job_reports_failure_without_raising() -> None:
    scheduler = Scheduler()
    calls = []

    async def good():
        calls.append("good")

    async def bad():
        raise RuntimeError("disk full")

    scheduler.add_job("good", every(60), good)
    scheduler.add_job("bad", every(60), bad)

    assert await scheduler.run_job("good") is True
    assert await scheduler.run_job("bad") is False
    assert calls == ["good"]
    with pytest.raises(KeyError):
        await scheduler.run_job("missing")


@pytest.mark.anyio
async def test_loop_runs_job_and_stop_cancels() -> None:
    scheduler = Scheduler()
    ran = asyncio.Event()

    async def job():
        ran.set()

    scheduler.add_job("tick", every(0), job)
    scheduler.start()
    await asyncio.wait_for(ran.wait(), timeout=2)
    await scheduler.stop()

    assert scheduler._tasks == []


@pytest.mark.anyio
async def test_build_scheduler_registers_maintenance_jobs(settings) -> None:
    calls = []

    async def record(name, *args):
        calls.append((name, args))

    integrity = SimpleNamespace(run=lambda: record("integrity"))
    backups = SimpleNamespace(
        create_full_backup=lambda description: record("full", description),
        create_incremental_backup=lambda description: record("incremental", description),
    )
    audit = SimpleNamespace(purge_old_logs=lambda days: record("purge", days))

    scheduler = build_scheduler(settings, integrity, backups, audit)

    assert scheduler.job_names == [
        "integrity_check",
        "full_backup",
        "incremental_backup",
        "audit_purge",
    ]
    for name in scheduler.job_names:
        assert await scheduler.run_job(name) is True
    assert calls == [
        ("integrity", ()),
        ("full", ("Scheduled daily backup",)),
        ("incremental", ("Scheduled hourly backup",)),
        ("purge", (settings.audit_retention_days,)),
    ]

    no_hourly = settings.model_copy(update={"backup_incremental_hours": []})
    assert "incremental_backup" not in build_scheduler(no_hourly, integrity, backups, audit).job_names
