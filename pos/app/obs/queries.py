"""Slow statement logging for the POS database.

Writers queue behind ``BEGIN IMMEDIATE``, so time spent waiting for the
database lock shows up here as a slow ``BEGIN``.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Optional

from sqlalchemy import event
from sqlalchemy.engine import Engine

from ..routes_metrics import db_slow_queries_total

SLOW_QUERY_MS = int(os.getenv("DB_SLOW_QUERY_MS", "200"))

logger = logging.getLogger("pos.db")


def _verb(statement: str) -> str:
    head = statement.lstrip().split(None, 1)
    return head[0].upper() if head else "?"


def add_query_logger(engine, label: str, threshold_ms: Optional[int] = None) -> None:
    """Log and count statements on ``engine`` slower than ``threshold_ms``."""
    target: Engine = getattr(engine, "sync_engine", engine)
    limit = SLOW_QUERY_MS if threshold_ms is None else threshold_ms

    @event.listens_for(target, "before_cursor_execute")
    def _start(conn, cursor, statement, parameters, context, executemany):
        context._query_start = time.perf_counter()

    @event.listens_for(target, "after_cursor_execute")
    def _finish(conn, cursor, statement, parameters, context, executemany):
        elapsed_ms = (time.perf_counter() - context._query_start) * 1000
        if elapsed_ms <= limit:
            return
        verb = _verb(statement)
        db_slow_queries_total.labels(statement=verb).inc()
        sql = " ".join(statement.split())
        logger.warning(
            "slow %s %dms db=%s sql=%s",
            verb,
            int(elapsed_ms),
            label,
            sql[:197] + "..." if len(sql) > 200 else sql,
            extra={"latency_ms": int(elapsed_ms)},
        )
