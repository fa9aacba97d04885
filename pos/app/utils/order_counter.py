"""Utilities for generating order numbers."""

from datetime import date

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession


def build_day(today: date | None = None) -> str:
    """Return the ``yyyymmdd`` key that scopes the daily counter."""
    today = today or date.today()
    return f"{today:%Y%m%d}"


async def next_order_number(session: AsyncSession, today: date | None = None) -> str:
    """Return the next order number for ``today``.

    The counter row is created if missing and atomically incremented inside
    the caller's transaction, so a rolled back order also rolls back its
    number. The result is formatted as ``ORD-20240501-0001``; the counter
    keeps growing past four digits rather than wrapping.
    """
    day = build_day(today)
    stmt = text(
        """
        INSERT INTO order_counters (day, current)
        VALUES (:day, 1)
        ON CONFLICT (day)
        DO UPDATE SET current = order_counters.current + 1
        RETURNING current
        """
    )
    result = await session.execute(stmt, {"day": day})
    current = result.scalar_one()
    return f"ORD-{day}-{current:04d}"
