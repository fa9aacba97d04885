"""SQLAlchemy-backed helpers for tables and reservations.

Freeing a table is one conditional ``UPDATE`` guarded by the same "no other
active reference" subqueries, so two terminal transitions racing on one table
cannot both decide on stale counts.
"""

from __future__ import annotations

from typing import Iterable, List, Optional

from sqlalchemy import and_, exists, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain import ACTIVE_STATUSES, ReservationStatus, TableStatus
from ..domain.table_status import BLOCKING_RESERVATION_STATUSES
from ..models import DiningTable, Order, Reservation, utcnow

tables_t = DiningTable.__table__
orders_t = Order.__table__
reservations_t = Reservation.__table__


async def get(session: AsyncSession, table_id: int) -> Optional[DiningTable]:
    result = await session.execute(
        select(DiningTable)
        .where(DiningTable.id == table_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_by_number(session: AsyncSession, table_number: str) -> Optional[DiningTable]:
    result = await session.execute(
        select(DiningTable).where(DiningTable.table_number == table_number)
    )
    return result.scalar_one_or_none()


async def list_active(session: AsyncSession) -> list[dict]:
    """Return active tables with the number of non-terminal orders on each."""

    active_orders = (
        select(func.count())
        .where(Order.table_id == DiningTable.id, Order.status.in_(ACTIVE_STATUSES))
        .correlate(DiningTable)
        .scalar_subquery()
    )
    result = await session.execute(
        select(DiningTable, active_orders.label("active_orders"))
        .where(DiningTable.is_active.is_(True))
        .order_by(DiningTable.table_number)
    )
    return [
        {**table_dict(table), "active_orders": count} for table, count in result.all()
    ]


async def occupy(session: AsyncSession, table_id: int) -> bool:
    """Mark ``table_id`` occupied; ``True`` when the status changed."""

    result = await session.execute(
        update(tables_t)
        .where(
            tables_t.c.id == table_id,
            tables_t.c.status != TableStatus.OCCUPIED.value,
        )
        .values(status=TableStatus.OCCUPIED.value, updated_at=utcnow())
    )
    return result.rowcount == 1


async def free_if_idle(
    session: AsyncSession,
    table_id: int,
    exclude_order_id: Optional[int] = None,
    exclude_reservation_id: Optional[int] = None,
) -> bool:
    """Set ``table_id`` available if nothing else still holds it.

    Only an ``occupied`` table is freed. Returns ``True`` when the row was
    updated.
    """

    order_cond = [
        orders_t.c.table_id == table_id,
        orders_t.c.status.in_(ACTIVE_STATUSES),
    ]
    if exclude_order_id is not None:
        order_cond.append(orders_t.c.id != exclude_order_id)
    seated_cond = [
        reservations_t.c.table_id == table_id,
        reservations_t.c.status == ReservationStatus.SEATED.value,
    ]
    if exclude_reservation_id is not None:
        seated_cond.append(reservations_t.c.id != exclude_reservation_id)

    result = await session.execute(
        update(tables_t)
        .where(
            tables_t.c.id == table_id,
            tables_t.c.status == TableStatus.OCCUPIED.value,
            ~exists().where(and_(*order_cond)),
            ~exists().where(and_(*seated_cond)),
        )
        .values(status=TableStatus.AVAILABLE.value, updated_at=utcnow())
    )
    return result.rowcount == 1


async def set_status(session: AsyncSession, table_id: int, status: str) -> None:
    await session.execute(
        update(tables_t)
        .where(tables_t.c.id == table_id)
        .values(status=status, updated_at=utcnow())
    )


async def list_reservations(
    session: AsyncSession,
    date: Optional[str] = None,
    table_id: Optional[int] = None,
    status: Optional[str] = None,
) -> List[Reservation]:
    stmt = select(Reservation).order_by(
        Reservation.reservation_date, Reservation.reservation_time, Reservation.id
    )
    if date:
        stmt = stmt.where(Reservation.reservation_date == date)
    if table_id is not None:
        stmt = stmt.where(Reservation.table_id == table_id)
    if status:
        stmt = stmt.where(Reservation.status == status)
    return list((await session.execute(stmt)).scalars())


async def blocking_reservations(
    session: AsyncSession, table_id: int, dates: Iterable[str]
) -> List[Reservation]:
    """Reservations on ``table_id`` on any of ``dates`` that still hold a slot."""

    result = await session.execute(
        select(Reservation).where(
            Reservation.table_id == table_id,
            Reservation.reservation_date.in_(list(dates)),
            Reservation.status.in_(BLOCKING_RESERVATION_STATUSES),
        )
    )
    return list(result.scalars())


def table_dict(table: DiningTable) -> dict:
    return {
        "id": table.id,
        "table_number": table.table_number,
        "capacity": table.capacity,
        "status": table.status,
        "section": table.section,
        "is_active": table.is_active,
        "updated_at": table.updated_at,
    }
