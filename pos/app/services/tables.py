"""Table and reservation lifecycle."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional

from sqlalchemy import exc as sa_exc
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..audit import AuditLog
from ..db import transaction
from ..domain import (
    ConflictError,
    NotFoundError,
    ReservationStatus,
    TableStatus,
    ValidationError,
)
from ..domain.table_status import RELEASING_RESERVATION_STATUSES, can_change_reservation
from ..events import (
    RESERVATION_CREATED,
    RESERVATION_UPDATED,
    TABLE_STATUS_CHANGED,
    EventBus,
)
from ..models import DiningTable, Reservation
from ..repos_sqlalchemy import orders_repo_sql, tables_repo_sql
from ..schemas import ReservationCreate, TableCreate
from . import SYSTEM, Actor
from .inventory import MAX_QUANTITY
from .orders import order_dict


# a booking spills at most into the next day
MAX_DURATION_MINUTES = 24 * 60


def _slot(day: str, at: str, minutes: int) -> tuple[datetime, datetime]:
    try:
        start = datetime.combine(
            date.fromisoformat(day), datetime.strptime(at, "%H:%M").time()
        )
        end = start + timedelta(minutes=minutes)
    except (ValueError, OverflowError):
        raise ValidationError(
            "reservationDate must be YYYY-MM-DD and reservationTime HH:MM",
            {"reservationDate": day, "reservationTime": at},
        ) from None
    return start, end


def _around(start: datetime) -> list[str]:
    """ISO dates of the day before, of and after ``start``."""
    try:
        return [(start.date() + timedelta(days=d)).isoformat() for d in (-1, 0, 1)]
    except OverflowError:
        raise ValidationError(
            "reservationDate out of range", {"reservationDate": start.date().isoformat()}
        ) from None



class TableService:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        bus: EventBus,
        audit: AuditLog,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._bus = bus
        self._audit = audit

    async def create_table(self, data: TableCreate, actor: Actor = SYSTEM) -> dict:
        if not data.table_number.strip():
            raise ValidationError("tableNumber is required")
        if not 0 < data.capacity <= MAX_QUANTITY:
            raise ValidationError(f"capacity must be between 1 and {MAX_QUANTITY}")
        try:
            async with transaction(self._sessionmaker) as session:
                if await tables_repo_sql.get_by_number(session, data.table_number):
                    raise ConflictError(
                        f"Table number {data.table_number} already exists",
                        {"table_number": data.table_number},
                    )
                table = DiningTable(
                    table_number=data.table_number,
                    capacity=data.capacity,
                    section=data.section,
                    status=TableStatus.AVAILABLE.value,
                )
                session.add(table)
                await session.flush()
                result = tables_repo_sql.table_dict(table)
        except sa_exc.IntegrityError as exc:
            raise ConflictError(
                f"Table number {data.table_number} already exists"
            ) from exc
        await self._audit.record(
            "tables",
            result["id"],
            "CREATE",
            None,
            result,
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        return result

    async def list_tables(self) -> list[dict]:
        async with self._sessionmaker() as session:
            return await tables_repo_sql.list_active(session)

    async def get_table(self, table_id: int) -> dict:
        async with self._sessionmaker() as session:
            table = await tables_repo_sql.get(session, table_id)
            if table is None:
                raise NotFoundError(f"Table {table_id} not found")
            orders = await orders_repo_sql.list_orders(
                session, table_id=table_id, active_only=True
            )
        return {
            **tables_repo_sql.table_dict(table),
            "active_orders": [order_dict(o) for o in orders],
        }

    async def set_status(
        self, table_id: int, status: str, actor: Actor = SYSTEM
    ) -> dict:
        """Manual override of a table's status."""

        try:
            target = TableStatus(status)
        except ValueError:
            raise ValidationError(
                f"Invalid table status: {status}",
                {"valid": [s.value for s in TableStatus]},
            ) from None
        async with transaction(self._sessionmaker) as session:
            table = await tables_repo_sql.get(session, table_id)
            if table is None:
                raise NotFoundError(f"Table {table_id} not found")
            previous = table.status
            await tables_repo_sql.set_status(session, table_id, target.value)
            table = await tables_repo_sql.get(session, table_id)
            result = tables_repo_sql.table_dict(table)

        if previous != target.value:
            await self._bus.publish(
                TABLE_STATUS_CHANGED,
                {
                    "table_id": table_id,
                    "table_number": result["table_number"],
                    "previous_status": previous,
                    "status": target.value,
                    "reason": "manual",
                },
            )
        await self._audit.record(
            "tables",
            table_id,
            "STATUS_UPDATE",
            {"status": previous},
            {"status": target.value},
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        return result

    async def create_reservation(
        self, data: ReservationCreate, actor: Actor = SYSTEM
    ) -> dict:
        if not data.customer_name.strip():
            raise ValidationError("customerName is required")
        if data.party_size <= 0:
            raise ValidationError("partySize must be positive")
        if not 0 < data.duration <= MAX_DURATION_MINUTES:
            raise ValidationError(
                f"duration must be between 1 and {MAX_DURATION_MINUTES} minutes"
            )
        start, end = _slot(data.reservation_date, data.reservation_time, data.duration)
        days = _around(start)

        async with transaction(self._sessionmaker) as session:
            table = await tables_repo_sql.get(session, data.table_id)
            if table is None or not table.is_active:
                raise NotFoundError("Table not found or inactive")
            if data.party_size > table.capacity:
                raise ValidationError(
                    f"Party size ({data.party_size}) exceeds table capacity ({table.capacity})"
                )
            for other in await tables_repo_sql.blocking_reservations(
                session, table.id, days
            ):
                o_start, o_end = _slot(
                    other.reservation_date, other.reservation_time, other.duration
                )
                if start < o_end and o_start < end:
                    raise ConflictError(
                        "Time slot conflicts with existing reservation",
                        {"reservation_id": other.id},
                    )
            reservation = Reservation(
                table_id=table.id,
                customer_name=data.customer_name.strip(),
                customer_phone=data.customer_phone,
                reservation_date=start.date().isoformat(),
                reservation_time=start.strftime("%H:%M"),
                party_size=data.party_size,
                duration=data.duration,
                notes=data.notes,
                status=ReservationStatus.CONFIRMED.value,
            )
            session.add(reservation)
            await session.flush()
            result = reservation_dict(reservation, table.table_number)

        await self._bus.publish(RESERVATION_CREATED, result)
        await self._audit.record(
            "reservations",
            result["id"],
            "CREATE",
            None,
            result,
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        return result

    async def update_reservation_status(
        self, reservation_id: int, status: str, actor: Actor = SYSTEM
    ) -> dict:
        """Apply a reservation status and drive the table from it.

        ``seated`` occupies the table; a releasing status frees it only when
        no other seated reservation and no active order still hold it.
        """

        try:
            target = ReservationStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid reservation status: {status}") from None

        table_changed = None
        async with transaction(self._sessionmaker) as session:
            reservation = await session.get(Reservation, reservation_id)
            if reservation is None:
                raise NotFoundError(f"Reservation {reservation_id} not found")
            previous = ReservationStatus(reservation.status)
            if not can_change_reservation(previous, target):
                raise ValidationError(
                    f"Cannot change reservation from {previous.value} to {target.value}"
                )
            reservation.status = target.value
            await session.flush()

            table = await tables_repo_sql.get(session, reservation.table_id)
            table_before = table.status if table is not None else None
            changed = False
            if table is not None and target == ReservationStatus.SEATED:
                changed = await tables_repo_sql.occupy(session, table.id)
            elif table is not None and target in RELEASING_RESERVATION_STATUSES:
                changed = await tables_repo_sql.free_if_idle(
                    session, table.id, exclude_reservation_id=reservation.id
                )
            if changed:
                table = await tables_repo_sql.get(session, reservation.table_id)
                table_changed = {
                    "table_id": table.id,
                    "table_number": table.table_number,
                    "previous_status": table_before,
                    "status": table.status,
                    "reason": f"reservation_{target.value}",
                    "reservation_id": reservation.id,
                }
            result = reservation_dict(
                reservation, table.table_number if table is not None else None
            )

        await self._bus.publish(
            RESERVATION_UPDATED, {**result, "previous_status": previous.value}
        )
        if table_changed:
            await self._bus.publish(TABLE_STATUS_CHANGED, table_changed)
        await self._audit.record(
            "reservations",
            reservation_id,
            "STATUS_UPDATE",
            {"status": previous.value},
            {"status": target.value},
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        return result

    async def list_reservations(
        self,
        date: Optional[str] = None,
        table_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> list[dict]:
        async with self._sessionmaker() as session:
            rows = await tables_repo_sql.list_reservations(session, date, table_id, status)
        return [reservation_dict(r) for r in rows]


def reservation_dict(reservation: Reservation, table_number: str | None = None) -> dict:
    data = {
        "id": reservation.id,
        "table_id": reservation.table_id,
        "customer_name": reservation.customer_name,
        "customer_phone": reservation.customer_phone,
        "reservation_date": reservation.reservation_date,
        "reservation_time": reservation.reservation_time,
        "party_size": reservation.party_size,
        "duration": reservation.duration,
        "status": reservation.status,
        "notes": reservation.notes,
    }
    if table_number is not None:
        data["table_number"] = table_number
    return data
