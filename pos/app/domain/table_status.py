"""Table and reservation status enumerations."""

from __future__ import annotations

from enum import Enum


class TableStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    CLEANING = "cleaning"
    OUT_OF_ORDER = "out_of_order"


class ReservationStatus(str, Enum):
    CONFIRMED = "confirmed"
    SEATED = "seated"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


# Reservation states that release their table.
RELEASING_RESERVATION_STATUSES = frozenset(
    {
        ReservationStatus.COMPLETED,
        ReservationStatus.CANCELLED,
        ReservationStatus.NO_SHOW,
    }
)

# Reservation states that block an overlapping booking.
BLOCKING_RESERVATION_STATUSES = [
    ReservationStatus.CONFIRMED.value,
    ReservationStatus.SEATED.value,
]


def can_change_reservation(src: ReservationStatus, dst: ReservationStatus) -> bool:
    """Released reservations are final; anything else may move anywhere."""

    return src not in RELEASING_RESERVATION_STATUSES and src != dst
