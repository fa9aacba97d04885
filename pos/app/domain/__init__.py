"""Domain models and helpers."""

from .errors import (
    ConflictError,
    InsufficientStockError,
    IntegrityError,
    InternalError,
    InvalidTransitionError,
    NotFoundError,
    NotTrackableError,
    PosError,
    ValidationError,
)
from .order_status import (
    ACTIVE_STATUSES,
    TRANSITIONS,
    OrderStatus,
    OrderType,
    can_transition,
    is_terminal,
)
from .table_status import ReservationStatus, TableStatus

__all__ = [
    "ACTIVE_STATUSES",
    "TRANSITIONS",
    "OrderStatus",
    "OrderType",
    "can_transition",
    "is_terminal",
    "ReservationStatus",
    "TableStatus",
    "PosError",
    "ValidationError",
    "InvalidTransitionError",
    "NotFoundError",
    "InsufficientStockError",
    "NotTrackableError",
    "ConflictError",
    "IntegrityError",
    "InternalError",
]
