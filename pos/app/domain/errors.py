"""Domain exceptions mapped to HTTP status codes at the API boundary."""

from __future__ import annotations

from typing import Any, Dict


class PosError(Exception):
    """Base class for business-rule failures."""

    status_code = 500

    def __init__(self, message: str, details: Dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ValidationError(PosError):
    status_code = 400


class InvalidTransitionError(ValidationError):
    """Requested status is not a legal successor of the current one."""

    def __init__(self, current: str, requested: str) -> None:
        super().__init__(
            f"Invalid status transition from {current} to {requested}",
            {"current": current, "requested": requested},
        )


class NotFoundError(PosError):
    status_code = 404


class InsufficientStockError(PosError):
    """A trackable product cannot cover the requested quantity."""

    status_code = 400

    def __init__(
        self,
        product_id: int,
        available: int,
        requested: int,
        product_name: str | None = None,
    ) -> None:
        label = product_name or f"product {product_id}"
        super().__init__(
            f"Insufficient stock for {label}. Available: {available}, Requested: {requested}",
            {
                "product_id": product_id,
                "product_name": product_name,
                "available": available,
                "requested": requested,
            },
        )
        self.product_id = product_id
        self.available = available
        self.requested = requested


class NotTrackableError(PosError):
    status_code = 400

    def __init__(self, product_id: int) -> None:
        super().__init__(
            f"Product {product_id} is not stock-tracked", {"product_id": product_id}
        )


class ConflictError(PosError):
    status_code = 409


class IntegrityError(PosError):
    """Raised only by the integrity checker; never surfaced to clients."""


class InternalError(PosError):
    status_code = 500
