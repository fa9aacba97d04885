"""Inventory ledger.

Every stock change goes through :meth:`InventoryService.apply`, which moves
``current_stock`` and appends exactly one :class:`~pos.app.models.StockMovement`
inside the caller's transaction. Callers announce the resulting
:class:`StockChange` objects only after they commit.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Iterable, List, Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from config import Settings, get_settings

from ..audit import AuditLog
from ..db import transaction
from ..domain import (
    InsufficientStockError,
    NotFoundError,
    NotTrackableError,
    ValidationError,
)
from ..events import INVENTORY_LOW_STOCK, INVENTORY_UPDATED, STOCK_BULK_ADJUSTED, EventBus
from ..models import Product
from ..repos_sqlalchemy import inventory_repo_sql
from ..routes_metrics import (
    insufficient_stock_total,
    low_stock_alerts_total,
    stock_adjustments_total,
)
from ..schemas import BulkAdjustmentLine, StockAdjustment
from . import SYSTEM, Actor

logger = logging.getLogger("pos.inventory")

DIRECTIONS = (inventory_repo_sql.IN, inventory_repo_sql.OUT)

# reference_type values written to stock_movements
REF_ORDER = "order"
REF_ORDER_CANCELLATION = "order_cancellation"
REF_MANUAL = "manual_adjustment"
REF_BULK = "bulk_adjustment"
REF_INITIAL = "initial"


@dataclass
class StockChange:
    """Outcome of one committed ledger entry."""

    product_id: int
    product_name: str
    movement_type: str
    quantity: int
    previous_stock: int
    new_stock: int
    reorder_level: int
    reference_type: str
    reference_id: Optional[int]
    movement_id: int

    @property
    def crossed_low_stock(self) -> bool:
        """``True`` when this change took stock to or below the reorder level."""
        return self.previous_stock > self.reorder_level >= self.new_stock

    def as_dict(self) -> dict:
        data = asdict(self)
        data["is_low_stock"] = self.new_stock <= self.reorder_level
        return data


# keeps stock and ledger sums inside SQLite's 64-bit INTEGER
MAX_QUANTITY = 2**31 - 1


def validate_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise ValidationError(
            "Quantity must be a positive integer", {"quantity": quantity}
        )
    if quantity > MAX_QUANTITY:
        raise ValidationError(
            f"Quantity must not exceed {MAX_QUANTITY}", {"quantity": quantity}
        )
    return quantity


class InventoryService:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        bus: EventBus,
        audit: AuditLog,
        settings: Settings | None = None,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._bus = bus
        self._audit = audit
        self._settings = settings or get_settings()

    async def apply(
        self,
        session: AsyncSession,
        product_id: int,
        direction: str,
        quantity: int,
        reference_type: str,
        reference_id: Optional[int] = None,
        reason: Optional[str] = None,
        notes: Optional[str] = None,
        created_by: Optional[str] = None,
        cost_price: Optional[float] = None,
    ) -> StockChange:
        """Move stock for ``product_id`` and append its ledger row.

        Must run inside an open transaction on ``session``; nothing is
        committed here.
        """

        if direction not in DIRECTIONS:
            raise ValidationError(
                "Adjustment type must be 'in' or 'out'", {"adjustmentType": direction}
            )
        validate_quantity(quantity)

        row = await inventory_repo_sql.get_row(session, product_id)
        if row is None:
            if await session.get(Product, product_id) is None:
                raise NotFoundError(
                    f"Product {product_id} not found", {"product_id": product_id}
                )
            raise NotTrackableError(product_id)
        if not row["is_trackable"]:
            raise NotTrackableError(product_id)

        if direction == inventory_repo_sql.OUT:
            new_stock = await inventory_repo_sql.decrement(session, product_id, quantity)
            if new_stock is None:
                insufficient_stock_total.inc()
                raise InsufficientStockError(
                    product_id, row["current_stock"], quantity, row["product_name"]
                )
        else:
            new_stock = await inventory_repo_sql.increment(
                session, product_id, quantity, cost_price=cost_price
            )

        movement = await inventory_repo_sql.add_movement(
            session,
            product_id=product_id,
            movement_type=direction,
            quantity=quantity,
            reference_type=reference_type,
            reference_id=reference_id,
            reason=reason,
            notes=notes,
            created_by=created_by,
        )
        return StockChange(
            product_id=product_id,
            product_name=row["product_name"],
            movement_type=direction,
            quantity=quantity,
            previous_stock=row["current_stock"],
            new_stock=new_stock,
            reorder_level=row["reorder_level"],
            reference_type=reference_type,
            reference_id=reference_id,
            movement_id=movement.id,
        )

    async def announce(self, changes: Iterable[StockChange]) -> None:
        """Publish committed stock changes and low-stock crossings."""

        for change in changes:
            stock_adjustments_total.labels(reference_type=change.reference_type).inc()
            payload = change.as_dict()
            await self._bus.publish(INVENTORY_UPDATED, payload)
            if self._settings.low_stock_alerts and change.crossed_low_stock:
                low_stock_alerts_total.inc()
                logger.warning(
                    "low stock product=%s stock=%d reorder_level=%d",
                    change.product_id,
                    change.new_stock,
                    change.reorder_level,
                    extra={"event": INVENTORY_LOW_STOCK},
                )
                await self._bus.publish(INVENTORY_LOW_STOCK, payload)

    async def _audit_change(self, change: StockChange, action: str, actor: Actor) -> None:
        await self._audit.record(
            "inventory",
            change.product_id,
            action,
            {"current_stock": change.previous_stock},
            {
                "current_stock": change.new_stock,
                "movement_type": change.movement_type,
                "quantity": change.quantity,
                "reference_type": change.reference_type,
                "movement_id": change.movement_id,
            },
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )

    async def adjust_stock(
        self, product_id: int, data: StockAdjustment, actor: Actor = SYSTEM
    ) -> dict:
        """Apply one manual adjustment in its own transaction."""

        async with transaction(self._sessionmaker) as session:
            change = await self.apply(
                session,
                product_id,
                data.adjustment_type,
                data.quantity,
                REF_MANUAL,
                reason=data.reason,
                notes=data.notes,
                created_by=actor.user_id,
                cost_price=data.cost_price,
            )
        await self.announce([change])
        await self._audit_change(change, "STOCK_ADJUSTMENT", actor)
        return {
            "product_id": product_id,
            "previous_stock": change.previous_stock,
            "new_stock": change.new_stock,
            "movement_id": change.movement_id,
        }

    async def bulk_adjust(
        self, adjustments: List[BulkAdjustmentLine], actor: Actor = SYSTEM
    ) -> dict:
        """Apply every adjustment in one transaction, or none of them."""

        if not adjustments:
            raise ValidationError("No adjustments provided")

        changes: list[StockChange] = []
        async with transaction(self._sessionmaker) as session:
            for index, line in enumerate(adjustments):
                try:
                    change = await self.apply(
                        session,
                        line.product_id,
                        line.adjustment_type,
                        line.quantity,
                        REF_BULK,
                        reason=line.reason,
                        notes=line.notes,
                        created_by=actor.user_id,
                        cost_price=line.cost_price,
                    )
                except NotFoundError as exc:
                    # a bulk request names its failing line with a 400
                    raise ValidationError(
                        f"Adjustment {index + 1}: {exc.message}",
                        {"product_id": line.product_id, "index": index},
                    ) from exc
                changes.append(change)

        await self.announce(changes)
        results = [
            {
                "product_id": c.product_id,
                "previous_stock": c.previous_stock,
                "new_stock": c.new_stock,
                "adjustment_type": c.movement_type,
                "quantity": c.quantity,
            }
            for c in changes
        ]
        await self._bus.publish(
            STOCK_BULK_ADJUSTED, {"count": len(results), "results": results}
        )
        for change in changes:
            await self._audit_change(change, "BULK_STOCK_ADJUSTMENT", actor)
        return {"count": len(results), "results": results}

    async def get_inventory(self, product_id: int, movements: int = 20) -> dict:
        async with self._sessionmaker() as session:
            row = await inventory_repo_sql.get_row(session, product_id)
            if row is None:
                if await session.get(Product, product_id) is None:
                    raise NotFoundError(f"Product {product_id} not found")
                raise NotTrackableError(product_id)
            recent = await inventory_repo_sql.list_movements(
                session, product_id=product_id, limit=movements
            )
        row["is_low_stock"] = row["current_stock"] <= row["reorder_level"]
        row["recent_movements"] = [movement_dict(m) for m in recent]
        return row

    async def low_stock(self) -> list[dict]:
        async with self._sessionmaker() as session:
            return await inventory_repo_sql.low_stock(session)

    async def movements(
        self,
        product_id: Optional[int] = None,
        reference_type: Optional[str] = None,
        limit: int = 200,
    ) -> list[dict]:
        async with self._sessionmaker() as session:
            rows = await inventory_repo_sql.list_movements(
                session, product_id=product_id, reference_type=reference_type, limit=limit
            )
        return [movement_dict(m) for m in rows]


def movement_dict(movement) -> dict:
    return {
        "id": movement.id,
        "product_id": movement.product_id,
        "movement_type": movement.movement_type,
        "quantity": movement.quantity,
        "reference_type": movement.reference_type,
        "reference_id": movement.reference_id,
        "reason": movement.reason,
        "notes": movement.notes,
        "created_by": movement.created_by,
        "created_at": movement.created_at,
    }
