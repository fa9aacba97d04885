"""Order engine.

``create_order`` writes the order, its items, the stock decrements with their
ledger rows and the table occupancy in one transaction, in that order. Events
and the audit record follow the commit, so a failed attempt leaves nothing
behind and nothing is ever announced for it.
"""

from __future__ import annotations

import logging
from collections import OrderedDict
from decimal import ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..audit import AuditLog
from ..db import transaction
from ..domain import (
    ConflictError,
    InsufficientStockError,
    InvalidTransitionError,
    NotFoundError,
    OrderStatus,
    OrderType,
    TableStatus,
    ValidationError,
    can_transition,
)
from ..events import (
    ORDER_CANCELLED,
    ORDER_COMPLETED,
    ORDER_CREATED,
    ORDER_UPDATED,
    TABLE_STATUS_CHANGED,
    EventBus,
)
from ..models import Order, utcnow
from ..repos_sqlalchemy import (
    inventory_repo_sql,
    orders_repo_sql,
    products_repo_sql,
    tables_repo_sql,
)
from ..routes_metrics import (
    insufficient_stock_total,
    orders_cancelled_total,
    orders_completed_total,
    orders_created_total,
)
from ..schemas import OrderCreate
from ..utils.order_counter import next_order_number
from . import SYSTEM, Actor
from .inventory import REF_ORDER, REF_ORDER_CANCELLATION, InventoryService, validate_quantity

logger = logging.getLogger("pos.orders")

CENT = Decimal("0.01")


def _money(value) -> Decimal:
    return Decimal(str(value or 0)).quantize(CENT, rounding=ROUND_HALF_UP)


class OrderService:
    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        bus: EventBus,
        audit: AuditLog,
        inventory: InventoryService,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._bus = bus
        self._audit = audit
        self._inventory = inventory

    async def create_order(self, data: OrderCreate, actor: Actor = SYSTEM) -> dict:
        """Validate, price and persist an order.

        Raises ``ValidationError`` for an empty order, a non-positive
        quantity, an inactive product or a bad table; ``NotFoundError`` for a
        missing product or table; ``InsufficientStockError`` when any
        trackable product cannot cover the full requested quantity.
        """

        if not data.items:
            raise ValidationError("Order must contain at least one item")
        for line in data.items:
            validate_quantity(line.quantity)
        if data.discount_amount < 0 or data.service_charge < 0:
            raise ValidationError("Discount and service charge must not be negative")
        dine_in = data.order_type == OrderType.DINE_IN
        if dine_in and data.table_id is None:
            raise ValidationError("tableId is required for dine-in orders")

        # quantity per product, first-seen order preserved
        demand: "OrderedDict[int, int]" = OrderedDict()
        for line in data.items:
            demand[line.product_id] = demand.get(line.product_id, 0) + line.quantity
        for quantity in demand.values():
            validate_quantity(quantity)

        table_changed = None
        changes = []
        async with transaction(self._sessionmaker) as session:
            products = await products_repo_sql.get_many(session, demand)
            for product_id in demand:
                product = products.get(product_id)
                if product is None:
                    raise NotFoundError(
                        f"Product {product_id} not found", {"product_id": product_id}
                    )
                if not product.is_active:
                    raise ValidationError(
                        f"Product {product.name} is not available",
                        {"product_id": product_id},
                    )

            table = None
            if data.table_id is not None:
                table = await tables_repo_sql.get(session, data.table_id)
                if table is None or not table.is_active:
                    raise NotFoundError(
                        f"Table {data.table_id} not found", {"table_id": data.table_id}
                    )
                if dine_in and table.status == TableStatus.OUT_OF_ORDER.value:
                    raise ValidationError(
                        f"Table {table.table_number} is out of order",
                        {"table_id": table.id},
                    )

            trackable = [pid for pid in demand if products[pid].is_trackable]
            snapshot = await inventory_repo_sql.stock_snapshot(session, trackable)
            for product_id in trackable:
                available = snapshot.get(product_id, 0)
                if available < demand[product_id]:
                    insufficient_stock_total.inc()
                    raise InsufficientStockError(
                        product_id,
                        available,
                        demand[product_id],
                        products[product_id].name,
                    )

            subtotal = Decimal("0")
            tax = Decimal("0")
            for line in data.items:
                product = products[line.product_id]
                line_total = Decimal(str(product.price)) * line.quantity
                subtotal += line_total
                tax += line_total * Decimal(str(product.tax_rate or 0)) / 100
            subtotal = _money(subtotal)
            tax = _money(tax)
            discount = _money(data.discount_amount)
            service = _money(data.service_charge)
            total = subtotal + tax + service - discount
            if total < 0:
                raise ValidationError("Discount exceeds order total")

            order = await orders_repo_sql.insert_order(
                session,
                order_number=await next_order_number(session),
                table_id=data.table_id,
                order_type=data.order_type.value,
                status=OrderStatus.PENDING.value,
                customer_name=data.customer_name,
                payment_method=data.payment_method,
                subtotal=float(subtotal),
                discount_amount=float(discount),
                tax_amount=float(tax),
                service_charge=float(service),
                total=float(total),
                notes=data.notes,
                created_by=actor.user_id,
            )
            for line in data.items:
                await orders_repo_sql.add_item(
                    session, order.id, products[line.product_id], line.quantity
                )
            await session.flush()

            for product_id in trackable:
                changes.append(
                    await self._inventory.apply(
                        session,
                        product_id,
                        inventory_repo_sql.OUT,
                        demand[product_id],
                        REF_ORDER,
                        reference_id=order.id,
                        reason=f"Order {order.order_number}",
                        created_by=actor.user_id,
                    )
                )

            if table is not None and dine_in:
                previous = table.status
                if await tables_repo_sql.occupy(session, table.id):
                    table_changed = _table_change(
                        table, previous, TableStatus.OCCUPIED.value, "order_created", order.id
                    )

            result = order_dict(await orders_repo_sql.get(session, order.id))

        orders_created_total.inc()
        logger.info(
            "order %s created total=%s", result["order_number"], result["total"],
            extra={"event": ORDER_CREATED},
        )
        await self._bus.publish(ORDER_CREATED, result)
        await self._inventory.announce(changes)
        if table_changed:
            await self._bus.publish(TABLE_STATUS_CHANGED, table_changed)
        await self._audit.record(
            "orders",
            result["id"],
            "CREATE",
            None,
            result,
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        return result

    async def update_order_status(
        self,
        order_id: int,
        new_status: str,
        served_by: Optional[str] = None,
        actor: Actor = SYSTEM,
    ) -> dict:
        """Move an order one step along its lifecycle.

        ``cancelled`` is delegated to :meth:`cancel_order` so stock is
        restored. Illegal successors raise ``InvalidTransitionError`` and
        leave the order untouched.
        """

        try:
            target = OrderStatus(new_status)
        except ValueError:
            raise ValidationError(
                f"Invalid status: {new_status}", {"status": new_status}
            ) from None
        if target == OrderStatus.CANCELLED:
            return await self.cancel_order(order_id, None, actor)

        table_changed = None
        async with transaction(self._sessionmaker) as session:
            order = await orders_repo_sql.get(session, order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            current = OrderStatus(order.status)
            if not can_transition(current, target):
                raise InvalidTransitionError(current.value, target.value)

            extra = {}
            if served_by:
                extra["served_by"] = served_by
            if target == OrderStatus.COMPLETED:
                extra["completed_at"] = utcnow()
            if not await orders_repo_sql.set_status(
                session, order.id, current.value, target.value, **extra
            ):
                raise ConflictError("Order was modified concurrently")

            if target == OrderStatus.COMPLETED and order.table_id is not None:
                table_changed = await self._release_table(
                    session, order, "order_completed"
                )

            result = order_dict(await orders_repo_sql.get(session, order.id))

        update = {**result, "previous_status": current.value}
        await self._bus.publish(ORDER_UPDATED, update)
        if target == OrderStatus.COMPLETED:
            orders_completed_total.inc()
            await self._bus.publish(ORDER_COMPLETED, result)
        if table_changed:
            await self._bus.publish(TABLE_STATUS_CHANGED, table_changed)
        await self._audit.record(
            "orders",
            order_id,
            "STATUS_UPDATE",
            {"status": current.value},
            {"status": target.value, "served_by": served_by},
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        return result

    async def cancel_order(
        self, order_id: int, reason: Optional[str] = None, actor: Actor = SYSTEM
    ) -> dict:
        """Cancel a non-terminal order and put its stock back.

        Each ``order`` movement written at creation is reversed by one
        ``order_cancellation`` movement of the same quantity.
        """

        changes = []
        table_changed = None
        async with transaction(self._sessionmaker) as session:
            order = await orders_repo_sql.get(session, order_id)
            if order is None:
                raise NotFoundError(f"Order {order_id} not found")
            current = OrderStatus(order.status)
            if current == OrderStatus.COMPLETED:
                raise ValidationError("Cannot cancel a completed order")
            if not can_transition(current, OrderStatus.CANCELLED):
                raise InvalidTransitionError(current.value, OrderStatus.CANCELLED.value)

            if not await orders_repo_sql.set_status(
                session,
                order.id,
                current.value,
                OrderStatus.CANCELLED.value,
                cancel_reason=reason,
            ):
                raise ConflictError("Order was modified concurrently")

            decrements = await inventory_repo_sql.list_movements(
                session, reference_type=REF_ORDER, reference_id=order.id
            )
            for movement in reversed(decrements):
                changes.append(
                    await self._inventory.apply(
                        session,
                        movement.product_id,
                        inventory_repo_sql.IN,
                        movement.quantity,
                        REF_ORDER_CANCELLATION,
                        reference_id=order.id,
                        reason=reason or f"Order {order.order_number} cancelled",
                        created_by=actor.user_id,
                    )
                )

            if order.table_id is not None:
                table_changed = await self._release_table(
                    session, order, "order_cancelled"
                )

            result = order_dict(await orders_repo_sql.get(session, order.id))

        orders_cancelled_total.inc()
        await self._bus.publish(ORDER_CANCELLED, {**result, "reason": reason})
        await self._inventory.announce(changes)
        if table_changed:
            await self._bus.publish(TABLE_STATUS_CHANGED, table_changed)
        await self._audit.record(
            "orders",
            order_id,
            "CANCEL",
            {"status": current.value},
            {
                "status": OrderStatus.CANCELLED.value,
                "reason": reason,
                "restored": [
                    {"product_id": c.product_id, "quantity": c.quantity} for c in changes
                ],
            },
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        return result

    async def _release_table(
        self, session: AsyncSession, order: Order, reason: str
    ) -> Optional[dict]:
        table = await tables_repo_sql.get(session, order.table_id)
        if table is None:
            return None
        previous = table.status
        if await tables_repo_sql.free_if_idle(
            session, table.id, exclude_order_id=order.id
        ):
            return _table_change(
                table, previous, TableStatus.AVAILABLE.value, reason, order.id
            )
        return None

    async def get_order(self, order_id: int) -> dict:
        async with self._sessionmaker() as session:
            order = await orders_repo_sql.get(session, order_id)
        if order is None:
            raise NotFoundError(f"Order {order_id} not found")
        return order_dict(order)

    async def list_orders(
        self, status: Optional[str] = None, table_id: Optional[int] = None
    ) -> list[dict]:
        if status is not None:
            try:
                OrderStatus(status)
            except ValueError:
                raise ValidationError(f"Invalid status: {status}") from None
        async with self._sessionmaker() as session:
            orders = await orders_repo_sql.list_orders(session, status, table_id)
        return [order_dict(o) for o in orders]


def _table_change(table, previous: str, status: str, reason: str, order_id: int) -> dict:
    return {
        "table_id": table.id,
        "table_number": table.table_number,
        "previous_status": previous,
        "status": status,
        "reason": reason,
        "order_id": order_id,
    }


def order_dict(order: Order) -> dict:
    return {
        "id": order.id,
        "order_number": order.order_number,
        "table_id": order.table_id,
        "order_type": order.order_type,
        "status": order.status,
        "customer_name": order.customer_name,
        "payment_method": order.payment_method,
        "subtotal": order.subtotal,
        "discount_amount": order.discount_amount,
        "tax_amount": order.tax_amount,
        "service_charge": order.service_charge,
        "total": order.total,
        "notes": order.notes,
        "served_by": order.served_by,
        "cancel_reason": order.cancel_reason,
        "created_by": order.created_by,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
        "completed_at": order.completed_at,
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "product_name": item.product_name,
                "quantity": item.quantity,
                "unit_price": item.unit_price,
                "tax_rate": item.tax_rate,
                "total_price": item.total_price,
            }
            for item in order.items
        ],
    }
