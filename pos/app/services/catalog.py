"""Minimal catalog operations needed by the ordering core."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..audit import AuditLog
from ..db import transaction
from ..domain import NotFoundError, ValidationError
from ..events import PRODUCT_CREATED, EventBus
from ..models import Product
from ..repos_sqlalchemy import inventory_repo_sql, products_repo_sql
from ..schemas import ProductCreate
from . import SYSTEM, Actor
from .inventory import MAX_QUANTITY, REF_INITIAL, InventoryService


class CatalogService:
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

    async def create_product(self, data: ProductCreate, actor: Actor = SYSTEM) -> dict:
        """Create a product; trackable ones start with an ``initial`` movement."""

        if not data.name.strip():
            raise ValidationError("Product name is required")
        if data.price < 0 or data.tax_rate < 0:
            raise ValidationError("Price and tax rate must not be negative")
        if data.initial_stock < 0:
            raise ValidationError("Initial stock must not be negative")
        if data.initial_stock and not data.is_trackable:
            raise ValidationError("Initial stock requires a trackable product")
        for level in (data.reorder_level, data.max_stock):
            if level is not None and not 0 <= level <= MAX_QUANTITY:
                raise ValidationError(
                    f"Stock levels must be between 0 and {MAX_QUANTITY}",
                    {"reorderLevel": data.reorder_level, "maxStock": data.max_stock},
                )

        changes = []
        async with transaction(self._sessionmaker) as session:
            product = await products_repo_sql.create(
                session,
                name=data.name.strip(),
                price=data.price,
                tax_rate=data.tax_rate,
                is_trackable=data.is_trackable,
                reorder_level=data.reorder_level,
                max_stock=data.max_stock,
                cost_price=data.cost_price,
            )
            if data.initial_stock:
                changes.append(
                    await self._inventory.apply(
                        session,
                        product.id,
                        inventory_repo_sql.IN,
                        data.initial_stock,
                        REF_INITIAL,
                        reason="initial stock",
                        created_by=actor.user_id,
                    )
                )
            result = product_dict(product, data.initial_stock if data.is_trackable else None)

        await self._bus.publish(PRODUCT_CREATED, result)
        await self._inventory.announce(changes)
        await self._audit.record(
            "products",
            result["id"],
            "CREATE",
            None,
            result,
            user_id=actor.user_id,
            ip_address=actor.ip_address,
        )
        return result

    async def get_product(self, product_id: int) -> dict:
        async with self._sessionmaker() as session:
            product = await products_repo_sql.get(session, product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} not found")
            row = await inventory_repo_sql.get_row(session, product_id)
        return product_dict(product, row["current_stock"] if row else None)


def product_dict(product: Product, current_stock: int | None) -> dict:
    return {
        "id": product.id,
        "name": product.name,
        "price": product.price,
        "tax_rate": product.tax_rate,
        "is_trackable": product.is_trackable,
        "is_active": product.is_active,
        "current_stock": current_stock,
    }
