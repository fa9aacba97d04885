"""Full-state snapshots for reconnecting clients and dashboard metrics."""

from __future__ import annotations

from datetime import date, datetime, timedelta

from sqlalchemy import and_, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..domain import OrderStatus
from ..models import Inventory, Order, Product, utcnow
from ..repos_sqlalchemy import inventory_repo_sql, orders_repo_sql, tables_repo_sql
from .orders import order_dict


class SyncService:
    """Read-only views; clients call these after (re)connecting."""

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def inventory_snapshot(self) -> list[dict]:
        async with self._sessionmaker() as session:
            return await inventory_repo_sql.list_trackable(session)

    async def tables_snapshot(self) -> list[dict]:
        async with self._sessionmaker() as session:
            return await tables_repo_sql.list_active(session)

    async def orders_snapshot(self) -> list[dict]:
        async with self._sessionmaker() as session:
            orders = await orders_repo_sql.list_orders(session, active_only=True)
        return [order_dict(o) for o in orders]

    async def sales_metrics(self, today: date | None = None) -> dict:
        """Completed-order totals for today, the last 7 days and this month."""

        today = today or utcnow().date()
        day_start = _midnight(today)
        day_end = _midnight(today + timedelta(days=1))
        week_start = _midnight(today - timedelta(days=7))
        month_start = _midnight(today.replace(day=1))
        completed = Order.status == OrderStatus.COMPLETED.value
        is_today = and_(completed, Order.created_at >= day_start, Order.created_at < day_end)

        stmt = select(
            func.coalesce(func.sum(case((is_today, Order.total), else_=0)), 0).label(
                "today_sales"
            ),
            func.count(case((is_today, 1))).label("today_orders"),
            func.coalesce(
                func.sum(case((is_today, Order.discount_amount), else_=0)), 0
            ).label("today_discounts"),
            func.avg(case((is_today, Order.total))).label("avg_order_value"),
            func.coalesce(
                func.sum(
                    case((and_(completed, Order.created_at >= week_start), Order.total), else_=0)
                ),
                0,
            ).label("weekly_sales"),
            func.coalesce(
                func.sum(
                    case((and_(completed, Order.created_at >= month_start), Order.total), else_=0)
                ),
                0,
            ).label("monthly_sales"),
        )
        async with self._sessionmaker() as session:
            row = (await session.execute(stmt)).one()
        return {
            "today_sales": round(float(row.today_sales), 2),
            "today_orders": int(row.today_orders),
            "today_discounts": round(float(row.today_discounts), 2),
            "avg_order_value": round(float(row.avg_order_value or 0), 2),
            "weekly_sales": round(float(row.weekly_sales), 2),
            "monthly_sales": round(float(row.monthly_sales), 2),
        }

    async def inventory_metrics(self) -> dict:
        stmt = (
            select(
                func.count().label("total_products"),
                func.coalesce(
                    func.sum(
                        case((Inventory.current_stock <= Inventory.reorder_level, 1), else_=0)
                    ),
                    0,
                ).label("low_stock_items"),
                func.coalesce(
                    func.sum(case((Inventory.current_stock == 0, 1), else_=0)), 0
                ).label("out_of_stock_items"),
                func.coalesce(
                    func.sum(
                        Inventory.current_stock
                        * func.coalesce(Inventory.cost_price, Product.price)
                    ),
                    0,
                ).label("total_inventory_value"),
            )
            .select_from(Inventory)
            .join(Product, Product.id == Inventory.product_id)
            .where(Product.is_trackable.is_(True))
        )
        async with self._sessionmaker() as session:
            row = (await session.execute(stmt)).one()
        return {
            "total_products": int(row.total_products),
            "low_stock_items": int(row.low_stock_items),
            "out_of_stock_items": int(row.out_of_stock_items),
            "total_inventory_value": round(float(row.total_inventory_value), 2),
        }

    async def dashboard_metrics(self) -> dict:
        return {
            "sales": await self.sales_metrics(),
            "inventory": await self.inventory_metrics(),
        }


def _midnight(day: date) -> datetime:
    return datetime.combine(day, datetime.min.time())
