# integrity.py

"""Scheduled data integrity checks.

Four independent families run against the store: orphaned records,
stock-vs-ledger reconciliation, duplicate records and referential integrity.
Each check reports ``PASS``, ``WARN``, ``FAIL`` or ``ERROR``; a family that
blows up becomes a single ``ERROR`` check and the others still run. The
checker only reports. Nothing here modifies application data.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .audit import AuditLog
from .models import utcnow
from .routes_metrics import integrity_checks_total

PASS = "PASS"
WARN = "WARN"
FAIL = "FAIL"
ERROR = "ERROR"

SEVERITY = {PASS: 0, WARN: 1, FAIL: 2, ERROR: 3}

TOLERANCE = 0.01
DETAIL_LIMIT = 50

logger = logging.getLogger("pos.integrity")


@dataclass
class CheckResult:
    check_name: str
    family: str
    status: str
    message: str
    details: Optional[Dict[str, Any]] = None


def _count_check(name: str, family: str, count: int, what: str, bad: str = FAIL) -> CheckResult:
    return CheckResult(
        name, family, bad if count > 0 else PASS, f"Found {count} {what}", {"count": count}
    )


class IntegrityChecker:
    """Run every check family and audit-log the aggregated report."""

    def __init__(
        self, sessionmaker: async_sessionmaker[AsyncSession], audit: AuditLog
    ) -> None:
        self._sessionmaker = sessionmaker
        self._audit = audit

    def families(self) -> List[tuple[str, Callable[[AsyncSession], Awaitable[List[CheckResult]]]]]:
        return [
            ("orphaned_records", self.check_orphaned_records),
            ("stock_ledger", self.check_stock_ledger),
            ("duplicates", self.check_duplicates),
            ("referential", self.check_referential_integrity),
        ]

    async def run(self) -> dict:
        checks: List[CheckResult] = []
        for family, check in self.families():
            try:
                async with self._sessionmaker() as session:
                    checks.extend(await check(session))
            except Exception as exc:
                logger.exception("integrity family %s failed", family)
                checks.append(
                    CheckResult(
                        f"{family}_check",
                        family,
                        ERROR,
                        f"Error running {family} checks: {exc}",
                    )
                )

        summary = {status: 0 for status in SEVERITY}
        for check in checks:
            summary[check.status] += 1
            integrity_checks_total.labels(status=check.status).inc()
        overall = max((c.status for c in checks), key=SEVERITY.__getitem__, default=PASS)
        report = {
            "timestamp": utcnow(),
            "status": overall,
            "summary": summary,
            "checks": [asdict(c) for c in checks],
        }

        failing = [c.check_name for c in checks if SEVERITY[c.status] >= SEVERITY[FAIL]]
        if failing:
            logger.warning("integrity check found problems: %s", ", ".join(failing))
        else:
            logger.info("integrity check %s summary=%s", overall, summary)
        await self._audit.record(
            "system",
            None,
            "INTEGRITY_CHECK",
            None,
            {"status": overall, "summary": summary, "failing": failing},
        )
        return report

    async def check_orphaned_records(self, session: AsyncSession) -> List[CheckResult]:
        family = "orphaned_records"
        queries = [
            (
                "orphaned_order_items",
                "orphaned order items",
                "SELECT COUNT(*) FROM order_items oi "
                "LEFT JOIN orders o ON oi.order_id = o.id WHERE o.id IS NULL",
            ),
            (
                "orphaned_inventory",
                "orphaned inventory records",
                "SELECT COUNT(*) FROM inventory i "
                "LEFT JOIN products p ON i.product_id = p.id WHERE p.id IS NULL",
            ),
            (
                "orphaned_stock_movements",
                "orphaned stock movements",
                "SELECT COUNT(*) FROM stock_movements sm "
                "LEFT JOIN products p ON sm.product_id = p.id WHERE p.id IS NULL",
            ),
        ]
        results = []
        for name, what, sql in queries:
            count = (await session.execute(text(sql))).scalar_one()
            results.append(_count_check(name, family, count, what))
        return results

    async def check_stock_ledger(self, session: AsyncSession) -> List[CheckResult]:
        family = "stock_ledger"
        results = []

        rows = (
            await session.execute(
                text(
                    """
                    SELECT i.product_id, i.current_stock,
                           COALESCE(SUM(CASE
                               WHEN sm.movement_type = 'in' THEN sm.quantity
                               WHEN sm.movement_type = 'out' THEN -sm.quantity
                               ELSE 0 END), 0) AS ledger_stock
                    FROM inventory i
                    LEFT JOIN stock_movements sm ON sm.product_id = i.product_id
                    GROUP BY i.product_id, i.current_stock
                    HAVING i.current_stock != ledger_stock
                    ORDER BY i.product_id
                    """
                )
            )
        ).all()
        results.append(
            CheckResult(
                "inventory_stock_consistency",
                family,
                FAIL if rows else PASS,
                f"Found {len(rows)} products with inconsistent stock levels",
                {
                    "inconsistent_products": len(rows),
                    "products": [
                        {
                            "product_id": r.product_id,
                            "current_stock": r.current_stock,
                            "ledger_stock": r.ledger_stock,
                        }
                        for r in rows[:DETAIL_LIMIT]
                    ],
                },
            )
        )

        # fold each product's ledger in creation order
        movements = await session.execute(
            text(
                "SELECT product_id, movement_type, quantity FROM stock_movements "
                "ORDER BY product_id, created_at, id"
            )
        )
        balances: Dict[int, int] = {}
        went_negative: set[int] = set()
        for product_id, movement_type, quantity in movements:
            delta = quantity if movement_type == "in" else -quantity
            balances[product_id] = balances.get(product_id, 0) + delta
            if balances[product_id] < 0:
                went_negative.add(product_id)
        results.append(
            CheckResult(
                "ledger_running_balance",
                family,
                WARN if went_negative else PASS,
                f"Found {len(went_negative)} products whose ledger balance dipped below zero",
                {"product_ids": sorted(went_negative)[:DETAIL_LIMIT]},
            )
        )

        orders = (
            await session.execute(
                text(
                    """
                    SELECT o.id, o.subtotal, o.tax_amount, o.service_charge,
                           o.discount_amount, o.total,
                           COALESCE(SUM(oi.total_price), 0) AS items_subtotal,
                           COALESCE(SUM(oi.total_price * oi.tax_rate / 100.0), 0) AS items_tax
                    FROM orders o
                    LEFT JOIN order_items oi ON oi.order_id = o.id
                    GROUP BY o.id
                    """
                )
            )
        ).all()
        bad_orders = [
            o.id
            for o in orders
            if abs(o.subtotal - o.items_subtotal) > TOLERANCE
            or abs(o.tax_amount - o.items_tax) > TOLERANCE
            or abs(
                o.total
                - (o.subtotal + o.tax_amount + o.service_charge - o.discount_amount)
            )
            > TOLERANCE
        ]
        results.append(
            CheckResult(
                "order_totals_consistency",
                family,
                FAIL if bad_orders else PASS,
                f"Found {len(bad_orders)} orders with inconsistent totals",
                {
                    "inconsistent_orders": len(bad_orders),
                    "order_ids": bad_orders[:DETAIL_LIMIT],
                },
            )
        )
        return results

    async def check_duplicates(self, session: AsyncSession) -> List[CheckResult]:
        family = "duplicates"
        queries = [
            (
                "duplicate_products",
                "duplicate product names",
                WARN,
                "SELECT LOWER(name) FROM products WHERE is_active = 1 "
                "GROUP BY LOWER(name) HAVING COUNT(*) > 1",
            ),
            (
                "duplicate_table_numbers",
                "duplicate table numbers",
                FAIL,
                "SELECT table_number FROM tables GROUP BY table_number HAVING COUNT(*) > 1",
            ),
            (
                "duplicate_order_numbers",
                "duplicate order numbers",
                FAIL,
                "SELECT order_number FROM orders GROUP BY order_number HAVING COUNT(*) > 1",
            ),
        ]
        results = []
        for name, what, bad, sql in queries:
            values = (await session.execute(text(sql))).scalars().all()
            check = _count_check(name, family, len(values), what, bad)
            check.details["values"] = list(values[:DETAIL_LIMIT])
            results.append(check)
        return results

    async def check_referential_integrity(self, session: AsyncSession) -> List[CheckResult]:
        family = "referential"
        results = []

        count = (
            await session.execute(
                text(
                    "SELECT COUNT(*) FROM orders o LEFT JOIN tables t ON o.table_id = t.id "
                    "WHERE o.order_type = 'dine_in' AND (t.id IS NULL OR t.is_active = 0)"
                )
            )
        ).scalar_one()
        results.append(
            _count_check(
                "orders_without_tables", family, count, "dine-in orders without valid tables"
            )
        )

        count = (
            await session.execute(
                text(
                    "SELECT COUNT(*) FROM order_items oi "
                    "LEFT JOIN products p ON oi.product_id = p.id WHERE p.id IS NULL"
                )
            )
        ).scalar_one()
        results.append(
            _count_check(
                "order_items_without_products",
                family,
                count,
                "order items referencing missing products",
            )
        )

        count = (
            await session.execute(
                text(
                    """
                    SELECT COUNT(*) FROM tables t
                    WHERE t.status = 'occupied'
                      AND NOT EXISTS (
                          SELECT 1 FROM orders o WHERE o.table_id = t.id
                          AND o.status NOT IN ('completed', 'cancelled'))
                      AND NOT EXISTS (
                          SELECT 1 FROM reservations r WHERE r.table_id = t.id
                          AND r.status = 'seated')
                    """
                )
            )
        ).scalar_one()
        results.append(
            _count_check(
                "occupied_tables_without_activity",
                family,
                count,
                "occupied tables with no active order or seated reservation",
                WARN,
            )
        )
        return results
