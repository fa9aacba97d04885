"""Seeding and inspection helpers shared by the service tests."""

from sqlalchemy import text

from pos.app.schemas import OrderCreate, OrderLine, ProductCreate, TableCreate


async def add_product(core, name="Burger", price=10.0, stock=10, **extra):
    data = ProductCreate(
        name=name,
        price=price,
        is_trackable=stock is not None,
        initial_stock=stock or 0,
        **extra,
    )
    return await core.catalog.create_product(data)


async def add_table(core, number="T1", capacity=4):
    return await core.tables.create_table(TableCreate(table_number=number, capacity=capacity))


def order_for(table_id, *lines, **extra):
    return OrderCreate(
        table_id=table_id,
        items=[OrderLine(product_id=pid, quantity=qty) for pid, qty in lines],
        **extra,
    )


async def scalar(core, sql, **params):
    async with core.sessionmaker() as session:
        return (await session.execute(text(sql), params)).scalar_one()


async def execute(core, sql, **params):
    async with core.sessionmaker() as session:
        async with session.begin():
            await session.execute(text(sql), params)


async def stock_of(core, product_id):
    return await scalar(
        core, "SELECT current_stock FROM inventory WHERE product_id = :pid", pid=product_id
    )


async def table_status(core, table_id):
    return await scalar(core, "SELECT status FROM tables WHERE id = :tid", tid=table_id)


async def snapshot_counts(core):
    counts = {}
    for name in ("orders", "order_items", "stock_movements", "audit_logs"):
        counts[name] = await scalar(core, f"SELECT COUNT(*) FROM {name}")
    return counts


COMPLETION_PATH = ("confirmed", "preparing", "ready", "served", "completed")


async def complete(core, order_id):
    for status in COMPLETION_PATH:
        result = await core.orders.update_order_status(order_id, status)
    return result
