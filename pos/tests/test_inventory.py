import pytest

from _helpers import add_product, scalar, stock_of
from pos.app.domain import (
    InsufficientStockError,
    NotFoundError,
    NotTrackableError,
    ValidationError,
)
from pos.app.events import INVENTORY_LOW_STOCK, INVENTORY_UPDATED, STOCK_BULK_ADJUSTED
from pos.app.schemas import BulkAdjustmentLine, StockAdjustment


def adjustment(kind, quantity, **extra):
    return StockAdjustment(adjustment_type=kind, quantity=quantity, **extra)


def bulk_line(product_id, kind, quantity):
    return BulkAdjustmentLine(product_id=product_id, adjustment_type=kind, quantity=quantity)


@pytest.mark.anyio
async def test_adjust_in_and_out_write_one_movement_each(core) -> None:
    flour = await add_product(core, "Flour", stock=10)

    result = await core.inventory.adjust_stock(
        flour["id"], adjustment("in", 5, reason="delivery", cost_price=2.5)
    )
    assert result["previous_stock"] == 10
    assert result["new_stock"] == 15

    result = await core.inventory.adjust_stock(flour["id"], adjustment("out", 4, reason="waste"))
    assert result["new_stock"] == 11
    assert await stock_of(core, flour["id"]) == 11

    movements = await core.inventory.movements(product_id=flour["id"])
    assert [(m["movement_type"], m["quantity"], m["reference_type"]) for m in movements] == [
        ("out", 4, "manual_adjustment"),
        ("in", 5, "manual_adjustment"),
        ("in", 10, "initial"),
    ]
    assert await scalar(
        core, "SELECT cost_price FROM inventory WHERE product_id = :pid", pid=flour["id"]
    ) == 2.5


@pytest.mark.anyio
async def test_adjust_rejections_change_nothing(core) -> None:
    flour = await add_product(core, "Flour", stock=3)
    water = await add_product(core, "Water", stock=None)
    movements = await scalar(core, "SELECT COUNT(*) FROM stock_movements")

    with pytest.raises(InsufficientStockError):
        await core.inventory.adjust_stock(flour["id"], adjustment("out", 4))
    with pytest.raises(NotTrackableError):
        await core.inventory.adjust_stock(water["id"], adjustment("in", 1))
    with pytest.raises(NotFoundError):
        await core.inventory.adjust_stock(9999, adjustment("in", 1))
    with pytest.raises(ValidationError):
        await core.inventory.adjust_stock(flour["id"], adjustment("in", 0))
    with pytest.raises(ValidationError):
        await core.inventory.adjust_stock(flour["id"], adjustment("sideways", 1))

    assert await stock_of(core, flour["id"]) == 3
    assert await scalar(core, "SELECT COUNT(*) FROM stock_movements") == movements


@pytest.mark.anyio
async def test_bulk_adjust_is_all_or_nothing(core, events) -> None:
    flour = await add_product(core, "Flour", stock=10)
    sugar = await add_product(core, "Sugar", stock=1)
    movements = await scalar(core, "SELECT COUNT(*) FROM stock_movements")
    events.clear()

    with pytest.raises(InsufficientStockError) as exc:
        await core.inventory.bulk_adjust(
            [bulk_line(flour["id"], "out", 5), bulk_line(sugar["id"], "out", 2)]
        )

    assert exc.value.product_id == sugar["id"]
    assert await stock_of(core, flour["id"]) == 10
    assert await stock_of(core, sugar["id"]) == 1
    assert await scalar(core, "SELECT COUNT(*) FROM stock_movements") == movements
    assert events == []


@pytest.mark.anyio
async def test_bulk_adjust_names_missing_product(core) -> None:
    flour = await add_product(core, "Flour", stock=10)

    with pytest.raises(ValidationError) as exc:
        await core.inventory.bulk_adjust(
            [bulk_line(flour["id"], "in", 1), bulk_line(4242, "in", 1)]
        )
    assert exc.value.details == {"product_id": 4242, "index": 1}
    assert await stock_of(core, flour["id"]) == 10

    with pytest.raises(ValidationError):
        await core.inventory.bulk_adjust([])


@pytest.mark.anyio
async def test_bulk_adjust_success_publishes_summary(core, events) -> None:
    flour = await add_product(core, "Flour", stock=10)
    sugar = await add_product(core, "Sugar", stock=1)
    events.clear()

    result = await core.inventory.bulk_adjust(
        [bulk_line(flour["id"], "out", 5), bulk_line(sugar["id"], "in", 4)]
    )

    assert result["count"] == 2
    assert await stock_of(core, flour["id"]) == 5
    assert await stock_of(core, sugar["id"]) == 5
    names = [name for name, _ in events]
    assert names.count(INVENTORY_UPDATED) == 2
    assert names[-1] == STOCK_BULK_ADJUSTED


@pytest.mark.anyio
async def test_low_stock_announced_once_when_crossing(core, events) -> None:
    flour = await add_product(core, "Flour", stock=7, reorder_level=5)
    events.clear()

    await core.inventory.adjust_stock(flour["id"], adjustment("out", 1))
    await core.inventory.adjust_stock(flour["id"], adjustment("out", 2))
    await core.inventory.adjust_stock(flour["id"], adjustment("out", 1))

    low = [payload for name, payload in events if name == INVENTORY_LOW_STOCK]
    assert len(low) == 1
    assert low[0]["new_stock"] == 4
    assert low[0]["is_low_stock"] is True

    listed = await core.inventory.low_stock()
    assert [row["product_id"] for row in listed] == [flour["id"]]


@pytest.mark.anyio
async def test_get_inventory_includes_recent_movements(core) -> None:
    flour = await add_product(core, "Flour", stock=2, reorder_level=3)
    row = await core.inventory.get_inventory(flour["id"])

    assert row["current_stock"] == 2
    assert row["is_low_stock"] is True
    assert len(row["recent_movements"]) == 1

    water = await add_product(core, "Water", stock=None)
    with pytest.raises(NotTrackableError):
        await core.inventory.get_inventory(water["id"])
