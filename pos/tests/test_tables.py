import pytest

from _helpers import add_product, add_table, complete, order_for, table_status
from pos.app.domain import ConflictError, NotFoundError, ValidationError
from pos.app.events import RESERVATION_CREATED, RESERVATION_UPDATED, TABLE_STATUS_CHANGED
from pos.app.schemas import ReservationCreate


def booking(table_id, time="19:00", party=2, day="2030-05-01", **extra):
    return ReservationCreate(
        table_id=table_id,
        customer_name="Ada",
        reservation_date=day,
        reservation_time=time,
        party_size=party,
        **extra,
    )


@pytest.mark.anyio
async def test_duplicate_table_number_conflicts(core) -> None:
    await add_table(core, "T1")
    with pytest.raises(ConflictError):
        await add_table(core, "T1")
    with pytest.raises(ValidationError):
        await add_table(core, "T2", capacity=0)


@pytest.mark.anyio
async def test_get_table_lists_active_orders(core) -> None:
    burger = await add_product(core, stock=5)
    table = await add_table(core)
    order = await core.orders.create_order(order_for(table["id"], (burger["id"], 1)))

    detail = await core.tables.get_table(table["id"])
    assert detail["status"] == "occupied"
    assert [o["id"] for o in detail["active_orders"]] == [order["id"]]

    listed = await core.tables.list_tables()
    assert listed[0]["active_orders"] == 1

    with pytest.raises(NotFoundError):
        await core.tables.get_table(999)


@pytest.mark.anyio
async def test_manual_status_override(core, events) -> None:
    table = await add_table(core)
    events.clear()

    result = await core.tables.set_status(table["id"], "cleaning")

    assert result["status"] == "cleaning"
    assert events == [
        (
            TABLE_STATUS_CHANGED,
            {
                "table_id": table["id"],
                "table_number": "T1",
                "previous_status": "available",
                "status": "cleaning",
                "reason": "manual",
            },
        )
    ]
    with pytest.raises(ValidationError):
        await core.tables.set_status(table["id"], "on_fire")
    with pytest.raises(NotFoundError):
        await core.tables.set_status(999, "available")


@pytest.mark.anyio
async def test_reservation_validation_and_overlap(core, events) -> None:
    table = await add_table(core, capacity=4)

    first = await core.tables.create_reservation(booking(table["id"], "19:00"))
    assert first["status"] == "confirmed"
    assert events[-1][0] == RESERVATION_CREATED

    with pytest.raises(ConflictError):
        await core.tables.create_reservation(booking(table["id"], "20:30"))
    with pytest.raises(ValidationError):
        await core.tables.create_reservation(booking(table["id"], "13:00", party=9))
    with pytest.raises(ValidationError):
        await core.tables.create_reservation(booking(table["id"], "7pm"))
    with pytest.raises(NotFoundError):
        await core.tables.create_reservation(booking(999))

    later = await core.tables.create_reservation(booking(table["id"], "21:00"))
    assert later["id"] != first["id"]
    assert len(await core.tables.list_reservations(date="2030-05-01")) == 2


@pytest.mark.anyio
async def test_overlap_check_spans_midnight(core) -> None:
    table = await add_table(core, capacity=4)

    late = await core.tables.create_reservation(booking(table["id"], "23:30", duration=120))

    next_day = booking(table["id"], "00:30", day="2030-05-02")
    with pytest.raises(ConflictError) as exc:
        await core.tables.create_reservation(next_day)
    assert exc.value.details["reservation_id"] == late["id"]

    early = await core.tables.create_reservation(
        booking(table["id"], "01:30", day="2030-05-02")
    )
    assert early["reservation_date"] == "2030-05-02"
    await core.tables.create_reservation(booking(table["id"], "00:30", day="2030-05-04"))
    with pytest.raises(ConflictError):
        await core.tables.create_reservation(
            booking(table["id"], "23:30", day="2030-05-03", duration=120)
        )


@pytest.mark.anyio
async def test_reservation_bounds(core) -> None:
    table = await add_table(core, capacity=4)

    with pytest.raises(ValidationError):
        await core.tables.create_reservation(booking(table["id"], duration=24 * 60 + 1))
    with pytest.raises(ValidationError):
        await core.tables.create_reservation(booking(table["id"], duration=0))
    with pytest.raises(ValidationError):
        await add_table(core, "T9", capacity=2**40)



@pytest.mark.anyio
async def test_seating_and_releasing_reservation_drives_table(core, events) -> None:
    table = await add_table(core)
    reservation = await core.tables.create_reservation(booking(table["id"]))

    await core.tables.update_reservation_status(reservation["id"], "seated")
    assert await table_status(core, table["id"]) == "occupied"

    events.clear()
    await core.tables.update_reservation_status(reservation["id"], "completed")
    assert await table_status(core, table["id"]) == "available"
    assert [name for name, _ in events] == [RESERVATION_UPDATED, TABLE_STATUS_CHANGED]

    with pytest.raises(ValidationError):
        await core.tables.update_reservation_status(reservation["id"], "seated")


@pytest.mark.anyio
async def test_releasing_reservation_keeps_table_with_active_order(core) -> None:
    burger = await add_product(core, stock=5)
    table = await add_table(core)
    reservation = await core.tables.create_reservation(booking(table["id"]))
    await core.tables.update_reservation_status(reservation["id"], "seated")
    order = await core.orders.create_order(order_for(table["id"], (burger["id"], 1)))

    await core.tables.update_reservation_status(reservation["id"], "completed")
    assert await table_status(core, table["id"]) == "occupied"

    await complete(core, order["id"])
    assert await table_status(core, table["id"]) == "available"


@pytest.mark.anyio
async def test_completing_order_keeps_table_for_seated_party(core) -> None:
    burger = await add_product(core, stock=5)
    table = await add_table(core)
    order = await core.orders.create_order(order_for(table["id"], (burger["id"], 1)))
    reservation = await core.tables.create_reservation(booking(table["id"]))
    await core.tables.update_reservation_status(reservation["id"], "seated")

    await complete(core, order["id"])
    assert await table_status(core, table["id"]) == "occupied"

    await core.tables.update_reservation_status(reservation["id"], "no_show")
    assert await table_status(core, table["id"]) == "available"
