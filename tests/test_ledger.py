import pytest

from conftest import allocation_rows
from core.permissions import Role
from services import ledger


@pytest.fixture
async def users(make_user):
    keeper = await make_user(Role.STOCK_KEEPER)
    a = await make_user()
    b = await make_user()
    return keeper.id, a.id, b.id


async def test_empty_item_has_full_central_stock(db, make_item):
    item = await make_item(quantity=40)
    assert await ledger.total_allocated(db, item.id) == 0
    assert await ledger.central_available(db, item) == 40


async def test_credit_creates_then_increments(db, users, make_item):
    keeper_id, a_id, _ = users
    item = await make_item(quantity=40)

    first = await ledger.credit(db, stock_item_id=item.id, user_id=a_id, quantity=5, allocated_by=keeper_id)
    second = await ledger.credit(db, stock_item_id=item.id, user_id=a_id, quantity=7, allocated_by=keeper_id)
    await db.commit()

    assert first.id == second.id
    assert second.quantity == 12
    assert second.allocated_by_user_id == keeper_id
    assert await ledger.central_available(db, item) == 28


async def test_debit_to_zero_deletes_row(db, users, make_item):
    keeper_id, a_id, _ = users
    item = await make_item(quantity=40)
    allocation = await ledger.credit(db, stock_item_id=item.id, user_id=a_id, quantity=5, allocated_by=keeper_id)

    assert await ledger.debit(db, allocation, 2) is allocation
    assert allocation.quantity == 3
    assert await ledger.debit(db, allocation, 3) is None
    await db.commit()

    assert await allocation_rows(db, item.id) == 0


async def test_debit_never_goes_negative(db, users, make_item):
    keeper_id, a_id, _ = users
    item = await make_item(quantity=40)
    allocation = await ledger.credit(db, stock_item_id=item.id, user_id=a_id, quantity=5, allocated_by=keeper_id)

    with pytest.raises(ValueError):
        await ledger.debit(db, allocation, 6)


async def test_allocated_by_item_and_listing(db, users, make_item):
    keeper_id, a_id, b_id = users
    x = await make_item(quantity=40)
    y = await make_item(quantity=40)
    z = await make_item(quantity=40)
    await ledger.credit(db, stock_item_id=x.id, user_id=a_id, quantity=5, allocated_by=keeper_id)
    await ledger.credit(db, stock_item_id=x.id, user_id=b_id, quantity=6, allocated_by=keeper_id)
    await ledger.credit(db, stock_item_id=y.id, user_id=b_id, quantity=1, allocated_by=keeper_id)
    await db.commit()

    totals = await ledger.allocated_by_item(db)
    assert totals == {x.id: 11, y.id: 1}
    assert await ledger.allocated_by_item(db, [y.id, z.id]) == {y.id: 1}
    assert await ledger.allocated_by_item(db, []) == {}

    mine = await ledger.list_allocations(db, user_id=b_id)
    assert sorted(a.quantity for a in mine) == [1, 6]
    on_x = await ledger.list_allocations(db, stock_item_id=x.id)
    assert {a.user_id for a in on_x} == {a_id, b_id}


async def test_find_overallocated_reports_excess(db, users, make_item):
    keeper_id, a_id, _ = users
    fine = await make_item(quantity=10, name="Fine")
    over = await make_item(quantity=3, name="Over")
    await ledger.credit(db, stock_item_id=fine.id, user_id=a_id, quantity=10, allocated_by=keeper_id)
    await ledger.credit(db, stock_item_id=over.id, user_id=a_id, quantity=5, allocated_by=keeper_id)
    await db.commit()

    report = await ledger.find_overallocated(db)

    assert len(report) == 1
    assert report[0].stock_item_id == over.id
    assert report[0].name == "Over"
    assert report[0].excess == 2
