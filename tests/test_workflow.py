import pytest
from sqlalchemy import select

from conftest import allocation_qty, movement_rows
from core.config import settings
from core.permissions import Role
from db.database import InventoryRequest, StockMovement
from db.users import User
from services import workflow
from services.errors import Forbidden, InvalidTransition, ValidationFailed
from services.transfers import CENTRAL, UserParty, execute_transfer
from services.workflow import NewRequest, NewRequestItem


@pytest.fixture
async def people(make_user):
    keeper = await make_user(Role.STOCK_KEEPER)
    pm = await make_user(Role.PRODUCT_MANAGER)
    rep = await make_user(Role.MEDICAL_REP)
    holder = await make_user(Role.MEDICAL_REP)
    return {"keeper": keeper, "pm": pm, "rep": rep, "holder": holder}


def order(*lines, **kwargs) -> NewRequest:
    return NewRequest(
        type=kwargs.pop("type", workflow.PREPARE_ORDER),
        items=[NewRequestItem(quantity=q, stock_item_id=i) for i, q in lines],
        **kwargs,
    )


async def status_of(db, request_id) -> str:
    res = await db.execute(select(InventoryRequest.status).where(InventoryRequest.id == request_id))
    return res.scalar_one()


async def share_request(db, people, item_id, qty):
    """inventory_share from `holder` to `pm`, first approver `rep`."""
    return await workflow.create_request(
        db,
        people["pm"],
        order(
            (item_id, qty),
            type=workflow.INVENTORY_SHARE,
            assigned_to=people["rep"].id,
            share_from_user_id=people["holder"].id,
        ),
    )


async def test_create_defaults_assignee_to_stock_keeper(db, people, make_item):
    item = await make_item(quantity=10)
    req = await workflow.create_request(db, people["pm"], order((item.id, 2)))

    assert req.status == workflow.PENDING
    assert req.requested_by == people["pm"].id
    assert req.assigned_to == people["keeper"].id
    assert [it.quantity for it in req.items] == [2]


async def test_create_share_defaults(db, people, make_item):
    item = await make_item(quantity=10)
    req = await share_request(db, people, item.id, 3)

    assert req.assigned_to == people["rep"].id
    assert req.final_assignee == people["keeper"].id
    assert req.share_to_user_id == people["pm"].id


async def test_create_share_requires_first_approver(db, people, make_item):
    item = await make_item(quantity=10)
    with pytest.raises(ValidationFailed):
        await workflow.create_request(
            db,
            people["pm"],
            order((item.id, 1), type=workflow.INVENTORY_SHARE, share_from_user_id=people["holder"].id),
        )


async def test_create_share_rejects_sharing_with_self(db, people, make_item):
    item = await make_item(quantity=10)
    with pytest.raises(ValidationFailed):
        await workflow.create_request(
            db,
            people["pm"],
            order(
                (item.id, 1),
                type=workflow.INVENTORY_SHARE,
                assigned_to=people["rep"].id,
                share_from_user_id=people["pm"].id,
            ),
        )
    with pytest.raises(ValidationFailed):
        await workflow.create_request(
            db,
            people["pm"],
            order(
                (item.id, 1),
                type=workflow.INVENTORY_SHARE,
                assigned_to=people["rep"].id,
                share_from_user_id=people["holder"].id,
                share_to_user_id=people["holder"].id,
            ),
        )


async def test_create_rejects_bad_lines(db, people):
    with pytest.raises(ValidationFailed):
        await workflow.create_request(db, people["pm"], NewRequest(type="restock"))
    with pytest.raises(ValidationFailed):
        await workflow.create_request(
            db, people["pm"], NewRequest(type=workflow.PREPARE_ORDER, items=[NewRequestItem(quantity=1)])
        )
    with pytest.raises(ValidationFailed):
        await workflow.create_request(
            db,
            people["pm"],
            NewRequest(type=workflow.PREPARE_ORDER, items=[NewRequestItem(quantity=0, item_name="Pens")]),
        )


async def test_approve_single_stage_transfers_to_requester(db, people, make_item):
    item = await make_item(quantity=50)
    item_id = item.id
    req = await workflow.create_request(db, people["pm"], order((item_id, 20)))

    result = await workflow.approve_request(db, req.id, people["keeper"], notes="ok")

    assert result.request.status == workflow.APPROVED
    assert result.request.completed_at is not None
    assert not result.partial
    assert len(result.succeeded) == 1
    assert result.succeeded[0].movement_id is not None
    assert await allocation_qty(db, item_id, people["pm"].id) == 20
    assert await movement_rows(db, item_id) == 1


async def test_approve_partial_failure_without_fallback(db, people, make_item, monkeypatch):
    monkeypatch.setattr(settings, "allow_central_fallback", False)
    good = await make_item(quantity=50)
    short = await make_item(quantity=5)
    good_id, short_id, pm_id = good.id, short.id, people["pm"].id
    req = await workflow.create_request(db, people["pm"], order((good_id, 10), (short_id, 8)))

    result = await workflow.approve_request(db, req.id, people["keeper"])

    assert result.request.status == workflow.APPROVED
    assert result.partial
    assert [o.stock_item_id for o in result.succeeded] == [good_id]
    assert [o.stock_item_id for o in result.failed] == [short_id]
    assert result.failed[0].error_code == "InsufficientCentralStock"
    assert await movement_rows(db, good_id) == 1
    assert await movement_rows(db, short_id) == 0
    assert await allocation_qty(db, short_id, pm_id) == 0


async def test_approve_falls_back_when_central_is_short(db, people, make_item, monkeypatch):
    monkeypatch.setattr(settings, "allow_central_fallback", True)
    short = await make_item(quantity=5)
    short_id, pm_id = short.id, people["pm"].id
    req = await workflow.create_request(db, people["pm"], order((short_id, 8)))

    result = await workflow.approve_request(db, req.id, people["keeper"])

    assert not result.partial
    assert result.succeeded[0].used_fallback
    assert await allocation_qty(db, short_id, pm_id) == 8
    res = await db.execute(select(StockMovement).where(StockMovement.stock_item_id == short_id))
    movement = res.scalar_one()
    assert movement.from_user_id is None
    assert movement.to_user_id == pm_id


async def test_free_text_lines_are_not_transferred(db, people):
    req = await workflow.create_request(
        db,
        people["pm"],
        NewRequest(
            type=workflow.RECEIVE_INVENTORY,
            items=[NewRequestItem(quantity=4, item_name="Conference banners")],
        ),
    )
    result = await workflow.approve_request(db, req.id, people["keeper"])

    assert result.request.status == workflow.APPROVED
    assert result.succeeded == [] and result.failed == []
    assert await movement_rows(db) == 0


async def test_forward_share_request_moves_nothing(db, people, make_item):
    item = await make_item(quantity=50)
    req = await share_request(db, people, item.id, 5)

    result = await workflow.approve_request(db, req.id, people["rep"], notes="looks fine")

    assert result.request.status == workflow.PENDING_SECONDARY
    assert result.request.assigned_to == result.request.final_assignee == people["keeper"].id
    assert result.request.secondary_notes == "looks fine"
    assert await movement_rows(db) == 0


async def test_final_approve_moves_from_holder_to_requester(db, people, make_item):
    item = await make_item(quantity=50)
    item_id = item.id
    holder_id, pm_id = people["holder"].id, people["pm"].id
    await execute_transfer(
        db, stock_item_id=item_id, quantity=10, source=CENTRAL, destination=UserParty(holder_id), actor_id=people["keeper"].id
    )
    req = await share_request(db, people, item_id, 4)
    await workflow.approve_and_forward(db, req.id, people["rep"])

    result = await workflow.final_approve(db, req.id, people["keeper"], notes="shared")

    assert result.request.status == workflow.APPROVED
    assert result.request.secondary_notes == "shared"
    assert await allocation_qty(db, item_id, holder_id) == 6
    assert await allocation_qty(db, item_id, pm_id) == 4
    res = await db.execute(
        select(StockMovement).where(StockMovement.stock_item_id == item_id, StockMovement.type == "transfer")
    )
    movement = res.scalar_one()
    assert (movement.from_user_id, movement.to_user_id) == (holder_id, pm_id)


async def test_final_approve_with_short_holder_is_partial(db, people, make_item):
    enough = await make_item(quantity=50)
    short = await make_item(quantity=50)
    enough_id, short_id = enough.id, short.id
    holder_id, pm_id, keeper_id = people["holder"].id, people["pm"].id, people["keeper"].id
    for item_id in (enough_id, short_id):
        await execute_transfer(
            db, stock_item_id=item_id, quantity=3, source=CENTRAL, destination=UserParty(holder_id), actor_id=keeper_id
        )
    req = await workflow.create_request(
        db,
        people["pm"],
        order(
            (enough_id, 3),
            (short_id, 7),
            type=workflow.INVENTORY_SHARE,
            assigned_to=people["rep"].id,
            share_from_user_id=holder_id,
        ),
    )
    await workflow.approve_request(db, req.id, people["rep"])

    result = await workflow.approve_request(db, req.id, people["keeper"])

    assert result.request.status == workflow.APPROVED
    assert [o.stock_item_id for o in result.succeeded] == [enough_id]
    assert result.failed[0].error_code == "InsufficientUserStock"
    assert not result.failed[0].used_fallback
    assert await allocation_qty(db, enough_id, pm_id) == 3
    assert await allocation_qty(db, short_id, pm_id) == 0
    assert await allocation_qty(db, short_id, holder_id) == 3
    # Only the two initial allocations and the one successful share.
    assert await movement_rows(db) == 3


@pytest.mark.parametrize("forward_first", [False, True])
async def test_deny_from_open_states(db, people, make_item, forward_first):
    item = await make_item(quantity=50)
    req = await share_request(db, people, item.id, 5)
    if forward_first:
        await workflow.approve_and_forward(db, req.id, people["rep"])

    result = await workflow.deny_request(db, req.id, people["keeper"], notes="no budget")

    assert result.request.status == workflow.DENIED
    assert result.request.notes == "no budget"
    assert await movement_rows(db) == 0


async def test_deny_after_approval_is_invalid(db, people, make_item):
    item = await make_item(quantity=50)
    req = await workflow.create_request(db, people["pm"], order((item.id, 1)))
    await workflow.approve_request(db, req.id, people["keeper"])

    with pytest.raises(InvalidTransition):
        await workflow.deny_request(db, req.id, people["keeper"])


async def test_guard_rejects_unassigned_actor(db, people, make_item):
    item = await make_item(quantity=50)
    req = await workflow.create_request(db, people["pm"], order((item.id, 1)))

    with pytest.raises(Forbidden):
        await workflow.approve_request(db, req.id, people["rep"])

    assert await status_of(db, req.id) == workflow.PENDING
    assert await movement_rows(db) == 0


async def test_elevated_role_may_act_on_any_request(db, people, make_user, make_item):
    admin = await make_user(Role.ADMIN)
    item = await make_item(quantity=50)
    req = await share_request(db, people, item.id, 5)

    result = await workflow.deny_request(db, req.id, admin)

    assert result.request.status == workflow.DENIED


async def test_forward_is_only_for_share_requests(db, people, make_item):
    item = await make_item(quantity=50)
    req = await workflow.create_request(db, people["pm"], order((item.id, 1)))

    with pytest.raises(InvalidTransition):
        await workflow.approve_and_forward(db, req.id, people["keeper"])


async def test_final_approve_requires_forward(db, people, make_item):
    item = await make_item(quantity=50)
    req = await share_request(db, people, item.id, 1)

    with pytest.raises(InvalidTransition):
        await workflow.final_approve(db, req.id, people["keeper"])


async def test_second_approval_is_rejected(db, people, make_item):
    item = await make_item(quantity=50)
    item_id = item.id
    req = await workflow.create_request(db, people["pm"], order((item_id, 5)))
    await workflow.approve_request(db, req.id, people["keeper"])

    with pytest.raises(InvalidTransition):
        await workflow.approve_request(db, req.id, people["keeper"])

    assert await movement_rows(db, item_id) == 1


async def test_concurrent_approval_loses_the_claim(db, session_maker, people, make_item):
    item = await make_item(quantity=50)
    item_id, keeper_id = item.id, people["keeper"].id
    req = await workflow.create_request(db, people["pm"], order((item_id, 5)))
    request_id = req.id

    async with session_maker() as other:
        keeper = await other.get(User, keeper_id)
        await workflow.approve_request(other, request_id, keeper)

    # `db` still believes the request is pending.
    with pytest.raises(InvalidTransition) as exc:
        await workflow.approve_request(db, request_id, people["keeper"])

    assert exc.value.status == workflow.APPROVED
    assert await movement_rows(db, item_id) == 1


async def test_complete_by_requester(db, people, make_item):
    item = await make_item(quantity=50)
    req = await workflow.create_request(db, people["pm"], order((item.id, 1)))

    with pytest.raises(InvalidTransition):
        await workflow.complete_request(db, req.id, people["pm"])

    await workflow.approve_request(db, req.id, people["keeper"])
    result = await workflow.complete_request(db, req.id, people["pm"])

    assert result.request.status == workflow.COMPLETED


async def test_delete_open_request(db, people, make_item):
    item = await make_item(quantity=50)
    req = await workflow.create_request(db, people["pm"], order((item.id, 1)))
    request_id = req.id

    with pytest.raises(Forbidden):
        await workflow.delete_request(db, request_id, people["rep"])

    await workflow.delete_request(db, request_id, people["pm"])

    res = await db.execute(select(InventoryRequest.id).where(InventoryRequest.id == request_id))
    assert res.scalar_one_or_none() is None


async def test_approved_request_cannot_be_deleted(db, people, make_item):
    item = await make_item(quantity=50)
    req = await workflow.create_request(db, people["pm"], order((item.id, 1)))
    await workflow.approve_request(db, req.id, people["keeper"])

    with pytest.raises(InvalidTransition):
        await workflow.delete_request(db, req.id, people["pm"])
