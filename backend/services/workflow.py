"""
Inventory request workflow.

    pending ──approve──────────────> approved ──complete──> completed
    pending ──forward (share)──────> pending_secondary ──final approve──> approved
    pending / pending_secondary ──deny──> denied

Transitions are claimed with a conditional UPDATE and committed before any
line item is transferred, so a request can only be approved once. Each line
item is then transferred in its own transaction; a failing line is recorded
in `WorkflowResult.failed` and does not undo the approval.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.config import settings
from core.permissions import Role, is_elevated
from db.database import (
    InventoryRequest as InventoryRequestModel,
    RequestItem as RequestItemModel,
    StockItem as StockItemModel,
    utcnow,
)
from db.users import User
from services.errors import (
    Forbidden,
    InsufficientCentralStock,
    InvalidTransition,
    InventoryError,
    RequestNotFound,
    StockItemNotFound,
    UserNotFound,
    ValidationFailed,
)
from services.transfers import CENTRAL, UserParty, allocate_without_pool_check, execute_transfer

logger = logging.getLogger(__name__)

PREPARE_ORDER = "prepare_order"
RECEIVE_INVENTORY = "receive_inventory"
INVENTORY_SHARE = "inventory_share"

REQUEST_TYPES = (PREPARE_ORDER, RECEIVE_INVENTORY, INVENTORY_SHARE)

PENDING = "pending"
PENDING_SECONDARY = "pending_secondary"
APPROVED = "approved"
DENIED = "denied"
COMPLETED = "completed"

OPEN_STATUSES = frozenset({PENDING, PENDING_SECONDARY})


@dataclass(frozen=True)
class NewRequestItem:
    quantity: int
    stock_item_id: Optional[UUID] = None
    item_name: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class NewRequest:
    type: str
    items: List[NewRequestItem] = field(default_factory=list)
    assigned_to: Optional[UUID] = None
    final_assignee: Optional[UUID] = None
    share_from_user_id: Optional[UUID] = None
    share_to_user_id: Optional[UUID] = None
    notes: Optional[str] = None
    file_url: Optional[str] = None


@dataclass(frozen=True)
class LineOutcome:
    request_item_id: UUID
    stock_item_id: Optional[UUID]
    quantity: int
    movement_id: Optional[UUID] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    used_fallback: bool = False


@dataclass
class WorkflowResult:
    request: InventoryRequestModel
    succeeded: List[LineOutcome] = field(default_factory=list)
    failed: List[LineOutcome] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return bool(self.failed)


@dataclass(frozen=True)
class _Line:
    id: UUID
    stock_item_id: Optional[UUID]
    quantity: int


async def load_request(db: AsyncSession, request_id: UUID, *, refresh: bool = False) -> InventoryRequestModel:
    stmt = (
        select(InventoryRequestModel)
        .options(selectinload(InventoryRequestModel.items))
        .where(InventoryRequestModel.id == request_id)
    )
    if refresh:
        stmt = stmt.execution_options(populate_existing=True)
    res = await db.execute(stmt)
    req = res.scalar_one_or_none()
    if req is None:
        raise RequestNotFound(request_id)
    return req


async def _first_stock_keeper(db: AsyncSession) -> Optional[UUID]:
    res = await db.execute(
        select(User.id)
        .where(User.role == Role.STOCK_KEEPER.value, User.is_active == True)  # noqa: E712
        .order_by(User.created_at.asc(), User.email.asc())
        .limit(1)
    )
    return res.scalar_one_or_none()


async def _ensure_users_exist(db: AsyncSession, user_ids: List[UUID]) -> None:
    wanted = {u for u in user_ids if u is not None}
    if not wanted:
        return
    res = await db.execute(select(User.id).where(User.id.in_(wanted)))
    found = set(res.scalars().all())
    for user_id in wanted - found:
        raise UserNotFound(user_id)


async def _stock_item_names(db: AsyncSession, stock_item_ids: List[UUID]) -> dict:
    """Names of the referenced catalog items; every id must exist."""
    wanted = {s for s in stock_item_ids if s is not None}
    if not wanted:
        return {}
    res = await db.execute(select(StockItemModel.id, StockItemModel.name).where(StockItemModel.id.in_(wanted)))
    names = {item_id: name for item_id, name in res.all()}
    for stock_item_id in wanted - set(names):
        raise StockItemNotFound(stock_item_id)
    return names


def _check_actor(req: InventoryRequestModel, actor: User) -> None:
    if req.assigned_to == actor.id or is_elevated(actor):
        return
    raise Forbidden("Not authorized to act on this request")


async def _claim(
    db: AsyncSession,
    req: InventoryRequestModel,
    *,
    expected: str,
    action: str,
    values: dict,
) -> None:
    """Move `req` out of `expected`; fails if someone else moved it first."""
    request_id = req.id
    res = await db.execute(
        update(InventoryRequestModel)
        .where(InventoryRequestModel.id == request_id, InventoryRequestModel.status == expected)
        .values(updated_at=utcnow(), **values)
    )
    if res.rowcount != 1:
        await db.rollback()
        current = await load_request(db, request_id, refresh=True)
        raise InvalidTransition(request_id, current.status, action)
    await db.commit()


async def create_request(db: AsyncSession, actor: User, payload: NewRequest) -> InventoryRequestModel:
    if payload.type not in REQUEST_TYPES:
        raise ValidationFailed(f"Unknown request type '{payload.type}'")
    for line in payload.items:
        if line.stock_item_id is None and not (line.item_name or "").strip():
            raise ValidationFailed("Each request item needs a stock item or an item name")
        if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
            raise ValidationFailed("Each request item needs a positive quantity")

    assigned_to = payload.assigned_to
    final_assignee = payload.final_assignee
    if payload.type == INVENTORY_SHARE:
        if assigned_to is None:
            raise ValidationFailed("inventory_share requests need a first-stage approver (assigned_to)")
        if payload.share_from_user_id is None:
            raise ValidationFailed("inventory_share requests need share_from_user_id")
        if payload.share_from_user_id == (payload.share_to_user_id or actor.id):
            raise ValidationFailed("inventory_share requests cannot share from the receiving user")
        if final_assignee is None:
            final_assignee = await _first_stock_keeper(db)
        if final_assignee is None:
            raise ValidationFailed("No final approver available for inventory_share request")
    elif assigned_to is None:
        assigned_to = await _first_stock_keeper(db)

    await _ensure_users_exist(
        db,
        [assigned_to, final_assignee, payload.share_from_user_id, payload.share_to_user_id],
    )
    names = await _stock_item_names(db, [line.stock_item_id for line in payload.items])

    now = utcnow()
    req = InventoryRequestModel(
        type=payload.type,
        status=PENDING,
        requested_by=actor.id,
        assigned_to=assigned_to,
        final_assignee=final_assignee,
        share_from_user_id=payload.share_from_user_id,
        share_to_user_id=payload.share_to_user_id if payload.share_to_user_id else (
            actor.id if payload.type == INVENTORY_SHARE else None
        ),
        notes=payload.notes,
        file_url=payload.file_url,
        created_at=now,
        updated_at=now,
    )
    req.items = [
        RequestItemModel(
            position=i,
            stock_item_id=line.stock_item_id,
            # Catalog name snapshot; stock_item_id is nulled if the item is deleted.
            item_name=(line.item_name or "").strip() or names.get(line.stock_item_id),
            quantity=line.quantity,
            notes=line.notes,
        )
        for i, line in enumerate(payload.items)
    ]
    db.add(req)
    await db.commit()
    logger.info("Request %s (%s) created by %s, assigned to %s", req.id, req.type, actor.id, assigned_to)
    return await load_request(db, req.id, refresh=True)


def _transfer_lines(req: InventoryRequestModel) -> List[_Line]:
    # Snapshot plain values: per-line rollbacks expire ORM state.
    return [
        _Line(id=it.id, stock_item_id=it.stock_item_id, quantity=int(it.quantity or 0))
        for it in req.items
    ]


async def _run_lines(
    db: AsyncSession,
    request_id: UUID,
    lines: List[_Line],
    *,
    source_user_id: Optional[UUID],
    to_user_id: UUID,
    actor_id: UUID,
    allow_fallback: bool,
) -> tuple[List[LineOutcome], List[LineOutcome]]:
    succeeded: List[LineOutcome] = []
    failed: List[LineOutcome] = []
    source = CENTRAL if source_user_id is None else UserParty(source_user_id)
    note = f"Request {request_id}"

    for line in lines:
        if line.stock_item_id is None or line.quantity <= 0:
            # Free-text lines have nothing to move.
            continue
        try:
            movement = await execute_transfer(
                db,
                stock_item_id=line.stock_item_id,
                quantity=line.quantity,
                source=source,
                destination=UserParty(to_user_id),
                actor_id=actor_id,
                notes=note,
            )
            succeeded.append(LineOutcome(line.id, line.stock_item_id, line.quantity, movement_id=movement.id))
        except InsufficientCentralStock as e:
            if not allow_fallback:
                logger.warning("Request %s line %s not transferred: %s", request_id, line.id, e)
                failed.append(LineOutcome(line.id, line.stock_item_id, line.quantity, error=e.message, error_code=e.code))
                continue
            try:
                movement = await allocate_without_pool_check(
                    db,
                    stock_item_id=line.stock_item_id,
                    quantity=line.quantity,
                    user_id=to_user_id,
                    actor_id=actor_id,
                    notes=f"{note} (central stock short: available={e.available})",
                )
            except InventoryError as fallback_error:
                logger.warning("Request %s line %s fallback failed: %s", request_id, line.id, fallback_error)
                failed.append(
                    LineOutcome(
                        line.id, line.stock_item_id, line.quantity,
                        error=fallback_error.message, error_code=fallback_error.code,
                    )
                )
                continue
            succeeded.append(
                LineOutcome(line.id, line.stock_item_id, line.quantity, movement_id=movement.id, used_fallback=True)
            )
        except InventoryError as e:
            logger.warning("Request %s line %s not transferred: %s", request_id, line.id, e)
            failed.append(LineOutcome(line.id, line.stock_item_id, line.quantity, error=e.message, error_code=e.code))

    return succeeded, failed


async def approve_request(
    db: AsyncSession,
    request_id: UUID,
    actor: User,
    notes: Optional[str] = None,
) -> WorkflowResult:
    req = await load_request(db, request_id)
    if req.type == INVENTORY_SHARE:
        if req.status == PENDING:
            return await approve_and_forward(db, request_id, actor, notes)
        return await final_approve(db, request_id, actor, notes)

    _check_actor(req, actor)
    if req.status != PENDING:
        raise InvalidTransition(req.id, req.status, "approve")

    lines = _transfer_lines(req)
    requested_by = req.requested_by
    values = {"status": APPROVED, "completed_at": utcnow()}
    if notes is not None:
        values["notes"] = notes
    await _claim(db, req, expected=PENDING, action="approve", values=values)
    logger.info("Request %s approved by %s", request_id, actor.id)

    succeeded, failed = await _run_lines(
        db,
        request_id,
        lines,
        source_user_id=None,
        to_user_id=requested_by,
        actor_id=actor.id,
        allow_fallback=settings.allow_central_fallback,
    )
    if failed:
        logger.warning("Request %s approved with %s of %s lines not transferred", request_id, len(failed), len(lines))
    req = await load_request(db, request_id, refresh=True)
    return WorkflowResult(request=req, succeeded=succeeded, failed=failed)


async def approve_and_forward(
    db: AsyncSession,
    request_id: UUID,
    actor: User,
    notes: Optional[str] = None,
) -> WorkflowResult:
    req = await load_request(db, request_id)
    _check_actor(req, actor)
    if req.type != INVENTORY_SHARE:
        raise InvalidTransition(req.id, req.status, "forward")
    if req.status != PENDING:
        raise InvalidTransition(req.id, req.status, "forward")
    if req.final_assignee is None:
        raise ValidationFailed("Request has no final approver to forward to")

    await _claim(
        db,
        req,
        expected=PENDING,
        action="forward",
        values={
            "status": PENDING_SECONDARY,
            "assigned_to": req.final_assignee,
            "secondary_notes": notes,
        },
    )
    logger.info("Request %s forwarded by %s to %s", request_id, actor.id, req.final_assignee)
    req = await load_request(db, request_id, refresh=True)
    return WorkflowResult(request=req)


async def final_approve(
    db: AsyncSession,
    request_id: UUID,
    actor: User,
    notes: Optional[str] = None,
) -> WorkflowResult:
    req = await load_request(db, request_id)
    _check_actor(req, actor)
    if req.type != INVENTORY_SHARE or req.status != PENDING_SECONDARY:
        raise InvalidTransition(req.id, req.status, "final-approve")
    if req.share_from_user_id is None:
        raise ValidationFailed("Request has no share_from_user_id")

    lines = _transfer_lines(req)
    source_user_id = req.share_from_user_id
    requested_by = req.requested_by
    values = {"status": APPROVED, "completed_at": utcnow()}
    if notes is not None:
        values["secondary_notes"] = notes
    await _claim(db, req, expected=PENDING_SECONDARY, action="final-approve", values=values)
    logger.info("Request %s final-approved by %s", request_id, actor.id)

    succeeded, failed = await _run_lines(
        db,
        request_id,
        lines,
        source_user_id=source_user_id,
        to_user_id=requested_by,
        actor_id=actor.id,
        allow_fallback=False,
    )
    if failed:
        logger.warning("Request %s approved with %s of %s lines not transferred", request_id, len(failed), len(lines))
    req = await load_request(db, request_id, refresh=True)
    return WorkflowResult(request=req, succeeded=succeeded, failed=failed)


async def deny_request(
    db: AsyncSession,
    request_id: UUID,
    actor: User,
    notes: Optional[str] = None,
) -> WorkflowResult:
    req = await load_request(db, request_id)
    _check_actor(req, actor)
    if req.status not in OPEN_STATUSES:
        raise InvalidTransition(req.id, req.status, "deny")

    values = {"status": DENIED, "completed_at": utcnow()}
    if notes is not None:
        values["notes"] = notes
    await _claim(db, req, expected=req.status, action="deny", values=values)
    logger.info("Request %s denied by %s", request_id, actor.id)
    req = await load_request(db, request_id, refresh=True)
    return WorkflowResult(request=req)


async def complete_request(
    db: AsyncSession,
    request_id: UUID,
    actor: User,
    notes: Optional[str] = None,
) -> WorkflowResult:
    req = await load_request(db, request_id)
    if req.requested_by != actor.id:
        _check_actor(req, actor)
    if req.status != APPROVED:
        raise InvalidTransition(req.id, req.status, "complete")

    values = {"status": COMPLETED, "completed_at": utcnow()}
    if notes is not None:
        values["secondary_notes"] = notes
    await _claim(db, req, expected=APPROVED, action="complete", values=values)
    logger.info("Request %s completed by %s", request_id, actor.id)
    req = await load_request(db, request_id, refresh=True)
    return WorkflowResult(request=req)


async def delete_request(db: AsyncSession, request_id: UUID, actor: User) -> None:
    req = await load_request(db, request_id)
    if req.requested_by != actor.id and actor.role not in (Role.CEO.value, Role.ADMIN.value) and not actor.is_superuser:
        raise Forbidden("Not authorized to delete this request")
    if req.status not in OPEN_STATUSES and req.status != DENIED:
        raise InvalidTransition(req.id, req.status, "delete")
    await db.delete(req)
    await db.commit()
    logger.info("Request %s deleted by %s", request_id, actor.id)
