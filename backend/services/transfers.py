"""
Transfer engine: moves quantity of one stock item between the central pool
and user allocations.

A party is either the central pool or a specific user:

    Central           -> UserParty(id)   allocation
    UserParty(id)     -> UserParty(id2)  transfer
    UserParty(id)     -> Central         return

Every successful call writes exactly one `StockMovement` row and commits.
Every failure rolls back and raises a typed `InventoryError`.
"""

import logging
from dataclasses import dataclass
from typing import Optional, Union
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import StockItem as StockItemModel, StockMovement as StockMovementModel, utcnow
from db.users import User
from services import ledger
from services.errors import (
    InsufficientCentralStock,
    InsufficientUserStock,
    InvalidQuantity,
    InvalidTransfer,
    InventoryError,
    StockItemNotFound,
    TransferConflict,
    UserNotFound,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Central:
    @property
    def user_id(self) -> None:
        return None

    def __str__(self) -> str:
        return "central"


@dataclass(frozen=True)
class UserParty:
    user_id: UUID

    def __str__(self) -> str:
        return f"user:{self.user_id}"


Party = Union[Central, UserParty]

CENTRAL = Central()


def party_for(user_id: Optional[UUID]) -> Party:
    """Map a nullable user id (NULL = central pool) onto a party."""
    return CENTRAL if user_id is None else UserParty(user_id)


def movement_type(source: Party, destination: Party) -> str:
    if isinstance(source, Central):
        return "allocation"
    if isinstance(destination, Central):
        return "return"
    return "transfer"


def validate_quantity(quantity) -> int:
    # bool is an int subclass; True is not a quantity.
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity <= 0:
        raise InvalidQuantity(quantity)
    return quantity


def _validate_parties(source: Party, destination: Party) -> None:
    if isinstance(source, Central) and isinstance(destination, Central):
        raise InvalidTransfer("Source and destination cannot both be the central pool")
    if source == destination:
        raise InvalidTransfer("Source and destination must be different users")


async def _lock_item(db: AsyncSession, stock_item_id: UUID) -> StockItemModel:
    # Row lock serializes concurrent transfers of the same item.
    res = await db.execute(
        select(StockItemModel)
        .where(StockItemModel.id == stock_item_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    item = res.scalar_one_or_none()
    if item is None:
        raise StockItemNotFound(stock_item_id)
    return item


async def _ensure_user(db: AsyncSession, user_id: UUID) -> None:
    res = await db.execute(select(User.id).where(User.id == user_id))
    if res.scalar_one_or_none() is None:
        raise UserNotFound(user_id)


def _movement(
    *,
    stock_item_id: UUID,
    quantity: int,
    source: Party,
    destination: Party,
    actor_id: Optional[UUID],
    notes: Optional[str],
) -> StockMovementModel:
    return StockMovementModel(
        type=movement_type(source, destination),
        stock_item_id=stock_item_id,
        from_user_id=source.user_id,
        to_user_id=destination.user_id,
        quantity=quantity,
        notes=notes,
        moved_at=utcnow(),
        moved_by_user_id=actor_id,
    )


async def execute_transfer(
    db: AsyncSession,
    *,
    stock_item_id: UUID,
    quantity: int,
    source: Party,
    destination: Party,
    actor_id: Optional[UUID],
    notes: Optional[str] = None,
) -> StockMovementModel:
    quantity = validate_quantity(quantity)
    _validate_parties(source, destination)

    # NOTE: the session may already be inside an autobegun transaction (e.g. the
    # current-user dependency shares it), so rely on it and commit/rollback explicitly.
    try:
        item = await _lock_item(db, stock_item_id)
        for party in (source, destination):
            if isinstance(party, UserParty):
                await _ensure_user(db, party.user_id)

        if isinstance(source, Central):
            available = await ledger.central_available(db, item)
            if available < quantity:
                raise InsufficientCentralStock(item.id, available, quantity)
        else:
            allocation = await ledger.get_allocation(db, item.id, source.user_id, for_update=True)
            held = int(allocation.quantity) if allocation is not None else 0
            if allocation is None or held < quantity:
                raise InsufficientUserStock(item.id, source.user_id, held, quantity)
            await ledger.debit(db, allocation, quantity)

        if isinstance(destination, UserParty):
            await ledger.credit(
                db,
                stock_item_id=item.id,
                user_id=destination.user_id,
                quantity=quantity,
                allocated_by=actor_id,
            )

        movement = _movement(
            stock_item_id=item.id,
            quantity=quantity,
            source=source,
            destination=destination,
            actor_id=actor_id,
            notes=notes,
        )
        db.add(movement)
        await db.commit()
    except InventoryError as e:
        await db.rollback()
        logger.info("Transfer of %s x%s %s -> %s rejected: %s", stock_item_id, quantity, source, destination, e)
        raise
    except (IntegrityError, DBAPIError) as e:
        await db.rollback()
        logger.warning("Transfer of %s x%s %s -> %s rolled back: %r", stock_item_id, quantity, source, destination, e)
        raise TransferConflict(f"Transfer could not be committed, please retry: {e.__class__.__name__}") from e

    logger.info(
        "Moved %s x%s %s -> %s (movement %s, by %s)",
        stock_item_id, quantity, source, destination, movement.id, actor_id,
    )
    return movement


async def allocate_without_pool_check(
    db: AsyncSession,
    *,
    stock_item_id: UUID,
    quantity: int,
    user_id: UUID,
    actor_id: Optional[UUID],
    notes: Optional[str] = None,
) -> StockMovementModel:
    """
    Credit `user_id` straight from the central pool without checking central
    availability. Used by request approvals when central bookkeeping is short;
    still records the movement as coming from the central pool.
    """
    quantity = validate_quantity(quantity)
    destination = UserParty(user_id)
    try:
        item = await _lock_item(db, stock_item_id)
        await _ensure_user(db, user_id)
        await ledger.credit(db, stock_item_id=item.id, user_id=user_id, quantity=quantity, allocated_by=actor_id)
        movement = _movement(
            stock_item_id=item.id,
            quantity=quantity,
            source=CENTRAL,
            destination=destination,
            actor_id=actor_id,
            notes=notes,
        )
        db.add(movement)
        await db.commit()
    except InventoryError:
        await db.rollback()
        raise
    except (IntegrityError, DBAPIError) as e:
        await db.rollback()
        logger.warning("Direct allocation of %s x%s to %s rolled back: %r", stock_item_id, quantity, user_id, e)
        raise TransferConflict(f"Allocation could not be committed, please retry: {e.__class__.__name__}") from e

    logger.warning(
        "Allocated %s x%s to %s without central availability check (movement %s)",
        stock_item_id, quantity, user_id, movement.id,
    )
    return movement
