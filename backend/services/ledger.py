"""
Allocation ledger helpers.

These functions read and mutate `StockAllocation` rows inside the caller's
transaction; none of them commit.
"""

from dataclasses import dataclass
from typing import List, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.database import StockAllocation as StockAllocationModel, StockItem as StockItemModel, utcnow


@dataclass(frozen=True)
class OverAllocation:
    stock_item_id: UUID
    name: str
    quantity: int
    allocated: int

    @property
    def excess(self) -> int:
        return self.allocated - self.quantity


async def get_allocation(
    db: AsyncSession,
    stock_item_id: UUID,
    user_id: UUID,
    *,
    for_update: bool = False,
) -> Optional[StockAllocationModel]:
    stmt = select(StockAllocationModel).where(
        StockAllocationModel.stock_item_id == stock_item_id,
        StockAllocationModel.user_id == user_id,
    )
    if for_update:
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(stmt)
    return res.scalar_one_or_none()


async def total_allocated(db: AsyncSession, stock_item_id: UUID) -> int:
    res = await db.execute(
        select(func.coalesce(func.sum(StockAllocationModel.quantity), 0)).where(
            StockAllocationModel.stock_item_id == stock_item_id
        )
    )
    return int(res.scalar_one() or 0)


async def allocated_by_item(db: AsyncSession, stock_item_ids: Optional[List[UUID]] = None) -> dict[UUID, int]:
    stmt = select(
        StockAllocationModel.stock_item_id,
        func.sum(StockAllocationModel.quantity),
    ).group_by(StockAllocationModel.stock_item_id)
    if stock_item_ids is not None:
        if not stock_item_ids:
            return {}
        stmt = stmt.where(StockAllocationModel.stock_item_id.in_(stock_item_ids))
    res = await db.execute(stmt)
    return {item_id: int(total or 0) for item_id, total in res.all()}


async def central_available(db: AsyncSession, item: StockItemModel) -> int:
    """Undistributed units of `item`. Derived on every call, never stored."""
    return int(item.quantity or 0) - await total_allocated(db, item.id)


async def credit(
    db: AsyncSession,
    *,
    stock_item_id: UUID,
    user_id: UUID,
    quantity: int,
    allocated_by: Optional[UUID],
) -> StockAllocationModel:
    allocation = await get_allocation(db, stock_item_id, user_id, for_update=True)
    if allocation is not None:
        allocation.quantity = int(allocation.quantity) + int(quantity)
    else:
        allocation = StockAllocationModel(
            stock_item_id=stock_item_id,
            user_id=user_id,
            quantity=int(quantity),
            allocated_by_user_id=allocated_by,
            allocated_at=utcnow(),
        )
        db.add(allocation)
    await db.flush()
    return allocation


async def debit(db: AsyncSession, allocation: StockAllocationModel, quantity: int) -> Optional[StockAllocationModel]:
    """Take `quantity` out of `allocation`; returns None when the row was deleted."""
    remaining = int(allocation.quantity) - int(quantity)
    if remaining < 0:
        raise ValueError("debit would make allocation negative")
    if remaining == 0:
        await db.delete(allocation)
        await db.flush()
        return None
    allocation.quantity = remaining
    await db.flush()
    return allocation


async def list_allocations(
    db: AsyncSession,
    *,
    user_id: Optional[UUID] = None,
    stock_item_id: Optional[UUID] = None,
) -> List[StockAllocationModel]:
    stmt = select(StockAllocationModel)
    if user_id is not None:
        stmt = stmt.where(StockAllocationModel.user_id == user_id)
    if stock_item_id is not None:
        stmt = stmt.where(StockAllocationModel.stock_item_id == stock_item_id)
    res = await db.execute(stmt.order_by(StockAllocationModel.allocated_at.asc()))
    return list(res.scalars().all())


async def find_overallocated(db: AsyncSession) -> List[OverAllocation]:
    allocated = (
        select(
            StockAllocationModel.stock_item_id.label("stock_item_id"),
            func.sum(StockAllocationModel.quantity).label("allocated"),
        )
        .group_by(StockAllocationModel.stock_item_id)
        .subquery()
    )
    res = await db.execute(
        select(StockItemModel.id, StockItemModel.name, StockItemModel.quantity, allocated.c.allocated)
        .join(allocated, allocated.c.stock_item_id == StockItemModel.id)
        .where(allocated.c.allocated > StockItemModel.quantity)
        .order_by(func.lower(StockItemModel.name).asc())
    )
    return [
        OverAllocation(stock_item_id=item_id, name=name, quantity=int(qty), allocated=int(total))
        for item_id, name, qty, total in res.all()
    ]
