import logging
from datetime import date, timedelta
from typing import Dict, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from core.config import settings
from core.permissions import require_permission
from db.database import (
    get_async_session,
    Category as CategoryModel,
    Specialty as SpecialtyModel,
    StockAllocation as StockAllocationModel,
    StockItem as StockItemModel,
    StockMovement as StockMovementModel,
)
from db.users import User
from schemas.inventory import (
    OverAllocationRead,
    StockItemCreate,
    StockItemRead,
    StockItemUpdate,
    price_to_cents,
)
from services import ledger

logger = logging.getLogger(__name__)

router = APIRouter()


def _item_read(item: StockItemModel, allocated: int) -> StockItemRead:
    price_minor = int(item.price or 0)
    return StockItemRead(
        id=item.id,
        name=item.name,
        category_id=item.category_id,
        specialty_id=item.specialty_id,
        quantity=int(item.quantity or 0),
        allocated=allocated,
        available=int(item.quantity or 0) - allocated,
        price_minor=price_minor,
        price=price_minor / 100.0,
        expiry=item.expiry,
        unique_number=item.unique_number,
        notes=item.notes,
        image_url=item.image_url,
        created_at=item.created_at,
        created_by_user_id=item.created_by_user_id,
    )


async def _with_allocations(db: AsyncSession, items: List[StockItemModel]) -> List[StockItemRead]:
    totals: Dict[UUID, int] = await ledger.allocated_by_item(db, [i.id for i in items])
    return [_item_read(i, totals.get(i.id, 0)) for i in items]


async def _get_item(db: AsyncSession, item_id: UUID, for_update: bool = False) -> StockItemModel:
    stmt = select(StockItemModel).where(StockItemModel.id == item_id)
    if for_update:
        # Serializes with execute_transfer, which locks the same row.
        stmt = stmt.with_for_update().execution_options(populate_existing=True)
    res = await db.execute(stmt)
    item = res.scalar_one_or_none()
    if not item:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Stock item not found")
    return item


async def _check_refs(db: AsyncSession, category_id: Optional[UUID], specialty_id: Optional[UUID]) -> None:
    if category_id is not None:
        res = await db.execute(select(CategoryModel.id).where(CategoryModel.id == category_id))
        if res.scalar_one_or_none() is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown category_id")
    if specialty_id is not None:
        res = await db.execute(select(SpecialtyModel.id).where(SpecialtyModel.id == specialty_id))
        if res.scalar_one_or_none() is None:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Unknown specialty_id")


@router.get("/", response_model=List[StockItemRead])
async def list_stock_items(
    category_id: Optional[UUID] = Query(None),
    specialty_id: Optional[UUID] = Query(None),
    q: Optional[str] = Query(None, description="Case-insensitive name / unique number search"),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    stmt = select(StockItemModel)
    if category_id is not None:
        stmt = stmt.where(StockItemModel.category_id == category_id)
    if specialty_id is not None:
        stmt = stmt.where(StockItemModel.specialty_id == specialty_id)
    if q and q.strip():
        like = f"%{q.strip().lower()}%"
        stmt = stmt.where(
            func.lower(StockItemModel.name).like(like)
            | func.lower(func.coalesce(StockItemModel.unique_number, "")).like(like)
        )
    res = await db.execute(stmt.order_by(func.lower(StockItemModel.name).asc()))
    return await _with_allocations(db, list(res.scalars().all()))


@router.get("/expiring", response_model=List[StockItemRead])
async def list_expiring_items(
    days: Optional[int] = Query(None, ge=0),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    """Items whose expiry falls within `days` from today, already expired ones included."""
    if days is None:
        days = settings.expiring_days_default
    threshold = date.today() + timedelta(days=days)
    res = await db.execute(
        select(StockItemModel)
        .where(StockItemModel.expiry.is_not(None), StockItemModel.expiry <= threshold)
        .order_by(StockItemModel.expiry.asc())
    )
    return await _with_allocations(db, list(res.scalars().all()))


@router.get("/integrity", response_model=List[OverAllocationRead])
async def integrity_report(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_view_reports")),
):
    rows = await ledger.find_overallocated(db)
    if rows:
        logger.warning("%s stock item(s) allocated beyond their quantity", len(rows))
    return [
        OverAllocationRead(
            stock_item_id=r.stock_item_id,
            name=r.name,
            quantity=r.quantity,
            allocated=r.allocated,
            excess=r.excess,
        )
        for r in rows
    ]


@router.get("/{item_id}", response_model=StockItemRead)
async def get_stock_item(
    item_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    item = await _get_item(db, item_id)
    return _item_read(item, await ledger.total_allocated(db, item.id))


@router.post("/", response_model=StockItemRead, status_code=status.HTTP_201_CREATED)
async def create_stock_item(
    payload: StockItemCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_add_items")),
):
    await _check_refs(db, payload.category_id, payload.specialty_id)
    item = StockItemModel(
        name=payload.name,
        category_id=payload.category_id,
        specialty_id=payload.specialty_id,
        quantity=payload.quantity,
        price=price_to_cents(payload.price) or 0,
        expiry=payload.expiry,
        unique_number=payload.unique_number,
        notes=payload.notes,
        image_url=payload.image_url,
        created_by_user_id=user.id,
    )
    db.add(item)
    await db.commit()
    await db.refresh(item)
    logger.info("Stock item %s (%s) created by %s", item.id, item.name, user.id)
    return _item_read(item, 0)


@router.patch("/{item_id}", response_model=StockItemRead)
async def update_stock_item(
    item_id: UUID,
    payload: StockItemUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_edit_items")),
):
    item = await _get_item(db, item_id, for_update=True)
    data = payload.model_dump(exclude_unset=True)

    if data.get("category_id") is None:
        data.pop("category_id", None)
    await _check_refs(db, data.get("category_id"), data.get("specialty_id"))

    if "name" in data and data["name"] is None:
        data.pop("name")
    if "quantity" in data:
        if data["quantity"] is None:
            data.pop("quantity")
        else:
            allocated = await ledger.total_allocated(db, item.id)
            if data["quantity"] < allocated:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"quantity cannot be lower than the {allocated} units already allocated",
                )
    if "price" in data:
        data["price"] = price_to_cents(data["price"]) or 0

    for key, value in data.items():
        setattr(item, key, value)

    await db.commit()
    await db.refresh(item)
    return _item_read(item, await ledger.total_allocated(db, item.id))


@router.delete("/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_stock_item(
    item_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_remove_items")),
):
    item = await _get_item(db, item_id, for_update=True)

    allocations = await db.execute(
        select(func.count()).select_from(StockAllocationModel).where(StockAllocationModel.stock_item_id == item_id)
    )
    movements = await db.execute(
        select(func.count()).select_from(StockMovementModel).where(StockMovementModel.stock_item_id == item_id)
    )
    if int(allocations.scalar_one() or 0) or int(movements.scalar_one() or 0):
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Stock item has allocations or movement history and cannot be deleted",
        )

    await db.delete(item)
    await db.commit()
    logger.info("Stock item %s deleted by %s", item_id, user.id)
