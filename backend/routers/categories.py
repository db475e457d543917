from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from core.permissions import require_permission
from db.database import get_async_session, Category as CategoryModel, StockItem as StockItemModel
from db.users import User
from schemas.inventory import CategoryCreate, CategoryRead

router = APIRouter()


async def _get_category(db: AsyncSession, category_id: UUID) -> CategoryModel:
    res = await db.execute(select(CategoryModel).where(CategoryModel.id == category_id))
    m = res.scalar_one_or_none()
    if not m:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Category not found")
    return m


async def _ensure_name_free(db: AsyncSession, name: str, exclude_id: Optional[UUID] = None) -> None:
    stmt = select(CategoryModel.id).where(func.lower(CategoryModel.name) == name.lower())
    if exclude_id is not None:
        stmt = stmt.where(CategoryModel.id != exclude_id)
    existing = await db.execute(stmt)
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Category already exists")


@router.get("/", response_model=List[CategoryRead])
async def list_categories(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    res = await db.execute(select(CategoryModel).order_by(func.lower(CategoryModel.name).asc()))
    return [CategoryRead(**c.to_schema) for c in res.scalars().all()]


@router.get("/{category_id}", response_model=CategoryRead)
async def get_category(
    category_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    return CategoryRead(**(await _get_category(db, category_id)).to_schema)


@router.post("/", response_model=CategoryRead, status_code=status.HTTP_201_CREATED)
async def create_category(
    payload: CategoryCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_add_items")),
):
    await _ensure_name_free(db, payload.name)
    m = CategoryModel(name=payload.name, color=payload.color)
    db.add(m)
    await db.commit()
    await db.refresh(m)
    return CategoryRead(**m.to_schema)


@router.put("/{category_id}", response_model=CategoryRead)
async def update_category(
    category_id: UUID,
    payload: CategoryCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_add_items")),
):
    m = await _get_category(db, category_id)
    await _ensure_name_free(db, payload.name, exclude_id=category_id)
    m.name = payload.name
    m.color = payload.color
    await db.commit()
    await db.refresh(m)
    return CategoryRead(**m.to_schema)


@router.delete("/{category_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_category(
    category_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_add_items")),
):
    m = await _get_category(db, category_id)
    in_use = await db.execute(
        select(func.count()).select_from(StockItemModel).where(StockItemModel.category_id == category_id)
    )
    if int(in_use.scalar_one() or 0) > 0:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Category is used by stock items and cannot be deleted",
        )
    await db.delete(m)
    await db.commit()
