from typing import List
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from core.permissions import require_permission
from db.database import get_async_session, Specialty as SpecialtyModel, StockItem as StockItemModel
from db.users import User
from schemas.inventory import SpecialtyCreate, SpecialtyRead

router = APIRouter()


async def _get_specialty(db: AsyncSession, specialty_id: UUID) -> SpecialtyModel:
    res = await db.execute(select(SpecialtyModel).where(SpecialtyModel.id == specialty_id))
    m = res.scalar_one_or_none()
    if not m:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Specialty not found")
    return m


@router.get("/", response_model=List[SpecialtyRead])
async def list_specialties(
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    res = await db.execute(select(SpecialtyModel).order_by(func.lower(SpecialtyModel.name).asc()))
    return [SpecialtyRead(**s.to_schema) for s in res.scalars().all()]


@router.post("/", response_model=SpecialtyRead, status_code=status.HTTP_201_CREATED)
async def create_specialty(
    payload: SpecialtyCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_manage_specialties")),
):
    existing = await db.execute(
        select(SpecialtyModel.id).where(func.lower(SpecialtyModel.name) == payload.name.lower())
    )
    if existing.scalar_one_or_none():
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Specialty already exists")

    m = SpecialtyModel(name=payload.name, description=payload.description)
    db.add(m)
    await db.commit()
    await db.refresh(m)
    return SpecialtyRead(**m.to_schema)


@router.put("/{specialty_id}", response_model=SpecialtyRead)
async def update_specialty(
    specialty_id: UUID,
    payload: SpecialtyCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_manage_specialties")),
):
    m = await _get_specialty(db, specialty_id)
    m.name = payload.name
    m.description = payload.description
    await db.commit()
    await db.refresh(m)
    return SpecialtyRead(**m.to_schema)


@router.delete("/{specialty_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_specialty(
    specialty_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_manage_specialties")),
):
    m = await _get_specialty(db, specialty_id)
    # Items and users keep existing without a specialty.
    await db.execute(
        update(StockItemModel).where(StockItemModel.specialty_id == specialty_id).values(specialty_id=None)
    )
    await db.execute(
        update(User).where(User.specialty_id == specialty_id).values(specialty_id=None)
    )
    await db.delete(m)
    await db.commit()
