import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from core.permissions import Role, require_permission
from db.database import get_async_session
from db.users import User
from schemas.users import RoleUpdate, UserRead

logger = logging.getLogger(__name__)

# Mounted ahead of the fastapi-users /users router; the uuid convertor keeps /users/me with fastapi-users.
router = APIRouter()


@router.get("/", response_model=List[UserRead])
async def list_users(
    role: Optional[Role] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    stmt = select(User).where(User.is_active == True)  # noqa: E712
    if role is not None:
        stmt = stmt.where(User.role == role.value)
    res = await db.execute(stmt.order_by(func.lower(User.name).asc(), User.email.asc()))
    return [UserRead.model_validate(u) for u in res.scalars().all()]


@router.get("/{user_id:uuid}", response_model=UserRead)
async def get_user(
    user_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    res = await db.execute(select(User).where(User.id == user_id))
    u = res.scalar_one_or_none()
    if not u:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")
    return UserRead.model_validate(u)


@router.patch("/{user_id}/role", response_model=UserRead)
async def set_user_role(
    user_id: UUID,
    payload: RoleUpdate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_manage_users")),
):
    res = await db.execute(select(User).where(User.id == user_id))
    u = res.scalar_one_or_none()
    if not u:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

    previous = u.role
    u.role = payload.role.value
    await db.commit()
    await db.refresh(u)
    logger.info("User %s role changed %s -> %s by %s", u.id, previous, u.role, user.id)
    return UserRead.model_validate(u)
