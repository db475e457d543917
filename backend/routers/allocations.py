from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from core.permissions import has_permission
from db.database import get_async_session
from db.users import User
from schemas.inventory import AllocationRead
from services import ledger

router = APIRouter()


@router.get("/", response_model=List[AllocationRead])
async def list_allocations(
    user_id: Optional[UUID] = Query(None),
    stock_item_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    """Users without `can_view_all` only ever see what they hold."""
    if not has_permission(user, "can_view_all"):
        if user_id is not None and user_id != user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
        user_id = user.id

    rows = await ledger.list_allocations(db, user_id=user_id, stock_item_id=stock_item_id)
    return [AllocationRead(**a.to_schema) for a in rows]
