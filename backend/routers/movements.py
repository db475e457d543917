import logging
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from core.auth import current_active_user
from core.permissions import has_permission, require_permission
from db.database import get_async_session, StockMovement as StockMovementModel
from db.users import User
from schemas.inventory import MovementRead, TransferCreate
from services.errors import InventoryError
from services.transfers import execute_transfer, party_for

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/", response_model=List[MovementRead])
async def list_movements(
    stock_item_id: Optional[UUID] = Query(None),
    user_id: Optional[UUID] = Query(None, description="Movements from or to this user"),
    limit: int = Query(200, ge=1, le=1000),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    if not has_permission(user, "can_view_all"):
        if user_id is not None and user_id != user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
        user_id = user.id

    stmt = select(StockMovementModel)
    if stock_item_id is not None:
        stmt = stmt.where(StockMovementModel.stock_item_id == stock_item_id)
    if user_id is not None:
        stmt = stmt.where(
            or_(StockMovementModel.from_user_id == user_id, StockMovementModel.to_user_id == user_id)
        )
    res = await db.execute(stmt.order_by(StockMovementModel.moved_at.desc()).limit(limit))
    return [MovementRead(**m.to_schema) for m in res.scalars().all()]


@router.post("/", response_model=MovementRead, status_code=status.HTTP_201_CREATED)
async def create_movement(
    payload: TransferCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_move_stock")),
):
    actor_id = user.id
    try:
        movement = await execute_transfer(
            db,
            stock_item_id=payload.stock_item_id,
            quantity=payload.quantity,
            source=party_for(payload.from_user_id),
            destination=party_for(payload.to_user_id),
            actor_id=actor_id,
            notes=payload.notes,
        )
        return MovementRead(**movement.to_schema)
    except InventoryError:
        # Rolled back by the engine; main.py renders it.
        raise
    except Exception:
        await db.rollback()
        logger.exception("Movement by %s failed", actor_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create movement")
