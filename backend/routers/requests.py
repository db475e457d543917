import logging
from dataclasses import asdict
from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from core.auth import current_active_user
from core.permissions import is_elevated, require_permission
from db.database import get_async_session, InventoryRequest as InventoryRequestModel
from db.users import User
from schemas.requests import (
    InventoryRequestCreate,
    InventoryRequestRead,
    LineOutcomeRead,
    RequestAction,
    RequestStatus,
    RequestType,
    WorkflowResultRead,
)
from services import workflow
from services.errors import InventoryError

logger = logging.getLogger(__name__)

router = APIRouter()


def _result_read(result: workflow.WorkflowResult) -> WorkflowResultRead:
    return WorkflowResultRead(
        request=InventoryRequestRead(**result.request.to_schema),
        succeeded=[LineOutcomeRead(**asdict(o)) for o in result.succeeded],
        failed=[LineOutcomeRead(**asdict(o)) for o in result.failed],
    )


def _new_request(payload: InventoryRequestCreate) -> workflow.NewRequest:
    return workflow.NewRequest(
        type=payload.type,
        items=[
            workflow.NewRequestItem(
                quantity=it.quantity,
                stock_item_id=it.stock_item_id,
                item_name=it.item_name,
                notes=it.notes,
            )
            for it in payload.items
        ],
        assigned_to=payload.assigned_to,
        final_assignee=payload.final_assignee,
        share_from_user_id=payload.share_from_user_id,
        share_to_user_id=payload.share_to_user_id,
        notes=payload.notes,
        file_url=payload.file_url,
    )


def _base_query(status_filter: Optional[str], type_filter: Optional[str]):
    stmt = select(InventoryRequestModel).options(selectinload(InventoryRequestModel.items))
    if status_filter:
        stmt = stmt.where(InventoryRequestModel.status == status_filter)
    if type_filter:
        stmt = stmt.where(InventoryRequestModel.type == type_filter)
    return stmt.order_by(InventoryRequestModel.created_at.desc())


@router.get("/", response_model=List[InventoryRequestRead])
async def list_requests(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    type_filter: Optional[RequestType] = Query(None, alias="type"),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    """Elevated roles see every request; everyone else sees what they asked for or must act on."""
    stmt = _base_query(status_filter, type_filter)
    if not is_elevated(user):
        stmt = stmt.where(
            or_(InventoryRequestModel.requested_by == user.id, InventoryRequestModel.assigned_to == user.id)
        )
    res = await db.execute(stmt)
    return [InventoryRequestRead(**r.to_schema) for r in res.scalars().all()]


@router.get("/assigned/me", response_model=List[InventoryRequestRead])
async def list_assigned_to_me(
    status_filter: Optional[RequestStatus] = Query(None, alias="status"),
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    stmt = _base_query(status_filter, None).where(InventoryRequestModel.assigned_to == user.id)
    res = await db.execute(stmt)
    return [InventoryRequestRead(**r.to_schema) for r in res.scalars().all()]


@router.get("/{request_id}", response_model=InventoryRequestRead)
async def get_request(
    request_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    req = await workflow.load_request(db, request_id)
    involved = {req.requested_by, req.assigned_to, req.final_assignee, req.share_from_user_id}
    if user.id not in involved and not is_elevated(user):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    return InventoryRequestRead(**req.to_schema)


@router.post("/", response_model=InventoryRequestRead, status_code=status.HTTP_201_CREATED)
async def create_request(
    payload: InventoryRequestCreate,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(require_permission("can_create_requests")),
):
    actor_id = user.id
    try:
        req = await workflow.create_request(db, user, _new_request(payload))
        return InventoryRequestRead(**req.to_schema)
    except InventoryError:
        await db.rollback()
        raise
    except Exception:
        await db.rollback()
        logger.exception("Creating request for %s failed", actor_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to create request")


async def _run_action(action, db: AsyncSession, request_id: UUID, user: User, notes: Optional[str]):
    actor_id = user.id
    try:
        result = await action(db, request_id, user, notes)
        return _result_read(result)
    except InventoryError:
        raise
    except Exception:
        await db.rollback()
        logger.exception("%s on request %s by %s failed", action.__name__, request_id, actor_id)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Failed to update request")


@router.post("/{request_id}/approve", response_model=WorkflowResultRead)
async def approve_request(
    request_id: UUID,
    payload: Optional[RequestAction] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    notes = payload.notes if payload else None
    return await _run_action(workflow.approve_request, db, request_id, user, notes)


@router.post("/{request_id}/forward", response_model=WorkflowResultRead)
async def forward_request(
    request_id: UUID,
    payload: Optional[RequestAction] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    notes = payload.notes if payload else None
    return await _run_action(workflow.approve_and_forward, db, request_id, user, notes)


@router.post("/{request_id}/final-approve", response_model=WorkflowResultRead)
async def final_approve_request(
    request_id: UUID,
    payload: Optional[RequestAction] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    notes = payload.notes if payload else None
    return await _run_action(workflow.final_approve, db, request_id, user, notes)


@router.post("/{request_id}/deny", response_model=WorkflowResultRead)
async def deny_request(
    request_id: UUID,
    payload: Optional[RequestAction] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    notes = payload.notes if payload else None
    return await _run_action(workflow.deny_request, db, request_id, user, notes)


@router.post("/{request_id}/complete", response_model=WorkflowResultRead)
async def complete_request(
    request_id: UUID,
    payload: Optional[RequestAction] = None,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    notes = payload.notes if payload else None
    return await _run_action(workflow.complete_request, db, request_id, user, notes)


@router.delete("/{request_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_request(
    request_id: UUID,
    db: AsyncSession = Depends(get_async_session),
    user: User = Depends(current_active_user),
):
    await workflow.delete_request(db, request_id, user)
