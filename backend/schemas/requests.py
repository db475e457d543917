from datetime import datetime
from typing import List, Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


RequestType = Literal["prepare_order", "receive_inventory", "inventory_share"]
RequestStatus = Literal["pending", "pending_secondary", "approved", "denied", "completed"]


class RequestItemCreate(BaseModel):
    stock_item_id: Optional[UUID] = None
    item_name: Optional[str] = None
    quantity: int = Field(gt=0)
    notes: Optional[str] = None

    @field_validator("item_name", "notes")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def _has_reference(self):
        if self.stock_item_id is None and self.item_name is None:
            raise ValueError("either stock_item_id or item_name is required")
        return self


class InventoryRequestCreate(BaseModel):
    type: RequestType
    assigned_to: Optional[UUID] = None
    final_assignee: Optional[UUID] = None
    share_from_user_id: Optional[UUID] = None
    share_to_user_id: Optional[UUID] = None
    notes: Optional[str] = None
    file_url: Optional[str] = None
    items: List[RequestItemCreate] = []

    @field_validator("notes", "file_url")
    @classmethod
    def _strip_nullable(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        return v or None

    @model_validator(mode="after")
    def _share_fields(self):
        if self.type == "inventory_share":
            if self.share_from_user_id is None:
                raise ValueError("inventory_share requires share_from_user_id")
            if self.assigned_to is None:
                raise ValueError("inventory_share requires assigned_to (first-stage approver)")
        return self


class RequestAction(BaseModel):
    notes: Optional[str] = None


class RequestItemRead(BaseModel):
    id: UUID
    stock_item_id: Optional[UUID] = None
    item_name: Optional[str] = None
    quantity: int
    notes: Optional[str] = None


class InventoryRequestRead(BaseModel):
    id: UUID
    type: RequestType
    status: RequestStatus
    requested_by: UUID
    assigned_to: Optional[UUID] = None
    final_assignee: Optional[UUID] = None
    share_from_user_id: Optional[UUID] = None
    share_to_user_id: Optional[UUID] = None
    notes: Optional[str] = None
    secondary_notes: Optional[str] = None
    file_url: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    items: List[RequestItemRead] = []


class LineOutcomeRead(BaseModel):
    request_item_id: UUID
    stock_item_id: Optional[UUID] = None
    quantity: int
    movement_id: Optional[UUID] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    used_fallback: bool = False


class WorkflowResultRead(BaseModel):
    request: InventoryRequestRead
    succeeded: List[LineOutcomeRead] = []
    failed: List[LineOutcomeRead] = []
