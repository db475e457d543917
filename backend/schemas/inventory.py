from datetime import date, datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator, model_validator


MovementType = Literal["allocation", "transfer", "return"]


def _strip_nullable(v: Optional[str]) -> Optional[str]:
    if v is None:
        return None
    v = v.strip()
    return v or None


def price_to_cents(price: Optional[float]) -> Optional[int]:
    if price is None:
        return None
    return int(round(float(price) * 100))


class CategoryCreate(BaseModel):
    name: str
    color: str = "bg-gray-500"

    @field_validator("name", "color")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v


class CategoryRead(BaseModel):
    id: UUID
    name: str
    color: str


class SpecialtyCreate(BaseModel):
    name: str
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _strip_required(cls, v: str) -> str:
        v = (v or "").strip()
        if not v:
            raise ValueError("field is required")
        return v

    @field_validator("description")
    @classmethod
    def _strip_description(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class SpecialtyRead(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None


class StockItemCreate(BaseModel):
    name: str
    category_id: UUID
    specialty_id: Optional[UUID] = None
    quantity: int = Field(default=0, ge=0)
    price: float = Field(default=0, ge=0)  # major units, stored as cents
    expiry: Optional[date] = None
    unique_number: Optional[str] = None
    notes: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = (v or "").strip()
        if len(v) < 2:
            raise ValueError("Item name must be at least 2 characters")
        return v

    @field_validator("expiry", mode="before")
    @classmethod
    def _blank_expiry(cls, v):
        # Forms send "" for "no expiry".
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("unique_number", "notes", "image_url")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class StockItemUpdate(BaseModel):
    name: Optional[str] = None
    category_id: Optional[UUID] = None
    specialty_id: Optional[UUID] = None
    quantity: Optional[int] = Field(default=None, ge=0)
    price: Optional[float] = Field(default=None, ge=0)
    expiry: Optional[date] = None
    unique_number: Optional[str] = None
    notes: Optional[str] = None
    image_url: Optional[str] = None

    @field_validator("name")
    @classmethod
    def _name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return None
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Item name must be at least 2 characters")
        return v

    @field_validator("expiry", mode="before")
    @classmethod
    def _blank_expiry(cls, v):
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @field_validator("unique_number", "notes", "image_url")
    @classmethod
    def _strip_optional(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)


class StockItemRead(BaseModel):
    id: UUID
    name: str
    category_id: UUID
    specialty_id: Optional[UUID] = None
    quantity: int
    allocated: int
    available: int
    price_minor: int
    price: float
    expiry: Optional[date] = None
    unique_number: Optional[str] = None
    notes: Optional[str] = None
    image_url: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by_user_id: Optional[UUID] = None


class OverAllocationRead(BaseModel):
    stock_item_id: UUID
    name: str
    quantity: int
    allocated: int
    excess: int


class AllocationRead(BaseModel):
    id: UUID
    stock_item_id: UUID
    user_id: UUID
    quantity: int
    allocated_by_user_id: Optional[UUID] = None
    allocated_at: Optional[datetime] = None


class TransferCreate(BaseModel):
    """
    Move stock between the central pool and users.

    Leaving `from_user_id` empty takes from the central pool; leaving
    `to_user_id` empty returns to it. At least one side must be a user.
    """
    stock_item_id: UUID
    quantity: int = Field(gt=0)
    from_user_id: Optional[UUID] = None
    to_user_id: Optional[UUID] = None
    notes: Optional[str] = None

    @field_validator("from_user_id", "to_user_id", mode="before")
    @classmethod
    def _blank_user(cls, v):
        if isinstance(v, str) and v.strip().lower() in {"", "null", "none", "central"}:
            return None
        return v

    @field_validator("notes")
    @classmethod
    def _strip_notes(cls, v: Optional[str]) -> Optional[str]:
        return _strip_nullable(v)

    @model_validator(mode="after")
    def _validate_parties(self):
        if self.from_user_id is None and self.to_user_id is None:
            raise ValueError("from_user_id and to_user_id cannot both be the central pool")
        if self.from_user_id is not None and self.from_user_id == self.to_user_id:
            raise ValueError("from_user_id and to_user_id must differ")
        return self


class MovementRead(BaseModel):
    id: UUID
    type: MovementType
    stock_item_id: UUID
    from_user_id: Optional[UUID] = None
    to_user_id: Optional[UUID] = None
    quantity: int
    notes: Optional[str] = None
    moved_at: datetime
    moved_by_user_id: Optional[UUID] = None
