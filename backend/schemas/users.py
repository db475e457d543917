# User schemas extend the fastapi-users ones with the promo-inventory profile fields.

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi_users import schemas
from pydantic import BaseModel, field_validator

from core.permissions import Role


class UserRead(schemas.BaseUser[UUID]):
    name: str = ""
    role: str = Role.MEDICAL_REP.value
    region: Optional[str] = None
    specialty_id: Optional[UUID] = None
    created_at: Optional[datetime] = None


class UserCreate(schemas.BaseUserCreate):
    # Role is never self-assigned on registration; see RoleUpdate.
    name: str = ""
    region: Optional[str] = None
    specialty_id: Optional[UUID] = None


class UserUpdate(schemas.BaseUserUpdate):
    name: Optional[str] = None
    region: Optional[str] = None
    specialty_id: Optional[UUID] = None


class RoleUpdate(BaseModel):
    role: Role

    @field_validator("role", mode="before")
    @classmethod
    def _normalize(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v
