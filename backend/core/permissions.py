"""
Roles and the role -> permission matrix.

Every role has exactly one `Permissions` row; the module refuses to import
if a role is missing from the matrix.
"""

from dataclasses import dataclass, fields
from enum import Enum
from typing import Optional, Union

from fastapi import Depends, HTTPException, status

from core.auth import current_active_user
from db.users import User


class Role(str, Enum):
    CEO = "ceo"
    ADMIN = "admin"
    PRODUCT_MANAGER = "product_manager"
    STOCK_KEEPER = "stock_keeper"
    STOCK_MANAGER = "stock_manager"
    MARKETER = "marketer"
    SALES_MANAGER = "sales_manager"
    MEDICAL_REP = "medical_rep"

    @property
    def label(self) -> str:
        return ROLE_LABELS[self]


ROLE_LABELS = {
    Role.CEO: "CEO",
    Role.ADMIN: "Admin",
    Role.PRODUCT_MANAGER: "Product Manager",
    Role.STOCK_KEEPER: "Stock Keeper",
    Role.STOCK_MANAGER: "Stock Manager",
    Role.MARKETER: "Marketer",
    Role.SALES_MANAGER: "Sales Manager",
    Role.MEDICAL_REP: "Medical Representative",
}

# Roles that may act on any inventory request, not only the ones assigned to them.
ELEVATED_ROLES = frozenset({Role.STOCK_KEEPER, Role.ADMIN, Role.CEO})


@dataclass(frozen=True)
class Permissions:
    can_view_all: bool = False
    can_add_items: bool = False
    can_edit_items: bool = False
    can_remove_items: bool = False
    can_move_stock: bool = False
    can_manage_users: bool = False
    can_view_reports: bool = False
    can_access_settings: bool = False
    can_manage_specialties: bool = False
    can_create_requests: bool = False
    can_manage_requests: bool = False


PERMISSION_NAMES = frozenset(f.name for f in fields(Permissions))

ROLE_PERMISSIONS: dict[Role, Permissions] = {
    Role.CEO: Permissions(
        can_view_all=True,
        can_add_items=True,
        can_edit_items=True,
        can_remove_items=True,
        can_move_stock=True,
        can_manage_users=True,
        can_view_reports=True,
        can_access_settings=True,
        can_manage_specialties=True,
        can_create_requests=True,
        can_manage_requests=True,
    ),
    Role.ADMIN: Permissions(
        can_add_items=True,
        can_edit_items=True,
        can_remove_items=True,
        can_manage_users=True,
        can_view_reports=True,
        can_access_settings=True,
        can_manage_specialties=True,
        can_manage_requests=True,
    ),
    Role.PRODUCT_MANAGER: Permissions(
        can_add_items=True,
        can_edit_items=True,
        can_move_stock=True,
        can_view_reports=True,
        can_create_requests=True,
    ),
    Role.STOCK_KEEPER: Permissions(
        can_view_all=True,
        can_add_items=True,
        can_edit_items=True,
        can_remove_items=True,
        can_move_stock=True,
        can_view_reports=True,
        can_manage_requests=True,
    ),
    Role.STOCK_MANAGER: Permissions(
        can_add_items=True,
        can_edit_items=True,
        can_remove_items=True,
        can_access_settings=True,
    ),
    Role.MARKETER: Permissions(
        can_view_reports=True,
    ),
    Role.SALES_MANAGER: Permissions(
        can_add_items=True,
        can_edit_items=True,
        can_remove_items=True,
        can_move_stock=True,
    ),
    Role.MEDICAL_REP: Permissions(),
}

_missing = set(Role) - set(ROLE_PERMISSIONS)
if _missing:
    raise RuntimeError(f"Roles without a permission row: {sorted(r.value for r in _missing)}")


def parse_role(value: Union[str, Role, None]) -> Optional[Role]:
    if value is None:
        return None
    if isinstance(value, Role):
        return value
    try:
        return Role(value)
    except ValueError:
        return None


def permissions_for(role: Union[str, Role, None]) -> Permissions:
    """Unknown or missing roles get no permissions."""
    parsed = parse_role(role)
    if parsed is None:
        return Permissions()
    return ROLE_PERMISSIONS[parsed]


def has_permission(user: User, permission: str) -> bool:
    if permission not in PERMISSION_NAMES:
        raise ValueError(f"Unknown permission: {permission}")
    if user.is_superuser:
        return True
    return bool(getattr(permissions_for(user.role), permission))


def is_elevated(user: User) -> bool:
    return user.is_superuser or parse_role(user.role) in ELEVATED_ROLES


def require_permission(permission: str):
    """FastAPI dependency factory: the current user must hold `permission`."""
    if permission not in PERMISSION_NAMES:
        raise ValueError(f"Unknown permission: {permission}")

    async def _dependency(user: User = Depends(current_active_user)) -> User:
        if not has_permission(user, permission):
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
        return user

    return _dependency
