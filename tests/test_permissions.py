from types import SimpleNamespace

import pytest

from core.permissions import (
    PERMISSION_NAMES,
    ROLE_PERMISSIONS,
    Permissions,
    Role,
    has_permission,
    is_elevated,
    parse_role,
    permissions_for,
    require_permission,
)


def user(role, superuser=False):
    return SimpleNamespace(role=role, is_superuser=superuser)


def test_every_role_has_a_row():
    assert set(ROLE_PERMISSIONS) == set(Role)
    assert all(isinstance(p, Permissions) for p in ROLE_PERMISSIONS.values())


def test_permissions_are_immutable():
    with pytest.raises(Exception):
        ROLE_PERMISSIONS[Role.CEO].can_view_all = False


@pytest.mark.parametrize(
    "role, permission, expected",
    [
        (Role.CEO, "can_manage_users", True),
        (Role.ADMIN, "can_view_all", False),
        (Role.ADMIN, "can_manage_requests", True),
        (Role.STOCK_KEEPER, "can_move_stock", True),
        (Role.STOCK_KEEPER, "can_manage_users", False),
        (Role.PRODUCT_MANAGER, "can_create_requests", True),
        (Role.PRODUCT_MANAGER, "can_remove_items", False),
        (Role.SALES_MANAGER, "can_move_stock", True),
        (Role.MARKETER, "can_view_reports", True),
        (Role.MARKETER, "can_add_items", False),
        (Role.MEDICAL_REP, "can_create_requests", False),
    ],
)
def test_matrix(role, permission, expected):
    assert has_permission(user(role.value), permission) is expected


def test_medical_rep_has_nothing():
    perms = permissions_for(Role.MEDICAL_REP)
    assert not any(getattr(perms, name) for name in PERMISSION_NAMES)


def test_unknown_role_has_nothing():
    assert parse_role("janitor") is None
    assert permissions_for("janitor") == Permissions()
    assert has_permission(user("janitor"), "can_view_all") is False


def test_superuser_has_everything():
    assert has_permission(user(Role.MEDICAL_REP.value, superuser=True), "can_manage_users")
    assert is_elevated(user(Role.MEDICAL_REP.value, superuser=True))


def test_unknown_permission_is_an_error():
    with pytest.raises(ValueError):
        has_permission(user(Role.CEO.value), "can_fly")
    with pytest.raises(ValueError):
        require_permission("can_fly")


@pytest.mark.parametrize("role", [Role.STOCK_KEEPER, Role.ADMIN, Role.CEO])
def test_elevated_roles(role):
    assert is_elevated(user(role.value))


@pytest.mark.parametrize("role", [Role.PRODUCT_MANAGER, Role.MEDICAL_REP, Role.MARKETER])
def test_non_elevated_roles(role):
    assert not is_elevated(user(role.value))


def test_role_labels():
    assert Role.MEDICAL_REP.label == "Medical Representative"
    assert parse_role("stock_keeper") is Role.STOCK_KEEPER
