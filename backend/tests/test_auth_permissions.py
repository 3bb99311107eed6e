from __future__ import annotations

from types import SimpleNamespace

import pytest
from fastapi import HTTPException

from precast_erp.auth import ROLE_PERMISSIONS, PermissionChecker, check_permission, get_current_session


class _QueryStub:
    def __init__(self, result) -> None:
        self._result = result

    def filter(self, *_criteria):
        return self

    def first(self):
        return self._result


class _SessionStub:
    def __init__(self, session=None) -> None:
        self._session = session
        self.queries = 0

    def query(self, _entity):
        self.queries += 1
        return _QueryStub(self._session)


@pytest.mark.parametrize(
    ("role", "granted"),
    [
        ("superadmin", set(ROLE_PERMISSIONS["superadmin"])),
        ("stockyard_manager", {"canManageStock", "canDispatch"}),
        ("dispatcher", {"canDispatch", "canReceiveDispatch"}),
        ("site_engineer", {"canReceiveDispatch", "canRaiseErection", "canManageErection"}),
        ("project_manager", {"canRaiseErection", "canApproveErection", "canManageWorkOrders", "canManageInvoices"}),
        ("viewer", set()),
    ],
)
def test_role_permissions_matrix_is_stable(role: str, granted: set[str]) -> None:
    assert {key for key, value in ROLE_PERMISSIONS[role].items() if value} == granted


def test_every_role_has_the_same_permission_keys() -> None:
    expected_keys = set(ROLE_PERMISSIONS["superadmin"])
    for role, permissions in ROLE_PERMISSIONS.items():
        assert set(permissions) == expected_keys, role


def test_unknown_role_is_denied_everything() -> None:
    user = SimpleNamespace(role="unknown-role")

    assert not any(check_permission(user, key) for key in ROLE_PERMISSIONS["superadmin"])


def test_permission_checker_returns_user_when_granted() -> None:
    user = SimpleNamespace(id=1, role="dispatcher")

    assert PermissionChecker("canDispatch")(current_user=user) is user


def test_permission_checker_rejects_with_403() -> None:
    with pytest.raises(HTTPException) as exc_info:
        PermissionChecker("canApproveErection")(current_user=SimpleNamespace(id=1, role="dispatcher"))

    assert exc_info.value.status_code == 403
    assert exc_info.value.detail == "Permission denied: canApproveErection required"


@pytest.mark.parametrize("header", [None, "", "   "])
def test_missing_authorization_header_is_400(header) -> None:
    db = _SessionStub()

    with pytest.raises(HTTPException) as exc_info:
        get_current_session(authorization=header, db=db)

    assert exc_info.value.status_code == 400
    assert db.queries == 0


def test_unknown_or_expired_session_is_401() -> None:
    with pytest.raises(HTTPException) as exc_info:
        get_current_session(authorization="sess-expired", db=_SessionStub(None))

    assert exc_info.value.status_code == 401
    assert exc_info.value.detail == "Invalid or expired session"


def test_session_of_inactive_user_is_401() -> None:
    session = SimpleNamespace(user_id=5, user=SimpleNamespace(id=5, is_active=False))

    with pytest.raises(HTTPException) as exc_info:
        get_current_session(authorization="sess-1", db=_SessionStub(session))

    assert exc_info.value.status_code == 401


def test_valid_session_is_returned() -> None:
    session = SimpleNamespace(user_id=5, user=SimpleNamespace(id=5, is_active=True))

    assert get_current_session(authorization=" sess-1 ", db=_SessionStub(session)) is session
