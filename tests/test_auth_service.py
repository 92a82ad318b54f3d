from __future__ import annotations

from dataclasses import replace

import pytest

from labreserve.domain.errors import UnauthenticatedError
from labreserve.domain.models import CallerIdentity, Role
from labreserve.services.auth_service import (
    AdminTokenNotConfiguredError,
    AuthService,
    InvalidAdminTokenError,
)
from labreserve.utils.config import get_settings


def _build_test_settings(tmp_path, admin_token):
    return replace(
        get_settings(),
        database_path=tmp_path / "auth.db",
        admin_token=admin_token,
        admin_login_id="A0001",
    )


def test_admin_login_resolves_to_admin_identity(tmp_path):
    service = AuthService(settings=_build_test_settings(tmp_path, "secret"))

    token = service.login("secret")
    identity = service.resolve(token)
    assert identity.is_admin
    assert identity.login_id == "A0001"
    assert identity.uid == "admin:A0001"


def test_login_failures(tmp_path):
    with pytest.raises(InvalidAdminTokenError):
        AuthService(settings=_build_test_settings(tmp_path, "secret")).login("wrong")
    with pytest.raises(AdminTokenNotConfiguredError):
        AuthService(settings=_build_test_settings(tmp_path, None)).login("secret")


def test_issued_tokens_resolve_until_revoked(tmp_path):
    service = AuthService(settings=_build_test_settings(tmp_path, "secret"))
    student = CallerIdentity(uid="uid-student-1", login_id="S1234", role=Role.STUDENT)

    token = service.issue_token(student)
    assert service.resolve(token) == student

    service.revoke(token)
    with pytest.raises(UnauthenticatedError):
        service.resolve(token)
    with pytest.raises(UnauthenticatedError):
        service.resolve("")
