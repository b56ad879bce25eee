"""Tests for roles and the client principal header."""

import pytest
from fastapi import HTTPException

from tiermod.auth.models import Role, User
from tiermod.auth.permissions import has_permission, require_role
from web.backend.app.middleware.auth import encode_client_principal, parse_client_principal


def test_role_hierarchy():
    assert Role.admin.level > Role.moderator.level > Role.member.level


def test_user_highest_role():
    user = User(id="u1", roles=["authenticated", "moderator", "Admin"])
    assert user.role == Role.admin
    assert User(id="u2").role == Role.member


def test_permissions():
    moderator = User(id="m1", roles=[Role.moderator])
    assert has_permission(moderator, Role.member)
    assert has_permission(moderator, Role.moderator)
    assert not has_permission(moderator, Role.admin)

    with pytest.raises(HTTPException) as exc_info:
        require_role(moderator, Role.admin)
    assert exc_info.value.status_code == 403


def test_parse_client_principal():
    user = parse_client_principal(encode_client_principal("u1", "u1@example.com", ["admin"]))
    assert user.id == "u1"
    assert user.email == "u1@example.com"
    assert user.role == Role.admin


def test_parse_invalid_principal():
    assert parse_client_principal("not-base64!") is None
    assert parse_client_principal(encode_client_principal("")) is None
