"""Test authentication module."""

import pytest
from conftest import JWT_SECRET, admin_token, make_token, stylist_token
from fastapi import HTTPException
from fastapi.security import HTTPAuthorizationCredentials

from blueprint_backend.core.auth import (
    SessionClaims,
    decode_session_token,
    get_current_session,
    require_admin,
    resolve_role,
)
from blueprint_backend.core.errors import ConfigError, PermissionDenied, Unauthenticated
from blueprint_backend.core.settings import SupabaseSettings


def credentials(token: str) -> HTTPAuthorizationCredentials:
    return HTTPAuthorizationCredentials(scheme="Bearer", credentials=token)


def test_token_validation(supabase_settings: SupabaseSettings) -> None:
    """Test Supabase token validation."""
    token = make_token(
        "user-1",
        email="owner@salon.com",
        app_metadata={"provisioned_via": "square-oauth", "merchant_id": "M1"},
    )

    claims = get_current_session(credentials(token), supabase_settings)

    assert isinstance(claims, SessionClaims)
    assert claims.user_id == "user-1"
    assert claims.email == "owner@salon.com"
    assert claims.is_admin
    assert claims.merchant_id == "M1"
    assert claims.exp is not None


def test_invalid_token(supabase_settings: SupabaseSettings) -> None:
    """Test invalid token handling."""
    with pytest.raises(HTTPException) as exc_info:
        get_current_session(credentials("invalid_token"), supabase_settings)
    assert exc_info.value.status_code == 401
    assert exc_info.value.headers == {"WWW-Authenticate": "Bearer"}


def test_missing_token(supabase_settings: SupabaseSettings) -> None:
    with pytest.raises(HTTPException) as exc_info:
        get_current_session(None, supabase_settings)
    assert exc_info.value.status_code == 401


def test_expired_token(supabase_settings: SupabaseSettings) -> None:
    token = make_token("user-1", expires_in=-60)
    with pytest.raises(Unauthenticated):
        decode_session_token(token, supabase_settings)


def test_token_signed_with_other_secret(supabase_settings: SupabaseSettings) -> None:
    token = make_token("user-1", secret=JWT_SECRET + "-other")
    with pytest.raises(Unauthenticated):
        decode_session_token(token, supabase_settings)


def test_missing_jwt_secret_is_config_error() -> None:
    settings = SupabaseSettings(supabase_jwt_secret="")
    with pytest.raises(ConfigError):
        decode_session_token(admin_token(), settings)


def test_user_metadata_cannot_grant_admin(supabase_settings: SupabaseSettings) -> None:
    token = make_token("user-2", email="x@square-oauth.local", user_metadata={"role": "admin"})
    claims = decode_session_token(token, supabase_settings)
    assert claims.role == "stylist"
    with pytest.raises(PermissionDenied):
        require_admin(claims)


def test_stylist_claims(supabase_settings: SupabaseSettings) -> None:
    claims = decode_session_token(stylist_token(stylist_id="S7"), supabase_settings)
    assert claims.role == "stylist"
    assert claims.stylist_id == "S7"
    assert not claims.is_admin


@pytest.mark.parametrize(
    "app_metadata, role",
    [
        ({"provisioned_via": "square-oauth"}, "admin"),
        ({"role": "admin"}, "admin"),
        ({"role": "stylist"}, "stylist"),
        ({"provider": "email"}, "stylist"),
        ({}, "stylist"),
    ],
)
def test_resolve_role(app_metadata: dict, role: str) -> None:
    assert resolve_role(app_metadata) == role


def test_scope_is_not_taken_from_user_metadata(supabase_settings: SupabaseSettings) -> None:
    token = make_token(
        "stylist-9",
        app_metadata={"role": "stylist"},
        user_metadata={"stylist_id": "X1", "merchant_id": "M2"},
    )
    claims = decode_session_token(token, supabase_settings)
    assert claims.stylist_id is None
    assert claims.merchant_id is None
