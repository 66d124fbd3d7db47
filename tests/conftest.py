"""Shared fixtures: in-memory database, fake identity provider, Square client mocks."""

import os

os.environ["DATABASE_URL"] = "sqlite://"

import time  # noqa: E402
from typing import Any, Generator, Optional  # noqa: E402
from unittest.mock import MagicMock  # noqa: E402

import pytest  # noqa: E402
from jose import jwt  # noqa: E402
from sqlalchemy.orm import Session  # noqa: E402

from blueprint_backend.core import models  # noqa: E402,F401
from blueprint_backend.core.database import Base, SessionLocal, engine  # noqa: E402
from blueprint_backend.core.identity import IdentityError, IdentityUser, SessionTokens  # noqa: E402
from blueprint_backend.core.settings import SquareSettings, SupabaseSettings  # noqa: E402

JWT_SECRET = "test-jwt-secret"


class FakeIdentity:
    """In-memory stand-in for SupabaseIdentity."""

    def __init__(self) -> None:
        self.users: dict[str, IdentityUser] = {}
        self.passwords: dict[str, str] = {}
        self.invites: list[dict[str, Any]] = []
        self.create_error: Optional[IdentityError] = None
        self.invite_error: Optional[IdentityError] = None
        self.update_error: Optional[IdentityError] = None
        self.hide_existing = False
        self.no_session = False

    def _by_email(self, email: str) -> Optional[IdentityUser]:
        return next((u for u in self.users.values() if u.email == email), None)

    def _add(self, email: str, user_metadata: dict, app_metadata: dict) -> IdentityUser:
        user = IdentityUser(
            id=f"user-{len(self.users) + 1}",
            email=email,
            user_metadata=dict(user_metadata),
            app_metadata=dict(app_metadata),
        )
        self.users[user.id] = user
        return user

    def create_user(
        self, email: str, password: str, user_metadata: dict, app_metadata: dict
    ) -> IdentityUser:
        if self.create_error is not None:
            raise self.create_error
        if self._by_email(email) is not None:
            raise IdentityError(
                "A user with this email address has already been registered",
                code="email_exists",
                status=422,
            )
        user = self._add(email, user_metadata, app_metadata)
        self.passwords[user.id] = password
        return user

    def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        if self.hide_existing:
            return None
        return self._by_email(email)

    def update_user_by_id(self, user_id: str, attributes: dict) -> IdentityUser:
        if self.update_error is not None:
            raise self.update_error
        user = self.users[user_id]
        if "password" in attributes:
            self.passwords[user_id] = attributes["password"]
        user.user_metadata.update(attributes.get("user_metadata", {}))
        user.app_metadata.update(attributes.get("app_metadata", {}))
        return user

    def sign_in_with_password(self, email: str, password: str) -> Optional[SessionTokens]:
        if self.no_session:
            return None
        user = self._by_email(email)
        if user is None or self.passwords.get(user.id) != password:
            raise IdentityError("Invalid login credentials", code="invalid_credentials")
        return SessionTokens(f"access-{user.id}", f"refresh-{user.id}")

    def refresh_session(self, refresh_token: str) -> Optional[SessionTokens]:
        if not refresh_token.startswith("refresh-"):
            raise IdentityError("Invalid Refresh Token", code="refresh_token_not_found")
        user_id = refresh_token[len("refresh-"):]
        return SessionTokens(f"access-{user_id}-2", f"refresh-{user_id}")

    def invite_user_by_email(
        self, email: str, data: dict, redirect_to: Optional[str] = None
    ) -> IdentityUser:
        if self.invite_error is not None:
            raise self.invite_error
        self.invites.append({"email": email, "data": data, "redirect_to": redirect_to})
        return self._add(email, data, {})


def square_response(body: Any = None, success: bool = True, status_code: int = 200) -> MagicMock:
    """A legacy squareup ApiResponse."""
    response = MagicMock()
    response.is_success.return_value = success
    response.is_error.return_value = not success
    response.body = body if body is not None else {}
    response.status_code = status_code
    response.errors = None if success else (body or {}).get("errors")
    return response


def square_client(
    merchant: Optional[dict] = None,
    token: Optional[dict] = None,
    team_pages: Optional[list[dict]] = None,
) -> MagicMock:
    client = MagicMock()
    client.o_auth.obtain_token.return_value = square_response(
        token or {"access_token": "tok1", "merchant_id": "M1"}
    )
    client.merchants.retrieve_merchant.return_value = square_response(
        {"merchant": merchant if merchant is not None else {"id": "M1"}}
    )
    client.team.search_team_members.side_effect = [
        square_response(page) for page in (team_pages or [{"team_members": []}])
    ]
    return client


def make_token(
    user_id: str,
    app_metadata: Optional[dict] = None,
    user_metadata: Optional[dict] = None,
    email: Optional[str] = None,
    expires_in: int = 3600,
    secret: str = JWT_SECRET,
) -> str:
    """A Supabase-style access token."""
    return jwt.encode(
        {
            "sub": user_id,
            "aud": "authenticated",
            "exp": int(time.time()) + expires_in,
            "email": email,
            "app_metadata": app_metadata or {},
            "user_metadata": user_metadata or {},
        },
        secret,
        algorithm="HS256",
    )


def admin_token(user_id: str = "admin-1") -> str:
    return make_token(
        user_id, app_metadata={"role": "admin", "provisioned_via": "square-oauth"}
    )


def stylist_token(user_id: str = "stylist-1", stylist_id: str = "S1", merchant_id: str = "M1") -> str:
    return make_token(
        user_id,
        app_metadata={"role": "stylist", "stylist_id": stylist_id, "merchant_id": merchant_id},
        user_metadata={"role": "stylist", "stylist_id": stylist_id},
    )


@pytest.fixture
def db() -> Generator[Session, None, None]:
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def identity() -> FakeIdentity:
    return FakeIdentity()


@pytest.fixture
def square_settings() -> SquareSettings:
    return SquareSettings(
        square_app_id="sq0idp-test",
        square_app_secret="sq0csp-secret",
        environment="sandbox",
        square_redirect_uri="https://app.example.com/square/oauth/callback",
    )


@pytest.fixture
def supabase_settings() -> SupabaseSettings:
    return SupabaseSettings(
        supabase_url="https://project.supabase.co",
        supabase_service_role_key="service-key",
        supabase_anon_key="anon-key",
        supabase_jwt_secret=JWT_SECRET,
        stylist_app_url="https://stylists.example.com/",
    )
