"""Supabase Auth gateway.

Wraps the two Supabase clients the backend needs: an admin client built with
the service role key (user management, invites) and a public client built with
the anon key (password sign-in, session refresh). Callers only see
``IdentityUser`` and ``SessionTokens``.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from supabase import AuthError, Client, ClientOptions, create_client

from blueprint_backend.core.errors import ConfigError
from blueprint_backend.core.settings import SupabaseSettings

logger = logging.getLogger("identity")

# Error codes GoTrue returns when the email is already registered.
EMAIL_EXISTS_CODES = frozenset({"email_exists", "user_already_exists"})

# Free-text messages seen from GoTrue versions that return no error code.
EMAIL_EXISTS_MESSAGES = (
    "a user with this email address has already been registered",
    "user already registered",
    "email address already registered",
    "email already exists",
    "user already exists",
    "already been registered",
)


@dataclass
class IdentityUser:
    id: str
    email: Optional[str]
    user_metadata: dict[str, Any] = field(default_factory=dict)
    app_metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_supabase(cls, user: Any) -> "IdentityUser":
        return cls(
            id=str(user.id),
            email=user.email,
            user_metadata=dict(user.user_metadata or {}),
            app_metadata=dict(user.app_metadata or {}),
        )


@dataclass
class SessionTokens:
    access_token: str
    refresh_token: str

    def to_dict(self) -> dict[str, str]:
        return {"access_token": self.access_token, "refresh_token": self.refresh_token}


class IdentityError(Exception):
    """An error reported by the identity provider, with its structured code if any."""

    def __init__(self, message: str, code: Optional[str] = None, status: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.code = code
        self.status = status

    @classmethod
    def from_auth_error(cls, error: AuthError) -> "IdentityError":
        return cls(
            message=getattr(error, "message", None) or str(error),
            code=getattr(error, "code", None),
            status=getattr(error, "status", None),
        )


def is_user_already_exists(code: Optional[str], message: Optional[str]) -> bool:
    """Whether a create-user failure means the email is already registered.

    The structured error code is authoritative when present; the message is only
    consulted for providers that return free text.
    """
    if code:
        return code in EMAIL_EXISTS_CODES
    text = (message or "").strip().lower()
    return any(known in text for known in EMAIL_EXISTS_MESSAGES)


class SupabaseIdentity:
    """Identity provider operations backed by Supabase Auth."""

    def __init__(
        self,
        admin_client: Client,
        public_client: Client,
        page_size: int = 1000,
        max_pages: int = 50,
    ) -> None:
        self.admin_client = admin_client
        self.public_client = public_client
        self.page_size = page_size
        self.max_pages = max_pages

    @classmethod
    def from_settings(cls, settings: SupabaseSettings) -> "SupabaseIdentity":
        if not (
            settings.supabase_url
            and settings.supabase_service_role_key
            and settings.supabase_anon_key
        ):
            logger.error(
                "Missing Supabase credentials: url=%s service_key=%s anon_key=%s",
                bool(settings.supabase_url),
                bool(settings.supabase_service_role_key),
                bool(settings.supabase_anon_key),
            )
            raise ConfigError("Supabase credentials not configured on server.")
        options = ClientOptions(auto_refresh_token=False, persist_session=False)
        return cls(
            admin_client=create_client(
                settings.supabase_url, settings.supabase_service_role_key, options=options
            ),
            public_client=create_client(
                settings.supabase_url, settings.supabase_anon_key, options=options
            ),
            page_size=settings.list_users_page_size,
            max_pages=settings.list_users_max_pages,
        )

    def create_user(
        self,
        email: str,
        password: str,
        user_metadata: dict[str, Any],
        app_metadata: dict[str, Any],
    ) -> IdentityUser:
        try:
            response = self.admin_client.auth.admin.create_user(
                {
                    "email": email,
                    "password": password,
                    "email_confirm": True,
                    "user_metadata": user_metadata,
                    "app_metadata": app_metadata,
                }
            )
        except AuthError as e:
            raise IdentityError.from_auth_error(e) from e
        if response.user is None:
            raise IdentityError("User creation returned no user")
        return IdentityUser.from_supabase(response.user)

    def update_user_by_id(self, user_id: str, attributes: dict[str, Any]) -> IdentityUser:
        try:
            response = self.admin_client.auth.admin.update_user_by_id(user_id, attributes)
        except AuthError as e:
            raise IdentityError.from_auth_error(e) from e
        if response.user is None:
            raise IdentityError(f"Update of user {user_id} returned no user")
        return IdentityUser.from_supabase(response.user)

    def list_users(self, page: int) -> list[IdentityUser]:
        try:
            users = self.admin_client.auth.admin.list_users(page=page, per_page=self.page_size)
        except AuthError as e:
            raise IdentityError.from_auth_error(e) from e
        return [IdentityUser.from_supabase(user) for user in users or []]

    def find_user_by_email(self, email: str) -> Optional[IdentityUser]:
        """Page through users until ``email`` is found, the pages run out, or
        ``max_pages`` is reached."""
        target = email.strip().lower()
        for page in range(1, self.max_pages + 1):
            users = self.list_users(page)
            for user in users:
                if (user.email or "").lower() == target:
                    return user
            if len(users) < self.page_size:
                return None
        logger.warning("Stopped looking for %s after %d pages of users", email, self.max_pages)
        return None

    def invite_user_by_email(
        self, email: str, data: dict[str, Any], redirect_to: Optional[str] = None
    ) -> IdentityUser:
        options: dict[str, Any] = {"data": data}
        if redirect_to:
            options["redirect_to"] = redirect_to
        try:
            response = self.admin_client.auth.admin.invite_user_by_email(email, options)
        except AuthError as e:
            raise IdentityError.from_auth_error(e) from e
        if response.user is None:
            raise IdentityError("Invite returned no user")
        return IdentityUser.from_supabase(response.user)

    def sign_in_with_password(self, email: str, password: str) -> Optional[SessionTokens]:
        try:
            response = self.public_client.auth.sign_in_with_password(
                {"email": email, "password": password}
            )
        except AuthError as e:
            raise IdentityError.from_auth_error(e) from e
        session = response.session
        if session is None:
            return None
        return SessionTokens(session.access_token, session.refresh_token)

    def refresh_session(self, refresh_token: str) -> Optional[SessionTokens]:
        try:
            response = self.public_client.auth.refresh_session(refresh_token)
        except AuthError as e:
            raise IdentityError.from_auth_error(e) from e
        session = response.session
        if session is None:
            return None
        return SessionTokens(session.access_token, session.refresh_token)

    def get_user(self, access_token: str) -> Optional[IdentityUser]:
        try:
            response = self.admin_client.auth.get_user(access_token)
        except AuthError as e:
            raise IdentityError.from_auth_error(e) from e
        if response is None or response.user is None:
            return None
        return IdentityUser.from_supabase(response.user)
