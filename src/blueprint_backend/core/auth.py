"""Authentication module for Supabase session tokens."""

from datetime import UTC, datetime
from typing import Any, Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from pydantic import BaseModel

from blueprint_backend.core.dependencies import get_supabase_settings
from blueprint_backend.core.errors import (
    BlueprintError,
    ConfigError,
    PermissionDenied,
    Unauthenticated,
)
from blueprint_backend.core.settings import SupabaseSettings

ADMIN_ROLE = "admin"
STYLIST_ROLE = "stylist"
SQUARE_OAUTH_PROVISIONING = "square-oauth"

security = HTTPBearer(auto_error=False)


class SessionClaims(BaseModel):
    """Claims of a verified Supabase access token."""

    user_id: str
    email: Optional[str] = None
    role: str = STYLIST_ROLE
    provisioned_via: Optional[str] = None
    merchant_id: Optional[str] = None
    stylist_id: Optional[str] = None
    exp: Optional[datetime] = None

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


def resolve_role(app_metadata: dict[str, Any]) -> str:
    """Role from server-controlled metadata.

    Users provisioned by the Square bridge are administrators. Anything that
    does not carry an explicit admin claim is treated as a stylist.
    """
    if app_metadata.get("provisioned_via") == SQUARE_OAUTH_PROVISIONING:
        return ADMIN_ROLE
    if app_metadata.get("role") == ADMIN_ROLE:
        return ADMIN_ROLE
    return STYLIST_ROLE


def decode_session_token(token: str, settings: SupabaseSettings) -> SessionClaims:
    """Verify a Supabase access token and extract the claims we rely on."""
    if not settings.supabase_jwt_secret:
        raise ConfigError("Supabase JWT secret not configured on server.")
    try:
        payload = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=settings.supabase_jwt_audience,
        )
    except JWTError as e:
        raise Unauthenticated("Invalid or expired authorization token.") from e

    user_id = payload.get("sub")
    if not isinstance(user_id, str):
        raise Unauthenticated("Invalid user session.")

    exp_value = payload.get("exp")
    if exp_value is None:
        raise Unauthenticated("Invalid user session.")

    # user_metadata is writable by the user; scoping comes from app_metadata only
    app_metadata = payload.get("app_metadata") or {}
    return SessionClaims(
        user_id=user_id,
        email=payload.get("email"),
        role=resolve_role(app_metadata),
        provisioned_via=app_metadata.get("provisioned_via"),
        merchant_id=app_metadata.get("merchant_id"),
        stylist_id=app_metadata.get("stylist_id"),
        exp=datetime.fromtimestamp(exp_value, tz=UTC),
    )


def get_current_session(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    settings: SupabaseSettings = Depends(get_supabase_settings),
) -> SessionClaims:
    """Validate the bearer token and return its claims."""
    try:
        if credentials is None or not credentials.credentials:
            raise Unauthenticated("Missing auth token.")
        return decode_session_token(credentials.credentials, settings)
    except BlueprintError as e:
        raise e.to_http_exception() from e


def require_admin(claims: SessionClaims) -> SessionClaims:
    if not claims.is_admin:
        raise PermissionDenied("Only admins can manage the team.")
    return claims
