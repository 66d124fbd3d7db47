"""Error taxonomy for the Square bridge, invites and team permissions.

Every error carries the HTTP status it maps to; routers translate them into
``HTTPException`` with ``to_detail()`` as the body.
"""

from typing import Any

from fastapi import HTTPException


class BlueprintError(Exception):
    """Base class for all domain errors."""

    status_code: int = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_detail(self) -> dict[str, Any]:
        return {"message": self.message}

    def to_http_exception(self) -> HTTPException:
        headers = {"WWW-Authenticate": "Bearer"} if self.status_code == 401 else None
        return HTTPException(status_code=self.status_code, detail=self.to_detail(), headers=headers)


class InvalidRequest(BlueprintError):
    """Missing or malformed input (no code, no token, bad state, unknown key)."""

    status_code = 400


class ConfigError(BlueprintError):
    """Server credentials are missing. Application-fatal."""

    status_code = 500


class UpstreamAuthError(BlueprintError):
    """Square rejected the token exchange or the merchant fetch."""

    def __init__(self, message: str, status_code: int = 400, upstream: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.upstream = upstream

    def to_detail(self) -> dict[str, Any]:
        return {"message": self.message, "square_error": self.upstream}


class IdentityProvisioningError(BlueprintError):
    """The identity provider refused to create or update a user."""

    status_code = 500


class UserLookupError(BlueprintError):
    """An "already exists" signal could not be resolved to a concrete user."""

    status_code = 500


class SessionError(BlueprintError):
    """Signing in with the freshly set password returned no session."""

    status_code = 500


class PersistenceError(BlueprintError):
    """A database write failed."""

    status_code = 500


class NotFound(BlueprintError):
    status_code = 404


class PermissionDenied(BlueprintError):
    """The caller's session does not carry the required role."""

    status_code = 403


class Unauthenticated(PermissionDenied):
    """No session, or a session token that does not verify."""

    status_code = 401
