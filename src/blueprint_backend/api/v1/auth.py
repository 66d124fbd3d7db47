"""Authentication endpoints."""

import logging

import anyio
from fastapi import APIRouter, Body, Depends
from sqlalchemy.orm import Session

from blueprint_backend.core.auth import SessionClaims, get_current_session
from blueprint_backend.core.dependencies import get_db, get_identity
from blueprint_backend.core.directory import get_merchant_for_user
from blueprint_backend.core.errors import InvalidRequest, SessionError, Unauthenticated
from blueprint_backend.core.identity import IdentityError, SupabaseIdentity

logger = logging.getLogger("auth")

router = APIRouter(prefix="/auth", tags=["auth"])


@router.get("/me")
async def get_current_user(
    claims: SessionClaims = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> dict:
    """The signed-in user, their role and their linked merchant."""
    link = get_merchant_for_user(db, claims.user_id)
    return {
        "user_id": claims.user_id,
        "email": claims.email,
        "role": claims.role,
        "merchant_id": link.square_merchant_id if link else claims.merchant_id,
        "stylist_id": claims.stylist_id,
        "token_expires": str(claims.exp),
    }


@router.post("/refresh")
async def refresh(
    refresh_token: str = Body("", embed=True),
    identity: SupabaseIdentity = Depends(get_identity),
) -> dict:
    """Exchange a Supabase refresh token for a new session."""
    if not refresh_token:
        raise InvalidRequest("Missing refresh token.").to_http_exception()
    try:
        session = await anyio.to_thread.run_sync(identity.refresh_session, refresh_token)
    except IdentityError as e:
        logger.error("Session refresh failed: %s", e.message)
        raise Unauthenticated("Invalid or expired refresh token.").to_http_exception() from e
    if session is None:
        raise SessionError("No session returned from refresh").to_http_exception()
    return {"supabase_session": session.to_dict()}
