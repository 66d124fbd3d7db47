"""Square plugin module.

This module provides the API endpoints for the Square integration: the OAuth
authorization start and callback, the bridge endpoint that turns a Square
authorization into a Supabase session, and the team directory sync that keeps
``square_team_members`` in step with the merchant's Square team.
"""

import logging
import secrets
from typing import Any, Callable, Optional
from urllib.parse import urlencode

import anyio
from fastapi import APIRouter, BackgroundTasks, Depends, Request
from fastapi.responses import JSONResponse, RedirectResponse
from sqlalchemy.orm import Session
from square.client import Client

from blueprint_backend.core.auth import SessionClaims, get_current_session, require_admin
from blueprint_backend.core.bridge import NeedsEmail, OAuthBridge
from blueprint_backend.core.database import SessionLocal
from blueprint_backend.core.dependencies import get_db, get_identity, make_square_client
from blueprint_backend.core.directory import get_merchant_for_user, upsert_team_members
from blueprint_backend.core.errors import (
    BlueprintError,
    ConfigError,
    InvalidRequest,
    NotFound,
    UpstreamAuthError,
)
from blueprint_backend.core.identity import SupabaseIdentity
from blueprint_backend.core.models import BridgeRequest
from blueprint_backend.core.redirects import is_secure_request, resolve_redirect_uri
from blueprint_backend.core.settings import SquareSettings

# Setup module-level logger
logger = logging.getLogger("square")

STATE_COOKIE = "square_oauth_state"
STATE_MAX_AGE = 600
TEAM_PAGE_SIZE = 200

ClientFactory = Callable[[SquareSettings, Optional[str]], Client]


def create_square_router(
    settings: SquareSettings,
    client_factory: ClientFactory = make_square_client,
) -> APIRouter:
    """Create a router for the Square API."""

    router = APIRouter()

    @router.get("/oauth")
    async def initiate_oauth(request: Request) -> RedirectResponse:
        """Initiate OAuth flow.

        A random ``state`` is sent to Square and kept in a short-lived
        HTTP-only cookie; the callback rejects any response without a match.
        """
        redirect_uri = resolve_redirect_uri(settings.square_redirect_uri, request.headers)
        if not settings.square_app_id or not redirect_uri:
            logger.error(
                "Missing config: app_id=%s redirect_uri=%s",
                bool(settings.square_app_id),
                redirect_uri,
            )
            raise ConfigError(
                "Square OAuth environment variables are not configured on the server."
            ).to_http_exception()

        state = secrets.token_urlsafe(32)
        oauth_url = f"{settings.base_url}/oauth2/authorize?" + urlencode(
            {
                "client_id": settings.square_app_id,
                "response_type": "code",
                "scope": settings.square_oauth_scopes,
                "redirect_uri": redirect_uri,
                "state": state,
                "session": "false",
            }
        )
        logger.info("Initiating OAuth with redirect_uri: %s", redirect_uri)

        response = RedirectResponse(oauth_url, status_code=302)
        response.set_cookie(
            STATE_COOKIE,
            state,
            max_age=STATE_MAX_AGE,
            path="/",
            httponly=True,
            samesite="lax",
            secure=is_secure_request(request.headers, request.url.scheme),
        )
        return response

    @router.get("/oauth/callback")
    async def oauth_callback(
        request: Request,
        background_tasks: BackgroundTasks,
        code: Optional[str] = None,
        state: Optional[str] = None,
        db: Session = Depends(get_db),
        identity: SupabaseIdentity = Depends(get_identity),
    ) -> JSONResponse:
        """
        Handle the OAuth redirect from Square.

        Validates ``state`` against the cookie set by ``/oauth``, then runs the
        bridge with the authorization code.
        """
        logger.info("OAuth callback received: code=%s... state=%s", (code or "")[:5], state)
        expected_state = request.cookies.get(STATE_COOKIE)
        if not state or not expected_state or not secrets.compare_digest(state, expected_state):
            logger.error("OAuth state mismatch (cookie present: %s)", bool(expected_state))
            raise InvalidRequest("Invalid OAuth state.").to_http_exception()
        if not code:
            raise InvalidRequest("Missing authorization code from Square.").to_http_exception()

        response = await _run_bridge(
            BridgeRequest(code=code), request, background_tasks, db, identity
        )
        response.delete_cookie(STATE_COOKIE, path="/")
        return response

    @router.post("/oauth/token")
    async def oauth_token(
        body: BridgeRequest,
        request: Request,
        background_tasks: BackgroundTasks,
        db: Session = Depends(get_db),
        identity: SupabaseIdentity = Depends(get_identity),
    ) -> JSONResponse:
        """
        Exchange a Square authorization for a Supabase session.

        Accepts ``{code}``, ``{code, email}``, or, after an email-needed
        response, ``{access_token, merchant_id, email}``. The retry form never
        exchanges a code again.
        """
        logger.info(
            "Bridge requested: code=%s access_token=%s merchant_id=%s email=%s",
            bool(body.code),
            bool(body.access_token),
            body.merchant_id,
            body.email,
        )
        return await _run_bridge(body, request, background_tasks, db, identity)

    async def _run_bridge(
        body: BridgeRequest,
        request: Request,
        background_tasks: BackgroundTasks,
        db: Session,
        identity: SupabaseIdentity,
    ) -> JSONResponse:
        redirect_uri = resolve_redirect_uri(settings.square_redirect_uri, request.headers)
        bridge = OAuthBridge(settings, identity, client_factory=client_factory)
        try:
            outcome = await anyio.to_thread.run_sync(bridge.run, db, body, redirect_uri)
        except BlueprintError as e:
            logger.error("OAuth flow failed: %s: %s", type(e).__name__, e.message)
            raise e.to_http_exception() from e

        if isinstance(outcome, NeedsEmail):
            return JSONResponse(status_code=400, content=outcome.to_response())

        background_tasks.add_task(
            sync_team_directory,
            settings,
            outcome.access_token,
            outcome.merchant_id,
            client_factory,
        )
        return JSONResponse(content=outcome.to_response())

    @router.get("/has-merchant")
    async def has_merchant(
        claims: SessionClaims = Depends(get_current_session),
        db: Session = Depends(get_db),
    ) -> dict:
        """Whether the signed-in user has a linked Square merchant."""
        link = get_merchant_for_user(db, claims.user_id)
        return {"hasMerchant": bool(link and link.square_merchant_id)}

    @router.post("/team")
    async def sync_team(
        claims: SessionClaims = Depends(get_current_session),
        db: Session = Depends(get_db),
    ) -> dict:
        """Sync the merchant's Square team into the team directory now."""
        try:
            require_admin(claims)
            link = get_merchant_for_user(db, claims.user_id)
            if link is None:
                raise NotFound("Merchant settings not found")
            client = client_factory(settings, link.square_access_token)
            rows = await anyio.to_thread.run_sync(
                sync_team_members, client, link.square_merchant_id, db
            )
        except BlueprintError as e:
            logger.error("Team sync failed: %s", e.message)
            raise e.to_http_exception() from e
        return {"team_members": rows}

    return router


def team_member_row(merchant_id: str, member: dict[str, Any]) -> dict[str, Any]:
    """Map a Square team member onto a ``square_team_members`` row."""
    given_name = member.get("given_name")
    family_name = member.get("family_name")
    name = f"{given_name or ''} {family_name or ''}".strip() or "Team Member"
    return {
        "square_team_member_id": member["id"],
        "merchant_id": merchant_id,
        "name": name,
        "given_name": given_name,
        "family_name": family_name,
        "email": member.get("email_address"),
        "phone": member.get("phone_number"),
        "role": member.get("role"),
        "status": member.get("status"),
        "is_owner": bool(member.get("is_owner", False)),
        "level_id": None,
        "permissions": {},
        "raw": member,
    }


def fetch_team_members(client: Client) -> list[dict[str, Any]]:
    """Page through the merchant's Square team members."""
    members: list[dict[str, Any]] = []
    cursor: Optional[str] = None
    while True:
        body: dict[str, Any] = {"limit": TEAM_PAGE_SIZE}
        if cursor:
            body["cursor"] = cursor
        result = client.team.search_team_members(body=body)
        if not result.is_success():
            raise UpstreamAuthError(
                "Failed to fetch Square team members.",
                status_code=result.status_code or 400,
                upstream=result.errors,
            )
        members.extend(result.body.get("team_members", []))
        cursor = result.body.get("cursor")
        if not cursor:
            return members


def sync_team_members(client: Client, merchant_id: str, db: Session) -> list[dict[str, Any]]:
    """Fetch the Square team and upsert it, keeping admin-set levels and overrides.

    A merchant with no team (solo operator) is a valid state and syncs nothing.
    """
    members = fetch_team_members(client)
    rows = [team_member_row(merchant_id, member) for member in members if member.get("id")]
    upsert_team_members(db, rows, preserve_access=True)
    logger.info("Synced %d team members for merchant %s", len(rows), merchant_id)
    return rows


def sync_team_directory(
    settings: SquareSettings,
    access_token: str,
    merchant_id: str,
    client_factory: ClientFactory = make_square_client,
) -> None:
    """Background team sync after sign-in. Failures are logged, never raised,
    so a failing sync cannot block sign-in."""
    db = SessionLocal()
    try:
        sync_team_members(client_factory(settings, access_token), merchant_id, db)
    except BlueprintError as e:
        logger.warning("Team sync for merchant %s failed: %s", merchant_id, e)
    except Exception as e:
        logger.error("Unexpected error syncing team for merchant %s: %s", merchant_id, e)
    finally:
        db.close()
