"""Team endpoints: stylist invites, levels and per-member permissions."""

import logging
from typing import Optional

import anyio
from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from blueprint_backend.core.auth import SessionClaims, get_current_session, require_admin
from blueprint_backend.core.dependencies import get_db, get_identity, get_supabase_settings
from blueprint_backend.core.directory import (
    get_merchant_for_user,
    get_team_member,
    list_levels,
    list_team_members,
    replace_levels,
    save_member_access,
)
from blueprint_backend.core.errors import BlueprintError, InvalidRequest, NotFound, PermissionDenied
from blueprint_backend.core.identity import SupabaseIdentity
from blueprint_backend.core.invites import InviteIssuer
from blueprint_backend.core.models import (
    InviteRequest,
    Level,
    LevelAssignment,
    MemberPermissions,
    PermissionToggle,
    TeamMember,
)
from blueprint_backend.core.permissions import (
    member_permissions,
    reassign_member,
    resolve_level,
    sparsify,
    toggle_member,
)
from blueprint_backend.core.redirects import request_origin
from blueprint_backend.core.settings import SupabaseSettings

logger = logging.getLogger("team")

router = APIRouter(tags=["team"])


def merchant_for(db: Session, claims: SessionClaims) -> str:
    """Merchant the caller belongs to: the linked merchant for admins, the
    merchant in the session claims otherwise."""
    link = get_merchant_for_user(db, claims.user_id)
    merchant_id = link.square_merchant_id if link else claims.merchant_id
    if not merchant_id:
        raise NotFound("Merchant settings not found")
    return merchant_id


def member_of(db: Session, merchant_id: str, member_id: str) -> TeamMember:
    member = get_team_member(db, member_id)
    if member.merchant_id != merchant_id:
        # members of other merchants are invisible, not forbidden
        raise NotFound(f"Team member {member_id} not found")
    return member


def describe(member: TeamMember, levels: list[Level]) -> MemberPermissions:
    level = resolve_level(member.level_id, levels)
    return MemberPermissions(
        member_id=member.id,
        level_id=level.id,
        permission_overrides=sparsify(member.permission_overrides, level.default_permissions),
        permissions=member_permissions(member, levels),
    )


@router.post("/stylists/invite")
async def invite_stylist(
    body: InviteRequest,
    request: Request,
    claims: SessionClaims = Depends(get_current_session),
    db: Session = Depends(get_db),
    identity: SupabaseIdentity = Depends(get_identity),
    settings: SupabaseSettings = Depends(get_supabase_settings),
) -> dict:
    """Invite a stylist by email and add them to the team directory."""
    origin = request_origin(request.headers, secure=request.url.scheme == "https")
    redirect_to: Optional[str] = settings.stylist_app_url or (f"{origin}/" if origin else None)
    try:
        member = await anyio.to_thread.run_sync(
            InviteIssuer(identity).issue, db, claims, body, redirect_to
        )
    except BlueprintError as e:
        logger.error("Invite failed: %s", e.message)
        raise e.to_http_exception() from e
    return {"success": True, "stylist": member.model_dump(by_alias=True)}


@router.get("/stylists")
async def list_stylists(
    claims: SessionClaims = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> dict:
    try:
        require_admin(claims)
        merchant_id = merchant_for(db, claims)
        members = list_team_members(db, merchant_id)
    except BlueprintError as e:
        raise e.to_http_exception() from e
    return {"stylists": [member.model_dump(by_alias=True) for member in members]}


@router.get("/stylists/{member_id}/permissions")
async def get_permissions(
    member_id: str,
    claims: SessionClaims = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> dict:
    """Effective permissions of a member, with their level and overrides.

    Admins may read any member of their merchant; stylists only themselves.
    """
    try:
        if not claims.is_admin and claims.stylist_id != member_id:
            raise PermissionDenied("Stylists can only view their own permissions.")
        merchant_id = merchant_for(db, claims)
        member = member_of(db, merchant_id, member_id)
        levels = list_levels(db, merchant_id)
    except BlueprintError as e:
        raise e.to_http_exception() from e
    return describe(member, levels).model_dump(by_alias=True)


@router.put("/stylists/{member_id}/level")
async def assign_level(
    member_id: str,
    body: LevelAssignment,
    claims: SessionClaims = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> dict:
    """Move a member to another level, dropping overrides the new level already grants."""
    try:
        require_admin(claims)
        merchant_id = merchant_for(db, claims)
        levels = list_levels(db, merchant_id)
        member = reassign_member(member_of(db, merchant_id, member_id), body.level_id, levels)
        member = save_member_access(db, member)
    except BlueprintError as e:
        logger.error("Level change for %s failed: %s", member_id, e.message)
        raise e.to_http_exception() from e
    logger.info("Member %s moved to level %s", member_id, member.level_id)
    return describe(member, levels).model_dump(by_alias=True)


@router.put("/stylists/{member_id}/permissions/{key}")
async def set_permission(
    member_id: str,
    key: str,
    body: PermissionToggle,
    claims: SessionClaims = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> dict:
    try:
        require_admin(claims)
        merchant_id = merchant_for(db, claims)
        levels = list_levels(db, merchant_id)
        member = toggle_member(member_of(db, merchant_id, member_id), key, body.value, levels)
        member = save_member_access(db, member)
    except BlueprintError as e:
        logger.error("Permission %s for %s failed: %s", key, member_id, e.message)
        raise e.to_http_exception() from e
    return describe(member, levels).model_dump(by_alias=True)


@router.get("/levels")
async def get_levels(
    claims: SessionClaims = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> dict:
    try:
        levels = list_levels(db, merchant_for(db, claims))
    except BlueprintError as e:
        raise e.to_http_exception() from e
    return {"levels": [level.model_dump(by_alias=True) for level in levels]}


@router.put("/levels")
async def put_levels(
    levels: list[Level],
    claims: SessionClaims = Depends(get_current_session),
    db: Session = Depends(get_db),
) -> dict:
    """Replace the merchant's levels.

    Members keep their level id; if it no longer exists they fall back to the
    lowest level. Stored overrides are re-sparsified against the new defaults.
    """
    try:
        require_admin(claims)
        if not levels:
            raise InvalidRequest("At least one level is required.")
        if len({level.id for level in levels}) != len(levels):
            raise InvalidRequest("Level ids must be unique.")
        merchant_id = merchant_for(db, claims)
        saved = replace_levels(db, merchant_id, levels)
        for member in list_team_members(db, merchant_id):
            level = resolve_level(member.level_id, saved)
            overrides = sparsify(member.permission_overrides, level.default_permissions)
            if overrides != member.permission_overrides:
                save_member_access(
                    db, member.model_copy(update={"permission_overrides": overrides})
                )
    except BlueprintError as e:
        logger.error("Saving levels failed: %s", e.message)
        raise e.to_http_exception() from e
    logger.info("Saved %d levels for merchant %s", len(saved), merchant_id)
    return {"levels": [level.model_dump(by_alias=True) for level in saved]}
