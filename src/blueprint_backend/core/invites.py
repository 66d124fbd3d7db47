"""Stylist invites.

An invited stylist signs in with email and password instead of Square OAuth.
The invite creates their pending Supabase identity and their team directory
row; all of their permissions come from the chosen level until an admin
overrides them.
"""

import logging
import uuid
from typing import Optional

from sqlalchemy.orm import Session

from blueprint_backend.core.auth import STYLIST_ROLE, SessionClaims, require_admin
from blueprint_backend.core.directory import get_merchant_for_user, list_levels, upsert_team_members
from blueprint_backend.core.errors import IdentityProvisioningError, InvalidRequest, NotFound
from blueprint_backend.core.identity import IdentityError, SupabaseIdentity
from blueprint_backend.core.models import InviteRequest, TeamMember
from blueprint_backend.core.permissions import lowest_level

logger = logging.getLogger("invites")


class InviteIssuer:
    def __init__(self, identity: SupabaseIdentity) -> None:
        self.identity = identity

    def issue(
        self,
        db: Session,
        claims: SessionClaims,
        request: InviteRequest,
        redirect_to: Optional[str] = None,
    ) -> TeamMember:
        """Invite a stylist on behalf of the admin in ``claims``.

        Raises:
            PermissionDenied: If the caller is not an admin. Nothing is written.
            NotFound: If the admin has no merchant. Nothing is written.
            InvalidRequest: If name or email is missing, the level is unknown,
                or the identity provider rejects the invite.
            IdentityProvisioningError: If the invite went out but the stylist's
                role and merchant could not be stamped on their account.
        """
        require_admin(claims)

        name = request.name.strip()
        email = request.email.strip()
        if not name or not email:
            raise InvalidRequest("Stylist name and email are required.")

        link = get_merchant_for_user(db, claims.user_id)
        merchant_id = link.square_merchant_id if link else claims.merchant_id
        if not merchant_id:
            raise NotFound("Merchant settings not found")
        levels = list_levels(db, merchant_id)

        level_id = request.level_id or lowest_level(levels).id
        level = next((level for level in levels if level.id == level_id), None)
        if level is None:
            raise InvalidRequest(f"Unknown level: {level_id}")

        stylist_id = str(uuid.uuid4())
        try:
            user = self.identity.invite_user_by_email(
                email,
                {
                    "role": STYLIST_ROLE,
                    "stylist_id": stylist_id,
                    "stylist_name": name,
                    "merchant_id": merchant_id,
                    "level_id": level.id,
                    "permissions": level.default_permissions.model_dump(),
                },
                redirect_to=redirect_to,
            )
        except IdentityError as e:
            logger.error("Invite for %s rejected: %s", email, e.message)
            raise InvalidRequest(e.message) from e

        # user_metadata is user-editable; role and scope that grant access live here
        try:
            user = self.identity.update_user_by_id(
                user.id,
                {
                    "app_metadata": {
                        "role": STYLIST_ROLE,
                        "stylist_id": stylist_id,
                        "merchant_id": merchant_id,
                    }
                },
            )
        except IdentityError as e:
            logger.error(
                "Invite for %s sent but user %s could not be scoped: %s", email, user.id, e.message
            )
            raise IdentityProvisioningError(
                f"Invite sent but stylist access could not be set: {e.message}"
            ) from e

        upsert_team_members(
            db,
            [
                {
                    "square_team_member_id": stylist_id,
                    "merchant_id": merchant_id,
                    "supabase_user_id": user.id,
                    "name": name,
                    "email": email,
                    "role": "Stylist",
                    "status": "active",
                    "level_id": level.id,
                    "permissions": {},
                    "raw": {"source": "invite"},
                }
            ],
        )
        logger.info("Invited stylist %s to merchant %s at level %s", stylist_id, merchant_id, level.id)
        return TeamMember(
            id=stylist_id,
            merchant_id=merchant_id,
            name=name,
            email=email,
            role="Stylist",
            status="active",
            level_id=level.id,
            permission_overrides={},
            raw={"source": "invite"},
        )
