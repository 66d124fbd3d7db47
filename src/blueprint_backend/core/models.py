"""
Database models for merchant links and the team directory, and the API models
built on top of them.
"""

import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import JSON, Boolean, DateTime, Integer, String, text
from sqlalchemy.orm import Mapped, mapped_column

from blueprint_backend.core.database import Base


class MerchantSettings(Base):
    """
    Links a Supabase user to the Square merchant they administer.

    Attributes:
        square_merchant_id (str): Square merchant id. Unique; the upsert key.
        supabase_user_id (str): Id of the internal user that administers the merchant.
        square_access_token (str): Latest Square OAuth access token for the merchant.
        square_connected_at (datetime): When the merchant was last (re)authorized.
        environment (str): Square environment the token belongs to.
    """

    __tablename__ = "merchant_settings"

    square_merchant_id: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    supabase_user_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    square_access_token: Mapped[str] = mapped_column(String, nullable=False)
    square_connected_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP")
    )
    environment: Mapped[str] = mapped_column(String, default="production", nullable=False)


class TeamMemberRecord(Base):
    """
    A team member of a merchant, keyed by the Square team member id.

    ``permissions`` holds only the overrides that differ from the member's
    level defaults.
    """

    __tablename__ = "square_team_members"

    square_team_member_id: Mapped[str] = mapped_column(String, primary_key=True, index=True)
    merchant_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    supabase_user_id: Mapped[str | None] = mapped_column(String, nullable=True)
    name: Mapped[str] = mapped_column(String, nullable=False, default="Team Member")
    given_name: Mapped[str | None] = mapped_column(String, nullable=True)
    family_name: Mapped[str | None] = mapped_column(String, nullable=True)
    email: Mapped[str | None] = mapped_column(String, nullable=True)
    phone: Mapped[str | None] = mapped_column(String, nullable=True)
    role: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str | None] = mapped_column(String, nullable=True)
    is_owner: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    level_id: Mapped[str | None] = mapped_column(String, nullable=True)
    permissions: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)
    raw: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), server_default=text("CURRENT_TIMESTAMP")
    )


class LevelRecord(Base):
    """A permission tier of a merchant."""

    __tablename__ = "team_levels"

    merchant_id: Mapped[str] = mapped_column(String, primary_key=True)
    id: Mapped[str] = mapped_column(String, primary_key=True)
    name: Mapped[str] = mapped_column(String, nullable=False)
    color: Mapped[str] = mapped_column(String, nullable=False, default="#111827")
    order: Mapped[int] = mapped_column("sort_order", Integer, nullable=False, default=1)
    default_permissions: Mapped[dict] = mapped_column(JSON, default=dict, nullable=False)


class PermissionSet(BaseModel):
    """Capabilities a team member may have. Same shape for level defaults and overrides."""

    model_config = ConfigDict(extra="forbid")

    canBookAppointments: bool = True
    canOfferDiscounts: bool = False
    requiresDiscountApproval: bool = True
    viewGlobalReports: bool = False
    viewClientContact: bool = True
    viewAllSalonPlans: bool = False
    can_book_own_schedule: bool = True
    can_book_peer_schedules: bool = False


PERMISSION_KEYS: tuple[str, ...] = tuple(PermissionSet.model_fields)


class Level(BaseModel):
    """Level data model."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    name: str
    color: str = "#111827"
    order: int = 1
    default_permissions: PermissionSet = Field(
        default_factory=PermissionSet, alias="defaultPermissions"
    )


class TeamMember(BaseModel):
    """Team member data model."""

    model_config = ConfigDict(populate_by_name=True)

    id: str
    merchant_id: Optional[str] = Field(None, alias="merchantId")
    name: str
    email: Optional[str] = None
    role: Optional[str] = None
    status: Optional[str] = None
    level_id: Optional[str] = Field(None, alias="levelId")
    permission_overrides: dict[str, bool] = Field(
        default_factory=dict, alias="permissionOverrides"
    )
    raw: Optional[dict[str, Any]] = None

    @classmethod
    def from_record(cls, record: TeamMemberRecord) -> "TeamMember":
        return cls(
            id=record.square_team_member_id,
            merchant_id=record.merchant_id,
            name=record.name,
            email=record.email,
            role=record.role,
            status=record.status,
            level_id=record.level_id,
            permission_overrides=dict(record.permissions or {}),
            raw=record.raw,
        )


class BridgeRequest(BaseModel):
    """Body of ``POST /square/oauth/token``.

    Either ``code`` (first attempt, optionally with ``email``) or
    ``access_token`` + ``merchant_id`` + ``email`` (retry after the email gate).
    """

    code: Optional[str] = None
    email: Optional[str] = None
    access_token: Optional[str] = None
    merchant_id: Optional[str] = None


class InviteRequest(BaseModel):
    """Body of ``POST /api/v1/stylists/invite``."""

    model_config = ConfigDict(populate_by_name=True)

    name: str = ""
    email: str = ""
    level_id: Optional[str] = Field(None, alias="levelId")


class LevelAssignment(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    level_id: str = Field(..., alias="levelId")


class PermissionToggle(BaseModel):
    value: bool


class MemberPermissions(BaseModel):
    """Effective permissions of a member together with where they come from."""

    model_config = ConfigDict(populate_by_name=True)

    member_id: str = Field(..., alias="memberId")
    level_id: str = Field(..., alias="levelId")
    permission_overrides: dict[str, bool] = Field(..., alias="permissionOverrides")
    permissions: PermissionSet
