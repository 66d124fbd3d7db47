"""Team directory and merchant link persistence.

All writes keyed on a unique column go through ``INSERT ... ON CONFLICT DO
UPDATE`` so that concurrent bridge runs or syncs for the same merchant converge
on one row without application-level locking.
"""

import logging
from datetime import UTC, datetime
from typing import Any, Callable, Sequence

from sqlalchemy import delete, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from blueprint_backend.core.errors import NotFound, PersistenceError
from blueprint_backend.core.models import (
    Level,
    LevelRecord,
    MerchantSettings,
    PermissionSet,
    TeamMember,
    TeamMemberRecord,
)
from blueprint_backend.core.permissions import DEFAULT_LEVELS

logger = logging.getLogger("directory")

# Columns that belong to the admin, not to Square. A sync must never reset them.
ACCESS_COLUMNS = ("level_id", "permissions")


def _insert_for(db: Session) -> Callable[..., Any]:
    dialect = db.get_bind().dialect.name
    if dialect == "postgresql":
        return postgresql.insert
    if dialect == "sqlite":
        return sqlite.insert
    raise PersistenceError(f"Atomic upsert is not supported on {dialect}")


def _upsert(
    db: Session,
    model: type,
    rows: Sequence[dict[str, Any]],
    conflict_key: str,
    preserve: Sequence[str] = (),
) -> None:
    insert = _insert_for(db)
    stmt = insert(model).values(list(rows))
    update_columns = {
        key: stmt.excluded[key] for key in rows[0] if key != conflict_key and key not in preserve
    }
    stmt = stmt.on_conflict_do_update(index_elements=[conflict_key], set_=update_columns)
    try:
        db.execute(stmt)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Upsert into %s failed: %s", model.__tablename__, e)
        raise PersistenceError(f"Failed to save {model.__tablename__}: {e}") from e


def upsert_merchant_link(
    db: Session,
    *,
    supabase_user_id: str,
    merchant_id: str,
    access_token: str,
    environment: str,
) -> MerchantSettings:
    """Insert or update the merchant link for ``merchant_id``."""
    _upsert(
        db,
        MerchantSettings,
        [
            {
                "square_merchant_id": merchant_id,
                "supabase_user_id": supabase_user_id,
                "square_access_token": access_token,
                "square_connected_at": datetime.now(UTC),
                "environment": environment,
            }
        ],
        conflict_key="square_merchant_id",
    )
    link = db.get(MerchantSettings, merchant_id, populate_existing=True)
    if link is None:
        raise PersistenceError(f"Merchant settings for {merchant_id} missing after upsert")
    return link


def get_merchant_link(db: Session, merchant_id: str) -> MerchantSettings | None:
    return db.get(MerchantSettings, merchant_id)


def get_merchant_for_user(db: Session, supabase_user_id: str) -> MerchantSettings | None:
    """Most recently connected merchant administered by a user."""
    return db.scalars(
        select(MerchantSettings)
        .where(MerchantSettings.supabase_user_id == supabase_user_id)
        .order_by(MerchantSettings.square_connected_at.desc())
    ).first()


def upsert_team_members(
    db: Session, rows: Sequence[dict[str, Any]], preserve_access: bool = False
) -> None:
    """Insert or update team member rows keyed by ``square_team_member_id``.

    With ``preserve_access`` existing rows keep their level and overrides.
    """
    if not rows:
        return
    stamped = [{**row, "updated_at": datetime.now(UTC)} for row in rows]
    _upsert(
        db,
        TeamMemberRecord,
        stamped,
        conflict_key="square_team_member_id",
        preserve=ACCESS_COLUMNS if preserve_access else (),
    )


def get_team_member(db: Session, member_id: str) -> TeamMember:
    record = db.get(TeamMemberRecord, member_id)
    if record is None:
        raise NotFound(f"Team member {member_id} not found")
    return TeamMember.from_record(record)


def list_team_members(db: Session, merchant_id: str) -> list[TeamMember]:
    records = db.scalars(
        select(TeamMemberRecord)
        .where(TeamMemberRecord.merchant_id == merchant_id)
        .order_by(TeamMemberRecord.name)
    ).all()
    return [TeamMember.from_record(record) for record in records]


def save_member_access(db: Session, member: TeamMember) -> TeamMember:
    """Persist a member's level and overrides."""
    record = db.get(TeamMemberRecord, member.id)
    if record is None:
        raise NotFound(f"Team member {member.id} not found")
    record.level_id = member.level_id
    record.permissions = dict(member.permission_overrides)
    record.updated_at = datetime.now(UTC)
    try:
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to update team member %s: %s", member.id, e)
        raise PersistenceError(f"Failed to update team member: {e}") from e
    return TeamMember.from_record(record)


def list_levels(db: Session, merchant_id: str) -> list[Level]:
    """Levels of a merchant by order; the default tiers when none are stored."""
    records = db.scalars(
        select(LevelRecord)
        .where(LevelRecord.merchant_id == merchant_id)
        .order_by(LevelRecord.order)
    ).all()
    if not records:
        return list(DEFAULT_LEVELS)
    return [
        Level(
            id=record.id,
            name=record.name,
            color=record.color,
            order=record.order,
            default_permissions=PermissionSet(**record.default_permissions),
        )
        for record in records
    ]


def replace_levels(db: Session, merchant_id: str, levels: Sequence[Level]) -> list[Level]:
    """Replace all levels of a merchant."""
    try:
        db.execute(delete(LevelRecord).where(LevelRecord.merchant_id == merchant_id))
        db.add_all(
            LevelRecord(
                merchant_id=merchant_id,
                id=level.id,
                name=level.name,
                color=level.color,
                order=level.order,
                default_permissions=level.default_permissions.model_dump(),
            )
            for level in levels
        )
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error("Failed to save levels for merchant %s: %s", merchant_id, e)
        raise PersistenceError(f"Failed to save levels: {e}") from e
    return list_levels(db, merchant_id)
