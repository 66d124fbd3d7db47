"""Permission resolution for team members.

A member's effective permissions are their level's defaults with the member's
overrides laid on top. Overrides are kept sparse: a key is only stored while its
value differs from the default of the member's *current* level, so that edits
to a level propagate to every member that has not deliberately deviated.

Everything in this module is pure; callers load and persist rows.
"""

from typing import Iterable, Mapping, Sequence

from blueprint_backend.core.errors import InvalidRequest
from blueprint_backend.core.models import PERMISSION_KEYS, Level, PermissionSet, TeamMember

BASELINE_LEVEL = Level(id="lvl_1", name="Level 1", color="#111827", order=1)

DEFAULT_LEVELS: tuple[Level, ...] = (
    Level(id="lvl_1", name="Junior", color="#6B7280", order=1),
    Level(
        id="lvl_2",
        name="Senior",
        color="#2563EB",
        order=2,
        default_permissions=PermissionSet(
            canOfferDiscounts=True,
            requiresDiscountApproval=False,
            viewAllSalonPlans=True,
        ),
    ),
    Level(
        id="lvl_3",
        name="Master",
        color="#111827",
        order=3,
        default_permissions=PermissionSet(
            canOfferDiscounts=True,
            requiresDiscountApproval=False,
            viewGlobalReports=True,
            viewAllSalonPlans=True,
            can_book_peer_schedules=True,
        ),
    ),
)


def lowest_level(levels: Iterable[Level]) -> Level:
    """Return the level with the lowest order, or the baseline when there are none."""
    ordered = sorted(levels, key=lambda level: level.order)
    return ordered[0] if ordered else BASELINE_LEVEL


def resolve_level(level_id: str | None, levels: Sequence[Level]) -> Level:
    """Find a level by id, falling back to the lowest-order level.

    A member whose level was deleted keeps working with the fallback defaults.
    """
    for level in levels:
        if level.id == level_id:
            return level
    return lowest_level(levels)


def effective(defaults: PermissionSet, overrides: Mapping[str, bool]) -> PermissionSet:
    """Merge overrides over defaults. Unknown keys are ignored."""
    merged = defaults.model_dump()
    merged.update({key: bool(value) for key, value in overrides.items() if key in merged})
    return PermissionSet(**merged)


def sparsify(overrides: Mapping[str, bool], defaults: PermissionSet) -> dict[str, bool]:
    """Drop overrides that equal the default, and keys that are not permissions."""
    base = defaults.model_dump()
    return {
        key: bool(value)
        for key, value in overrides.items()
        if key in base and bool(value) != base[key]
    }


def reassign_level(overrides: Mapping[str, bool], new_defaults: PermissionSet) -> dict[str, bool]:
    """Recompute overrides for a member moving to a level with ``new_defaults``.

    Overrides that now match the new level's default are dropped; the rest are
    kept with their value unchanged.
    """
    return sparsify(overrides, new_defaults)


def toggle(
    overrides: Mapping[str, bool], key: str, value: bool, defaults: PermissionSet
) -> dict[str, bool]:
    """Set one permission for a member.

    Setting a key back to its level default removes the override.
    """
    if key not in PERMISSION_KEYS:
        raise InvalidRequest(f"Unknown permission: {key}")
    next_overrides = dict(overrides)
    if value == getattr(defaults, key):
        next_overrides.pop(key, None)
    else:
        next_overrides[key] = value
    return next_overrides


def member_permissions(member: TeamMember, levels: Sequence[Level]) -> PermissionSet:
    """Effective permissions of a member, resolving their level with fallback."""
    level = resolve_level(member.level_id, levels)
    return effective(level.default_permissions, member.permission_overrides)


def reassign_member(member: TeamMember, level_id: str, levels: Sequence[Level]) -> TeamMember:
    """Move a member to another level, keeping only overrides that are still deltas."""
    if not any(level.id == level_id for level in levels):
        raise InvalidRequest(f"Unknown level: {level_id}")
    level = resolve_level(level_id, levels)
    return member.model_copy(
        update={
            "level_id": level.id,
            "permission_overrides": reassign_level(
                member.permission_overrides, level.default_permissions
            ),
        }
    )


def toggle_member(
    member: TeamMember, key: str, value: bool, levels: Sequence[Level]
) -> TeamMember:
    level = resolve_level(member.level_id, levels)
    overrides = toggle(
        sparsify(member.permission_overrides, level.default_permissions),
        key,
        value,
        level.default_permissions,
    )
    return member.model_copy(update={"permission_overrides": overrides})
