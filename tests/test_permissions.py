"""Tests for permission resolution and sparse overrides."""

import pytest

from blueprint_backend.core.errors import InvalidRequest
from blueprint_backend.core.models import PERMISSION_KEYS, Level, PermissionSet, TeamMember
from blueprint_backend.core.permissions import (
    BASELINE_LEVEL,
    DEFAULT_LEVELS,
    effective,
    member_permissions,
    reassign_level,
    reassign_member,
    resolve_level,
    sparsify,
    toggle,
    toggle_member,
)

JUNIOR, SENIOR, MASTER = DEFAULT_LEVELS


def member(level_id: str = "lvl_1", overrides: dict | None = None) -> TeamMember:
    return TeamMember(
        id="TM1",
        merchant_id="M1",
        name="Ana Stylist",
        level_id=level_id,
        permission_overrides=overrides or {},
    )


def test_effective_lays_overrides_over_defaults() -> None:
    result = effective(JUNIOR.default_permissions, {"canOfferDiscounts": True})
    assert result.canOfferDiscounts is True
    assert result.canBookAppointments is True
    assert result.viewGlobalReports is False


def test_effective_ignores_unknown_keys() -> None:
    result = effective(JUNIOR.default_permissions, {"launchRockets": True})
    assert result == JUNIOR.default_permissions


def test_permission_set_rejects_unknown_keys() -> None:
    with pytest.raises(ValueError):
        PermissionSet(launchRockets=True)


def test_sparsify_drops_defaults_and_unknown_keys() -> None:
    overrides = {
        "canBookAppointments": True,  # equals default
        "canOfferDiscounts": True,
        "launchRockets": True,
    }
    assert sparsify(overrides, JUNIOR.default_permissions) == {"canOfferDiscounts": True}


@pytest.mark.parametrize("key", PERMISSION_KEYS)
def test_toggle_to_default_removes_override(key: str) -> None:
    default = getattr(SENIOR.default_permissions, key)
    overrides = toggle({}, key, not default, SENIOR.default_permissions)
    assert overrides == {key: not default}
    assert toggle(overrides, key, default, SENIOR.default_permissions) == {}


def test_double_toggle_restores_previous_overrides() -> None:
    before = {"viewGlobalReports": True}
    on = toggle(before, "canOfferDiscounts", True, JUNIOR.default_permissions)
    off = toggle(on, "canOfferDiscounts", False, JUNIOR.default_permissions)
    assert on == {"viewGlobalReports": True, "canOfferDiscounts": True}
    assert off == before


def test_toggle_does_not_mutate_input() -> None:
    before = {"viewGlobalReports": True}
    toggle(before, "canOfferDiscounts", True, JUNIOR.default_permissions)
    assert before == {"viewGlobalReports": True}


def test_toggle_unknown_key_is_invalid() -> None:
    with pytest.raises(InvalidRequest):
        toggle({}, "launchRockets", True, JUNIOR.default_permissions)


def test_reassign_drops_overrides_equal_to_new_default() -> None:
    overrides = {"canOfferDiscounts": True, "viewClientContact": False}
    assert reassign_level(overrides, SENIOR.default_permissions) == {"viewClientContact": False}


def test_toggle_then_reassign_to_level_granting_it() -> None:
    tm = toggle_member(member("lvl_1"), "canOfferDiscounts", True, list(DEFAULT_LEVELS))
    assert tm.permission_overrides == {"canOfferDiscounts": True}

    moved = reassign_member(tm, "lvl_2", list(DEFAULT_LEVELS))
    assert moved.level_id == "lvl_2"
    assert moved.permission_overrides == {}
    assert member_permissions(moved, list(DEFAULT_LEVELS)).canOfferDiscounts is True


def test_round_trip_restores_effective_permissions() -> None:
    levels = list(DEFAULT_LEVELS)
    # deltas under both Junior and Senior
    original = member("lvl_1", {"viewClientContact": False, "can_book_own_schedule": False})
    before = member_permissions(original, levels)

    there = reassign_member(original, "lvl_2", levels)
    back = reassign_member(there, "lvl_1", levels)

    assert member_permissions(back, levels) == before
    assert back.permission_overrides == original.permission_overrides


def test_reassign_to_unknown_level_is_invalid() -> None:
    with pytest.raises(InvalidRequest):
        reassign_member(member(), "lvl_9", list(DEFAULT_LEVELS))


def test_steady_state_overrides_never_equal_defaults() -> None:
    levels = list(DEFAULT_LEVELS)
    tm = member("lvl_1")
    for key, value in [
        ("canOfferDiscounts", True),
        ("viewGlobalReports", True),
        ("canOfferDiscounts", False),
        ("viewClientContact", False),
    ]:
        tm = toggle_member(tm, key, value, levels)
    tm = reassign_member(tm, "lvl_3", levels)
    defaults = resolve_level(tm.level_id, levels).default_permissions
    for key, value in tm.permission_overrides.items():
        assert getattr(defaults, key) != value


def test_toggle_member_sparsifies_legacy_rows() -> None:
    legacy = member("lvl_1", {"canBookAppointments": True, "viewClientContact": True})
    tm = toggle_member(legacy, "viewGlobalReports", True, list(DEFAULT_LEVELS))
    assert tm.permission_overrides == {"viewGlobalReports": True}


def test_resolve_level_falls_back_to_lowest_order() -> None:
    levels = [
        Level(id="b", name="B", order=2),
        Level(id="a", name="A", order=1, default_permissions=PermissionSet(viewGlobalReports=True)),
    ]
    assert resolve_level("deleted", levels).id == "a"
    assert resolve_level(None, levels).id == "a"
    assert member_permissions(member("deleted"), levels).viewGlobalReports is True


def test_resolve_level_without_levels_uses_baseline() -> None:
    assert resolve_level("lvl_2", []) == BASELINE_LEVEL


def test_level_accepts_camel_case_payload() -> None:
    level = Level.model_validate(
        {"id": "x", "name": "X", "order": 4, "defaultPermissions": {"viewGlobalReports": True}}
    )
    assert level.default_permissions.viewGlobalReports is True
    assert level.model_dump(by_alias=True)["defaultPermissions"]["viewGlobalReports"] is True
