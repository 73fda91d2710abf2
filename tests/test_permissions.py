"""Tests for the authority tiers and the permission check."""

from types import SimpleNamespace

import pytest

from modledger.configuration.app_configuration import RoleIds
from modledger.moderation import permissions
from modledger.moderation.permissions import (
    ACTION_MIN_TIER,
    AuthorityTier,
    MemberSnapshot,
    RoleLadder,
    authorize,
    authorize_action,
    authorize_purge,
    level,
    snapshot_member,
)

LADDER = RoleLadder.from_role_ids(RoleIds(staff_assistant=11, assistant_supervisor=12, supervisor=13, assistant_manager=14))


def member(member_id, *roles, position=0, owner=False, manage_messages=False):
    return MemberSnapshot(
        member_id=member_id,
        role_ids=frozenset(roles),
        top_role_position=position,
        is_owner=owner,
        can_manage_messages=manage_messages,
    )


class TestLevel:
    def test_no_roles_is_none(self):
        assert level(member(1), LADDER) is AuthorityTier.NONE

    def test_missing_issuer_is_none(self):
        assert level(None, LADDER) is AuthorityTier.NONE

    def test_highest_matching_tier_wins(self):
        assert level(member(1, 11, 13), LADDER) is AuthorityTier.SUPERVISOR

    def test_high_role_without_lower_roles(self):
        assert level(member(1, 14), LADDER) is AuthorityTier.ASSISTANT_MANAGER

    def test_unconfigured_tier_is_unreachable(self):
        ladder = RoleLadder.from_role_ids(RoleIds(staff_assistant=11))
        assert AuthorityTier.SUPERVISOR not in ladder.roles
        assert level(member(1, 13), ladder) is AuthorityTier.NONE


class TestAuthorize:
    def test_no_issuer(self):
        decision = authorize(None, member(2), 1, LADDER)
        assert not decision
        assert decision.reason == "no_issuer"

    def test_insufficient_level(self):
        decision = authorize(member(1, 11, position=10), member(2, position=1), 3, LADDER)
        assert decision.reason == "insufficient_level"

    def test_allowed_with_higher_top_role(self):
        assert authorize(member(1, 13, position=10), member(2, position=5), 3, LADDER)

    def test_hierarchy_denies_even_at_top_tier(self):
        issuer = member(1, 14, position=5)
        target = member(2, position=5)
        decision = authorize(issuer, target, 1, LADDER)
        assert decision.reason == "role_hierarchy"

    def test_target_above_issuer(self):
        decision = authorize(member(1, 14, position=5), member(2, position=9), 1, LADDER)
        assert decision.reason == "role_hierarchy"

    def test_owner_bypasses_everything(self):
        owner = member(1, owner=True, position=0)
        assert authorize(owner, member(2, position=50), 4, LADDER)

    def test_missing_target_skips_hierarchy(self):
        assert authorize(member(1, 12, position=1), None, 2, LADDER)

    def test_is_pure(self):
        issuer = member(1, 12, position=3)
        target = member(2, position=1)
        assert authorize(issuer, target, 2, LADDER) == authorize(issuer, target, 2, LADDER)


class TestActionTable:
    @pytest.mark.parametrize(
        "action,tier",
        [
            ("warn", 1), ("ban", 2), ("tempban", 2), ("kick", 3),
            ("timeout", 3), ("untimeout", 3), ("clearwarns", 4), ("purge", 4),
        ],
    )
    def test_minimum_tiers(self, action, tier):
        assert ACTION_MIN_TIER[action] == tier

    def test_staff_assistant_cannot_kick(self):
        decision = authorize_action("kick", member(1, 11, position=9), member(2, position=1), LADDER)
        assert decision.reason == "insufficient_level"

    def test_staff_assistant_can_warn(self):
        assert authorize_action("warn", member(1, 11, position=9), member(2, position=1), LADDER)


class TestPurge:
    def test_manage_messages_is_enough(self):
        assert authorize_purge(member(1, manage_messages=True), LADDER)

    def test_tier_four_allowed(self):
        assert authorize_purge(member(1, 14), LADDER)

    def test_lower_tier_denied(self):
        assert authorize_purge(member(1, 13), LADDER).reason == "insufficient_level"

    def test_no_issuer(self):
        assert authorize_purge(None, LADDER).reason == "no_issuer"


class FakeMember:
    def __init__(self, member_id, role_ids, position, owner_id, manage_messages):
        self.id = member_id
        self.roles = [SimpleNamespace(id=role_id) for role_id in role_ids]
        self.top_role = SimpleNamespace(position=position)
        self.guild = SimpleNamespace(owner_id=owner_id)
        self.guild_permissions = SimpleNamespace(manage_messages=manage_messages)


def test_snapshot_member(monkeypatch):
    monkeypatch.setattr(permissions.discord, "Member", FakeMember)
    snapshot = snapshot_member(FakeMember(7, [11, 13], 4, owner_id=7, manage_messages=True))
    assert snapshot == MemberSnapshot(
        member_id=7, role_ids=frozenset({11, 13}), top_role_position=4, is_owner=True, can_manage_messages=True
    )


def test_snapshot_of_plain_user_is_none():
    assert snapshot_member(SimpleNamespace(id=7)) is None
