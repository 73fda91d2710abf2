"""
Authority tiers and the moderation permission check.

Everything here is a pure function of the snapshots passed in: there is no
lookup against Discord, no cache and no module state. The cog converts a
``discord.Member`` into a :class:`MemberSnapshot` once per command and hands
that to :func:`authorize`.

Rules, in order:

1. no issuer                                   -> denied ``no_issuer``
2. issuer owns the guild                       -> allowed
3. issuer tier below the action's minimum      -> denied ``insufficient_level``
4. target present and issuer's top role is not
   strictly above the target's top role        -> denied ``role_hierarchy``
5. otherwise                                   -> allowed

A target that is not (or no longer) a guild member is passed as ``None`` and
skips rule 4, since there is no role to rank it by.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import IntEnum
from typing import AbstractSet, Dict, Iterable, Mapping

import discord

from modledger.configuration.app_configuration import RoleIds


class AuthorityTier(IntEnum):
    """Staff ladder, lowest first."""

    NONE = 0
    STAFF_ASSISTANT = 1
    ASSISTANT_SUPERVISOR = 2
    SUPERVISOR = 3
    ASSISTANT_MANAGER = 4


# Minimum tier per moderation command
ACTION_MIN_TIER: Dict[str, AuthorityTier] = {
    "warn": AuthorityTier.STAFF_ASSISTANT,
    "case": AuthorityTier.STAFF_ASSISTANT,
    "ban": AuthorityTier.ASSISTANT_SUPERVISOR,
    "tempban": AuthorityTier.ASSISTANT_SUPERVISOR,
    "cancelunban": AuthorityTier.ASSISTANT_SUPERVISOR,
    "kick": AuthorityTier.SUPERVISOR,
    "timeout": AuthorityTier.SUPERVISOR,
    "untimeout": AuthorityTier.SUPERVISOR,
    "clearwarns": AuthorityTier.ASSISTANT_MANAGER,
    "purge": AuthorityTier.ASSISTANT_MANAGER,
}


@dataclass(frozen=True)
class RoleLadder:
    """Maps each tier above NONE to the role id that grants it."""

    roles: Mapping[AuthorityTier, int]

    @classmethod
    def from_role_ids(cls, role_ids: RoleIds) -> "RoleLadder":
        configured = {
            AuthorityTier.STAFF_ASSISTANT: role_ids.staff_assistant,
            AuthorityTier.ASSISTANT_SUPERVISOR: role_ids.assistant_supervisor,
            AuthorityTier.SUPERVISOR: role_ids.supervisor,
            AuthorityTier.ASSISTANT_MANAGER: role_ids.assistant_manager,
        }
        return cls({tier: role_id for tier, role_id in configured.items() if role_id is not None})


@dataclass(frozen=True)
class MemberSnapshot:
    """The parts of a guild member the permission check looks at."""

    member_id: int
    role_ids: AbstractSet[int] = frozenset()
    top_role_position: int = 0
    is_owner: bool = False
    can_manage_messages: bool = False


@dataclass(frozen=True)
class Decision:
    allowed: bool
    reason: str | None = None

    def __bool__(self) -> bool:
        return self.allowed


ALLOWED = Decision(True)


def level(issuer: MemberSnapshot | None, ladder: RoleLadder) -> AuthorityTier:
    """Return the highest tier whose role ``issuer`` holds.

    Only the best match counts; holding a tier-4 role without the tier-1
    role still yields tier 4.
    """
    if issuer is None:
        return AuthorityTier.NONE
    for tier in sorted(ladder.roles, reverse=True):
        if ladder.roles[tier] in issuer.role_ids:
            return tier
    return AuthorityTier.NONE


def authorize(
    issuer: MemberSnapshot | None,
    target: MemberSnapshot | None,
    min_level: int,
    ladder: RoleLadder,
) -> Decision:
    """Decide whether ``issuer`` may act on ``target`` at ``min_level``."""
    if issuer is None:
        return Decision(False, "no_issuer")
    if issuer.is_owner:
        return ALLOWED
    if level(issuer, ladder) < min_level:
        return Decision(False, "insufficient_level")
    if target is not None and issuer.top_role_position <= target.top_role_position:
        return Decision(False, "role_hierarchy")
    return ALLOWED


def authorize_action(
    action: str,
    issuer: MemberSnapshot | None,
    target: MemberSnapshot | None,
    ladder: RoleLadder,
) -> Decision:
    """:func:`authorize` using the minimum tier from :data:`ACTION_MIN_TIER`."""
    return authorize(issuer, target, ACTION_MIN_TIER[action], ladder)


def authorize_purge(issuer: MemberSnapshot | None, ladder: RoleLadder) -> Decision:
    """Purge is allowed at tier 4, or for anyone holding Manage Messages."""
    if issuer is None:
        return Decision(False, "no_issuer")
    if issuer.is_owner or issuer.can_manage_messages:
        return ALLOWED
    if level(issuer, ladder) < ACTION_MIN_TIER["purge"]:
        return Decision(False, "insufficient_level")
    return ALLOWED


def _role_ids(roles: Iterable[discord.Role]) -> frozenset[int]:
    return frozenset(role.id for role in roles)


def snapshot_member(member: discord.Member | None) -> MemberSnapshot | None:
    """Capture a guild member for :func:`authorize`; ``None`` for non-members."""
    if not isinstance(member, discord.Member):
        return None
    guild = member.guild
    return MemberSnapshot(
        member_id=member.id,
        role_ids=_role_ids(member.roles),
        top_role_position=member.top_role.position,
        is_owner=guild is not None and guild.owner_id == member.id,
        can_manage_messages=bool(member.guild_permissions.manage_messages),
    )
