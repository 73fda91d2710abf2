"""
The capabilities the moderation core needs from the chat platform.

The orchestrator only ever talks to this protocol. The py-cord implementation
lives in :mod:`modledger.bot.discord_platform`; tests use a recording fake.

Effect methods (timeouts, kick, ban, unban, purge) raise
:class:`~modledger.moderation.errors.EffectFailed` on failure.
``notify_user`` raises :class:`~modledger.moderation.errors.NotificationFailed`.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from modledger.datatypes.case_datatypes import Case
from modledger.moderation.acknowledgement import AcknowledgementWorkflow


@dataclass(frozen=True)
class AcknowledgementPrompt:
    """What the private acknowledgement surface shows the punished user."""

    title: str
    description: str
    action_label: str


class ModerationPlatform(Protocol):
    @property
    def bot_user_id(self) -> int: ...

    async def timeout_member(self, guild_id: int, user_id: int, minutes: int, reason: str) -> None: ...

    async def remove_timeout(self, guild_id: int, user_id: int, reason: str) -> None: ...

    async def kick_member(self, guild_id: int, user_id: int, reason: str) -> None: ...

    async def ban_user(self, guild_id: int, user_id: int, reason: str) -> None: ...

    async def unban_user(self, guild_id: int, user_id: int, reason: str) -> None: ...

    async def purge_messages(self, channel_id: int, amount: int) -> int: ...

    async def notify_user(self, user_id: int, message: str) -> None: ...

    async def open_acknowledgement_channel(
        self, workflow: AcknowledgementWorkflow, prompt: AcknowledgementPrompt
    ) -> int | None: ...

    async def close_acknowledgement_channel(self, channel_id: int) -> None: ...

    async def publish_case(self, guild_id: int, case: Case) -> None: ...
