"""
py-cord implementation of :class:`~modledger.moderation.platform.ModerationPlatform`.

Every effect resolves guilds, members and channels from ids through the bot's
cache first and the REST API second. Discord errors are translated into the
moderation error taxonomy so the orchestrator never sees a ``discord``
exception.
"""

from __future__ import annotations

import datetime

import discord

from modledger.datatypes.case_datatypes import Case
from modledger.moderation.acknowledgement import AcknowledgementWorkflow
from modledger.moderation.errors import EffectFailed, NotificationFailed, TargetNotFound
from modledger.moderation.platform import AcknowledgementPrompt
from modledger.ui.embeds import ACK_BUTTON_LABEL, build_acknowledgement_embed, build_case_embed
from modledger.util.logger import get_logger

logger = get_logger("discord_platform")

ACK_THREAD_ARCHIVE_MINUTES = 60


class AcknowledgementView(discord.ui.View):
    """
    Single "Acknowledge Consequence" button.

    The button keeps the default no-op callback: clicks are routed by custom id
    in :class:`~modledger.bot.cogs.acknowledgement_listener.AcknowledgementListenerCog`
    so they keep working after a restart, when this view no longer exists.
    """

    def __init__(self, custom_id: str):
        super().__init__(timeout=None)
        self.add_item(
            discord.ui.Button(
                label=ACK_BUTTON_LABEL,
                style=discord.ButtonStyle.primary,
                custom_id=custom_id,
            )
        )


class DiscordModerationPlatform:
    """Drives Discord on behalf of the orchestrator."""

    def __init__(
        self,
        bot: discord.Bot,
        mod_log_channel_id: int | None = None,
        rules_channel_id: int | None = None,
    ) -> None:
        self.bot = bot
        self.mod_log_channel_id = mod_log_channel_id
        self.rules_channel_id = rules_channel_id

    @property
    def bot_user_id(self) -> int:
        return self.bot.user.id if self.bot.user else 0

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _guild(self, guild_id: int, action: str) -> discord.Guild:
        guild = self.bot.get_guild(guild_id)
        if guild is None:
            raise EffectFailed(action, f"guild {guild_id} not available")
        return guild

    async def _member(self, guild: discord.Guild, user_id: int) -> discord.Member:
        member = guild.get_member(user_id)
        if member is not None:
            return member
        try:
            return await guild.fetch_member(user_id)
        except discord.NotFound:
            raise TargetNotFound()

    async def _channel(self, channel_id: int):
        channel = self.bot.get_channel(channel_id)
        if channel is None:
            channel = await self.bot.fetch_channel(channel_id)
        return channel

    # ------------------------------------------------------------------
    # Effects
    # ------------------------------------------------------------------

    async def timeout_member(self, guild_id: int, user_id: int, minutes: int, reason: str) -> None:
        guild = self._guild(guild_id, "timeout")
        member = await self._member(guild, user_id)
        try:
            await member.timeout_for(datetime.timedelta(minutes=minutes), reason=reason)
        except discord.HTTPException as exc:
            logger.error("[DISCORD PLATFORM] Timeout of %s in %s failed: %s", user_id, guild_id, exc)
            raise EffectFailed("timeout", str(exc)) from exc

    async def remove_timeout(self, guild_id: int, user_id: int, reason: str) -> None:
        guild = self._guild(guild_id, "remove timeout")
        member = await self._member(guild, user_id)
        try:
            await member.remove_timeout(reason=reason)
        except discord.HTTPException as exc:
            logger.error("[DISCORD PLATFORM] Removing timeout of %s in %s failed: %s", user_id, guild_id, exc)
            raise EffectFailed("remove timeout", str(exc)) from exc

    async def kick_member(self, guild_id: int, user_id: int, reason: str) -> None:
        guild = self._guild(guild_id, "kick")
        member = await self._member(guild, user_id)
        try:
            await member.kick(reason=reason)
        except discord.HTTPException as exc:
            logger.error("[DISCORD PLATFORM] Kick of %s in %s failed: %s", user_id, guild_id, exc)
            raise EffectFailed("kick", str(exc)) from exc

    async def ban_user(self, guild_id: int, user_id: int, reason: str) -> None:
        guild = self._guild(guild_id, "ban")
        try:
            await guild.ban(discord.Object(id=user_id), reason=reason)
        except discord.HTTPException as exc:
            logger.error("[DISCORD PLATFORM] Ban of %s in %s failed: %s", user_id, guild_id, exc)
            raise EffectFailed("ban", str(exc)) from exc

    async def unban_user(self, guild_id: int, user_id: int, reason: str) -> None:
        guild = self._guild(guild_id, "unban")
        try:
            await guild.unban(discord.Object(id=user_id), reason=reason)
        except discord.NotFound:
            logger.info("[DISCORD PLATFORM] User %s was already unbanned in %s", user_id, guild_id)
        except discord.HTTPException as exc:
            logger.error("[DISCORD PLATFORM] Unban of %s in %s failed: %s", user_id, guild_id, exc)
            raise EffectFailed("unban", str(exc)) from exc

    async def purge_messages(self, channel_id: int, amount: int) -> int:
        try:
            channel = await self._channel(channel_id)
            deleted = await channel.purge(limit=amount)
        except discord.HTTPException as exc:
            logger.error("[DISCORD PLATFORM] Purge in channel %s failed: %s", channel_id, exc)
            raise EffectFailed("delete messages", str(exc)) from exc
        return len(deleted)

    # ------------------------------------------------------------------
    # Notifications
    # ------------------------------------------------------------------

    async def notify_user(self, user_id: int, message: str) -> None:
        try:
            user = self.bot.get_user(user_id) or await self.bot.fetch_user(user_id)
            await user.send(message)
        except discord.HTTPException as exc:
            raise NotificationFailed(f"Could not DM user {user_id}: {exc}") from exc

    async def open_acknowledgement_channel(
        self, workflow: AcknowledgementWorkflow, prompt: AcknowledgementPrompt
    ) -> int | None:
        """Open a private thread under the rules channel and post the prompt into it."""
        if self.rules_channel_id is None:
            logger.warning("[DISCORD PLATFORM] No rules channel configured; cannot create acknowledgement thread.")
            return None

        try:
            rules_channel = await self._channel(self.rules_channel_id)
        except discord.HTTPException as exc:
            logger.warning("[DISCORD PLATFORM] Rules channel %s not reachable: %s", self.rules_channel_id, exc)
            return None

        thread = await rules_channel.create_thread(
            name=f"{workflow.action_type.value} • Case {workflow.case_id}",
            type=discord.ChannelType.private_thread,
            auto_archive_duration=ACK_THREAD_ARCHIVE_MINUTES,
        )
        try:
            await thread.add_user(discord.Object(id=workflow.target_user_id))
        except discord.HTTPException as exc:
            logger.warning(
                "[DISCORD PLATFORM] Could not add user %s to thread %s: %s",
                workflow.target_user_id, thread.id, exc,
            )

        await thread.send(
            content=f"<@{workflow.target_user_id}>",
            embed=build_acknowledgement_embed(workflow, prompt),
            view=AcknowledgementView(workflow.custom_id),
        )
        logger.debug("[DISCORD PLATFORM] Acknowledgement thread %s opened for case %s", thread.id, workflow.case_id)
        return thread.id

    async def close_acknowledgement_channel(self, channel_id: int) -> None:
        try:
            channel = await self._channel(channel_id)
            await channel.delete()
        except discord.NotFound:
            logger.debug("[DISCORD PLATFORM] Acknowledgement thread %s already gone", channel_id)

    # ------------------------------------------------------------------
    # Mod log
    # ------------------------------------------------------------------

    async def send_mod_log(self, embed: discord.Embed) -> bool:
        """Post ``embed`` to the mod-log channel. Returns False when mirroring is off or fails."""
        if self.mod_log_channel_id is None:
            return False
        try:
            channel = await self._channel(self.mod_log_channel_id)
            await channel.send(embed=embed)
            return True
        except discord.HTTPException as exc:
            logger.error("[DISCORD PLATFORM] Failed to send mod log: %s", exc)
            return False

    async def publish_case(self, guild_id: int, case: Case) -> None:
        await self.send_mod_log(build_case_embed(case))
