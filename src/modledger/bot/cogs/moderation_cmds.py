"""
Moderation cog: slash commands for disciplinary actions and the case ledger.

Every command defers ephemerally, converts the invoking member and the target
into snapshots, and hands them to the
:class:`~modledger.moderation.orchestrator.ModerationOrchestrator`. The
orchestrator does the permission check, the Discord effect and the case write;
this cog only turns outcomes into replies.

Any :class:`~modledger.moderation.errors.ModerationError` is answered with its
``user_message``. Everything else propagates to the application command error
handler in :mod:`modledger.bot.cogs.events_listener`.

Commands and minimum tiers
    warnings (anyone), warn (1), case (1), ban (2), tempban (2), cancelunban (2),
    kick (3), timeout (3), untimeout (3), clearwarns (4), purge (4 or
    Manage Messages)
"""

import discord
from discord import Option
from discord.ext import commands

from modledger.moderation.errors import ModerationError
from modledger.moderation.orchestrator import (
    MAX_TIMEOUT_MINUTES,
    PURGE_MAX,
    PURGE_MIN,
    ActionContext,
    ModerationOrchestrator,
    Target,
)
from modledger.moderation.permissions import snapshot_member
from modledger.ui.embeds import build_case_lookup_embed, build_warnings_embed, format_expiry
from modledger.util.logger import get_logger

logger = get_logger("moderation_cog")


def build_context(ctx: discord.ApplicationContext) -> ActionContext:
    guild = ctx.guild
    return ActionContext(
        guild_id=guild.id if guild else 0,
        guild_name=guild.name if guild else "this server",
        issuer=snapshot_member(ctx.author),
        channel_id=ctx.channel.id if ctx.channel else None,
    )


def build_target(user: discord.abc.User | None) -> Target | None:
    """Target for ``user``; the member snapshot is ``None`` when they are not in the guild."""
    if user is None:
        return None
    return Target(user_id=user.id, member=snapshot_member(user))


class ModerationActionCog(commands.Cog):
    """Cog containing the moderation slash commands."""

    def __init__(self, discord_bot_instance, orchestrator: ModerationOrchestrator, warnings_display_limit: int = 10):
        self.discord_bot_instance = discord_bot_instance
        self.orchestrator = orchestrator
        self.warnings_display_limit = warnings_display_limit
        logger.info("Moderation cog loaded")

    async def run_action(self, ctx: discord.ApplicationContext, action, *args) -> object | None:
        """Run ``action`` and answer moderation errors in place.

        Returns the outcome, or ``None`` after an error reply was sent.
        """
        try:
            return await action(*args)
        except ModerationError as exc:
            logger.info(
                "[MODERATION CMDS] /%s by %s rejected: %s",
                getattr(ctx.command, "name", "?"), ctx.author.id, exc,
            )
            await ctx.send_followup(exc.user_message, ephemeral=True)
            return None

    @commands.slash_command(name="warn", description="Warn a user; they are muted until they acknowledge.")
    async def warn(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to warn.", required=True),  # type: ignore
        reason: Option(str, "Reason for the warning.", required=False, default=None),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        outcome = await self.run_action(ctx, self.orchestrator.warn, build_context(ctx), build_target(user), reason)
        if outcome is None:
            return
        await ctx.send_followup(
            f"✅ Warned {user.mention} (Case {outcome.case.case_id}). "
            "A private acknowledgement thread has been opened in the rules channel.",
            ephemeral=True,
        )

    @commands.slash_command(name="warnings", description="Show a user's most recent warnings.")
    async def warnings(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to look up.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        outcome = await self.orchestrator.list_warnings(user.id, self.warnings_display_limit)
        if not outcome.warnings:
            await ctx.send_followup(f"{user} has no warnings.", ephemeral=True)
            return
        await ctx.send_followup(embed=build_warnings_embed(user, outcome.warnings, outcome.count), ephemeral=True)

    @commands.slash_command(name="clearwarns", description="Remove every warning of a user.")
    async def clearwarns(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user whose warnings to clear.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        outcome = await self.run_action(ctx, self.orchestrator.clear_warnings, build_context(ctx), build_target(user))
        if outcome is None:
            return
        await ctx.send_followup(
            f"✅ Cleared {outcome.count} warnings for {user.mention} (Case {outcome.case.case_id}).",
            ephemeral=True,
        )

    @commands.slash_command(name="kick", description="Kick a member from the server.")
    async def kick(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The member to kick.", required=True),  # type: ignore
        reason: Option(str, "Reason for the kick.", required=False, default=None),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        outcome = await self.run_action(ctx, self.orchestrator.kick, build_context(ctx), build_target(user), reason)
        if outcome is None:
            return
        await ctx.send_followup(f"✅ Kicked {user.mention} (Case {outcome.case.case_id}).", ephemeral=True)

    @commands.slash_command(name="ban", description="Permanently ban a user.")
    async def ban(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to ban.", required=True),  # type: ignore
        reason: Option(str, "Reason for the ban.", required=False, default=None),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        outcome = await self.run_action(ctx, self.orchestrator.ban, build_context(ctx), build_target(user), reason)
        if outcome is None:
            return
        await ctx.send_followup(f"✅ Banned {user.mention} (Case {outcome.case.case_id}).", ephemeral=True)

    @commands.slash_command(name="tempban", description="Ban a user for a number of minutes.")
    async def tempban(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The user to ban.", required=True),  # type: ignore
        minutes: Option(int, "Length of the ban in minutes.", required=True),  # type: ignore
        reason: Option(str, "Reason for the ban.", required=False, default=None),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        outcome = await self.run_action(
            ctx, self.orchestrator.tempban, build_context(ctx), build_target(user), minutes, reason
        )
        if outcome is None:
            return
        await ctx.send_followup(
            f"✅ Tempbanned {user.mention} for {minutes} minute(s) (Case {outcome.case.case_id}). "
            f"Unban {format_expiry(outcome.pending_unban.unban_at_datetime)}.",
            ephemeral=True,
        )

    @commands.slash_command(name="cancelunban", description="Cancel the automatic unban of a tempban case.")
    async def cancelunban(
        self,
        ctx: discord.ApplicationContext,
        case_id: Option(int, "The tempban case id.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        cancelled = await self.run_action(ctx, self.orchestrator.cancel_scheduled_unban, build_context(ctx), case_id)
        if cancelled is None:
            return
        if cancelled:
            await ctx.send_followup(f"✅ Case {case_id} will no longer be lifted automatically.", ephemeral=True)
        else:
            await ctx.send_followup(f"Case {case_id} has no pending unban.", ephemeral=True)

    @commands.slash_command(name="timeout", description="Timeout a member for a number of minutes.")
    async def timeout(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The member to timeout.", required=True),  # type: ignore
        minutes: Option(int, f"Length of the timeout (1 to {MAX_TIMEOUT_MINUTES} minutes).", required=True),  # type: ignore
        reason: Option(str, "Reason for the timeout.", required=False, default=None),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        outcome = await self.run_action(
            ctx, self.orchestrator.timeout, build_context(ctx), build_target(user), minutes, reason
        )
        if outcome is None:
            return
        await ctx.send_followup(
            f"✅ Timed out {user.mention} for {minutes} minute(s) (Case {outcome.case.case_id}). "
            "A private acknowledgement thread has been opened in the rules channel.",
            ephemeral=True,
        )

    @commands.slash_command(name="untimeout", description="Remove a member's timeout.")
    async def untimeout(
        self,
        ctx: discord.ApplicationContext,
        user: Option(discord.User, "The member to release.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        outcome = await self.run_action(ctx, self.orchestrator.untimeout, build_context(ctx), build_target(user))
        if outcome is None:
            return
        await ctx.send_followup(f"✅ Removed timeout for {user.mention} (Case {outcome.case.case_id}).", ephemeral=True)

    @commands.slash_command(name="purge", description="Delete recent messages in this channel.")
    async def purge(
        self,
        ctx: discord.ApplicationContext,
        amount: Option(int, f"Number of messages ({PURGE_MIN} to {PURGE_MAX}).", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        outcome = await self.run_action(ctx, self.orchestrator.purge, build_context(ctx), amount)
        if outcome is None:
            return
        await ctx.send_followup(f"✅ Purged {outcome.count} messages.", ephemeral=True)

    @commands.slash_command(name="case", description="Look up a case by id.")
    async def case(
        self,
        ctx: discord.ApplicationContext,
        case_id: Option(int, "The case id.", required=True),  # type: ignore
    ) -> None:
        await ctx.defer(ephemeral=True)
        found = await self.run_action(ctx, self.orchestrator.lookup_case, build_context(ctx), case_id)
        if found is None:
            return
        await ctx.send_followup(embed=build_case_lookup_embed(found), ephemeral=True)


def setup(discord_bot_instance, orchestrator: ModerationOrchestrator, warnings_display_limit: int = 10):
    """Register the moderation cog with the running bot instance."""
    discord_bot_instance.add_cog(
        ModerationActionCog(discord_bot_instance, orchestrator, warnings_display_limit)
    )
