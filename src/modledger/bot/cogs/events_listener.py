"""Event listener Cog for Modledger.

This cog handles bot lifecycle events (on_ready), command error handling and
the event log: message deletes and edits plus member joins and leaves are
mirrored to the mod-log channel.
"""

import asyncio
import discord
from discord.ext import commands

from modledger.bot.discord_platform import DiscordModerationPlatform
from modledger.moderation.orchestrator import ModerationOrchestrator
from modledger.ui import embeds
from modledger.util.logger import get_logger

logger = get_logger("events_listener_cog")

WORKFLOW_SWEEP_SECONDS = 60


class EventsListenerCog(commands.Cog):
    """Cog containing bot lifecycle, command error and event-log handlers."""

    def __init__(
        self,
        discord_bot_instance,
        orchestrator: ModerationOrchestrator,
        platform: DiscordModerationPlatform,
    ):
        """Initialize the events listener cog.

        Parameters
        ----------
        discord_bot_instance:
            The Discord bot instance to attach this cog to.
        orchestrator:
            Orchestrator whose scheduler and workflows are started on ready.
        platform:
            Platform adapter used to post event-log embeds.
        """
        self.bot = discord_bot_instance
        self.orchestrator = orchestrator
        self.platform = platform
        self.started = False
        self.sweep_task: asyncio.Task | None = None
        logger.info("Events listener cog loaded")

    @commands.Cog.listener(name='on_ready')
    async def on_ready(self):
        """Handle bot startup: presence, pending unban recovery and the workflow sweep.

        on_ready fires again after every reconnect; recovery only runs once.
        """
        if self.bot.user:
            logger.info(f"Bot connected as {self.bot.user} (ID: {self.bot.user.id})")
            await self.bot.change_presence(
                status=discord.Status.online,
                activity=discord.Activity(type=discord.ActivityType.watching, name="the case ledger"),
            )
        else:
            logger.warning("Bot partially connected, but user information not yet available.")

        if self.started:
            return
        self.started = True

        logger.info("--==--==--==--==--==--==--==--==--==--==--==--==--==--==--==--==--")
        recovered = await self.orchestrator.scheduler.recover()
        logger.info("Re-armed %d pending unban(s)", recovered)

        if self.orchestrator.workflows.expiry_minutes is not None:
            logger.info("Starting acknowledgement expiry sweep...")
            self.sweep_task = asyncio.create_task(self.sweep_workflows())

    async def sweep_workflows(self) -> None:
        while True:
            await asyncio.sleep(WORKFLOW_SWEEP_SECONDS)
            try:
                await self.orchestrator.expire_stale_workflows()
            except Exception as exc:
                logger.error("Acknowledgement sweep failed: %s", exc)

    def cog_unload(self):
        if self.sweep_task:
            self.sweep_task.cancel()

    @commands.Cog.listener(name='on_application_command_error')
    async def on_application_command_error(self, application_context: discord.ApplicationContext, error: Exception):
        """Handle errors from application commands with logging and user feedback.

        Parameters
        ----------
        application_context:
            The command invocation context.
        error:
            The exception raised during command execution.
        """
        if isinstance(error, commands.CommandNotFound):
            return

        command_name = getattr(application_context.command, 'name', '<unknown>')
        logger.critical(f"Error in command '{command_name}': {error}", exc_info=error)

        error_message = "❌ An error occurred while processing the command."
        try:
            await application_context.respond(error_message, ephemeral=True)
        except discord.InteractionResponded:
            await application_context.followup.send(error_message, ephemeral=True)

    # --------------------------------------------------------------
    # Event log
    # --------------------------------------------------------------

    @commands.Cog.listener(name='on_message_delete')
    async def on_message_delete(self, message: discord.Message):
        if message.guild is None or message.author.bot:
            return
        await self.platform.send_mod_log(embeds.build_message_deleted_embed(message))

    @commands.Cog.listener(name='on_message_edit')
    async def on_message_edit(self, before: discord.Message, after: discord.Message):
        if before.guild is None or before.author.bot:
            return
        # Embed unfurls also fire edits
        if before.content == after.content:
            return
        await self.platform.send_mod_log(embeds.build_message_edited_embed(before, after))

    @commands.Cog.listener(name='on_member_join')
    async def on_member_join(self, member: discord.Member):
        await self.platform.send_mod_log(embeds.build_member_embed(member, joined=True))

    @commands.Cog.listener(name='on_member_remove')
    async def on_member_remove(self, member: discord.Member):
        await self.platform.send_mod_log(embeds.build_member_embed(member, joined=False))


def setup(discord_bot_instance, orchestrator: ModerationOrchestrator, platform: DiscordModerationPlatform):
    """Register the EventsListenerCog with the bot."""
    discord_bot_instance.add_cog(EventsListenerCog(discord_bot_instance, orchestrator, platform))
