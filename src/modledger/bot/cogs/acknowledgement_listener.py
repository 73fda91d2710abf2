"""
Routes "Acknowledge Consequence" button clicks to the orchestrator.

Clicks are matched on the ``ack_<caseId>_<0|1>`` custom id rather than on a
live view, so buttons posted before a restart keep working.
"""

import discord
from discord.ext import commands

from modledger.moderation.acknowledgement import parse_custom_id
from modledger.moderation.errors import ModerationError
from modledger.moderation.orchestrator import ModerationOrchestrator
from modledger.util.logger import get_logger

logger = get_logger("acknowledgement_listener")


class AcknowledgementListenerCog(commands.Cog):
    def __init__(self, discord_bot_instance, orchestrator: ModerationOrchestrator):
        self.bot = discord_bot_instance
        self.orchestrator = orchestrator
        logger.info("Acknowledgement listener cog loaded")

    @commands.Cog.listener(name="on_interaction")
    async def on_interaction(self, interaction: discord.Interaction):
        if interaction.type is not discord.InteractionType.component:
            return
        custom_id = (interaction.data or {}).get("custom_id")
        parsed = parse_custom_id(custom_id)
        if parsed is None:
            return
        case_id, releases_hint = parsed

        if interaction.user is None or interaction.guild_id is None:
            await interaction.response.send_message("❌ Unable to process this interaction.", ephemeral=True)
            return

        # Defer before the thread the button lives in is deleted
        await interaction.response.defer(ephemeral=True)

        try:
            outcome = await self.orchestrator.acknowledge(
                interaction.guild_id,
                case_id,
                interaction.user.id,
                releases_hint=releases_hint,
                channel_id=interaction.channel_id,
            )
        except ModerationError as exc:
            await self._reply(interaction, exc.user_message)
            return

        if outcome.resolved_now:
            await self._reply(interaction, f"✅ Acknowledged case {case_id}.")
        else:
            await self._reply(interaction, f"Case {case_id} is no longer awaiting acknowledgement.")

    async def _reply(self, interaction: discord.Interaction, message: str) -> None:
        try:
            await interaction.followup.send(message, ephemeral=True)
        except discord.HTTPException as exc:
            # The thread is usually gone by now
            logger.debug("[ACK LISTENER] Could not send follow-up: %s", exc)


def setup(discord_bot_instance, orchestrator: ModerationOrchestrator):
    discord_bot_instance.add_cog(AcknowledgementListenerCog(discord_bot_instance, orchestrator))
