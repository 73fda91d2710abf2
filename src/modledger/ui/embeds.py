"""
Embed builders for Modledger.

Case mirrors, the acknowledgement prompt, the ``/warnings`` listing and the
event-log entries posted to the mod-log channel.
"""

from __future__ import annotations

import datetime
from typing import Sequence

import discord

from modledger.datatypes.case_datatypes import Case, CaseAction, WarningRecord, utcnow
from modledger.moderation.acknowledgement import AcknowledgementWorkflow
from modledger.moderation.platform import AcknowledgementPrompt

ACK_BUTTON_LABEL = "Acknowledge Consequence"

# Discord caps a field value at 1024 characters
FIELD_LIMIT = 1024

CASE_COLORS = {
    CaseAction.WARN: discord.Color(0xFFCC00),
    CaseAction.CLEAR_WARNS: discord.Color(0x00CC66),
    CaseAction.KICK: discord.Color(0xFF6600),
    CaseAction.BAN: discord.Color(0x990000),
    CaseAction.TEMPBAN: discord.Color(0xAA0000),
    CaseAction.AUTO_UNBAN: discord.Color(0x00AA00),
    CaseAction.TIMEOUT: discord.Color(0x9933FF),
    CaseAction.REMOVE_TIMEOUT: discord.Color(0x00CCFF),
    CaseAction.PURGE: discord.Color(0x666666),
    CaseAction.ACKNOWLEDGE: discord.Color(0x00CC66),
}
DEFAULT_CASE_COLOR = discord.Color(0xFF9900)


def truncate(text: str, limit: int = FIELD_LIMIT) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 1] + "…"


def build_case_embed(case: Case) -> discord.Embed:
    """Mod-log mirror of one case, with every ``extra`` entry as an inline field."""
    embed = discord.Embed(
        title=f"🛡️ Mod Action: {case.action.value}",
        color=CASE_COLORS.get(case.action, DEFAULT_CASE_COLOR),
        timestamp=case.timestamp,
    )
    embed.add_field(name="Case ID", value=str(case.case_id), inline=True)
    embed.add_field(name="Moderator", value=f"<@{case.moderator_id}>", inline=True)
    embed.add_field(name="Target", value=f"<@{case.target_user_id}>", inline=True)
    embed.add_field(name="Reason", value=truncate(case.reason), inline=False)
    for key, value in case.extra.items():
        embed.add_field(name=str(key), value=truncate(str(value)), inline=True)
    return embed


def build_acknowledgement_embed(workflow: AcknowledgementWorkflow, prompt: AcknowledgementPrompt) -> discord.Embed:
    embed = discord.Embed(
        title=prompt.title,
        description=prompt.description,
        color=CASE_COLORS.get(workflow.action_type, DEFAULT_CASE_COLOR),
        timestamp=workflow.opened_at,
    )
    embed.add_field(name="Case ID", value=str(workflow.case_id), inline=True)
    embed.add_field(name="Action", value=prompt.action_label, inline=True)
    return embed


def build_warnings_embed(
    user: discord.abc.User,
    warnings: Sequence[WarningRecord],
    total: int | None = None,
) -> discord.Embed:
    """List ``warnings`` (already limited by the caller); ``total`` is the full count."""
    total = len(warnings) if total is None else total
    embed = discord.Embed(
        title=f"Warnings for {user}",
        description=f"Total warnings: {total}",
        color=CASE_COLORS[CaseAction.WARN],
        timestamp=utcnow(),
    )
    for warning in warnings:
        stamp = discord.utils.format_dt(warning.timestamp, style="f")
        embed.add_field(
            name=f"ID {warning.id}",
            value=truncate(f"{stamp} by <@{warning.moderator_id}> - {warning.reason}"),
            inline=False,
        )
    return embed


def build_case_lookup_embed(case: Case) -> discord.Embed:
    embed = build_case_embed(case)
    embed.title = f"📁 Case {case.case_id}: {case.action.value}"
    embed.set_footer(text=f"Recorded {case.timestamp.strftime('%Y-%m-%d %H:%M:%S UTC')}")
    return embed


# --------------------------------------------------------------------------
# Event log
# --------------------------------------------------------------------------

def build_message_deleted_embed(message: discord.Message) -> discord.Embed:
    embed = discord.Embed(title="🗑️ Message Deleted", color=discord.Color.red(), timestamp=utcnow())
    embed.add_field(name="Author", value=f"{message.author} ({message.author.id})", inline=False)
    embed.add_field(name="Channel", value=message.channel.mention, inline=False)
    if message.content:
        embed.add_field(name="Content", value=truncate(message.content), inline=False)
    return embed


def build_message_edited_embed(before: discord.Message, after: discord.Message) -> discord.Embed:
    embed = discord.Embed(title="✏️ Message Edited", color=discord.Color.orange(), timestamp=utcnow())
    embed.add_field(name="Author", value=f"{before.author} ({before.author.id})", inline=False)
    embed.add_field(name="Channel", value=before.channel.mention, inline=False)
    embed.add_field(name="Before", value=truncate(before.content or "*embed/attachment*"), inline=False)
    embed.add_field(name="After", value=truncate(after.content or "*embed/attachment*"), inline=False)
    return embed


def build_member_embed(member: discord.Member, joined: bool) -> discord.Embed:
    return discord.Embed(
        title="📥 Member Joined" if joined else "📤 Member Left",
        description=f"{member} ({member.id})",
        color=discord.Color.green() if joined else discord.Color.dark_grey(),
        timestamp=utcnow(),
    )


def format_expiry(when: datetime.datetime) -> str:
    """Absolute plus relative Discord timestamp, e.g. for tempban expiries."""
    return f"{discord.utils.format_dt(when, style='f')} ({discord.utils.format_dt(when, style='R')})"
