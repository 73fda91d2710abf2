"""
Record types for the moderation audit trail.

This module defines the CaseAction enum together with the Case, WarningRecord
and PendingUnban records that the stores persist and the UI renders.
"""

from __future__ import annotations

import datetime
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

DEFAULT_REASON = "No reason provided"


class CaseAction(Enum):
    """Kinds of moderation action recorded in the case ledger."""

    WARN = "Warn"
    KICK = "Kick"
    BAN = "Ban"
    TEMPBAN = "TempBan"
    TIMEOUT = "Timeout"
    REMOVE_TIMEOUT = "RemoveTimeout"
    CLEAR_WARNS = "ClearWarns"
    PURGE = "Purge"
    ACKNOWLEDGE = "Acknowledge"
    AUTO_UNBAN = "AutoUnban"

    def __str__(self) -> str:
        return self.value


def utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.timezone.utc)


def normalize_reason(reason: str | None) -> str:
    """Return ``reason`` stripped, or the default text when it is empty."""
    if reason is None:
        return DEFAULT_REASON
    return reason.strip() or DEFAULT_REASON


@dataclass(frozen=True, slots=True)
class Case:
    """Immutable audit record of one moderation action.

    Attributes:
        case_id: Ledger-assigned id, strictly increasing
        action: What was done
        moderator_id: Issuer, or the bot for system-generated cases
        target_user_id: User the action applies to
        reason: Free text, never empty
        timestamp: UTC time the case was written
        extra: Action-specific details (warningId, durationMinutes, ...)
    """

    case_id: int
    action: CaseAction
    moderator_id: int
    target_user_id: int
    reason: str
    timestamp: datetime.datetime
    extra: Mapping[str, Any] = field(default_factory=dict)

    def extra_json(self) -> str:
        return json.dumps(dict(self.extra), sort_keys=True, default=str)

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "Case":
        return cls(
            case_id=int(row["case_id"]),
            action=CaseAction(row["action"]),
            moderator_id=int(row["moderator_id"]),
            target_user_id=int(row["target_user_id"]),
            reason=str(row["reason"]),
            timestamp=datetime.datetime.fromisoformat(row["timestamp"]),
            extra=json.loads(row["extra"] or "{}"),
        )


@dataclass(frozen=True, slots=True)
class WarningRecord:
    """A single warning issued to a user. Never mutated; only bulk-cleared."""

    id: int
    user_id: int
    moderator_id: int
    reason: str
    timestamp: datetime.datetime

    @classmethod
    def from_row(cls, row: Mapping[str, Any]) -> "WarningRecord":
        return cls(
            id=int(row["id"]),
            user_id=int(row["user_id"]),
            moderator_id=int(row["moderator_id"]),
            reason=str(row["reason"]),
            timestamp=datetime.datetime.fromisoformat(row["timestamp"]),
        )


@dataclass(frozen=True, slots=True)
class PendingUnban:
    """A tempban expiry waiting to fire. ``unban_at`` is unix seconds (UTC)."""

    case_id: int
    guild_id: int
    user_id: int
    unban_at: int
    reason: str = "Tempban expired"

    @property
    def unban_at_datetime(self) -> datetime.datetime:
        return datetime.datetime.fromtimestamp(self.unban_at, tz=datetime.timezone.utc)
