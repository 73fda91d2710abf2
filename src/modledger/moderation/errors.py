"""
Exceptions raised by the moderation core.

Every error carries a ``user_message`` suitable for an ephemeral reply to the
issuer; the command layer never has to inspect exception types to word a
response.
"""

from __future__ import annotations


class ModerationError(Exception):
    """Base class for every moderation failure reported back to the issuer."""

    user_message = "❌ The moderation action could not be completed."

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.user_message)
        if message:
            self.user_message = message


class PermissionDenied(ModerationError):
    """The issuer may not perform the action (``no_issuer``, ``insufficient_level`` or ``role_hierarchy``)."""

    MESSAGES = {
        "no_issuer": "❌ This command can only be used by a server member.",
        "insufficient_level": "❌ You do not have permission to use this command.",
        "role_hierarchy": "❌ You cannot moderate a member whose top role is equal to or above yours.",
    }

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(self.MESSAGES.get(reason, "❌ You do not have permission to do that."))


class TargetNotFound(ModerationError):
    user_message = "❌ User not found in this server."


class InvalidParameter(ModerationError):
    """A command parameter is out of bounds; raised before any side effect."""

    def __init__(self, field: str, message: str) -> None:
        self.field = field
        super().__init__(message)


class EffectFailed(ModerationError):
    """The platform refused or failed the mute/kick/ban/purge; no case was written."""

    def __init__(self, action: str, detail: str | None = None) -> None:
        self.action = action
        self.detail = detail
        super().__init__(f"❌ Failed to {action} (missing permissions?).")


class NotificationFailed(ModerationError):
    """A best-effort notification could not be delivered. Always swallowed by the core."""

    user_message = "Could not notify the user."


class WorkflowAccessDenied(ModerationError):
    user_message = "You are not the user this consequence applies to."


class CaseNotFound(ModerationError):
    def __init__(self, case_id: int) -> None:
        self.case_id = case_id
        super().__init__(f"❌ Case {case_id} not found.")
