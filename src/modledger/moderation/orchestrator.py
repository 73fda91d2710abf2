"""
Action orchestrator: runs one moderation command end to end.

Every action follows the same sequence:

1. resolve the target (``TargetNotFound`` when a member is required)
2. validate parameters (``InvalidParameter``), no side effect yet
3. authorize (``PermissionDenied``), no side effect yet
4. perform the platform effect (``EffectFailed``, no case written)
5. write the case; a warning or a pending unban is written in the same
   transaction, so neither exists without its case
6. warn/timeout: open the acknowledgement workflow
7. tempban: arm the pending unban once it is committed

Notifications to the punished user are best effort. A failed DM is logged and
never changes the outcome. Mod-log mirroring is treated the same way.
"""

from __future__ import annotations

import datetime
from dataclasses import dataclass, field
from typing import List

from modledger.datatypes.case_datatypes import (
    Case,
    CaseAction,
    PendingUnban,
    WarningRecord,
    normalize_reason,
)
from modledger.moderation.acknowledgement import (
    AcknowledgementRegistry,
    AcknowledgementWorkflow,
    WorkflowState,
)
from modledger.moderation.case_ledger import CaseLedger
from modledger.moderation.errors import (
    CaseNotFound,
    EffectFailed,
    InvalidParameter,
    NotificationFailed,
    PermissionDenied,
    TargetNotFound,
)
from modledger.moderation.permissions import (
    Decision,
    MemberSnapshot,
    RoleLadder,
    authorize_action,
    authorize_purge,
)
from modledger.moderation.platform import AcknowledgementPrompt, ModerationPlatform
from modledger.moderation.record_store import RecordStore
from modledger.scheduler.unban_scheduler import UnbanScheduler
from modledger.util.logger import get_logger

logger = get_logger("orchestrator")

MAX_TIMEOUT_MINUTES = 28 * 24 * 60
PURGE_MIN = 2
PURGE_MAX = 100

# Actions whose case opens an acknowledgement gate, and whether acknowledging lifts the restriction
ACKNOWLEDGED_ACTIONS = {
    CaseAction.WARN: True,
    CaseAction.TIMEOUT: False,
}


@dataclass(frozen=True)
class ActionContext:
    """Who is acting, and where."""

    guild_id: int
    guild_name: str
    issuer: MemberSnapshot | None
    channel_id: int | None = None

    @property
    def issuer_id(self) -> int:
        return self.issuer.member_id if self.issuer else 0


@dataclass(frozen=True)
class Target:
    """The user an action applies to. ``member`` is ``None`` when they are not in the guild."""

    user_id: int
    member: MemberSnapshot | None = None


@dataclass
class ActionOutcome:
    case: Case | None = None
    warning: WarningRecord | None = None
    workflow: AcknowledgementWorkflow | None = None
    pending_unban: PendingUnban | None = None
    count: int = 0
    notified: bool = False
    warnings: List[WarningRecord] = field(default_factory=list)


@dataclass
class AcknowledgementOutcome:
    workflow: AcknowledgementWorkflow
    case: Case | None = None
    restriction_lifted: bool = False

    @property
    def resolved_now(self) -> bool:
        return self.case is not None


class ModerationOrchestrator:
    """Coordinates permission checks, platform effects, the ledger and workflows."""

    def __init__(
        self,
        platform: ModerationPlatform,
        ledger: CaseLedger,
        records: RecordStore,
        workflows: AcknowledgementRegistry,
        scheduler: UnbanScheduler,
        ladder: RoleLadder,
        warn_mute_minutes: int = 10,
    ) -> None:
        self.platform = platform
        self.ledger = ledger
        self.records = records
        self.workflows = workflows
        self.scheduler = scheduler
        self.ladder = ladder
        self.warn_mute_minutes = warn_mute_minutes
        scheduler.set_handler(self.handle_unban_expiry)

    # ------------------------------------------------------------------
    # Shared steps
    # ------------------------------------------------------------------

    @staticmethod
    def _require(target: Target | None, *, member: bool = False) -> Target:
        if target is None or (member and target.member is None):
            raise TargetNotFound()
        return target

    @staticmethod
    def _enforce(decision: Decision) -> None:
        if not decision.allowed:
            raise PermissionDenied(decision.reason or "insufficient_level")

    def _authorize(self, action: str, ctx: ActionContext, target: Target | None) -> None:
        self._enforce(authorize_action(action, ctx.issuer, target.member if target else None, self.ladder))

    async def _notify(self, user_id: int, message: str) -> bool:
        try:
            await self.platform.notify_user(user_id, message)
            return True
        except NotificationFailed as exc:
            logger.info("[ORCHESTRATOR] Could not notify user %s: %s", user_id, exc)
        except Exception as exc:
            logger.warning("[ORCHESTRATOR] Unexpected error notifying user %s: %s", user_id, exc)
        return False

    async def _publish(self, guild_id: int, case: Case) -> None:
        try:
            await self.platform.publish_case(guild_id, case)
        except Exception as exc:
            logger.error("[ORCHESTRATOR] Failed to mirror case %s to the mod log: %s", case.case_id, exc)

    async def _record(
        self,
        ctx: ActionContext,
        action: CaseAction,
        moderator_id: int,
        target_user_id: int,
        reason: str | None,
        extra: dict | None = None,
    ) -> Case:
        case = await self.ledger.open(action, moderator_id, target_user_id, reason, extra)
        await self._publish(ctx.guild_id, case)
        return case

    async def _open_workflow(self, ctx: ActionContext, case: Case, prompt: AcknowledgementPrompt) -> AcknowledgementWorkflow:
        workflow = self.workflows.open(
            case_id=case.case_id,
            target_user_id=case.target_user_id,
            action_type=case.action,
            releases_restriction=ACKNOWLEDGED_ACTIONS[case.action],
            guild_id=ctx.guild_id,
        )
        try:
            channel_id = await self.platform.open_acknowledgement_channel(workflow, prompt)
        except Exception as exc:
            logger.error("[ORCHESTRATOR] Failed to open acknowledgement channel for case %s: %s", case.case_id, exc)
            channel_id = None
        self.workflows.attach_channel(case.case_id, channel_id)
        return workflow

    # ------------------------------------------------------------------
    # Warnings
    # ------------------------------------------------------------------

    async def warn(self, ctx: ActionContext, target: Target | None, reason: str | None = None) -> ActionOutcome:
        """Warn a user and mute them until they acknowledge (or the mute runs out)."""
        target = self._require(target)
        reason = normalize_reason(reason)
        self._authorize("warn", ctx, target)

        if target.member is not None:
            await self.platform.timeout_member(
                ctx.guild_id,
                target.user_id,
                self.warn_mute_minutes,
                f"Warn applied by {ctx.issuer_id} - case pending acknowledgement",
            )

        async with self.ledger.connection.transaction() as conn:
            warning = await self.records.write(conn, target.user_id, ctx.issuer_id, reason)
            case = await self.ledger.write(
                conn, CaseAction.WARN, ctx.issuer_id, target.user_id, reason, {"warningId": warning.id}
            )
        await self._publish(ctx.guild_id, case)
        workflow = await self._open_workflow(
            ctx,
            case,
            AcknowledgementPrompt(
                title="You have received a warning",
                description=(
                    f"You were warned in **{ctx.guild_name}** for: {reason}\n"
                    f"You have been muted for {self.warn_mute_minutes} minutes or until you acknowledge. "
                    "Press the button to acknowledge."
                ),
                action_label="Warn",
            ),
        )
        return ActionOutcome(case=case, warning=warning, workflow=workflow)

    async def list_warnings(self, user_id: int, limit: int = 10) -> ActionOutcome:
        """Read-only: the ``limit`` most recent warnings, plus the total count."""
        warnings = await self.records.list_for(user_id)
        return ActionOutcome(warnings=warnings[-limit:], count=len(warnings))

    async def clear_warnings(self, ctx: ActionContext, target: Target | None) -> ActionOutcome:
        target = self._require(target)
        self._authorize("clearwarns", ctx, target)

        removed = await self.records.clear_for(target.user_id)
        case = await self._record(
            ctx, CaseAction.CLEAR_WARNS, ctx.issuer_id, target.user_id, f"Cleared {removed} warnings"
        )
        return ActionOutcome(case=case, count=removed)

    # ------------------------------------------------------------------
    # Removal
    # ------------------------------------------------------------------

    async def kick(self, ctx: ActionContext, target: Target | None, reason: str | None = None) -> ActionOutcome:
        target = self._require(target, member=True)
        reason = normalize_reason(reason)
        self._authorize("kick", ctx, target)

        notified = await self._notify(target.user_id, f"You were kicked from **{ctx.guild_name}** for: {reason}")
        await self.platform.kick_member(ctx.guild_id, target.user_id, reason)

        case = await self._record(ctx, CaseAction.KICK, ctx.issuer_id, target.user_id, reason)
        return ActionOutcome(case=case, notified=notified)

    async def ban(self, ctx: ActionContext, target: Target | None, reason: str | None = None) -> ActionOutcome:
        target = self._require(target)
        reason = normalize_reason(reason)
        self._authorize("ban", ctx, target)

        notified = await self._notify(target.user_id, f"You were banned from **{ctx.guild_name}** for: {reason}")

        # A permanent ban supersedes any running tempban; an expiry already in flight finishes first
        superseded = await self.scheduler.cancel_for_user(ctx.guild_id, target.user_id)
        try:
            await self.platform.ban_user(ctx.guild_id, target.user_id, reason)
        except Exception:
            for entry in superseded:
                await self.scheduler.schedule(entry)
            raise

        case = await self._record(ctx, CaseAction.BAN, ctx.issuer_id, target.user_id, reason)
        if superseded:
            logger.info(
                "[ORCHESTRATOR] Ban case %s cancelled pending unbans %s",
                case.case_id, [entry.case_id for entry in superseded],
            )
        return ActionOutcome(case=case, notified=notified)

    async def tempban(
        self, ctx: ActionContext, target: Target | None, minutes: int, reason: str | None = None
    ) -> ActionOutcome:
        target = self._require(target)
        if minutes is None or minutes <= 0:
            raise InvalidParameter("minutes", "❌ Invalid duration (minutes).")
        reason = normalize_reason(reason)
        self._authorize("tempban", ctx, target)

        notified = await self._notify(
            target.user_id,
            f"You were temporarily banned from **{ctx.guild_name}** for {minutes} minute(s): {reason}",
        )
        await self.platform.ban_user(ctx.guild_id, target.user_id, reason)

        unban_at = int(self.scheduler.clock()) + minutes * 60
        async with self.ledger.connection.transaction() as conn:
            case = await self.ledger.write(
                conn,
                CaseAction.TEMPBAN,
                ctx.issuer_id,
                target.user_id,
                reason,
                {
                    "durationMinutes": minutes,
                    "expiresAt": datetime.datetime.fromtimestamp(unban_at, tz=datetime.timezone.utc).isoformat(),
                },
            )
            pending = PendingUnban(
                case_id=case.case_id,
                guild_id=ctx.guild_id,
                user_id=target.user_id,
                unban_at=unban_at,
            )
            await self.scheduler.persist(conn, pending)
        await self._publish(ctx.guild_id, case)
        await self.scheduler.arm(pending)
        return ActionOutcome(case=case, pending_unban=pending, notified=notified)

    async def cancel_scheduled_unban(self, ctx: ActionContext, case_id: int) -> bool:
        """Cancel the automatic unban of tempban case ``case_id``; the ban itself stays."""
        self._authorize("cancelunban", ctx, None)
        case = await self.ledger.find(case_id)
        if case.action is not CaseAction.TEMPBAN:
            raise InvalidParameter("case_id", f"❌ Case {case_id} is not a tempban.")
        return await self.scheduler.cancel(case_id)

    async def handle_unban_expiry(self, entry: PendingUnban) -> Case:
        """Scheduler callback: lift an expired tempban, record it and drop the pending row together."""
        await self.platform.unban_user(entry.guild_id, entry.user_id, entry.reason)
        async with self.ledger.connection.transaction() as conn:
            case = await self.ledger.write(
                conn,
                CaseAction.AUTO_UNBAN,
                self.platform.bot_user_id,
                entry.user_id,
                entry.reason,
                {"tempbanCase": entry.case_id},
            )
            await self.scheduler.forget(conn, entry.case_id)
        await self._publish(entry.guild_id, case)
        return case

    # ------------------------------------------------------------------
    # Timeouts
    # ------------------------------------------------------------------

    async def timeout(
        self, ctx: ActionContext, target: Target | None, minutes: int, reason: str | None = None
    ) -> ActionOutcome:
        target = self._require(target, member=True)
        if minutes is None or minutes < 1 or minutes > MAX_TIMEOUT_MINUTES:
            raise InvalidParameter("minutes", f"❌ Invalid duration (1 to {MAX_TIMEOUT_MINUTES} minutes).")
        reason = normalize_reason(reason)
        self._authorize("timeout", ctx, target)

        await self.platform.timeout_member(ctx.guild_id, target.user_id, minutes, reason)

        case = await self._record(
            ctx, CaseAction.TIMEOUT, ctx.issuer_id, target.user_id, reason, {"durationMinutes": minutes}
        )
        workflow = await self._open_workflow(
            ctx,
            case,
            AcknowledgementPrompt(
                title="You have been timed out",
                description=(
                    f"You have been timed out in **{ctx.guild_name}** for {minutes} minute(s): {reason}\n"
                    "Acknowledging will confirm you have read this but will NOT remove your timeout."
                ),
                action_label="Timeout",
            ),
        )
        return ActionOutcome(case=case, workflow=workflow)

    async def untimeout(self, ctx: ActionContext, target: Target | None) -> ActionOutcome:
        target = self._require(target, member=True)
        self._authorize("untimeout", ctx, target)

        await self.platform.remove_timeout(ctx.guild_id, target.user_id, "Timeout removed by staff")

        case = await self._record(
            ctx, CaseAction.REMOVE_TIMEOUT, ctx.issuer_id, target.user_id, "Timeout removed by moderator"
        )
        notified = await self._notify(
            target.user_id,
            f"Your timeout in **{ctx.guild_name}** has been removed. Case ID: {case.case_id}",
        )
        return ActionOutcome(case=case, notified=notified)

    # ------------------------------------------------------------------
    # Purge
    # ------------------------------------------------------------------

    async def purge(self, ctx: ActionContext, amount: int) -> ActionOutcome:
        if amount is None or amount < PURGE_MIN or amount > PURGE_MAX:
            raise InvalidParameter("amount", f"❌ Amount must be between {PURGE_MIN} and {PURGE_MAX}.")
        self._enforce(authorize_purge(ctx.issuer, self.ladder))
        if ctx.channel_id is None:
            raise InvalidParameter("channel", "❌ Purge must be run inside a text channel.")

        deleted = await self.platform.purge_messages(ctx.channel_id, amount)

        case = await self._record(
            ctx,
            CaseAction.PURGE,
            ctx.issuer_id,
            ctx.issuer_id,
            f"Purged {deleted} messages in {ctx.channel_id}",
            {"channel": ctx.channel_id, "deletedCount": deleted},
        )
        return ActionOutcome(case=case, count=deleted)

    # ------------------------------------------------------------------
    # Cases
    # ------------------------------------------------------------------

    async def lookup_case(self, ctx: ActionContext, case_id: int) -> Case:
        self._authorize("case", ctx, None)
        return await self.ledger.find(case_id)

    # ------------------------------------------------------------------
    # Acknowledgement
    # ------------------------------------------------------------------

    async def _restore_workflow(
        self, guild_id: int, case_id: int, releases_hint: bool | None
    ) -> AcknowledgementWorkflow:
        case = await self.ledger.find(case_id)
        if case.action not in ACKNOWLEDGED_ACTIONS:
            raise CaseNotFound(case_id)
        already = await self.ledger.find_acknowledgement(case_id)
        releases = ACKNOWLEDGED_ACTIONS[case.action] if releases_hint is None else releases_hint
        return self.workflows.restore(
            case_id=case.case_id,
            target_user_id=case.target_user_id,
            action_type=case.action,
            releases_restriction=releases,
            guild_id=guild_id,
            opened_at=case.timestamp,
            resolved=already is not None,
        )

    async def acknowledge(
        self,
        guild_id: int,
        case_id: int,
        actor_id: int,
        releases_hint: bool | None = None,
        channel_id: int | None = None,
    ) -> AcknowledgementOutcome:
        """
        Resolve the workflow for ``case_id`` on behalf of ``actor_id``.

        Workflows lost in a restart are rebuilt from the ledger first. Only a
        call that actually moves the workflow to RESOLVED lifts the
        restriction and writes an Acknowledge case; repeated clicks return an
        outcome with ``case=None``.

        Raises:
            CaseNotFound: No warn/timeout case with that id.
            WorkflowAccessDenied: ``actor_id`` is not the punished user.
        """
        workflow = self.workflows.get(case_id)
        if workflow is None:
            workflow = await self._restore_workflow(guild_id, case_id, releases_hint)
        if workflow.channel_id is None and channel_id is not None:
            workflow.channel_id = channel_id

        resolved = self.workflows.resolve(case_id, actor_id)
        if resolved is None:
            return AcknowledgementOutcome(workflow=workflow)

        lifted = False
        if resolved.releases_restriction:
            try:
                await self.platform.remove_timeout(
                    resolved.guild_id, resolved.target_user_id, f"Acknowledged case {case_id}"
                )
                lifted = True
            except Exception as exc:
                logger.warning("[ORCHESTRATOR] Could not lift restriction for case %s: %s", case_id, exc)

        await self._teardown(resolved)

        case = await self.ledger.open(
            CaseAction.ACKNOWLEDGE,
            self.platform.bot_user_id,
            resolved.target_user_id,
            f"User acknowledged case {case_id}",
            {"acknowledgedCase": case_id},
        )
        await self._publish(resolved.guild_id, case)
        return AcknowledgementOutcome(workflow=resolved, case=case, restriction_lifted=lifted)

    async def _teardown(self, workflow: AcknowledgementWorkflow) -> None:
        if workflow.channel_id is None:
            return
        try:
            await self.platform.close_acknowledgement_channel(workflow.channel_id)
        except Exception as exc:
            logger.error(
                "[ORCHESTRATOR] Failed to close acknowledgement channel %s for case %s: %s",
                workflow.channel_id, workflow.case_id, exc,
            )

    async def expire_stale_workflows(self) -> List[AcknowledgementWorkflow]:
        """Close the channels of workflows past their expiry. No case is written."""
        expired = self.workflows.sweep_expired()
        for workflow in expired:
            await self._teardown(workflow)
        return expired

    def workflow_state(self, case_id: int) -> WorkflowState | None:
        workflow = self.workflows.get(case_id)
        return workflow.state if workflow else None
