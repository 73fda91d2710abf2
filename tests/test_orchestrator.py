"""Scenario tests for the action orchestrator against a recording fake platform."""

import asyncio
import datetime
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from modledger.configuration.app_configuration import RoleIds
from modledger.datatypes.case_datatypes import CaseAction
from modledger.moderation.acknowledgement import AcknowledgementRegistry, WorkflowState
from modledger.moderation.case_ledger import CaseLedger
from modledger.moderation.errors import (
    EffectFailed,
    InvalidParameter,
    PermissionDenied,
    TargetNotFound,
    WorkflowAccessDenied,
)
from modledger.moderation.orchestrator import ActionContext, ModerationOrchestrator, Target
from modledger.moderation.permissions import MemberSnapshot, RoleLadder
from modledger.moderation.record_store import RecordStore
from modledger.scheduler.unban_scheduler import UnbanScheduler

GUILD = 7
MOD = 100
USER = 50
NOW = 1_700_000_000

LADDER = RoleLadder.from_role_ids(RoleIds(staff_assistant=11, assistant_supervisor=12, supervisor=13, assistant_manager=14))


def issuer(*roles, position=10, manage_messages=False):
    return MemberSnapshot(
        member_id=MOD, role_ids=frozenset(roles), top_role_position=position, can_manage_messages=manage_messages
    )


def context(*roles, **kwargs):
    return ActionContext(guild_id=GUILD, guild_name="Test Guild", issuer=issuer(*roles, **kwargs), channel_id=300)


MANAGER = context(14)
MEMBER_TARGET = Target(user_id=USER, member=MemberSnapshot(member_id=USER, top_role_position=1))
ABSENT_TARGET = Target(user_id=USER, member=None)


def build(db, platform, workflows=None):
    return ModerationOrchestrator(
        platform=platform,
        ledger=CaseLedger(db),
        records=RecordStore(db),
        workflows=workflows if workflows is not None else AcknowledgementRegistry(),
        scheduler=UnbanScheduler(db, clock=lambda: NOW),
        ladder=LADDER,
        warn_mute_minutes=10,
    )


@pytest_asyncio.fixture
async def orchestrator(db, fake_platform):
    orch = build(db, fake_platform)
    yield orch
    await orch.scheduler.shutdown()


class TestWarn:
    @pytest.mark.asyncio
    async def test_warn_member(self, orchestrator, fake_platform):
        outcome = await orchestrator.warn(context(11), MEMBER_TARGET, "spam")

        assert fake_platform.calls[0] == ("timeout_member", GUILD, USER, 10)
        assert outcome.warning.id == 1
        assert outcome.case.case_id == 1
        assert outcome.case.action is CaseAction.WARN
        assert outcome.case.extra == {"warningId": 1}
        assert outcome.workflow.is_open
        assert outcome.workflow.releases_restriction is True
        assert outcome.workflow.channel_id == 5001
        assert fake_platform.published == [outcome.case]

    @pytest.mark.asyncio
    async def test_warn_user_not_in_guild_skips_mute(self, orchestrator, fake_platform):
        outcome = await orchestrator.warn(context(11), ABSENT_TARGET, None)

        assert "timeout_member" not in fake_platform.names()
        assert outcome.case.reason == "No reason provided"

    @pytest.mark.asyncio
    async def test_warn_without_authority(self, orchestrator, fake_platform):
        with pytest.raises(PermissionDenied) as excinfo:
            await orchestrator.warn(context(), MEMBER_TARGET, "spam")

        assert excinfo.value.reason == "insufficient_level"
        assert fake_platform.calls == []
        assert await orchestrator.ledger.all() == []

    @pytest.mark.asyncio
    async def test_warn_hierarchy(self, orchestrator, fake_platform):
        target = Target(user_id=USER, member=MemberSnapshot(member_id=USER, top_role_position=10))
        with pytest.raises(PermissionDenied) as excinfo:
            await orchestrator.warn(MANAGER, target, "spam")
        assert excinfo.value.reason == "role_hierarchy"

    @pytest.mark.asyncio
    async def test_failed_mute_writes_nothing(self, orchestrator, fake_platform):
        fake_platform.fail.add("timeout_member")

        with pytest.raises(EffectFailed):
            await orchestrator.warn(MANAGER, MEMBER_TARGET, "spam")

        assert await orchestrator.records.list_for(USER) == []
        assert await orchestrator.ledger.all() == []

    @pytest.mark.asyncio
    async def test_warning_and_case_commit_together(self, orchestrator, fake_platform):
        orchestrator.ledger.write = AsyncMock(side_effect=RuntimeError("disk I/O error"))

        with pytest.raises(RuntimeError):
            await orchestrator.warn(MANAGER, ABSENT_TARGET, "spam")

        assert await orchestrator.records.list_for(USER) == []
        assert orchestrator.workflows.get(1) is None

    @pytest.mark.asyncio
    async def test_concurrent_warns_keep_ids_aligned(self, orchestrator):
        targets = [Target(user_id=USER + n, member=None) for n in range(5)]

        outcomes = await asyncio.gather(*(orchestrator.warn(MANAGER, target, "spam") for target in targets))

        assert sorted(o.case.case_id for o in outcomes) == [1, 2, 3, 4, 5]
        assert sorted(o.warning.id for o in outcomes) == [1, 2, 3, 4, 5]
        for outcome in outcomes:
            assert outcome.case.extra == {"warningId": outcome.warning.id}

    @pytest.mark.asyncio
    async def test_mod_log_failure_does_not_abort(self, orchestrator, fake_platform):
        fake_platform.fail.add("publish_case")
        outcome = await orchestrator.warn(MANAGER, MEMBER_TARGET, "spam")
        assert outcome.case.case_id == 1

    @pytest.mark.asyncio
    async def test_thread_failure_keeps_workflow(self, orchestrator, fake_platform):
        fake_platform.fail.add("open_acknowledgement_channel")
        outcome = await orchestrator.warn(MANAGER, MEMBER_TARGET, "spam")
        assert outcome.workflow.is_open
        assert outcome.workflow.channel_id is None


class TestAcknowledge:
    @pytest.mark.asyncio
    async def test_acknowledge_warn_lifts_mute(self, orchestrator, fake_platform):
        warned = await orchestrator.warn(MANAGER, MEMBER_TARGET, "spam")
        fake_platform.calls.clear()

        outcome = await orchestrator.acknowledge(GUILD, warned.case.case_id, USER)

        assert outcome.restriction_lifted is True
        assert fake_platform.names() == ["remove_timeout", "close_acknowledgement_channel"]
        assert outcome.case.action is CaseAction.ACKNOWLEDGE
        assert outcome.case.moderator_id == fake_platform.bot_user_id
        assert outcome.case.target_user_id == USER
        assert outcome.case.reason == f"User acknowledged case {warned.case.case_id}"
        assert outcome.case.extra == {"acknowledgedCase": warned.case.case_id}
        assert orchestrator.workflow_state(warned.case.case_id) is WorkflowState.RESOLVED

    @pytest.mark.asyncio
    async def test_second_click_is_a_no_op(self, orchestrator, fake_platform):
        warned = await orchestrator.warn(MANAGER, MEMBER_TARGET, "spam")
        await orchestrator.acknowledge(GUILD, warned.case.case_id, USER)
        fake_platform.calls.clear()

        again = await orchestrator.acknowledge(GUILD, warned.case.case_id, USER)

        assert again.case is None
        assert fake_platform.calls == []
        actions = [case.action for case in await orchestrator.ledger.all()]
        assert actions.count(CaseAction.ACKNOWLEDGE) == 1

    @pytest.mark.asyncio
    async def test_only_target_may_acknowledge(self, orchestrator, fake_platform):
        warned = await orchestrator.warn(MANAGER, MEMBER_TARGET, "spam")
        fake_platform.calls.clear()

        with pytest.raises(WorkflowAccessDenied):
            await orchestrator.acknowledge(GUILD, warned.case.case_id, USER + 1)

        assert fake_platform.calls == []
        assert orchestrator.workflow_state(warned.case.case_id) is WorkflowState.OPEN

    @pytest.mark.asyncio
    async def test_timeout_acknowledgement_keeps_timeout(self, orchestrator, fake_platform):
        timed_out = await orchestrator.timeout(MANAGER, MEMBER_TARGET, 30, "cool off")
        assert timed_out.case.extra == {"durationMinutes": 30}
        assert timed_out.workflow.releases_restriction is False
        fake_platform.calls.clear()

        outcome = await orchestrator.acknowledge(GUILD, timed_out.case.case_id, USER)

        assert outcome.restriction_lifted is False
        assert "remove_timeout" not in fake_platform.names()
        assert "close_acknowledgement_channel" in fake_platform.names()
        assert outcome.case.action is CaseAction.ACKNOWLEDGE

    @pytest.mark.asyncio
    async def test_lift_failure_still_records_acknowledgement(self, orchestrator, fake_platform):
        warned = await orchestrator.warn(MANAGER, MEMBER_TARGET, "spam")
        fake_platform.fail.add("remove_timeout")

        outcome = await orchestrator.acknowledge(GUILD, warned.case.case_id, USER)

        assert outcome.restriction_lifted is False
        assert outcome.case is not None

    @pytest.mark.asyncio
    async def test_restored_after_restart(self, db, orchestrator, fake_platform):
        warned = await orchestrator.warn(MANAGER, MEMBER_TARGET, "spam")

        restarted = build(db, fake_platform)
        outcome = await restarted.acknowledge(GUILD, warned.case.case_id, USER, releases_hint=True, channel_id=777)

        assert outcome.case is not None
        assert ("close_acknowledgement_channel", 777) in fake_platform.calls
        await restarted.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_restart_does_not_double_acknowledge(self, db, orchestrator, fake_platform):
        warned = await orchestrator.warn(MANAGER, MEMBER_TARGET, "spam")
        await orchestrator.acknowledge(GUILD, warned.case.case_id, USER)

        restarted = build(db, fake_platform)
        outcome = await restarted.acknowledge(GUILD, warned.case.case_id, USER)

        assert outcome.case is None
        await restarted.scheduler.shutdown()

    @pytest.mark.asyncio
    async def test_expired_workflows_are_torn_down(self, db, fake_platform):
        now = [datetime.datetime(2024, 1, 1, tzinfo=datetime.timezone.utc)]
        orch = build(db, fake_platform, AcknowledgementRegistry(expiry_minutes=5, clock=lambda: now[0]))
        warned = await orch.warn(MANAGER, MEMBER_TARGET, "spam")

        now[0] += datetime.timedelta(minutes=10)
        expired = await orch.expire_stale_workflows()

        assert [w.case_id for w in expired] == [warned.case.case_id]
        assert ("close_acknowledgement_channel", warned.workflow.channel_id) in fake_platform.calls
        assert (await orch.acknowledge(GUILD, warned.case.case_id, USER)).case is None
        await orch.scheduler.shutdown()


class TestWarnings:
    @pytest.mark.asyncio
    async def test_list_is_limited_to_most_recent(self, orchestrator):
        for index in range(12):
            await orchestrator.records.add(USER, MOD, f"w{index}")

        outcome = await orchestrator.list_warnings(USER, limit=10)
        assert outcome.count == 12
        assert [w.reason for w in outcome.warnings] == [f"w{index}" for index in range(2, 12)]

    @pytest.mark.asyncio
    async def test_clear_warnings(self, orchestrator):
        await orchestrator.warn(MANAGER, ABSENT_TARGET, "a")
        await orchestrator.warn(MANAGER, ABSENT_TARGET, "b")

        outcome = await orchestrator.clear_warnings(MANAGER, ABSENT_TARGET)

        assert outcome.count == 2
        assert outcome.case.action is CaseAction.CLEAR_WARNS
        assert outcome.case.reason == "Cleared 2 warnings"
        assert await orchestrator.records.list_for(USER) == []

    @pytest.mark.asyncio
    async def test_clear_requires_tier_four(self, orchestrator):
        with pytest.raises(PermissionDenied):
            await orchestrator.clear_warnings(context(13), ABSENT_TARGET)


class TestRemoval:
    @pytest.mark.asyncio
    async def test_kick_notifies_first(self, orchestrator, fake_platform):
        outcome = await orchestrator.kick(MANAGER, MEMBER_TARGET, "rude")

        assert fake_platform.names() == ["notify_user", "kick_member"]
        assert outcome.notified is True
        assert outcome.case.action is CaseAction.KICK

    @pytest.mark.asyncio
    async def test_kick_needs_member(self, orchestrator, fake_platform):
        with pytest.raises(TargetNotFound):
            await orchestrator.kick(MANAGER, ABSENT_TARGET, "rude")
        assert fake_platform.calls == []

    @pytest.mark.asyncio
    async def test_kick_with_closed_dms(self, orchestrator, fake_platform):
        fake_platform.fail.add("notify_user")
        outcome = await orchestrator.kick(MANAGER, MEMBER_TARGET, "rude")

        assert outcome.notified is False
        assert fake_platform.names() == ["kick_member"]

    @pytest.mark.asyncio
    async def test_failed_kick_writes_no_case(self, orchestrator, fake_platform):
        fake_platform.fail.add("kick_member")
        with pytest.raises(EffectFailed):
            await orchestrator.kick(MANAGER, MEMBER_TARGET, "rude")
        assert await orchestrator.ledger.all() == []

    @pytest.mark.asyncio
    async def test_ban_user_not_in_guild(self, orchestrator, fake_platform):
        outcome = await orchestrator.ban(context(12), ABSENT_TARGET, "raid")
        assert ("ban_user", GUILD, USER) in fake_platform.calls
        assert outcome.case.action is CaseAction.BAN


class TestTempban:
    @pytest.mark.asyncio
    async def test_tempban_persists_pending_unban(self, orchestrator, fake_platform):
        outcome = await orchestrator.tempban(context(12), ABSENT_TARGET, 60, "cool off")

        assert outcome.case.action is CaseAction.TEMPBAN
        assert outcome.case.extra["durationMinutes"] == 60
        assert outcome.case.extra["expiresAt"].startswith("2023-11-14T23:13:20")
        assert outcome.pending_unban.unban_at == NOW + 3600
        pending = await orchestrator.scheduler.pending()
        assert [entry.case_id for entry in pending] == [outcome.case.case_id]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("minutes", [0, -5])
    async def test_invalid_duration(self, orchestrator, fake_platform, minutes):
        with pytest.raises(InvalidParameter):
            await orchestrator.tempban(context(12), ABSENT_TARGET, minutes, "x")
        assert fake_platform.calls == []

    @pytest.mark.asyncio
    async def test_expiry_unbans_and_records(self, orchestrator, fake_platform):
        outcome = await orchestrator.tempban(context(12), ABSENT_TARGET, 60, "cool off")

        auto = await orchestrator.handle_unban_expiry(outcome.pending_unban)

        assert ("unban_user", GUILD, USER) in fake_platform.calls
        assert auto.action is CaseAction.AUTO_UNBAN
        assert auto.moderator_id == fake_platform.bot_user_id
        assert auto.extra == {"tempbanCase": outcome.case.case_id}
        assert await orchestrator.scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_case_and_pending_unban_commit_together(self, orchestrator, fake_platform):
        orchestrator.scheduler.persist = AsyncMock(side_effect=RuntimeError("disk I/O error"))

        with pytest.raises(RuntimeError):
            await orchestrator.tempban(context(12), ABSENT_TARGET, 60, "cool off")

        assert await orchestrator.ledger.all() == []
        assert await orchestrator.scheduler.pending() == []
        assert orchestrator.scheduler.entries == {}

    @pytest.mark.asyncio
    async def test_cancel_scheduled_unban(self, orchestrator):
        outcome = await orchestrator.tempban(context(12), ABSENT_TARGET, 60, "cool off")

        assert await orchestrator.cancel_scheduled_unban(context(12), outcome.case.case_id) is True
        assert await orchestrator.scheduler.pending() == []
        assert await orchestrator.cancel_scheduled_unban(context(12), outcome.case.case_id) is False

    @pytest.mark.asyncio
    async def test_cancel_rejects_other_actions(self, orchestrator):
        warned = await orchestrator.warn(MANAGER, ABSENT_TARGET, "spam")
        with pytest.raises(InvalidParameter):
            await orchestrator.cancel_scheduled_unban(MANAGER, warned.case.case_id)

    @pytest.mark.asyncio
    async def test_permanent_ban_supersedes_tempban(self, orchestrator):
        await orchestrator.tempban(context(12), ABSENT_TARGET, 60, "cool off")
        await orchestrator.ban(context(12), ABSENT_TARGET, "for good")
        assert await orchestrator.scheduler.pending() == []

    @pytest.mark.asyncio
    async def test_failed_permanent_ban_keeps_tempban_expiry(self, orchestrator, fake_platform):
        outcome = await orchestrator.tempban(context(12), ABSENT_TARGET, 60, "cool off")
        fake_platform.fail.add("ban_user")

        with pytest.raises(EffectFailed):
            await orchestrator.ban(context(12), ABSENT_TARGET, "for good")

        assert await orchestrator.scheduler.pending() == [outcome.pending_unban]
        assert outcome.case.case_id in orchestrator.scheduler.entries
        assert [case.action for case in await orchestrator.ledger.all()] == [CaseAction.TEMPBAN]


class TestTimeout:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("minutes", [0, 40321])
    async def test_out_of_range(self, orchestrator, fake_platform, minutes):
        with pytest.raises(InvalidParameter):
            await orchestrator.timeout(MANAGER, MEMBER_TARGET, minutes, "x")
        assert fake_platform.calls == []

    @pytest.mark.asyncio
    async def test_upper_bound_accepted(self, orchestrator, fake_platform):
        outcome = await orchestrator.timeout(MANAGER, MEMBER_TARGET, 40320, "x")
        assert outcome.case.extra == {"durationMinutes": 40320}

    @pytest.mark.asyncio
    async def test_untimeout_notifies_after(self, orchestrator, fake_platform):
        outcome = await orchestrator.untimeout(MANAGER, MEMBER_TARGET)

        assert fake_platform.names() == ["remove_timeout", "notify_user"]
        assert outcome.case.action is CaseAction.REMOVE_TIMEOUT
        assert outcome.case.reason == "Timeout removed by moderator"


class TestPurge:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [1, 101, 150])
    async def test_rejected_before_effect(self, orchestrator, fake_platform, amount):
        with pytest.raises(InvalidParameter):
            await orchestrator.purge(MANAGER, amount)
        assert fake_platform.calls == []
        assert await orchestrator.ledger.all() == []

    @pytest.mark.asyncio
    async def test_purge_records_issuer_as_target(self, orchestrator, fake_platform):
        fake_platform.purge_result = 8
        outcome = await orchestrator.purge(MANAGER, 10)

        assert outcome.count == 8
        assert outcome.case.target_user_id == MOD
        assert outcome.case.extra == {"channel": 300, "deletedCount": 8}
        assert outcome.case.reason == "Purged 8 messages in 300"

    @pytest.mark.asyncio
    async def test_manage_messages_suffices(self, orchestrator):
        outcome = await orchestrator.purge(context(manage_messages=True), 2)
        assert outcome.case.action is CaseAction.PURGE


@pytest.mark.asyncio
async def test_lookup_case(orchestrator):
    warned = await orchestrator.warn(MANAGER, ABSENT_TARGET, "spam")
    assert await orchestrator.lookup_case(context(11), warned.case.case_id) == warned.case
