from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest

from modledger.bot.cogs import events_listener


class FakeStatus:
    online = "online"


class FakeActivityType:
    watching = "watching"


class FakeActivity:
    def __init__(self, *, type, name):
        self.type = type
        self.name = name


class FakeInteractionResponded(Exception):
    pass


@pytest.fixture(autouse=True)
def patch_discord(monkeypatch):
    monkeypatch.setattr(events_listener.discord, "Status", FakeStatus, raising=False)
    monkeypatch.setattr(events_listener.discord, "ActivityType", FakeActivityType, raising=False)
    monkeypatch.setattr(events_listener.discord, "Activity", FakeActivity, raising=False)
    monkeypatch.setattr(events_listener.discord, "InteractionResponded", FakeInteractionResponded, raising=False)
    yield


@pytest.fixture
def fake_bot():
    return SimpleNamespace(user=SimpleNamespace(id=999), change_presence=AsyncMock())


@pytest.fixture
def orchestrator():
    orch = MagicMock()
    orch.scheduler.recover = AsyncMock(return_value=2)
    orch.workflows.expiry_minutes = None
    return orch


@pytest.fixture
def platform():
    return SimpleNamespace(send_mod_log=AsyncMock(return_value=True))


@pytest.fixture
def cog(fake_bot, orchestrator, platform):
    return events_listener.EventsListenerCog(fake_bot, orchestrator, platform)


def test_setup_registers_cog(orchestrator, platform):
    captured = {}
    events_listener.setup(SimpleNamespace(add_cog=lambda c: captured.setdefault("cog", c)), orchestrator, platform)
    assert isinstance(captured["cog"], events_listener.EventsListenerCog)


@pytest.mark.asyncio
async def test_on_ready_recovers_once(cog, fake_bot, orchestrator):
    await cog.on_ready()
    await cog.on_ready()

    orchestrator.scheduler.recover.assert_awaited_once()
    assert fake_bot.change_presence.await_count == 2
    assert cog.sweep_task is None


@pytest.mark.asyncio
async def test_on_ready_starts_sweep_when_expiry_configured(cog, orchestrator):
    orchestrator.workflows.expiry_minutes = 30

    await cog.on_ready()

    assert cog.sweep_task is not None
    cog.cog_unload()


@pytest.mark.asyncio
async def test_command_error_falls_back_to_followup(cog):
    ctx = SimpleNamespace(
        command=SimpleNamespace(name="warn"),
        respond=AsyncMock(side_effect=FakeInteractionResponded()),
        followup=SimpleNamespace(send=AsyncMock()),
    )

    await cog.on_application_command_error(ctx, RuntimeError("database is locked"))

    ctx.followup.send.assert_awaited_once_with("❌ An error occurred while processing the command.", ephemeral=True)


def message(content="hi", bot=False, guild=True):
    return SimpleNamespace(
        guild=SimpleNamespace(id=7) if guild else None,
        author=SimpleNamespace(id=50, bot=bot),
        channel=SimpleNamespace(mention="#general"),
        content=content,
    )


@pytest.mark.asyncio
async def test_message_delete_is_mirrored(cog, platform):
    await cog.on_message_delete(message())
    platform.send_mod_log.assert_awaited_once()


@pytest.mark.asyncio
@pytest.mark.parametrize("msg", [message(bot=True), message(guild=False)])
async def test_message_delete_skips_bots_and_dms(cog, platform, msg):
    await cog.on_message_delete(msg)
    platform.send_mod_log.assert_not_awaited()


@pytest.mark.asyncio
async def test_unchanged_edit_is_ignored(cog, platform):
    await cog.on_message_edit(message("same"), message("same"))
    platform.send_mod_log.assert_not_awaited()

    await cog.on_message_edit(message("before"), message("after"))
    platform.send_mod_log.assert_awaited_once()


@pytest.mark.asyncio
async def test_member_join_and_leave(cog, platform):
    member = SimpleNamespace(id=50)
    await cog.on_member_join(member)
    await cog.on_member_remove(member)
    assert platform.send_mod_log.await_count == 2
