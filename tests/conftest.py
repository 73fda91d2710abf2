"""
Pytest configuration and fixtures for Modledger tests.
"""

import sys
from pathlib import Path

import pytest
import pytest_asyncio

# Add src directory to path so imports work
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

from modledger.database import ConnectionManager, initialize_database  # noqa: E402
from modledger.moderation.errors import EffectFailed, NotificationFailed  # noqa: E402


@pytest_asyncio.fixture
async def db(tmp_path):
    """A fresh ConnectionManager on a temporary database with the schema applied."""
    manager = ConnectionManager()
    await initialize_database(tmp_path / "modledger-test.db", manager)
    yield manager
    await manager.close()


class FakePlatform:
    """Records every platform call; individual effects can be told to fail."""

    def __init__(self, bot_user_id: int = 999):
        self._bot_user_id = bot_user_id
        self.calls: list[tuple] = []
        self.fail: set[str] = set()
        self.published: list = []
        self.next_channel_id = 5000
        self.purge_result: int | None = None

    @property
    def bot_user_id(self) -> int:
        return self._bot_user_id

    def _effect(self, name: str, *args) -> None:
        if name in self.fail:
            raise EffectFailed(name)
        self.calls.append((name, *args))

    async def timeout_member(self, guild_id, user_id, minutes, reason):
        self._effect("timeout_member", guild_id, user_id, minutes)

    async def remove_timeout(self, guild_id, user_id, reason):
        self._effect("remove_timeout", guild_id, user_id)

    async def kick_member(self, guild_id, user_id, reason):
        self._effect("kick_member", guild_id, user_id)

    async def ban_user(self, guild_id, user_id, reason):
        self._effect("ban_user", guild_id, user_id)

    async def unban_user(self, guild_id, user_id, reason):
        self._effect("unban_user", guild_id, user_id)

    async def purge_messages(self, channel_id, amount):
        self._effect("purge_messages", channel_id, amount)
        return amount if self.purge_result is None else self.purge_result

    async def notify_user(self, user_id, message):
        if "notify_user" in self.fail:
            raise NotificationFailed("DMs closed")
        self.calls.append(("notify_user", user_id))

    async def open_acknowledgement_channel(self, workflow, prompt):
        self._effect("open_acknowledgement_channel", workflow.case_id)
        self.next_channel_id += 1
        return self.next_channel_id

    async def close_acknowledgement_channel(self, channel_id):
        self._effect("close_acknowledgement_channel", channel_id)

    async def publish_case(self, guild_id, case):
        if "publish_case" in self.fail:
            raise RuntimeError("mod log unavailable")
        self.published.append(case)

    def names(self) -> list[str]:
        return [call[0] for call in self.calls]


@pytest.fixture
def fake_platform():
    return FakePlatform()
