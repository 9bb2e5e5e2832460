import asyncio
from typing import Optional

import pytest

from cyberdeck.config import Settings, TimeoutSettings
from cyberdeck.session_manager import SessionController


class FakeLeaderboard:
    """In-memory stand-in for LeaderboardClient that records every call."""

    def __init__(self, *, nick: Optional[str] = "none", unique: bool = True, failing: tuple = ()) -> None:
        self.nick = nick
        self.unique = unique
        # Calls named here raise RuntimeError after being recorded
        self.failing = set(failing)
        self.calls: list[tuple] = []
        # When set, lookup and check_unique block until the event is released
        self.gate: Optional[asyncio.Event] = None

    async def lookup(self, device_id, score):
        self.calls.append(("lookup", device_id, score))
        self._fail_if_broken("lookup")
        await self._wait()
        return self.nick

    async def check_unique(self, device_id, nick):
        self.calls.append(("check_unique", device_id, nick))
        self._fail_if_broken("check_unique")
        await self._wait()
        return self.unique

    async def upsert(self, device_id, nick, game, score, crc):
        self.calls.append(("upsert", device_id, nick, game, score, crc))
        self._fail_if_broken("upsert")
        return True

    async def remove(self, device_id):
        self.calls.append(("remove", device_id))
        self._fail_if_broken("remove")
        return True

    async def aclose(self):
        self.calls.append(("aclose",))

    def names(self):
        return [call[0] for call in self.calls]

    def _fail_if_broken(self, name):
        if name in self.failing:
            raise RuntimeError(f"{name} blew up")

    async def _wait(self):
        if self.gate is not None:
            await self.gate.wait()


@pytest.fixture()
def settings(tmp_path):
    return Settings(
        serial_enabled=False,
        log_directory=tmp_path / "logs",
        static_directory=tmp_path / "public",
    )


@pytest.fixture()
def fast_settings(tmp_path):
    return Settings(
        serial_enabled=False,
        log_directory=tmp_path / "logs",
        static_directory=tmp_path / "public",
        timeouts=TimeoutSettings(lookup_seconds=0.05, name_retry_seconds=0.05, welcome_seconds=0.05),
    )


@pytest.fixture()
def leaderboard():
    return FakeLeaderboard()


@pytest.fixture()
def controller(settings, leaderboard):
    manager = SessionController(settings=settings, leaderboard=leaderboard)
    manager.force_idle("test-setup")
    return manager


def drain(queue):
    events = []
    while not queue.empty():
        events.append(queue.get_nowait())
    return events
