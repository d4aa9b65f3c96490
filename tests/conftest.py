"""
Shared fixtures for StreamGate tests.
"""

from pathlib import Path

import pytest

SNAPSHOT_DIR = Path(__file__).resolve().parent.parent / "snapshots"


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class RecordingSleep:
    """Stand-in for asyncio.sleep that records requested delays."""

    def __init__(self):
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class FakeConfigStore:
    """In-memory ConfigStore."""

    def __init__(self, active_endpoint=None, settings=None, error=None):
        self.active_endpoint = active_endpoint
        self.settings = settings or {}
        self.error = error
        self.calls = 0

    async def get_active_endpoint(self):
        self.calls += 1
        if self.error:
            raise self.error
        return self.active_endpoint

    async def get_setting(self, key):
        if self.error:
            raise self.error
        return self.settings.get(key)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def snapshot_dir():
    return SNAPSHOT_DIR
