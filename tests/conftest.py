from __future__ import annotations

import pytest
from PySide6.QtCore import QCoreApplication

from core.models import Track
from player.engine import PlaybackEngine


@pytest.fixture(scope="session", autouse=True)
def qt_app():
    """Signals are delivered directly, but Qt still expects an application object."""
    app = QCoreApplication.instance() or QCoreApplication([])
    yield app


class FakeTime:
    """Monotonic clock the tests move by hand (seconds)."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: float) -> None:
        self.now += ms / 1000.0


class ManualClock:
    """Stands in for ProgressClock: records start/cancel, ticks only when told to."""

    instances: list["ManualClock"] = []

    def __init__(self, on_tick, interval_s: float = 0.1):
        self.on_tick = on_tick
        self.interval_s = interval_s
        self.started = False
        self._cancelled = False
        self.joined = False
        ManualClock.instances.append(self)

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def start(self) -> None:
        self.started = True

    def cancel(self) -> None:
        self._cancelled = True

    def join(self, timeout_s: float = 2.0) -> None:
        self.joined = True

    def fire(self) -> None:
        self.on_tick(self)


class FakeClient:
    def __init__(self, results=None, online: bool = True, raises: Exception | None = None):
        self.results = list(results or [])
        self.online = online
        self.raises = raises
        self.queries: list[str] = []
        self.connection_checks = 0
        self.shutdown_calls = 0

    def search(self, query: str):
        self.queries.append(query)
        if self.raises is not None:
            raise self.raises
        return list(self.results)

    def test_connection(self) -> bool:
        self.connection_checks += 1
        if self.raises is not None:
            raise self.raises
        return self.online

    def shutdown(self) -> None:
        self.shutdown_calls += 1


@pytest.fixture
def fake_time():
    return FakeTime()


@pytest.fixture
def fake_client():
    return FakeClient()


@pytest.fixture
def engine(fake_client, fake_time):
    ManualClock.instances = []
    eng = PlaybackEngine(client=fake_client, time_fn=fake_time, clock_factory=ManualClock)
    yield eng
    eng.shutdown()


@pytest.fixture
def track_a():
    return Track("Song A", "Artist A", "https://example.com/a", 1000)


@pytest.fixture
def track_b():
    return Track("Song B", "Artist B", "https://example.com/b", 2000)


@pytest.fixture
def track_c():
    return Track("Song C", "Artist C", "https://example.com/c", 3000)
