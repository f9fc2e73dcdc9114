"""Real-thread behaviour of the progress clock and the engine driving it."""

from __future__ import annotations

import threading
import time

from conftest import FakeClient
from core.config import PlayerConfig
from core.models import Track
from core.state import PlayerStatus
from player.engine import PlaybackEngine
from player.progress_clock import ProgressClock


def _wait_for(predicate, timeout_s: float = 2.0) -> bool:
    deadline = time.monotonic() + timeout_s
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.005)
    return predicate()


def _clock_threads() -> list[threading.Thread]:
    return [t for t in threading.enumerate() if t.name.startswith("progress-clock")]


def test_clock_ticks_until_cancelled():
    ticks = []
    clock = ProgressClock(lambda c: ticks.append(c), interval_s=0.01)
    clock.start()
    assert _wait_for(lambda: len(ticks) >= 3)

    clock.cancel()
    clock.join()
    count = len(ticks)
    time.sleep(0.05)
    assert len(ticks) == count
    assert clock.cancelled
    assert all(c is clock for c in ticks)


def test_clock_cannot_restart_after_cancel():
    ticks = []
    clock = ProgressClock(ticks.append, interval_s=0.01)
    clock.cancel()
    clock.start()
    time.sleep(0.05)
    assert ticks == []


def test_cancel_from_inside_tick_does_not_deadlock():
    ticks = []

    def on_tick(c):
        ticks.append(c)
        c.cancel()
        c.join()

    clock = ProgressClock(on_tick, interval_s=0.01)
    clock.start()
    assert _wait_for(lambda: ticks)
    clock.join()
    assert len(ticks) == 1


def test_failing_tick_keeps_clock_alive():
    calls = []

    def on_tick(c):
        calls.append(c)
        if len(calls) == 1:
            raise ValueError("first tick fails")

    clock = ProgressClock(on_tick, interval_s=0.01)
    clock.start()
    assert _wait_for(lambda: len(calls) >= 2)
    clock.cancel()
    clock.join()


def test_engine_advances_on_real_clock():
    cfg = PlayerConfig(progress_interval_s=0.01)
    eng = PlaybackEngine(cfg, client=FakeClient())
    a = Track("A", "X", "https://example.com/a", 60)
    b = Track("B", "X", "https://example.com/b", 60)

    eng.add_to_queue(a)
    eng.add_to_queue(b)

    assert _wait_for(lambda: eng.status is PlayerStatus.IDLE)
    assert eng.get_queue() == []
    assert _wait_for(lambda: not _clock_threads())
    eng.shutdown()


def test_pause_play_cycles_leave_no_threads():
    cfg = PlayerConfig(progress_interval_s=0.01)
    eng = PlaybackEngine(cfg, client=FakeClient())
    eng.play(Track("Long", "X", "https://example.com/long", 600000))

    for _ in range(20):
        eng.pause()
        eng.play()

    assert len(_clock_threads()) == 1
    eng.stop()
    assert _clock_threads() == []
    eng.shutdown()
