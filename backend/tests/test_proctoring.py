import asyncio
import threading

import pytest

from orchestrator.events.bus import SessionEventBus
from orchestrator.proctoring import directives
from orchestrator.proctoring.directives import DirectiveQueue
from orchestrator.proctoring.monitor import (
    LEVEL_FINAL_WARNING,
    LEVEL_LIMIT_EXCEEDED,
    LEVEL_WARNING,
    ProctoringMonitor,
    warning_level,
)


class _Recorder:
    def __init__(self, bus: SessionEventBus):
        self.events = []
        bus.subscribe("*", self.events.append)

    def names(self) -> list[str]:
        return [item.event for item in self.events]


def test_levels_escalate_at_third_violation():
    assert [warning_level(n) for n in (1, 2, 3, 4, 5)] == [
        LEVEL_WARNING,
        LEVEL_WARNING,
        LEVEL_FINAL_WARNING,
        LEVEL_LIMIT_EXCEEDED,
        LEVEL_LIMIT_EXCEEDED,
    ]


def test_no_violations_means_no_warning(clock):
    bus = SessionEventBus()
    recorder = _Recorder(bus)
    monitor = ProctoringMonitor(bus, clock=clock.monotonic)

    monitor.on_visibility_change(False)
    monitor.on_fullscreen_change(False)

    assert monitor.violation_count == 0
    assert monitor.active_warning is None
    assert recorder.events == []


def test_tab_switches_raise_warnings_with_remaining_count(clock):
    bus = SessionEventBus()
    recorder = _Recorder(bus)
    monitor = ProctoringMonitor(bus, clock=clock.monotonic)

    first = monitor.on_visibility_change(True)
    second = monitor.on_visibility_change(True)
    third = monitor.on_visibility_change(True)

    assert (first.level, first.remaining) == (LEVEL_WARNING, 2)
    assert (second.level, second.remaining) == (LEVEL_WARNING, 1)
    assert (third.level, third.remaining) == (LEVEL_FINAL_WARNING, 0)
    assert [item.count for item in recorder.events] == [1, 2, 3]
    assert {item.kind for item in recorder.events} == {"tab_switch"}


def test_leaving_fullscreen_counts_only_after_entering(clock):
    bus = SessionEventBus()
    recorder = _Recorder(bus)
    monitor = ProctoringMonitor(bus, clock=clock.monotonic)

    assert monitor.on_fullscreen_change(False) is None
    assert monitor.enter_fullscreen(lambda: None) is True
    warning = monitor.on_fullscreen_change(False)

    assert warning.kind == "fullscreen_exit"
    assert recorder.names() == ["fullscreen-entered", "proctor-violation"]


def test_fullscreen_denial_degrades_without_raising(clock):
    bus = SessionEventBus()
    recorder = _Recorder(bus)
    monitor = ProctoringMonitor(bus, clock=clock.monotonic)

    def _denied():
        raise PermissionError("fullscreen not allowed")

    assert monitor.enter_fullscreen(_denied) is False
    assert monitor.degraded is True
    assert recorder.events == []
    # tab switches are still tracked
    assert monitor.on_visibility_change(True).count == 1


def test_warning_expires_lazily_without_event_loop(clock):
    bus = SessionEventBus()
    monitor = ProctoringMonitor(bus, clock=clock.monotonic, clear_after_sec=5)

    monitor.on_visibility_change(True)
    clock.advance(4.9)
    assert monitor.active_warning is not None
    clock.advance(0.2)
    assert monitor.active_warning is None
    assert monitor.violation_count == 1


@pytest.mark.asyncio
async def test_warning_auto_clears_on_running_loop():
    bus = SessionEventBus()
    recorder = _Recorder(bus)
    monitor = ProctoringMonitor(bus, clear_after_sec=0.01)

    monitor.on_visibility_change(True)
    await asyncio.sleep(0.05)

    assert monitor.active_warning is None
    assert recorder.names() == ["proctor-violation", "proctor-warning-cleared"]


@pytest.mark.asyncio
async def test_warning_raised_on_worker_thread_clears_on_bound_loop():
    bus = SessionEventBus()
    recorder = _Recorder(bus)
    monitor = ProctoringMonitor(bus, clear_after_sec=0.01, loop=asyncio.get_running_loop())

    warning = await asyncio.to_thread(monitor.on_visibility_change, True)
    await asyncio.sleep(0.05)

    assert warning.count == 1
    assert monitor.active_warning is None
    assert recorder.names() == ["proctor-violation", "proctor-warning-cleared"]


def test_concurrent_signals_are_counted_once_each(clock):
    bus = SessionEventBus()
    monitor = ProctoringMonitor(bus, clock=clock.monotonic, final_warning_at=100)
    barrier = threading.Barrier(8)

    def _switch() -> None:
        barrier.wait()
        for _ in range(25):
            monitor.on_visibility_change(True)

    threads = [threading.Thread(target=_switch) for _ in range(8)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    assert monitor.violation_count == 200


@pytest.mark.asyncio
async def test_close_cancels_pending_clear():
    bus = SessionEventBus()
    recorder = _Recorder(bus)
    monitor = ProctoringMonitor(bus, clear_after_sec=0.01)

    monitor.on_visibility_change(True)
    monitor.close()
    await asyncio.sleep(0.05)

    assert recorder.names() == ["proctor-violation"]
    assert monitor.on_visibility_change(True) is None


def test_disabled_monitor_ignores_signals(clock):
    bus = SessionEventBus()
    recorder = _Recorder(bus)
    monitor = ProctoringMonitor(bus, enabled=False, clock=clock.monotonic)

    assert monitor.on_visibility_change(True) is None
    assert monitor.enter_fullscreen() is False
    assert monitor.violation_count == 0
    assert recorder.events == []


def test_violation_directives_mention_remaining_and_final_warning():
    assert "2 warnings remaining" in directives.violation_warning("tab_switch", 1)
    assert "FINAL WARNING" in directives.violation_warning("fullscreen_exit", 3)
    assert "terminated" in directives.violation_warning("tab_switch", 4)
    assert '"q-7"' in directives.question_timeout("q-7")


def test_directive_queue_drains_in_order():
    queue = DirectiveQueue()
    queue.push("a", "first")
    queue.push("b", "second")
    assert len(queue) == 2
    assert [item.kind for item in queue.drain()] == ["a", "b"]
    assert queue.drain() == []
