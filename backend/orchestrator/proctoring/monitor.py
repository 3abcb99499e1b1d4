from __future__ import annotations

import asyncio
from dataclasses import dataclass
import logging
from threading import Lock
import time
from typing import Any, Callable, Optional

from core import config
from core.logger import log_event
from orchestrator import system_metrics
from orchestrator.events.bus import SessionEventBus
from orchestrator.events.contracts import FullscreenEntered, ProctorViolation, ProctorWarningCleared


LEVEL_WARNING = "warning"
LEVEL_FINAL_WARNING = "final_warning"
LEVEL_LIMIT_EXCEEDED = "limit_exceeded"

KIND_TAB_SWITCH = "tab_switch"
KIND_FULLSCREEN_EXIT = "fullscreen_exit"


@dataclass(frozen=True)
class ProctorWarning:
    kind: str
    count: int
    level: str
    remaining: int
    raised_at: float
    expires_at: float

    def to_dict(self) -> dict:
        return {
            "kind": self.kind,
            "count": self.count,
            "level": self.level,
            "remaining": self.remaining,
        }


def warning_level(count: int, final_warning_at: int = config.PROCTOR_FINAL_WARNING_AT) -> str:
    if count > final_warning_at:
        return LEVEL_LIMIT_EXCEEDED
    if count == final_warning_at:
        return LEVEL_FINAL_WARNING
    return LEVEL_WARNING


class ProctoringMonitor:
    """
    Counts integrity violations (tab switches, fullscreen exits) and raises
    short-lived warnings. It reports; deciding to end the interview is left
    to whoever listens for `proctor-violation`.
    """

    def __init__(
        self,
        bus: SessionEventBus,
        enabled: bool = True,
        session_id: str = "",
        clear_after_sec: float = config.PROCTOR_WARNING_CLEAR_SEC,
        final_warning_at: int = config.PROCTOR_FINAL_WARNING_AT,
        clock: Callable[[], float] = time.monotonic,
        violation_count: int = 0,
        loop: Optional[asyncio.AbstractEventLoop] = None,
    ):
        self._bus = bus
        self.enabled = bool(enabled)
        self.session_id = str(session_id or "")
        self.clear_after_sec = max(0.0, float(clear_after_sec))
        self.final_warning_at = max(1, int(final_warning_at))
        self._clock = clock
        # loop that owns the clear timers when signals arrive on worker threads
        self.loop = loop
        self._lock = Lock()

        self.violation_count = max(0, int(violation_count))
        self.is_fullscreen_active = False
        self.degraded = False
        self._was_fullscreen = False
        self._entered_notified = False
        self._warning: Optional[ProctorWarning] = None
        self._clear_handle: Optional[asyncio.TimerHandle] = None
        self._closed = False

    # -------------------------
    # WARNINGS
    # -------------------------

    @property
    def active_warning(self) -> Optional[ProctorWarning]:
        warning = self._warning
        if warning is not None and self._clock() >= warning.expires_at:
            self._warning = None
            return None
        return warning

    def _clear_warning(self, count: int) -> None:
        self._clear_handle = None
        if self._warning is None or self._warning.count != count:
            return
        self._warning = None
        if not self._closed and not self._bus.closed:
            self._bus.publish(ProctorWarningCleared(count=count))

    def _arm_clear(self, loop: asyncio.AbstractEventLoop, count: int) -> None:
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None
        if self._closed:
            return
        self._clear_handle = loop.call_later(self.clear_after_sec, self._clear_warning, count)

    def _schedule_clear(self, count: int) -> None:
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None
        if running is not None:
            self._arm_clear(running, count)
            return

        loop = self.loop
        if loop is None or loop.is_closed():
            # no loop: the warning expires lazily on the next read
            return
        loop.call_soon_threadsafe(self._arm_clear, loop, count)

    # -------------------------
    # SIGNALS
    # -------------------------

    def enter_fullscreen(self, request_fn: Optional[Callable[[], Any]] = None) -> bool:
        if not self.enabled or self._closed:
            return False
        try:
            if request_fn is not None:
                request_fn()
        except Exception as exc:
            self.degrade(str(exc))
            return False

        self.is_fullscreen_active = True
        self._was_fullscreen = True
        if not self._entered_notified:
            self._entered_notified = True
            self._bus.publish(FullscreenEntered())
        return True

    def degrade(self, reason: str = "") -> None:
        """Fullscreen could not be entered; keep counting tab switches."""
        self.degraded = True
        log_event("proctoring", "fullscreen_request_failed", self.session_id, level=logging.WARNING, error=reason)

    def on_fullscreen_change(self, is_fullscreen: bool) -> Optional[ProctorWarning]:
        now_fullscreen = bool(is_fullscreen)
        exited = self._was_fullscreen and not now_fullscreen
        self.is_fullscreen_active = now_fullscreen
        self._was_fullscreen = now_fullscreen
        if now_fullscreen and self.enabled and not self._entered_notified and not self._closed:
            self._entered_notified = True
            self._bus.publish(FullscreenEntered())
        if exited:
            return self.record_violation(KIND_FULLSCREEN_EXIT)
        return None

    def on_visibility_change(self, hidden: bool) -> Optional[ProctorWarning]:
        if hidden:
            return self.record_violation(KIND_TAB_SWITCH)
        return None

    def record_violation(self, kind: str) -> Optional[ProctorWarning]:
        with self._lock:
            if not self.enabled or self._closed:
                return None
            self.violation_count += 1
            count = self.violation_count
            level = warning_level(count, self.final_warning_at)
            remaining = max(0, self.final_warning_at - count)
            raised_at = self._clock()
            warning = ProctorWarning(
                kind=str(kind),
                count=count,
                level=level,
                remaining=remaining,
                raised_at=raised_at,
                expires_at=raised_at + self.clear_after_sec,
            )
            self._warning = warning
        self._schedule_clear(count)

        system_metrics.increment_metric("proctor_violations")
        if level == LEVEL_FINAL_WARNING:
            system_metrics.increment_metric("proctor_final_warnings")
        log_event("proctoring", "violation_detected", self.session_id, level=logging.WARNING, kind=kind, count=count, warning_level=level)

        self._bus.publish(ProctorViolation(kind=warning.kind, count=count, level=level, remaining=remaining))
        return warning

    def snapshot(self) -> dict:
        warning = self.active_warning
        return {
            "enabled": self.enabled,
            "violation_count": self.violation_count,
            "is_fullscreen_active": self.is_fullscreen_active,
            "degraded": self.degraded,
            "warning": warning.to_dict() if warning else None,
        }

    def close(self) -> None:
        self._closed = True
        if self._clear_handle is not None:
            self._clear_handle.cancel()
            self._clear_handle = None
        self._warning = None
