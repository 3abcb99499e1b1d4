from __future__ import annotations

import asyncio
from datetime import datetime
import logging
from threading import RLock
import time
from typing import Any, Callable, Optional, Union

from core.logger import log_event
from core.state import InterviewMode
from orchestrator import system_metrics
from orchestrator.events.bus import SessionEventBus
from orchestrator.events.contracts import (
    BusEvent,
    FullscreenEntered,
    FullscreenExitDetected,
    ProctorViolation,
    SequenceViolation,
    SummaryDue,
    TheoryQuestionTimeout,
    parse_event,
)
from orchestrator.events.listener import CompletionEventListener, EventOutcome
from orchestrator.proctoring import directives
from orchestrator.proctoring.directives import Directive, DirectiveQueue
from orchestrator.proctoring.monitor import KIND_FULLSCREEN_EXIT, LEVEL_LIMIT_EXCEEDED, ProctoringMonitor
from orchestrator.sequencer import contract
from orchestrator.sequencer.tracker import ScheduleTracker
from orchestrator.session.errors import InvalidContribution
from orchestrator.session.models import InterviewSession, utc_now
from orchestrator.session.repository import SessionRepository, build_session_repository
from orchestrator.session.store import SessionStore


TERMINATION_REASON = "proctoring_violation"


class InterviewRuntime:
    """
    Everything one client context needs while an interview is running:
    the store, the session-scoped bus and the collaborators wired onto it.

    Completion events enter through `ingest`; proctoring signals through the
    `on_*` methods. Directives for the dialogue agent pile up until drained.
    """

    def __init__(
        self,
        client_id: str,
        repository: Optional[SessionRepository] = None,
        now_fn: Callable[[], datetime] = utc_now,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.client_id = str(client_id or "default")
        self._clock = clock
        self.bus = SessionEventBus(scope=self.client_id)
        self.store = SessionStore(repository or build_session_repository(self.client_id), now_fn=now_fn)
        self.directives = DirectiveQueue()
        self.listener = CompletionEventListener(self.store, self.bus)
        self.tracker = ScheduleTracker(self.store, self.bus)
        self.monitor: Optional[ProctoringMonitor] = None
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._lock = RLock()
        self._unsubscribers: list[Callable[[], None]] = []
        self._closed = False

        self.listener.attach()
        self.tracker.attach()
        self._unsubscribers.extend(
            [
                self.store.subscribe(self._on_session_changed),
                self.bus.subscribe("proctor-violation", self._on_proctor_violation),
                self.bus.subscribe("fullscreen-entered", self._on_fullscreen_entered),
                self.bus.subscribe("summary-due", self._on_summary_due),
                self.bus.subscribe("sequence-violation", self._on_sequence_violation),
            ]
        )

    @property
    def session(self) -> Optional[InterviewSession]:
        return self.store.session

    @property
    def closed(self) -> bool:
        return self._closed

    # -------------------------
    # LIFECYCLE
    # -------------------------

    def _build_monitor(self, session: Optional[InterviewSession]) -> None:
        if self.monitor is not None:
            self.monitor.close()
            self.monitor = None
        if session is None:
            return
        self.monitor = ProctoringMonitor(
            self.bus,
            enabled=session.mode == InterviewMode.INTERVIEW and not session.is_terminal,
            session_id=session.id,
            clock=self._clock,
            violation_count=session.violation_count,
            loop=self._loop,
        )

    def bind_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        """Event loop that runs warning clear timers for signals handled on worker threads."""
        self._loop = loop
        if self.monitor is not None:
            self.monitor.loop = loop

    def start(self, mode: InterviewMode | str, user_name: str, topics: list[str]) -> InterviewSession:
        with self._lock:
            if self._closed:
                raise RuntimeError("session runtime is closed")
            self.directives.drain()
            session = self.store.start_session(mode, user_name, topics)
            self._build_monitor(session)
            return session

    def restore(self, mode: InterviewMode | str | None = None) -> Optional[InterviewSession]:
        with self._lock:
            # a live session keeps its monitor
            if self.store.session is not None:
                return self.store.session
            session = self.store.restore(mode)
            self._build_monitor(session)
            return session

    def end(self) -> None:
        with self._lock:
            if self.monitor is not None:
                self.monitor.close()
                self.monitor = None
            self.directives.drain()
            self.store.end_session()

    def close(self) -> None:
        """Release bus subscriptions and timers; persisted state is kept."""
        if self._closed:
            return
        self._closed = True
        if self.monitor is not None:
            self.monitor.close()
            self.monitor = None
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []
        self.listener.detach()
        self.tracker.detach()
        self.store.clear_observers()
        self.bus.close()
        log_event("runtime", "runtime_closed", self.store.session_id, client_id=self.client_id)

    # -------------------------
    # INBOUND EVENTS
    # -------------------------

    def ingest(self, payload: Union[dict, BusEvent]) -> EventOutcome:
        """Validate and apply one widget event. Raises pydantic.ValidationError on malformed payloads."""
        event = payload if isinstance(payload, BusEvent) else parse_event(payload)

        if isinstance(event, TheoryQuestionTimeout):
            return self._on_question_timeout(event)
        if isinstance(event, FullscreenExitDetected):
            return self._on_fullscreen_exit_reported(event)

        try:
            results = self.bus.publish(event)
        except InvalidContribution as exc:
            system_metrics.increment_metric("events_rejected_invalid")
            log_event(
                "runtime",
                "event_rejected",
                self.store.session_id,
                level=logging.WARNING,
                name=event.event,
                event_id=event.event_id,
                error=str(exc),
            )
            raise

        for result in results:
            if isinstance(result, EventOutcome):
                return result
        return EventOutcome(status="dropped", event=event.event, event_id=event.event_id, reason="no_listener")

    def _on_question_timeout(self, event: TheoryQuestionTimeout) -> EventOutcome:
        if self.store.session is None:
            system_metrics.increment_metric("events_dropped_no_session")
            return EventOutcome(status="dropped", event=event.event, event_id=event.event_id, reason="no_active_session")
        self.directives.push("question_timeout", directives.question_timeout(event.id, event.topic))
        log_event("runtime", "question_timeout", self.store.session_id, question_id=event.id, topic=event.topic)
        return EventOutcome(status="applied", event=event.event, event_id=event.event_id, reason="directive")

    def _on_fullscreen_exit_reported(self, event: FullscreenExitDetected) -> EventOutcome:
        # the exit was already counted from the fullscreen signal; only the directive is due
        monitor = self.monitor
        if monitor is None or not monitor.enabled:
            return EventOutcome(status="dropped", event=event.event, event_id=event.event_id, reason="proctoring_disabled")
        count = monitor.violation_count
        if count == 0:
            return EventOutcome(status="dropped", event=event.event, event_id=event.event_id, reason="no_violation_recorded")
        self.directives.push(
            "proctor_violation",
            directives.violation_warning(KIND_FULLSCREEN_EXIT, count, monitor.final_warning_at),
        )
        return EventOutcome(status="applied", event=event.event, event_id=event.event_id, reason="directive")

    # -------------------------
    # PROCTORING SIGNALS
    # -------------------------

    def on_fullscreen_change(self, is_fullscreen: bool):
        if self.monitor is None:
            return None
        return self.monitor.on_fullscreen_change(is_fullscreen)

    def on_visibility_change(self, hidden: bool):
        if self.monitor is None:
            return None
        return self.monitor.on_visibility_change(hidden)

    def enter_fullscreen(self, request_fn: Optional[Callable[[], Any]] = None) -> bool:
        if self.monitor is None:
            return False
        return self.monitor.enter_fullscreen(request_fn)

    def fullscreen_unavailable(self, reason: str = "") -> None:
        if self.monitor is not None:
            self.monitor.degrade(reason)

    # -------------------------
    # BUS HANDLERS
    # -------------------------

    def _on_proctor_violation(self, event: ProctorViolation) -> None:
        if self.store.session is None:
            return
        self.store.record_violation(event.count)
        final_at = self.monitor.final_warning_at if self.monitor is not None else event.count
        self.directives.push("proctor_violation", directives.violation_warning(event.kind, event.count, final_at))
        if event.level == LEVEL_LIMIT_EXCEEDED:
            self.store.terminate(TERMINATION_REASON)

    def _on_session_changed(self, session: Optional[InterviewSession]) -> None:
        monitor = self.monitor
        if session is None or monitor is None or not session.is_terminal or not monitor.enabled:
            return
        monitor.enabled = False
        log_event("runtime", "proctoring_stopped", session.id, status=session.interview_status.value)

    def _on_fullscreen_entered(self, event: FullscreenEntered) -> None:
        self.directives.push("fullscreen_entered", directives.fullscreen_entered())

    def _on_summary_due(self, event: SummaryDue) -> None:
        self.directives.push("summary_due", directives.summary_due(event.questions_completed))

    def _on_sequence_violation(self, event: SequenceViolation) -> None:
        self.directives.push(
            "sequence_violation",
            directives.sequence_violation(event.position, event.expected, event.actual),
        )

    # -------------------------
    # READ MODELS
    # -------------------------

    def drain_directives(self) -> list[Directive]:
        return self.directives.drain()

    def context(self) -> str:
        return self.store.context()

    def analysis(self) -> dict:
        session = self.store.session
        analysis = self.store.topic_analysis().to_dict()
        analysis["score_percentage"] = session.score_percentage if session else 0
        analysis["questions_attempted"] = session.questions_attempted if session else 0
        analysis["questions_correct"] = session.questions_correct if session else 0
        return analysis

    def snapshot(self) -> dict:
        session = self.store.session
        next_slot = None
        if session is not None and not session.is_terminal:
            allowed = contract.expected_slot(session.mode, session.question_index + 1)
            next_slot = list(contract.slot_labels(allowed))
        return {
            "client_id": self.client_id,
            "session": session.to_dict() if session else None,
            "progress": contract.progress_label(session.question_index) if session else None,
            "next_question_types": next_slot,
            "schedule": contract.describe_schedule(session.mode) if session else None,
            "proctoring": self.monitor.snapshot() if self.monitor is not None else None,
            "pending_directives": len(self.directives),
        }
