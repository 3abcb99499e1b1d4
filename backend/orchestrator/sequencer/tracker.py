from __future__ import annotations

import logging
from typing import Callable, Optional

from core.logger import log_event
from orchestrator import system_metrics
from orchestrator.events.bus import SessionEventBus
from orchestrator.events.contracts import QuestionScored, SequenceViolation, SummaryDue
from orchestrator.sequencer import contract
from orchestrator.session.store import SessionStore


class ScheduleTracker:
    """
    Broadcasts what the schedule check found for each scored question.
    The check and the slot it consumed are committed with the score itself;
    deviations are announced here and the score still counts.
    """

    def __init__(self, store: SessionStore, bus: SessionEventBus):
        self._store = store
        self._bus = bus
        self._unsubscribe: Optional[Callable[[], None]] = None

    def attach(self) -> None:
        if self._unsubscribe is None:
            self._unsubscribe = self._bus.subscribe("question-scored", self.on_question_scored)

    def detach(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    def on_question_scored(self, event: QuestionScored) -> None:
        session_id = self._store.session_id
        if not event.in_sequence:
            system_metrics.increment_metric("sequence_violations")
            log_event(
                "sequencer",
                "sequence_violation",
                session_id,
                level=logging.WARNING,
                position=event.position,
                expected=list(event.expected),
                actual=event.question_type,
                reason=event.reason,
            )
            self._bus.publish(
                SequenceViolation(
                    position=event.position,
                    expected=list(event.expected),
                    actual=event.question_type,
                    reason=event.reason,
                )
            )

        if event.position == contract.SCORED_SLOTS and contract.summary_due(event.questions_completed):
            log_event("sequencer", "summary_due", session_id, questions_completed=event.questions_completed)
            self._bus.publish(SummaryDue(questions_completed=event.questions_completed))
