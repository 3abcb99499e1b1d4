from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Callable, Optional, Union

from core import config
from core.logger import log_event
from core.state import QuestionType
from orchestrator import system_metrics
from orchestrator.events.bus import SessionEventBus
from orchestrator.events.contracts import (
    COMPLETION_EVENTS,
    BusEvent,
    CodeGraded,
    CodeSubmitted,
    InterviewCompleted,
    MatchCompleted,
    QuestionScored,
    QuizCompleted,
    TheoryScoreRecorded,
)
from orchestrator.scoring.aggregator import AttemptRecord, QuizRecord
from orchestrator.session.errors import DuplicateEvent, NoActiveSession
from orchestrator.session.store import SessionStore


CODE_TOPIC = "Coding"

Contribution = Union[AttemptRecord, QuizRecord]


@dataclass(frozen=True)
class EventOutcome:
    status: str  # applied | duplicate | dropped
    event: str
    event_id: Optional[str] = None
    reason: str = ""

    @property
    def applied(self) -> bool:
        return self.status == "applied"

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "event": self.event,
            "event_id": self.event_id,
            "reason": self.reason,
        }


def normalize(event: BusEvent) -> Optional[Contribution]:
    """
    Map a widget completion event onto one of the two aggregator inputs.
    Returns None for events that carry no score.
    """
    if isinstance(event, QuizCompleted):
        return QuizRecord(
            topic=event.topic,
            total_questions=event.total_questions,
            correct_answers=event.correct_answers,
            wrong_answers=event.wrong_answers,
            percentage=event.percentage,
            difficulty=event.difficulty,
            time_spent=event.time_spent,
        )

    if isinstance(event, TheoryScoreRecorded):
        # the rating scale is fixed; the widget's own maxScore/isCorrect are advisory
        return AttemptRecord(
            topic=event.topic,
            type=QuestionType.THEORY,
            is_correct=event.score >= config.THEORY_PASS_THRESHOLD,
            score=event.score,
            max_score=config.THEORY_RATING_MAX,
            time_spent=event.time_spent if event.time_spent is not None else config.DEFAULT_THEORY_TIME_SEC,
            question=event.question,
        )

    if isinstance(event, MatchCompleted):
        return QuizRecord(
            topic=event.topic,
            total_questions=event.total_questions,
            correct_answers=event.score,
            wrong_answers=max(0, event.total_questions - event.score),
            percentage=event.percentage,
            time_spent=event.time_spent if event.time_spent is not None else config.DEFAULT_MATCH_TIME_SEC,
        )

    if isinstance(event, CodeSubmitted):
        return AttemptRecord(
            topic=event.topic or CODE_TOPIC,
            type=QuestionType.CODING,
            is_correct=False,
            score=0,
            max_score=config.CODE_RATING_MAX,
            time_spent=event.time_spent if event.time_spent is not None else config.DEFAULT_CODE_TIME_SEC,
            question=event.title or event.question,
        )

    return None


_QUESTION_TYPES = {
    "quiz-complete": QuestionType.MCQ,
    "theory-score-recorded": QuestionType.THEORY,
    "match-complete": QuestionType.MATCH,
    "code-submitted": QuestionType.CODING,
}


class CompletionEventListener:
    """
    Applies widget completion events to the session store, one event at a
    time, each applied and persisted before the next is looked at.
    """

    def __init__(self, store: SessionStore, bus: SessionEventBus):
        self._store = store
        self._bus = bus
        self._unsubscribers: list[Callable[[], None]] = []

    def attach(self) -> None:
        if self._unsubscribers:
            return
        for name in COMPLETION_EVENTS:
            self._unsubscribers.append(self._bus.subscribe(name, self.handle))

    def detach(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()
        self._unsubscribers = []

    def handle(self, event: BusEvent) -> EventOutcome:
        try:
            self._apply(event)
        except DuplicateEvent:
            system_metrics.increment_metric("events_duplicate")
            log_event("listener", "event_ignored", self._store.session_id, name=event.event, event_id=event.event_id, reason="duplicate")
            return EventOutcome(status="duplicate", event=event.event, event_id=event.event_id, reason="duplicate")
        except NoActiveSession as exc:
            system_metrics.increment_metric("events_dropped_no_session")
            log_event(
                "listener",
                "event_dropped",
                self._store.session_id,
                level=logging.WARNING,
                name=event.event,
                event_id=event.event_id,
                reason="no_active_session",
                error=str(exc),
            )
            return EventOutcome(status="dropped", event=event.event, event_id=event.event_id, reason="no_active_session")

        system_metrics.increment_metric("events_applied")
        return EventOutcome(status="applied", event=event.event, event_id=event.event_id)

    def _apply(self, event: BusEvent) -> None:
        if isinstance(event, CodeGraded):
            self._store.reconcile_code_attempt(
                score=event.score,
                max_score=event.max_score,
                title=event.title,
                attempt_id=event.attempt_id,
                event_id=event.event_id,
            )
            return

        if isinstance(event, InterviewCompleted):
            self._store.complete_interview(reason=event.reason, event_id=event.event_id)
            return

        record = normalize(event)
        if record is None:
            return

        # score and schedule slot land in one commit; the announcement follows it
        result = self._store.record_scored(
            record,
            question_type=_QUESTION_TYPES[event.event],
            pending_title=event.title if isinstance(event, CodeSubmitted) else None,
            event_id=event.event_id,
        )
        check = result.check
        self._bus.publish(
            QuestionScored(
                question_type=check.actual,
                topic=record.topic,
                source_event=event.event,
                position=check.position,
                questions_completed=result.session.question_index,
                in_sequence=check.ok,
                expected=list(check.expected),
                reason=check.reason,
            )
        )
