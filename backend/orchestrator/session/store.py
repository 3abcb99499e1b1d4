from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
import logging
from threading import RLock
import time
from typing import Callable, Optional, Union
import uuid

from core.logger import log_event
from core.state import InterviewMode, InterviewStatus, QuestionType, RoundStatus
from orchestrator import system_metrics
from orchestrator.context import build_session_context
from orchestrator.scoring.aggregator import (
    AttemptRecord,
    QuizRecord,
    apply_attempt,
    apply_code_grade,
    apply_quiz_result,
)
from orchestrator.scoring.topics import TopicAnalysis, analyze_topics
from orchestrator.sequencer import contract
from orchestrator.sequencer.contract import SequenceCheck
from orchestrator.session.errors import (
    DuplicateEvent,
    InvalidContribution,
    NoActiveSession,
    RoundOrderViolation,
    SessionClosed,
)
from orchestrator.session.models import InterviewRound, InterviewSession, QuestionAttempt, utc_now
from orchestrator.session.repository import SessionRepository


SessionObserver = Callable[[Optional[InterviewSession]], None]
Contribution = Union[AttemptRecord, QuizRecord]

MAX_TRACKED_EVENT_IDS = 500
CODE_PASS_RATIO = 0.5


@dataclass(frozen=True)
class ScoreResult:
    session: InterviewSession
    attempt: Optional[QuestionAttempt] = None
    check: Optional[SequenceCheck] = None


def consume_slot(session: InterviewSession, question_type: QuestionType | str) -> tuple[InterviewSession, SequenceCheck]:
    """Take the next schedule slot and check the question type against it."""
    position = session.question_index + 1
    result = contract.check(session.mode, position, question_type)
    violations = list(session.sequence_violations)
    if not result.ok:
        violations.append(result.to_violation())
    return replace(session, question_index=position, sequence_violations=violations), result


def find_pending_code_attempt(session: InterviewSession, title: str | None = None) -> Optional[str]:
    for attempt_id, pending_title in session.pending_code_attempts.items():
        if title is None or pending_title == title:
            return attempt_id
    return None


def create_empty_session(mode: InterviewMode, user_name: str, topics: list[str], now: datetime) -> InterviewSession:
    stamp = int(now.timestamp() * 1000)
    return InterviewSession(
        id=f"session-{stamp}-{uuid.uuid4().hex[:6]}",
        mode=mode,
        user_id=f"user-{stamp}",
        user_name=user_name,
        selected_topics=list(topics),
        current_topic=topics[0] if topics else None,
        rounds=[
            InterviewRound(id=f"round-{idx}", topic=topic)
            for idx, topic in enumerate(topics)
        ],
        current_round=0,
        interview_status=InterviewStatus.NOT_STARTED,
        started_at=now,
        last_activity_at=now,
        created_at=now,
        updated_at=now,
    )


class SessionStore:
    """
    Holds the live session for ONE client context and persists it after
    every mutation.
    """

    def __init__(self, repository: SessionRepository, now_fn: Callable[[], datetime] = utc_now):
        self._repository = repository
        self._now = now_fn
        self._lock = RLock()
        self._session: Optional[InterviewSession] = None
        self._observers: list[SessionObserver] = []

    # -------------------------
    # READ
    # -------------------------

    @property
    def session(self) -> Optional[InterviewSession]:
        with self._lock:
            return self._session

    @property
    def session_id(self) -> str:
        session = self.session
        return session.id if session else ""

    def require_session(self, operation: str = "") -> InterviewSession:
        session = self.session
        if session is None:
            raise NoActiveSession(operation)
        return session

    def has_processed(self, event_id: str) -> bool:
        session = self.session
        return bool(session and event_id and event_id in session.processed_event_ids)

    def topic_analysis(self) -> TopicAnalysis:
        session = self.session
        if session is None:
            return TopicAnalysis()
        return analyze_topics(session.topic_scores)

    def context(self) -> str:
        return build_session_context(self.session)

    # -------------------------
    # OBSERVERS
    # -------------------------

    def subscribe(self, observer: SessionObserver) -> Callable[[], None]:
        with self._lock:
            self._observers.append(observer)

        def _unsubscribe() -> None:
            with self._lock:
                if observer in self._observers:
                    self._observers.remove(observer)

        return _unsubscribe

    def clear_observers(self) -> None:
        with self._lock:
            self._observers.clear()

    def _notify(self, session: Optional[InterviewSession]) -> None:
        for observer in list(self._observers):
            try:
                observer(session)
            except Exception as exc:
                log_event("store", "observer_failed", session.id if session else "", level=logging.WARNING, error=str(exc))

    # -------------------------
    # PERSISTENCE
    # -------------------------

    def _persist(self, session: InterviewSession) -> None:
        started = time.perf_counter()
        try:
            self._repository.save(session)
        except Exception as exc:
            # fire-and-forget: the in-memory record stays authoritative
            system_metrics.increment_metric("persist_failures")
            log_event("store", "persist_failed", session.id, level=logging.WARNING, error=str(exc))
            return
        system_metrics.observe_persist_latency_ms((time.perf_counter() - started) * 1000.0)

    def _commit(self, session: InterviewSession) -> InterviewSession:
        self._session = session
        self._persist(session)
        self._notify(session)
        return session

    def _mutate(
        self,
        operation: str,
        fn: Callable[[InterviewSession, datetime], InterviewSession],
        event_id: str | None = None,
        allow_terminal: bool = False,
    ) -> InterviewSession:
        with self._lock:
            current = self._session
            if current is None:
                raise NoActiveSession(operation)
            if current.is_terminal and not allow_terminal:
                raise SessionClosed(operation, current.interview_status.value)
            if event_id and event_id in current.processed_event_ids:
                raise DuplicateEvent(event_id)

            now = self._now()
            updated = fn(current, now)
            updated = replace(updated, last_activity_at=now, updated_at=now)
            if event_id:
                processed = [*updated.processed_event_ids, str(event_id)][-MAX_TRACKED_EVENT_IDS:]
                updated = replace(updated, processed_event_ids=processed)
            return self._commit(updated)

    # -------------------------
    # LIFECYCLE
    # -------------------------

    def start_session(self, mode: InterviewMode | str, user_name: str, topics: list[str]) -> InterviewSession:
        resolved_mode = InterviewMode(mode)
        name = str(user_name or "").strip()
        cleaned_topics = [str(topic).strip() for topic in list(topics or []) if str(topic or "").strip()]
        if not name:
            raise ValueError("user name is required")
        if not cleaned_topics:
            raise ValueError("at least one topic is required")

        with self._lock:
            session = create_empty_session(resolved_mode, name, cleaned_topics, self._now())
            session.interview_status = InterviewStatus.INTRODUCTION
            self._commit(session)

        system_metrics.increment_metric("sessions_started")
        log_event("store", "session_started", session.id, mode=resolved_mode.value, topics=cleaned_topics)
        return session

    def end_session(self) -> None:
        with self._lock:
            previous = self._session
            self._session = None
            try:
                self._repository.clear()
            except Exception as exc:
                log_event("store", "clear_failed", previous.id if previous else "", level=logging.WARNING, error=str(exc))
            if previous is None:
                return
            self._notify(None)

        system_metrics.increment_metric("sessions_ended")
        log_event("store", "session_ended", previous.id)

    def restore(self, mode: InterviewMode | str | None = None) -> Optional[InterviewSession]:
        """Load the persisted session unless one is already live; the live one wins."""
        expected = InterviewMode(mode) if mode else None
        with self._lock:
            if self._session is not None:
                return self._session
            try:
                restored = self._repository.load(expected)
            except Exception as exc:
                log_event("store", "restore_failed", "", level=logging.WARNING, error=str(exc))
                restored = None
            self._session = restored

        if restored is not None:
            system_metrics.increment_metric("sessions_restored")
        return restored

    # -------------------------
    # TOPICS & ROUNDS
    # -------------------------

    def set_current_topic(self, topic: str) -> InterviewSession:
        return self._mutate(
            "set_current_topic",
            lambda session, now: replace(session, current_topic=str(topic)),
        )

    def start_round(self, topic: str, question_type: QuestionType | str = QuestionType.MCQ) -> InterviewSession:
        resolved_type = QuestionType(question_type)

        def _start(session: InterviewSession, now: datetime) -> InterviewSession:
            index = session.current_round
            if index >= len(session.rounds):
                raise RoundOrderViolation("all rounds are already completed", current_round=index)
            target = session.rounds[index]
            if target.status != RoundStatus.PENDING:
                raise RoundOrderViolation(
                    f"round {index} is already {target.status.value}",
                    current_round=index,
                    requested_round=index,
                )
            rounds = list(session.rounds)
            rounds[index] = replace(
                target,
                topic=str(topic),
                type=resolved_type,
                status=RoundStatus.IN_PROGRESS,
                started_at=now,
            )
            return replace(
                session,
                rounds=rounds,
                current_topic=str(topic),
                interview_status=InterviewStatus.IN_PROGRESS,
            )

        session = self._mutate("start_round", _start)
        log_event("store", "round_started", session.id, round=session.current_round, topic=topic, type=resolved_type.value)
        return session

    def complete_round(self, score: float, max_score: float, round_index: int | None = None) -> InterviewSession:
        if score < 0 or max_score < 0 or score > max_score:
            raise InvalidContribution(f"round score {score}/{max_score} is out of range")

        def _complete(session: InterviewSession, now: datetime) -> InterviewSession:
            index = session.current_round
            if round_index is not None and int(round_index) != index:
                raise RoundOrderViolation(
                    f"round {round_index} cannot complete while round {index} is current",
                    current_round=index,
                    requested_round=int(round_index),
                )
            if index >= len(session.rounds) or session.rounds[index].status == RoundStatus.COMPLETED:
                raise RoundOrderViolation("all rounds are already completed", current_round=index)

            target = session.rounds[index]
            rounds = list(session.rounds)
            rounds[index] = replace(
                target,
                status=RoundStatus.COMPLETED,
                score=float(score),
                max_score=float(max_score),
                started_at=target.started_at or now,
                completed_at=now,
            )

            is_last = index == len(rounds) - 1
            if is_last:
                return replace(
                    session,
                    rounds=rounds,
                    interview_status=InterviewStatus.COMPLETED,
                    current_topic=None,
                    ended_reason=session.ended_reason or "rounds_completed",
                )
            return replace(
                session,
                rounds=rounds,
                current_round=index + 1,
                interview_status=InterviewStatus.IN_PROGRESS,
                current_topic=rounds[index + 1].topic,
            )

        session = self._mutate("complete_round", _complete)
        log_event(
            "store",
            "round_completed",
            session.id,
            current_round=session.current_round,
            status=session.interview_status.value,
        )
        return session

    # -------------------------
    # SCORING
    # -------------------------

    def record_scored(
        self,
        record: Contribution,
        question_type: QuestionType | str | None = None,
        pending_title: str | None = None,
        event_id: str | None = None,
    ) -> ScoreResult:
        """
        Apply one scored contribution in a single commit.

        With `question_type`, the next schedule slot is consumed and checked in
        that same commit, so concurrent contributions each get their own slot.
        With `pending_title`, the attempt is a code placeholder kept pending
        under that title until a grade arrives.
        """
        if isinstance(record, QuizRecord):
            operation = "record_quiz_results"
        elif pending_title is not None:
            operation = "record_code_submission"
        else:
            operation = "record_attempt"
        results: list[ScoreResult] = []

        def _apply(session: InterviewSession, now: datetime) -> InterviewSession:
            attempt = None
            if isinstance(record, QuizRecord):
                updated = apply_quiz_result(session, record, now)
            else:
                updated, attempt = apply_attempt(session, record, now)
                if pending_title is not None:
                    pending = dict(updated.pending_code_attempts)
                    pending[attempt.id] = str(pending_title)
                    updated = replace(updated, pending_code_attempts=pending)
            check = None
            if question_type is not None:
                updated, check = consume_slot(updated, question_type)
            results.append(ScoreResult(session=updated, attempt=attempt, check=check))
            return updated

        session = self._mutate(operation, _apply, event_id=event_id)
        result = replace(results[0], session=session)

        if isinstance(record, QuizRecord):
            log_event(
                "store",
                "quiz_recorded",
                session.id,
                topic=record.topic,
                total_questions=record.total_questions,
                correct_answers=record.correct_answers,
                attempted=session.questions_attempted,
                score=session.total_score,
                question_index=session.question_index,
            )
        elif pending_title is not None:
            log_event("store", "code_placeholder_recorded", session.id, attempt_id=result.attempt.id, title=pending_title)
        else:
            log_event(
                "store",
                "attempt_recorded",
                session.id,
                topic=record.topic,
                type=record.type.value,
                is_correct=record.is_correct,
                attempted=session.questions_attempted,
                correct=session.questions_correct,
                question_index=session.question_index,
            )
        return result

    def record_attempt(self, record: AttemptRecord, event_id: str | None = None) -> QuestionAttempt:
        return self.record_scored(record, event_id=event_id).attempt

    def record_quiz_results(self, record: QuizRecord, event_id: str | None = None) -> InterviewSession:
        return self.record_scored(record, event_id=event_id).session

    def record_code_submission(self, record: AttemptRecord, title: str, event_id: str | None = None) -> QuestionAttempt:
        """Record a zero-score placeholder that stays pending until graded."""
        return self.record_scored(record, pending_title=str(title or ""), event_id=event_id).attempt

    def reconcile_code_attempt(
        self,
        score: float,
        max_score: float,
        title: str | None = None,
        attempt_id: str | None = None,
        event_id: str | None = None,
    ) -> InterviewSession:
        if max_score <= 0:
            raise InvalidContribution("graded max score must be positive")
        if score < 0 or score > max_score:
            raise InvalidContribution(f"graded score {score}/{max_score} is out of range")
        matched: list[str] = []

        def _apply(session: InterviewSession, now: datetime) -> InterviewSession:
            target_id = attempt_id or find_pending_code_attempt(session, title)
            if not target_id:
                raise InvalidContribution(f"no pending code submission for {title!r}")
            matched.append(target_id)
            placeholder = next((item for item in session.attempts if item.id == target_id), None)
            ceiling = float(placeholder.max_score) if placeholder else float(max_score)
            awarded = (float(score) / float(max_score)) * ceiling
            passed = (float(score) / float(max_score)) >= CODE_PASS_RATIO
            return apply_code_grade(session, target_id, awarded, passed, now)

        session = self._mutate("reconcile_code_attempt", _apply, event_id=event_id)
        system_metrics.increment_metric("code_attempts_reconciled")
        log_event("store", "code_attempt_reconciled", session.id, attempt_id=matched[0], score=score, max_score=max_score)
        return session

    # -------------------------
    # SCHEDULE & PROCTORING
    # -------------------------

    def advance_question(self, question_type: QuestionType | str) -> ScoreResult:
        """Consume a schedule slot for a question that produced no score, such as a whiteboard round."""
        checks: list[SequenceCheck] = []

        def _advance(session: InterviewSession, now: datetime) -> InterviewSession:
            updated, check = consume_slot(session, question_type)
            checks.append(check)
            return updated

        session = self._mutate("advance_question", _advance)
        return ScoreResult(session=session, check=checks[0])

    def record_violation(self, count: int) -> InterviewSession:
        return self._mutate(
            "record_violation",
            lambda session, now: replace(session, violation_count=max(session.violation_count, int(count))),
            allow_terminal=True,
        )

    def mark_event_processed(self, event_id: str) -> InterviewSession:
        return self._mutate("mark_event_processed", lambda session, now: session, event_id=event_id, allow_terminal=True)

    def complete_interview(self, reason: str = "completed", event_id: str | None = None) -> InterviewSession:
        def _complete(session: InterviewSession, now: datetime) -> InterviewSession:
            if session.is_terminal:
                return session
            return replace(
                session,
                interview_status=InterviewStatus.COMPLETED,
                current_topic=None,
                ended_reason=str(reason or "completed"),
            )

        session = self._mutate("complete_interview", _complete, event_id=event_id, allow_terminal=True)
        log_event("store", "interview_completed", session.id, reason=session.ended_reason)
        return session

    def terminate(self, reason: str) -> InterviewSession:
        current = self.require_session("terminate")
        if current.is_terminal:
            return current
        session = self.complete_interview(reason=reason)
        system_metrics.increment_metric("sessions_terminated")
        log_event("store", "interview_terminated", session.id, level=logging.WARNING, reason=reason)
        return session

    def open_review(self) -> InterviewSession:
        def _review(session: InterviewSession, now: datetime) -> InterviewSession:
            if session.interview_status != InterviewStatus.COMPLETED:
                raise RoundOrderViolation(
                    f"cannot review a session that is {session.interview_status.value}",
                    current_round=session.current_round,
                )
            return replace(session, interview_status=InterviewStatus.REVIEW)

        return self._mutate("open_review", _review, allow_terminal=True)
