from __future__ import annotations

from dataclasses import dataclass, replace
from datetime import datetime
import uuid

from core.state import QuestionType
from orchestrator.scoring.topics import analyze_topics
from orchestrator.session.errors import InvalidContribution
from orchestrator.session.models import InterviewSession, QuestionAttempt, TopicScore, round_half_up


@dataclass(frozen=True)
class AttemptRecord:
    """One scored question interaction."""
    topic: str
    type: QuestionType
    is_correct: bool
    score: float
    max_score: float
    time_spent: int = 0
    question: str = ""
    difficulty: str = "medium"


@dataclass(frozen=True)
class QuizRecord:
    """Aggregated result of a multi-question widget (MCQ set, matching board)."""
    topic: str
    total_questions: int
    correct_answers: int
    wrong_answers: int = 0
    percentage: float = 0.0
    difficulty: str = "medium"
    time_spent: int = 0


def merge_topic_score(
    existing: TopicScore | None,
    topic: str,
    correct: int,
    total: int,
    now: datetime,
) -> TopicScore:
    if total < 1:
        raise InvalidContribution(f"topic contribution for {topic!r} must cover at least one question")
    base_correct = int(existing.correct) if existing else 0
    base_total = int(existing.total) if existing else 0
    new_correct = base_correct + int(correct)
    new_total = base_total + int(total)
    return TopicScore(
        topic=topic,
        correct=new_correct,
        total=new_total,
        percentage=round_half_up((new_correct / new_total) * 100),
        last_attempted=now,
    )


def _with_analysis(topic_scores: dict[str, TopicScore]) -> dict:
    analysis = analyze_topics(topic_scores)
    return {
        "topic_scores": topic_scores,
        "strong_topics": analysis.strong,
        "weak_topics": analysis.weak,
    }


def _validate_attempt(record: AttemptRecord) -> None:
    if not str(record.topic or "").strip():
        raise InvalidContribution("attempt topic is required")
    if record.score < 0 or record.max_score < 0:
        raise InvalidContribution("attempt scores must be non-negative")
    if record.score > record.max_score:
        raise InvalidContribution(f"attempt score {record.score} exceeds max score {record.max_score}")
    if record.time_spent < 0:
        raise InvalidContribution("time spent must be non-negative")


def _validate_quiz(record: QuizRecord) -> None:
    if not str(record.topic or "").strip():
        raise InvalidContribution("quiz topic is required")
    if record.total_questions < 1:
        raise InvalidContribution("quiz must contain at least one question")
    if record.correct_answers < 0 or record.correct_answers > record.total_questions:
        raise InvalidContribution(
            f"correct answers {record.correct_answers} outside 0..{record.total_questions}"
        )
    if record.time_spent < 0:
        raise InvalidContribution("time spent must be non-negative")


def apply_attempt(
    session: InterviewSession,
    record: AttemptRecord,
    now: datetime,
    attempt_id: str | None = None,
) -> tuple[InterviewSession, QuestionAttempt]:
    _validate_attempt(record)

    attempt = QuestionAttempt(
        id=attempt_id or f"attempt-{uuid.uuid4()}",
        type=record.type,
        topic=record.topic,
        question=record.question,
        is_correct=bool(record.is_correct),
        score=float(record.score),
        max_score=float(record.max_score),
        time_spent=int(record.time_spent),
        timestamp=now,
        difficulty=record.difficulty,
    )

    topic_scores = dict(session.topic_scores)
    topic_scores[record.topic] = merge_topic_score(
        topic_scores.get(record.topic),
        record.topic,
        correct=1 if record.is_correct else 0,
        total=1,
        now=now,
    )

    attempts = [*session.attempts, attempt]
    total_time = sum(int(item.time_spent) for item in attempts)

    updated = replace(
        session,
        questions_attempted=session.questions_attempted + 1,
        questions_correct=session.questions_correct + (1 if record.is_correct else 0),
        total_score=session.total_score + float(record.score),
        max_possible_score=session.max_possible_score + float(record.max_score),
        attempts=attempts,
        average_time_per_question=round_half_up(total_time / len(attempts)),
        time_spent_seconds=session.time_spent_seconds + int(record.time_spent),
        last_activity_at=now,
        updated_at=now,
        **_with_analysis(topic_scores),
    )
    return updated, attempt


def apply_quiz_result(session: InterviewSession, record: QuizRecord, now: datetime) -> InterviewSession:
    _validate_quiz(record)

    topic_scores = dict(session.topic_scores)
    topic_scores[record.topic] = merge_topic_score(
        topic_scores.get(record.topic),
        record.topic,
        correct=record.correct_answers,
        total=record.total_questions,
        now=now,
    )

    return replace(
        session,
        questions_attempted=session.questions_attempted + int(record.total_questions),
        questions_correct=session.questions_correct + int(record.correct_answers),
        total_score=session.total_score + int(record.correct_answers),
        max_possible_score=session.max_possible_score + int(record.total_questions),
        time_spent_seconds=session.time_spent_seconds + int(record.time_spent),
        last_activity_at=now,
        updated_at=now,
        **_with_analysis(topic_scores),
    )


def apply_code_grade(
    session: InterviewSession,
    attempt_id: str,
    score: float,
    is_correct: bool,
    now: datetime,
) -> InterviewSession:
    """
    Credit a graded code submission against its zero-score placeholder.
    The placeholder attempt itself stays untouched in the ledger.
    """
    if attempt_id not in session.pending_code_attempts:
        raise InvalidContribution(f"no pending code attempt {attempt_id!r}")

    placeholder = next((item for item in session.attempts if item.id == attempt_id), None)
    if placeholder is None:
        raise InvalidContribution(f"unknown attempt {attempt_id!r}")
    if score < 0:
        raise InvalidContribution("awarded score must be non-negative")

    awarded = min(float(score), float(placeholder.max_score))
    pending = dict(session.pending_code_attempts)
    pending.pop(attempt_id, None)

    topic_scores = dict(session.topic_scores)
    existing = topic_scores.get(placeholder.topic)
    if is_correct and existing is not None:
        topic_scores[placeholder.topic] = TopicScore(
            topic=existing.topic,
            correct=existing.correct + 1,
            total=existing.total,
            percentage=round_half_up(((existing.correct + 1) / existing.total) * 100),
            last_attempted=now,
        )

    return replace(
        session,
        questions_correct=session.questions_correct + (1 if is_correct else 0),
        total_score=session.total_score + awarded,
        pending_code_attempts=pending,
        last_activity_at=now,
        updated_at=now,
        **_with_analysis(topic_scores),
    )
