from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Optional

from core.state import TERMINAL_STATUSES, InterviewMode, InterviewStatus, QuestionType, RoundStatus


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def round_half_up(value: float) -> int:
    # matches the widgets, which report Math.round percentages
    return int(math.floor(float(value) + 0.5))


def _dt_to_str(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return value.isoformat()


def _dt_from_str(value: Any) -> Optional[datetime]:
    if value is None or value == "":
        return None
    parsed = datetime.fromisoformat(str(value))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class TopicScore:
    topic: str
    correct: int
    total: int
    percentage: int
    last_attempted: datetime

    def to_dict(self) -> dict:
        return {
            "topic": self.topic,
            "correct": self.correct,
            "total": self.total,
            "percentage": self.percentage,
            "last_attempted": _dt_to_str(self.last_attempted),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "TopicScore":
        return cls(
            topic=str(data["topic"]),
            correct=int(data["correct"]),
            total=int(data["total"]),
            percentage=int(data["percentage"]),
            last_attempted=_dt_from_str(data["last_attempted"]),
        )


@dataclass(frozen=True)
class QuestionAttempt:
    id: str
    type: QuestionType
    topic: str
    question: str
    is_correct: bool
    score: float
    max_score: float
    time_spent: int
    timestamp: datetime
    difficulty: str = "medium"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "topic": self.topic,
            "question": self.question,
            "is_correct": self.is_correct,
            "score": self.score,
            "max_score": self.max_score,
            "time_spent": self.time_spent,
            "timestamp": _dt_to_str(self.timestamp),
            "difficulty": self.difficulty,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "QuestionAttempt":
        return cls(
            id=str(data["id"]),
            type=QuestionType(data["type"]),
            topic=str(data["topic"]),
            question=str(data.get("question") or ""),
            is_correct=bool(data["is_correct"]),
            score=float(data["score"]),
            max_score=float(data["max_score"]),
            time_spent=int(data.get("time_spent") or 0),
            timestamp=_dt_from_str(data["timestamp"]),
            difficulty=str(data.get("difficulty") or "medium"),
        )


@dataclass(frozen=True)
class InterviewRound:
    id: str
    topic: str
    type: QuestionType = QuestionType.MCQ
    status: RoundStatus = RoundStatus.PENDING
    score: Optional[float] = None
    max_score: Optional[float] = None
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "topic": self.topic,
            "type": self.type.value,
            "status": self.status.value,
            "score": self.score,
            "max_score": self.max_score,
            "started_at": _dt_to_str(self.started_at),
            "completed_at": _dt_to_str(self.completed_at),
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InterviewRound":
        score = data.get("score")
        max_score = data.get("max_score")
        return cls(
            id=str(data["id"]),
            topic=str(data["topic"]),
            type=QuestionType(data.get("type") or QuestionType.MCQ.value),
            status=RoundStatus(data.get("status") or RoundStatus.PENDING.value),
            score=float(score) if score is not None else None,
            max_score=float(max_score) if max_score is not None else None,
            started_at=_dt_from_str(data.get("started_at")),
            completed_at=_dt_from_str(data.get("completed_at")),
        )


@dataclass
class InterviewSession:
    """
    Authoritative record of ONE interview attempt.

    Counters only ever grow. `attempts` is append-only, but it is not a
    complete audit trail: bulk quiz results update counters without
    creating attempt records.
    """
    id: str
    mode: InterviewMode
    user_id: str
    user_name: str
    selected_topics: list[str]
    current_topic: Optional[str]

    questions_attempted: int = 0
    questions_correct: int = 0
    total_score: float = 0.0
    max_possible_score: float = 0.0

    topic_scores: dict[str, TopicScore] = field(default_factory=dict)
    attempts: list[QuestionAttempt] = field(default_factory=list)

    rounds: list[InterviewRound] = field(default_factory=list)
    current_round: int = 0
    interview_status: InterviewStatus = InterviewStatus.NOT_STARTED

    started_at: datetime = field(default_factory=utc_now)
    last_activity_at: datetime = field(default_factory=utc_now)
    created_at: datetime = field(default_factory=utc_now)
    updated_at: datetime = field(default_factory=utc_now)
    time_spent_seconds: int = 0

    strong_topics: list[str] = field(default_factory=list)
    weak_topics: list[str] = field(default_factory=list)
    average_time_per_question: int = 0

    # ---------- orchestration bookkeeping ----------
    question_index: int = 0
    violation_count: int = 0
    processed_event_ids: list[str] = field(default_factory=list)
    pending_code_attempts: dict[str, str] = field(default_factory=dict)
    sequence_violations: list[dict] = field(default_factory=list)
    ended_reason: Optional[str] = None

    @property
    def score_percentage(self) -> int:
        if self.max_possible_score <= 0:
            return 0
        return round_half_up((self.total_score / self.max_possible_score) * 100)

    @property
    def is_terminal(self) -> bool:
        return self.interview_status in TERMINAL_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "mode": self.mode.value,
            "user_id": self.user_id,
            "user_name": self.user_name,
            "selected_topics": list(self.selected_topics),
            "current_topic": self.current_topic,
            "questions_attempted": self.questions_attempted,
            "questions_correct": self.questions_correct,
            "total_score": self.total_score,
            "max_possible_score": self.max_possible_score,
            "topic_scores": {name: score.to_dict() for name, score in self.topic_scores.items()},
            "attempts": [attempt.to_dict() for attempt in self.attempts],
            "rounds": [item.to_dict() for item in self.rounds],
            "current_round": self.current_round,
            "interview_status": self.interview_status.value,
            "started_at": _dt_to_str(self.started_at),
            "last_activity_at": _dt_to_str(self.last_activity_at),
            "created_at": _dt_to_str(self.created_at),
            "updated_at": _dt_to_str(self.updated_at),
            "time_spent_seconds": self.time_spent_seconds,
            "strong_topics": list(self.strong_topics),
            "weak_topics": list(self.weak_topics),
            "average_time_per_question": self.average_time_per_question,
            "question_index": self.question_index,
            "violation_count": self.violation_count,
            "processed_event_ids": list(self.processed_event_ids),
            "pending_code_attempts": dict(self.pending_code_attempts),
            "sequence_violations": [dict(item) for item in self.sequence_violations],
            "ended_reason": self.ended_reason,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "InterviewSession":
        return cls(
            id=str(data["id"]),
            mode=InterviewMode(data["mode"]),
            user_id=str(data.get("user_id") or ""),
            user_name=str(data["user_name"]),
            selected_topics=[str(item) for item in data["selected_topics"]],
            current_topic=data.get("current_topic"),
            questions_attempted=int(data["questions_attempted"]),
            questions_correct=int(data["questions_correct"]),
            total_score=float(data["total_score"]),
            max_possible_score=float(data["max_possible_score"]),
            topic_scores={
                str(name): TopicScore.from_dict(value)
                for name, value in dict(data.get("topic_scores") or {}).items()
            },
            attempts=[QuestionAttempt.from_dict(item) for item in list(data.get("attempts") or [])],
            rounds=[InterviewRound.from_dict(item) for item in list(data.get("rounds") or [])],
            current_round=int(data.get("current_round") or 0),
            interview_status=InterviewStatus(data["interview_status"]),
            started_at=_dt_from_str(data["started_at"]),
            last_activity_at=_dt_from_str(data["last_activity_at"]),
            created_at=_dt_from_str(data["created_at"]),
            updated_at=_dt_from_str(data["updated_at"]),
            time_spent_seconds=int(data.get("time_spent_seconds") or 0),
            strong_topics=[str(item) for item in list(data.get("strong_topics") or [])],
            weak_topics=[str(item) for item in list(data.get("weak_topics") or [])],
            average_time_per_question=int(data.get("average_time_per_question") or 0),
            question_index=int(data.get("question_index") or 0),
            violation_count=int(data.get("violation_count") or 0),
            processed_event_ids=[str(item) for item in list(data.get("processed_event_ids") or [])],
            pending_code_attempts={
                str(k): str(v) for k, v in dict(data.get("pending_code_attempts") or {}).items()
            },
            sequence_violations=[dict(item) for item in list(data.get("sequence_violations") or [])],
            ended_reason=data.get("ended_reason"),
        )
