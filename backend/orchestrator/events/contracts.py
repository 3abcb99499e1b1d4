from __future__ import annotations

from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from core import config


class BusEvent(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore", frozen=True)

    event: str
    event_id: Optional[str] = Field(default=None, alias="eventId")


# ---------- completion events emitted by the question widgets ----------


class QuizCompleted(BusEvent):
    event: Literal["quiz-complete"] = "quiz-complete"
    topic: str = Field(min_length=1)
    total_questions: int = Field(alias="totalQuestions", ge=1)
    correct_answers: int = Field(alias="correctAnswers", ge=0)
    wrong_answers: int = Field(default=0, alias="wrongAnswers", ge=0)
    percentage: float = Field(default=0.0, ge=0, le=100)
    difficulty: str = "medium"
    time_spent: int = Field(default=0, alias="timeSpent", ge=0)


class TheoryScoreRecorded(BusEvent):
    event: Literal["theory-score-recorded"] = "theory-score-recorded"
    topic: str = Field(min_length=1)
    score: float = Field(ge=0)
    max_score: float = Field(default=config.THEORY_RATING_MAX, alias="maxScore")
    is_correct: Optional[bool] = Field(default=None, alias="isCorrect")
    time_spent: Optional[int] = Field(default=None, alias="timeSpent", ge=0)
    question: str = ""


class MatchCompleted(BusEvent):
    event: Literal["match-complete"] = "match-complete"
    topic: str = "General"
    score: int = Field(ge=0)
    total_questions: int = Field(alias="totalQuestions", ge=1)
    percentage: float = Field(default=0.0, ge=0, le=100)
    is_correct: bool = Field(default=False, alias="isCorrect")
    time_spent: Optional[int] = Field(default=None, alias="timeSpent", ge=0)


class CodeSubmitted(BusEvent):
    event: Literal["code-submitted"] = "code-submitted"
    title: str = ""
    language: str = ""
    question: str = ""
    topic: Optional[str] = None
    time_spent: Optional[int] = Field(default=None, alias="timeSpent", ge=0)


class CodeGraded(BusEvent):
    event: Literal["code-graded"] = "code-graded"
    title: Optional[str] = None
    attempt_id: Optional[str] = Field(default=None, alias="attemptId")
    score: float = Field(ge=0)
    max_score: float = Field(default=config.CODE_RATING_MAX, alias="maxScore", gt=0)


class InterviewCompleted(BusEvent):
    event: Literal["interview-complete"] = "interview-complete"
    reason: str = "completed"
    final_score: Optional[float] = Field(default=None, alias="finalScore")
    total_questions: Optional[int] = Field(default=None, alias="totalQuestions")


class TheoryQuestionTimeout(BusEvent):
    event: Literal["theory-question-timeout"] = "theory-question-timeout"
    id: Optional[str] = None
    topic: str = ""
    question: str = ""
    time_limit: Optional[float] = Field(default=None, alias="timeLimit")


class FullscreenExitDetected(BusEvent):
    event: Literal["fullscreen-exit-detected"] = "fullscreen-exit-detected"
    count: Optional[int] = None


CompletionEvent = Annotated[
    Union[
        QuizCompleted,
        TheoryScoreRecorded,
        MatchCompleted,
        CodeSubmitted,
        CodeGraded,
        InterviewCompleted,
        TheoryQuestionTimeout,
        FullscreenExitDetected,
    ],
    Field(discriminator="event"),
]

_completion_adapter = TypeAdapter(CompletionEvent)

SCORED_EVENTS = ("quiz-complete", "theory-score-recorded", "match-complete", "code-submitted")
COMPLETION_EVENTS = SCORED_EVENTS + ("code-graded", "interview-complete")


def parse_event(payload: dict) -> BusEvent:
    """Validate a raw widget payload; raises pydantic.ValidationError."""
    return _completion_adapter.validate_python(dict(payload or {}))


# ---------- notifications produced inside the core ----------


class QuestionScored(BusEvent):
    event: Literal["question-scored"] = "question-scored"
    question_type: str
    topic: str
    source_event: str
    # slot check committed together with the score
    position: int
    questions_completed: int
    in_sequence: bool = True
    expected: list[str] = Field(default_factory=list)
    reason: str = ""


class SequenceViolation(BusEvent):
    event: Literal["sequence-violation"] = "sequence-violation"
    position: int
    expected: list[str]
    actual: str
    reason: str


class SummaryDue(BusEvent):
    event: Literal["summary-due"] = "summary-due"
    questions_completed: int


class FullscreenEntered(BusEvent):
    event: Literal["fullscreen-entered"] = "fullscreen-entered"


class ProctorViolation(BusEvent):
    event: Literal["proctor-violation"] = "proctor-violation"
    kind: str
    count: int
    level: str
    remaining: int


class ProctorWarningCleared(BusEvent):
    event: Literal["proctor-warning-cleared"] = "proctor-warning-cleared"
    count: int
