# backend/core/state.py

from enum import Enum


class InterviewMode(str, Enum):
    PRACTICE = "practice"
    TEST = "test"
    INTERVIEW = "interview"


class InterviewStatus(str, Enum):
    NOT_STARTED = "not_started"
    INTRODUCTION = "introduction"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REVIEW = "review"


class RoundStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class QuestionType(str, Enum):
    MCQ = "mcq"
    THEORY = "theory"
    CODING = "coding"
    MATCH = "match"
    WHITEBOARD = "whiteboard"


TERMINAL_STATUSES = {InterviewStatus.COMPLETED, InterviewStatus.REVIEW}
