"""
Fixed 15-question schedule each mode must follow.

The dialogue agent decides question content; this module only describes
which question format belongs in which slot so the event stream can be
checked against it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from core import config
from core.state import InterviewMode, QuestionType


SUMMARY = "summary"

MCQ = frozenset({QuestionType.MCQ})
THEORY = frozenset({QuestionType.THEORY})
CODING = frozenset({QuestionType.CODING})
MATCH = frozenset({QuestionType.MATCH})
WHITEBOARD_OR_CODING = frozenset({QuestionType.WHITEBOARD, QuestionType.CODING})

_STANDARD_SEQUENCE = (
    MCQ, THEORY, CODING, THEORY, MCQ,
    MATCH, THEORY, CODING, THEORY, MCQ,
    WHITEBOARD_OR_CODING, THEORY, CODING, THEORY,
)

_TEST_SEQUENCE = (
    MCQ, THEORY, THEORY, CODING, MCQ,
    THEORY, MATCH, THEORY, CODING, MCQ,
    THEORY, WHITEBOARD_OR_CODING, THEORY, CODING,
)

# the final slot of every schedule is the score summary
MODE_SEQUENCES: dict[InterviewMode, tuple[frozenset, ...]] = {
    InterviewMode.PRACTICE: _STANDARD_SEQUENCE,
    InterviewMode.TEST: _TEST_SEQUENCE,
    InterviewMode.INTERVIEW: _STANDARD_SEQUENCE,
}

SCORED_SLOTS = config.QUESTIONS_PER_SESSION - 1


@dataclass(frozen=True)
class SequenceCheck:
    position: int
    expected: tuple[str, ...]
    actual: str
    ok: bool
    reason: str = ""

    def to_violation(self) -> dict:
        return {
            "position": self.position,
            "expected": list(self.expected),
            "actual": self.actual,
            "reason": self.reason,
        }


def expected_slot(mode: InterviewMode | str, position: int) -> Optional[frozenset]:
    """Allowed question types for a 1-based slot; None for the summary slot or beyond."""
    sequence = MODE_SEQUENCES[InterviewMode(mode)]
    if position < 1 or position > len(sequence):
        return None
    return sequence[position - 1]


def slot_labels(allowed: Optional[frozenset]) -> tuple[str, ...]:
    if allowed is None:
        return (SUMMARY,)
    return tuple(sorted(item.value for item in allowed))


def check(mode: InterviewMode | str, position: int, question_type: QuestionType | str) -> SequenceCheck:
    actual = QuestionType(question_type)
    if position > SCORED_SLOTS:
        return SequenceCheck(
            position=position,
            expected=(SUMMARY,),
            actual=actual.value,
            ok=False,
            reason="schedule_exhausted",
        )

    allowed = expected_slot(mode, position)
    if allowed is not None and actual in allowed:
        return SequenceCheck(position=position, expected=slot_labels(allowed), actual=actual.value, ok=True)
    return SequenceCheck(
        position=position,
        expected=slot_labels(allowed),
        actual=actual.value,
        ok=False,
        reason="unexpected_type",
    )


def progress_label(questions_completed: int) -> str:
    current = min(int(questions_completed) + 1, config.QUESTIONS_PER_SESSION)
    return f"Question {current} of {config.QUESTIONS_PER_SESSION}"


def summary_due(questions_completed: int) -> bool:
    return int(questions_completed) >= SCORED_SLOTS


def describe_schedule(mode: InterviewMode | str) -> list[str]:
    lines = []
    for position, allowed in enumerate(MODE_SEQUENCES[InterviewMode(mode)], start=1):
        lines.append(f"Q{position}: {' or '.join(slot_labels(allowed))}")
    lines.append(f"Q{config.QUESTIONS_PER_SESSION}: {SUMMARY}")
    return lines
