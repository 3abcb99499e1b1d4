"""
[SYSTEM] messages handed to the dialogue agent so it can react in natural
language to things that happen outside the conversation.
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass, field
from threading import Lock
import time

from core import config


@dataclass(frozen=True)
class Directive:
    kind: str
    text: str
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> dict:
        return {"kind": self.kind, "text": self.text, "created_at": self.created_at}


def fullscreen_entered() -> str:
    return (
        "[SYSTEM] Fullscreen mode activated. Remind the user they are now in fullscreen mode "
        "and tab switches will be monitored. Begin the interview."
    )


def violation_warning(kind: str, count: int, final_warning_at: int = config.PROCTOR_FINAL_WARNING_AT) -> str:
    action = "exited fullscreen" if kind == "fullscreen_exit" else "switched tabs"
    if count > final_warning_at:
        return (
            f"[SYSTEM] User has {action} again after the final warning ({count} violations). "
            "The interview has been terminated. Inform the user politely and show the final score."
        )
    if count == final_warning_at:
        return (
            f"[SYSTEM] User has {action} {count} times. Issue a FINAL WARNING that one more "
            "violation will terminate the interview. This is serious."
        )
    remaining = final_warning_at - count
    return (
        f"[SYSTEM] User {action} (Warning #{count}). Issue a warning that staying in fullscreen "
        f"is required. {remaining} warnings remaining before interview termination."
    )


def question_timeout(question_id: str | None, topic: str = "") -> str:
    label = question_id or topic or "the current question"
    return (
        f'[SYSTEM] User ran out of time for question "{label}". Award 0 marks for this question. '
        "Briefly acknowledge the timeout and IMMEDIATELY proceed to the next question. "
        "Do not dwell on the missed question."
    )


def summary_due(questions_completed: int) -> str:
    return (
        f"[SYSTEM] {questions_completed} questions have been completed. The next step is question "
        f"{config.QUESTIONS_PER_SESSION}: call endInterview and show the ScoreCard with the final results."
    )


def sequence_violation(position: int, expected: list[str], actual: str) -> str:
    if "summary" in expected:
        return (
            "[SYSTEM] All scored questions are already done. Do not ask more questions; "
            "show the ScoreCard now."
        )
    return (
        f"[SYSTEM] Question {position} of {config.QUESTIONS_PER_SESSION} should have been "
        f"{' or '.join(expected)}, but a {actual} question was completed. Follow the mandatory "
        "question sequence from here on."
    )


class DirectiveQueue:
    def __init__(self, maxlen: int = 50):
        self._lock = Lock()
        self._items: deque[Directive] = deque(maxlen=max(1, int(maxlen)))

    def push(self, kind: str, text: str) -> Directive:
        directive = Directive(kind=str(kind), text=str(text))
        with self._lock:
            self._items.append(directive)
        return directive

    def drain(self) -> list[Directive]:
        with self._lock:
            items = list(self._items)
            self._items.clear()
        return items

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)
