import threading

import pytest
from pydantic import ValidationError

from core.state import QuestionType
from orchestrator.events.bus import SessionEventBus
from orchestrator.events.contracts import (
    CodeSubmitted,
    MatchCompleted,
    QuizCompleted,
    TheoryScoreRecorded,
    parse_event,
)
from orchestrator.events.listener import CODE_TOPIC, CompletionEventListener, normalize
from orchestrator.scoring.aggregator import AttemptRecord, QuizRecord
from orchestrator.session.errors import InvalidContribution


@pytest.fixture
def wired(store):
    bus = SessionEventBus(scope="pytest")
    listener = CompletionEventListener(store, bus)
    listener.attach()
    scored = []
    bus.subscribe("question-scored", scored.append)
    yield store, bus, scored
    listener.detach()
    bus.close()


def test_parse_event_accepts_widget_camel_case():
    event = parse_event(
        {
            "event": "quiz-complete",
            "topic": "DSA",
            "totalQuestions": 5,
            "correctAnswers": 4,
            "wrongAnswers": 1,
            "percentage": 80,
            "difficulty": "medium",
            "timeSpent": 120,
        }
    )
    assert isinstance(event, QuizCompleted)
    assert event.total_questions == 5
    assert event.time_spent == 120


def test_parse_event_rejects_malformed_payloads():
    with pytest.raises(ValidationError):
        parse_event({"event": "quiz-complete", "topic": "DSA", "totalQuestions": 0, "correctAnswers": 0})
    with pytest.raises(ValidationError):
        parse_event({"event": "not-a-widget"})


def test_normalize_theory_uses_fixed_rating_scale():
    record = normalize(TheoryScoreRecorded(topic="React", score=3, maxScore=10, isCorrect=False))
    assert record == AttemptRecord(
        topic="React",
        type=QuestionType.THEORY,
        is_correct=True,
        score=3,
        max_score=5,
        time_spent=30,
        question="",
    )


def test_normalize_match_counts_pairs():
    record = normalize(MatchCompleted(score=3, totalQuestions=5, percentage=60))
    assert record == QuizRecord(
        topic="General",
        total_questions=5,
        correct_answers=3,
        wrong_answers=2,
        percentage=60,
        time_spent=60,
    )


def test_normalize_code_submission_is_placeholder():
    record = normalize(CodeSubmitted(title="Two Sum", language="python"))
    assert record.topic == CODE_TOPIC
    assert record.score == 0
    assert record.max_score == 10
    assert record.is_correct is False
    assert record.time_spent == 120


def test_events_are_applied_and_announced(wired):
    store, bus, scored = wired
    store.start_session("practice", "Asha", ["DSA", "SQL"])

    [outcome] = bus.publish(parse_event({"event": "quiz-complete", "topic": "DSA", "totalQuestions": 5, "correctAnswers": 4}))
    assert outcome.applied
    bus.publish(parse_event({"event": "theory-score-recorded", "topic": "SQL", "score": 4}))

    session = store.session
    assert session.questions_attempted == 6
    assert session.questions_correct == 5
    assert session.total_score == 8
    assert session.max_possible_score == 10
    assert [item.question_type for item in scored] == ["mcq", "theory"]


def test_replayed_event_id_changes_nothing(wired):
    store, bus, scored = wired
    store.start_session("practice", "Asha", ["DSA"])
    payload = {"event": "quiz-complete", "eventId": "evt-7", "topic": "DSA", "totalQuestions": 3, "correctAnswers": 2}

    bus.publish(parse_event(payload))
    [outcome] = bus.publish(parse_event(payload))

    assert outcome.status == "duplicate"
    assert store.session.questions_attempted == 3
    assert len(scored) == 1


def test_event_without_session_is_dropped(wired):
    store, bus, scored = wired
    [outcome] = bus.publish(parse_event({"event": "theory-score-recorded", "topic": "SQL", "score": 2}))
    assert outcome.status == "dropped"
    assert outcome.reason == "no_active_session"
    assert scored == []


def test_code_submission_then_grade(wired):
    store, bus, scored = wired
    store.start_session("practice", "Asha", ["DSA"])

    bus.publish(parse_event({"event": "code-submitted", "title": "Two Sum", "language": "python"}))
    assert store.session.total_score == 0
    assert store.session.max_possible_score == 10

    [outcome] = bus.publish(parse_event({"event": "code-graded", "title": "Two Sum", "score": 7}))
    assert outcome.applied
    assert store.session.total_score == 7
    assert store.session.questions_correct == 1
    assert [item.question_type for item in scored] == ["coding"]


def test_invalid_contribution_propagates(wired):
    store, bus, _ = wired
    store.start_session("practice", "Asha", ["DSA"])
    with pytest.raises(InvalidContribution):
        bus.publish(parse_event({"event": "quiz-complete", "topic": "DSA", "totalQuestions": 2, "correctAnswers": 3}))


def test_interview_complete_event_closes_session(wired):
    store, bus, _ = wired
    store.start_session("interview", "Asha", ["DSA"])
    bus.publish(parse_event({"event": "interview-complete", "reason": "agent_finished"}))
    assert store.session.is_terminal
    [outcome] = bus.publish(parse_event({"event": "theory-score-recorded", "topic": "DSA", "score": 5}))
    assert outcome.status == "dropped"


def test_code_grade_without_session_is_dropped(wired):
    store, bus, _ = wired
    [outcome] = bus.publish(parse_event({"event": "code-graded", "title": "Two Sum", "score": 7}))
    assert outcome.status == "dropped"
    assert outcome.reason == "no_active_session"


def test_concurrent_events_each_take_their_own_slot(wired):
    store, bus, scored = wired
    store.start_session("practice", "Asha", ["DSA"])
    barrier = threading.Barrier(2)

    def _send(n: int) -> None:
        barrier.wait()
        bus.publish(parse_event({"event": "quiz-complete", "eventId": f"evt-{n}", "topic": "DSA", "totalQuestions": 1, "correctAnswers": 1}))

    threads = [threading.Thread(target=_send, args=(n,)) for n in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=5)

    session = store.session
    assert session.question_index == 2
    # slot 2 is theory in practice mode, so exactly one of the two deviates
    assert [item["position"] for item in session.sequence_violations] == [2]
    assert sorted(item.position for item in scored) == [1, 2]
    assert sorted(item.in_sequence for item in scored) == [False, True]
