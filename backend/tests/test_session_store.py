import json

import pytest

from core.state import InterviewMode, InterviewStatus, QuestionType, RoundStatus
from orchestrator import system_metrics
from orchestrator.scoring.aggregator import AttemptRecord, QuizRecord
from orchestrator.session.errors import (
    DuplicateEvent,
    InvalidContribution,
    NoActiveSession,
    RoundOrderViolation,
    SessionClosed,
)
from orchestrator.session.repository import InMemorySessionRepository
from orchestrator.session.store import SessionStore


def test_start_session_persists_introduction_state(store, repo):
    session = store.start_session(InterviewMode.PRACTICE, "Asha", ["DSA", "SQL"])

    assert session.interview_status == InterviewStatus.INTRODUCTION
    assert session.current_topic == "DSA"
    assert [item.topic for item in session.rounds] == ["DSA", "SQL"]
    assert all(item.status == RoundStatus.PENDING for item in session.rounds)

    stored = json.loads(repo.raw())
    assert stored["id"] == session.id
    assert stored["mode"] == "practice"


def test_start_session_requires_name_and_topics(store):
    with pytest.raises(ValueError):
        store.start_session("practice", "  ", ["DSA"])
    with pytest.raises(ValueError):
        store.start_session("practice", "Asha", [])
    assert store.session is None


def test_contribution_without_session_raises(store):
    with pytest.raises(NoActiveSession):
        store.record_quiz_results(QuizRecord(topic="DSA", total_questions=3, correct_answers=1))


def test_every_mutation_is_persisted_and_observed(store, repo):
    seen = []
    store.start_session("test", "Asha", ["DSA"])
    unsubscribe = store.subscribe(seen.append)

    store.record_quiz_results(QuizRecord(topic="DSA", total_questions=5, correct_answers=4))
    assert json.loads(repo.raw())["questions_attempted"] == 5
    assert seen[-1].questions_attempted == 5

    unsubscribe()
    store.record_attempt(AttemptRecord(topic="DSA", type=QuestionType.THEORY, is_correct=True, score=4, max_score=5))
    assert len(seen) == 1
    assert json.loads(repo.raw())["questions_attempted"] == 6


def test_rounds_progress_in_order_and_complete_session(store):
    store.start_session("interview", "Asha", ["DSA", "SQL"])

    session = store.start_round("DSA", QuestionType.MCQ)
    assert session.interview_status == InterviewStatus.IN_PROGRESS
    assert session.rounds[0].status == RoundStatus.IN_PROGRESS

    session = store.complete_round(7, 10)
    assert session.current_round == 1
    assert session.current_topic == "SQL"
    assert session.rounds[0].status == RoundStatus.COMPLETED
    assert session.rounds[0].score == 7

    session = store.complete_round(4, 10, round_index=1)
    assert session.interview_status == InterviewStatus.COMPLETED
    assert session.current_topic is None
    assert session.ended_reason == "rounds_completed"


def test_out_of_order_round_completion_is_rejected(store):
    store.start_session("interview", "Asha", ["DSA", "SQL", "React"])
    with pytest.raises(RoundOrderViolation) as excinfo:
        store.complete_round(5, 10, round_index=2)
    assert excinfo.value.current_round == 0
    assert excinfo.value.requested_round == 2
    assert store.session.rounds[2].status == RoundStatus.PENDING


def test_round_cannot_start_twice(store):
    store.start_session("interview", "Asha", ["DSA"])
    store.start_round("DSA")
    with pytest.raises(RoundOrderViolation):
        store.start_round("DSA")


def test_round_score_out_of_range_is_rejected(store):
    store.start_session("interview", "Asha", ["DSA"])
    with pytest.raises(InvalidContribution):
        store.complete_round(11, 10)


def test_restore_returns_saved_session(records, clock):
    first = SessionStore(InMemorySessionRepository("k", records=records), now_fn=clock)
    started = first.start_session("practice", "Asha", ["DSA"])
    first.record_quiz_results(QuizRecord(topic="DSA", total_questions=2, correct_answers=2))

    second = SessionStore(InMemorySessionRepository("k", records=records), now_fn=clock)
    restored = second.restore("practice")
    assert restored is not None
    assert restored.id == started.id
    assert restored.topic_scores["DSA"].percentage == 100
    assert restored.started_at == started.started_at


def test_restore_with_mode_mismatch_discards(records, clock):
    first = SessionStore(InMemorySessionRepository("k", records=records), now_fn=clock)
    first.start_session("test", "Asha", ["DSA"])

    second = SessionStore(InMemorySessionRepository("k", records=records), now_fn=clock)
    assert second.restore("practice") is None
    assert "k" not in records


def test_restore_of_corrupt_record_discards(records, clock):
    records["k"] = "{not json"
    store = SessionStore(InMemorySessionRepository("k", records=records), now_fn=clock)
    assert store.restore("practice") is None
    assert "k" not in records

    records["k"] = json.dumps({"id": "x"})
    assert store.restore() is None
    assert "k" not in records


class _FailingRepository:
    key = "failing"

    def save(self, session):
        raise OSError("disk full")

    def load(self, mode=None):
        return None

    def clear(self):
        return None


def test_persist_failure_keeps_memory_state(clock):
    store = SessionStore(_FailingRepository(), now_fn=clock)
    before = system_metrics.get_metrics_snapshot()["persist_failures"]

    store.start_session("practice", "Asha", ["DSA"])
    store.record_quiz_results(QuizRecord(topic="DSA", total_questions=3, correct_answers=2))

    assert store.session.questions_correct == 2
    assert system_metrics.get_metrics_snapshot()["persist_failures"] >= before + 2


def test_end_session_is_idempotent(store, repo):
    seen = []
    store.start_session("practice", "Asha", ["DSA"])
    store.subscribe(seen.append)

    store.end_session()
    store.end_session()

    assert store.session is None
    assert repo.raw() is None
    assert seen == [None]


def test_duplicate_event_id_is_rejected(store):
    store.start_session("practice", "Asha", ["DSA"])
    record = QuizRecord(topic="DSA", total_questions=3, correct_answers=1)
    store.record_quiz_results(record, event_id="evt-1")
    with pytest.raises(DuplicateEvent):
        store.record_quiz_results(record, event_id="evt-1")
    assert store.session.questions_attempted == 3
    assert store.has_processed("evt-1")


def test_code_placeholder_is_reconciled(store):
    store.start_session("practice", "Asha", ["DSA"])
    record = AttemptRecord(topic="Coding", type=QuestionType.CODING, is_correct=False, score=0, max_score=10)
    attempt = store.record_code_submission(record, title="Two Sum")

    session = store.session
    assert session.pending_code_attempts == {attempt.id: "Two Sum"}
    assert session.total_score == 0
    assert session.max_possible_score == 10

    session = store.reconcile_code_attempt(score=4, max_score=5, title="Two Sum")
    assert session.total_score == 8
    assert session.questions_correct == 1
    assert session.pending_code_attempts == {}
    assert session.topic_scores["Coding"].correct == 1


def test_reconcile_without_placeholder_is_rejected(store):
    store.start_session("practice", "Asha", ["DSA"])
    with pytest.raises(InvalidContribution):
        store.reconcile_code_attempt(score=5, max_score=10, title="Missing")


def test_completed_session_rejects_contributions(store):
    store.start_session("practice", "Asha", ["DSA"])
    session = store.complete_interview(reason="agent_finished")
    assert session.interview_status == InterviewStatus.COMPLETED
    assert session.ended_reason == "agent_finished"

    with pytest.raises(SessionClosed):
        store.record_quiz_results(QuizRecord(topic="DSA", total_questions=1, correct_answers=1))

    # completing again leaves the first reason in place
    assert store.terminate("proctoring_violation").ended_reason == "agent_finished"
    assert store.open_review().interview_status == InterviewStatus.REVIEW


def test_review_requires_completed_session(store):
    store.start_session("practice", "Asha", ["DSA"])
    with pytest.raises(RoundOrderViolation):
        store.open_review()


def test_context_lists_topic_performance(store):
    assert store.context().startswith("No active session. Available topics:")
    store.start_session("practice", "Asha", ["DSA", "SQL"])
    store.record_quiz_results(QuizRecord(topic="DSA", total_questions=5, correct_answers=4))

    text = store.context()
    assert "Mode: PRACTICE" in text
    assert "DSA: 4/5 (80%)" in text
    assert "Total Score: 4/5 (80%)" in text
    assert "=== PRACTICE MODE INSTRUCTIONS ===" in text


def test_set_current_topic_and_mark_processed(store, clock):
    store.start_session("practice", "Asha", ["DSA", "SQL"])
    clock.advance(30)

    session = store.set_current_topic("SQL")
    assert session.current_topic == "SQL"
    assert session.last_activity_at == clock.now

    store.mark_event_processed("evt-timeout-1")
    assert store.has_processed("evt-timeout-1")
    with pytest.raises(DuplicateEvent):
        store.mark_event_processed("evt-timeout-1")


def test_scored_contribution_and_its_slot_share_one_commit(store, repo):
    store.start_session("practice", "Asha", ["DSA"])
    seen = []
    store.subscribe(seen.append)

    first = store.record_scored(QuizRecord(topic="DSA", total_questions=1, correct_answers=1), question_type="mcq")
    second = store.record_scored(QuizRecord(topic="DSA", total_questions=1, correct_answers=0), question_type="mcq")

    assert first.check.ok
    assert (second.check.ok, second.check.position, second.check.reason) == (False, 2, "unexpected_type")
    # one notification per contribution, each already carrying its slot
    assert [(item.questions_attempted, item.question_index) for item in seen] == [(1, 1), (2, 2)]
    stored = json.loads(repo.raw())
    assert stored["question_index"] == 2
    assert [item["position"] for item in stored["sequence_violations"]] == [2]


def test_whiteboard_question_takes_a_slot_without_a_score(store):
    store.start_session("practice", "Asha", ["DSA"])
    result = store.advance_question("whiteboard")

    assert result.session.question_index == 1
    assert result.session.questions_attempted == 0
    assert result.check.expected == ("mcq",)
    assert store.session.sequence_violations == [result.check.to_violation()]


def test_restore_keeps_live_session(store, repo):
    started = store.start_session("interview", "Asha", ["DSA"])
    repo.clear()

    assert store.restore() is started
    assert store.session is started
