"""
Plain-text session summaries for the dialogue agent, regenerated on demand.
"""

from __future__ import annotations

from typing import Optional

from core import config
from core.state import InterviewMode, InterviewStatus, RoundStatus
from orchestrator.sequencer import contract
from orchestrator.session.models import InterviewSession


RECENT_ATTEMPTS = 5
SLOW_ANSWER_SEC = 60
TEST_QUESTIONS_PER_TOPIC = 4
TEST_TOPIC_COVERAGE = 3


def _num(value: float) -> str:
    value = float(value)
    if value.is_integer():
        return str(int(value))
    return f"{value:.1f}"


def _join(items: list[str], fallback: str) -> str:
    return ", ".join(items) if items else fallback


def build_ai_context(session: Optional[InterviewSession], available_topics: Optional[list[str]] = None) -> str:
    if session is None:
        topics = available_topics if available_topics is not None else config.AVAILABLE_TOPICS
        return f"No active session. Available topics: {', '.join(topics)}"

    topic_lines = "\n".join(
        f"{topic}: {score.correct}/{score.total} ({score.percentage}%)"
        for topic, score in session.topic_scores.items()
    ) or "No topic data yet"

    attempt_lines = "\n".join(
        f"- {attempt.topic} ({attempt.type.value}): "
        f"{'✓ Correct' if attempt.is_correct else '✗ Incorrect'} - {_num(attempt.score)}/{_num(attempt.max_score)}"
        for attempt in session.attempts[-RECENT_ATTEMPTS:]
    ) or "No attempts yet"

    return f"""
=== INTERVIEW SESSION CONTEXT ===
Mode: {session.mode.value.upper()}
User: {session.user_name}
Session ID: {session.id}

=== PROGRESS ===
{contract.progress_label(session.question_index)}
Questions Attempted: {session.questions_attempted}
Questions Correct: {session.questions_correct}
Total Score: {_num(session.total_score)}/{_num(session.max_possible_score)} ({session.score_percentage}%)
Average Time Per Question: {session.average_time_per_question}s

=== TOPICS ===
Selected Topics: {', '.join(session.selected_topics)}
Current Topic: {session.current_topic or 'None'}
Strong Topics: {_join(session.strong_topics, 'Not enough data yet')}
Weak Topics: {_join(session.weak_topics, 'Not enough data yet')}

=== TOPIC PERFORMANCE ===
{topic_lines}

=== RECENT ATTEMPTS (Last {RECENT_ATTEMPTS}) ===
{attempt_lines}
""".strip()


def build_practice_context(session: Optional[InterviewSession]) -> str:
    if session is None or session.mode != InterviewMode.PRACTICE:
        return "Practice mode not active. Start a practice session to begin."

    insights: list[str] = []
    if session.weak_topics:
        insights.append(f"RECOMMENDATION: Focus on weak topics: {', '.join(session.weak_topics)}")
    if session.questions_attempted > 5 and session.average_time_per_question > SLOW_ANSWER_SEC:
        insights.append("INSIGHT: You're taking longer than average. Try to improve speed.")
    if session.strong_topics:
        insights.append(f"STRENGTH: You're doing well in: {', '.join(session.strong_topics)}")

    return f"""
{build_ai_context(session)}

=== PRACTICE MODE INSTRUCTIONS ===
You are a friendly AI tutor helping the user practice.
- Provide hints when they struggle
- Explain answers thoroughly
- Focus on weak topics: {_join(session.weak_topics, 'None identified yet')}
- Give encouragement and insights

=== INSIGHTS ===
{chr(10).join(insights) or 'Keep practicing to unlock insights!'}
""".strip()


def build_test_context(session: Optional[InterviewSession]) -> str:
    if session is None or session.mode != InterviewMode.TEST:
        return "Test mode not active. Start a test session to begin."

    remaining = [
        topic
        for topic in session.selected_topics
        if topic not in session.topic_scores or session.topic_scores[topic].total < TEST_TOPIC_COVERAGE
    ]
    return f"""
{build_ai_context(session)}

=== TEST MODE INSTRUCTIONS ===
You are a strict examiner conducting a timed test.
- Do NOT provide hints or help during the test
- Only acknowledge answers as received
- Track time and question count
- Provide detailed feedback ONLY after test completion
- Cover all selected topics evenly
- Mix question difficulty (easy, medium, hard)

=== TEST STATUS ===
Questions to cover per topic: ~3-5
Total expected questions: {len(session.selected_topics) * TEST_QUESTIONS_PER_TOPIC}
Remaining topics: {_join(remaining, 'All covered')}
""".strip()


def _next_step(session: InterviewSession) -> str:
    if session.interview_status == InterviewStatus.INTRODUCTION:
        return "Start with an introduction. Ask the candidate about their background."
    if session.is_terminal:
        if session.ended_reason == "proctoring_violation":
            return "The interview was terminated for integrity violations. Show the final score."
        return "Provide detailed feedback and final assessment."
    topic = session.current_topic
    if not topic and session.current_round < len(session.selected_topics):
        topic = session.selected_topics[session.current_round]
    return f"Continue with {topic or 'the next'} round."


def build_interview_context(session: Optional[InterviewSession]) -> str:
    if session is None or session.mode != InterviewMode.INTERVIEW:
        return "Interview mode not active. Start an interview session to begin."

    completed = [item for item in session.rounds if item.status == RoundStatus.COMPLETED]
    pending = [item for item in session.rounds if item.status == RoundStatus.PENDING]
    completed_lines = "\n".join(
        f"  ✓ {item.topic} ({item.type.value}): {_num(item.score or 0)}/{_num(item.max_score or 0)}"
        for item in completed
    )
    pending_lines = "\n".join(f"  ○ {item.topic}" for item in pending) or "All rounds completed!"
    current_round = min(session.current_round + 1, len(session.rounds))

    return f"""
{build_ai_context(session)}

=== INTERVIEW MODE INSTRUCTIONS ===
You are a professional technical interviewer.
- Be professional but friendly
- Ask follow-up questions based on answers
- Challenge the candidate appropriately
- Cover all selected topics systematically
- Provide constructive feedback at the end

=== INTERVIEW PROGRESS ===
Status: {session.interview_status.value}
Current Round: {current_round}/{len(session.rounds)}
Completed Rounds: {len(completed)}
{completed_lines}

Pending Rounds:
{pending_lines}

=== CANDIDATE ANALYSIS ===
Major Strengths: {_join(session.strong_topics, 'To be determined')}
Areas for Improvement: {_join(session.weak_topics, 'To be determined')}
Overall Performance: {session.score_percentage}%
Integrity Violations: {session.violation_count}

=== NEXT STEPS ===
{_next_step(session)}
""".strip()


_MODE_BUILDERS = {
    InterviewMode.PRACTICE: build_practice_context,
    InterviewMode.TEST: build_test_context,
    InterviewMode.INTERVIEW: build_interview_context,
}


def build_session_context(session: Optional[InterviewSession]) -> str:
    if session is None:
        return build_ai_context(None)
    return _MODE_BUILDERS[session.mode](session)
