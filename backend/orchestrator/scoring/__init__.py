from orchestrator.scoring.aggregator import (
    AttemptRecord,
    QuizRecord,
    apply_attempt,
    apply_code_grade,
    apply_quiz_result,
    merge_topic_score,
)
from orchestrator.scoring.topics import TopicAnalysis, analyze_topics

__all__ = [
    "AttemptRecord",
    "QuizRecord",
    "TopicAnalysis",
    "analyze_topics",
    "apply_attempt",
    "apply_code_grade",
    "apply_quiz_result",
    "merge_topic_score",
]
