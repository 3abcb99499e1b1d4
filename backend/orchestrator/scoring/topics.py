from dataclasses import dataclass, field

from orchestrator.session.models import TopicScore


MIN_SAMPLE_SIZE = 2
STRONG_THRESHOLD = 70
WEAK_THRESHOLD = 50


@dataclass
class TopicAnalysis:
    strong: list[str] = field(default_factory=list)
    weak: list[str] = field(default_factory=list)
    needs_work: list[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "strong": list(self.strong),
            "weak": list(self.weak),
            "needs_work": list(self.needs_work),
        }


def classify_percentage(percentage: float) -> str:
    if percentage >= STRONG_THRESHOLD:
        return "strong"
    if percentage < WEAK_THRESHOLD:
        return "weak"
    return "needs_work"


def analyze_topics(topic_scores: dict[str, TopicScore]) -> TopicAnalysis:
    """
    Band topics by accuracy. Topics with fewer than two answered
    questions are left out entirely.
    """
    scored = [
        (name, score)
        for name, score in dict(topic_scores or {}).items()
        if int(score.total) >= MIN_SAMPLE_SIZE
    ]
    scored.sort(key=lambda item: item[1].percentage, reverse=True)

    analysis = TopicAnalysis()
    for name, score in scored:
        band = classify_percentage(score.percentage)
        if band == "strong":
            analysis.strong.append(name)
        elif band == "weak":
            analysis.weak.append(name)
        else:
            analysis.needs_work.append(name)
    return analysis
