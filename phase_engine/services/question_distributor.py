"""Turns a Phase-1 analysis into a Phase-2 question budget.

Half of the questions (rounded down) go to weak topics, weighted by how far
each topic is from 100%; the rest are spread evenly over strengths. Rounding
uses largest remainders so the counts always add up to the requested total
and the same analysis always yields the same distribution.
"""

import logging
from fractions import Fraction
from typing import List, Optional, Union

from phase_engine.models.phase import Phase1Analysis, QuestionDistribution, TopicCount, TopicPerformance
from phase_engine.models.result import Result, failure, success
from phase_engine.services.weakness_analyzer import WeaknessAnalyzer
from phase_engine.subjects import Subject, normalize_subject

logger = logging.getLogger(__name__)

MISSING_ANALYSIS = "No Phase 1 analysis found"

WEAKNESS_SHARE = Fraction(1, 2)
GENERAL_TOPIC = "General"


def _weighted_counts(topics: List[TopicPerformance], budget: int) -> List[TopicCount]:
    """Split budget proportionally to (100 - percentage) with largest remainders."""
    if budget <= 0 or not topics:
        return [TopicCount(topic=tp.topic, count=0) for tp in topics]

    weights = [Fraction(100) - Fraction(tp.percentage).limit_denominator(10_000) for tp in topics]
    weight_sum = sum(weights)
    if weight_sum <= 0:
        # Every topic at 100%: no signal to weight by
        weights = [Fraction(1)] * len(topics)
        weight_sum = Fraction(len(topics))

    quotas = [budget * w / weight_sum for w in weights]
    counts = [int(q) for q in quotas]
    leftover = budget - sum(counts)

    order = sorted(
        range(len(topics)),
        key=lambda i: (-(quotas[i] - counts[i]), topics[i].percentage, topics[i].topic),
    )
    for i in order[:leftover]:
        counts[i] += 1

    return [TopicCount(topic=tp.topic, count=c) for tp, c in zip(topics, counts)]


def _even_counts(topics: List[str], budget: int) -> List[TopicCount]:
    if not topics:
        return []
    base, extra = divmod(max(budget, 0), len(topics))
    return [TopicCount(topic=t, count=base + (1 if i < extra else 0)) for i, t in enumerate(topics)]


def compute_question_distribution(analysis: Phase1Analysis, total_questions: int) -> QuestionDistribution:
    """Deterministic Phase-2 distribution. Counts always sum to total_questions."""
    if total_questions < 0:
        raise ValueError(f"total_questions must be non-negative, got {total_questions}")

    scored = sorted((tp for tp in analysis.topic_performance if tp.total > 0), key=lambda tp: tp.topic)
    weak = [tp for tp in scored if tp.is_weakness]
    strong = [tp.topic for tp in scored if not tp.is_weakness]

    if weak and strong:
        weak_budget = int(total_questions * WEAKNESS_SHARE)
    elif weak:
        weak_budget = total_questions
    else:
        weak_budget = 0
    strength_budget = total_questions - weak_budget

    if not weak and not strong:
        strong = [GENERAL_TOPIC]

    weakness_distribution = _weighted_counts(weak, weak_budget)
    strength_distribution = _even_counts(strong, strength_budget)

    primary = analysis.primary_weakness if weak else None

    return QuestionDistribution(
        subject=analysis.subject,
        total_questions=total_questions,
        primary_weakness=primary,
        other_topics=[tp.topic for tp in weak if tp.topic != primary] + strong,
        primary_weakness_count=weak_budget,
        other_topics_count=strength_budget,
        weakness_distribution=weakness_distribution,
        strength_distribution=strength_distribution,
    )


class QuestionDistributor:
    def __init__(self, analyzer: WeaknessAnalyzer, default_total: int = 25):
        self.analyzer = analyzer
        self.default_total = default_total

    async def generate_phase2_distribution(
        self,
        student_id: str,
        subject: Union[str, Subject],
        total_questions: Optional[int] = None,
    ) -> Result[QuestionDistribution]:
        total = self.default_total if total_questions is None else total_questions
        if total < 0:
            return failure(f"total_questions must be non-negative, got {total}")
        try:
            subject = normalize_subject(subject)
        except ValueError as exc:
            return failure(str(exc))

        analysis = await self.analyzer.get_phase1_analysis(student_id, subject)
        if not analysis.success:
            return failure(analysis.error)
        if analysis.data is None:
            return failure(f"{MISSING_ANALYSIS} for {student_id} in {subject.value}")

        distribution = compute_question_distribution(analysis.data, total)
        logger.info(
            "Phase 2 distribution for %s/%s: %d questions, %d on weak topics (primary %s)",
            student_id, subject.value, total,
            distribution.primary_weakness_count, distribution.primary_weakness,
        )
        return success(distribution)
