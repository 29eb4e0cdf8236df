"""Phase-1 per-topic breakdown of a subject exam.

A topic is a weakness when its percentage is below the mean of the subject's
topic percentages. The weakest topic becomes the primary weakness that the
Phase-2 quiz concentrates on.
"""

import logging
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from phase_engine.db import phase_records as pr
from phase_engine.models.phase import ExamResult, Phase1Analysis, QuestionDetail, TopicPerformance
from phase_engine.models.result import Result, failure, success
from phase_engine.subjects import Subject, normalize_subject, topic_code

logger = logging.getLogger(__name__)

DEFAULT_TOPIC = "Sin tema"


def analysis_id(student_id: str, subject: Subject) -> str:
    return f"{student_id}_{subject.value}_phase1"


def topic_counts(details: Iterable[QuestionDetail]) -> Dict[str, Tuple[int, int]]:
    """Map topic -> (correct, total). Questions without a topic go to "Sin tema"."""
    counts: Dict[str, list] = {}
    for detail in details:
        topic = (detail.topic or "").strip() or DEFAULT_TOPIC
        bucket = counts.setdefault(topic, [0, 0])
        bucket[1] += 1
        if detail.is_correct:
            bucket[0] += 1
    return {topic: (c, t) for topic, (c, t) in counts.items()}


def analyze_exam_result(student_id: str, subject: Subject, exam_result: ExamResult) -> Phase1Analysis:
    """Pure analysis of one completed exam. Never touches the store."""
    counts = topic_counts(exam_result.question_details)

    performances = []
    for topic in sorted(counts):
        correct, total = counts[topic]
        performances.append(TopicPerformance(
            topic=topic,
            topic_code=topic_code(subject, topic),
            correct=correct,
            incorrect=total - correct,
            total=total,
            percentage=round(correct / total * 100, 2) if total > 0 else 0.0,
        ))

    scored = [tp for tp in performances if tp.total > 0]
    weaknesses, strengths = [], []
    primary = None
    if scored:
        mean = sum(tp.percentage for tp in scored) / len(scored)
        for tp in scored:
            tp.is_weakness = tp.percentage < mean
            (weaknesses if tp.is_weakness else strengths).append(tp.topic)
        if weaknesses:
            primary = min(
                (tp for tp in scored if tp.is_weakness),
                key=lambda tp: (tp.percentage, tp.topic),
            ).topic

    return Phase1Analysis(
        student_id=student_id,
        subject=subject,
        overall_score=round(exam_result.percentage(), 2),
        topic_performance=performances,
        strengths=strengths,
        weaknesses=weaknesses,
        primary_weakness=primary,
        analyzed_at=pr.utc_now(),
    )


class WeaknessAnalyzer:
    def __init__(self, db):
        self.db = db

    async def analyze_phase1_results(
        self,
        student_id: str,
        subject: Union[str, Subject],
        exam_result: Union[Dict[str, Any], ExamResult],
    ) -> Result[Phase1Analysis]:
        """Analyze a Phase-1 exam and store the analysis, replacing any earlier one."""
        try:
            subject = normalize_subject(subject)
            if not isinstance(exam_result, ExamResult):
                exam_result = ExamResult.model_validate(exam_result)
        except ValueError as exc:
            return failure(str(exc))

        analysis = analyze_exam_result(student_id, subject, exam_result)
        try:
            await pr.save_phase1_analysis(
                self.db,
                analysis_id(student_id, subject),
                student_id,
                subject.value,
                analysis.model_dump(mode="json"),
                analysis.analyzed_at,
            )
        except Exception as e:
            logger.error("Error saving Phase 1 analysis for %s/%s: %s", student_id, subject.value, e)
            return failure(f"Error analyzing Phase 1 results: {e}")

        logger.info(
            "Phase 1 analysis for %s/%s: %d weak topics, primary=%s",
            student_id, subject.value, len(analysis.weaknesses), analysis.primary_weakness,
        )
        return success(analysis)

    async def get_phase1_analysis(
        self,
        student_id: str,
        subject: Union[str, Subject],
    ) -> Result[Optional[Phase1Analysis]]:
        try:
            subject = normalize_subject(subject)
        except ValueError as exc:
            return failure(str(exc))

        try:
            data = await pr.get_phase1_analysis(self.db, analysis_id(student_id, subject))
        except Exception as e:
            logger.error("Error reading Phase 1 analysis for %s/%s: %s", student_id, subject.value, e)
            return failure(f"Error reading Phase 1 analysis: {e}")
        return success(Phase1Analysis.model_validate(data) if data else None)
