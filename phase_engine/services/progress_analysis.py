"""
progress_analysis.py - Phase-2 progress, Phase-3 ICFES results and history

Provides:
- calculate_icfes_score(percentage) -> 0-500
- calculate_final_icfes_score(subject_scores) with the Naturales block
- ProgressAnalyzer.analyze_progress(...)          Phase 1 vs Phase 2 per topic
- ProgressAnalyzer.generate_phase3_result(...)    ICFES result for one subject
- ProgressAnalyzer.get_phase3_result(...)         stored ICFES result, if any
- ProgressAnalyzer.save_performance_history(...)
- ProgressAnalyzer.get_student_history(...)
- ProgressAnalyzer.calculate_progress_indicators(...)
"""

import logging
import math
import statistics
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union

from phase_engine.db import phase_records as pr
from phase_engine.models.phase import (
    ExamResult,
    FinalIcfesScore,
    PerformanceHistory,
    Phase3Result,
    PhaseComparison,
    ProgressAnalysis,
    ProgressIndicators,
    SubjectIcfesScore,
    TopicImprovement,
    TopicPercentage,
    TopicScore,
)
from phase_engine.models.result import Result, failure, success
from phase_engine.services.weakness_analyzer import topic_counts
from phase_engine.subjects import ALL_PHASES, NATURALES, Phase, Subject, normalize_subject, parse_phase

logger = logging.getLogger(__name__)

ICFES_SCALE = 5
ICFES_MAX = 500
NATURALES_BLOCK_POINTS = 100.0
SUBJECT_POINTS = 100.0
TREND_THRESHOLD = 5.0
GOOD_PERFORMANCE_SCORE = 300
DEFAULT_RECOMMENDATIONS = ["Continúa practicando", "Revisa los temas con menor puntaje"]


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def calculate_icfes_score(percentage: float) -> int:
    """0-100 percentage to the 0-500 ICFES scale."""
    return _round_half_up(percentage * ICFES_SCALE)


def calculate_final_icfes_score(subject_scores: Iterable[Tuple[Union[str, Subject], float]]) -> FinalIcfesScore:
    """Combine per-subject percentages into the global 0-500 score.

    Naturales subjects share one 100-point block split evenly among those
    present; every other subject is its own 100-point block.
    """
    naturales: List[Tuple[Subject, float]] = []
    others: List[Tuple[Subject, float]] = []
    for name, pct in subject_scores:
        subject = normalize_subject(name)
        (naturales if subject in NATURALES else others).append((subject, float(pct)))

    detailed: List[SubjectIcfesScore] = []
    naturales_points = 0.0
    if naturales:
        per_subject = NATURALES_BLOCK_POINTS / len(naturales)
        for subject, pct in naturales:
            points = pct / 100 * per_subject
            naturales_points += points
            detailed.append(SubjectIcfesScore(
                subject=subject,
                score=_round_half_up(points * ICFES_SCALE),
                percentage=pct,
                max_possible=_round_half_up(per_subject * ICFES_SCALE),
            ))

    other_points = 0.0
    for subject, pct in others:
        other_points += pct / 100 * SUBJECT_POINTS
        detailed.append(SubjectIcfesScore(
            subject=subject,
            score=calculate_icfes_score(pct),
            percentage=pct,
            max_possible=ICFES_MAX,
        ))

    return FinalIcfesScore(
        total_score=_round_half_up(naturales_points + other_points),
        subject_scores=detailed,
        natural_sciences_score=_round_half_up(naturales_points * ICFES_SCALE) if naturales else None,
    )


def _topic_percentages(result: ExamResult) -> Dict[str, float]:
    return {
        topic: (correct / total * 100 if total > 0 else 0.0)
        for topic, (correct, total) in topic_counts(result.question_details).items()
    }


def progress_insights(subject: Subject, phase1_score: float, phase2_score: float,
                      improvements: List[TopicImprovement]) -> List[str]:
    if phase2_score > phase1_score:
        verb = "mejoró"
    elif phase2_score < phase1_score:
        verb = "bajó"
    else:
        verb = "se mantuvo"
    insights = [f"Tu puntuación en {subject.value} {verb} de {phase1_score:.1f}% a {phase2_score:.1f}%."]
    for ti in improvements:
        if ti.improvement > 0:
            insights.append(f"Mejoraste en {ti.topic}: +{ti.improvement:.1f} puntos.")
        else:
            insights.append(f"Refuerza {ti.topic}: {ti.improvement:.1f} puntos.")
    return insights


def _as_exam(result: Union[Dict[str, Any], ExamResult]) -> ExamResult:
    return result if isinstance(result, ExamResult) else ExamResult.model_validate(result)


class ProgressAnalyzer:
    def __init__(self, db):
        self.db = db

    async def analyze_progress(
        self,
        student_id: str,
        subject: Union[str, Subject],
        phase1_result: Union[Dict[str, Any], ExamResult],
        phase2_result: Union[Dict[str, Any], ExamResult],
    ) -> Result[ProgressAnalysis]:
        """Compare a Phase-2 attempt against Phase 1, topic by topic."""
        try:
            subject = normalize_subject(subject)
            first = _as_exam(phase1_result)
            second = _as_exam(phase2_result)
        except ValueError as exc:
            return failure(str(exc))

        phase1_score = round(first.percentage(), 2)
        phase2_score = round(second.percentage(), 2)
        improvement = round(phase2_score - phase1_score, 2)

        before = _topic_percentages(first)
        after = _topic_percentages(second)
        topic_changes = []
        for topic in sorted(before):
            if topic not in after:
                continue
            delta = after[topic] - before[topic]
            if delta == 0:
                continue
            topic_changes.append(TopicImprovement(
                topic=topic,
                phase1_percentage=round(before[topic], 2),
                phase2_percentage=round(after[topic], 2),
                improvement=round(delta, 2),
            ))

        analysis = ProgressAnalysis(
            student_id=student_id,
            subject=subject,
            phase1_score=phase1_score,
            phase2_score=phase2_score,
            improvement=improvement,
            has_improved=improvement > 0,
            weakness_improvement=topic_changes,
            insights=progress_insights(subject, phase1_score, phase2_score, topic_changes),
            analyzed_at=pr.utc_now(),
        )

        try:
            await pr.save_progress_analysis(
                self.db, f"{student_id}_{subject.value}_progress", student_id, subject.value,
                analysis.model_dump(mode="json"), analysis.analyzed_at,
            )
        except Exception as e:
            logger.error("Error saving progress analysis for %s/%s: %s", student_id, subject.value, e)
            return failure(f"Error analyzing progress: {e}")

        logger.info("Progress for %s/%s: %+.1f points", student_id, subject.value, improvement)
        return success(analysis)

    async def generate_phase3_result(
        self,
        student_id: str,
        subject: Union[str, Subject],
        exam_result: Union[Dict[str, Any], ExamResult],
    ) -> Result[Phase3Result]:
        try:
            subject = normalize_subject(subject)
            exam = _as_exam(exam_result)
        except ValueError as exc:
            return failure(str(exc))

        details = exam.question_details
        if details:
            percentage = sum(1 for q in details if q.is_correct) / len(details) * 100
        else:
            percentage = exam.percentage()
        icfes_score = calculate_icfes_score(percentage)

        topic_scores = [
            TopicScore(topic=topic, score=calculate_icfes_score(pct), percentage=round(pct, 2))
            for topic, pct in sorted(_topic_percentages(exam).items())
        ]
        verdict = "Buen rendimiento" if icfes_score >= GOOD_PERFORMANCE_SCORE else "Necesita mejorar"

        result = Phase3Result(
            student_id=student_id,
            subject=subject,
            icfes_score=icfes_score,
            percentage=round(percentage, 2),
            topic_scores=topic_scores,
            overall_diagnosis=f"Puntaje ICFES: {icfes_score}/{ICFES_MAX} ({percentage:.1f}%). {verdict}.",
            recommendations=list(DEFAULT_RECOMMENDATIONS),
            completed_at=pr.utc_now(),
        )

        try:
            await pr.save_phase3_result(
                self.db, f"{student_id}_{subject.value}_phase3", student_id, subject.value,
                result.model_dump(mode="json"), result.completed_at,
            )
        except Exception as e:
            logger.error("Error saving Phase 3 result for %s/%s: %s", student_id, subject.value, e)
            return failure(f"Error generating Phase 3 result: {e}")

        logger.info("ICFES result for %s/%s: %d/%d", student_id, subject.value, icfes_score, ICFES_MAX)
        return success(result)

    async def get_phase3_result(
        self,
        student_id: str,
        subject: Union[str, Subject],
    ) -> Result[Optional[Phase3Result]]:
        try:
            subject = normalize_subject(subject)
        except ValueError as exc:
            return failure(str(exc))

        try:
            data = await pr.get_phase3_result(self.db, f"{student_id}_{subject.value}_phase3")
        except Exception as e:
            logger.error("Error reading Phase 3 result for %s/%s: %s", student_id, subject.value, e)
            return failure(f"Error reading Phase 3 result: {e}")
        return success(Phase3Result.model_validate(data) if data else None)

    async def save_performance_history(
        self,
        student_id: str,
        subject: Union[str, Subject],
        phase: Union[str, Phase],
        score: float,
        icfes_score: Optional[int] = None,
        topic_performance: Optional[List[TopicPercentage]] = None,
    ) -> Result[PerformanceHistory]:
        try:
            subject = normalize_subject(subject)
            phase = parse_phase(phase)
        except ValueError as exc:
            return failure(str(exc))

        history = PerformanceHistory(
            student_id=student_id,
            subject=subject,
            phase=phase,
            score=score,
            icfes_score=icfes_score,
            completed_at=pr.utc_now(),
            topic_performance=topic_performance or [],
        )
        try:
            await pr.upsert_performance_history(self.db, {
                "id": f"{student_id}_{subject.value}_{phase.value}",
                "student_id": student_id,
                "subject": subject.value,
                "phase": phase.value,
                "score": history.score,
                "icfes_score": history.icfes_score,
                "topic_performance": [tp.model_dump() for tp in history.topic_performance],
                "completed_at": history.completed_at,
            })
        except Exception as e:
            logger.error("Error saving performance history for %s/%s: %s", student_id, subject.value, e)
            return failure(f"Error saving performance history: {e}")
        return success(history)

    async def get_student_history(
        self,
        student_id: str,
        subject: Union[str, Subject],
    ) -> Result[List[PerformanceHistory]]:
        """History entries for one subject, ordered first -> third."""
        try:
            subject = normalize_subject(subject)
        except ValueError as exc:
            return failure(str(exc))

        try:
            rows = await pr.list_performance_history(self.db, student_id, subject.value)
        except Exception as e:
            logger.error("Error reading performance history for %s/%s: %s", student_id, subject.value, e)
            return failure(f"Error reading performance history: {e}")

        history = [
            PerformanceHistory(
                student_id=r["student_id"],
                subject=subject,
                phase=r["phase"],
                score=r["score"],
                icfes_score=r.get("icfes_score"),
                completed_at=r.get("completed_at"),
                topic_performance=r.get("topic_performance") or [],
            )
            for r in rows
        ]
        history.sort(key=lambda h: ALL_PHASES.index(h.phase))
        return success(history)

    async def calculate_progress_indicators(
        self,
        student_id: str,
        subject: Union[str, Subject],
    ) -> Result[ProgressIndicators]:
        history_result = await self.get_student_history(student_id, subject)
        if not history_result.success:
            return failure(history_result.error)

        subject = normalize_subject(subject)
        history = history_result.data
        if not history:
            return success(ProgressIndicators(student_id=student_id, subject=subject))

        scores = [h.score for h in history]
        mean = statistics.fmean(scores)
        variability = statistics.pstdev(scores)

        first_score, last_score = scores[0], scores[-1]
        improvement_index = last_score - first_score if len(scores) >= 2 else 0.0
        trend = "stable"
        if len(scores) >= 2:
            if last_score > first_score + TREND_THRESHOLD:
                trend = "improving"
            elif last_score < first_score - TREND_THRESHOLD:
                trend = "declining"

        standardized = history[-1].icfes_score or _round_half_up(mean * ICFES_SCALE)
        comparisons = [
            PhaseComparison(
                phase=h.phase,
                score=h.score,
                improvement=round(h.score - history[i - 1].score, 1) if i > 0 else None,
            )
            for i, h in enumerate(history)
        ]

        return success(ProgressIndicators(
            student_id=student_id,
            subject=subject,
            standardized_score=standardized,
            improvement_index=round(improvement_index, 1),
            variability=round(variability, 1),
            trend=trend,
            phase_comparisons=comparisons,
        ))
