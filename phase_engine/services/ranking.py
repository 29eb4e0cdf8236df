"""
ranking.py - Cross-subject global score and cohort ranking

Global score for a phase:
- best attempt (max percentage) per canonical subject
- Naturales subjects (Biologia, Quimica, Física) share 100 points: pct/100 * 100/3
- every other subject is worth 100 points: pct/100 * 100
- summed and rounded to 2 decimals

Ranking is advisory: lookup failures degrade to "no rank" instead of raising.
"""

import asyncio
import logging
from typing import Dict, Iterable, List, Optional, Tuple, Union

from phase_engine.config import settings
from phase_engine.models.phase import ExamResult, RankingResult
from phase_engine.services.directory import StudentDirectory
from phase_engine.services.result_store import ResultStoreAdapter
from phase_engine.subjects import NATURALES, Phase, Subject, parse_phase, try_normalize_subject

logger = logging.getLogger(__name__)

SUBJECT_POINTS = 100.0
NATURALES_POINTS = 100.0 / 3


def best_subject_percentages(results: Iterable[ExamResult]) -> Dict[Subject, float]:
    """Highest percentage per canonical subject. Unknown subjects are skipped."""
    best: Dict[Subject, float] = {}
    for result in results:
        subject = try_normalize_subject(result.subject)
        if subject is None:
            logger.warning("Skipping result %s with unrecognized subject %r", result.exam_id, result.subject)
            continue
        pct = result.percentage()
        if subject not in best or pct > best[subject]:
            best[subject] = pct
    return best


def calculate_global_score(results: Iterable[ExamResult]) -> float:
    total = 0.0
    for subject, pct in best_subject_percentages(results).items():
        points = NATURALES_POINTS if subject in NATURALES else SUBJECT_POINTS
        total += pct / 100 * points
    return round(total, 2)


class RankingAggregator:
    def __init__(
        self,
        results: ResultStoreAdapter,
        directory: StudentDirectory,
        concurrency: Optional[int] = None,
    ):
        self.results = results
        self.directory = directory
        self.concurrency = concurrency or settings.ranking_concurrency

    async def student_phase_score(self, student_id: str, phase: Phase) -> float:
        return calculate_global_score(await self.results.get_completed_results(student_id, phase))

    async def fetch_student_ranking(
        self,
        user_id: str,
        phase: Union[str, Phase],
        current_student_score: Optional[float] = None,
    ) -> RankingResult:
        """Rank of user_id among active classmates of the same grade.

        Students with a score of 0 are left out of the ranking but still
        counted in total_in_grade. Equal scores are ordered by student id.
        """
        empty = RankingResult(student_id=user_id, rank=None, total_in_phase=0, total_in_grade=0)
        try:
            phase = parse_phase(phase)
        except ValueError as exc:
            logger.warning("Ranking requested for invalid phase: %s", exc)
            return empty

        try:
            user = await self.directory.get_user_by_id(user_id)
            if user is None or not (user.institution_id and user.campus_id and user.grade_id):
                return empty
            classmates = await self.directory.get_filtered_students(
                user.institution_id, user.campus_id, user.grade_id, is_active=True,
            )
        except Exception as e:
            logger.error("Error loading cohort for ranking of %s: %s", user_id, e)
            return empty

        semaphore = asyncio.Semaphore(self.concurrency)

        async def score_of(student_id: str) -> Tuple[str, float]:
            if student_id == user_id and current_student_score is not None:
                return student_id, float(current_student_score)
            async with semaphore:
                try:
                    return student_id, await self.student_phase_score(student_id, phase)
                except Exception as e:
                    logger.warning("Could not score %s for %s ranking: %s", student_id, phase.value, e)
                    return student_id, 0.0

        scored: List[Tuple[str, float]] = await asyncio.gather(*(score_of(s.id) for s in classmates))
        ranked = sorted((pair for pair in scored if pair[1] > 0), key=lambda pair: (-pair[1], pair[0]))

        rank = next((i + 1 for i, (sid, _) in enumerate(ranked) if sid == user_id), None)
        return RankingResult(
            student_id=user_id,
            rank=rank,
            total_in_phase=len(ranked),
            total_in_grade=len(classmates),
        )
