"""
phase_integration.py - Exam-completion pipeline

When a student finishes a subject exam:
1. the attempt is stored in the canonical folder of its phase
2. the phase-specific analysis runs
   - first:  weakness analysis (feeds the Phase-2 distribution)
   - second: progress analysis against the best Phase-1 attempt
   - third:  ICFES result
3. a performance history entry is written
4. the subject is marked completed in the student's phase progress

An attempt flagged as not completed is stored but only marks the subject in
progress.

Analysis and history failures are logged and never block step 4.
"""

import logging
from typing import Any, Dict, Optional, Union

from phase_engine.models.phase import ExamResult, StudentPhaseProgress, TopicPercentage
from phase_engine.models.result import Result, failure
from phase_engine.services.directory import StudentDirectory
from phase_engine.services.progress_analysis import ProgressAnalyzer, calculate_icfes_score
from phase_engine.services.progress_tracker import StudentPhaseProgressTracker
from phase_engine.services.result_store import ResultStoreAdapter
from phase_engine.services.weakness_analyzer import WeaknessAnalyzer, topic_counts
from phase_engine.subjects import Phase, Subject, normalize_subject, parse_phase

logger = logging.getLogger(__name__)


class PhaseIntegration:
    def __init__(
        self,
        results: ResultStoreAdapter,
        directory: StudentDirectory,
        tracker: StudentPhaseProgressTracker,
        weakness: WeaknessAnalyzer,
        progress: ProgressAnalyzer,
    ):
        self.results = results
        self.directory = directory
        self.tracker = tracker
        self.weakness = weakness
        self.progress = progress

    async def _grade_of(self, user_id: str) -> Optional[str]:
        user = await self.directory.get_user_by_id(user_id)
        return user.grade_id if user else None

    async def record_exam_started(
        self,
        user_id: str,
        subject: Union[str, Subject],
        phase: Union[str, Phase],
    ) -> Result[StudentPhaseProgress]:
        """Mark a subject as in progress when the student opens its exam."""
        try:
            grade_id = await self._grade_of(user_id)
        except Exception as e:
            logger.error("Error loading user %s: %s", user_id, e)
            return failure(f"Error loading student: {e}")
        if not grade_id:
            return failure(f"No grade found for student {user_id}")
        return await self.tracker.update_student_phase_progress(user_id, grade_id, phase, subject, False)

    async def process_exam_results(
        self,
        user_id: str,
        subject: Union[str, Subject],
        phase: Union[str, Phase],
        exam_result: Union[Dict[str, Any], ExamResult],
        exam_id: Optional[str] = None,
    ) -> Result[StudentPhaseProgress]:
        try:
            phase = parse_phase(phase)
            subject = normalize_subject(subject)
            exam = exam_result if isinstance(exam_result, ExamResult) else ExamResult.model_validate(exam_result)
        except ValueError as exc:
            return failure(str(exc))

        try:
            grade_id = await self._grade_of(user_id)
        except Exception as e:
            logger.error("Error loading user %s: %s", user_id, e)
            return failure(f"Error loading student: {e}")
        if not grade_id:
            logger.error("No grade found for student %s", user_id)
            return failure(f"No grade found for student {user_id}")

        exam = exam.model_copy(update={"subject": subject.value, "phase": phase.value})
        default_id = f"{subject.value}_{phase.value}" if exam.is_complete else f"{subject.value}_{phase.value}_incomplete"
        exam_id = exam_id or exam.exam_id or default_id
        try:
            await self.results.save_exam_result(user_id, phase, exam_id, exam)
        except Exception as e:
            logger.error("Error storing exam %s for %s: %s", exam_id, user_id, e)
            return failure(f"Error storing exam result: {e}")

        if not exam.is_complete:
            # Stored for the record but ignored by lookups; the subject stays in progress
            logger.info("Exam %s for %s is not completed, subject left in progress", exam_id, user_id)
            return await self.tracker.update_student_phase_progress(user_id, grade_id, phase, subject, False)

        icfes_score = await self._run_phase_analysis(user_id, subject, phase, exam)
        await self._record_history(user_id, subject, phase, exam, icfes_score)

        return await self.tracker.update_student_phase_progress(user_id, grade_id, phase, subject, True)

    async def _run_phase_analysis(
        self,
        user_id: str,
        subject: Subject,
        phase: Phase,
        exam: ExamResult,
    ) -> Optional[int]:
        """Run the analysis for the phase; returns the ICFES score for Phase 3."""
        if phase is Phase.FIRST:
            analysis = await self.weakness.analyze_phase1_results(user_id, subject, exam)
            if not analysis.success:
                logger.error("Phase 1 analysis failed for %s/%s: %s", user_id, subject.value, analysis.error)
            return None

        if phase is Phase.SECOND:
            try:
                phase1_exam = await self.results.find_phase_result(user_id, Phase.FIRST, subject)
            except Exception as e:
                logger.error("Error loading Phase 1 result for %s/%s: %s", user_id, subject.value, e)
                return None
            if phase1_exam is None:
                logger.warning("No Phase 1 result for %s/%s, skipping progress analysis", user_id, subject.value)
                return None
            analysis = await self.progress.analyze_progress(user_id, subject, phase1_exam, exam)
            if not analysis.success:
                logger.error("Progress analysis failed for %s/%s: %s", user_id, subject.value, analysis.error)
            return None

        result = await self.progress.generate_phase3_result(user_id, subject, exam)
        if not result.success:
            logger.error("Phase 3 result failed for %s/%s: %s", user_id, subject.value, result.error)
            return calculate_icfes_score(exam.percentage())
        return result.data.icfes_score

    async def _record_history(
        self,
        user_id: str,
        subject: Subject,
        phase: Phase,
        exam: ExamResult,
        icfes_score: Optional[int],
    ) -> None:
        topics = [
            TopicPercentage(topic=topic, percentage=round(correct / total * 100, 2) if total else 0.0)
            for topic, (correct, total) in sorted(topic_counts(exam.question_details).items())
        ]
        saved = await self.progress.save_performance_history(
            user_id, subject, phase, round(exam.percentage(), 2), icfes_score, topics,
        )
        if not saved.success:
            logger.error("Performance history not saved for %s/%s: %s", user_id, subject.value, saved.error)
