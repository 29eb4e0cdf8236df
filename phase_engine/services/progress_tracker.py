"""
progress_tracker.py - Per-student, per-phase progress state machine

Each student has three independent machines (first/second/third):

    locked -> available -> in_progress -> completed

- locked -> available: the grade's authorization for the phase is on and,
  past the first phase, every subject of the previous phase is completed.
- available -> in_progress: the first subject attempt is recorded.
- in_progress -> completed: all seven subjects are completed.

Status and ``all_subjects_completed`` are always derived from the stored
``subjects_completed`` set on read. A subject listed as completed is never
reported as in progress.
"""

import logging
from typing import Iterable, List, Optional, Protocol, Union

from phase_engine.db import phase_records as pr
from phase_engine.models.phase import AccessDecision, GradePhaseCompletion, StudentPhaseProgress
from phase_engine.models.result import Result, failure, success
from phase_engine.services.authorization import PhaseAuthorizationStore
from phase_engine.services.result_store import ResultStoreAdapter
from phase_engine.subjects import (
    ALL_SUBJECTS,
    Phase,
    PhaseStatus,
    Subject,
    TOTAL_SUBJECTS,
    next_phase,
    normalize_subject,
    parse_phase,
    phase_label,
    previous_phase,
    try_normalize_subject,
)

logger = logging.getLogger(__name__)

REASON_NOT_AUTHORIZED = "La fase no ha sido autorizada por el administrador para tu grado"
REASON_REVOKED = "La autorización de esta fase fue revocada por el administrador"


class PhaseCompletionNotifier(Protocol):
    async def phase_completed(self, student_id: str, grade_id: str, phase: Phase) -> None:
        ...


class LoggingNotifier:
    """Default notifier: delivery belongs to the notification service."""

    async def phase_completed(self, student_id: str, grade_id: str, phase: Phase) -> None:
        logger.info("Student %s (grade %s) completed phase %s", student_id, grade_id, phase.value)


def progress_id(student_id: str, phase: Phase) -> str:
    return f"{student_id}_{phase.value}"


def calculate_phase_status(subjects_completed: Iterable[Subject], subjects_in_progress: Iterable[Subject]) -> PhaseStatus:
    completed = set(subjects_completed)
    if len(completed) >= TOTAL_SUBJECTS:
        return PhaseStatus.COMPLETED
    if completed or set(subjects_in_progress):
        return PhaseStatus.IN_PROGRESS
    return PhaseStatus.AVAILABLE


def _ordered(subjects: Iterable[Subject]) -> List[Subject]:
    present = set(subjects)
    return [s for s in ALL_SUBJECTS if s in present]


def _subject_set(raw) -> set:
    subjects = set()
    for name in raw or []:
        subject = try_normalize_subject(name)
        if subject is None:
            logger.warning("Ignoring unrecognized subject %r in stored progress", name)
            continue
        subjects.add(subject)
    return subjects


def _progress_from_row(row: dict) -> StudentPhaseProgress:
    completed = _subject_set(row.get("subjects_completed"))
    in_progress = _subject_set(row.get("subjects_in_progress")) - completed
    return StudentPhaseProgress(
        student_id=row["student_id"],
        grade_id=row["grade_id"],
        phase=row["phase"],
        status=calculate_phase_status(completed, in_progress),
        subjects_completed=_ordered(completed),
        subjects_in_progress=_ordered(in_progress),
        overall_score=row.get("overall_score"),
        completed_at=row.get("completed_at"),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


class StudentPhaseProgressTracker:
    def __init__(
        self,
        db,
        authorizations: PhaseAuthorizationStore,
        results: ResultStoreAdapter,
        notifier: Optional[PhaseCompletionNotifier] = None,
    ):
        self.db = db
        self.authorizations = authorizations
        self.results = results
        self.notifier = notifier or LoggingNotifier()

    async def get_student_phase_progress(
        self,
        student_id: str,
        phase: Union[str, Phase],
    ) -> Result[Optional[StudentPhaseProgress]]:
        try:
            phase = parse_phase(phase)
        except ValueError as exc:
            return failure(str(exc))

        try:
            row = await pr.get_progress(self.db, progress_id(student_id, phase))
        except Exception as e:
            logger.error("Error reading progress for %s phase %s: %s", student_id, phase.value, e)
            return failure(f"Error reading phase progress: {e}")
        return success(_progress_from_row(row) if row else None)

    async def update_student_phase_progress(
        self,
        student_id: str,
        grade_id: str,
        phase: Union[str, Phase],
        subject: Union[str, Subject],
        completed: bool,
    ) -> Result[StudentPhaseProgress]:
        """Record a subject attempt (completed=False) or completion (completed=True).

        Set semantics: repeating an update is a no-op. Completion is never
        undone by a later in-progress update.
        """
        try:
            phase = parse_phase(phase)
            subject = normalize_subject(subject)
        except ValueError as exc:
            return failure(str(exc))

        try:
            pid = progress_id(student_id, phase)
            existing = await pr.get_progress(self.db, pid)
            now = pr.utc_now()

            subjects_completed = _subject_set(existing.get("subjects_completed")) if existing else set()
            subjects_in_progress = _subject_set(existing.get("subjects_in_progress")) if existing else set()
            was_complete = len(subjects_completed) >= TOTAL_SUBJECTS

            if completed:
                subjects_completed.add(subject)
                subjects_in_progress.discard(subject)
            elif subject not in subjects_completed:
                subjects_in_progress.add(subject)
            subjects_in_progress -= subjects_completed

            now_complete = len(subjects_completed) >= TOTAL_SUBJECTS
            completed_at = existing.get("completed_at") if existing else None
            if now_complete and not was_complete:
                completed_at = now

            record = {
                "id": pid,
                "student_id": student_id,
                "grade_id": grade_id,
                "phase": phase.value,
                "status": calculate_phase_status(subjects_completed, subjects_in_progress).value,
                "subjects_completed": [s.value for s in _ordered(subjects_completed)],
                "subjects_in_progress": [s.value for s in _ordered(subjects_in_progress)],
                "overall_score": existing.get("overall_score") if existing else None,
                "completed_at": completed_at,
                "created_at": existing["created_at"] if existing else now,
                "updated_at": now,
            }
            await pr.upsert_progress(self.db, record)
        except Exception as e:
            logger.error("Error updating progress for %s phase %s: %s", student_id, phase.value, e)
            return failure(f"Error updating phase progress: {e}")

        if now_complete and not was_complete:
            await self._on_phase_completed(student_id, grade_id, phase)

        return success(_progress_from_row(record))

    async def _on_phase_completed(self, student_id: str, grade_id: str, phase: Phase) -> None:
        """Notify and bootstrap the next phase folder; neither may fail the update."""
        try:
            await self.notifier.phase_completed(student_id, grade_id, phase)
        except Exception as e:
            logger.warning("Phase completion notification failed for %s: %s", student_id, e)

        upcoming = next_phase(phase)
        if upcoming is None:
            return
        try:
            await self.results.ensure_phase_folder(student_id, upcoming)
        except Exception as e:
            logger.warning("Could not initialize %s folder for %s: %s", upcoming.value, student_id, e)

    async def can_student_access_phase(
        self,
        student_id: str,
        grade_id: str,
        phase: Union[str, Phase],
    ) -> Result[AccessDecision]:
        try:
            phase = parse_phase(phase)
        except ValueError as exc:
            return failure(str(exc))

        auth = await self.authorizations.get_authorization(grade_id, phase)
        if not auth.success:
            return failure(auth.error)
        if auth.data is None:
            return success(AccessDecision(can_access=False, reason=REASON_NOT_AUTHORIZED))
        if not auth.data.authorized:
            return success(AccessDecision(can_access=False, reason=REASON_REVOKED))

        prior = previous_phase(phase)
        if prior is None:
            return success(AccessDecision(can_access=True))

        progress = await self.get_student_phase_progress(student_id, prior)
        if not progress.success:
            return failure(progress.error)
        if progress.data is None or not progress.data.all_subjects_completed:
            return success(AccessDecision(
                can_access=False,
                reason=f"Debes completar la {phase_label(prior)} fase antes de acceder a esta",
            ))

        return success(AccessDecision(can_access=True))

    async def effective_phase_status(
        self,
        student_id: str,
        grade_id: str,
        phase: Union[str, Phase],
    ) -> Result[PhaseStatus]:
        """Evaluate the state machine for one phase from authoritative data."""
        try:
            phase = parse_phase(phase)
        except ValueError as exc:
            return failure(str(exc))

        progress = await self.get_student_phase_progress(student_id, phase)
        if not progress.success:
            return failure(progress.error)
        if progress.data is not None and progress.data.all_subjects_completed:
            return success(PhaseStatus.COMPLETED)

        access = await self.can_student_access_phase(student_id, grade_id, phase)
        if not access.success:
            return failure(access.error)
        if not access.data.can_access:
            return success(PhaseStatus.LOCKED)

        if progress.data is not None:
            return success(progress.data.status)
        return success(PhaseStatus.AVAILABLE)

    async def check_grade_phase_completion(
        self,
        grade_id: str,
        phase: Union[str, Phase],
        total_students: int,
    ) -> Result[GradePhaseCompletion]:
        try:
            phase = parse_phase(phase)
        except ValueError as exc:
            return failure(str(exc))

        try:
            rows = await pr.list_grade_progress(self.db, grade_id, phase.value)
        except Exception as e:
            logger.error("Error checking completion for grade %s phase %s: %s", grade_id, phase.value, e)
            return failure(f"Error checking grade completion: {e}")

        completed_students = 0
        in_progress_students = 0
        for row in rows:
            status = _progress_from_row(row).status
            if status == PhaseStatus.COMPLETED:
                completed_students += 1
            elif status == PhaseStatus.IN_PROGRESS:
                in_progress_students += 1

        pending = max(0, total_students - completed_students - in_progress_students)
        percentage = completed_students / total_students * 100 if total_students > 0 else 0.0
        return success(GradePhaseCompletion(
            grade_id=grade_id,
            phase=phase,
            total_students=total_students,
            completed_students=completed_students,
            in_progress_students=in_progress_students,
            pending_students=pending,
            completion_percentage=round(percentage, 2),
            all_completed=total_students > 0 and completed_students >= total_students,
            last_updated=pr.utc_now(),
        ))
