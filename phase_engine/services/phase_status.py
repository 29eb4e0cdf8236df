"""Single read model of a student's position across all phases and subjects.

Fans out the access checks, progress records and completed results for the
three phases in parallel and merges them per subject. A subject counts as
completed in a phase only when a completed exam exists in the result store.
"""

import asyncio
import logging
from typing import List, Set

from phase_engine.models.phase import PhaseState, PhaseStatusData
from phase_engine.services.directory import StudentDirectory
from phase_engine.services.progress_tracker import StudentPhaseProgressTracker
from phase_engine.services.result_store import ResultStoreAdapter
from phase_engine.subjects import (
    ALL_PHASES,
    ALL_SUBJECTS,
    Phase,
    PhaseStatus,
    Subject,
    TOTAL_SUBJECTS,
    try_normalize_subject,
)

logger = logging.getLogger(__name__)


def _derive_status(state: PhaseState) -> PhaseStatus:
    if state.is_completed:
        return PhaseStatus.COMPLETED
    if not state.can_access:
        return PhaseStatus.LOCKED
    if state.is_in_progress:
        return PhaseStatus.IN_PROGRESS
    return PhaseStatus.AVAILABLE


class PhaseStatusFacade:
    def __init__(
        self,
        tracker: StudentPhaseProgressTracker,
        results: ResultStoreAdapter,
        directory: StudentDirectory,
    ):
        self.tracker = tracker
        self.results = results
        self.directory = directory

    async def _completed_subjects(self, user_id: str, phase: Phase) -> Set[Subject]:
        try:
            results = await self.results.get_completed_results(user_id, phase)
        except Exception as e:
            logger.warning("Error reading %s results for %s: %s", phase.value, user_id, e)
            return set()
        subjects = set()
        for result in results:
            subject = try_normalize_subject(result.subject)
            if subject is not None:
                subjects.add(subject)
        return subjects

    async def fetch_phase_status_for_student(self, user_id: str) -> PhaseStatusData:
        try:
            user = await self.directory.get_user_by_id(user_id)
        except Exception as e:
            logger.error("Error loading user %s for phase status: %s", user_id, e)
            return PhaseStatusData()
        if user is None or not user.grade_id:
            return PhaseStatusData()

        phases: List[Phase] = list(ALL_PHASES)
        access, progress, completed = await asyncio.gather(
            asyncio.gather(*(self.tracker.can_student_access_phase(user_id, user.grade_id, p) for p in phases)),
            asyncio.gather(*(self.tracker.get_student_phase_progress(user_id, p) for p in phases)),
            asyncio.gather(*(self._completed_subjects(user_id, p) for p in phases)),
        )

        states = {}
        for subject in ALL_SUBJECTS:
            by_phase = {}
            for i, phase in enumerate(phases):
                decision = access[i].data if access[i].success else None
                record = progress[i].data if progress[i].success else None
                state = PhaseState(
                    phase=phase,
                    can_access=bool(decision and decision.can_access),
                    reason=decision.reason if decision else None,
                    is_in_progress=bool(record and subject in record.subjects_in_progress),
                    is_exam_completed=subject in completed[i],
                    is_completed=subject in completed[i],
                    all_subjects_completed=bool(record and record.all_subjects_completed),
                )
                state.status = _derive_status(state)
                by_phase[phase.value] = state
            states[subject.value] = by_phase

        return PhaseStatusData(
            phase_states_by_subject=states,
            is_phase3_complete=len(completed[phases.index(Phase.THIRD)]) >= TOTAL_SUBJECTS,
        )
