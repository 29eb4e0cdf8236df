"""
result_store.py - Access to raw exam attempts

Exam attempts live in per-student, per-phase "folders". Historical data uses
several folder spellings and an even older flat document per student, so
reads go through an ordered list of lookup strategies: the first strategy that
yields completed results wins. New legacy formats are supported by appending a
strategy, not by touching the callers.

Provides:
- ResultStoreAdapter.save_exam_result(student_id, phase, exam_id, result)
- ResultStoreAdapter.resolve_phase_results(student_id, strategies)
- ResultStoreAdapter.get_completed_results(student_id, phase)
- ResultStoreAdapter.find_phase_result(student_id, phase, subject)
- ResultStoreAdapter.ensure_phase_folder(student_id, phase)
"""

import logging
from typing import Any, Dict, List, Optional, Sequence, Union

from pydantic import ValidationError

from phase_engine.db import phase_records as pr
from phase_engine.errors import InvalidPhaseError
from phase_engine.models.phase import ExamResult
from phase_engine.subjects import (
    Phase,
    Subject,
    canonical_folder,
    parse_phase,
    phase_folders,
    subject_from_exam_id,
    try_normalize_subject,
)

logger = logging.getLogger(__name__)

PLACEHOLDER_ID = "_placeholder"


def normalize_exam_document(exam_id: str, data: Dict[str, Any]) -> Optional[ExamResult]:
    """Parse a stored document into an ExamResult with a canonical subject.

    Returns None for incomplete attempts and for documents whose subject
    cannot be resolved from the subject field, the exam title or the exam id.
    """
    if not isinstance(data, dict) or data.get("placeholder"):
        return None
    try:
        result = ExamResult.model_validate(data)
    except ValidationError as exc:
        logger.warning("Skipping malformed exam document %s: %s", exam_id, exc)
        return None

    if not result.is_complete:
        return None

    subject = (
        try_normalize_subject(result.subject)
        or try_normalize_subject(result.exam_title)
        or subject_from_exam_id(exam_id)
    )
    if subject is None:
        logger.warning(
            "Skipping exam document %s with unrecognized subject %r",
            exam_id, result.subject or result.exam_title,
        )
        return None

    return result.model_copy(update={"subject": subject.value, "exam_id": result.exam_id or exam_id})


class PhaseFolderStrategy:
    """Read one named folder of the per-phase partition."""

    def __init__(self, folder: str):
        self.folder = folder
        self.name = f"folder:{folder}"

    async def fetch(self, db, student_id: str) -> List[ExamResult]:
        docs = await pr.list_exam_results(db, student_id, self.folder)
        results = []
        for doc in docs:
            normalized = normalize_exam_document(doc["exam_id"], doc["data"])
            if normalized is not None:
                results.append(normalized)
        return results


class LegacyFlatStrategy:
    """Read the legacy flat document, keeping exams tagged with this phase."""

    def __init__(self, phase: Phase):
        self.phase = phase
        self.name = "legacy-flat"

    async def fetch(self, db, student_id: str) -> List[ExamResult]:
        exams = await pr.get_legacy_results(db, student_id)
        results = []
        for exam_id in sorted(exams):
            exam = exams[exam_id]
            if not isinstance(exam, dict):
                continue
            try:
                exam_phase = parse_phase(exam.get("phase"))
            except InvalidPhaseError:
                continue
            if exam_phase is not self.phase:
                continue
            normalized = normalize_exam_document(exam_id, exam)
            if normalized is not None:
                results.append(normalized)
        return results


def default_strategies(phase: Phase) -> list:
    """Canonical folder first, then legacy folder spellings, then the flat doc."""
    return [PhaseFolderStrategy(folder) for folder in phase_folders(phase)] + [LegacyFlatStrategy(phase)]


class ResultStoreAdapter:
    def __init__(self, db):
        self.db = db

    async def save_exam_result(
        self,
        student_id: str,
        phase: Union[str, Phase],
        exam_id: str,
        result: Union[Dict[str, Any], ExamResult],
    ) -> str:
        """Store a completed attempt under the canonical folder of its phase."""
        phase = parse_phase(phase)
        if isinstance(result, ExamResult):
            data = result.model_dump(by_alias=True, exclude_none=True)
        else:
            data = dict(result)
        data.setdefault("phase", phase.value)
        folder = canonical_folder(phase)
        row_id = await pr.upsert_exam_result(self.db, student_id, folder, exam_id, data)
        logger.info("Stored exam %s for student %s in %r", exam_id, student_id, folder)
        return row_id

    async def list_phase_folder(self, student_id: str, folder: str) -> List[ExamResult]:
        return await PhaseFolderStrategy(folder).fetch(self.db, student_id)

    async def resolve_phase_results(self, student_id: str, strategies: Sequence) -> List[ExamResult]:
        """Try each strategy in order and return the first non-empty result set.

        A failing strategy is logged and skipped; the error is re-raised only
        when every strategy failed, so an outage is not mistaken for "no data".
        """
        last_error = None
        failures = 0
        for strategy in strategies:
            try:
                results = await strategy.fetch(self.db, student_id)
            except Exception as exc:
                failures += 1
                last_error = exc
                logger.warning(
                    "Result lookup %s failed for student %s: %s",
                    strategy.name, student_id, exc,
                )
                continue
            if results:
                return results
        if strategies and failures == len(strategies):
            raise last_error
        return []

    async def get_completed_results(self, student_id: str, phase: Union[str, Phase]) -> List[ExamResult]:
        return await self.resolve_phase_results(student_id, default_strategies(parse_phase(phase)))

    async def find_phase_result(
        self,
        student_id: str,
        phase: Union[str, Phase],
        subject: Subject,
    ) -> Optional[ExamResult]:
        """Best completed attempt (highest percentage) for one subject, if any."""
        best = None
        for result in await self.get_completed_results(student_id, phase):
            if result.subject != subject.value:
                continue
            if best is None or result.percentage() > best.percentage():
                best = result
        return best

    async def ensure_phase_folder(self, student_id: str, phase: Union[str, Phase]) -> bool:
        """Create the marker that makes a phase folder discoverable. Idempotent."""
        phase = parse_phase(phase)
        created = await pr.insert_placeholder(self.db, student_id, canonical_folder(phase), PLACEHOLDER_ID)
        if created:
            logger.info("Initialized %r folder for student %s", canonical_folder(phase), student_id)
        return created
