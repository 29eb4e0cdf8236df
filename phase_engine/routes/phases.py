"""
Student-facing phase endpoints: status, access, progress, exam submission,
Phase-1 analysis, Phase-2 distribution, Phase-3 results and progress history.
"""

import logging
from typing import Any, Dict, Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from phase_engine.engine import PhaseEngine
from phase_engine.routes.deps import get_engine, require_phase, require_subject, unwrap
from phase_engine.services.progress_analysis import calculate_final_icfes_score
from phase_engine.services.question_distributor import MISSING_ANALYSIS
from phase_engine.services.ranking import best_subject_percentages

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/phases", tags=["phases"])


class ExamSubmission(BaseModel):
    subject: str
    exam_result: Dict[str, Any]
    exam_id: Optional[str] = None


class ExamStart(BaseModel):
    subject: str


@router.get("/{student_id}/status")
async def phase_status(student_id: str, engine: PhaseEngine = Depends(get_engine)):
    return await engine.status.fetch_phase_status_for_student(student_id)


@router.get("/{student_id}/{phase}/access")
async def phase_access(student_id: str, phase: str, grade_id: str, engine: PhaseEngine = Depends(get_engine)):
    phase = require_phase(phase)
    return unwrap(await engine.tracker.can_student_access_phase(student_id, grade_id, phase))


@router.get("/{student_id}/{phase}/progress")
async def phase_progress(student_id: str, phase: str, engine: PhaseEngine = Depends(get_engine)):
    phase = require_phase(phase)
    progress = unwrap(await engine.tracker.get_student_phase_progress(student_id, phase))
    if progress is None:
        raise HTTPException(status_code=404, detail="No progress recorded for this phase")
    return progress


@router.post("/{student_id}/{phase}/start")
async def start_exam(student_id: str, phase: str, body: ExamStart, engine: PhaseEngine = Depends(get_engine)):
    phase = require_phase(phase)
    subject = require_subject(body.subject)
    return unwrap(await engine.integration.record_exam_started(student_id, subject, phase))


@router.post("/{student_id}/{phase}/exams")
async def submit_exam(student_id: str, phase: str, body: ExamSubmission, engine: PhaseEngine = Depends(get_engine)):
    """Store a completed exam and run the phase pipeline for it."""
    phase = require_phase(phase)
    subject = require_subject(body.subject)
    progress = unwrap(await engine.integration.process_exam_results(
        student_id, subject, phase, body.exam_result, body.exam_id,
    ))
    logger.info("Exam processed for %s: %s %s", student_id, phase.value, subject.value)
    return progress


@router.get("/{student_id}/analysis/{subject}")
async def phase1_analysis(student_id: str, subject: str, engine: PhaseEngine = Depends(get_engine)):
    subject = require_subject(subject)
    analysis = unwrap(await engine.weakness.get_phase1_analysis(student_id, subject))
    if analysis is None:
        raise HTTPException(status_code=404, detail="No Phase 1 analysis for this subject")
    return analysis


@router.get("/{student_id}/phase3-result/{subject}")
async def phase3_result(student_id: str, subject: str, engine: PhaseEngine = Depends(get_engine)):
    subject = require_subject(subject)
    result = unwrap(await engine.progress.get_phase3_result(student_id, subject))
    if result is None:
        raise HTTPException(status_code=404, detail="No Phase 3 result for this subject")
    return result


@router.get("/{student_id}/distribution/{subject}")
async def phase2_distribution(
    student_id: str,
    subject: str,
    total_questions: Optional[int] = None,
    engine: PhaseEngine = Depends(get_engine),
):
    subject = require_subject(subject)
    if total_questions is not None and total_questions < 0:
        raise HTTPException(status_code=400, detail="total_questions must be non-negative")
    result = await engine.distributor.generate_phase2_distribution(student_id, subject, total_questions)
    if not result.success and result.error.startswith(MISSING_ANALYSIS):
        raise HTTPException(status_code=404, detail=result.error)
    return unwrap(result)


@router.get("/{student_id}/history/{subject}")
async def performance_history(student_id: str, subject: str, engine: PhaseEngine = Depends(get_engine)):
    subject = require_subject(subject)
    return unwrap(await engine.progress.get_student_history(student_id, subject))


@router.get("/{student_id}/indicators/{subject}")
async def progress_indicators(student_id: str, subject: str, engine: PhaseEngine = Depends(get_engine)):
    subject = require_subject(subject)
    return unwrap(await engine.progress.calculate_progress_indicators(student_id, subject))


@router.get("/{student_id}/{phase}/icfes")
async def final_icfes_score(student_id: str, phase: str, engine: PhaseEngine = Depends(get_engine)):
    """Global ICFES estimate from the best attempt per subject in a phase."""
    phase = require_phase(phase)
    try:
        results = await engine.results.get_completed_results(student_id, phase)
    except Exception as e:
        logger.error("Error reading %s results for %s: %s", phase.value, student_id, e)
        raise HTTPException(status_code=503, detail=f"Error reading exam results: {e}")
    return calculate_final_icfes_score(best_subject_percentages(results).items())
