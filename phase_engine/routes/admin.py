"""
Admin endpoints for phase authorization management.

Protected by AdminSecretMiddleware when ADMIN_SECRET is configured.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel

from phase_engine.engine import PhaseEngine
from phase_engine.routes.deps import get_engine, require_phase, require_subject, unwrap

router = APIRouter(prefix="/api/admin", tags=["admin"])


class AuthorizeRequest(BaseModel):
    grade_id: str
    grade_name: str
    phase: str
    admin_id: str
    institution_id: Optional[str] = None
    campus_id: Optional[str] = None
    subject: Optional[str] = None


class RevokeRequest(BaseModel):
    grade_id: str
    phase: str
    subject: Optional[str] = None


@router.post("/authorizations")
async def authorize_phase(body: AuthorizeRequest, engine: PhaseEngine = Depends(get_engine)):
    phase = require_phase(body.phase)
    subject = require_subject(body.subject) if body.subject else None
    return unwrap(await engine.authorizations.authorize_phase(
        body.grade_id,
        body.grade_name,
        phase,
        body.admin_id,
        institution_id=body.institution_id,
        campus_id=body.campus_id,
        subject=subject,
    ))


@router.post("/authorizations/revoke")
async def revoke_phase(body: RevokeRequest, engine: PhaseEngine = Depends(get_engine)):
    phase = require_phase(body.phase)
    subject = require_subject(body.subject) if body.subject else None
    revoked = unwrap(await engine.authorizations.revoke_phase_authorization(body.grade_id, phase, subject))
    return {"revoked": revoked is not None, "authorization": revoked}


@router.get("/authorizations/{grade_id}")
async def grade_authorizations(grade_id: str, engine: PhaseEngine = Depends(get_engine)):
    return unwrap(await engine.authorizations.get_grade_authorizations(grade_id))


@router.get("/grades/{grade_id}/{phase}/completion")
async def grade_completion(
    grade_id: str,
    phase: str,
    total_students: int,
    engine: PhaseEngine = Depends(get_engine),
):
    phase = require_phase(phase)
    if total_students < 0:
        raise HTTPException(status_code=400, detail="total_students must be non-negative")
    return unwrap(await engine.tracker.check_grade_phase_completion(grade_id, phase, total_students))
