from fastapi import Depends, HTTPException

from phase_engine.db.database import get_db
from phase_engine.engine import PhaseEngine, build_engine
from phase_engine.models.result import Result
from phase_engine.subjects import Phase, Subject, normalize_subject, parse_phase


async def get_engine(db=Depends(get_db)) -> PhaseEngine:
    return build_engine(db)


def require_phase(value: str) -> Phase:
    try:
        return parse_phase(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def require_subject(value: str) -> Subject:
    try:
        return normalize_subject(value)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))


def unwrap(result: Result):
    """Return the payload of a successful result, or fail the request with 503."""
    if not result.success:
        raise HTTPException(status_code=503, detail=result.error)
    return result.data
