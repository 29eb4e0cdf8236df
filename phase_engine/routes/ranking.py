from typing import Optional

from fastapi import APIRouter, Depends

from phase_engine.engine import PhaseEngine
from phase_engine.models.phase import RankingResult
from phase_engine.routes.deps import get_engine

router = APIRouter(prefix="/api/ranking", tags=["ranking"])


@router.get("/{user_id}/{phase}", response_model=RankingResult)
async def student_ranking(
    user_id: str,
    phase: str,
    current_student_score: Optional[float] = None,
    engine: PhaseEngine = Depends(get_engine),
):
    """Advisory: lookup problems yield rank=None instead of an error status."""
    return await engine.ranking.fetch_student_ranking(user_id, phase, current_student_score)
