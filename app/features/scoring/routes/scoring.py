from fastapi import APIRouter

from app.features.scoring.schemas.score import ComputeScoreRequest, ComputeScoreResponse
from app.features.scoring.services.actions import generate_actions
from app.features.scoring.services.scoring_engine import compute_score
from app.platform.response import api_response

router = APIRouter(prefix="/scoring", tags=["scoring"])


@router.post("/compute")
async def compute(payload: ComputeScoreRequest):
    """Pure computation; nothing is persisted."""
    breakdown = compute_score(payload.results, payload.signals)
    return api_response(
        data=ComputeScoreResponse(breakdown=breakdown, actions=generate_actions(breakdown)),
        message="Score computed",
    )
