"""
CV Analysis API Router

  POST /api/v1/analysis   score extracted CV text against job requirements
"""

from __future__ import annotations

from fastapi import APIRouter

from cvscreen.api.dependencies import Scorer
from cvscreen.schemas.analysis import AnalysisRequest, MatchAnalysis
from cvscreen.schemas.documents import ErrorResponse

router = APIRouter(prefix="/analysis", tags=["Analysis"])


@router.post(
    "",
    response_model=MatchAnalysis,
    response_model_by_alias=True,
    summary="Score a CV against job requirements",
    responses={
        400: {"model": ErrorResponse, "description": "Blank CV text or incomplete requirements"},
        502: {"model": ErrorResponse, "description": "Scoring model unavailable"},
    },
)
async def analyse_cv(payload: AnalysisRequest, scorer: Scorer) -> MatchAnalysis:
    return await scorer.score(payload.cv_text, payload.requirements)
