"""
app/api/explain.py

POST /api/explain — turn a topic or code snippet into a learning response.
GET  /api/modes   — the learning modes a client can offer.

Flow:
  1. Parse the JSON body (``ExplainRequest``; shape errors → ``validation/invalid_request``).
  2. Run the explain pipeline (validate → prompt → provider → format).
  3. Return ``{success: true, data: ...}``.

Failures are raised as ``ClassifiedError`` and rendered by the exception
handler in ``app/main.py`` as ``{success: false, error: {...}}``.
Nothing about the request or response is stored.
"""

from fastapi import APIRouter, Depends, status

from app.api.dependencies import get_provider, get_provider_config
from app.core.config import ProviderConfig
from app.core.logging import get_logger
from app.schemas.learning import (
    ExplainFailure,
    ExplainRequest,
    ExplainSuccess,
    LearningMode,
    ModeInfo,
    ModesResponse,
)
from app.services.pipeline import run_explain
from app.services.providers import AIProvider

logger = get_logger(__name__)
router = APIRouter()

MODES: tuple[ModeInfo, ...] = (
    ModeInfo(
        mode=LearningMode.BEGINNER,
        label="Beginner",
        description="Step-by-step explanation with up to three examples; line-by-line for code.",
    ),
    ModeInfo(
        mode=LearningMode.SUMMARY,
        label="Summary",
        description="A short overview with the key points.",
    ),
    ModeInfo(
        mode=LearningMode.QUIZ,
        label="Quiz",
        description="A brief refresher followed by multiple-choice questions.",
    ),
)

_ERROR_RESPONSES = {
    status.HTTP_400_BAD_REQUEST: {"model": ExplainFailure, "description": "Invalid or unsafe input"},
    status.HTTP_429_TOO_MANY_REQUESTS: {"model": ExplainFailure, "description": "AI service rate limit"},
    status.HTTP_500_INTERNAL_SERVER_ERROR: {"model": ExplainFailure, "description": "Service misconfigured"},
    status.HTTP_502_BAD_GATEWAY: {"model": ExplainFailure, "description": "AI service failure"},
    status.HTTP_504_GATEWAY_TIMEOUT: {"model": ExplainFailure, "description": "AI service timed out"},
}


@router.post(
    "/explain",
    response_model=ExplainSuccess,
    responses=_ERROR_RESPONSES,
    summary="Explain a topic or code snippet",
)
async def explain(
    body: ExplainRequest,
    config: ProviderConfig = Depends(get_provider_config),
    provider: AIProvider = Depends(get_provider),
) -> ExplainSuccess:
    """Run the explain pipeline for one request."""
    response = await run_explain(
        raw_input=body.input,
        raw_mode=body.mode,
        raw_topic_type=body.topic_type,
        config=config,
        provider=provider,
    )
    return ExplainSuccess(data=response)


@router.get("/modes", response_model=ModesResponse, summary="List learning modes")
async def list_modes() -> ModesResponse:
    return ModesResponse(modes=list(MODES))
