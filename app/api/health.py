"""
app/api/health.py

GET /health — process liveness.

Does not call the AI provider; a slow or failing provider must not make the
process look dead to the load balancer.
"""

from fastapi import APIRouter, Request

from app.core.config import get_settings
from app.schemas.learning import HealthResponse

router = APIRouter()


@router.get("/health", response_model=HealthResponse, summary="Liveness check")
async def health_check(request: Request) -> HealthResponse:
    settings = get_settings()
    provider = getattr(request.app.state, "provider", None)
    return HealthResponse(
        status="ok",
        version=settings.app_version,
        environment=settings.environment,
        provider=getattr(provider, "name", None),
    )
