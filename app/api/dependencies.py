"""
app/api/dependencies.py

FastAPI dependencies that hand the startup-built provider objects to endpoints.

Both objects are created once in the lifespan handler and stored on
``app.state``. They are read-only and safe to share between concurrent requests.

Usage:
    from fastapi import Depends
    from app.api.dependencies import get_provider, get_provider_config

    @router.post("/example")
    async def example(provider: AIProvider = Depends(get_provider)):
        ...
"""

from fastapi import Request

from app.core.config import ProviderConfig
from app.core.errors import ClassifiedError, ErrorCode
from app.services.providers import AIProvider


def get_provider_config(request: Request) -> ProviderConfig:
    config = getattr(request.app.state, "provider_config", None)
    if config is None:
        raise ClassifiedError(ErrorCode.MISSING_CONFIGURATION, detail="provider_config not initialised")
    return config


def get_provider(request: Request) -> AIProvider:
    provider = getattr(request.app.state, "provider", None)
    if provider is None:
        raise ClassifiedError(ErrorCode.MISSING_CONFIGURATION, detail="provider not initialised")
    return provider
