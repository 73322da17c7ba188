"""
app/main.py

FastAPI application entrypoint: ``uvicorn app.main:app``.

Startup (lifespan):
  1. Logging is configured for the environment.
  2. ``ProviderConfig`` is built once from the ``AI_*`` environment. Anything
     missing or invalid aborts startup with ``system/missing_configuration``.
  3. The provider backend is created.
  4. Both go on ``app.state``; endpoints get them through ``app/api/dependencies.py``.

Every failure leaves the API as ``{"success": false, "error": {...}}`` with the
HTTP status of its ``ClassifiedError``. Internal detail is logged, never sent.

Settings come from the environment / ``.env`` via pydantic-settings; there is
no ``load_dotenv()`` call.
"""

import time
from contextlib import asynccontextmanager
from typing import AsyncIterator
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from app.core.config import get_settings, load_provider_config
from app.core.errors import ClassifiedError, ErrorCode, classify
from app.core.logging import bind_request_context, get_logger, setup_logging
from app.services.providers import create_provider

logger = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = get_settings()
    setup_logging(environment=settings.environment, level=settings.log_level)
    logger.info("app_startup", version=settings.app_version, environment=settings.environment)

    try:
        provider_config = load_provider_config()
    except ClassifiedError as exc:
        logger.error("app_startup_failed", code=exc.code.value, detail=exc.detail)
        raise

    app.state.provider_config = provider_config
    app.state.provider = create_provider(provider_config)
    logger.info(
        "app_ready",
        provider=provider_config.provider.value,
        model=provider_config.model,
        timeout_ms=provider_config.timeout_ms,
        max_retries=provider_config.max_retries,
    )

    yield

    logger.info("app_shutdown")


async def request_context(request: Request, call_next):
    """Tag logs and the response with a request id; log one line per request."""
    request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
    bind_request_context(request_id, request.url.path)
    started = time.perf_counter()

    response = await call_next(request)

    response.headers[REQUEST_ID_HEADER] = request_id
    logger.info(
        "request_completed",
        method=request.method,
        status=response.status_code,
        duration_ms=round((time.perf_counter() - started) * 1000),
    )
    return response


def _error_response(error: ClassifiedError) -> JSONResponse:
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": error.to_payload()},
    )


async def classified_error_handler(request: Request, exc: ClassifiedError) -> JSONResponse:
    return _error_response(exc)


async def request_validation_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    fields = sorted({".".join(str(part) for part in err.get("loc", ())[1:]) for err in exc.errors()})
    logger.info("request_body_invalid", fields=fields)
    return _error_response(ClassifiedError(ErrorCode.INVALID_REQUEST, detail=f"fields={fields}"))


async def unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
    error = classify(exc)
    logger.exception("unhandled_error", path=request.url.path, code=error.code.value)
    return _error_response(error)


def create_app() -> FastAPI:
    """Build the application. Importing this module has no side effects beyond reading settings."""
    settings = get_settings()

    app = FastAPI(
        title="AI Learning Assistant",
        description=(
            "Explains concepts and code for learners in three modes: a step-by-step "
            "beginner walkthrough, a short summary, or a multiple-choice quiz. "
            "Stateless: nothing a learner sends is stored."
        ),
        version=settings.app_version,
        docs_url=None if settings.is_production else "/docs",
        redoc_url=None if settings.is_production else "/redoc",
        lifespan=lifespan,
    )

    # Development allows any origin so the static front end works from any port.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.allowed_origins,
        allow_credentials=False,
        allow_methods=["GET", "POST"],
        allow_headers=["*"],
        expose_headers=[REQUEST_ID_HEADER],
    )
    app.middleware("http")(request_context)

    app.add_exception_handler(ClassifiedError, classified_error_handler)
    app.add_exception_handler(RequestValidationError, request_validation_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    from app.api import explain, health  # noqa: PLC0415

    app.include_router(explain.router, prefix="/api", tags=["Learning"])
    app.include_router(health.router, tags=["Health"])

    @app.get("/", include_in_schema=False)
    async def root() -> dict:
        return {
            "service": "ai-learning-assistant",
            "version": settings.app_version,
            "docs": None if settings.is_production else "/docs",
        }

    return app


app = create_app()
