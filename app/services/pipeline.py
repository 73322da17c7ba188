"""
app/services/pipeline.py

The explain pipeline: validate → build prompt → call provider → format.

One call to ``run_explain`` handles one HTTP request end to end. It holds no
state between calls; the provider and ``ProviderConfig`` it receives are
read-only and shared by concurrent requests.

A malformed or empty provider reply gets one more ask with the strict prompt
before the error is surfaced. Both asks share one ``AttemptBudget``, so a
request never makes more than ``max_retries + 1`` provider calls. Every
failure leaves this module as a single ``ClassifiedError``.
"""

import time
from datetime import datetime, timezone

from app.core.config import ProviderConfig
from app.core.errors import ClassifiedError, ErrorCode, classify
from app.core.logging import get_logger
from app.schemas.learning import LearningResponse
from app.services import llm
from app.services.explain_prompt import build_prompt
from app.services.providers import AIProvider
from app.services.response_format import format_response
from app.services.validator import validate_request

logger = get_logger(__name__)

_REASK_CODES = frozenset({ErrorCode.MALFORMED_RESPONSE, ErrorCode.EMPTY_RESPONSE})


async def run_explain(
    *,
    raw_input,
    raw_mode,
    raw_topic_type=None,
    config: ProviderConfig,
    provider: AIProvider,
) -> LearningResponse:
    """Produce a ``LearningResponse`` for one request.

    Raises:
        ClassifiedError: for every failure, already classified.
    """
    started_at = time.perf_counter()

    try:
        request = validate_request(
            raw_input,
            raw_mode,
            raw_topic_type,
            submitted_at=datetime.now(timezone.utc),
        )
        logger.info(
            "explain_request",
            mode=request.mode.value,
            topic_type=request.topic_type.value,
            input_length=len(request.input),
        )

        budget = llm.AttemptBudget.for_config(config)
        prompt_spec = build_prompt(request)
        try:
            raw_text = await llm.send(prompt_spec, config, provider, budget)
            return format_response(raw_text, request.mode, prompt_spec.expected_shape, started_at=started_at)
        except ClassifiedError as exc:
            if exc.code not in _REASK_CODES or budget.remaining == 0:
                raise
            logger.info(
                "explain_reask_strict",
                mode=request.mode.value,
                first_error=exc.code.value,
                attempts_left=budget.remaining,
            )

        strict_spec = build_prompt(request, strict=True)
        raw_text = await llm.send(strict_spec, config, provider, budget)
        return format_response(raw_text, request.mode, strict_spec.expected_shape, started_at=started_at)

    except ClassifiedError as exc:
        _log_failure(exc, started_at)
        raise
    except Exception as exc:
        logger.exception("explain_unexpected_error", error_type=type(exc).__name__)
        error = classify(exc)
        _log_failure(error, started_at)
        raise error from exc


def _log_failure(error: ClassifiedError, started_at: float) -> None:
    logger.warning(
        "explain_failed",
        kind=error.kind.value,
        code=error.code.value,
        detail=error.detail,
        elapsed_ms=round((time.perf_counter() - started_at) * 1000),
    )
