"""
app/services/llm.py

Provider adapter: one prompt in, raw provider text out.

Wraps an ``AIProvider`` with:
  - a per-attempt timeout (``ProviderConfig.timeout_ms``)
  - bounded retries with exponential backoff for transient failures
    (timeout, network error, HTTP 5xx, HTTP 429)
  - ``Retry-After`` handling for rate limits
  - classification of every failure into a ``ClassifiedError``

Rules:
    - At most ``max_retries + 1`` provider calls per request; the strict
      re-ask draws on the same ``AttemptBudget`` as the first ask.
    - Auth failures and other 4xx are never retried.
    - Log attempt metadata only. Never the prompt, the raw reply or the API key.
"""

import asyncio
from dataclasses import dataclass

import httpx

from app.core.config import ProviderConfig
from app.core.errors import ClassifiedError, ErrorCode
from app.core.logging import get_logger
from app.services.explain_prompt import PromptSpec
from app.services.providers import AIProvider

logger = get_logger(__name__)

MAX_RETRY_AFTER_SECONDS = 60.0
_AUTH_STATUSES = frozenset({401, 403})


def _status_of(exc: BaseException) -> int | None:
    """Best-effort HTTP status of an SDK exception.

    OpenAI/Anthropic errors carry ``status_code`` (and ``response``);
    Google API errors carry ``code``.
    """
    response = getattr(exc, "response", None)
    for candidate in (
        getattr(exc, "status_code", None),
        getattr(response, "status_code", None),
        getattr(exc, "code", None),
    ):
        if isinstance(candidate, int) and 100 <= candidate <= 599:
            return candidate
    return None


def _is_timeout(exc: BaseException) -> bool:
    return isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)) or (
        "Timeout" in type(exc).__name__
    )


def _is_network_error(exc: BaseException) -> bool:
    return isinstance(exc, (httpx.TransportError, ConnectionError, OSError)) or (
        "Connection" in type(exc).__name__
    )


def retry_after_seconds(exc: BaseException) -> float | None:
    """Read a provider's ``Retry-After`` hint from the error response, if any."""
    headers = getattr(getattr(exc, "response", None), "headers", None)
    if not headers:
        return None
    try:
        raw_ms = headers.get("retry-after-ms")
        if raw_ms is not None:
            return max(float(raw_ms) / 1000, 0.0)
        raw = headers.get("retry-after")
        if raw is not None:
            return max(float(raw), 0.0)
    except (TypeError, ValueError):
        # HTTP-date form and garbage values fall back to plain backoff.
        return None
    return None


def compute_backoff_delay(attempt: int, config: ProviderConfig, retry_after: float | None = None) -> float:
    """Seconds to wait after failed attempt number ``attempt`` (0-based)."""
    delay = min(config.backoff_base_ms * (2**attempt), config.backoff_max_ms) / 1000
    if retry_after is not None:
        delay = max(delay, min(retry_after, MAX_RETRY_AFTER_SECONDS))
    return delay


def classify_provider_failure(exc: BaseException) -> ClassifiedError:
    """Map an exception raised by a provider call to an ``ai_service`` error."""
    if isinstance(exc, ClassifiedError):
        return exc

    reason = f"{type(exc).__name__}: {exc}"[:300]

    if _is_timeout(exc):
        return ClassifiedError(ErrorCode.TIMEOUT, detail=reason)

    status = _status_of(exc)
    if status == 429:
        return ClassifiedError(ErrorCode.RATE_LIMITED, detail=reason)
    if status in _AUTH_STATUSES:
        return ClassifiedError(ErrorCode.AUTH_FAILED, detail=reason)
    if status is not None and status >= 500:
        return ClassifiedError(ErrorCode.UPSTREAM_ERROR, detail=reason)
    if status is not None and status >= 400:
        return ClassifiedError(ErrorCode.PROVIDER_REJECTED, detail=reason)

    if _is_network_error(exc):
        return ClassifiedError(ErrorCode.UPSTREAM_ERROR, detail=reason)

    return ClassifiedError(ErrorCode.PROVIDER_REJECTED, detail=reason)


@dataclass
class AttemptBudget:
    """Provider calls left for one request; shared by the first ask and the strict re-ask."""

    remaining: int

    @classmethod
    def for_config(cls, config: ProviderConfig) -> "AttemptBudget":
        return cls(remaining=config.max_retries + 1)


async def send(
    prompt_spec: PromptSpec,
    config: ProviderConfig,
    provider: AIProvider,
    budget: AttemptBudget | None = None,
) -> str:
    """Send a prompt to the provider with timeout and bounded retry.

    Args:
        prompt_spec: The compiled prompt.
        config: Immutable provider configuration (timeout, retry count, backoff).
        provider: The backend selected at startup.
        budget: Attempts left for the whole request. Defaults to a fresh
            ``max_retries + 1``; each attempt made here is taken from it.

    Returns:
        The provider's raw reply text, stripped, never empty.

    Raises:
        ClassifiedError: ``ai_service/*`` for provider failures,
            ``validation/unsafe_content`` when the provider's moderation stopped the reply.
    """
    if budget is None:
        budget = AttemptBudget.for_config(config)
    max_attempts = budget.remaining
    if max_attempts <= 0:
        raise ClassifiedError(ErrorCode.EXHAUSTED_RETRIES, detail="no provider attempts left for this request")

    errors: list[ClassifiedError] = []

    for attempt in range(max_attempts):
        budget.remaining -= 1
        logger.info(
            "provider_attempt_start",
            provider=provider.name,
            attempt=attempt + 1,
            max_attempts=max_attempts,
            prompt_length=len(prompt_spec.instruction_text),
        )
        try:
            # wait_for cancels the in-flight call on timeout; a late reply is discarded.
            reply = await asyncio.wait_for(
                provider.generate(prompt_spec.instruction_text),
                timeout=config.timeout_seconds,
            )
        except Exception as exc:
            error = classify_provider_failure(exc)
            logger.warning(
                "provider_attempt_failed",
                provider=provider.name,
                attempt=attempt + 1,
                code=error.code.value,
                retryable=error.retryable,
                error=error.detail,
            )
            if not error.retryable:
                raise error from exc

            errors.append(error)
            if attempt + 1 < max_attempts:
                delay = compute_backoff_delay(attempt, config, retry_after_seconds(exc))
                logger.info("provider_retrying", next_attempt=attempt + 2, delay_seconds=round(delay, 3))
                await asyncio.sleep(delay)
            continue

        if reply.blocked_by_moderation:
            logger.warning("provider_moderation_stop", provider=provider.name, finish_reason=reply.finish_reason)
            raise ClassifiedError(ErrorCode.UNSAFE_CONTENT, detail=f"finish_reason={reply.finish_reason}")

        text = reply.text.strip()
        if not text:
            raise ClassifiedError(ErrorCode.EMPTY_RESPONSE, detail=f"finish_reason={reply.finish_reason}")

        logger.info("provider_attempt_success", provider=provider.name, attempt=attempt + 1, reply_length=len(text))
        return text

    last_error = errors[-1]
    logger.error(
        "provider_failed_permanently",
        provider=provider.name,
        attempts=len(errors),
        last_code=last_error.code.value,
    )
    if len(errors) == 1:
        raise last_error
    raise ClassifiedError(
        ErrorCode.EXHAUSTED_RETRIES,
        status_code=last_error.status_code,
        detail=f"{len(errors)} attempts, last: {last_error.code.value}: {last_error.detail}",
    ) from last_error
