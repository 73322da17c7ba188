"""
app/core/logging.py

structlog configuration for the service.

Output:
  production  → one JSON object per line (dict tracebacks, UTC timestamps).
  development → coloured console lines.

Every log line emitted while a request is being handled carries that request's
``request_id`` and ``path`` (bound by the middleware in ``app/main.py`` through
``bind_request_context``).

Usage:
    from app.core.logging import get_logger
    logger = get_logger(__name__)
    logger.info("explain_request", mode=request.mode, input_length=len(request.input))

Never print(). Never log the learner's text, the provider API key or raw
provider output; log lengths, counts and codes.
"""

import logging
import sys

import structlog
from structlog.types import EventDict, Processor

_SECRET_KEYS = frozenset({"api_key", "apikey", "authorization", "password", "secret", "token"})

# Loggers of third-party clients whose DEBUG/INFO records can echo prompts.
_NOISY_LOGGERS = ("httpx", "httpcore", "openai", "anthropic", "google_genai")


def _strip_uvicorn_colour(_, __, event_dict: EventDict) -> EventDict:
    event_dict.pop("color_message", None)
    return event_dict


def _redact_secrets(_, __, event_dict: EventDict) -> EventDict:
    """Mask credential-looking keys that slipped into a log call."""
    for key in event_dict.keys() & _SECRET_KEYS:
        event_dict[key] = "***"
    return event_dict


def _processors(json_output: bool) -> list[Processor]:
    chain: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.StackInfoRenderer(),
        _strip_uvicorn_colour,
        _redact_secrets,
    ]
    if json_output:
        chain += [structlog.processors.dict_tracebacks, structlog.processors.JSONRenderer()]
    else:
        chain.append(structlog.dev.ConsoleRenderer(colors=True))
    return chain


def setup_logging(environment: str = "development", level: str | None = None) -> None:
    """Configure structlog and the stdlib root logger. Called once from the lifespan.

    Args:
        environment: "development" | "production"; picks the renderer and the
            default level (DEBUG in development, INFO in production).
        level: explicit level name (e.g. "WARNING") overriding the default.
    """
    is_production = environment == "production"
    default = logging.INFO if is_production else logging.DEBUG
    min_level = logging.getLevelName(level.upper()) if level else default
    if not isinstance(min_level, int):
        min_level = default

    structlog.configure(
        processors=_processors(json_output=is_production),
        wrapper_class=structlog.make_filtering_bound_logger(min_level),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )

    # uvicorn and the SDKs log through stdlib; send them to the same stream.
    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=logging.INFO)
    for name in ("uvicorn", "uvicorn.error", "uvicorn.access"):
        stdlib_logger = logging.getLogger(name)
        stdlib_logger.handlers = []
        stdlib_logger.propagate = True
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def bind_request_context(request_id: str, path: str) -> None:
    """Attach request-scoped fields to every log line for the rest of the request."""
    structlog.contextvars.clear_contextvars()
    structlog.contextvars.bind_contextvars(request_id=request_id, path=path)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)
