"""
app/core/errors.py

Error taxonomy for the explain pipeline.

Every failure that reaches the HTTP boundary is a ``ClassifiedError`` with:
  - ``kind``     — validation | ai_service | system
  - ``code``     — stable machine-readable symbol (e.g. ``empty_input``)
  - ``message``  — user-safe text, fit for direct display
  - ``status_code`` — HTTP status used by the exception handler
  - ``detail``   — internal diagnostics only. Logged, never returned.

Rules:
  - Raise ``ClassifiedError`` at the failure site; let it propagate unchanged.
  - ``classify()`` is the only place foreign exceptions become classified ones.
  - Never put stack traces or raw provider payloads in ``message``.
"""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from typing import NamedTuple

from pydantic import ValidationError


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    AI_SERVICE = "ai_service"
    SYSTEM = "system"


class ErrorCode(str, Enum):
    # validation
    EMPTY_INPUT = "empty_input"
    TOO_LONG = "too_long"
    INVALID_MODE = "invalid_mode"
    INVALID_TOPIC_TYPE = "invalid_topic_type"
    UNSAFE_CONTENT = "unsafe_content"
    INVALID_REQUEST = "invalid_request"
    # ai_service
    TIMEOUT = "timeout"
    RATE_LIMITED = "rate_limited"
    UPSTREAM_ERROR = "upstream_error"
    AUTH_FAILED = "auth_failed"
    PROVIDER_REJECTED = "provider_rejected"
    EMPTY_RESPONSE = "empty_response"
    MALFORMED_RESPONSE = "malformed_response"
    EXHAUSTED_RETRIES = "exhausted_retries"
    # system
    MISSING_CONFIGURATION = "missing_configuration"
    INTERNAL_ERROR = "internal_error"


class _Entry(NamedTuple):
    kind: ErrorKind
    status_code: int
    message: str


_CATALOGUE: dict[ErrorCode, _Entry] = {
    ErrorCode.EMPTY_INPUT: _Entry(
        ErrorKind.VALIDATION, 400, "Please enter a topic, question or code snippet."
    ),
    ErrorCode.TOO_LONG: _Entry(
        ErrorKind.VALIDATION, 400, "Your input is too long. Please keep it under 2000 characters."
    ),
    ErrorCode.INVALID_MODE: _Entry(
        ErrorKind.VALIDATION, 400, "Learning mode must be one of: beginner, summary, quiz."
    ),
    ErrorCode.INVALID_TOPIC_TYPE: _Entry(
        ErrorKind.VALIDATION, 400, "Topic type must be either 'concept' or 'code'."
    ),
    ErrorCode.UNSAFE_CONTENT: _Entry(
        ErrorKind.VALIDATION, 400, "This request can't be processed. Please ask about an educational topic."
    ),
    ErrorCode.INVALID_REQUEST: _Entry(
        ErrorKind.VALIDATION, 400, "The request body is invalid. Send 'input' and 'mode' as text."
    ),
    ErrorCode.TIMEOUT: _Entry(
        ErrorKind.AI_SERVICE, 504, "The AI service took too long to respond. Please try again."
    ),
    ErrorCode.RATE_LIMITED: _Entry(
        ErrorKind.AI_SERVICE, 429, "The AI service is busy right now. Please wait a moment and try again."
    ),
    ErrorCode.UPSTREAM_ERROR: _Entry(
        ErrorKind.AI_SERVICE, 502, "The AI service is temporarily unavailable. Please try again."
    ),
    ErrorCode.AUTH_FAILED: _Entry(
        ErrorKind.AI_SERVICE, 502, "The AI service rejected our credentials. Please contact support."
    ),
    ErrorCode.PROVIDER_REJECTED: _Entry(
        ErrorKind.AI_SERVICE, 502, "The AI service could not process this request."
    ),
    ErrorCode.EMPTY_RESPONSE: _Entry(
        ErrorKind.AI_SERVICE, 502, "The AI service returned an empty answer. Please try again."
    ),
    ErrorCode.MALFORMED_RESPONSE: _Entry(
        ErrorKind.AI_SERVICE, 502, "The AI service returned an answer we couldn't understand. Please try again."
    ),
    ErrorCode.EXHAUSTED_RETRIES: _Entry(
        ErrorKind.AI_SERVICE, 502, "The AI service is not responding after several attempts. Please try again later."
    ),
    ErrorCode.MISSING_CONFIGURATION: _Entry(
        ErrorKind.SYSTEM, 500, "The service is not configured correctly. Please contact support."
    ),
    ErrorCode.INTERNAL_ERROR: _Entry(
        ErrorKind.SYSTEM, 500, "Something went wrong on our side. Please try again."
    ),
}


class ClassifiedError(Exception):
    """A failure mapped into the three-kind taxonomy.

    Args:
        code: The stable error code. Determines kind, default message and status.
        message: Override for the user-safe message.
        detail: Internal diagnostic text (logged only).
        status_code: Override for the HTTP status (e.g. 504 for retries that
            ended on a timeout).
    """

    def __init__(
        self,
        code: ErrorCode,
        *,
        message: str | None = None,
        detail: str | None = None,
        status_code: int | None = None,
    ) -> None:
        entry = _CATALOGUE[code]
        self.code = code
        self.kind = entry.kind
        self.message = message or entry.message
        self.status_code = status_code or entry.status_code
        self.detail = detail
        self.occurred_at = datetime.now(timezone.utc)
        super().__init__(f"{self.kind.value}/{self.code.value}: {self.message}")

    @property
    def retryable(self) -> bool:
        return self.code in (ErrorCode.TIMEOUT, ErrorCode.RATE_LIMITED, ErrorCode.UPSTREAM_ERROR)

    def to_payload(self) -> dict:
        """The ``error`` object of the HTTP failure envelope."""
        return {
            "type": self.kind.value,
            "message": self.message,
            "code": self.code.value,
            "timestamp": self.occurred_at.isoformat(),
        }

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ClassifiedError):
            return NotImplemented
        return (
            self.code == other.code
            and self.message == other.message
            and self.status_code == other.status_code
            and self.occurred_at == other.occurred_at
        )

    def __hash__(self) -> int:
        return hash((self.code, self.message, self.status_code, self.occurred_at))


def classify(error: BaseException) -> ClassifiedError:
    """Map any exception into a ``ClassifiedError``.

    Already-classified errors pass through untouched, so
    ``classify(classify(e)) == classify(e)``.
    """
    if isinstance(error, ClassifiedError):
        return error

    if isinstance(error, (asyncio.TimeoutError, TimeoutError)):
        classified = ClassifiedError(ErrorCode.TIMEOUT, detail=str(error) or "timed out")
    elif isinstance(error, ValidationError) and error.title.endswith("Settings"):
        classified = ClassifiedError(ErrorCode.MISSING_CONFIGURATION, detail=error.title)
    else:
        classified = ClassifiedError(
            ErrorCode.INTERNAL_ERROR,
            detail=f"{type(error).__name__}: {error}",
        )

    classified.__cause__ = error
    return classified
