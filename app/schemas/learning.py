"""
app/schemas/learning.py

Pydantic v2 models for:
  1. The ``POST /api/explain`` request body and its success/failure envelopes.
  2. The request-scoped value objects of the explain pipeline
     (``LearningRequest``, ``QuizQuestion``, ``LearningResponse``).

Rules:
  - Every model here is request-scoped. Nothing is stored or cached.
  - ``ExplainRequest`` is deliberately lenient: length, emptiness and enum checks
    belong to ``app.services.validator`` so they map to stable error codes.
  - ``QuizQuestion`` and ``LearningResponse`` enforce their invariants on
    construction; an instance that exists is valid.
"""

from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

MAX_INPUT_CHARS = 2000
MAX_EXAMPLES = 3
MIN_OPTIONS = 3
MAX_OPTIONS = 4


class LearningMode(str, Enum):
    BEGINNER = "beginner"
    SUMMARY = "summary"
    QUIZ = "quiz"


class TopicType(str, Enum):
    CONCEPT = "concept"
    CODE = "code"


# ── HTTP request body ─────────────────────────────────────────────────────────


class ExplainRequest(BaseModel):
    """Request body for POST /api/explain."""

    model_config = ConfigDict(extra="ignore")

    input: str = Field(..., description="Topic, question or code snippet to learn about")
    mode: str = Field(..., description="beginner | summary | quiz")
    topic_type: str | None = Field(
        default=None,
        description="concept | code. Auto-detected when omitted.",
    )


# ── Pipeline value objects ────────────────────────────────────────────────────


class LearningRequest(BaseModel):
    """A validated, sanitized explain request. Immutable once built."""

    model_config = ConfigDict(frozen=True)

    input: str = Field(..., min_length=1, max_length=MAX_INPUT_CHARS)
    mode: LearningMode
    topic_type: TopicType = TopicType.CONCEPT
    submitted_at: datetime


class QuizQuestion(BaseModel):
    """One multiple-choice question."""

    model_config = ConfigDict(frozen=True)

    question: str = Field(..., min_length=1)
    options: list[str] = Field(..., min_length=MIN_OPTIONS, max_length=MAX_OPTIONS)
    correct_answer: str = Field(..., min_length=1)
    explanation: str = Field(..., min_length=1)

    @field_validator("question", "correct_answer", "explanation", mode="before")
    @classmethod
    def strip_text(cls, v):
        return v.strip() if isinstance(v, str) else v

    @field_validator("options")
    @classmethod
    def options_must_be_unique_and_non_empty(cls, v: list[str]) -> list[str]:
        cleaned = [option.strip() for option in v]
        if any(not option for option in cleaned):
            raise ValueError("options must not be empty")
        if len({option.casefold() for option in cleaned}) != len(cleaned):
            raise ValueError("options must be unique")
        return cleaned

    @model_validator(mode="after")
    def correct_answer_must_be_an_option(self) -> "QuizQuestion":
        if self.correct_answer not in self.options:
            raise ValueError("correct_answer must be one of the options")
        return self


class LearningResponse(BaseModel):
    """The formatted result of one explain request."""

    model_config = ConfigDict(frozen=True)

    explanation: str = Field(..., min_length=1)
    examples: list[str] = Field(default_factory=list, max_length=MAX_EXAMPLES)
    questions: list[QuizQuestion] = Field(default_factory=list)
    mode: LearningMode
    processing_time: int = Field(..., ge=0, description="Milliseconds from acceptance to completion")

    @model_validator(mode="after")
    def questions_match_mode(self) -> "LearningResponse":
        if self.mode is LearningMode.QUIZ and not self.questions:
            raise ValueError("quiz responses need at least one question")
        if self.mode is not LearningMode.QUIZ and self.questions:
            raise ValueError("only quiz responses carry questions")
        return self


# ── Envelopes ─────────────────────────────────────────────────────────────────


class ExplainSuccess(BaseModel):
    success: Literal[True] = True
    data: LearningResponse


class ErrorPayload(BaseModel):
    type: Literal["validation", "ai_service", "system"]
    message: str
    code: str
    timestamp: str


class ExplainFailure(BaseModel):
    success: Literal[False] = False
    error: ErrorPayload


class ModeInfo(BaseModel):
    mode: LearningMode
    label: str
    description: str


class ModesResponse(BaseModel):
    modes: list[ModeInfo]
    max_input_chars: int = MAX_INPUT_CHARS


class HealthResponse(BaseModel):
    status: Literal["ok"]
    version: str
    environment: str
    provider: str | None = None
