"""
app/core/config.py

Process and provider settings, read from the environment or `.env` by
pydantic-settings. A missing or invalid provider variable stops startup.

Two settings groups:
  - ``Settings``          — process-level knobs (environment, version, CORS).
  - ``ProviderSettings``  — the generative-AI backend, read with the ``AI_`` prefix.

The provider settings are converted once, at startup, into an immutable
``ProviderConfig`` that is passed explicitly into every pipeline run.

Usage:
    from app.core.config import get_settings, load_provider_config
    settings = get_settings()
    provider_config = load_provider_config()
"""

from enum import Enum
from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.errors import ClassifiedError, ErrorCode


class ProviderName(str, Enum):
    GEMINI = "gemini"
    OPENAI = "openai"
    ANTHROPIC = "anthropic"


DEFAULT_MODELS: dict[ProviderName, str] = {
    ProviderName.GEMINI: "gemini-2.5-flash",
    ProviderName.OPENAI: "gpt-4o-mini",
    ProviderName.ANTHROPIC: "claude-3-5-haiku-latest",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Application ───────────────────────────────────────────────────────────
    environment: Literal["development", "production"] = Field(
        default="development",
        description="Selects log format, log level default, CORS policy and API docs",
    )
    app_version: str = Field(default="0.1.0")
    log_level: str | None = Field(default=None, description="Overrides the per-environment default level")
    cors_origins: str = Field(
        default="",
        description="Comma-separated list of allowed origins in production",
    )

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def allowed_origins(self) -> list[str]:
        if not self.is_production:
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]


class ProviderSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="AI_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # ── Provider selection & credentials ──────────────────────────────────────
    provider: ProviderName = Field(..., description="gemini | openai | anthropic")
    api_key: SecretStr = Field(..., description="Provider API key. Never logged.")
    base_url: str | None = Field(default=None, description="Override the provider endpoint")
    model: str | None = Field(default=None, description="Model name; defaults per provider")

    # ── Call limits ───────────────────────────────────────────────────────────
    timeout_ms: int = Field(default=30000, gt=0)
    max_retries: int = Field(default=3, ge=0, le=10)
    backoff_base_ms: int = Field(default=500, ge=0)
    backoff_max_ms: int = Field(default=8000, ge=0)
    temperature: float = Field(default=0.3, ge=0.0, le=2.0)

    @field_validator("provider", mode="before")
    @classmethod
    def provider_is_case_insensitive(cls, v):
        return v.strip().lower() if isinstance(v, str) else v

    @field_validator("api_key")
    @classmethod
    def api_key_must_not_be_empty(cls, v: SecretStr) -> SecretStr:
        if not v.get_secret_value().strip():
            raise ValueError("AI_API_KEY is not set. Copy .env.example to .env and fill in the value.")
        return v

    @field_validator("base_url")
    @classmethod
    def base_url_must_have_scheme(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        if not v.startswith(("https://", "http://")):
            raise ValueError("AI_BASE_URL must start with http:// or https://")
        return v.rstrip("/")


class ProviderConfig(BaseModel):
    """Immutable provider configuration shared read-only by all requests."""

    model_config = ConfigDict(frozen=True)

    provider: ProviderName
    api_key: SecretStr
    base_url: str | None = None
    model: str
    timeout_ms: int = 30000
    max_retries: int = 3
    backoff_base_ms: int = 500
    backoff_max_ms: int = 8000
    temperature: float = 0.3

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached process settings; tests call ``get_settings.cache_clear()``."""
    return Settings()


@lru_cache(maxsize=1)
def load_provider_config() -> ProviderConfig:
    """Build the ``ProviderConfig`` from the environment.

    Raises:
        ClassifiedError: ``system/missing_configuration`` when a required
            ``AI_*`` variable is missing or invalid.
    """
    try:
        provider_settings = ProviderSettings()
    except ValidationError as exc:
        # Only the offending variable names are kept; input values may be secrets.
        fields = sorted({"AI_" + str(err["loc"][0]).upper() for err in exc.errors() if err.get("loc")})
        raise ClassifiedError(
            ErrorCode.MISSING_CONFIGURATION,
            detail=f"Invalid or missing settings: {', '.join(fields) or 'unknown'}",
        ) from exc

    return ProviderConfig(
        provider=provider_settings.provider,
        api_key=provider_settings.api_key,
        base_url=provider_settings.base_url,
        model=provider_settings.model or DEFAULT_MODELS[provider_settings.provider],
        timeout_ms=provider_settings.timeout_ms,
        max_retries=provider_settings.max_retries,
        backoff_base_ms=provider_settings.backoff_base_ms,
        backoff_max_ms=provider_settings.backoff_max_ms,
        temperature=provider_settings.temperature,
    )
