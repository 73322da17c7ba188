"""
app/services/providers.py

Generative-AI provider backends.

Every backend implements ``AIProvider.generate(prompt) -> ProviderReply``.
The adapter in ``app/services/llm.py`` depends only on that interface, so
swapping providers never touches the pipeline.

The concrete backend is chosen once at startup from ``ProviderConfig.provider``
(``create_provider``) and stored on ``app.state``; it is never switched
mid-process.

Rules:
    - SDK-level retries are disabled (``max_retries=0``); the adapter owns the
      retry/backoff loop and the per-attempt timeout.
    - The API key is unwrapped from ``SecretStr`` only when handed to the SDK.
    - SDK imports are deferred so only the selected provider's package is loaded.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass

from app.core.config import ProviderConfig, ProviderName
from app.core.logging import get_logger

logger = get_logger(__name__)

# Finish reasons that mean the provider's own moderation stopped the answer.
MODERATION_FINISH_REASONS = frozenset(
    {"safety", "content_filter", "prohibited_content", "blocklist", "spii", "refusal"}
)


@dataclass(frozen=True)
class ProviderReply:
    text: str
    finish_reason: str | None = None

    @property
    def blocked_by_moderation(self) -> bool:
        return (self.finish_reason or "").lower() in MODERATION_FINISH_REASONS


class AIProvider(ABC):
    """Capability interface over a generative-AI backend."""

    name: str = "unknown"

    @abstractmethod
    async def generate(self, prompt: str) -> ProviderReply:
        """Send one prompt and return the provider's raw reply.

        One call, one network request. Implementations must not retry;
        failures propagate as the SDK's own exceptions.
        """


def _content_to_text(content) -> str:
    """Flatten a chat message ``content`` (string or list of parts) to text."""
    if isinstance(content, list):
        return "".join(
            str(part.get("text", "")) if isinstance(part, dict) else str(part)
            for part in content
        )
    return str(content or "")


class LangchainChatProvider(AIProvider):
    """Shared plumbing for providers reached through a Langchain chat model."""

    def __init__(self, config: ProviderConfig) -> None:
        self.model_name = config.model
        self._model = self._create_model(config)
        logger.info("llm_init", provider=self.name, model=self.model_name)

    @abstractmethod
    def _create_model(self, config: ProviderConfig):
        """Build the Langchain chat model for this provider."""

    async def generate(self, prompt: str) -> ProviderReply:
        message = await self._model.ainvoke(prompt)
        metadata = getattr(message, "response_metadata", None) or {}
        finish_reason = metadata.get("finish_reason") or metadata.get("stop_reason")
        return ProviderReply(
            text=_content_to_text(getattr(message, "content", message)),
            finish_reason=str(finish_reason) if finish_reason is not None else None,
        )


class GeminiProvider(LangchainChatProvider):
    name = ProviderName.GEMINI.value

    def _create_model(self, config: ProviderConfig):
        from langchain_google_genai import ChatGoogleGenerativeAI

        extra = {"client_options": {"api_endpoint": config.base_url}} if config.base_url else {}
        return ChatGoogleGenerativeAI(
            model=config.model,
            google_api_key=config.api_key.get_secret_value(),
            temperature=config.temperature,
            max_retries=0,
            **extra,
        )


class OpenAIProvider(LangchainChatProvider):
    name = ProviderName.OPENAI.value

    def _create_model(self, config: ProviderConfig):
        from langchain_openai import ChatOpenAI

        return ChatOpenAI(
            model=config.model,
            api_key=config.api_key.get_secret_value(),
            base_url=config.base_url,
            temperature=config.temperature,
            max_retries=0,
        )


class AnthropicProvider(LangchainChatProvider):
    name = ProviderName.ANTHROPIC.value

    def _create_model(self, config: ProviderConfig):
        from langchain_anthropic import ChatAnthropic

        extra = {"base_url": config.base_url} if config.base_url else {}
        return ChatAnthropic(
            model=config.model,
            api_key=config.api_key.get_secret_value(),
            temperature=config.temperature,
            max_tokens=2048,
            max_retries=0,
            **extra,
        )


_PROVIDERS: dict[ProviderName, type[LangchainChatProvider]] = {
    ProviderName.GEMINI: GeminiProvider,
    ProviderName.OPENAI: OpenAIProvider,
    ProviderName.ANTHROPIC: AnthropicProvider,
}


def create_provider(config: ProviderConfig) -> AIProvider:
    """Instantiate the backend named by ``config.provider``."""
    return _PROVIDERS[config.provider](config)
