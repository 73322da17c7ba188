"""Shared test fixtures for the learning assistant backend."""

import asyncio
import json
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from pydantic import SecretStr

from app.core.config import ProviderConfig, ProviderName, get_settings, load_provider_config
from app.services.providers import AIProvider, ProviderReply

HANG = object()


class FakeStatusError(Exception):
    """Looks like an SDK error carrying an HTTP response."""

    def __init__(self, status_code: int, headers: dict | None = None):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code
        self.response = SimpleNamespace(status_code=status_code, headers=headers or {})


class FakeProvider(AIProvider):
    """Replays scripted outcomes: reply text, ProviderReply, an exception, or HANG.

    The last outcome repeats once the script runs out.
    """

    name = "fake"

    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.prompts: list[str] = []

    @property
    def calls(self) -> int:
        return len(self.prompts)

    async def generate(self, prompt: str) -> ProviderReply:
        self.prompts.append(prompt)
        outcome = self.outcomes[min(len(self.prompts), len(self.outcomes)) - 1]
        if outcome is HANG:
            await asyncio.sleep(10)
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, ProviderReply):
            return outcome
        return ProviderReply(text=outcome, finish_reason="stop")


@pytest.fixture(autouse=True)
def _clear_settings_cache():
    get_settings.cache_clear()
    load_provider_config.cache_clear()
    yield
    get_settings.cache_clear()
    load_provider_config.cache_clear()


@pytest.fixture
def provider_config():
    return ProviderConfig(
        provider=ProviderName.OPENAI,
        api_key=SecretStr("sk-test-secret"),
        model="test-model",
        timeout_ms=1000,
        max_retries=3,
        backoff_base_ms=0,
        backoff_max_ms=0,
    )


@pytest.fixture
def make_provider():
    return FakeProvider


@pytest.fixture
def status_error():
    return FakeStatusError


@pytest.fixture
def hang():
    """Outcome that never answers within any test timeout."""
    return HANG


@pytest.fixture
def beginner_reply():
    return json.dumps(
        {
            "explanation": "Recursion is when a function solves a problem by calling itself on a smaller piece.",
            "examples": [
                "Counting down: countdown(3) prints 3 then calls countdown(2).",
                {"title": "Factorial", "content": "5! = 5 * 4!"},
            ],
            "questions": [],
        }
    )


@pytest.fixture
def summary_reply():
    return json.dumps(
        {
            "explanation": "A hash map stores key/value pairs with average O(1) lookup.",
            "examples": ["Keys are hashed to buckets.", "Collisions are chained or probed."],
            "questions": [],
        }
    )


@pytest.fixture
def quiz_reply():
    return json.dumps(
        {
            "explanation": "A stack is last-in, first-out.",
            "examples": [],
            "questions": [
                {
                    "question": "Which element does pop() remove?",
                    "options": ["The first pushed", "The last pushed", "A random one"],
                    "correct_answer": "The last pushed",
                    "explanation": "Stacks are LIFO.",
                },
                {
                    "question": "What is the time complexity of push?",
                    "options": ["A) O(1)", "B) O(n)", "C) O(log n)", "D) O(n^2)"],
                    "correctAnswer": "A",
                    "explanation": "Push appends to the top.",
                },
            ],
        }
    )


@pytest.fixture
def make_client(provider_config):
    """Build a TestClient with the provider objects injected.

    The lifespan is not run (no ``with`` block), so no real SDK is touched.
    """
    from app.api.dependencies import get_provider, get_provider_config
    from app.main import create_app

    def _make(provider, config=None, **client_kwargs):
        app = create_app()
        app.dependency_overrides[get_provider_config] = lambda: config or provider_config
        app.dependency_overrides[get_provider] = lambda: provider
        return TestClient(app, **client_kwargs)

    return _make
