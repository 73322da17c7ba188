"""Tests for the end-to-end explain pipeline (fake provider, no HTTP)."""

import asyncio
import json
from unittest.mock import patch

import pytest

from app.core.errors import ClassifiedError, ErrorCode, ErrorKind
from app.schemas.learning import LearningMode
from app.services.pipeline import run_explain


async def _run(provider, config, raw_input="recursion", raw_mode="beginner", raw_topic_type=None):
    return await run_explain(
        raw_input=raw_input,
        raw_mode=raw_mode,
        raw_topic_type=raw_topic_type,
        config=config,
        provider=provider,
    )


@pytest.mark.asyncio
async def test_beginner_happy_path(make_provider, provider_config, beginner_reply):
    provider = make_provider(beginner_reply)
    response = await _run(provider, provider_config)
    assert response.mode is LearningMode.BEGINNER
    assert response.explanation
    assert 1 <= len(response.examples) <= 3
    assert response.questions == []
    assert provider.calls == 1


@pytest.mark.asyncio
async def test_quiz_happy_path(make_provider, provider_config, quiz_reply):
    response = await _run(make_provider(quiz_reply), provider_config, raw_input="stacks", raw_mode="quiz")
    assert response.questions
    for question in response.questions:
        assert len(question.options) in (3, 4)
        assert question.correct_answer in question.options


@pytest.mark.asyncio
async def test_validation_failure_never_calls_provider(make_provider, provider_config, beginner_reply):
    provider = make_provider(beginner_reply)
    with pytest.raises(ClassifiedError) as exc_info:
        await _run(provider, provider_config, raw_input="", raw_mode="summary")
    assert exc_info.value.kind is ErrorKind.VALIDATION
    assert exc_info.value.code is ErrorCode.EMPTY_INPUT
    assert provider.calls == 0


@pytest.mark.asyncio
async def test_malformed_reply_gets_one_strict_reask(make_provider, provider_config, quiz_reply):
    provider = make_provider("I think stacks are neat.", quiz_reply)
    response = await _run(provider, provider_config, raw_input="stacks", raw_mode="quiz")
    assert provider.calls == 2
    assert "previous answer was unusable" not in provider.prompts[0]
    assert "previous answer was unusable" in provider.prompts[1]
    assert response.questions


@pytest.mark.asyncio
async def test_second_malformed_reply_is_surfaced(make_provider, provider_config):
    provider = make_provider(json.dumps({"explanation": "x", "questions": []}))
    with pytest.raises(ClassifiedError) as exc_info:
        await _run(provider, provider_config, raw_input="stacks", raw_mode="quiz")
    assert exc_info.value.code is ErrorCode.MALFORMED_RESPONSE
    assert exc_info.value.kind is ErrorKind.AI_SERVICE
    assert provider.calls == 2


@pytest.mark.asyncio
async def test_empty_reply_is_reasked(make_provider, provider_config, summary_reply):
    provider = make_provider("   ", summary_reply)
    response = await _run(provider, provider_config, raw_mode="summary")
    assert response.mode is LearningMode.SUMMARY
    assert provider.calls == 2


@pytest.mark.asyncio
async def test_provider_errors_are_not_reasked(make_provider, provider_config, status_error):
    provider = make_provider(status_error(401))
    with pytest.raises(ClassifiedError) as exc_info:
        await _run(provider, provider_config)
    assert exc_info.value.code is ErrorCode.AUTH_FAILED
    assert provider.calls == 1


@pytest.mark.asyncio
async def test_unexpected_error_becomes_single_system_error(make_provider, provider_config, beginner_reply):
    with patch("app.services.pipeline.format_response", side_effect=KeyError("oops")):
        with pytest.raises(ClassifiedError) as exc_info:
            await _run(make_provider(beginner_reply), provider_config)
    error = exc_info.value
    assert error.kind is ErrorKind.SYSTEM
    assert error.code is ErrorCode.INTERNAL_ERROR
    assert isinstance(error.__cause__, KeyError)


@pytest.mark.asyncio
async def test_processing_time_covers_the_provider_call(make_provider, provider_config, beginner_reply):
    class SlowProvider(make_provider):
        async def generate(self, prompt):
            await asyncio.sleep(0.05)
            return await super().generate(prompt)

    response = await _run(SlowProvider(beginner_reply), provider_config)
    assert response.processing_time >= 45


@pytest.mark.asyncio
async def test_requests_share_no_state(make_provider, provider_config, beginner_reply, summary_reply):
    first = await _run(make_provider(beginner_reply), provider_config, raw_input="recursion")
    second = await _run(make_provider(summary_reply), provider_config, raw_input="hash maps", raw_mode="summary")
    assert first.mode is LearningMode.BEGINNER
    assert second.mode is LearningMode.SUMMARY
    assert first.explanation != second.explanation


@pytest.mark.asyncio
async def test_strict_reask_shares_the_attempt_budget(make_provider, provider_config, hang):
    config = provider_config.model_copy(update={"timeout_ms": 20, "max_retries": 2})
    provider = make_provider("I think stacks are neat.", hang)
    with pytest.raises(ClassifiedError) as exc_info:
        await _run(provider, config, raw_input="stacks", raw_mode="quiz")
    assert exc_info.value.code is ErrorCode.EXHAUSTED_RETRIES
    assert provider.calls == config.max_retries + 1


@pytest.mark.asyncio
async def test_no_reask_without_retries(make_provider, provider_config, quiz_reply):
    config = provider_config.model_copy(update={"max_retries": 0})
    provider = make_provider("I think stacks are neat.", quiz_reply)
    with pytest.raises(ClassifiedError) as exc_info:
        await _run(provider, config, raw_input="stacks", raw_mode="quiz")
    assert exc_info.value.code is ErrorCode.MALFORMED_RESPONSE
    assert provider.calls == 1
