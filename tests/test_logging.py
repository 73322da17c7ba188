"""Tests for the structlog processors."""

import logging

import structlog

from app.core.logging import _redact_secrets, bind_request_context, setup_logging


def test_secret_keys_are_masked():
    event = _redact_secrets(None, "info", {"event": "x", "api_key": "sk-123", "model": "m"})
    assert event == {"event": "x", "api_key": "***", "model": "m"}


def test_request_context_is_replaced_not_merged():
    bind_request_context("first", "/api/explain")
    bind_request_context("second", "/health")
    assert structlog.contextvars.get_contextvars() == {"request_id": "second", "path": "/health"}
    structlog.contextvars.clear_contextvars()


def test_sdk_loggers_are_quieted():
    setup_logging("production")
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("openai").level == logging.WARNING
    structlog.reset_defaults()
