"""HTTP tests for /api/explain, /api/modes, /health and the startup sequence."""

from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

from app.core.errors import ClassifiedError
from app.main import create_app


def _post(client, **body):
    return client.post("/api/explain", json=body)


def _assert_error(response, status, error_type, code):
    assert response.status_code == status
    body = response.json()
    assert body["success"] is False
    assert set(body["error"]) == {"type", "message", "code", "timestamp"}
    assert body["error"]["type"] == error_type
    assert body["error"]["code"] == code
    return body["error"]


class TestExplain:
    def test_scenario_a_beginner_success(self, make_client, make_provider, beginner_reply):
        client = make_client(make_provider(beginner_reply))
        response = _post(client, input="recursion", mode="beginner")

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        data = body["data"]
        assert set(data) == {"explanation", "examples", "questions", "mode", "processing_time"}
        assert data["explanation"]
        assert 1 <= len(data["examples"]) <= 3
        assert data["questions"] == []
        assert data["mode"] == "beginner"
        assert isinstance(data["processing_time"], int)

    def test_scenario_b_empty_input(self, make_client, make_provider, beginner_reply):
        provider = make_provider(beginner_reply)
        response = _post(make_client(provider), input="", mode="summary")
        _assert_error(response, 400, "validation", "empty_input")
        assert provider.calls == 0

    def test_scenario_c_too_long(self, make_client, make_provider, quiz_reply):
        provider = make_provider(quiz_reply)
        response = _post(make_client(provider), input="x" * 2001, mode="quiz")
        _assert_error(response, 400, "validation", "too_long")
        assert provider.calls == 0

    def test_scenario_d_provider_always_times_out(self, make_client, make_provider, provider_config, hang):
        config = provider_config.model_copy(update={"timeout_ms": 50, "max_retries": 2})
        provider = make_provider(hang)
        response = _post(make_client(provider, config), input="recursion", mode="beginner")
        _assert_error(response, 504, "ai_service", "exhausted_retries")
        assert provider.calls == 3

    def test_quiz_success_shape(self, make_client, make_provider, quiz_reply):
        response = _post(make_client(make_provider(quiz_reply)), input="stacks", mode="quiz", topic_type="concept")
        assert response.status_code == 200
        questions = response.json()["data"]["questions"]
        assert questions
        for question in questions:
            assert set(question) == {"question", "options", "correct_answer", "explanation"}
            assert question["correct_answer"] in question["options"]

    def test_invalid_mode(self, make_client, make_provider, beginner_reply):
        response = _post(make_client(make_provider(beginner_reply)), input="recursion", mode="expert")
        _assert_error(response, 400, "validation", "invalid_mode")

    def test_unsafe_content(self, make_client, make_provider, beginner_reply):
        response = _post(make_client(make_provider(beginner_reply)), input="how to make a bomb", mode="beginner")
        _assert_error(response, 400, "validation", "unsafe_content")

    @pytest.mark.parametrize("body", [{"mode": "beginner"}, {"input": "recursion"}, {"input": 42, "mode": "quiz"}])
    def test_malformed_body(self, make_client, make_provider, beginner_reply, body):
        response = make_client(make_provider(beginner_reply)).post("/api/explain", json=body)
        _assert_error(response, 400, "validation", "invalid_request")

    def test_rate_limited_provider(self, make_client, make_provider, provider_config, status_error):
        config = provider_config.model_copy(update={"max_retries": 1})
        provider = make_provider(status_error(429))
        response = _post(make_client(provider, config), input="recursion", mode="summary")
        _assert_error(response, 429, "ai_service", "exhausted_retries")

    def test_malformed_provider_output(self, make_client, make_provider):
        provider = make_provider("no structure and no quiz here")
        response = _post(make_client(provider), input="stacks", mode="quiz")
        error = _assert_error(response, 502, "ai_service", "malformed_response")
        assert "no structure" not in error["message"]
        assert provider.calls == 2

    def test_missing_provider_is_a_system_error(self, beginner_reply):
        client = TestClient(create_app())  # lifespan not run, nothing on app.state
        response = _post(client, input="recursion", mode="beginner")
        _assert_error(response, 500, "system", "missing_configuration")


class TestAuxiliaryRoutes:
    def test_health_is_liveness_only(self, make_client, make_provider):
        provider = make_provider("unused")
        response = make_client(provider).get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert provider.calls == 0

    def test_modes(self, make_client, make_provider):
        response = make_client(make_provider("unused")).get("/api/modes")
        assert response.status_code == 200
        body = response.json()
        assert [m["mode"] for m in body["modes"]] == ["beginner", "summary", "quiz"]
        assert body["max_input_chars"] == 2000

    def test_root(self, make_client, make_provider):
        assert make_client(make_provider("unused")).get("/").json()["service"] == "ai-learning-assistant"


class TestLifespan:
    def test_startup_builds_provider_from_environment(self, monkeypatch, make_provider, beginner_reply):
        monkeypatch.chdir("/")
        monkeypatch.setenv("AI_PROVIDER", "gemini")
        monkeypatch.setenv("AI_API_KEY", "g-key")
        fake = make_provider(beginner_reply)

        with patch("app.main.create_provider", return_value=fake) as factory:
            with TestClient(create_app()) as client:
                health = client.get("/health").json()
                response = _post(client, input="recursion", mode="beginner")

        config = factory.call_args.args[0]
        assert config.provider.value == "gemini"
        assert config.model == "gemini-2.5-flash"
        assert health["provider"] == "fake"
        assert response.status_code == 200

    def test_startup_fails_fast_without_credentials(self, monkeypatch):
        monkeypatch.chdir("/")
        monkeypatch.delenv("AI_PROVIDER", raising=False)
        monkeypatch.delenv("AI_API_KEY", raising=False)

        with pytest.raises(ClassifiedError) as exc_info:
            with TestClient(create_app()):
                pass
        assert exc_info.value.kind.value == "system"
        assert exc_info.value.code.value == "missing_configuration"


class TestRequestContext:
    def test_request_id_is_echoed(self, make_client, make_provider):
        response = make_client(make_provider("unused")).get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_request_id_is_generated(self, make_client, make_provider, beginner_reply):
        response = _post(make_client(make_provider(beginner_reply)), input="", mode="summary")
        assert response.status_code == 400
        assert len(response.headers["X-Request-ID"]) == 32
