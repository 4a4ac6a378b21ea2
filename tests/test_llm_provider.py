"""
Unit tests for the LiteLLM-backed provider, error classification and the
retrying wrapper. litellm.completion is always patched.
"""

import json
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from conftest import FakeProvider
from docpipeline.app.config import Settings, settings
from docpipeline.app.core.errors import LLMError
from docpipeline.app.core.llm_provider import (
    SCHEMA_FALLBACK_INSTRUCTION,
    CircuitBreakerProvider,
    FallbackProvider,
    LiteLLMProvider,
    ResilientProvider,
    build_provider,
    classify_error,
)
from docpipeline.app.models.llm import LLMRequest, MediaType, Message, Role

SCHEMA = {"type": "object", "properties": {"name": {"type": "string"}}, "required": ["name"]}


class HTTPStatusError(Exception):
    def __init__(self, status_code):
        super().__init__(f"HTTP {status_code}")
        self.status_code = status_code


def _completion_response(content='{"name": "Alex"}', finish_reason="stop"):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=content), finish_reason=finish_reason)],
        model="claude-test",
        usage=SimpleNamespace(prompt_tokens=120, completion_tokens=30),
    )


@pytest.fixture
def litellm_provider():
    return LiteLLMProvider(
        model="anthropic/claude-test",
        api_key="sk-test",
        base_url="http://llm.local",
        timeout=42,
        max_tokens=1000,
        native_schema=True,
    )


class TestLiteLLMProvider:
    """Request building and response parsing."""

    def test_text_request(self, litellm_provider):
        """System prompt, messages, limits and credentials are passed through."""
        request = LLMRequest(messages=[Message.text(Role.USER, "hello")], system_prompt="be terse")

        with patch("docpipeline.app.core.llm_provider.litellm.completion", return_value=_completion_response("hi")) as mock_completion:
            resp = litellm_provider.complete(request)

        kwargs = mock_completion.call_args.kwargs
        assert kwargs["model"] == "anthropic/claude-test"
        assert kwargs["api_key"] == "sk-test"
        assert kwargs["api_base"] == "http://llm.local"
        assert kwargs["timeout"] == 42
        assert kwargs["max_tokens"] == 1000
        assert kwargs["messages"][0] == {"role": "system", "content": "be terse"}
        assert kwargs["messages"][1] == {"role": "user", "content": [{"type": "text", "text": "hello"}]}
        assert "response_format" not in kwargs
        assert resp.content == "hi"
        assert resp.model == "claude-test"
        assert resp.input_tokens == 120
        assert resp.output_tokens == 30
        assert resp.stop_reason == "stop"

    def test_image_and_pdf_blocks(self, litellm_provider):
        """Images become data-URL image parts; PDFs become file parts."""
        request = LLMRequest(messages=[
            Message.image(Role.USER, MediaType.PNG, b"png-bytes", "read this"),
            Message.image(Role.USER, MediaType.PDF, b"pdf-bytes"),
        ])

        with patch("docpipeline.app.core.llm_provider.litellm.completion", return_value=_completion_response()) as mock_completion:
            litellm_provider.complete(request)

        messages = mock_completion.call_args.kwargs["messages"]
        image_part, text_part = messages[0]["content"]
        assert image_part["type"] == "image_url"
        assert image_part["image_url"]["url"] == "data:image/png;base64,cG5nLWJ5dGVz"
        assert text_part == {"type": "text", "text": "read this"}
        (pdf_part,) = messages[1]["content"]
        assert pdf_part["type"] == "file"
        assert pdf_part["file"]["file_data"].startswith("data:application/pdf;base64,")

    def test_native_schema_uses_response_format(self, litellm_provider):
        """Constrained decoding is requested when the model supports it."""
        request = LLMRequest(messages=[Message.text(Role.USER, "x")], output_schema=SCHEMA, schema_name="resume")

        with patch("docpipeline.app.core.llm_provider.litellm.completion", return_value=_completion_response()) as mock_completion:
            litellm_provider.complete(request)

        response_format = mock_completion.call_args.kwargs["response_format"]
        assert response_format["type"] == "json_schema"
        assert response_format["json_schema"]["name"] == "resume"
        assert response_format["json_schema"]["schema"] == SCHEMA
        assert response_format["json_schema"]["strict"] is True

    def test_schema_fallback_adds_instruction(self):
        """Without native support the schema is appended to the system prompt."""
        provider = LiteLLMProvider(model="ollama/llama3", native_schema=False)
        request = LLMRequest(messages=[Message.text(Role.USER, "x")], system_prompt="extract", output_schema=SCHEMA)

        with patch("docpipeline.app.core.llm_provider.litellm.completion", return_value=_completion_response()) as mock_completion:
            provider.complete(request)

        kwargs = mock_completion.call_args.kwargs
        system = kwargs["messages"][0]["content"]
        assert "response_format" not in kwargs
        assert system.startswith("extract\n\n")
        assert SCHEMA_FALLBACK_INSTRUCTION.format(schema=json.dumps(SCHEMA, indent=2)) in system
        assert "api_key" not in kwargs

    def test_asks_litellm_about_schema_support(self):
        """Unset native_schema defers to litellm.supports_response_schema."""
        provider = LiteLLMProvider(model="openai/gpt-4o-mini")

        with patch("docpipeline.app.core.llm_provider.litellm.supports_response_schema", return_value=True) as mock_support:
            assert provider.supports_native_schema("openai/gpt-4o-mini") is True
        mock_support.assert_called_once_with(model="openai/gpt-4o-mini")

    def test_library_errors_become_llm_errors(self, litellm_provider):
        """Exceptions from litellm are classified and chained."""
        request = LLMRequest(messages=[Message.text(Role.USER, "x")])
        cause = HTTPStatusError(503)

        with patch("docpipeline.app.core.llm_provider.litellm.completion", side_effect=cause):
            with pytest.raises(LLMError) as exc_info:
                litellm_provider.complete(request)

        assert exc_info.value.retryable is True
        assert exc_info.value.provider == "anthropic"
        assert exc_info.value.__cause__ is cause

    def test_malformed_response(self, litellm_provider):
        """A response without choices is a fatal provider error."""
        request = LLMRequest(messages=[Message.text(Role.USER, "x")])

        with patch("docpipeline.app.core.llm_provider.litellm.completion", return_value=SimpleNamespace(choices=[])):
            with pytest.raises(LLMError) as exc_info:
                litellm_provider.complete(request)

        assert exc_info.value.code == "bad_response"
        assert exc_info.value.retryable is False


class TestClassifyError:
    """Retryable versus fatal classification."""

    @pytest.mark.parametrize("status,retryable", [
        (429, True),
        (500, True),
        (503, True),
        (408, True),
        (400, False),
        (401, False),
        (403, False),
        (404, False),
    ])
    def test_by_status_code(self, status, retryable):
        """HTTP status decides when no typed litellm error matches."""
        err = classify_error("anthropic", HTTPStatusError(status))

        assert err.retryable is retryable
        assert err.code == f"http_{status}"

    def test_unknown_error_is_retryable(self):
        """Unrecognised failures are left to the retry budget."""
        err = classify_error("anthropic", RuntimeError("socket closed"))

        assert err.retryable is True
        assert err.code == "unknown"
        assert str(err) == "anthropic: unknown: socket closed"

    def test_llm_error_passes_through(self):
        """Already-classified errors are returned unchanged."""
        original = LLMError("anthropic", "nope", code="invalid_request")

        assert classify_error("other", original) is original


class TestResilientProvider:
    """In-call retry with backoff."""

    def _request(self):
        return LLMRequest(messages=[Message.text(Role.USER, "x")])

    def test_retries_retryable_errors(self):
        """Transient failures are retried until a reply arrives."""
        inner = FakeProvider([
            LLMError("fake", "busy", code="rate_limit", retryable=True),
            LLMError("fake", "busy", code="rate_limit", retryable=True),
            "ok",
        ])
        sleeps = []
        provider = ResilientProvider(inner, max_attempts=3, base_delay=0.1, max_delay=1, sleep=sleeps.append)

        resp = provider.complete(self._request())

        assert resp.content == "ok"
        assert len(inner.requests) == 3
        assert len(sleeps) == 2
        assert all(0 < s <= 1 for s in sleeps)

    def test_fatal_errors_are_not_retried(self):
        """Bad requests fail on the first attempt."""
        inner = FakeProvider([LLMError("fake", "bad", code="invalid_request"), "never"])
        provider = ResilientProvider(inner, max_attempts=3, sleep=lambda _: None)

        with pytest.raises(LLMError) as exc_info:
            provider.complete(self._request())

        assert exc_info.value.code == "invalid_request"
        assert len(inner.requests) == 1

    def test_exhaustion_reraises_last_error(self):
        """After the last attempt the retryable error surfaces unchanged."""
        inner = FakeProvider([LLMError("fake", f"busy {i}", retryable=True) for i in range(2)])
        provider = ResilientProvider(inner, max_attempts=2, sleep=lambda _: None)

        with pytest.raises(LLMError) as exc_info:
            provider.complete(self._request())

        assert exc_info.value.message == "busy 1"
        assert exc_info.value.retryable is True


def test_build_provider_wraps_litellm():
    """The default provider is LiteLLM behind retries, behind a circuit breaker."""
    provider = build_provider()

    assert isinstance(provider, CircuitBreakerProvider)
    assert isinstance(provider.inner, ResilientProvider)
    assert isinstance(provider.inner.inner, LiteLLMProvider)
    assert provider.inner.inner.model.startswith("anthropic/")
    assert provider.breaker.failure_threshold == settings.LLM_CIRCUIT_FAILURE_THRESHOLD


def test_build_provider_chains_fallback_models():
    """Each configured fallback model gets its own retries and circuit."""
    cfg = Settings(
        LLM_PROVIDER="anthropic",
        LLM_MODEL_NAME="claude-test",
        LLM_FALLBACK_MODELS="openai/gpt-4o-mini, ,ollama/llama3.2",
    )

    provider = build_provider(cfg)

    assert isinstance(provider, FallbackProvider)
    models = [p.inner.inner.model for p in provider.providers]
    assert models == ["anthropic/claude-test", "openai/gpt-4o-mini", "ollama/llama3.2"]
    assert provider.providers[1].inner.inner.api_key == ""
    assert provider.providers[0].breaker is not provider.providers[1].breaker
