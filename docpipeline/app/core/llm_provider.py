# docpipeline/app/core/llm_provider.py

import base64
import json
import logging
import time
from dataclasses import replace
from typing import Any, Callable, Dict, List, Optional, Sequence

import litellm
from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential_jitter,
)

from docpipeline.app.config import Settings, settings as default_settings
from docpipeline.app.core.circuit_breaker import CircuitBreaker
from docpipeline.app.core.errors import LLMError
from docpipeline.app.models.llm import BlockType, LLMRequest, LLMResponse, Message

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOKENS = 4096

SCHEMA_FALLBACK_INSTRUCTION = (
    "Respond with a single JSON object and nothing else. "
    "It must conform to this JSON schema:\n{schema}"
)


class LLMProvider:
    """Sends one conversation to a model. Subclasses raise LLMError on failure."""

    name = "base"

    def complete(self, request: LLMRequest) -> LLMResponse:
        raise NotImplementedError


def classify_error(provider: str, exc: BaseException) -> LLMError:
    """Map a LiteLLM / transport exception onto LLMError with a retryable flag.

    Rate limits, timeouts, connection failures and 5xx are retryable;
    authentication, bad requests and content rejections are not.
    """
    if isinstance(exc, LLMError):
        return exc
    message = str(exc) or type(exc).__name__

    if isinstance(exc, litellm.RateLimitError):
        return LLMError(provider, message, code="rate_limit", retryable=True, cause=exc)
    if isinstance(exc, litellm.Timeout):
        return LLMError(provider, message, code="timeout", retryable=True, cause=exc)
    if isinstance(exc, litellm.APIConnectionError):
        return LLMError(provider, message, code="connection_error", retryable=True, cause=exc)
    if isinstance(exc, (litellm.ServiceUnavailableError, litellm.InternalServerError)):
        return LLMError(provider, message, code="server_error", retryable=True, cause=exc)
    if isinstance(exc, (litellm.AuthenticationError, litellm.PermissionDeniedError)):
        return LLMError(provider, message, code="authentication_error", cause=exc)
    if isinstance(exc, litellm.ContentPolicyViolationError):
        return LLMError(provider, message, code="content_rejected", cause=exc)
    if isinstance(exc, litellm.BadRequestError):
        return LLMError(provider, message, code="invalid_request", cause=exc)
    if isinstance(exc, litellm.NotFoundError):
        return LLMError(provider, message, code="not_found", cause=exc)

    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        retryable = status in (408, 409, 429) or status >= 500
        return LLMError(provider, message, code=f"http_{status}", retryable=retryable, cause=exc)

    # Anything else is most likely the network; the queue's attempt budget bounds it
    return LLMError(provider, message, code="unknown", retryable=True, cause=exc)


class LiteLLMProvider(LLMProvider):
    """LLMProvider backed by ``litellm.completion``."""

    def __init__(
        self,
        model: str,
        api_key: str = "",
        base_url: str = "",
        timeout: float = 300,
        max_tokens: int = DEFAULT_MAX_TOKENS,
        temperature: float = 0.0,
        native_schema: Optional[bool] = None,
    ):
        self.model = model
        self.api_key = api_key
        self.base_url = base_url
        self.timeout = timeout
        self.max_tokens = max_tokens
        self.temperature = temperature
        # None means ask LiteLLM whether the model supports constrained decoding
        self.native_schema = native_schema
        self.name = model.split("/", 1)[0] if "/" in model else "litellm"

    @classmethod
    def from_settings(cls, cfg: Settings = default_settings) -> "LiteLLMProvider":
        return cls(
            model=cfg.full_model_id(),
            api_key=cfg.LLM_API_KEY,
            base_url=cfg.LLM_BASE_URL,
            timeout=cfg.LLM_REQUEST_TIMEOUT,
            max_tokens=cfg.LLM_MAX_TOKENS,
            temperature=cfg.LLM_TEMPERATURE,
        )

    def supports_native_schema(self, model: str) -> bool:
        if self.native_schema is not None:
            return self.native_schema
        return bool(litellm.supports_response_schema(model=model))

    def complete(self, request: LLMRequest) -> LLMResponse:
        model = request.model or self.model
        kwargs = self._build_kwargs(request, model)

        started = time.monotonic()
        try:
            resp = litellm.completion(**kwargs)
        except Exception as exc:
            raise classify_error(self.name, exc) from exc
        duration_ms = int((time.monotonic() - started) * 1000)

        return self._parse_response(resp, model, duration_ms)

    def _build_kwargs(self, request: LLMRequest, model: str) -> Dict[str, Any]:
        system_prompt = request.system_prompt
        kwargs: Dict[str, Any] = {
            "model": model,
            "max_tokens": request.max_tokens or self.max_tokens or DEFAULT_MAX_TOKENS,
            "temperature": request.temperature or self.temperature,
            "timeout": self.timeout,
        }
        if self.api_key:
            kwargs["api_key"] = self.api_key
        if self.base_url:
            kwargs["api_base"] = self.base_url

        if request.output_schema is not None:
            if self.supports_native_schema(model):
                kwargs["response_format"] = {
                    "type": "json_schema",
                    "json_schema": {
                        "name": request.schema_name,
                        "schema": request.output_schema,
                        "strict": True,
                    },
                }
            else:
                # No constrained decoding: the caller parses and validates the text itself
                instruction = SCHEMA_FALLBACK_INSTRUCTION.format(
                    schema=json.dumps(request.output_schema, indent=2)
                )
                system_prompt = f"{system_prompt}\n\n{instruction}" if system_prompt else instruction

        kwargs["messages"] = self._convert_messages(request.messages, system_prompt)
        return kwargs

    def _convert_messages(self, messages: List[Message], system_prompt: str) -> List[Dict[str, Any]]:
        result: List[Dict[str, Any]] = []
        if system_prompt:
            result.append({"role": "system", "content": system_prompt})
        for msg in messages:
            result.append({"role": msg.role.value, "content": [self._convert_block(b) for b in msg.content]})
        return result

    @staticmethod
    def _convert_block(block) -> Dict[str, Any]:
        if block.type is BlockType.TEXT:
            return {"type": "text", "text": block.text}
        data_url = f"data:{block.media_type.value};base64,{base64.b64encode(block.data).decode('ascii')}"
        if block.media_type.is_pdf:
            return {"type": "file", "file": {"file_data": data_url}}
        return {"type": "image_url", "image_url": {"url": data_url}}

    def _parse_response(self, resp: Any, model: str, duration_ms: int) -> LLMResponse:
        try:
            choice = resp.choices[0]
            content = choice.message.content or ""
            stop_reason = choice.finish_reason or ""
        except (AttributeError, IndexError) as exc:
            raise LLMError(self.name, "malformed response: no choices", code="bad_response", cause=exc) from exc

        usage = getattr(resp, "usage", None)
        return LLMResponse(
            content=content,
            model=getattr(resp, "model", None) or model,
            input_tokens=getattr(usage, "prompt_tokens", 0) or 0,
            output_tokens=getattr(usage, "completion_tokens", 0) or 0,
            stop_reason=stop_reason,
            duration_ms=duration_ms,
        )


def _is_retryable(exc: BaseException) -> bool:
    return isinstance(exc, LLMError) and exc.retryable


class ResilientProvider(LLMProvider):
    """Retries retryable LLMErrors with exponential backoff and jitter within one call.

    Fatal errors are raised on the first occurrence. When attempts run out the
    last error is raised unchanged, still marked retryable, so the queue can
    take over with its own, slower backoff.
    """

    def __init__(
        self,
        inner: LLMProvider,
        max_attempts: int = 3,
        base_delay: float = 0.5,
        max_delay: float = 30.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.inner = inner
        self.name = inner.name
        self.max_attempts = max(1, max_attempts)
        self.base_delay = base_delay
        self.max_delay = max_delay
        self._sleep = sleep

    @classmethod
    def from_settings(cls, inner: LLMProvider, cfg: Settings = default_settings) -> "ResilientProvider":
        return cls(
            inner,
            max_attempts=cfg.LLM_MAX_ATTEMPTS,
            base_delay=cfg.LLM_RETRY_BASE_DELAY,
            max_delay=cfg.LLM_RETRY_MAX_DELAY,
        )

    def complete(self, request: LLMRequest) -> LLMResponse:
        retryer = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_exponential_jitter(initial=self.base_delay, max=self.max_delay),
            retry=retry_if_exception(_is_retryable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            sleep=self._sleep,
            reraise=True,
        )
        return retryer(self.inner.complete, request)


class CircuitBreakerProvider(LLMProvider):
    """Fails fast with a retryable ``circuit_open`` error while ``inner`` keeps failing.

    Only retryable failures count against the circuit. A fatal error means
    the service answered and the request itself was bad.
    """

    def __init__(self, inner: LLMProvider, breaker: CircuitBreaker):
        self.inner = inner
        self.name = inner.name
        self.breaker = breaker

    @classmethod
    def from_settings(cls, inner: LLMProvider, cfg: Settings = default_settings) -> "CircuitBreakerProvider":
        breaker = CircuitBreaker(
            inner.name,
            failure_threshold=cfg.LLM_CIRCUIT_FAILURE_THRESHOLD,
            recovery_timeout=cfg.LLM_CIRCUIT_RECOVERY_TIMEOUT,
        )
        return cls(inner, breaker)

    def complete(self, request: LLMRequest) -> LLMResponse:
        if not self.breaker.can_execute():
            raise LLMError(
                self.name,
                f"circuit breaker is open, retry in {self.breaker.time_remaining():.0f}s "
                f"(last failure: {self.breaker.last_failure_reason or 'unknown'})",
                code="circuit_open",
                retryable=True,
            )
        try:
            resp = self.inner.complete(request)
        except Exception as exc:
            if isinstance(exc, LLMError) and not exc.retryable:
                self.breaker.record_success()
            else:
                self.breaker.record_failure(exc)
            raise
        self.breaker.record_success()
        return resp


class FallbackProvider(LLMProvider):
    """Tries each provider in order, moving on after a retryable failure.

    Fallbacks answer with their own model: the request's model names the
    primary. Fatal errors are raised at once; when every provider fails
    retryably the last error is raised.
    """

    def __init__(self, providers: Sequence[LLMProvider]):
        if not providers:
            raise ValueError("provider chain must have at least one entry")
        self.providers = list(providers)
        self.name = self.providers[0].name

    def complete(self, request: LLMRequest) -> LLMResponse:
        last_error: Optional[LLMError] = None
        for index, provider in enumerate(self.providers):
            attempt = request if index == 0 else replace(request, model="")
            try:
                return provider.complete(attempt)
            except LLMError as exc:
                if not exc.retryable:
                    raise
                last_error = exc
                if index + 1 < len(self.providers):
                    logger.warning(
                        "Provider %s failed (%s), falling back to %s",
                        provider.name, exc, self.providers[index + 1].name,
                    )
        raise last_error


def _guarded(provider: LLMProvider, cfg: Settings) -> LLMProvider:
    # circuit breaker outside the retries: one exhausted retry run is one failure
    return CircuitBreakerProvider.from_settings(ResilientProvider.from_settings(provider, cfg), cfg)


def build_provider(cfg: Settings = default_settings) -> LLMProvider:
    chain = [_guarded(LiteLLMProvider.from_settings(cfg), cfg)]
    for model in cfg.fallback_models():
        # credentials for other vendors come from LiteLLM's own environment variables
        fallback = LiteLLMProvider(
            model=model,
            timeout=cfg.LLM_REQUEST_TIMEOUT,
            max_tokens=cfg.LLM_MAX_TOKENS,
            temperature=cfg.LLM_TEMPERATURE,
        )
        chain.append(_guarded(fallback, cfg))
    return chain[0] if len(chain) == 1 else FallbackProvider(chain)
