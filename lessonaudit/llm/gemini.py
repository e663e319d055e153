"""
Gemini Provider — Google Gemini API implementation.

Uses the google.genai SDK. Client is lazily initialized:
the package imports without an API key and only fails on an actual call.

Features:
- Model fallback chain: primary model → fast model on failure
- Circuit breaker: after consecutive failures, fail fast for 60s
- Exponential backoff retry on transient errors
- Hard per-call timeout; a timeout is a failure like any other
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Optional

from google import genai
from google.genai import types

from lessonaudit.config import settings
from lessonaudit.errors import CircuitOpenError, ExternalCallFailure
from lessonaudit.llm import Generation, LLMProvider

logger = logging.getLogger(__name__)

# Circuit breaker settings
_CB_FAILURE_THRESHOLD = 3   # Open after this many consecutive failures
_CB_RECOVERY_TIMEOUT = 60   # Seconds before trying again (half-open)

_TRANSIENT_MARKERS = (
    "429", "503", "500", "rate", "quota", "timeout",
    "connection", "unavailable", "overloaded",
)


def is_transient(error: Exception) -> bool:
    error_str = str(error).lower()
    return any(k in error_str for k in _TRANSIENT_MARKERS)


def _status_of(error: Exception) -> Optional[int]:
    code = getattr(error, "code", None)
    return code if isinstance(code, int) else None


class CircuitBreaker:
    """Simple circuit breaker: closed → open → half-open → closed.

    When open, calls raise CircuitOpenError immediately instead of
    waiting for the provider to time out.
    """

    def __init__(
        self,
        failure_threshold: int = _CB_FAILURE_THRESHOLD,
        recovery_timeout: float = _CB_RECOVERY_TIMEOUT,
    ):
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self._failures = 0
        self._last_failure_time: float = 0
        self._state = "closed"  # closed | open | half-open

    @property
    def state(self) -> str:
        if self._state == "open":
            if time.monotonic() - self._last_failure_time >= self.recovery_timeout:
                self._state = "half-open"
        return self._state

    def record_success(self) -> None:
        self._failures = 0
        self._state = "closed"

    def record_failure(self) -> None:
        self._failures += 1
        self._last_failure_time = time.monotonic()
        if self._failures >= self.failure_threshold:
            self._state = "open"
            logger.warning(
                "Circuit breaker OPEN after %d consecutive failures, failing fast for %ds",
                self._failures, self.recovery_timeout,
            )

    @property
    def is_open(self) -> bool:
        return self.state == "open"


class GeminiClient:
    """Lazily created google-genai client shared by the Gemini collaborators."""

    def __init__(self, api_key: Optional[str] = None):
        self._api_key = api_key or settings.GEMINI_API_KEY
        self._client: Optional[genai.Client] = None

    def get(self) -> genai.Client:
        if self._client is None:
            if not self._api_key:
                raise ExternalCallFailure(
                    "client",
                    "GEMINI_API_KEY not set. Get one from https://aistudio.google.com/apikey",
                )
            self._client = genai.Client(api_key=self._api_key)
        return self._client


class GeminiProvider(LLMProvider):
    """Google Gemini text generation with fallback and circuit breaker."""

    name = "gemini"

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        fallback_model: Optional[str] = None,
        client: Optional[GeminiClient] = None,
    ):
        self._client = client or GeminiClient(api_key)
        self._model = model or settings.GEMINI_MODEL
        self._fallback_model = fallback_model or settings.GEMINI_FAST_MODEL
        self.circuit_breaker = CircuitBreaker()

    async def _call_model(
        self,
        model: str,
        prompt: str,
        config: types.GenerateContentConfig,
        max_retries: int = 3,
    ) -> Generation:
        """Call a specific model with retry logic."""
        client = self._client.get()
        for attempt in range(max_retries):
            try:
                response = await client.aio.models.generate_content(
                    model=model,
                    contents=prompt,
                    config=config,
                )
            except Exception as e:
                if is_transient(e) and attempt < max_retries - 1:
                    await asyncio.sleep(2 ** attempt)
                    continue
                raise
            usage = response.usage_metadata
            return Generation(
                text=response.text or "",
                tokens_used=(usage.total_token_count or 0) if usage else 0,
                model=model,
            )
        raise ExternalCallFailure("generate", f"no attempts made against {model}")

    async def _generate(self, prompt: str, config: types.GenerateContentConfig) -> Generation:
        try:
            return await self._call_model(self._model, prompt, config, max_retries=2)
        except Exception as primary_err:
            if self._model == self._fallback_model:
                raise
            logger.warning(
                "Primary model %s failed (%s), falling back to %s",
                self._model, primary_err, self._fallback_model,
            )
            try:
                return await self._call_model(
                    self._fallback_model, prompt, config, max_retries=1,
                )
            except Exception as fallback_err:
                logger.error(
                    "Fallback model %s also failed: %s",
                    self._fallback_model, fallback_err,
                )
                raise fallback_err from primary_err

    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.25,
        max_tokens: int = 4096,
        timeout: float = 60.0,
        json_mode: bool = False,
    ) -> Generation:
        # Circuit breaker: fast-fail when the provider is known to be down
        if self.circuit_breaker.is_open:
            raise CircuitOpenError("generate")

        config = types.GenerateContentConfig(
            temperature=temperature,
            max_output_tokens=max_tokens,
            system_instruction=system_prompt or None,
        )
        if json_mode:
            config.response_mime_type = "application/json"

        try:
            result = await asyncio.wait_for(self._generate(user_prompt, config), timeout)
        except asyncio.TimeoutError as e:
            self.circuit_breaker.record_failure()
            raise ExternalCallFailure("generate", f"timed out after {timeout}s") from e
        except ExternalCallFailure:
            self.circuit_breaker.record_failure()
            raise
        except Exception as e:
            self.circuit_breaker.record_failure()
            raise ExternalCallFailure("generate", str(e), status=_status_of(e)) from e

        self.circuit_breaker.record_success()
        return result

    async def embed(self, text: str, timeout: float = 30.0) -> list[float]:
        """Embedding vector for a text, used by the similarity collaborators."""
        client = self._client.get()
        try:
            response = await asyncio.wait_for(
                client.aio.models.embed_content(
                    model=settings.GEMINI_EMBEDDING_MODEL,
                    contents=text,
                ),
                timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExternalCallFailure("embed", f"timed out after {timeout}s") from e
        except Exception as e:
            raise ExternalCallFailure("embed", str(e), status=_status_of(e)) from e

        if not response.embeddings or response.embeddings[0].values is None:
            raise ExternalCallFailure("embed", "empty embedding response")
        return list(response.embeddings[0].values)
