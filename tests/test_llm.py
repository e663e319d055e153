"""
Tests for the text-generation collaborator: JSON parsing, the bounded
structured call, circuit breaker, Gemini fallback and transcription.
No network: the google-genai client is replaced with a fake.
"""

from __future__ import annotations

import asyncio
import json
from types import SimpleNamespace

import pytest

from lessonaudit.errors import (
    CircuitOpenError,
    ExternalCallFailure,
    MalformedResponse,
    is_parse_failed,
)
from lessonaudit.llm import (
    call_structured,
    parse_json_object,
    strip_fences,
    Generation,
    LLMProvider,
)
from lessonaudit.llm.factory import get_provider
from lessonaudit.llm.gemini import CircuitBreaker, GeminiClient, GeminiProvider, is_transient
from lessonaudit.transcription import GeminiTranscriber, transcript_from_json


# ============================================================
# FAKES
# ============================================================

class EchoLLM(LLMProvider):
    def __init__(self, text="{}", delay=0.0, error=None):
        self.text = text
        self.delay = delay
        self.error = error

    async def generate(self, system_prompt, user_prompt, temperature=0.25,
                       max_tokens=4096, timeout=60.0, json_mode=False):
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return Generation(text=self.text, tokens_used=42, model="echo")


class FakeModels:
    """Stands in for client.aio.models; answers per model name."""

    def __init__(self, answers):
        self.answers = answers
        self.calls = []

    async def generate_content(self, model, contents, config):
        self.calls.append(model)
        answer = self.answers[model]
        if isinstance(answer, Exception):
            raise answer
        return SimpleNamespace(
            text=answer,
            usage_metadata=SimpleNamespace(total_token_count=17),
        )

    async def embed_content(self, model, contents):
        return SimpleNamespace(embeddings=[SimpleNamespace(values=[0.1, 0.2, 0.3])])


class FakeClient(GeminiClient):
    def __init__(self, models):
        super().__init__(api_key="test-key")
        self._fake = SimpleNamespace(aio=SimpleNamespace(models=models))

    def get(self):
        return self._fake


def _provider(answers):
    models = FakeModels(answers)
    provider = GeminiProvider(model="pro", fallback_model="flash", client=FakeClient(models))
    return provider, models


# ============================================================
# JSON PARSING
# ============================================================

class TestParsing:

    def test_strip_fences(self):
        assert strip_fences('```json\n{"a": 1}\n```') == '{"a": 1}'

    def test_plain_object(self):
        assert parse_json_object('{"a": 1}') == {"a": 1}

    def test_prose_around_object(self):
        assert parse_json_object('Here you go: {"a": 1} Hope it helps') == {"a": 1}

    def test_no_object_raises(self):
        with pytest.raises(MalformedResponse):
            parse_json_object("no json here")

    def test_array_rejected(self):
        with pytest.raises(MalformedResponse):
            parse_json_object("[1, 2, 3]")


class TestGenerateJson:

    @pytest.mark.asyncio
    async def test_fenced_output_parsed(self):
        result = await EchoLLM('```json\n{"overall_score": 80}\n```').generate_json("s", "u")
        assert result.data == {"overall_score": 80}
        assert result.parse_failed is False
        assert result.tokens_used == 42

    @pytest.mark.asyncio
    async def test_malformed_becomes_sentinel(self):
        result = await EchoLLM("I cannot answer that").generate_json("s", "u")
        assert result.parse_failed is True
        assert is_parse_failed(result.data)
        assert result.data["raw"] == "I cannot answer that"


class TestCallStructured:

    @pytest.mark.asyncio
    async def test_timeout_becomes_external_failure(self):
        with pytest.raises(ExternalCallFailure) as exc_info:
            await call_structured(
                EchoLLM(delay=1.0), "planning", "s", "u",
                temperature=0.2, max_tokens=100, timeout=0.01,
            )
        assert exc_info.value.call == "planning"
        assert "timed out" in exc_info.value.reason

    @pytest.mark.asyncio
    async def test_unexpected_error_wrapped(self):
        with pytest.raises(ExternalCallFailure) as exc_info:
            await call_structured(
                EchoLLM(error=RuntimeError("boom")), "characters", "s", "u",
                temperature=0.2, max_tokens=100, timeout=1.0,
            )
        assert exc_info.value.call == "characters"

    @pytest.mark.asyncio
    async def test_external_failure_passes_through(self):
        original = ExternalCallFailure("generate", "503", status=503)
        with pytest.raises(ExternalCallFailure) as exc_info:
            await call_structured(
                EchoLLM(error=original), "scoring", "s", "u",
                temperature=0.2, max_tokens=100, timeout=1.0,
            )
        assert exc_info.value is original

    @pytest.mark.asyncio
    async def test_with_semaphore(self):
        result = await call_structured(
            EchoLLM('{"ok": true}'), "transcript", "s", "u",
            temperature=0.2, max_tokens=100, timeout=1.0,
            semaphore=asyncio.Semaphore(1),
        )
        assert result.data == {"ok": True}


# ============================================================
# CIRCUIT BREAKER
# ============================================================

class TestCircuitBreaker:

    def test_opens_after_threshold(self):
        cb = CircuitBreaker(failure_threshold=3, recovery_timeout=60)
        for _ in range(2):
            cb.record_failure()
        assert cb.state == "closed"
        cb.record_failure()
        assert cb.is_open

    def test_half_open_after_recovery(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=0)
        cb.record_failure()
        assert cb.state == "half-open"
        assert not cb.is_open

    def test_success_closes(self):
        cb = CircuitBreaker(failure_threshold=1, recovery_timeout=60)
        cb.record_failure()
        cb.record_success()
        assert cb.state == "closed"

    def test_transient_classification(self):
        assert is_transient(Exception("429 Too Many Requests"))
        assert is_transient(Exception("Service Unavailable"))
        assert not is_transient(Exception("400 invalid argument"))


# ============================================================
# GEMINI PROVIDER
# ============================================================

class TestGeminiProvider:

    @pytest.mark.asyncio
    async def test_success(self):
        provider, models = _provider({"pro": '{"a": 1}'})
        result = await provider.generate("sys", "user", json_mode=True)
        assert result.text == '{"a": 1}'
        assert result.tokens_used == 17
        assert result.model == "pro"
        assert models.calls == ["pro"]

    @pytest.mark.asyncio
    async def test_fallback_model(self):
        provider, models = _provider({"pro": ValueError("bad request"), "flash": "ok"})
        result = await provider.generate("sys", "user")
        assert result.model == "flash"
        assert models.calls == ["pro", "flash"]

    @pytest.mark.asyncio
    async def test_both_fail_raises_external_failure(self):
        provider, _ = _provider({"pro": ValueError("bad request"), "flash": ValueError("bad request")})
        with pytest.raises(ExternalCallFailure):
            await provider.generate("sys", "user")
        assert provider.circuit_breaker._failures == 1

    @pytest.mark.asyncio
    async def test_circuit_open_fails_fast(self):
        provider, models = _provider({"pro": "ok"})
        for _ in range(provider.circuit_breaker.failure_threshold):
            provider.circuit_breaker.record_failure()
        with pytest.raises(CircuitOpenError):
            await provider.generate("sys", "user")
        assert models.calls == []

    @pytest.mark.asyncio
    async def test_missing_key(self):
        provider = GeminiProvider(client=GeminiClient(api_key=""))
        provider._client._api_key = ""
        with pytest.raises(ExternalCallFailure):
            await provider.generate("sys", "user")

    @pytest.mark.asyncio
    async def test_embed(self):
        provider, _ = _provider({})
        assert await provider.embed("texto") == [0.1, 0.2, 0.3]

    def test_factory(self):
        assert isinstance(get_provider("gemini"), GeminiProvider)
        with pytest.raises(ValueError):
            get_provider("nope")


# ============================================================
# TRANSCRIPTION
# ============================================================

class TestTranscription:

    def test_from_json(self):
        transcript = transcript_from_json({
            "segments": [
                {"start": 0, "end": 2.5, "speaker": "Professora", "text": "Bom dia."},
                {"start": 2.5, "end": 4, "speaker": "Aluno", "text": "Bom dia!"},
            ],
        }, "pt")
        assert transcript.text == "Bom dia. Bom dia!"
        assert transcript.duration == 4.0
        assert transcript.segments[0].speaker == "Professora"

    @pytest.mark.asyncio
    async def test_gemini_transcriber(self):
        payload = json.dumps({"text": "Bom dia, turma.", "duration": 3.0, "segments": []})
        transcriber = GeminiTranscriber(client=FakeClient(FakeModels({"flash": payload})), model="flash")
        transcript = await transcriber.transcribe(b"\x00\x01", "audio/mpeg")
        assert transcript.text == "Bom dia, turma."
        assert transcript.duration == 3.0

    @pytest.mark.asyncio
    async def test_plain_text_fallback(self):
        transcriber = GeminiTranscriber(
            client=FakeClient(FakeModels({"flash": "Bom dia, turma."})), model="flash",
        )
        transcript = await transcriber.transcribe(b"\x00", "audio/wav")
        assert transcript.text == "Bom dia, turma."
        assert transcript.segments == ()

    @pytest.mark.asyncio
    async def test_failure_wrapped(self):
        transcriber = GeminiTranscriber(
            client=FakeClient(FakeModels({"flash": RuntimeError("bad audio")})), model="flash",
        )
        with pytest.raises(ExternalCallFailure) as exc_info:
            await transcriber.transcribe(b"\x00", "audio/wav")
        assert exc_info.value.call == "transcribe"
