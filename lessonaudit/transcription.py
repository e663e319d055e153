"""
Transcription collaborator.

Turns lesson audio into a transcript the analysis pipeline can read.
The Gemini implementation sends the audio inline and asks for a JSON
transcript with timed segments.
"""

from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from google.genai import types

from lessonaudit.config import settings
from lessonaudit.errors import ExternalCallFailure, MalformedResponse
from lessonaudit.llm import parse_json_object
from lessonaudit.llm.gemini import GeminiClient

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Segment:
    start: float
    end: float
    text: str
    speaker: Optional[str] = None


@dataclass(frozen=True)
class Transcript:
    text: str
    segments: tuple[Segment, ...] = field(default=())
    language: str = "pt"
    duration: float = 0.0


class TranscriptionProvider(ABC):

    @abstractmethod
    async def transcribe(
        self, audio: bytes, content_type: str, language: str = "pt",
    ) -> Transcript:
        """Raises ExternalCallFailure on transport errors and timeouts."""
        ...


_INSTRUCTION = (
    "Transcribe this classroom recording verbatim in its original language ({language}). "
    "Mark laughter as (risos). Return JSON: "
    '{{"text": str, "duration": float, "segments": '
    '[{{"start": float, "end": float, "speaker": str, "text": str}}]}}'
)


def transcript_from_json(data: dict, language: str) -> Transcript:
    segments = tuple(
        Segment(
            start=float(s.get("start", 0.0)),
            end=float(s.get("end", 0.0)),
            text=str(s.get("text", "")),
            speaker=s.get("speaker"),
        )
        for s in data.get("segments") or []
        if isinstance(s, dict)
    )
    text = data.get("text") or " ".join(s.text for s in segments)
    duration = data.get("duration") or (segments[-1].end if segments else 0.0)
    return Transcript(text=text, segments=segments, language=language, duration=float(duration))


class GeminiTranscriber(TranscriptionProvider):
    """Audio transcription through a Gemini multimodal model."""

    def __init__(
        self,
        client: Optional[GeminiClient] = None,
        model: Optional[str] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client or GeminiClient()
        self._model = model or settings.GEMINI_FAST_MODEL
        self._timeout = settings.TIMEOUT_TRANSCRIPTION if timeout is None else timeout

    async def transcribe(
        self, audio: bytes, content_type: str, language: str = "pt",
    ) -> Transcript:
        client = self._client.get()
        config = types.GenerateContentConfig(
            temperature=0.0,
            response_mime_type="application/json",
        )
        contents = [
            types.Part.from_bytes(data=audio, mime_type=content_type),
            _INSTRUCTION.format(language=language),
        ]

        try:
            response = await asyncio.wait_for(
                client.aio.models.generate_content(
                    model=self._model, contents=contents, config=config,
                ),
                self._timeout,
            )
        except asyncio.TimeoutError as e:
            raise ExternalCallFailure("transcribe", f"timed out after {self._timeout}s") from e
        except Exception as e:
            raise ExternalCallFailure("transcribe", str(e)) from e

        raw = response.text or ""
        try:
            data = parse_json_object(raw)
        except MalformedResponse:
            # plain text answer: keep it as an unsegmented transcript
            logger.warning("Transcription returned non-JSON output, using raw text")
            return Transcript(text=raw.strip(), language=language)

        transcript = transcript_from_json(data, language)
        logger.info(
            "Transcribed %d segments", len(transcript.segments),
            extra={"call": "transcribe", "model": self._model},
        )
        return transcript
