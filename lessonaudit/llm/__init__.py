"""
LLM Provider — Abstract Interface

All text-generation calls go through this interface. Swap providers
by changing LESSONAUDIT_LLM_PROVIDER in env.
"""

from __future__ import annotations

import asyncio
import json
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Optional

from lessonaudit.errors import ExternalCallFailure, MalformedResponse, parse_failed_sentinel

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Generation:
    """Raw text answer from a provider."""
    text: str
    tokens_used: int = 0
    model: str = ""


@dataclass(frozen=True)
class StructuredGeneration:
    """Parsed JSON answer. `data` is the parse-failed sentinel when parsing failed."""
    data: dict
    raw: str
    tokens_used: int = 0
    model: str = ""
    parse_failed: bool = False


def strip_fences(text: str) -> str:
    """Remove markdown ``` fences the model sometimes wraps JSON in."""
    cleaned = text.strip()
    if cleaned.startswith("```"):
        cleaned = cleaned.split("\n", 1)[-1].rsplit("```", 1)[0].strip()
    return cleaned


def parse_json_object(text: str) -> dict:
    """Parse a JSON object from model output.

    Falls back to the outermost {...} span when the model adds prose
    around the object. Raises MalformedResponse if no object is found.
    """
    cleaned = strip_fences(text)
    try:
        data: Any = json.loads(cleaned)
    except json.JSONDecodeError as e:
        start, end = cleaned.find("{"), cleaned.rfind("}")
        if start == -1 or end <= start:
            raise MalformedResponse(text, f"invalid JSON: {e}.") from e
        try:
            data = json.loads(cleaned[start:end + 1])
        except json.JSONDecodeError as inner:
            raise MalformedResponse(text, f"invalid JSON: {inner}.") from inner
    if not isinstance(data, dict):
        raise MalformedResponse(text, f"expected a JSON object, got {type(data).__name__}.")
    return data


class LLMProvider(ABC):
    """Abstract base for text-generation providers."""

    name: str = "llm"

    @abstractmethod
    async def generate(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.25,
        max_tokens: int = 4096,
        timeout: float = 60.0,
        json_mode: bool = False,
    ) -> Generation:
        """Generate a text response.

        Implementations raise ExternalCallFailure on transport errors,
        timeouts and non-success answers.
        """
        ...

    async def generate_json(
        self,
        system_prompt: str,
        user_prompt: str,
        temperature: float = 0.25,
        max_tokens: int = 4096,
        timeout: float = 60.0,
    ) -> StructuredGeneration:
        """Generate and parse a JSON object.

        Malformed output is not an error here: the result carries the
        parse-failed sentinel and callers decide what that means.
        """
        generation = await self.generate(
            system_prompt=system_prompt,
            user_prompt=user_prompt,
            temperature=temperature,
            max_tokens=max_tokens,
            timeout=timeout,
            json_mode=True,
        )
        try:
            data = parse_json_object(generation.text)
        except MalformedResponse as e:
            logger.warning("Structured call returned malformed output: %s", e.detail)
            return StructuredGeneration(
                data=parse_failed_sentinel(generation.text),
                raw=generation.text,
                tokens_used=generation.tokens_used,
                model=generation.model,
                parse_failed=True,
            )
        return StructuredGeneration(
            data=data,
            raw=generation.text,
            tokens_used=generation.tokens_used,
            model=generation.model,
        )


async def call_structured(
    provider: LLMProvider,
    call: str,
    system_prompt: str,
    user_prompt: str,
    temperature: float,
    max_tokens: int,
    timeout: float,
    semaphore: Optional[asyncio.Semaphore] = None,
) -> StructuredGeneration:
    """One bounded, time-limited structured call.

    Waits for a concurrency slot when a semaphore is given. Timeouts and
    provider errors surface as ExternalCallFailure tagged with `call`.
    """
    async def _run() -> StructuredGeneration:
        return await asyncio.wait_for(
            provider.generate_json(
                system_prompt=system_prompt,
                user_prompt=user_prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                timeout=timeout,
            ),
            timeout,
        )

    try:
        if semaphore is None:
            return await _run()
        async with semaphore:
            return await _run()
    except asyncio.TimeoutError as e:
        raise ExternalCallFailure(call, f"timed out after {timeout}s") from e
    except ExternalCallFailure:
        raise
    except Exception as e:
        raise ExternalCallFailure(call, str(e) or type(e).__name__) from e
