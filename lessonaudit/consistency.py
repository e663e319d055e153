"""
Self-Consistency Aggregator

Runs N independent samples of the same scoring prompt at a raised
temperature and merges them:

  - numeric fields are averaged and rounded
  - string fields are majority-voted, ties going to the first seen value
  - dimension arrays are grouped by dimension number, averaged per field,
    and their status re-derived from the averaged score

Confidence falls as the overall scores spread out, and every dimension
whose samples stray too far from their own mean is reported as a
disagreement.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Any, Optional

from lessonaudit.config import settings
from lessonaudit.errors import InsufficientSamples, is_parse_failed
from lessonaudit.llm import LLMProvider, StructuredGeneration, call_structured
from lessonaudit.prompts import SAMPLE, CallProfile
from lessonaudit.scorer import (
    average,
    clamp,
    extract_score,
    max_deviation,
    round_half_up,
    score_to_status,
    spread,
)

logger = logging.getLogger(__name__)

MIN_SAMPLES = 1
MAX_SAMPLES = 5
MIN_SUCCESSES = 2

# Per-sample temperature step on top of the sampling profile's base
TEMPERATURE_STEP = 0.05
MAX_TEMPERATURE = 1.0

# Standard deviation at which confidence reaches zero
CONFIDENCE_SPREAD = 40.0

DIMENSIONS_KEY = "analise_dimensoes"
DIMENSION_ID = "numero"
DIMENSION_SCORE = "conformidade_percent"
DIMENSION_STATUS = "status"


@dataclass(frozen=True)
class PromptContext:
    """The shared input every sample is generated from."""
    system_prompt: str
    user_prompt: str


@dataclass(frozen=True)
class Disagreement:
    dimension: Any
    variance: int
    note: str = "Samples differed significantly on this dimension"

    def to_dict(self) -> dict:
        return {"dimension": self.dimension, "variance": self.variance, "note": self.note}


@dataclass(frozen=True)
class ConsensusResult:
    consensus: dict
    samples: tuple[dict, ...]
    confidence: float
    disagreements: tuple[Disagreement, ...]
    sample_count: int
    requested: int = 0
    tokens_used: int = 0
    duration_ms: int = 0
    models: tuple[str, ...] = field(default=())

    def to_dict(self) -> dict:
        return {
            "consensus": self.consensus,
            "samples": list(self.samples),
            "confidence": self.confidence,
            "disagreements": [d.to_dict() for d in self.disagreements],
            "sample_count": self.sample_count,
            "requested": self.requested,
            "tokens_used": self.tokens_used,
            "duration_ms": self.duration_ms,
        }


# ============================================================
# PURE AGGREGATION
# ============================================================

def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def vote(values: list[str]) -> Optional[str]:
    """Most common value; ties go to the one seen first."""
    if not values:
        return None
    return Counter(values).most_common(1)[0][0]


def _merge_values(values: list) -> Any:
    if all(_is_number(v) for v in values):
        return round_half_up(average(values))
    if all(isinstance(v, str) for v in values):
        return vote(values)
    if all(isinstance(v, dict) for v in values):
        return _merge_mappings(values)
    return values[0]


def _merge_mappings(mappings: list[dict]) -> dict:
    keys: list = []
    for mapping in mappings:
        keys.extend(k for k in mapping if k not in keys)

    merged = {}
    for key in keys:
        values = [m[key] for m in mappings if m.get(key) is not None]
        if not values:
            merged[key] = None
        elif key == DIMENSIONS_KEY and all(isinstance(v, list) for v in values):
            merged[key] = merge_dimensions(values)
        else:
            merged[key] = _merge_values(values)
    return merged


def _group_dimensions(dimension_lists: list[list]) -> dict[Any, list[dict]]:
    """Dimensions keyed by their number, in first-seen order."""
    groups: dict[Any, list[dict]] = {}
    for dims in dimension_lists:
        for dim in dims:
            if isinstance(dim, dict) and dim.get(DIMENSION_ID) is not None:
                groups.setdefault(dim[DIMENSION_ID], []).append(dim)
    return groups


def _dimension_scores(dims: list[dict]) -> list[float]:
    return [d[DIMENSION_SCORE] for d in dims if _is_number(d.get(DIMENSION_SCORE))]


def merge_dimensions(dimension_lists: list[list]) -> list[dict]:
    merged = []
    for key, dims in _group_dimensions(dimension_lists).items():
        dim = _merge_mappings(dims)
        dim[DIMENSION_ID] = key
        scores = _dimension_scores(dims)
        if scores:
            dim[DIMENSION_STATUS] = score_to_status(average(scores))
        merged.append(dim)
    return merged


def find_disagreements(
    samples: list[dict], threshold: Optional[float] = None,
) -> tuple[Disagreement, ...]:
    threshold = settings.DISAGREEMENT_THRESHOLD if threshold is None else threshold
    dimension_lists = [
        s[DIMENSIONS_KEY] for s in samples if isinstance(s.get(DIMENSIONS_KEY), list)
    ]
    disagreements = []
    for key, dims in _group_dimensions(dimension_lists).items():
        deviation = max_deviation(_dimension_scores(dims))
        if deviation > threshold:
            disagreements.append(Disagreement(dimension=key, variance=round_half_up(deviation)))
    return tuple(disagreements)


def confidence_of(samples: list[dict]) -> float:
    """1.0 for identical overall scores, falling to 0.0 at a spread of 40."""
    scores = [extract_score(s) for s in samples]
    return clamp(1.0 - spread(scores) / CONFIDENCE_SPREAD, 0.0, 1.0)


def aggregate(samples: list[dict], threshold: Optional[float] = None) -> ConsensusResult:
    """Merge already-parsed samples into a consensus. Pure."""
    if len(samples) < MIN_SUCCESSES:
        raise InsufficientSamples(len(samples), len(samples))

    consensus = _merge_mappings(samples)
    consensus["_consensus_method"] = "majority_voting"
    consensus["_sample_count"] = len(samples)

    return ConsensusResult(
        consensus=consensus,
        samples=tuple(samples),
        confidence=confidence_of(samples),
        disagreements=find_disagreements(samples, threshold),
        sample_count=len(samples),
        requested=len(samples),
    )


# ============================================================
# SAMPLER
# ============================================================

class SelfConsistencySampler:
    """Dispatches concurrent samples through one provider."""

    def __init__(
        self,
        provider: LLMProvider,
        semaphore: Optional[asyncio.Semaphore] = None,
        threshold: Optional[float] = None,
        profile: CallProfile = SAMPLE,
    ):
        self.provider = provider
        self.semaphore = semaphore or asyncio.Semaphore(settings.MAX_CONCURRENCY)
        self.threshold = threshold
        self.profile = profile

    def temperature_for(self, index: int) -> float:
        return min(MAX_TEMPERATURE, self.profile.temperature + TEMPERATURE_STEP * index)

    async def _sample(self, prompt: PromptContext, index: int) -> StructuredGeneration:
        return await call_structured(
            self.provider,
            call=f"sample_{index}",
            system_prompt=prompt.system_prompt,
            user_prompt=prompt.user_prompt,
            temperature=self.temperature_for(index),
            max_tokens=self.profile.max_tokens,
            timeout=self.profile.timeout,
            semaphore=self.semaphore,
        )

    async def run_samples(self, prompt: PromptContext, n: int = 3) -> ConsensusResult:
        """Generate n samples (clamped to 1..5) and merge the successful ones.

        Raises InsufficientSamples when fewer than two samples succeed.
        """
        n = int(clamp(n, MIN_SAMPLES, MAX_SAMPLES))
        start = time.monotonic()

        results = await asyncio.gather(
            *(self._sample(prompt, i) for i in range(n)),
            return_exceptions=True,
        )

        successes: list[StructuredGeneration] = []
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                logger.warning(
                    "Sample %d failed: %s", index, result,
                    extra={"call": f"sample_{index}", "error": str(result)},
                )
            elif result.parse_failed or is_parse_failed(result.data):
                logger.warning(
                    "Sample %d returned malformed output", index,
                    extra={"call": f"sample_{index}"},
                )
            else:
                successes.append(result)

        if len(successes) < MIN_SUCCESSES:
            logger.error(
                "Self-consistency failed: %d of %d samples succeeded",
                len(successes), n,
            )
            raise InsufficientSamples(len(successes), n)

        merged = aggregate([s.data for s in successes], self.threshold)
        duration_ms = int((time.monotonic() - start) * 1000)

        logger.info(
            "Self-consistency completed",
            extra={
                "samples": len(successes),
                "confidence": round(merged.confidence, 2),
                "duration_ms": duration_ms,
            },
        )

        return ConsensusResult(
            consensus=merged.consensus,
            samples=merged.samples,
            confidence=merged.confidence,
            disagreements=merged.disagreements,
            sample_count=len(successes),
            requested=n,
            tokens_used=sum(s.tokens_used for s in successes),
            duration_ms=duration_ms,
            models=tuple(dict.fromkeys(s.model for s in successes if s.model)),
        )
