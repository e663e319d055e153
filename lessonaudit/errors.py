"""
Error taxonomy for the analysis core.

Deterministic detectors never raise on string input. Everything here
originates at the boundary with an external collaborator or at a
pipeline seam that aggregates such failures.
"""

from __future__ import annotations

from typing import Optional


class LessonAuditError(Exception):
    """Base class for all analysis-core errors."""


class ExternalCallFailure(LessonAuditError):
    """Transport error, timeout or non-2xx answer from a collaborator."""

    def __init__(self, call: str, reason: str, status: Optional[int] = None):
        self.call = call
        self.reason = reason
        self.status = status
        detail = f" (status {status})" if status is not None else ""
        super().__init__(f"{call} failed{detail}: {reason}")


class CircuitOpenError(ExternalCallFailure):
    """Raised when the provider circuit breaker is open."""

    def __init__(self, call: str = "generate"):
        super().__init__(
            call,
            "circuit breaker is open after consecutive failures",
        )


class MalformedResponse(LessonAuditError):
    """Collaborator returned text that is not a JSON object.

    Recovered locally: callers substitute `parse_failed_sentinel(raw)`
    instead of propagating this error.
    """

    def __init__(self, raw: str, detail: str = ""):
        self.raw = raw
        self.detail = detail
        super().__init__(f"Malformed response: {detail} Raw: {raw[:200]}")


class InsufficientSamples(LessonAuditError):
    """Fewer than two successful samples in a self-consistency run."""

    def __init__(self, successes: int, requested: int):
        self.successes = successes
        self.requested = requested
        super().__init__(
            f"Self-consistency needs at least 2 successful samples, "
            f"got {successes} of {requested}"
        )


class PhaseFailure(LessonAuditError):
    """A sub-task of a barrier phase failed; the whole run is aborted."""

    def __init__(self, phase: str, subtask: str, reason: str):
        self.phase = phase
        self.subtask = subtask
        self.reason = reason
        super().__init__(f"Phase '{phase}' failed at '{subtask}': {reason}")


class EnrichmentFailure(LessonAuditError):
    """A best-effort enrichment task failed. Logged, never propagated."""

    def __init__(self, task: str, reason: str):
        self.task = task
        self.reason = reason
        super().__init__(f"Enrichment '{task}' failed: {reason}")


PARSE_FAILED = "parse_failed"


def parse_failed_sentinel(raw: str) -> dict:
    """Explicit stand-in for a structured response that could not be parsed."""
    return {"error": PARSE_FAILED, "raw": raw}


def is_parse_failed(data: object) -> bool:
    return isinstance(data, dict) and data.get("error") == PARSE_FAILED
