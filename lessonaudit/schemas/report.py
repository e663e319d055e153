"""
Result Schemas — Analysis Options and Report Models

Pydantic models for what callers pass into the pipeline and what a
successful run returns.
"""

from __future__ import annotations

from typing import Any, Optional
from pydantic import BaseModel, Field

from lessonaudit.config import settings


# ============================================================
# OPTIONS
# ============================================================

class AnalysisOptions(BaseModel):
    """Per-run switches for the pipeline."""
    self_consistency: bool = Field(False, description="Score through N merged samples.")
    samples: int = Field(
        default_factory=lambda: settings.SELF_CONSISTENCY_SAMPLES,
        ge=1, le=5,
        description="Sample count when self_consistency is on.",
    )
    use_cache: bool = Field(True, description="Reuse near-identical scoring responses.")
    generate_examples: bool = True
    generate_email: bool = True
    include_legal: bool = True
    include_socioemotional: bool = True

    model_config = {"json_schema_extra": {"examples": [
        {"self_consistency": True, "samples": 3, "generate_email": False},
    ]}}


# ============================================================
# RESULT
# ============================================================

class PhaseOutputs(BaseModel):
    """Merged outputs of the Reading and Analysis phases."""
    transcript: dict[str, Any]
    characters: dict[str, Any]
    planning: dict[str, Any]
    compliance: dict[str, Any]
    socioemotional: dict[str, Any]


class CriticalDimension(BaseModel):
    numero: Any
    nome: str
    score: int
    gap: str = ""


class ValidationBlock(BaseModel):
    rigorous_score: int
    generative_score: int
    delta: int
    warning: Optional[dict[str, Any]] = None


class Enrichment(BaseModel):
    """Best-effort outputs. A failed task leaves its field as None."""
    practical_examples: Optional[list[dict[str, Any]]] = None
    coaching_email: Optional[dict[str, Any]] = None
    legal_detail: Optional[dict[str, Any]] = None
    socioemotional_detail: Optional[dict[str, Any]] = None


class RunMetadata(BaseModel):
    run_id: str
    core_version: str
    duration_ms: int
    tokens_used: int
    self_consistency: bool
    confidence: Optional[float] = None
    samples_used: int = 1
    disagreements: list[dict[str, Any]] = Field(default_factory=list)
    models: list[str] = Field(default_factory=list)
    phase_durations_ms: dict[str, int] = Field(default_factory=dict)
    cached: bool = False


class AnalysisResult(BaseModel):
    """Full result of a successful pipeline run."""
    phases: PhaseOutputs
    scoring: dict[str, Any]
    behavior: dict[str, Any]
    context: dict[str, Any]
    compliance: dict[str, Any]
    validation: ValidationBlock
    critical_dimensions: list[CriticalDimension] = Field(default_factory=list)
    curriculum: list[dict[str, Any]] = Field(default_factory=list)
    enrichment: Enrichment = Field(default_factory=Enrichment)
    metadata: RunMetadata


class QuickResult(BaseModel):
    """Reading-only preview: transcript and characters plus behavior."""
    transcript: dict[str, Any]
    characters: dict[str, Any]
    behavior: dict[str, Any]
    quick_mode: bool = True
    duration_ms: int
    tokens_used: int = 0
