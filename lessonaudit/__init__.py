"""
LessonAudit — Classroom Lesson Analysis Core

Audits Brazilian classroom transcripts for teaching quality and for
compliance with Lei 13.185/2015 (anti-bullying) and Lei 13.718/2018
(internet safety).

Public API:
  - behavior_detector:  Deterministic behavior rules (zero API cost)
  - context_analyzer:   Topic detection and teaching/practice contradictions
  - compliance_scorer:  Statute taxonomies and combined compliance score
  - rigor_validator:    Reconciles generative scores with the deterministic reading
  - Orchestrator:       Phase-gated concurrent analysis pipeline
  - SelfConsistencySampler: N-sample scoring with consensus merge
  - LLMProvider:        Abstract LLM interface for provider swapping
  - TranscriptionProvider: Audio-to-text interface (Gemini implementation)

Usage:
    from lessonaudit import Orchestrator, get_provider
    outcome = await Orchestrator(get_provider()).run(transcript)
"""

__version__ = "1.0.0"

from lessonaudit.behavior import (
    behavior_detector,
    BehaviorCategory,
    BehaviorReport,
    Detection,
    Severity,
)
from lessonaudit.context import context_analyzer, ContextReport, Topic
from lessonaudit.compliance import compliance_scorer, ComplianceReport
from lessonaudit.validator import rigor_validator, RigorValidator, ValidatedResult
from lessonaudit.consistency import SelfConsistencySampler, ConsensusResult, aggregate
from lessonaudit.pipeline import Orchestrator, PipelineOutcome
from lessonaudit.prompts import LessonContext
from lessonaudit.transcription import (
    GeminiTranscriber,
    Segment,
    Transcript,
    TranscriptionProvider,
)
from lessonaudit.schemas.report import AnalysisOptions, AnalysisResult, QuickResult
from lessonaudit.llm import LLMProvider
from lessonaudit.llm.factory import get_provider
from lessonaudit.errors import (
    LessonAuditError,
    ExternalCallFailure,
    InsufficientSamples,
    PhaseFailure,
)

__all__ = [
    "behavior_detector",
    "BehaviorCategory",
    "BehaviorReport",
    "Detection",
    "Severity",
    "context_analyzer",
    "ContextReport",
    "Topic",
    "compliance_scorer",
    "ComplianceReport",
    "rigor_validator",
    "RigorValidator",
    "ValidatedResult",
    "SelfConsistencySampler",
    "ConsensusResult",
    "aggregate",
    "Orchestrator",
    "PipelineOutcome",
    "LessonContext",
    "GeminiTranscriber",
    "Segment",
    "Transcript",
    "TranscriptionProvider",
    "AnalysisOptions",
    "AnalysisResult",
    "QuickResult",
    "LLMProvider",
    "get_provider",
    "LessonAuditError",
    "ExternalCallFailure",
    "InsufficientSamples",
    "PhaseFailure",
]
