"""
Pipeline Orchestrator — Lesson Analysis

Runs the full analysis of one lesson transcript (or of a recording,
transcribed first by run_audio):

  Phase 1 - READING (concurrent, barrier)
  ├── transcript
  ├── characters
  └── planning
           │
  Phase 2 - ANALYSIS (concurrent, barrier)
  ├── compliance
  └── socioemotional
           │
  Phase 3 - SCORING (sequential; optionally self-consistency)
           │
  Deterministic reports + rigor validation
           │
  ENRICHMENT (concurrent, best effort)
  ├── practical examples (up to 3 critical dimensions)
  ├── coaching email
  ├── legal detail
  └── socio-emotional detail

A barrier phase succeeds only if every sub-task succeeds; otherwise the
run stops with a PhaseFailure naming the first failed sub-task and no
later phase starts. Enrichment failures are logged and leave their
field empty.

The deterministic detectors run once per run, in a worker thread,
alongside the generative phases.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union

from lessonaudit.behavior import behavior_detector
from lessonaudit.cache import SemanticCache
from lessonaudit.compliance import ComplianceReport
from lessonaudit.config import settings
from lessonaudit.consistency import PromptContext, SelfConsistencySampler
from lessonaudit.errors import (
    EnrichmentFailure,
    ExternalCallFailure,
    InsufficientSamples,
    PhaseFailure,
    is_parse_failed,
)
from lessonaudit.llm import LLMProvider, StructuredGeneration, call_structured
from lessonaudit import prompts
from lessonaudit.prompts import CallProfile, LessonContext
from lessonaudit.schemas.report import (
    AnalysisOptions,
    AnalysisResult,
    CriticalDimension,
    Enrichment,
    PhaseOutputs,
    QuickResult,
    RunMetadata,
    ValidationBlock,
)
from lessonaudit.transcription import TranscriptionProvider
from lessonaudit.validator import RigorValidator, ValidatedResult, rigor_validator
from lessonaudit.vectors import CurriculumMatcher

logger = logging.getLogger(__name__)

CRITICAL_SCORE = 50
MAX_CRITICAL_DIMENSIONS = 3

READING = "reading"
ANALYSIS = "analysis"
SCORING = "scoring"
QUICK = "quick"
TRANSCRIPTION = "transcription"


# ============================================================
# RUN STATE
# ============================================================

class TaskStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    DONE = "done"
    FAILED = "failed"


@dataclass
class SubTaskSlot:
    """One sub-task's result slot. Only its own coroutine writes it."""
    name: str
    status: TaskStatus = TaskStatus.PENDING
    result: Optional[StructuredGeneration] = None
    error: Optional[str] = None
    duration_ms: int = 0


@dataclass
class PipelinePhase:
    name: str
    subtasks: dict[str, SubTaskSlot]
    status: TaskStatus = TaskStatus.PENDING
    duration_ms: int = 0

    def outputs(self) -> dict[str, dict]:
        """Merged sub-task results. Empty unless the whole phase is done."""
        if self.status is not TaskStatus.DONE:
            return {}
        return {name: slot.result.data for name, slot in self.subtasks.items() if slot.result}

    @property
    def tokens_used(self) -> int:
        return sum(s.result.tokens_used for s in self.subtasks.values() if s.result)

    @property
    def models(self) -> list[str]:
        return [s.result.model for s in self.subtasks.values() if s.result and s.result.model]


@dataclass
class PipelineRun:
    run_id: str
    phases: list[PipelinePhase] = field(default_factory=list)
    started: float = field(default_factory=time.monotonic)

    @property
    def elapsed_ms(self) -> int:
        return int((time.monotonic() - self.started) * 1000)


@dataclass(frozen=True)
class ReadingOutput:
    transcript: dict
    characters: dict
    planning: dict


@dataclass(frozen=True)
class AnalysisOutput:
    compliance: dict
    socioemotional: dict


@dataclass(frozen=True)
class ScoringOutput:
    result: dict
    tokens_used: int = 0
    models: tuple[str, ...] = ()
    confidence: Optional[float] = None
    samples_used: int = 1
    disagreements: tuple[dict, ...] = ()
    cached: bool = False


@dataclass
class PipelineContext:
    """Typed accumulator: each phase fills exactly one field."""
    transcript: str
    lesson: LessonContext
    options: AnalysisOptions
    curriculum: list[dict] = field(default_factory=list)
    reading: Optional[ReadingOutput] = None
    analysis: Optional[AnalysisOutput] = None
    scoring: Optional[ScoringOutput] = None
    deterministic: Optional[ComplianceReport] = None

    def phase_outputs(self) -> dict:
        data: dict[str, Any] = {}
        if self.reading:
            data.update(
                transcript=self.reading.transcript,
                characters=self.reading.characters,
                planning=self.reading.planning,
            )
        if self.analysis:
            data.update(
                compliance=self.analysis.compliance,
                socioemotional=self.analysis.socioemotional,
            )
        if self.curriculum:
            data["curriculum"] = self.curriculum
        return data


@dataclass(frozen=True)
class PipelineOutcome:
    """Tagged result of a run: success with a report, or failure with its cause."""
    status: str
    result: Optional[Union[AnalysisResult, QuickResult]] = None
    failure: Optional[PhaseFailure] = None
    run_id: str = ""

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @classmethod
    def success(cls, result: Union[AnalysisResult, QuickResult], run_id: str) -> "PipelineOutcome":
        return cls(status="success", result=result, run_id=run_id)

    @classmethod
    def failed(cls, failure: PhaseFailure, run_id: str) -> "PipelineOutcome":
        return cls(status="failure", failure=failure, run_id=run_id)

    def to_dict(self) -> dict:
        if self.ok and self.result is not None:
            return {"status": self.status, "run_id": self.run_id, "result": self.result.model_dump()}
        assert self.failure is not None
        return {
            "status": self.status,
            "run_id": self.run_id,
            "phase": self.failure.phase,
            "subtask": self.failure.subtask,
            "reason": self.failure.reason,
        }


def critical_dimensions(scoring: dict) -> list[CriticalDimension]:
    """Dimensions under 50%, worst first, at most three."""
    dims = scoring.get("analise_dimensoes") if isinstance(scoring, dict) else None
    if not isinstance(dims, list):
        return []

    low = []
    for dim in dims:
        if not isinstance(dim, dict):
            continue
        score = dim.get("conformidade_percent", 100)
        if isinstance(score, (int, float)) and not isinstance(score, bool) and score < CRITICAL_SCORE:
            low.append(dim)
    low.sort(key=lambda d: d["conformidade_percent"])

    return [
        CriticalDimension(
            numero=d.get("numero"),
            nome=str(d.get("nome") or f"Dimension {d.get('numero')}"),
            score=int(round(d["conformidade_percent"])),
            gap=str(d.get("gap") or d.get("gap_principal") or "Not specified"),
        )
        for d in low[:MAX_CRITICAL_DIMENSIONS]
    ]


# ============================================================
# ORCHESTRATOR
# ============================================================

class Orchestrator:
    """
    Drives one lesson through the phased analysis.

    All generative calls share one semaphore, so at most
    `max_concurrency` are in flight regardless of phase.
    """

    def __init__(
        self,
        provider: LLMProvider,
        validator: Optional[RigorValidator] = None,
        cache: Optional[SemanticCache] = None,
        curriculum: Optional[CurriculumMatcher] = None,
        max_concurrency: Optional[int] = None,
        transcriber: Optional[TranscriptionProvider] = None,
    ):
        self.provider = provider
        self.transcriber = transcriber
        self.validator = validator or rigor_validator
        self.cache = cache
        self.curriculum = curriculum
        self.semaphore = asyncio.Semaphore(max_concurrency or settings.MAX_CONCURRENCY)
        self.sampler = SelfConsistencySampler(provider, semaphore=self.semaphore)

    # --- Calls ---

    async def _call(self, call: str, profile: CallProfile, user_prompt: str) -> StructuredGeneration:
        return await call_structured(
            self.provider,
            call=call,
            system_prompt=prompts.SYSTEM_PROMPT,
            user_prompt=user_prompt,
            temperature=profile.temperature,
            max_tokens=profile.max_tokens,
            timeout=profile.timeout,
            semaphore=self.semaphore,
        )

    @staticmethod
    async def _run_slot(
        slot: SubTaskSlot, factory: Callable[[], Awaitable[StructuredGeneration]],
    ) -> StructuredGeneration:
        slot.status = TaskStatus.RUNNING
        start = time.monotonic()
        try:
            slot.result = await factory()
        except Exception as e:
            slot.status = TaskStatus.FAILED
            slot.error = str(e)
            raise
        finally:
            slot.duration_ms = int((time.monotonic() - start) * 1000)
        slot.status = TaskStatus.DONE
        return slot.result

    async def _run_barrier_phase(
        self,
        run: PipelineRun,
        name: str,
        tasks: dict[str, Callable[[], Awaitable[StructuredGeneration]]],
    ) -> PipelinePhase:
        """Dispatch every sub-task, wait for all, then pass or fail as a whole."""
        phase = PipelinePhase(name, {n: SubTaskSlot(n) for n in tasks})
        run.phases.append(phase)
        phase.status = TaskStatus.RUNNING
        start = time.monotonic()

        logger.info("Phase started", extra={"run_id": run.run_id, "phase": name})
        results = await asyncio.gather(
            *(self._run_slot(phase.subtasks[n], factory) for n, factory in tasks.items()),
            return_exceptions=True,
        )
        phase.duration_ms = int((time.monotonic() - start) * 1000)

        for subtask, result in zip(tasks, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                phase.status = TaskStatus.FAILED
                logger.error(
                    "Phase failed",
                    extra={
                        "run_id": run.run_id,
                        "phase": name,
                        "subtask": subtask,
                        "error": str(result),
                        "error_type": type(result).__name__,
                    },
                )
                raise PhaseFailure(name, subtask, str(result)) from result

        phase.status = TaskStatus.DONE
        logger.info(
            "Phase done",
            extra={
                "run_id": run.run_id,
                "phase": name,
                "duration_ms": phase.duration_ms,
                "tokens_used": phase.tokens_used,
            },
        )
        return phase

    # --- Phases ---

    async def _reading_phase(self, run: PipelineRun, ctx: PipelineContext) -> ReadingOutput:
        text, lesson = ctx.transcript, ctx.lesson
        phase = await self._run_barrier_phase(run, READING, {
            "transcript": lambda: self._call(
                "transcript", prompts.TRANSCRIPT, prompts.transcript_prompt(text, lesson)),
            "characters": lambda: self._call(
                "characters", prompts.CHARACTERS, prompts.characters_prompt(text, lesson)),
            "planning": lambda: self._call(
                "planning", prompts.PLANNING, prompts.planning_prompt(text, lesson)),
        })
        out = phase.outputs()
        return ReadingOutput(out["transcript"], out["characters"], out["planning"])

    async def _analysis_phase(self, run: PipelineRun, ctx: PipelineContext) -> AnalysisOutput:
        text, lesson = ctx.transcript, ctx.lesson
        reading = ctx.phase_outputs()
        phase = await self._run_barrier_phase(run, ANALYSIS, {
            "compliance": lambda: self._call(
                "compliance", prompts.COMPLIANCE, prompts.compliance_prompt(text, lesson, reading)),
            "socioemotional": lambda: self._call(
                "socioemotional", prompts.SOCIOEMOTIONAL,
                prompts.socioemotional_prompt(text, lesson, reading)),
        })
        out = phase.outputs()
        return AnalysisOutput(out["compliance"], out["socioemotional"])

    async def _scoring_phase(self, run: PipelineRun, ctx: PipelineContext) -> ScoringOutput:
        """Sequential scoring, tracked as a one-slot phase like the barrier phases."""
        user_prompt = prompts.scoring_prompt(ctx.phase_outputs(), ctx.lesson)
        subtask = "self_consistency" if ctx.options.self_consistency else "scoring"
        phase = PipelinePhase(SCORING, {subtask: SubTaskSlot(subtask)})
        run.phases.append(phase)
        slot = phase.subtasks[subtask]
        phase.status = slot.status = TaskStatus.RUNNING
        start = time.monotonic()

        logger.info("Phase started", extra={"run_id": run.run_id, "phase": SCORING})
        try:
            output = await self._score(run, ctx, subtask, user_prompt)
        except PhaseFailure as failure:
            phase.status = slot.status = TaskStatus.FAILED
            slot.error = failure.reason
            raise
        finally:
            phase.duration_ms = slot.duration_ms = int((time.monotonic() - start) * 1000)
        phase.status = slot.status = TaskStatus.DONE

        logger.info(
            "Phase done",
            extra={
                "run_id": run.run_id,
                "phase": SCORING,
                "duration_ms": phase.duration_ms,
                "tokens_used": output.tokens_used,
            },
        )

        if (
            self.cache is not None and ctx.options.use_cache
            and not output.cached and not is_parse_failed(output.result)
        ):
            await self.cache.put(user_prompt, output.result)
        return output

    async def _score(
        self, run: PipelineRun, ctx: PipelineContext, subtask: str, user_prompt: str,
    ) -> ScoringOutput:
        if self.cache is not None and ctx.options.use_cache:
            cached = await self.cache.get(user_prompt)
            if cached is not None:
                logger.info("Scoring served from semantic cache", extra={"run_id": run.run_id})
                return ScoringOutput(result=cached, cached=True)

        if ctx.options.self_consistency:
            try:
                consensus = await self.sampler.run_samples(
                    PromptContext(prompts.SYSTEM_PROMPT, user_prompt), ctx.options.samples,
                )
            except InsufficientSamples as e:
                raise PhaseFailure(SCORING, subtask, str(e)) from e
            return ScoringOutput(
                result=consensus.consensus,
                tokens_used=consensus.tokens_used,
                models=consensus.models,
                confidence=consensus.confidence,
                samples_used=consensus.sample_count,
                disagreements=tuple(d.to_dict() for d in consensus.disagreements),
            )

        try:
            generation = await self._call("scoring", prompts.SCORING, user_prompt)
        except ExternalCallFailure as e:
            raise PhaseFailure(SCORING, subtask, str(e)) from e
        return ScoringOutput(
            result=generation.data,
            tokens_used=generation.tokens_used,
            models=(generation.model,) if generation.model else (),
        )

    async def _match_curriculum(self, run: PipelineRun, text: str) -> list[dict]:
        if self.curriculum is None:
            return []
        try:
            hits = await self.curriculum.match(text)
        except ExternalCallFailure as e:
            logger.warning(
                "Curriculum matching failed, continuing without it",
                extra={"run_id": run.run_id, "error": str(e)},
            )
            return []
        return [{"id": h.id, "score": round(h.score, 4), **h.payload} for h in hits]

    # --- Enrichment ---

    async def _enrich_one(self, task: str, profile: CallProfile, user_prompt: str) -> StructuredGeneration:
        generation = await self._call(task, profile, user_prompt)
        if generation.parse_failed:
            raise EnrichmentFailure(task, "malformed response")
        return generation

    async def _enrichment(
        self, run: PipelineRun, ctx: PipelineContext, critical: list[CriticalDimension],
    ) -> tuple[Enrichment, int]:
        """Best-effort fan-out. Returns the enrichment block and its token usage."""
        opts = ctx.options
        assert ctx.scoring is not None and ctx.analysis is not None
        jobs: list[tuple[str, Awaitable[StructuredGeneration]]] = []

        if opts.generate_examples:
            for dim in critical:
                jobs.append(("practical_examples", self._enrich_one(
                    "practical_examples", prompts.PRACTICAL_EXAMPLES,
                    prompts.practical_examples_prompt(ctx.transcript, dim.nome, dim.gap),
                )))
        if opts.generate_email:
            jobs.append(("coaching_email", self._enrich_one(
                "coaching_email", prompts.COACHING_EMAIL,
                prompts.coaching_email_prompt(ctx.scoring.result, ctx.lesson),
            )))
        if opts.include_legal and ctx.deterministic is not None:
            jobs.append(("legal_detail", self._enrich_one(
                "legal_detail", prompts.LEGAL_DETAIL,
                prompts.legal_detail_prompt(ctx.transcript, ctx.deterministic.to_dict()),
            )))
        if opts.include_socioemotional:
            jobs.append(("socioemotional_detail", self._enrich_one(
                "socioemotional_detail", prompts.SOCIOEMOTIONAL_DETAIL,
                prompts.socioemotional_detail_prompt(ctx.transcript, ctx.analysis.socioemotional),
            )))

        results = await asyncio.gather(*(job for _, job in jobs), return_exceptions=True)

        fields: dict[str, Any] = {}
        examples: list[dict] = []
        examples_failed = 0
        tokens = 0
        for (task, _), result in zip(jobs, results):
            if isinstance(result, BaseException):
                if not isinstance(result, Exception):
                    raise result
                failure = result if isinstance(result, EnrichmentFailure) else EnrichmentFailure(task, str(result))
                logger.warning(
                    "Enrichment task failed",
                    extra={"run_id": run.run_id, "subtask": task, "error": failure.reason},
                )
                if task == "practical_examples":
                    examples_failed += 1
                continue
            tokens += result.tokens_used
            if task == "practical_examples":
                examples.append(result.data)
            else:
                fields[task] = result.data

        if opts.generate_examples and (examples or not examples_failed):
            fields["practical_examples"] = examples
        return Enrichment(**fields), tokens

    # --- Entry points ---

    async def run(
        self,
        transcript: str,
        lesson: Optional[LessonContext] = None,
        options: Optional[AnalysisOptions] = None,
    ) -> PipelineOutcome:
        """Full analysis. Never raises for collaborator failures: see PipelineOutcome."""
        run = PipelineRun(run_id=uuid.uuid4().hex[:12])
        ctx = PipelineContext(
            transcript=transcript,
            lesson=lesson or LessonContext(),
            options=options or AnalysisOptions(),
        )
        logger.info("Analysis started", extra={"run_id": run.run_id})

        deterministic = asyncio.ensure_future(
            asyncio.to_thread(self.validator.scorer.check_compliance, transcript)
        )
        curriculum = asyncio.ensure_future(self._match_curriculum(run, transcript))

        try:
            ctx.reading = await self._reading_phase(run, ctx)
            ctx.curriculum = await curriculum
            ctx.analysis = await self._analysis_phase(run, ctx)
            ctx.scoring = await self._scoring_phase(run, ctx)
        except PhaseFailure as failure:
            curriculum.cancel()
            deterministic.cancel()
            logger.error(
                "Analysis failed",
                extra={
                    "run_id": run.run_id,
                    "phase": failure.phase,
                    "subtask": failure.subtask,
                    "error": failure.reason,
                    "duration_ms": run.elapsed_ms,
                },
            )
            return PipelineOutcome.failed(failure, run.run_id)

        ctx.deterministic = await deterministic
        validated = self.validator.validate(
            transcript, ctx.scoring.result, compliance=ctx.deterministic,
        )
        critical = critical_dimensions(ctx.scoring.result)
        enrichment, enrichment_tokens = await self._enrichment(run, ctx, critical)

        result = self._build_result(run, ctx, validated, critical, enrichment, enrichment_tokens)
        logger.info(
            "Analysis complete",
            extra={
                "run_id": run.run_id,
                "duration_ms": result.metadata.duration_ms,
                "tokens_used": result.metadata.tokens_used,
                "safety_score": ctx.deterministic.behavior.safety_score,
                "rigorous_score": validated.validation.rigorous_score,
            },
        )
        return PipelineOutcome.success(result, run.run_id)

    async def quick_analyze(
        self, transcript: str, lesson: Optional[LessonContext] = None,
    ) -> PipelineOutcome:
        """Reading-only preview: transcript and characters plus behavior detection."""
        run = PipelineRun(run_id=uuid.uuid4().hex[:12])
        lesson = lesson or LessonContext()
        behavior = asyncio.ensure_future(
            asyncio.to_thread(behavior_detector.analyze, transcript)
        )
        try:
            phase = await self._run_barrier_phase(run, QUICK, {
                "transcript": lambda: self._call(
                    "transcript", prompts.TRANSCRIPT, prompts.transcript_prompt(transcript, lesson)),
                "characters": lambda: self._call(
                    "characters", prompts.CHARACTERS, prompts.characters_prompt(transcript, lesson)),
            })
        except PhaseFailure as failure:
            behavior.cancel()
            return PipelineOutcome.failed(failure, run.run_id)

        out = phase.outputs()
        report = await behavior
        return PipelineOutcome.success(
            QuickResult(
                transcript=out["transcript"],
                characters=out["characters"],
                behavior=report.to_dict(),
                duration_ms=run.elapsed_ms,
                tokens_used=phase.tokens_used,
            ),
            run.run_id,
        )

    async def run_audio(
        self,
        audio: bytes,
        content_type: str,
        language: str = "pt",
        lesson: Optional[LessonContext] = None,
        options: Optional[AnalysisOptions] = None,
    ) -> PipelineOutcome:
        """Transcribe a recording, then run the full analysis on its text."""
        if self.transcriber is None:
            raise ValueError("Orchestrator has no transcriber configured")

        start = time.monotonic()
        try:
            transcript = await self.transcriber.transcribe(audio, content_type, language)
        except ExternalCallFailure as e:
            run_id = uuid.uuid4().hex[:12]
            logger.error(
                "Transcription failed",
                extra={"run_id": run_id, "phase": TRANSCRIPTION, "error": str(e)},
            )
            return PipelineOutcome.failed(PhaseFailure(TRANSCRIPTION, "transcribe", str(e)), run_id)

        logger.info(
            "Transcription done",
            extra={
                "phase": TRANSCRIPTION,
                "duration_ms": int((time.monotonic() - start) * 1000),
            },
        )
        return await self.run(transcript.text, lesson, options)

    # --- Assembly ---

    @staticmethod
    def _build_result(
        run: PipelineRun,
        ctx: PipelineContext,
        validated: ValidatedResult,
        critical: list[CriticalDimension],
        enrichment: Enrichment,
        enrichment_tokens: int,
    ) -> AnalysisResult:
        assert ctx.reading and ctx.analysis and ctx.scoring and ctx.deterministic
        phase_tokens = sum(p.tokens_used for p in run.phases)
        models = [m for p in run.phases for m in p.models] + list(ctx.scoring.models)

        return AnalysisResult(
            phases=PhaseOutputs(
                transcript=ctx.reading.transcript,
                characters=ctx.reading.characters,
                planning=ctx.reading.planning,
                compliance=ctx.analysis.compliance,
                socioemotional=ctx.analysis.socioemotional,
            ),
            scoring=ctx.scoring.result,
            behavior=ctx.deterministic.behavior.to_dict(),
            context=ctx.deterministic.context.to_dict(),
            compliance=ctx.deterministic.to_dict(),
            validation=ValidationBlock(**validated.validation.to_dict()),
            critical_dimensions=critical,
            curriculum=ctx.curriculum,
            enrichment=enrichment,
            metadata=RunMetadata(
                run_id=run.run_id,
                core_version=settings.CORE_VERSION,
                duration_ms=run.elapsed_ms,
                tokens_used=phase_tokens + ctx.scoring.tokens_used + enrichment_tokens,
                self_consistency=ctx.options.self_consistency,
                confidence=ctx.scoring.confidence,
                samples_used=ctx.scoring.samples_used,
                disagreements=list(ctx.scoring.disagreements),
                models=list(dict.fromkeys(models)),
                phase_durations_ms={p.name: p.duration_ms for p in run.phases},
                cached=ctx.scoring.cached,
            ),
        )
