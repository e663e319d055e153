"""
Prompt builders and call profiles.

Every generative call the pipeline makes has a CallProfile: sampling
temperature, output token budget and the timeout it runs under. Prompt
text is deliberately minimal; the response JSON shapes are what the
pipeline depends on.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional

from lessonaudit.config import settings


@dataclass(frozen=True)
class CallProfile:
    name: str
    temperature: float
    max_tokens: int
    timeout: float


# --- Reading phase ---
TRANSCRIPT = CallProfile("transcript", 0.25, 4096, settings.TIMEOUT_CLASSIFICATION)
CHARACTERS = CallProfile("characters", 0.25, 4096, settings.TIMEOUT_CLASSIFICATION)
PLANNING = CallProfile("planning", 0.25, 4096, settings.TIMEOUT_CLASSIFICATION)

# --- Analysis phase ---
COMPLIANCE = CallProfile("compliance", 0.20, 4096, settings.TIMEOUT_ANALYSIS)
SOCIOEMOTIONAL = CallProfile("socioemotional", 0.25, 4096, settings.TIMEOUT_ANALYSIS)

# --- Scoring phase ---
SCORING = CallProfile("scoring", 0.22, 8000, settings.TIMEOUT_ANALYSIS)
SAMPLE = CallProfile("sample", 0.45, 8000, settings.TIMEOUT_SAMPLE)

# --- Enrichment ---
PRACTICAL_EXAMPLES = CallProfile("practical_examples", 0.60, 3000, settings.TIMEOUT_ENRICHMENT)
COACHING_EMAIL = CallProfile("coaching_email", 0.45, 1500, settings.TIMEOUT_ENRICHMENT)
LEGAL_DETAIL = CallProfile("legal_detail", 0.20, 2048, settings.TIMEOUT_ENRICHMENT)
SOCIOEMOTIONAL_DETAIL = CallProfile("socioemotional_detail", 0.25, 4096, settings.TIMEOUT_ENRICHMENT)


SYSTEM_PROMPT = (
    "You are a pedagogical auditor for Brazilian classrooms. You evaluate "
    "lesson transcripts in Portuguese for teaching quality and for compliance "
    "with Lei 13.185/2015 (anti-bullying) and Lei 13.718/2018 (internet safety). "
    "Base every judgment on quotes from the transcript. Answer only with a "
    "single JSON object, no prose and no markdown."
)


@dataclass(frozen=True)
class LessonContext:
    """Caller-supplied facts about the lesson."""
    subject: str = ""
    grade_level: str = ""
    planned_content: str = ""
    lesson_id: Optional[str] = None

    def describe(self) -> str:
        lines = []
        if self.subject:
            lines.append(f"Subject: {self.subject}")
        if self.grade_level:
            lines.append(f"Grade level: {self.grade_level}")
        if self.planned_content:
            lines.append(f"Planned content: {self.planned_content}")
        return "\n".join(lines) or "No additional lesson context."


def _dump(data: Any) -> str:
    return json.dumps(data, ensure_ascii=False, indent=2, default=str)


def _with_transcript(task: str, transcript: str, lesson: LessonContext) -> str:
    return f"{task}\n\n## Lesson context\n{lesson.describe()}\n\n## Transcript\n{transcript}"


# ============================================================
# READING PHASE
# ============================================================

def transcript_prompt(transcript: str, lesson: LessonContext) -> str:
    return _with_transcript(
        "Structure the transcript into lesson moments. Return "
        '{"segments": [{"moment": str, "speaker": str, "summary": str}], '
        '"duration_estimate_min": int, "main_topic": str}',
        transcript, lesson,
    )


def characters_prompt(transcript: str, lesson: LessonContext) -> str:
    return _with_transcript(
        "Identify the people in the lesson and how they interact. Return "
        '{"teacher": {"tone": str, "communication_style": str}, '
        '"students": [{"name": str, "participation": str, "notes": str}], '
        '"interaction_quality": str}',
        transcript, lesson,
    )


def planning_prompt(transcript: str, lesson: LessonContext) -> str:
    return _with_transcript(
        "Compare what was taught with a sound lesson plan and with the planned "
        "content if given. Return "
        '{"objectives_stated": [str], "objectives_met": [str], '
        '"structure": {"opening": bool, "development": bool, "closing": bool}, '
        '"planned_vs_executed": str}',
        transcript, lesson,
    )


# ============================================================
# ANALYSIS PHASE
# ============================================================

def compliance_prompt(transcript: str, lesson: LessonContext, reading: dict) -> str:
    return _with_transcript(
        "Check the lesson against Lei 13.185/2015 and Lei 13.718/2018, using the "
        f"reading-phase findings below.\n{_dump(reading)}\nReturn "
        '{"lei_13185": {"score": int, "types_addressed": [str], "preventive_approach": bool, '
        '"evidence": [str]}, "lei_13718": {"score": int, "crimes_mentioned": bool, '
        '"minor_protection": bool}, "legal_risk": "high|medium|low"}',
        transcript, lesson,
    )


def socioemotional_prompt(transcript: str, lesson: LessonContext, reading: dict) -> str:
    return _with_transcript(
        "Evaluate the five OECD socio-emotional pillars (task performance, emotional "
        "regulation, engaging with others, open-mindedness, collaboration), using the "
        f"reading-phase findings below.\n{_dump(reading)}\nReturn "
        '{"pillars": [{"name": str, "score": int, "evidence": str}], "climate": str}',
        transcript, lesson,
    )


# ============================================================
# SCORING PHASE
# ============================================================

SCORING_SCHEMA = (
    '{"metadata": {"conformidade_geral_percent": int}, '
    '"status_geral": "✅|⚠️|❌", "potencial_melhoria": "alto|medio|baixo", '
    '"analise_dimensoes": [{"numero": int, "nome": str, '
    '"conformidade_percent": int, "status": "✅|⚠️|❌", "gap": str}], '
    '"resumo": str}'
)


def scoring_prompt(phase_outputs: dict, lesson: LessonContext) -> str:
    return (
        "Produce the final multi-dimension evaluation of the lesson from the "
        "phase outputs below. Score each dimension 0-100.\n\n"
        f"## Lesson context\n{lesson.describe()}\n\n"
        f"## Phase outputs\n{_dump(phase_outputs)}\n\n"
        f"Return {SCORING_SCHEMA}"
    )


# ============================================================
# ENRICHMENT
# ============================================================

def practical_examples_prompt(transcript: str, dimension: str, gap: str) -> str:
    return (
        f"The lesson scored low on the dimension '{dimension}'. Gap: {gap}\n"
        "Write concrete classroom examples showing how the teacher could have "
        'handled it. Return {"dimension": str, "examples": [{"situation": str, '
        '"instead_of": str, "try": str}]}\n\n'
        f"## Transcript\n{transcript}"
    )


def coaching_email_prompt(scoring: dict, lesson: LessonContext) -> str:
    return (
        "Write a short, respectful coaching email to the teacher about this "
        'evaluation. Return {"subject": str, "body": str}\n\n'
        f"## Lesson context\n{lesson.describe()}\n\n## Evaluation\n{_dump(scoring)}"
    )


def legal_detail_prompt(transcript: str, deterministic: dict) -> str:
    return (
        "Explain the legal exposure of this lesson under Lei 13.185/2015 and "
        "Lei 13.718/2018. A deterministic check already found the following:\n"
        f"{_dump(deterministic)}\n"
        'Return {"findings": [{"law": str, "article": str, "finding": str, '
        '"severity": str}], "urgent_actions": [str]}\n\n'
        f"## Transcript\n{transcript}"
    )


def socioemotional_detail_prompt(transcript: str, analysis: dict) -> str:
    return (
        "Expand the socio-emotional analysis below into per-student observations "
        f"and teacher actions.\n{_dump(analysis)}\n"
        'Return {"students": [{"name": str, "observation": str}], '
        '"teacher_actions": [str]}\n\n'
        f"## Transcript\n{transcript}"
    )
