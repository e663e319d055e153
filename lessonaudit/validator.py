"""
Rigor Validator

Cross-checks a generative analysis against a deterministic reading of
the same transcript. The rigorous score blends classroom safety, the
hypocrisy score and the combined compliance score. When the generative
model reports a score far above it, a DiscrepancyWarning is attached
naming the concrete issues that were found.

The generative score is only annotated, never replaced.
"""

from __future__ import annotations

import copy
import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from lessonaudit.behavior import BehaviorReport, Severity
from lessonaudit.compliance import ComplianceReport, ComplianceScorer, compliance_scorer
from lessonaudit.config import settings
from lessonaudit.context import ContextReport
from lessonaudit.scorer import extract_score, round_half_up

logger = logging.getLogger(__name__)

SAFETY_WEIGHT = 0.40
HYPOCRISY_WEIGHT = 0.30
COMPLIANCE_WEIGHT = 0.30

_BEHAVIOR_NAMES = {
    "sarcasm": "Sarcasm",
    "disengagement": "Student disengagement",
    "public_shame": "Public shaming",
    "exclusion": "Exclusion",
    "aggression": "Verbal aggression",
}


@dataclass(frozen=True)
class Issue:
    severity: Severity
    description: str

    def to_dict(self) -> dict:
        return {"severity": self.severity.value, "description": self.description}


@dataclass(frozen=True)
class DiscrepancyWarning:
    generative_score: int
    rigorous_score: int
    delta: int
    issues: tuple[Issue, ...]
    recommendations: tuple[str, ...]
    type: str = "inflated_score"
    reason: str = (
        "The generative score is well above the deterministic reading: "
        "pedagogical or legal issues were detected in the transcript"
    )

    def to_dict(self) -> dict:
        return {
            "type": self.type,
            "generative_score": self.generative_score,
            "rigorous_score": self.rigorous_score,
            "delta": self.delta,
            "reason": self.reason,
            "issues": [i.to_dict() for i in self.issues],
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class RigorousScoreResult:
    rigorous_score: int
    generative_score: int
    delta: int
    warning: Optional[DiscrepancyWarning] = None

    def to_dict(self) -> dict:
        return {
            "rigorous_score": self.rigorous_score,
            "generative_score": self.generative_score,
            "delta": self.delta,
            "warning": self.warning.to_dict() if self.warning else None,
        }


@dataclass(frozen=True)
class ValidatedResult:
    """The untouched generative payload plus its validation block."""
    generative: Any
    validation: RigorousScoreResult
    compliance: ComplianceReport = field(repr=False)

    @property
    def behavior(self) -> BehaviorReport:
        return self.compliance.behavior

    @property
    def context(self) -> ContextReport:
        return self.compliance.context

    def annotated(self) -> dict:
        """A copy of the generative payload with the validation merged in."""
        data = copy.deepcopy(self.generative) if isinstance(self.generative, dict) else {}
        data["rigorous_score"] = self.validation.rigorous_score
        if self.validation.warning is not None:
            data["validation_warning"] = self.validation.warning.to_dict()
        return data


def rigorous_score(safety: int, hypocrisy: int, combined: int) -> int:
    return round_half_up(
        SAFETY_WEIGHT * safety + HYPOCRISY_WEIGHT * hypocrisy + COMPLIANCE_WEIGHT * combined
    )


class RigorValidator:
    """Deterministic validation of generative lesson scores."""

    def __init__(
        self,
        threshold: Optional[int] = None,
        scorer: Optional[ComplianceScorer] = None,
    ):
        self.threshold = settings.DISCREPANCY_THRESHOLD if threshold is None else threshold
        self.scorer = scorer or compliance_scorer

    def validate(
        self,
        text: str,
        generative_result: Any,
        compliance: Optional[ComplianceReport] = None,
    ) -> ValidatedResult:
        if compliance is None:
            compliance = self.scorer.check_compliance(text)

        rigorous = rigorous_score(
            compliance.behavior.safety_score,
            compliance.context.hypocrisy_score,
            compliance.combined_score,
        )
        generative = extract_score(generative_result)
        delta = generative - rigorous

        warning = None
        if delta > self.threshold:
            warning = DiscrepancyWarning(
                generative_score=generative,
                rigorous_score=rigorous,
                delta=delta,
                issues=collect_issues(compliance),
                recommendations=collect_recommendations(compliance),
            )
            logger.warning(
                "Generative score inflated over deterministic reading",
                extra={
                    "generative_score": generative,
                    "rigorous_score": rigorous,
                    "delta": delta,
                },
            )

        return ValidatedResult(
            generative=generative_result,
            validation=RigorousScoreResult(
                rigorous_score=rigorous,
                generative_score=generative,
                delta=delta,
                warning=warning,
            ),
            compliance=compliance,
        )


def collect_issues(compliance: ComplianceReport) -> tuple[Issue, ...]:
    """Human-readable issues, deduplicated, most severe first."""
    issues: list[Issue] = []

    for category, detection in compliance.behavior.detections().items():
        if not detection.detected:
            continue
        text = f"{_BEHAVIOR_NAMES[category.value]} detected"
        if detection.evidence:
            text += f": {detection.evidence[0]}"
        issues.append(Issue(detection.severity, text))

    for contradiction in compliance.context.contradictions:
        issues.append(Issue(contradiction.severity, contradiction.description))

    for violation in compliance.anti_bullying.violations:
        severity = Severity.CRITICAL if violation.grave else Severity.HIGH
        issues.append(Issue(severity, f"{violation.description} (Lei 13.185, {violation.article})"))

    unique: dict[str, Issue] = {}
    for issue in issues:
        known = unique.get(issue.description)
        if known is None or issue.severity.rank > known.severity.rank:
            unique[issue.description] = issue

    # sorted() is stable: equal severities keep discovery order
    return tuple(sorted(unique.values(), key=lambda i: i.severity.rank, reverse=True))


def collect_recommendations(compliance: ComplianceReport) -> tuple[str, ...]:
    recs = list(compliance.anti_bullying.recommendations)
    if compliance.context.contradictions:
        recs.insert(0, compliance.context.recommendation)
    return tuple(dict.fromkeys(recs))


rigor_validator = RigorValidator()
