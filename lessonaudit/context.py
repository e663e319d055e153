"""
Context / Hypocrisy Analyzer

Detects which socially sensitive topics a lesson teaches and flags
contradictions between the topic and the behaviors detected in the same
transcript: teaching about bullying while being sarcastic, teaching
inclusion while excluding a student, and so on.

Each contradiction costs the lesson a penalty proportional to the
behavior's impact, amplified by how directly the behavior undermines the
topic being taught.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from lessonaudit.behavior import (
    BehaviorCategory,
    BehaviorDetector,
    BehaviorReport,
    Detection,
    Severity,
    behavior_detector,
)
from lessonaudit.scorer import round_half_up


class Topic(str, Enum):
    BULLYING = "bullying"
    CYBERBULLYING = "cyberbullying"
    RESPECT = "respect"
    INCLUSION = "inclusion"
    CITIZENSHIP = "citizenship"


BULLYING_FAMILY = frozenset({Topic.BULLYING, Topic.CYBERBULLYING})


def _patterns(*regexes: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(r, re.IGNORECASE) for r in regexes)


# --- Topic keyword tables, in reporting order ---

TOPIC_PATTERNS: dict[Topic, tuple[re.Pattern, ...]] = {
    Topic.BULLYING: _patterns(
        r"bullying",
        r"intimidação\s+sistemática",
        r"lei\s+13\.?185",
        r"agress(ão|or|ões)",
    ),
    Topic.CYBERBULLYING: _patterns(
        r"cyberbullying",
        r"bullying\s+(virtual|online|digital)",
        r"hate\s*(speech)?",
        r"mensagens?\s+ofensivas?",
    ),
    Topic.RESPECT: _patterns(
        r"respeito",
        r"empatia",
        r"tolerância",
        r"convivência",
    ),
    Topic.INCLUSION: _patterns(
        r"inclusão",
        r"diversidade",
        r"acessibilidade",
        r"necessidades?\s+especiais?",
    ),
    Topic.CITIZENSHIP: _patterns(
        r"cidadania",
        r"direitos?\s+(e\s+)?deveres?",
        r"ética",
        r"responsabilidade\s+social",
    ),
}

# --- Which behaviors undermine which topic ---

_S = BehaviorCategory.SARCASM
_D = BehaviorCategory.DISENGAGEMENT
_P = BehaviorCategory.PUBLIC_SHAME
_E = BehaviorCategory.EXCLUSION
_A = BehaviorCategory.AGGRESSION

CONTRADICTION_MAP: dict[Topic, frozenset[BehaviorCategory]] = {
    Topic.BULLYING: frozenset({_S, _P, _E, _A}),
    Topic.CYBERBULLYING: frozenset({_S, _P, _E, _A}),
    Topic.RESPECT: frozenset({_S, _P, _A}),
    Topic.INCLUSION: frozenset({_E, _D}),
    Topic.CITIZENSHIP: frozenset({_S, _P, _E}),
}

# Listed pairs not present here use DEFAULT_MULTIPLIER
CONTRADICTION_MULTIPLIERS: dict[tuple[Topic, BehaviorCategory], float] = {
    (Topic.BULLYING, _S): 2.5,
    (Topic.BULLYING, _P): 2.5,
    (Topic.CYBERBULLYING, _S): 2.5,
    (Topic.CYBERBULLYING, _P): 2.5,
    (Topic.RESPECT, _A): 2.0,
    (Topic.RESPECT, _S): 2.0,
    (Topic.INCLUSION, _E): 2.0,
}
DEFAULT_MULTIPLIER = 1.5

CONTRADICTION_DESCRIPTIONS: dict[tuple[Topic, BehaviorCategory], str] = {
    (Topic.BULLYING, _S): "Using sarcasm while teaching about bullying undermines the message",
    (Topic.BULLYING, _P): "Publicly exposing a student during a bullying lesson demonstrates the very problem being addressed",
    (Topic.BULLYING, _E): "Excluding students during an anti-bullying lesson contradicts its goal",
    (Topic.BULLYING, _A): "Aggressive language while teaching about bullying is pedagogically unacceptable",
    (Topic.CYBERBULLYING, _S): "Sarcasm in a cyberbullying lesson models inappropriate behavior",
    (Topic.CYBERBULLYING, _P): "Public exposure in a cyberbullying lesson contradicts the message",
    (Topic.CYBERBULLYING, _E): "Excluding students in a cyberbullying lesson contradicts the message",
    (Topic.CYBERBULLYING, _A): "Verbal aggression in a cyberbullying lesson contradicts the message",
    (Topic.RESPECT, _S): "Using sarcasm while teaching about respect is contradictory",
    (Topic.RESPECT, _P): "Publicly exposing students in a lesson about respect shows a lack of respect",
    (Topic.RESPECT, _A): "Verbal aggression in a lesson about respect is unacceptable",
    (Topic.INCLUSION, _E): "Excluding students in a lesson about inclusion contradicts the topic",
    (Topic.INCLUSION, _D): "Ignoring disengaged students in a lesson about inclusion shows a lack of practice",
    (Topic.CITIZENSHIP, _S): "Sarcasm in a citizenship lesson weakens the values being taught",
    (Topic.CITIZENSHIP, _P): "Public exposure in a citizenship lesson contradicts the values being taught",
    (Topic.CITIZENSHIP, _E): "Excluding students in a citizenship lesson contradicts democratic principles",
}

del _S, _D, _P, _E, _A


@dataclass(frozen=True)
class Contradiction:
    topic: Topic
    behavior: BehaviorCategory
    behavior_severity: Severity
    severity: Severity
    evidence: tuple[str, ...]
    description: str
    score_penalty: int

    def to_dict(self) -> dict:
        return {
            "topic": self.topic.value,
            "behavior": self.behavior.value,
            "behavior_severity": self.behavior_severity.value,
            "severity": self.severity.value,
            "evidence": list(self.evidence),
            "description": self.description,
            "score_penalty": self.score_penalty,
        }


@dataclass(frozen=True)
class ContextReport:
    detected_topics: tuple[Topic, ...]
    contradictions: tuple[Contradiction, ...]
    hypocrisy_score: int
    teaching_about_topic: bool
    practicing_violation: bool
    safety_score: int
    recommendation: str
    behavior: Optional[BehaviorReport] = field(default=None, compare=False, repr=False)

    def to_dict(self) -> dict:
        return {
            "detected_topics": [t.value for t in self.detected_topics],
            "contradictions": [c.to_dict() for c in self.contradictions],
            "hypocrisy_score": self.hypocrisy_score,
            "teaching_about_topic": self.teaching_about_topic,
            "practicing_violation": self.practicing_violation,
            "safety_score": self.safety_score,
            "recommendation": self.recommendation,
        }


def contradiction_multiplier(topic: Topic, behavior: BehaviorCategory) -> float:
    """How strongly a behavior undermines a topic; 1.0 if it doesn't."""
    topic, behavior = Topic(topic), BehaviorCategory(behavior)
    if behavior not in CONTRADICTION_MAP.get(topic, frozenset()):
        return 1.0
    return CONTRADICTION_MULTIPLIERS.get((topic, behavior), DEFAULT_MULTIPLIER)


def contradiction_severity(multiplier: float, behavior_severity: Severity) -> Severity:
    if multiplier >= 2.0 and behavior_severity in (Severity.CRITICAL, Severity.HIGH):
        return Severity.CRITICAL
    if multiplier >= 1.5 and behavior_severity is Severity.CRITICAL:
        return Severity.CRITICAL
    if multiplier >= 1.5:
        return Severity.HIGH
    return Severity.MEDIUM


class ContextAnalyzer:
    """Topic detection and topic/behavior contradiction scoring."""

    def __init__(self, detector: Optional[BehaviorDetector] = None):
        self._detector = detector or behavior_detector

    def detect_topics(self, text: str) -> tuple[Topic, ...]:
        return tuple(
            topic for topic, patterns in TOPIC_PATTERNS.items()
            if any(p.search(text) for p in patterns)
        )

    def topic_detected(self, text: str, topic: Topic) -> bool:
        return any(p.search(text) for p in TOPIC_PATTERNS[Topic(topic)])

    def analyze(self, text: str, behavior: Optional[BehaviorReport] = None) -> ContextReport:
        """
        Analyze a transcript for teaching/practice contradictions.

        A precomputed BehaviorReport for the same text may be passed in
        to avoid running the behavior rules twice.
        """
        if behavior is None:
            behavior = self._detector.analyze(text)

        topics = self.detect_topics(text)
        contradictions = self._find_contradictions(topics, behavior)
        total_penalty = sum(c.score_penalty for c in contradictions)

        teaching = any(t in BULLYING_FAMILY for t in topics)
        practicing = bool(behavior.detected_categories())

        return ContextReport(
            detected_topics=topics,
            contradictions=contradictions,
            hypocrisy_score=max(0, min(100, 100 - total_penalty)),
            teaching_about_topic=teaching,
            practicing_violation=practicing,
            safety_score=behavior.safety_score,
            recommendation=build_recommendation(contradictions, teaching, practicing),
            behavior=behavior,
        )

    @staticmethod
    def _find_contradictions(
        topics: tuple[Topic, ...], behavior: BehaviorReport,
    ) -> tuple[Contradiction, ...]:
        found = []
        for topic in topics:
            for category, detection in behavior.detections().items():
                if detection.detected and category in CONTRADICTION_MAP[topic]:
                    found.append(_build_contradiction(topic, category, detection))
        # sorted() is stable: ties keep topic order, then category order
        return tuple(sorted(found, key=lambda c: c.score_penalty, reverse=True))


def _build_contradiction(
    topic: Topic, behavior: BehaviorCategory, detection: Detection,
) -> Contradiction:
    multiplier = contradiction_multiplier(topic, behavior)
    return Contradiction(
        topic=topic,
        behavior=behavior,
        behavior_severity=detection.severity,
        severity=contradiction_severity(multiplier, detection.severity),
        evidence=detection.evidence[:2],
        description=CONTRADICTION_DESCRIPTIONS.get(
            (topic, behavior),
            f"Inappropriate behavior detected during a lesson about {topic.value}",
        ),
        score_penalty=round_half_up(abs(detection.score_impact) * multiplier),
    )


def build_recommendation(
    contradictions: tuple[Contradiction, ...], teaching: bool, practicing: bool,
) -> str:
    if not contradictions:
        return "No pedagogical contradictions detected. The lesson is aligned with its topic."

    if teaching and practicing:
        return (
            "CRITICAL ALERT: serious contradiction between topic and practice. "
            "The lesson addresses bullying, but inappropriate behaviors were identified. "
            "This can cancel the lesson's pedagogical impact and even reinforce negative behavior. "
            "Review posture and language before addressing this topic again."
        )

    critical = sum(1 for c in contradictions if c.severity is Severity.CRITICAL)
    high = sum(1 for c in contradictions if c.severity is Severity.HIGH)

    if critical >= 2:
        return "Multiple critical contradictions detected. Urgent review of the pedagogical approach is needed."
    if critical >= 1:
        return "Critical contradiction detected. Align behavior with the topic being taught."
    if high >= 2:
        return "Several relevant contradictions. Review communication and posture during the lesson."
    return "Contradictions detected. Consider adjustments for greater coherence."


context_analyzer = ContextAnalyzer()
