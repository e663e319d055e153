"""
Legal Compliance Scorer

Deterministic compliance check of a lesson transcript against Brazilian
education law:

  - Lei 13.185/2015 (Anti-bullying Program): nine bullying types (Art. 2),
    seven school obligations (Art. 4), preventive vs punitive approach.
  - Lei 13.718/2018 (digital crimes / internet safety): crimes mentioned,
    protection of minors, the four digital-citizenship pillars.

Mentioned types come from educational keywords in the text. Practiced
types come from live behavior detections. The statute score is combined
with the hypocrisy score from the context analyzer; the digital-safety
result is reported alongside and does not move the combined score.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from lessonaudit.behavior import BehaviorCategory, BehaviorReport, Severity
from lessonaudit.context import (
    BULLYING_FAMILY,
    ContextAnalyzer,
    ContextReport,
    context_analyzer,
)
from lessonaudit.scorer import round_half_up


class ComplianceLevel(str, Enum):
    COMPLIANT = "compliant"
    PARTIAL = "partial"
    NON_COMPLIANT = "non_compliant"
    VIOLATION = "violation"


def _patterns(*regexes: str) -> tuple[re.Pattern, ...]:
    return tuple(re.compile(r, re.IGNORECASE) for r in regexes)


@dataclass(frozen=True)
class TaxonomyItem:
    name: str
    description: str
    patterns: tuple[re.Pattern, ...]

    def matches(self, text: str) -> bool:
        return any(p.search(text) for p in self.patterns)


# ============================================================
# LEI 13.185/2015 TABLES
# ============================================================

# Art. 2: the nine bullying types
BULLYING_TYPES: tuple[TaxonomyItem, ...] = (
    TaxonomyItem("Physical", "Hitting, punching, kicking, pinching, pushing", _patterns(
        r"bullying\s+físico", r"agredir|socar|chutar|empurrar|beliscar")),
    TaxonomyItem("Psychological", "Isolating, ignoring, humiliating, blackmailing", _patterns(
        r"bullying\s+psicológico", r"isolar|ignorar|humilhar|chantagear")),
    TaxonomyItem("Moral", "Defaming, slandering, spreading false rumors", _patterns(
        r"bullying\s+moral", r"difamar|caluniar|rumores?\s+falsos?")),
    TaxonomyItem("Verbal", "Insulting, name-calling, derogatory nicknames", _patterns(
        r"bullying\s+verbal", r"insultar|xingar|apelid(o|ar)\s+pejorativ")),
    TaxonomyItem("Material", "Stealing, robbing, destroying belongings", _patterns(
        r"bullying\s+material", r"furtar|roubar|destruir\s+pertences")),
    TaxonomyItem("Sexual", "Harassing, inducing, abusing", _patterns(
        r"bullying\s+sexual", r"assédio\s+sexual|abusar")),
    TaxonomyItem("Social", "Excluding from groups, preventing participation", _patterns(
        r"bullying\s+social", r"excluir\s+de\s+grupos?|não\s+deixar\s+participar")),
    TaxonomyItem("Virtual", "Belittling or sending offensive messages online", _patterns(
        r"bullying\s+virtual", r"depreciar\s+online|mensagens?\s+ofensivas?\s+online")),
    TaxonomyItem("Cyberbullying", "Faking profiles, creating fake pages", _patterns(
        r"cyberbullying", r"perfis?\s+fals(o|a)s?|páginas?\s+fake")),
)

# Art. 4: the seven school obligations
SCHOOL_OBLIGATIONS: tuple[TaxonomyItem, ...] = (
    TaxonomyItem("Prevention programs", "Run permanent prevention programs", _patterns(
        r"programa\s+de\s+prevenção", r"prevenção\s+permanente")),
    TaxonomyItem("Staff training", "Train teachers and staff", _patterns(
        r"capacitação|treinamento|formação\s+de\s+professores")),
    TaxonomyItem("Victim support", "Welcome and protect victims", _patterns(
        r"acolher|acolhimento|apoio\s+às?\s+vítimas?")),
    TaxonomyItem("Aggressor accountability", "Hold aggressors accountable, educationally", _patterns(
        r"responsabiliza(r|ção)|consequências?\s+para\s+agressor")),
    TaxonomyItem("Educational campaigns", "Run periodic awareness campaigns", _patterns(
        r"campanha\s+educativa|conscientização")),
    TaxonomyItem("Psychological assistance", "Offer psychological support when needed", _patterns(
        r"assistência\s+psicológica|apoio\s+psicológico|psicólogo")),
    TaxonomyItem("Family involvement", "Coordinate actions with families and community", _patterns(
        r"articulação\s+com\s+famílias|envolver\s+(a\s+)?família")),
)

PREVENTIVE_PATTERNS = _patterns(
    r"vamos\s+conversar\s+sobre",
    r"o\s+que\s+(vocês\s+)?acham",
    r"como\s+podemos\s+(resolver|ajudar)",
    r"educação|educar|ensinar",
    r"prevenção|prevenir",
    r"conscientização|conscientizar",
)

PUNITIVE_PATTERNS = _patterns(
    r"castigo|punição|punir",
    r"suspensão|expulsão",
    r"vai\s+ser\s+advertido",
    r"chamar\s+os\s+pais\s+para\s+(reclam|punir)",
)

# Live behaviors mapped onto the statute's type taxonomy, in report order
PRACTICED_TYPE_MAP: tuple[tuple[str, frozenset[BehaviorCategory]], ...] = (
    ("Verbal", frozenset({BehaviorCategory.SARCASM, BehaviorCategory.AGGRESSION})),
    ("Psychological", frozenset({BehaviorCategory.PUBLIC_SHAME})),
    ("Social", frozenset({BehaviorCategory.EXCLUSION})),
)

# --- Scoring constants ---
BASE_SCORE = 50
MENTION_BONUS = 5
MENTION_BONUS_CAP = 20
PREVENTIVE_BONUS = 15
PRACTICE_PENALTY = 15
VIOLATION_PENALTY = 10
GRAVE_VIOLATION_PENALTY = 30

STATUTE_WEIGHT = 0.6
HYPOCRISY_WEIGHT = 0.4


# ============================================================
# LEI 13.718/2018 TABLES
# ============================================================

DIGITAL_CRIME_PATTERNS = _patterns(
    r"crimes?\s+(digita(l|is)|virtua(l|is)|cibernéticos?)",
    r"importunação\s+sexual",
    r"divulga(r|ção)\s+(de\s+)?(cena|fotos?|imagens?|vídeos?)\s+íntim",
    r"divulgação\s+de\s+cena",
    r"nudes?",
    r"sextorsão",
    r"218-?C|215-?A",
    r"lei\s+13\.?718",
)

MINOR_PROTECTION_PATTERNS = _patterns(
    r"menores?\s+de\s+(idade|14|quatorze|catorze)",
    r"proteção\s+(de|dos|das)\s+(menores|crianças|adolescentes)",
    r"estatuto\s+da\s+criança",
    r"\bECA\b",
)

DIGITAL_PILLARS: tuple[TaxonomyItem, ...] = (
    TaxonomyItem("Digital etiquette", "Respect in online interactions", _patterns(
        r"etiqueta\s+digital|netiqueta", r"respeito\s+(na\s+internet|online|nas\s+redes)")),
    TaxonomyItem("Digital safety", "Data protection and privacy", _patterns(
        r"segurança\s+(digital|online|na\s+internet)", r"privacidade|dados\s+pessoais|senhas?")),
    TaxonomyItem("Rights and duties", "Knowing the applicable legislation", _patterns(
        r"direitos?\s+(e\s+)?deveres?\s+(digita|online|na\s+internet)", r"marco\s+civil|LGPD")),
    TaxonomyItem("Digital literacy", "Checking sources, fighting misinformation", _patterns(
        r"alfabetização\s+digital|letramento\s+digital",
        r"fake\s+news|desinformação|verificar\s+(as\s+)?fontes?")),
)

PILLAR_POINTS = 20
CRIMES_POINTS = 10
MINOR_PROTECTION_POINTS = 10


# ============================================================
# RESULT TYPES
# ============================================================

@dataclass(frozen=True)
class Violation:
    description: str
    article: str
    grave: bool = False

    @property
    def penalty(self) -> int:
        return GRAVE_VIOLATION_PENALTY if self.grave else VIOLATION_PENALTY

    def to_dict(self) -> dict:
        return {"description": self.description, "article": self.article, "grave": self.grave}


@dataclass(frozen=True)
class StatuteResult:
    """Lei 13.185/2015 (anti-bullying) result."""
    compliance_level: ComplianceLevel
    risk_level: Severity
    score: int
    types_mentioned: tuple[str, ...]
    types_practiced: tuple[str, ...]
    types_missing: tuple[str, ...]
    obligations_mentioned: tuple[str, ...]
    preventive_approach: bool
    violations: tuple[Violation, ...]
    recommendations: tuple[str, ...]

    @property
    def has_grave_violation(self) -> bool:
        return any(v.grave for v in self.violations)

    def to_dict(self) -> dict:
        return {
            "compliance_level": self.compliance_level.value,
            "risk_level": self.risk_level.value,
            "score": self.score,
            "types_mentioned": list(self.types_mentioned),
            "types_practiced": list(self.types_practiced),
            "types_missing": list(self.types_missing),
            "obligations_mentioned": list(self.obligations_mentioned),
            "preventive_approach": self.preventive_approach,
            "violations": [v.to_dict() for v in self.violations],
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class DigitalSafetyResult:
    """Lei 13.718/2018 (internet safety) result."""
    score: int
    crimes_mentioned: bool
    minor_protection: bool
    pillars_covered: tuple[str, ...]
    pillars_missing: tuple[str, ...]
    recommendations: tuple[str, ...]

    def to_dict(self) -> dict:
        return {
            "score": self.score,
            "crimes_mentioned": self.crimes_mentioned,
            "minor_protection": self.minor_protection,
            "pillars_covered": list(self.pillars_covered),
            "pillars_missing": list(self.pillars_missing),
            "recommendations": list(self.recommendations),
        }


@dataclass(frozen=True)
class ComplianceReport:
    anti_bullying: StatuteResult
    digital_safety: DigitalSafetyResult
    combined_score: int
    overall_compliance: ComplianceLevel
    overall_risk: Severity
    summary: str
    behavior: BehaviorReport = field(compare=False, repr=False)
    context: ContextReport = field(compare=False, repr=False)

    def to_dict(self) -> dict:
        return {
            "anti_bullying": self.anti_bullying.to_dict(),
            "digital_safety": self.digital_safety.to_dict(),
            "combined_score": self.combined_score,
            "overall_compliance": self.overall_compliance.value,
            "overall_risk": self.overall_risk.value,
            "summary": self.summary,
            "context": {
                "teaching_about_topic": self.context.teaching_about_topic,
                "practicing_violation": self.context.practicing_violation,
                "contradictions": len(self.context.contradictions),
                "hypocrisy_score": self.context.hypocrisy_score,
            },
        }


# ============================================================
# SCORING HELPERS
# ============================================================

def score_to_compliance_level(score: int) -> ComplianceLevel:
    if score >= 80:
        return ComplianceLevel.COMPLIANT
    if score >= 60:
        return ComplianceLevel.PARTIAL
    if score >= 40:
        return ComplianceLevel.NON_COMPLIANT
    return ComplianceLevel.VIOLATION


def statute_risk_level(
    grave: bool, practiced: int, violations: int, practicing_violation: bool,
) -> Severity:
    if grave:
        return Severity.CRITICAL
    if practiced >= 2 and violations >= 2:
        return Severity.CRITICAL
    if practiced >= 2 or violations >= 2:
        return Severity.HIGH
    if practiced >= 1 or violations >= 1:
        return Severity.MEDIUM
    if practicing_violation:
        return Severity.LOW
    return Severity.NONE


def combined_score(statute_score: int, hypocrisy_score: int) -> int:
    return round_half_up(STATUTE_WEIGHT * statute_score + HYPOCRISY_WEIGHT * hypocrisy_score)


def _count_matches(text: str, patterns: tuple[re.Pattern, ...]) -> int:
    return sum(1 for p in patterns if p.search(text))


# ============================================================
# THE SCORER
# ============================================================

class ComplianceScorer:
    """Maps behavior and context reports onto statute taxonomies."""

    def __init__(self, analyzer: Optional[ContextAnalyzer] = None):
        self._analyzer = analyzer or context_analyzer

    def check_compliance(
        self,
        text: str,
        behavior: Optional[BehaviorReport] = None,
        context: Optional[ContextReport] = None,
    ) -> ComplianceReport:
        """Full compliance report; reuses precomputed reports when given."""
        if context is None:
            context = self._analyzer.analyze(text, behavior=behavior)
        if behavior is None:
            behavior = context.behavior or self._analyzer.analyze(text).behavior

        statute = self.check_anti_bullying(text, behavior, context)
        digital = self.check_digital_safety(text)

        combined = combined_score(statute.score, context.hypocrisy_score)
        if statute.compliance_level is ComplianceLevel.VIOLATION:
            overall = ComplianceLevel.VIOLATION
        else:
            overall = score_to_compliance_level(combined)
        risk = Severity.CRITICAL if statute.has_grave_violation else statute.risk_level

        return ComplianceReport(
            anti_bullying=statute,
            digital_safety=digital,
            combined_score=combined,
            overall_compliance=overall,
            overall_risk=risk,
            summary=build_summary(statute, overall),
            behavior=behavior,
            context=context,
        )

    # --- Lei 13.185 ---

    def check_anti_bullying(
        self, text: str, behavior: BehaviorReport, context: ContextReport,
    ) -> StatuteResult:
        mentioned = self.types_mentioned(text)
        practiced = self.types_practiced(behavior)
        preventive = self.is_preventive(text)
        violations = self.identify_violations(behavior, context)
        grave = any(v.grave for v in violations)

        score = (
            BASE_SCORE
            + min(MENTION_BONUS * len(mentioned), MENTION_BONUS_CAP)
            + (PREVENTIVE_BONUS if preventive else 0)
            - PRACTICE_PENALTY * len(practiced)
            - sum(v.penalty for v in violations)
        )
        score = max(0, min(100, score))

        level = score_to_compliance_level(score)
        if grave:
            level = ComplianceLevel.VIOLATION

        return StatuteResult(
            compliance_level=level,
            risk_level=statute_risk_level(
                grave, len(practiced), len(violations), context.practicing_violation,
            ),
            score=score,
            types_mentioned=mentioned,
            types_practiced=practiced,
            types_missing=tuple(t.name for t in BULLYING_TYPES if t.name not in mentioned),
            obligations_mentioned=self.obligations_mentioned(text),
            preventive_approach=preventive,
            violations=violations,
            recommendations=_anti_bullying_recommendations(practiced, preventive, grave),
        )

    @staticmethod
    def types_mentioned(text: str) -> tuple[str, ...]:
        return tuple(t.name for t in BULLYING_TYPES if t.matches(text))

    @staticmethod
    def obligations_mentioned(text: str) -> tuple[str, ...]:
        return tuple(o.name for o in SCHOOL_OBLIGATIONS if o.matches(text))

    @staticmethod
    def types_practiced(behavior: BehaviorReport) -> tuple[str, ...]:
        detected = set(behavior.detected_categories())
        return tuple(name for name, cats in PRACTICED_TYPE_MAP if detected & cats)

    @staticmethod
    def is_preventive(text: str) -> bool:
        """Majority vote of preventive over punitive keyword families."""
        return _count_matches(text, PREVENTIVE_PATTERNS) > _count_matches(text, PUNITIVE_PATTERNS)

    @staticmethod
    def identify_violations(
        behavior: BehaviorReport, context: ContextReport,
    ) -> tuple[Violation, ...]:
        violations = []

        if any(c.topic in BULLYING_FAMILY for c in context.contradictions):
            violations.append(Violation(
                "GRAVE VIOLATION: bullying behavior during a lesson about bullying",
                "Art. 2",
                grave=True,
            ))
        if behavior.sarcasm.detected and behavior.sarcasm.severity is Severity.CRITICAL:
            violations.append(Violation("Critical-severity sarcasm", "Art. 2, IV (Verbal)"))
        if behavior.public_shame.detected:
            violations.append(Violation("Public exposure of a student", "Art. 2, II (Psychological)"))
        if behavior.exclusion.detected:
            violations.append(Violation("Exclusion behavior", "Art. 2, VII (Social)"))
        if behavior.aggression.detected:
            violations.append(Violation("Verbal aggression", "Art. 2, IV (Verbal)"))

        return tuple(violations)

    # --- Lei 13.718 ---

    @staticmethod
    def check_digital_safety(text: str) -> DigitalSafetyResult:
        crimes = any(p.search(text) for p in DIGITAL_CRIME_PATTERNS)
        minors = any(p.search(text) for p in MINOR_PROTECTION_PATTERNS)
        covered = tuple(p.name for p in DIGITAL_PILLARS if p.matches(text))
        missing = tuple(p.name for p in DIGITAL_PILLARS if p.name not in covered)

        score = (
            PILLAR_POINTS * len(covered)
            + (CRIMES_POINTS if crimes else 0)
            + (MINOR_PROTECTION_POINTS if minors else 0)
        )

        recommendations = [f"Work on the '{name}' digital-citizenship pillar" for name in missing]
        if not crimes:
            recommendations.append("Mention digital crimes covered by Lei 13.718 (Art. 218-C, Art. 215-A)")
        if not minors:
            recommendations.append("Address the protection of minors online")

        return DigitalSafetyResult(
            score=min(100, score),
            crimes_mentioned=crimes,
            minor_protection=minors,
            pillars_covered=covered,
            pillars_missing=missing,
            recommendations=tuple(recommendations),
        )


def _anti_bullying_recommendations(
    practiced: tuple[str, ...], preventive: bool, grave: bool,
) -> tuple[str, ...]:
    recs = []
    if grave:
        recs.append("URGENT: fully review the pedagogical approach, behavior contradicts the topic taught")
    if "Verbal" in practiced:
        recs.append("Replace sarcasm and aggressive language with assertive, respectful communication")
    if "Psychological" in practiced:
        recs.append("Address individual issues in private, never exposing students publicly")
    if "Social" in practiced:
        recs.append("Make sure every student is included in class activities")
    if not preventive:
        recs.append("Adopt a preventive, educational approach instead of a punitive one (Lei 13.185, Art. 4)")
    return tuple(recs) or ("Keep current practices and continue the preventive work",)


_LEVEL_TEXT = {
    ComplianceLevel.COMPLIANT: "✅ COMPLIANT with Lei 13.185/2015",
    ComplianceLevel.PARTIAL: "⚠️ PARTIALLY COMPLIANT, adjustments needed",
    ComplianceLevel.NON_COMPLIANT: "❌ NON-COMPLIANT, violations require action",
    ComplianceLevel.VIOLATION: "🚨 GRAVE VIOLATION, immediate action required",
}


def build_summary(statute: StatuteResult, overall: ComplianceLevel) -> str:
    parts = [_LEVEL_TEXT[overall]]
    if statute.has_grave_violation:
        parts.append("ALERT: contradiction between the topic taught and observed behavior.")
    if statute.violations:
        parts.append(f"{len(statute.violations)} violation(s) identified.")
    return " | ".join(parts)


compliance_scorer = ComplianceScorer()
