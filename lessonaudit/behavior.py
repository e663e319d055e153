"""
Behavior Detection Engine — Deterministic Inner Ring

Finds problematic classroom behaviors in a lesson transcript using
weighted pattern rules. No LLM, no I/O, no hidden state:
the same text always yields the same report.

Five categories are detected:
  1. Sarcasm (teacher-to-student)
  2. Disengagement (sleeping, missing, silent, refusing)
  3. Public shaming (exposing a student to peers)
  4. Exclusion (Lei 13.185, Art. 2, VII, social bullying)
  5. Verbal aggression (Lei 13.185, Art. 2, IV, verbal bullying)

Each category owns an ordered table of (pattern, severity, label) rules.
The tables are module-level tuples and are only ever read, so one engine
instance can be shared by any number of concurrent callers.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional


# ============================================================
# ENUMERATIONS
# ============================================================

class Severity(str, Enum):
    """Detection severity, also used as the legal risk scale."""

    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"
    NONE = "none"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]

    @classmethod
    def highest(cls, severities: Iterable["Severity"]) -> "Severity":
        """Maximum severity of an iterable; NONE when empty."""
        return max(severities, key=lambda s: s.rank, default=cls.NONE)


_SEVERITY_RANK = {
    Severity.CRITICAL: 4,
    Severity.HIGH: 3,
    Severity.MEDIUM: 2,
    Severity.LOW: 1,
    Severity.NONE: 0,
}


class BehaviorCategory(str, Enum):
    SARCASM = "sarcasm"
    DISENGAGEMENT = "disengagement"
    PUBLIC_SHAME = "public_shame"
    EXCLUSION = "exclusion"
    AGGRESSION = "aggression"


# ============================================================
# DATA STRUCTURES
# ============================================================

@dataclass(frozen=True)
class Rule:
    """One weighted detection rule."""
    pattern: re.Pattern
    severity: Severity
    label: str


@dataclass(frozen=True)
class CategorySpec:
    """Rule table plus scoring weights for one behavior category."""
    category: BehaviorCategory
    rules: tuple[Rule, ...]
    # Negative score per matched rule, by rule severity
    weights: dict
    # Lowest total impact a single category may contribute
    floor: int


@dataclass(frozen=True)
class Detection:
    """Pattern-match result for one category. Immutable once produced."""
    detected: bool
    severity: Severity
    evidence: tuple[str, ...]
    score_impact: int  # always <= 0

    def to_dict(self) -> dict:
        return {
            "detected": self.detected,
            "severity": self.severity.value,
            "evidence": list(self.evidence),
            "score_impact": self.score_impact,
        }


NO_DETECTION = Detection(
    detected=False, severity=Severity.NONE, evidence=(), score_impact=0,
)


@dataclass(frozen=True)
class BehaviorReport:
    """All detections for one transcript plus derived safety and risk."""
    sarcasm: Detection
    disengagement: Detection
    public_shame: Detection
    exclusion: Detection
    aggression: Detection
    safety_score: int
    legal_risk: Severity
    summary: str

    def detection(self, category: BehaviorCategory) -> Detection:
        return getattr(self, category.value)

    def detections(self) -> dict[BehaviorCategory, Detection]:
        """Detections keyed by category, in category declaration order."""
        return {c: self.detection(c) for c in BehaviorCategory}

    def detected_categories(self) -> list[BehaviorCategory]:
        return [c for c, d in self.detections().items() if d.detected]

    def to_dict(self) -> dict:
        data = {c.value: d.to_dict() for c, d in self.detections().items()}
        data.update({
            "safety_score": self.safety_score,
            "legal_risk": self.legal_risk.value,
            "summary": self.summary,
        })
        return data


# ============================================================
# RULE TABLES
# ============================================================

# A name or a word, accents included
_WORD = r"[A-Za-zÀ-ú]+"

# Characters of context kept on each side of a match
EVIDENCE_RADIUS = 20


def _rule(
    regex: str, severity: Severity, label: str, flags: int = re.IGNORECASE,
) -> Rule:
    return Rule(pattern=re.compile(regex, flags), severity=severity, label=label)


C, H, M, L = Severity.CRITICAL, Severity.HIGH, Severity.MEDIUM, Severity.LOW

SARCASM_RULES: tuple[Rule, ...] = (
    # Dismissive questions
    _rule(r"Só\s+(\w+)\s*\?", H, "Dismissive 'Só X?' question"),
    _rule(r"E\s+só\s+isso\s*\?", H, "Dismissive 'E só isso?'"),
    _rule(r"Você\s+acha\s+que\s+.*\s+né\s*\?", M, "Leading 'Você acha que... né?'"),

    # Habitual criticism
    _rule(r"Você\s+tem\s+(essa\s+)?mania", C, "Habitual criticism 'Você tem essa mania'"),
    _rule(r"Você\s+sempre\s+faz\s+isso", H, "Habitual criticism 'Você sempre faz isso'"),
    _rule(r"Sempre\s+a\s+mesma\s+coisa", H, "Habitual criticism 'Sempre a mesma coisa'"),
    _rule(r"De\s+novo\s*\?", M, "Exasperated 'De novo?'"),

    # Rhetorical dismissals
    _rule(r"Claro,?\s+né", M, "Rhetorical 'Claro, né'"),
    _rule(r"Óbvio,?\s+né", M, "Rhetorical 'Óbvio, né'"),
    _rule(r"Lógico,?\s+né", L, "Rhetorical 'Lógico, né'"),
    _rule(r"Que\s+surpresa", H, "Mock surprise 'Que surpresa'"),

    # Derogatory comparisons
    _rule(rf"Nem\s+o\s+{_WORD}\s+faz\s+isso", H, "Derogatory comparison 'Nem o X faz isso'"),
    _rule(r"Até\s+(criança|bebê)\s+(sabe|consegue)", C, "Belittling 'Até criança sabe'"),
    _rule(r"Parece\s+que\s+é\s+difícil", M, "Belittling 'Parece que é difícil'"),

    # Exasperation
    _rule(r"Quantas\s+vezes\s+(eu\s+)?(já\s+)?disse", H, "Exasperation 'Quantas vezes já disse'"),
    _rule(r"Eu\s+não\s+acredito", M, "Exasperation 'Eu não acredito'"),
    _rule(r"Não\s+é\s+possível", M, "Exasperation 'Não é possível'"),

    # Mocking emphasis
    _rule(r"Ah,?\s+tá\s+bom", M, "Mocking 'Ah, tá bom'"),
    _rule(r"Muito\s+bem,?\s+hein", M, "Mocking 'Muito bem, hein'"),
    _rule(r"Parabéns,?\s+hein", M, "Mocking 'Parabéns, hein'"),
)

DISENGAGEMENT_RULES: tuple[Rule, ...] = (
    # Sleeping
    _rule(rf"{_WORD}\s+(dormiu|está\s+dormindo|dorme\s+de\s+novo)", C, "Student asleep"),
    _rule(r"(dormiu|dormindo|dorme)\s+de\s+novo", C, "Recurring sleep in class"),
    _rule(rf"(acorda|acordar)\s+{_WORD}", C, "Teacher waking a student"),
    _rule(rf"Olha\s+lá,?\s+{_WORD}\s+dormindo", C, "Remark about a sleeping student"),

    # Missing / absent
    _rule(rf"(cadê|onde\s+está|não\s+sei\s+onde)\s+(o|a)?\s*{_WORD}", H, "Student missing"),
    _rule(rf"{_WORD}\s+sumiu", H, "Student disappeared"),
    _rule(r"(saiu|foi\s+embora)\s+sem\s+(pedir|avisar)", H, "Left without permission"),

    # Silence / non-participation
    _rule(r"ninguém\s+(responde|fala|quer)", M, "Class-wide silence"),
    _rule(r"silêncio\s+total", M, "Total silence"),
    _rule(rf"{_WORD}\s+não\s+quer\s+(participar|fazer|falar)", M, "Refuses to participate"),

    # Explicit resistance
    _rule(r"(não\s+quero|eu\s+não\s+vou|não\s+quero\s+mais)", H, "Explicit refusal"),
    _rule(r"que\s+saco|que\s+chato", M, "Boredom expressed"),
    _rule(r"cansei\s+disso", M, "Fatigue expressed"),

    # Distraction
    _rule(r"(mexendo|brincando)\s+(no|com)\s+(celular|telefone)", M, "Distracted by phone"),
    _rule(r"para\s+de\s+mexer\s+(no|com)", M, "Told to stop fiddling"),
    _rule(r"para\s+de\s+(conversar|falar)", L, "Side conversation"),
    _rule(r"presta\s+atenção", L, "Call for attention"),
)

PUBLIC_SHAME_RULES: tuple[Rule, ...] = (
    # Public criticism
    _rule(rf"(olha|veja)\s+o\s+que\s+{_WORD}\s+fez", C, "Mistake exposed publicly"),
    _rule(r"todo\s+mundo\s+(sabe|viu|ouviu)", H, "Public generalization"),
    _rule(r"na\s+frente\s+de\s+todo\s+mundo", C, "Exposure in front of everyone"),

    # Physical / appearance remarks
    _rule(r"(perfume|cheiro|cheirou|fedeu)", C, "Remark about body odor"),
    _rule(r"(gordo|magro|feio|bonito)\s+assim", C, "Remark about body or looks"),
    _rule(r"olha\s+(a|o)\s+(roupa|cabelo|cara)", H, "Remark about clothes, hair or face"),

    # Academic shaming
    _rule(r"(errou|errado)\s+de\s+novo", H, "Repeated error highlighted"),
    _rule(r"todo\s+mundo\s+acertou\s+menos", C, "Negative public comparison"),
    _rule(r"só\s+você\s+(não|errou)", C, "Singled out by performance"),

    # Name and shame
    _rule(rf"{_WORD},?\s+levanta\s+(a\s+mão|aí)", M, "Public call-out"),
    _rule(rf"classe,?\s+(olha|veja)\s+o\s+{_WORD}", C, "Student exposed to the class"),

    # Laughter at a student's expense
    _rule(r"\(risos\)", M, "Laughter (check context)"),
    _rule(r"pode\s+rir", C, "Permission to laugh at someone"),
    _rule(r"engraçado,?\s+né", M, "Sarcasm about the situation"),
)

EXCLUSION_RULES: tuple[Rule, ...] = (
    # Social exclusion
    _rule(r"(você\s+)?não\s+pode\s+(participar|entrar|fazer\s+parte)", C, "Barred from activity"),
    _rule(r"sai\s+(daqui|do\s+grupo)", C, "Expelled from group"),
    _rule(r"ninguém\s+quer\s+(você|ela|ele)", C, "Social rejection"),

    # Isolation
    _rule(r"(fica|senta)\s+(aí\s+)?sozinho", H, "Forced isolation"),
    _rule(r"vai\s+pro\s+canto", H, "Spatial isolation"),
    _rule(r"não\s+(fala|conversa)\s+com", H, "Interaction forbidden"),

    # Group dynamics
    _rule(r"não\s+é\s+do\s+(grupo|time|nossa\s+turma)", H, "Group exclusion"),
    _rule(r"(ela|ele)\s+não\s+(vai|entra)", M, "Participation vetoed"),
)

AGGRESSION_RULES: tuple[Rule, ...] = (
    # Direct insults
    _rule(r"(burro|idiota|imbecil|estúpido)", C, "Direct insult"),
    _rule(r"(cala\s+a\s+boca|fecha\s+a\s+boca)", H, "Aggressive command"),
    _rule(r"(inútil|incapaz|incompetente)", C, "Insult to ability"),

    # Threats
    _rule(r"(vou\s+te|vai\s+ver|você\s+vai)\s+(tirar|expulsar|mandar)", C, "Threat"),
    _rule(r"se\s+não\s+(parar|calar)", H, "Conditional threat"),

    # Yelling; case-sensitive on purpose
    _rule(r"[A-Z]{3,}(!)+", M, "Shouting in capitals", flags=0),
    _rule(r"para\s+de\s+gritar", M, "Reference to yelling"),

    # Derogatory nicknames
    _rule(r"seu\s+(idiota|burro|inútil)", C, "Name-calling"),
    _rule(rf"(apelido|chama\s+de)\s+{_WORD}", M, "Nickname (check context)"),
)

del C, H, M, L


def _weights(critical: int, high: int, medium: int, low: int) -> dict:
    return {
        Severity.CRITICAL: -critical,
        Severity.HIGH: -high,
        Severity.MEDIUM: -medium,
        Severity.LOW: -low,
        Severity.NONE: 0,
    }


CATEGORY_SPECS: dict[BehaviorCategory, CategorySpec] = {
    BehaviorCategory.SARCASM: CategorySpec(
        BehaviorCategory.SARCASM, SARCASM_RULES, _weights(15, 10, 5, 2), floor=-30,
    ),
    BehaviorCategory.DISENGAGEMENT: CategorySpec(
        BehaviorCategory.DISENGAGEMENT, DISENGAGEMENT_RULES, _weights(15, 10, 5, 2), floor=-30,
    ),
    BehaviorCategory.PUBLIC_SHAME: CategorySpec(
        BehaviorCategory.PUBLIC_SHAME, PUBLIC_SHAME_RULES, _weights(15, 10, 5, 2), floor=-30,
    ),
    BehaviorCategory.EXCLUSION: CategorySpec(
        BehaviorCategory.EXCLUSION, EXCLUSION_RULES, _weights(15, 10, 5, 0), floor=-25,
    ),
    BehaviorCategory.AGGRESSION: CategorySpec(
        BehaviorCategory.AGGRESSION, AGGRESSION_RULES, _weights(20, 12, 6, 0), floor=-35,
    ),
}


# ============================================================
# SCORING
# ============================================================

def calculate_safety_score(detections: Iterable[Detection]) -> int:
    """Classroom psychological safety score, 0-100.

    Starts at 100 and subtracts every category's (already floored) impact.
    """
    total = sum(d.score_impact for d in detections)
    return max(0, min(100, 100 + total))


def calculate_legal_risk(severities: Iterable[Severity]) -> Severity:
    """Lei 13.185 risk from per-category severities."""
    severities = list(severities)
    critical = sum(1 for s in severities if s is Severity.CRITICAL)
    high = sum(1 for s in severities if s is Severity.HIGH)

    if critical >= 2:
        return Severity.CRITICAL
    if critical >= 1 and high >= 1:
        return Severity.CRITICAL
    if critical >= 1:
        return Severity.HIGH
    if high >= 2:
        return Severity.HIGH
    if high >= 1:
        return Severity.MEDIUM
    if Severity.MEDIUM in severities:
        return Severity.LOW
    return Severity.NONE


# ============================================================
# THE DETECTION ENGINE
# ============================================================

@dataclass(frozen=True)
class _Match:
    label: str
    severity: Severity
    evidence: str


class BehaviorDetector:
    """
    Stateless behavior detector. Deterministic. Zero API cost.

    Instantiated once as a module singleton; holds only references to
    the immutable rule tables above.
    """

    def __init__(self, specs: Optional[dict[BehaviorCategory, CategorySpec]] = None):
        self._specs = specs or CATEGORY_SPECS

    def detect(self, category: BehaviorCategory, text: str) -> Detection:
        """Run one category's rule table against the text."""
        spec = self._specs[BehaviorCategory(category)]
        matches = self._find_matches(text, spec.rules)
        if not matches:
            return NO_DETECTION

        impact = sum(spec.weights[m.severity] for m in matches)
        return Detection(
            detected=True,
            severity=Severity.highest(m.severity for m in matches),
            evidence=tuple(m.evidence for m in matches),
            score_impact=max(spec.floor, impact),
        )

    def analyze(self, text: str) -> BehaviorReport:
        """Complete behavior analysis of a transcript."""
        detections = {c: self.detect(c, text) for c in BehaviorCategory}
        return BehaviorReport(
            sarcasm=detections[BehaviorCategory.SARCASM],
            disengagement=detections[BehaviorCategory.DISENGAGEMENT],
            public_shame=detections[BehaviorCategory.PUBLIC_SHAME],
            exclusion=detections[BehaviorCategory.EXCLUSION],
            aggression=detections[BehaviorCategory.AGGRESSION],
            safety_score=calculate_safety_score(detections.values()),
            legal_risk=calculate_legal_risk(d.severity for d in detections.values()),
            summary=self._build_summary(detections),
        )

    analyze_all = analyze

    @staticmethod
    def _find_matches(text: str, rules: tuple[Rule, ...]) -> list[_Match]:
        """First match of each rule, one entry per label."""
        matches: list[_Match] = []
        seen: set[str] = set()
        for rule in rules:
            if rule.label in seen:
                continue
            found = rule.pattern.search(text)
            if found is None:
                continue
            start = max(0, found.start() - EVIDENCE_RADIUS)
            end = min(len(text), found.end() + EVIDENCE_RADIUS)
            window = text[start:end].strip()
            matches.append(_Match(rule.label, rule.severity, f"...{window}..."))
            seen.add(rule.label)
        return matches

    @staticmethod
    def _build_summary(detections: dict[BehaviorCategory, Detection]) -> str:
        detected = [
            f"{c.value} ({d.severity.value})"
            for c, d in detections.items() if d.detected
        ]
        if not detected:
            return "No problematic behaviors detected"
        return f"Detected: {', '.join(detected)}"

    def patterns(self, category: Optional[BehaviorCategory] = None) -> list[dict]:
        """Expose the detection surface, e.g. for documentation or review."""
        categories = [BehaviorCategory(category)] if category else list(BehaviorCategory)
        return [
            {
                "category": c.value,
                "label": rule.label,
                "severity": rule.severity.value,
                "pattern": rule.pattern.pattern,
                "weight": self._specs[c].weights[rule.severity],
            }
            for c in categories
            for rule in self._specs[c].rules
        ]


# ============================================================
# SINGLETON
# ============================================================

behavior_detector = BehaviorDetector()
