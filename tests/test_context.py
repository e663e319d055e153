"""
Tests for the context / hypocrisy analyzer.
"""

import pytest

from lessonaudit.behavior import BehaviorCategory, Severity, behavior_detector
from lessonaudit.context import (
    context_analyzer,
    contradiction_multiplier,
    contradiction_severity,
    Topic,
    DEFAULT_MULTIPLIER,
)


SCENARIO = "Hoje vamos falar sobre bullying. Você tem essa mania de atrasar. Ivã dormiu de novo."
EDUCATIONAL = (
    "Hoje vamos conversar sobre bullying. "
    "O que vocês acham que podemos fazer para prevenir?"
)


class TestTopicDetection:

    def test_bullying(self):
        assert context_analyzer.detect_topics(EDUCATIONAL) == (Topic.BULLYING,)

    def test_multiple_topics_in_declared_order(self):
        text = "Falamos de cidadania, inclusão e respeito."
        assert context_analyzer.detect_topics(text) == (
            Topic.RESPECT, Topic.INCLUSION, Topic.CITIZENSHIP,
        )

    def test_cyberbullying_also_matches_bullying(self):
        topics = context_analyzer.detect_topics("Vamos falar de cyberbullying.")
        assert Topic.CYBERBULLYING in topics
        assert Topic.BULLYING in topics

    def test_topic_detected(self):
        assert context_analyzer.topic_detected("Aula sobre diversidade", Topic.INCLUSION)
        assert not context_analyzer.topic_detected("Aula sobre frações", Topic.INCLUSION)


class TestEducationalLesson:
    """Teaching about bullying without practicing it."""

    def test_teaching_not_practicing(self):
        report = context_analyzer.analyze(EDUCATIONAL)
        assert report.teaching_about_topic is True
        assert report.practicing_violation is False

    def test_full_hypocrisy_score(self):
        report = context_analyzer.analyze(EDUCATIONAL)
        assert report.hypocrisy_score == 100
        assert report.contradictions == ()

    def test_aligned_recommendation(self):
        report = context_analyzer.analyze(EDUCATIONAL)
        assert report.recommendation.startswith("No pedagogical contradictions")


class TestContradictions:

    def test_scenario_contradiction(self):
        report = context_analyzer.analyze(SCENARIO)
        assert len(report.contradictions) == 1
        c = report.contradictions[0]
        assert c.topic == Topic.BULLYING
        assert c.behavior == BehaviorCategory.SARCASM
        assert c.severity == Severity.CRITICAL

    def test_penalty_rounds_half_up(self):
        """Sarcasm impact 15 under bullying (x2.5) costs 38, not 37."""
        report = context_analyzer.analyze(SCENARIO)
        assert report.contradictions[0].score_penalty == 38
        assert report.hypocrisy_score == 62

    def test_disengagement_does_not_contradict_bullying(self):
        report = context_analyzer.analyze(SCENARIO)
        assert all(c.behavior != BehaviorCategory.DISENGAGEMENT for c in report.contradictions)

    def test_practicing_includes_disengagement(self):
        report = context_analyzer.analyze("Aula de frações. Ivã dormiu de novo.")
        assert report.practicing_violation is True
        assert report.teaching_about_topic is False

    def test_teaching_and_practicing_alert(self):
        report = context_analyzer.analyze(SCENARIO)
        assert report.recommendation.startswith("CRITICAL ALERT")

    def test_sorted_by_penalty(self):
        text = (
            "Aula sobre respeito e cidadania. "
            "Você tem essa mania. Cala a boca, seu burro."
        )
        penalties = [c.score_penalty for c in context_analyzer.analyze(text).contradictions]
        assert penalties == sorted(penalties, reverse=True)
        assert len(penalties) == 3

    def test_evidence_limited_to_two(self):
        text = "Aula sobre bullying. Cala a boca, seu burro, inútil!"
        for c in context_analyzer.analyze(text).contradictions:
            assert len(c.evidence) <= 2

    def test_hypocrisy_never_negative(self):
        text = (
            "Aula sobre bullying e cyberbullying, respeito e cidadania. "
            "Você tem essa mania. Até criança sabe. Cala a boca, seu burro. "
            "Todo mundo acertou menos você. Sai do grupo."
        )
        assert context_analyzer.analyze(text).hypocrisy_score == 0

    def test_precomputed_behavior_is_reused(self):
        behavior = behavior_detector.analyze(SCENARIO)
        report = context_analyzer.analyze(SCENARIO, behavior=behavior)
        assert report.behavior is behavior
        assert report.safety_score == behavior.safety_score


class TestMultipliers:

    def test_unrelated_pair_is_neutral(self):
        assert contradiction_multiplier(Topic.BULLYING, BehaviorCategory.DISENGAGEMENT) == 1.0

    def test_listed_pair_default(self):
        assert contradiction_multiplier(Topic.INCLUSION, BehaviorCategory.DISENGAGEMENT) == DEFAULT_MULTIPLIER

    def test_strong_pair(self):
        assert contradiction_multiplier(Topic.BULLYING, BehaviorCategory.PUBLIC_SHAME) == 2.5

    @pytest.mark.parametrize("multiplier,severity,expected", [
        (2.5, Severity.HIGH, Severity.CRITICAL),
        (1.5, Severity.CRITICAL, Severity.CRITICAL),
        (1.5, Severity.MEDIUM, Severity.HIGH),
        (1.0, Severity.CRITICAL, Severity.MEDIUM),
    ])
    def test_contradiction_severity(self, multiplier, severity, expected):
        assert contradiction_severity(multiplier, severity) == expected
