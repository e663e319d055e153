"""
Tests for the rigor validator: deterministic score, discrepancy
warnings, and generative score extraction.
"""

import pytest

from lessonaudit.behavior import Severity
from lessonaudit.compliance import compliance_scorer
from lessonaudit.scorer import extract_score, normalize_score
from lessonaudit.validator import (
    rigor_validator,
    rigorous_score,
    collect_issues,
    RigorValidator,
)


SCENARIO = "Hoje vamos falar sobre bullying. Você tem essa mania de atrasar. Ivã dormiu de novo."
EDUCATIONAL = (
    "Hoje vamos conversar sobre bullying. "
    "O que vocês acham que podemos fazer para prevenir?"
)


class TestRigorousScore:

    def test_weights(self):
        assert rigorous_score(100, 100, 100) == 100
        assert rigorous_score(0, 0, 0) == 0

    def test_scenario_value(self):
        result = rigor_validator.validate(SCENARIO, {"overall_score": 95})
        assert result.validation.rigorous_score == 48

    def test_educational_value(self):
        result = rigor_validator.validate(EDUCATIONAL, {"overall_score": 90})
        assert result.validation.rigorous_score == 94
        assert result.validation.warning is None


class TestDiscrepancyWarning:

    def test_inflated_score_flagged(self):
        result = rigor_validator.validate(SCENARIO, {"overall_score": 95})
        warning = result.validation.warning
        assert warning is not None
        assert warning.type == "inflated_score"
        assert warning.delta == 95 - 48

    def test_warning_names_issues(self):
        warning = rigor_validator.validate(SCENARIO, {"overall_score": 95}).validation.warning
        descriptions = " ".join(i.description for i in warning.issues)
        assert "Sarcasm detected" in descriptions
        assert "Student disengagement detected" in descriptions
        assert "bullying" in descriptions

    def test_issues_ranked_by_severity(self):
        warning = rigor_validator.validate(SCENARIO, {"overall_score": 95}).validation.warning
        ranks = [i.severity.rank for i in warning.issues]
        assert ranks == sorted(ranks, reverse=True)

    def test_issues_deduplicated(self):
        issues = collect_issues(compliance_scorer.check_compliance(SCENARIO))
        descriptions = [i.description for i in issues]
        assert len(descriptions) == len(set(descriptions))

    def test_recommendations_present(self):
        warning = rigor_validator.validate(SCENARIO, {"overall_score": 95}).validation.warning
        assert warning.recommendations
        assert warning.recommendations[0].startswith("CRITICAL ALERT")

    def test_threshold_is_strict(self):
        """A delta equal to the threshold is not flagged."""
        validator = RigorValidator(threshold=47)
        assert validator.validate(SCENARIO, {"overall_score": 95}).validation.warning is None
        validator = RigorValidator(threshold=46)
        assert validator.validate(SCENARIO, {"overall_score": 95}).validation.warning is not None

    def test_underestimate_not_flagged(self):
        result = rigor_validator.validate(EDUCATIONAL, {"overall_score": 20})
        assert result.validation.delta < 0
        assert result.validation.warning is None


class TestGenerativeResultPreserved:

    def test_generative_not_overridden(self):
        generative = {"overall_score": 95, "resumo": "Ótima aula"}
        result = rigor_validator.validate(SCENARIO, generative)
        assert result.generative is generative
        assert generative == {"overall_score": 95, "resumo": "Ótima aula"}

    def test_annotated_copy(self):
        generative = {"overall_score": 95}
        annotated = rigor_validator.validate(SCENARIO, generative).annotated()
        assert annotated["overall_score"] == 95
        assert annotated["rigorous_score"] == 48
        assert annotated["validation_warning"]["type"] == "inflated_score"
        assert "rigorous_score" not in generative

    def test_reuses_precomputed_compliance(self):
        report = compliance_scorer.check_compliance(SCENARIO)
        result = rigor_validator.validate(SCENARIO, {"score": 95}, compliance=report)
        assert result.compliance is report
        assert result.behavior is report.behavior
        assert result.context is report.context


class TestScoreExtraction:

    @pytest.mark.parametrize("result,expected", [
        ({"overall_score": 80}, 80),
        ({"overall_score": 0.8}, 80),
        ({"metadata": {"conformidade_geral_percent": 72}}, 72),
        ({"score": "65"}, 65),
        ({"overall_score": None, "score": 40}, 40),
        ({}, 0),
        ({"error": "parse_failed", "raw": "oops"}, 0),
        ("not a dict", 0),
    ])
    def test_extract(self, result, expected):
        assert extract_score(result) == expected

    def test_overall_takes_precedence(self):
        assert extract_score({"overall_score": 90, "score": 10}) == 90

    @pytest.mark.parametrize("value,expected", [
        (1.0, 100),
        (0.5, 50),
        (150, 100),
        (-5, 0),
        (True, 0),
        ("abc", 0),
        (float("nan"), 0),
    ])
    def test_normalize(self, value, expected):
        assert normalize_score(value) == expected

    def test_missing_score_counts_as_zero(self):
        result = rigor_validator.validate(EDUCATIONAL, {"resumo": "sem nota"})
        assert result.validation.generative_score == 0
        assert result.validation.warning is None

    def test_bare_number_is_not_a_result(self):
        assert rigor_validator.validate(SCENARIO, 0.95).validation.generative_score == 0

    def test_most_severe_issue_first(self):
        issues = collect_issues(compliance_scorer.check_compliance(SCENARIO))
        assert issues[0].severity == Severity.CRITICAL
