"""
Tests for configuration, structured logging and the result schemas.
"""

import json
import logging

import pytest
from pydantic import ValidationError

from lessonaudit.config import Settings, settings
from lessonaudit.errors import (
    CircuitOpenError,
    ExternalCallFailure,
    InsufficientSamples,
    LessonAuditError,
    PhaseFailure,
    parse_failed_sentinel,
    is_parse_failed,
)
from lessonaudit.logging import JSONFormatter, TextFormatter, get_logger, setup_logging
from lessonaudit.schemas.report import AnalysisOptions


class TestSettings:

    def test_defaults(self):
        assert settings.DISAGREEMENT_THRESHOLD == 15
        assert settings.DISCREPANCY_THRESHOLD == 30
        assert settings.SEMANTIC_CACHE_THRESHOLD == 0.95
        assert settings.MAX_CONCURRENCY >= 1

    def test_timeouts_per_call_type(self):
        assert settings.TIMEOUT_CLASSIFICATION == 60
        assert settings.TIMEOUT_ANALYSIS == 180
        assert settings.TIMEOUT_SAMPLE == 200
        assert settings.TIMEOUT_ENRICHMENT == 150

    def test_frozen(self):
        with pytest.raises(Exception):
            settings.MAX_CONCURRENCY = 99

    def test_independent_instance(self):
        assert Settings().CORE_VERSION == settings.CORE_VERSION


class TestLogging:

    def _record(self, **extra):
        record = logging.LogRecord(
            "lessonaudit.pipeline", logging.INFO, __file__, 1, "Phase done", None, None,
        )
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_json_formatter(self):
        line = JSONFormatter().format(self._record(phase="reading", duration_ms=1840))
        entry = json.loads(line)
        assert entry["message"] == "Phase done"
        assert entry["level"] == "INFO"
        assert entry["phase"] == "reading"
        assert entry["duration_ms"] == 1840

    def test_json_skips_unknown_extras(self):
        entry = json.loads(JSONFormatter().format(self._record(secret="x")))
        assert "secret" not in entry

    def test_json_keeps_accents(self):
        record = logging.LogRecord(
            "lessonaudit", logging.WARNING, __file__, 1, "Ivã dormiu", None, None,
        )
        assert "Ivã dormiu" in JSONFormatter().format(record)

    def test_text_formatter(self):
        assert "Phase done" in TextFormatter().format(self._record())

    def test_setup_logging(self):
        root = setup_logging()
        assert root.name == "lessonaudit"
        assert len(root.handlers) == 1

    def test_get_logger_namespace(self):
        assert get_logger("pipeline").name == "lessonaudit.pipeline"


class TestErrors:

    def test_hierarchy(self):
        assert issubclass(CircuitOpenError, ExternalCallFailure)
        for cls in (ExternalCallFailure, InsufficientSamples, PhaseFailure):
            assert issubclass(cls, LessonAuditError)

    def test_phase_failure_identity(self):
        err = PhaseFailure("reading", "planning", "503")
        assert (err.phase, err.subtask, err.reason) == ("reading", "planning", "503")
        assert "planning" in str(err)

    def test_sentinel(self):
        sentinel = parse_failed_sentinel("raw text")
        assert sentinel == {"error": "parse_failed", "raw": "raw text"}
        assert is_parse_failed(sentinel)
        assert not is_parse_failed({"error": "other"})


class TestOptions:

    def test_defaults(self):
        options = AnalysisOptions()
        assert options.self_consistency is False
        assert options.samples == settings.SELF_CONSISTENCY_SAMPLES
        assert options.use_cache is True

    @pytest.mark.parametrize("samples", [0, 6])
    def test_samples_bounds(self, samples):
        with pytest.raises(ValidationError):
            AnalysisOptions(samples=samples)
