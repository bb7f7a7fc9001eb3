"""
test_logging_config.py — Structured log formatting and service bootstrap.
"""

import json
import logging

import pytest

from tender.main import bootstrap
from tender.services.logging_config import JSONFormatter, setup_logging
from tender.services.markup_engine import MarkupEngine, calculate_markup


@pytest.fixture
def restore_root_logger():
    """setup_logging replaces the root handlers; put pytest's back afterwards."""
    root = logging.getLogger()
    perf = logging.getLogger("tender-perf")
    handlers, level, perf_level = list(root.handlers), root.level, perf.level
    yield root
    root.handlers = handlers
    root.setLevel(level)
    perf.setLevel(perf_level)


def _record(**extra):
    record = logging.LogRecord(
        name="tender-markup", level=logging.WARNING, pathname=__file__, lineno=10,
        msg="Step %d failed", args=(2,), exc_info=None, func="evaluate_step",
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


class TestJSONFormatter:

    def test_core_fields(self):
        entry = json.loads(JSONFormatter().format(_record()))
        assert entry["level"] == "WARNING"
        assert entry["logger"] == "tender-markup"
        assert entry["message"] == "Step 2 failed"
        assert entry["function"] == "evaluate_step"
        assert "timestamp" in entry

    def test_markup_extras_are_included(self):
        entry = json.loads(JSONFormatter().format(
            _record(category="material", item_id="m1", step=2, base_amount=1000.0, duration_ms=1.5)
        ))
        assert entry["category"] == "material"
        assert entry["item_id"] == "m1"
        assert entry["step"] == 2
        assert entry["base_amount"] == 1000.0
        assert entry["duration_ms"] == 1.5

    def test_unlisted_attributes_ignored(self):
        entry = json.loads(JSONFormatter().format(_record(password="secret")))
        assert "password" not in entry

    def test_non_ascii_kept(self):
        line = JSONFormatter().format(_record(category="суб-раб"))
        assert "суб-раб" in line


class TestSetupLogging:

    def test_json_output(self, restore_root_logger):
        setup_logging(level="debug", json_output=True)
        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, JSONFormatter)

    def test_text_output(self, restore_root_logger):
        setup_logging(level="WARNING", json_output=False)
        formatter = restore_root_logger.handlers[0].formatter
        assert not isinstance(formatter, JSONFormatter)
        assert restore_root_logger.level == logging.WARNING

    def test_unknown_level_is_info(self, restore_root_logger):
        setup_logging(level="chatty")
        assert restore_root_logger.level == logging.INFO

    def test_perf_logger_quiet_by_default(self, restore_root_logger):
        setup_logging(level="DEBUG")
        assert logging.getLogger("tender-perf").level == logging.WARNING

    def test_perf_logger_level(self, restore_root_logger):
        setup_logging(level="INFO", perf_level="debug")
        assert logging.getLogger("tender-perf").level == logging.DEBUG


class TestBootstrap:

    def test_returns_engine(self, restore_root_logger):
        engine = bootstrap(level="ERROR", json_output=False)
        assert isinstance(engine, MarkupEngine)
        assert restore_root_logger.level == logging.ERROR


class TestStepDiagnosticsAreLogged:

    def test_warning_carries_step_number(self, overhead_then_fee_sequence, caplog):
        with caplog.at_level(logging.WARNING, logger="tender-markup"):
            calculate_markup(overhead_then_fee_sequence, 1000.0, {})
        records = [r for r in caplog.records if r.name == "tender-markup"]
        assert len(records) == 1
        assert records[0].step == 1
        assert "MissingParameter" in records[0].getMessage()
