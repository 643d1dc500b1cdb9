"""
Unit tests for the JSON Lines run report.
"""

import json
import os
from unittest.mock import patch

from provider_harness.report import (
    ERROR,
    FAILED,
    PASSED,
    ReportWriter,
    ScenarioResult,
    SuiteResult,
)
from provider_harness.validator import PatternMismatch, UnexpectedField


class TestScenarioResult:
    def test_summary_pass(self):
        assert ScenarioResult("tpl", PASSED, elapsed_ms=12).summary() == "PASS tpl (12ms)"

    def test_summary_fail_lists_violations(self):
        result = ScenarioResult(
            "tpl",
            FAILED,
            violations=[PatternMismatch("a", "^1$", "2"), UnexpectedField("b", "x")],
        )

        summary = result.summary()

        assert summary.startswith("FAIL tpl: 2 violation(s)")
        assert "'^1$'" in summary
        assert "'b'='x'" in summary

    def test_summary_error(self):
        assert ScenarioResult("tpl", ERROR, error="tpl: push").summary() == "ERROR tpl: tpl: push"


class TestSuiteResult:
    def test_ok_requires_all_passed_and_no_error(self):
        assert SuiteResult().ok is True
        assert SuiteResult([ScenarioResult("a", PASSED)]).ok is True
        assert SuiteResult([ScenarioResult("a", FAILED)]).ok is False
        assert SuiteResult([ScenarioResult("a", PASSED)], error="setup").ok is False

    def test_counts(self):
        suite = SuiteResult(
            [ScenarioResult("a", PASSED), ScenarioResult("b", ERROR), ScenarioResult("c", ERROR)]
        )

        assert suite.counts() == {"passed": 1, "failed": 0, "error": 2}


class TestReportWriter:
    """Test report file output."""

    def test_writes_scenario_and_suite_records(self, temp_dir):
        path = temp_dir / "reports" / "run.jsonl"
        writer = ReportWriter(str(path))
        result = ScenarioResult("tpl", FAILED, violations=[UnexpectedField("b", "x")], elapsed_ms=5)

        writer.write_scenario(result)
        writer.write_suite(SuiteResult([result]))

        scenario, suite = [json.loads(line) for line in path.read_text().splitlines()]
        assert scenario["type"] == "scenario"
        assert scenario["template"] == "tpl"
        assert scenario["status"] == FAILED
        assert scenario["elapsed_ms"] == 5
        assert scenario["violations"] == [
            {"kind": "unexpected_field", "field": "b", "value": "x"}
        ]
        assert scenario["error"] is None
        assert "ts" in scenario
        assert suite["type"] == "suite"
        assert suite["ok"] is False
        assert suite["counts"]["failed"] == 1

    def test_appends_across_writers(self, temp_dir):
        path = str(temp_dir / "run.jsonl")

        ReportWriter(path).write_suite(SuiteResult())
        ReportWriter(path).write_suite(SuiteResult(error="boom"))

        with open(path) as f:
            records = [json.loads(line) for line in f]
        assert [r["error"] for r in records] == [None, "boom"]

    def test_write_failure_is_logged(self, temp_dir, caplog):
        writer = ReportWriter(str(temp_dir / "run.jsonl"))

        with patch("builtins.open", side_effect=PermissionError("read-only")):
            writer.write_suite(SuiteResult())

        assert "Failed to write report record" in caplog.text
        assert not os.path.exists(temp_dir / "run.jsonl")
