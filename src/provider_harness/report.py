"""
Run report in JSON Lines format.

One record per scenario and a final suite record, appended to a file so
CI can archive the outcome of a run without parsing log output.

Scenario record format:
- ts: ISO-8601 UTC timestamp
- type: "scenario"
- template: Template name of the scenario
- status: passed|failed|error
- elapsed_ms: Scenario duration in milliseconds
- violations: List of violation dictionaries
- error: Error message for status "error", else null
"""

import json
import logging
import os
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, List, Optional

from .validator import Violation, format_violations, violation_to_dict

logger = logging.getLogger(__name__)

PASSED = "passed"
FAILED = "failed"
ERROR = "error"


@dataclass
class ScenarioResult:
    """Outcome of one scenario."""

    template_name: str
    status: str
    violations: List[Violation] = field(default_factory=list)
    error: Optional[str] = None
    elapsed_ms: int = 0

    @property
    def passed(self) -> bool:
        return self.status == PASSED

    def summary(self) -> str:
        if self.status == PASSED:
            return f"PASS {self.template_name} ({self.elapsed_ms}ms)"
        if self.status == FAILED:
            return (
                f"FAIL {self.template_name}: {len(self.violations)} violation(s)\n"
                f"{format_violations(self.violations)}"
            )
        return f"ERROR {self.template_name}: {self.error}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "template": self.template_name,
            "status": self.status,
            "elapsed_ms": self.elapsed_ms,
            "violations": [violation_to_dict(v) for v in self.violations],
            "error": self.error,
        }


@dataclass
class SuiteResult:
    """Outcome of a harness run."""

    results: List[ScenarioResult] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None and all(r.passed for r in self.results)

    def counts(self) -> dict[str, int]:
        counts = {PASSED: 0, FAILED: 0, ERROR: 0}
        for result in self.results:
            counts[result.status] += 1
        return counts


class ReportWriter:
    """
    Appends run results to a JSON Lines file.

    Write failures are logged and swallowed: a broken report must not
    change the outcome of the run.
    """

    def __init__(self, path: str):
        self.path = path
        report_dir = os.path.dirname(self.path)
        if report_dir:
            os.makedirs(report_dir, exist_ok=True)
        logger.info(f"Run report: {self.path}")

    def write_scenario(self, result: ScenarioResult) -> None:
        self._write({"type": "scenario", **result.to_dict()})

    def write_suite(self, suite: SuiteResult) -> None:
        self._write(
            {
                "type": "suite",
                "ok": suite.ok,
                "error": suite.error,
                "counts": suite.counts(),
            }
        )

    def _write(self, record: dict[str, Any]) -> None:
        record = {"ts": datetime.now(UTC).isoformat(), **record}
        try:
            with open(self.path, "a", encoding="utf-8") as f:
                f.write(json.dumps(record, separators=(",", ":")) + "\n")
                f.flush()
        except OSError as e:
            logger.error(f"Failed to write report record to {self.path}: {e}")
