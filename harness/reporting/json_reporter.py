"""Machine-readable run report."""

import json
from typing import Any

from harness.models.outcome import Outcome
from harness.models.report import RunReport, TestReport
from harness.reporting.base import Reporter


class JsonReporter(Reporter):
    """Renders one record per test case plus totals as JSON."""

    def __init__(self, indent: int | None = 2) -> None:
        self.indent = indent

    def render(self, report: RunReport) -> str:
        return json.dumps(format_output(report), indent=self.indent) + "\n"


def format_output(report: RunReport) -> dict[str, Any]:
    """Format ``report`` as JSON-compatible data."""
    counts = report.counts
    return {
        "started_at": report.started_at.isoformat(),
        "duration": report.duration,
        "total": counts.total,
        "passed": counts.passed,
        "failed": counts.failed,
        "timed_out": counts.timed_out,
        "skipped": counts.skipped,
        "environment_errors": counts.environment_errors,
        "cancelled": counts.cancelled,
        "results": [_format_test(test) for test in report.tests],
    }


def _format_test(test: TestReport) -> dict[str, Any]:
    return {
        "name": test.name,
        "tags": sorted(test.tags),
        "status": test.outcome.status,
        "attempts": test.attempt_count,
        "duration": test.duration,
        "reason": test.outcome.reason,
        "warnings": [
            str(warning) for attempt in test.attempts for warning in attempt.warnings
        ],
        "history": [_format_outcome(outcome) for outcome in test.attempts],
    }


def _format_outcome(outcome: Outcome) -> dict[str, Any]:
    return {
        "attempt": outcome.attempt,
        "status": outcome.status,
        "duration": outcome.duration,
        "reason": outcome.reason,
    }
