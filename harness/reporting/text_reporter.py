"""Human-readable run summary."""

from harness.models.outcome import Outcome
from harness.models.report import RunReport
from harness.reporting.base import Reporter

STATUS_SYMBOLS = {
    "passed": "✓",
    "failed": "✗",
    "timed_out": "⏱",
    "skipped": "-",
    "environment_error": "!",
    "cancelled": "⊘",
}


class TextReporter(Reporter):
    """Renders one line per test plus reasons, warnings and totals."""

    def __init__(self, width: int = 80) -> None:
        self.width = width

    def render(self, report: RunReport) -> str:
        lines = ["=" * self.width, "Test Results Summary:", "=" * self.width]

        for test in report.tests:
            outcome = test.outcome
            symbol = STATUS_SYMBOLS.get(outcome.status, "?")
            line = f"{symbol} {test.name}: {outcome.status} ({test.duration:.2f}s)"
            if test.attempt_count > 1:
                line += f" after {test.attempt_count} attempts"
            lines.append(line)
            if outcome.reason:
                lines.append(f"  Reason: {outcome.reason}")
            for earlier in test.attempts[:-1]:
                lines.append(f"  Attempt {earlier.attempt}: {_describe(earlier)}")
            for attempt in test.attempts:
                for warning in attempt.warnings:
                    lines.append(f"  Teardown warning: {warning}")

        counts = report.counts
        lines.append("-" * self.width)
        lines.append(
            f"{counts.total} test(s): {counts.passed} passed, {counts.failed} failed, "
            f"{counts.timed_out} timed out, {counts.skipped} skipped, "
            f"{counts.environment_errors} environment error(s), "
            f"{counts.cancelled} cancelled in {report.duration:.2f}s"
        )
        return "\n".join(lines) + "\n"


def _describe(outcome: Outcome) -> str:
    if outcome.reason:
        return f"{outcome.status} ({outcome.reason})"
    return outcome.status
