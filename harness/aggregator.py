"""Aggregation of test executions into run reports."""

from collections import Counter
from collections.abc import Sequence
from datetime import datetime

from harness.models.report import ReportCounts, RunReport, TestReport
from harness.scheduler import TestExecution


def aggregate(
    executions: Sequence[TestExecution],
    duration: float,
    started_at: datetime,
) -> RunReport:
    """Build the run report for ``executions``, keeping their order.

    Args:
        executions: One execution per selected test, in selection order
        duration: Wall-clock duration of the whole run in seconds
        started_at: When the run started

    Returns:
        Immutable run report

    """
    tests = tuple(
        TestReport(
            name=execution.case.name,
            tags=execution.case.tags,
            outcome=execution.final,
            attempts=tuple(execution.outcomes),
        )
        for execution in executions
    )
    statuses = Counter(test.outcome.status for test in tests)

    return RunReport(
        tests=tests,
        counts=ReportCounts(
            total=len(tests),
            passed=statuses["passed"],
            failed=statuses["failed"],
            timed_out=statuses["timed_out"],
            skipped=statuses["skipped"],
            environment_errors=statuses["environment_error"],
            cancelled=statuses["cancelled"],
        ),
        duration=duration,
        started_at=started_at,
    )
