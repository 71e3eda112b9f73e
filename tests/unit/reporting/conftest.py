"""Fixtures for reporter tests."""

from datetime import UTC, datetime

import pytest

from harness.aggregator import aggregate
from harness.models.outcome import Outcome, TeardownWarning
from harness.models.report import RunReport
from harness.scheduler import TestExecution
from harness.testing.factories import OutcomeFactory, TestCaseFactory


@pytest.fixture
def report() -> RunReport:
    """Create report with a pass, a retried failure and a skip."""
    return aggregate(
        [
            TestExecution(
                case=TestCaseFactory.build(name="login", tags=frozenset({"smoke"})),
                outcomes=(
                    OutcomeFactory.build(
                        status="passed",
                        duration=1.25,
                        warnings=(
                            TeardownWarning(resource="server", message="kill failed"),
                        ),
                    ),
                ),
            ),
            TestExecution(
                case=TestCaseFactory.build(name="checkout"),
                outcomes=(
                    OutcomeFactory.build(
                        status="timed_out",
                        duration=2.0,
                        reason="exceeded timeout of 2.00s",
                    ),
                    OutcomeFactory.build(
                        status="failed", attempt=2, duration=0.5, reason="500 != 200"
                    ),
                ),
            ),
            TestExecution(
                case=TestCaseFactory.build(name="search"),
                outcomes=(Outcome.skipped("fail-fast: an earlier test failed"),),
            ),
        ],
        duration=3.8,
        started_at=datetime(2024, 5, 1, 12, 0, tzinfo=UTC),
    )
