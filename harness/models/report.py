"""Models for aggregated run reports."""

from collections.abc import Sequence
from dataclasses import dataclass
from datetime import datetime

from harness.models.outcome import SUCCESS_STATUSES, Outcome


@dataclass(frozen=True, kw_only=True)
class TestReport:
    """Final outcome of one test case together with every attempt."""

    __test__ = False

    name: str
    tags: frozenset[str]
    outcome: Outcome
    attempts: Sequence[Outcome]

    @property
    def attempt_count(self) -> int:
        return sum(1 for attempt in self.attempts if attempt.attempt > 0)

    @property
    def duration(self) -> float:
        return sum(attempt.duration for attempt in self.attempts)


@dataclass(frozen=True, kw_only=True)
class ReportCounts:
    """Aggregate counts of final outcomes."""

    total: int = 0
    passed: int = 0
    failed: int = 0
    timed_out: int = 0
    skipped: int = 0
    environment_errors: int = 0
    cancelled: int = 0


@dataclass(frozen=True, kw_only=True)
class RunReport:
    """Immutable summary of one orchestrator run, in selection order."""

    tests: Sequence[TestReport]
    counts: ReportCounts
    duration: float
    started_at: datetime

    def __getitem__(self, name: str) -> TestReport:
        for test in self.tests:
            if test.name == name:
                return test
        raise KeyError(name)

    @property
    def failures(self) -> Sequence[TestReport]:
        """Tests whose final outcome is not passed or skipped."""
        return tuple(
            test
            for test in self.tests
            if test.outcome.status not in SUCCESS_STATUSES
        )

    @property
    def not_run(self) -> Sequence[TestReport]:
        """Selected tests the run stopped before attempting.

        These are skipped by fail-fast, run cancellation or the global
        timeout, as opposed to tests that skipped themselves.
        """
        return tuple(
            test
            for test in self.tests
            if test.outcome.status == "skipped" and test.outcome.attempt == 0
        )
