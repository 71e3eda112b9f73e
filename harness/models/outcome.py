"""Models for test attempt outcomes."""

from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Literal

OutcomeStatus = Literal[
    "passed",
    "failed",
    "timed_out",
    "skipped",
    "environment_error",
    "cancelled",
]

# Statuses that consult the retry policy.
RETRYABLE_STATUSES: frozenset[str] = frozenset({"failed", "timed_out"})

# Statuses that count as a successful final outcome.
SUCCESS_STATUSES: frozenset[str] = frozenset({"passed", "skipped"})


@dataclass(frozen=True, kw_only=True)
class TeardownWarning:
    """A resource that could not be released cleanly."""

    resource: str
    message: str

    def __str__(self) -> str:
        return f"{self.resource}: {self.message}"


@dataclass(frozen=True, kw_only=True)
class Outcome:
    """Result of one test attempt.

    ``attempt`` is 1-based; a test that was never attempted (for example
    skipped by fail-fast) carries attempt 0.
    """

    status: OutcomeStatus
    attempt: int
    duration: float
    reason: str | None = None
    warnings: tuple[TeardownWarning, ...] = ()

    def with_warnings(self, warnings: Sequence[TeardownWarning]) -> "Outcome":
        if not warnings:
            return self
        return replace(self, warnings=(*self.warnings, *warnings))

    @classmethod
    def skipped(cls, reason: str) -> "Outcome":
        return cls(status="skipped", attempt=0, duration=0.0, reason=reason)
