"""Test case declarations."""

from collections.abc import Awaitable, Iterable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Protocol

from pydantic import Field, model_validator

from harness.models.base import Model
from harness.models.environment import EnvironmentDescriptor

if TYPE_CHECKING:
    from harness.cancellation import CancellationToken
    from harness.provisioning.handle import EnvironmentHandle


class TestBody(Protocol):
    """Executable body of a test case.

    Returning means the attempt passed. Raising ``TestFailure`` or
    ``AssertionError`` fails it, raising ``SkipTest`` skips it and any other
    exception fails it with the exception type in the reason.
    """

    __test__ = False

    def __call__(
        self, env: "EnvironmentHandle", token: "CancellationToken"
    ) -> Awaitable[None]: ...


class RetryPolicy(Model):
    """How often a failing or timed out test is attempted, and how far apart."""

    max_attempts: int = Field(default=1, ge=1, description="Total attempts")
    initial_delay: float = Field(
        default=0.0, ge=0, description="Delay before the first retry in seconds"
    )
    backoff_factor: float = Field(default=2.0, ge=1, description="Delay multiplier")
    max_delay: float = Field(default=30.0, ge=0, description="Delay upper bound")

    @model_validator(mode="after")
    def _check_delays(self) -> "RetryPolicy":
        if self.max_delay < self.initial_delay:
            raise ValueError("max_delay must not be lower than initial_delay")
        return self

    def delay_before(self, retry: int) -> float:
        """Delay before the given retry (1 = first retry)."""
        delay = self.initial_delay * (self.backoff_factor ** (retry - 1))
        return min(delay, self.max_delay)


@dataclass(frozen=True, kw_only=True)
class TestCase:
    """A registered end-to-end test. Immutable once registered."""

    __test__ = False

    name: str
    body: TestBody = field(compare=False, repr=False)
    tags: frozenset[str] = frozenset()
    timeout: float = 60.0
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    environment: EnvironmentDescriptor = field(default_factory=EnvironmentDescriptor)
    description: str = ""

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("Test case name must not be empty")
        if self.timeout <= 0:
            raise ValueError(f"Test case '{self.name}' timeout must be positive")
        object.__setattr__(self, "tags", as_tags(self.tags))


def as_tags(tags: str | Iterable[str]) -> frozenset[str]:
    """Normalize tags; a bare string is a single tag."""
    if isinstance(tags, str):
        return frozenset({tags})
    return frozenset(tags)

