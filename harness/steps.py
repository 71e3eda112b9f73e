"""Test bodies built from an ordered list of steps.

A ``Steps`` body runs its steps one after another against the test's
environment::

    registry.register(
        TestCase(
            name="http-server",
            environment=descriptor,
            body=Steps(
                StartService("web", wait_after=0.5),
                Call("get index", check_index),
                StopService("web"),
            ),
        )
    )

The first failing step fails the test; later steps are not run.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from harness.cancellation import CancellationToken
from harness.errors import (
    HarnessError,
    RunCancelledError,
    ServiceError,
    SkipTest,
    TestFailure,
)
from harness.provisioning.handle import EnvironmentHandle

log = logging.getLogger(__name__)


class Step(ABC):
    """A single step of a test."""

    name: str

    @abstractmethod
    async def execute(self, env: EnvironmentHandle, token: CancellationToken) -> None:
        """Run the step, raising on failure."""

    def describe(self) -> str:
        return self.name


@dataclass(frozen=True)
class StartService(Step):
    """Start a service declared with ``autostart=False``.

    Waits for the service's readiness check, then for ``wait_after`` seconds.
    """

    service: str
    wait_after: float | None = None

    @property
    def name(self) -> str:
        return f"start {self.service}"

    async def execute(self, env: EnvironmentHandle, token: CancellationToken) -> None:
        service = env.service(self.service)
        await service.start()
        await service.wait_ready(token)
        if self.wait_after:
            await token.sleep(self.wait_after)


@dataclass(frozen=True)
class StopService(Step):
    """Stop a running service, then wait ``wait_after`` seconds."""

    service: str
    wait_after: float | None = None

    @property
    def name(self) -> str:
        return f"stop {self.service}"

    async def execute(self, env: EnvironmentHandle, token: CancellationToken) -> None:
        service = env.service(self.service)
        if not service.is_running:
            raise ServiceError(f"Service '{self.service}' is not running")
        await service.stop()
        if self.wait_after:
            await token.sleep(self.wait_after)


@dataclass(frozen=True)
class Call(Step):
    """Await an async function of the environment and token."""

    name: str
    fn: Callable[[EnvironmentHandle, CancellationToken], Awaitable[None]]
    description: str = ""

    async def execute(self, env: EnvironmentHandle, token: CancellationToken) -> None:
        await self.fn(env, token)

    def describe(self) -> str:
        if self.description:
            return f"{self.name} ({self.description})"
        return self.name


class Steps:
    """Test body that runs steps in order and stops at the first failure."""

    def __init__(self, *steps: Step) -> None:
        if not steps:
            raise ValueError("Steps needs at least one step")
        self.steps = steps

    def __repr__(self) -> str:
        return f"Steps({', '.join(step.name for step in self.steps)})"

    async def __call__(self, env: EnvironmentHandle, token: CancellationToken) -> None:
        total = len(self.steps)
        for index, step in enumerate(self.steps, start=1):
            token.raise_if_cancelled()
            log.info("Executing step %d/%d: %s", index, total, step.describe())
            try:
                await step.execute(env, token)
            except (RunCancelledError, SkipTest, TestFailure):
                raise
            except (AssertionError, HarnessError, KeyError) as exc:
                log.error("Step %d/%d failed: %s", index, total, exc)
                raise TestFailure(f"step '{step.name}' failed: {exc}") from exc
            log.info("Step executed successfully: %d/%d", index, total)
