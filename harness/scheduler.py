"""Concurrent execution of selected test cases."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass, field

from harness.cancellation import CancellationToken
from harness.errors import (
    ProvisionError,
    RunCancelledError,
    SkipTest,
    TestFailure,
)
from harness.models.case import TestCase
from harness.models.config import RunConfig
from harness.models.outcome import RETRYABLE_STATUSES, Outcome
from harness.provisioning.base import Provisioner
from harness.provisioning.handle import EnvironmentHandle

log = logging.getLogger(__name__)

FAIL_FAST_REASON = "fail-fast: an earlier test failed"
CEILING_REASON = "global timeout reached"


@dataclass(frozen=True, kw_only=True)
class TestExecution:
    """Every outcome recorded for one test case, oldest first."""

    __test__ = False

    case: TestCase
    outcomes: Sequence[Outcome]

    @property
    def final(self) -> Outcome:
        return self.outcomes[-1]


@dataclass(kw_only=True)
class Scheduler:
    """Runs test cases on a bounded pool of worker slots.

    Results are returned in the order the cases were given, whatever order
    they complete in.
    """

    provisioner: Provisioner
    config: RunConfig
    token: CancellationToken = field(default_factory=CancellationToken)
    _halted: bool = field(default=False, init=False)
    _deadline: float | None = field(default=None, init=False)
    _run_token: CancellationToken = field(
        default_factory=CancellationToken, init=False
    )

    async def run(self, cases: Sequence[TestCase]) -> Sequence[TestExecution]:
        """Run ``cases`` and return one execution per case, in order."""
        loop = asyncio.get_running_loop()
        # Provisioning waits observe the run token, which the ceiling cancels.
        self._run_token = self.token.child()
        ceiling: asyncio.TimerHandle | None = None
        if self.config.global_timeout is not None:
            self._deadline = loop.time() + self.config.global_timeout
            ceiling = loop.call_at(
                self._deadline, self._run_token.cancel, CEILING_REASON
            )

        slots = asyncio.Semaphore(self.config.concurrency)
        executions: list[TestExecution | None] = [None] * len(cases)

        log.info(
            "Running %d test(s) with concurrency %d",
            len(cases),
            self.config.concurrency,
        )
        try:
            async with asyncio.TaskGroup() as workers:
                for index, case in enumerate(cases):
                    if (reason := await self._claim_slot(slots)) is not None:
                        log.info(
                            "Not dispatching %d remaining test(s): %s",
                            len(cases) - index,
                            reason,
                        )
                        for skipped in range(index, len(cases)):
                            executions[skipped] = TestExecution(
                                case=cases[skipped],
                                outcomes=(Outcome.skipped(reason),),
                            )
                        break
                    workers.create_task(
                        self._run_in_slot(index, case, slots, executions),
                        name=f"harness:{case.name}",
                    )
        finally:
            if ceiling is not None:
                ceiling.cancel()

        return [execution for execution in executions if execution is not None]

    def _remaining(self) -> float | None:
        if self._deadline is None:
            return None
        return self._deadline - asyncio.get_running_loop().time()

    def _stop_reason(self) -> str | None:
        if self.token.cancelled:
            return f"run cancelled: {self.token.reason}"
        if self._halted:
            return FAIL_FAST_REASON
        remaining = self._remaining()
        if remaining is not None and remaining <= 0:
            return CEILING_REASON
        return None

    async def _claim_slot(self, slots: asyncio.Semaphore) -> str | None:
        """Wait for a free slot; return a reason instead if dispatch must stop."""
        if (reason := self._stop_reason()) is not None:
            return reason
        try:
            async with asyncio.timeout(self._remaining()):
                await self.token.until_cancelled(slots.acquire())
        except TimeoutError:
            return CEILING_REASON
        except RunCancelledError:
            return self._stop_reason()

        # Workers set the halt flag before they give their slot back.
        if (reason := self._stop_reason()) is not None:
            slots.release()
            return reason
        return None

    async def _run_in_slot(
        self,
        index: int,
        case: TestCase,
        slots: asyncio.Semaphore,
        executions: list[TestExecution | None],
    ) -> None:
        try:
            try:
                execution = await self._execute(case)
            except Exception as exc:
                log.error("Harness error while running %s", case.name, exc_info=exc)
                execution = TestExecution(
                    case=case,
                    outcomes=(
                        Outcome(
                            status="environment_error",
                            attempt=1,
                            duration=0.0,
                            reason=f"harness error: {exc}",
                        ),
                    ),
                )
            executions[index] = execution
            log.info(
                "Test completed: name=%s status=%s attempts=%d",
                case.name,
                execution.final.status,
                len(execution.outcomes),
            )
            if self.config.fail_fast and execution.final.status in RETRYABLE_STATUSES:
                if not self._halted:
                    log.info("Fail-fast triggered by %s", case.name)
                self._halted = True
        finally:
            slots.release()

    async def _execute(self, case: TestCase) -> TestExecution:
        """Run every attempt of ``case`` inside one environment scope."""
        descriptor = case.environment
        outcomes: list[Outcome] = []

        async with self.provisioner.scope(descriptor, self._run_token) as scope:
            for attempt in range(1, case.retry.max_attempts + 1):
                if attempt > 1 and not await self._backoff(case, attempt - 1):
                    break

                started = asyncio.get_running_loop().time()
                try:
                    env = await scope.acquire()
                except ProvisionError as exc:
                    log.error("Environment for %s failed: %s", case.name, exc)
                    outcomes.append(
                        Outcome(
                            status="environment_error",
                            attempt=attempt,
                            duration=asyncio.get_running_loop().time() - started,
                            reason=str(exc),
                        )
                    )
                    break
                except RunCancelledError as exc:
                    if self.token.cancelled:
                        status, reason = "cancelled", f"run cancelled: {exc.reason}"
                    else:
                        status, reason = "timed_out", CEILING_REASON
                    log.info("Environment for %s interrupted: %s", case.name, reason)
                    outcomes.append(
                        Outcome(
                            status=status,
                            attempt=attempt,
                            duration=asyncio.get_running_loop().time() - started,
                            reason=reason,
                        )
                    )
                    break

                outcome = await self._attempt(case, env, attempt)
                retrying = (
                    outcome.status in RETRYABLE_STATUSES
                    and attempt < case.retry.max_attempts
                    and not self.token.cancelled
                )
                if not (retrying and descriptor.reusable):
                    outcome = outcome.with_warnings(await scope.release())
                outcomes.append(outcome)

                if not retrying:
                    break
                log.info(
                    "Retrying %s after attempt %d/%d: %s",
                    case.name,
                    attempt,
                    case.retry.max_attempts,
                    outcome.status,
                )

        if scope.warnings and outcomes:
            outcomes[-1] = outcomes[-1].with_warnings(scope.warnings)
        return TestExecution(case=case, outcomes=tuple(outcomes))

    async def _backoff(self, case: TestCase, retry: int) -> bool:
        """Sleep before a retry. Returns False if the run must not retry."""
        delay = case.retry.delay_before(retry)
        remaining = self._remaining()
        if remaining is not None and remaining <= delay:
            log.info("Not retrying %s: %s", case.name, CEILING_REASON)
            return False
        try:
            await self.token.sleep(delay)
        except RunCancelledError:
            return False
        return True

    def _attempt_deadline(self, case: TestCase) -> float:
        remaining = self._remaining()
        if remaining is None:
            return case.timeout
        return max(0.0, min(case.timeout, remaining))

    async def _attempt(
        self, case: TestCase, env: EnvironmentHandle, attempt: int
    ) -> Outcome:
        """Run the body once under its deadline and classify the result."""
        loop = asyncio.get_running_loop()
        remaining = self._remaining()
        if remaining is not None and remaining <= 0:
            log.info(
                "Not starting %s attempt %d: %s", case.name, attempt, CEILING_REASON
            )
            return Outcome(
                status="timed_out",
                attempt=attempt,
                duration=0.0,
                reason=CEILING_REASON,
            )

        timeout = self._attempt_deadline(case)
        attempt_token = self.token.child()
        started = loop.time()

        log.debug("Starting %s attempt %d (timeout %.2fs)", case.name, attempt, timeout)

        async def run_body() -> None:
            await case.body(env, attempt_token)

        body = asyncio.ensure_future(run_body())
        cancelled = asyncio.ensure_future(self.token.wait())
        try:
            await asyncio.wait(
                {body, cancelled},
                timeout=timeout,
                return_when=asyncio.FIRST_COMPLETED,
            )
        except asyncio.CancelledError:
            body.cancel()
            raise
        finally:
            cancelled.cancel()

        if body.done():
            return classify(body, attempt, loop.time() - started)

        if self.token.cancelled:
            status, reason = "cancelled", f"run cancelled: {self.token.reason}"
        else:
            status, reason = "timed_out", f"exceeded timeout of {timeout:.2f}s"
        elapsed = loop.time() - started
        attempt_token.cancel(reason)
        await self._stop_body(case, body)
        return Outcome(
            status=status,
            attempt=attempt,
            duration=elapsed,
            reason=reason,
        )

    async def _stop_body(self, case: TestCase, body: asyncio.Future[None]) -> None:
        """Cancel a body that outlived its deadline, waiting a bounded time."""
        body.cancel()
        done, _ = await asyncio.wait({body}, timeout=self.config.cancel_grace)
        if not done:
            log.warning(
                "Test %s ignored cancellation for %.1fs, abandoning it",
                case.name,
                self.config.cancel_grace,
            )
        elif not body.cancelled() and (exc := body.exception()) is not None:
            log.debug("Test %s raised while cancelled: %r", case.name, exc)


def classify(body: asyncio.Future[None], attempt: int, duration: float) -> Outcome:
    """Turn a finished test body into an outcome."""
    if body.cancelled():
        return Outcome(
            status="cancelled",
            attempt=attempt,
            duration=duration,
            reason="test body was cancelled",
        )

    match body.exception():
        case None:
            status, reason = "passed", None
        case SkipTest() as exc:
            status, reason = "skipped", str(exc) or None
        case RunCancelledError() as exc:
            status, reason = "cancelled", f"run cancelled: {exc.reason}"
        case TestFailure() | AssertionError() as exc:
            status, reason = "failed", str(exc) or type(exc).__name__
        case exc:
            log.debug("Test body raised", exc_info=exc)
            status, reason = "failed", f"{type(exc).__name__}: {exc}"

    return Outcome(status=status, attempt=attempt, duration=duration, reason=reason)
