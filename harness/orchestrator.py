"""Top-level orchestration of a harness run."""

import asyncio
import logging
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from dataclasses import dataclass, field
from typing import TypeAlias
from datetime import UTC, datetime

from harness.aggregator import aggregate
from harness.cancellation import CancellationToken
from harness.models.config import ProvisionerConfig, RunConfig
from harness.models.report import RunReport
from harness.provisioning.base import Provisioner
from harness.provisioning.local import LocalProvisioner
from harness.registry import TestRegistry
from harness.scheduler import Scheduler

log = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_TEST_FAILURE = 1
EXIT_ENVIRONMENT_ERROR = 3

ProvisionerFactory: TypeAlias = Callable[
    [ProvisionerConfig], AbstractAsyncContextManager[Provisioner]
]


@dataclass(frozen=True, kw_only=True)
class Orchestrator:
    """Selects, provisions, runs and reports the tests of one registry."""

    registry: TestRegistry
    provisioner_factory: ProvisionerFactory = field(
        default=LocalProvisioner.session
    )

    async def run(
        self,
        config: RunConfig,
        token: CancellationToken | None = None,
    ) -> RunReport:
        """Run the tests selected by ``config``.

        Every provisioned resource is released before this returns, including
        when the run is cancelled through ``token`` or by cancelling the
        calling task.

        Args:
            config: Selection, concurrency and timeout settings
            token: Run-level cancellation token (e.g. wired to SIGINT)

        Returns:
            Report with one entry per selected test, in registration order

        """
        token = token or CancellationToken()
        cases = self.registry.select(config.selection)
        log.info(
            "Selected %d of %d test case(s)", len(cases), len(self.registry)
        )

        started_at = datetime.now(UTC)
        started = asyncio.get_running_loop().time()

        async with self.provisioner_factory(config.provisioner) as provisioner:
            scheduler = Scheduler(provisioner=provisioner, config=config, token=token)
            executions = await scheduler.run(cases)

        report = aggregate(
            executions,
            duration=asyncio.get_running_loop().time() - started,
            started_at=started_at,
        )
        log.info(
            "Run finished in %.2fs: %d passed, %d failed, %d timed out, "
            "%d skipped, %d environment error(s), %d cancelled",
            report.duration,
            report.counts.passed,
            report.counts.failed,
            report.counts.timed_out,
            report.counts.skipped,
            report.counts.environment_errors,
            report.counts.cancelled,
        )
        return report


def exit_status(report: RunReport) -> int:
    """Process exit status for ``report``.

    Passed tests and tests that skipped themselves are successes. Selected
    tests the run never attempted (stopped by cancellation, the global timeout
    or fail-fast) are not. Environment errors take precedence over test
    failures so harness problems are distinguishable.
    """
    if report.counts.environment_errors:
        return EXIT_ENVIRONMENT_ERROR
    if report.failures or report.not_run:
        return EXIT_TEST_FAILURE
    return EXIT_OK
