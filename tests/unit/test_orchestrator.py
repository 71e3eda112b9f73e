"""Tests for the orchestrator."""

import asyncio
from collections.abc import Callable
from contextlib import AbstractAsyncContextManager
from datetime import UTC, datetime
from pathlib import Path
from typing import TypeAlias

import pytest

from harness.aggregator import aggregate
from harness.cancellation import CancellationToken
from harness.models.case import TestCase
from harness.models.config import ProvisionerConfig, RunConfig, SelectionFilter
from harness.models.environment import EnvironmentDescriptor, TempDir
from harness.models.outcome import Outcome
from harness.orchestrator import (
    EXIT_ENVIRONMENT_ERROR,
    EXIT_OK,
    EXIT_TEST_FAILURE,
    Orchestrator,
    exit_status,
)
from harness.provisioning.handle import EnvironmentHandle
from harness.registry import TestRegistry
from harness.scheduler import CEILING_REASON, TestExecution
from harness.testing.bodies import failing, passing, skipping, sleeping

from .conftest import CountingProvisioner

Factory: TypeAlias = Callable[
    [ProvisionerConfig], AbstractAsyncContextManager[CountingProvisioner]
]


async def test_runs_selected_cases(
    provisioner: CountingProvisioner, provisioner_factory: Factory
) -> None:
    """Reports only the selected cases, in registration order."""
    registry = TestRegistry(
        [
            TestCase(name="api-a", body=passing),
            TestCase(name="ui-b", body=passing),
            TestCase(name="api-c", body=failing("broken")),
        ]
    )
    config = RunConfig(selection=SelectionFilter(names=("api-*",)))

    report = await Orchestrator(
        registry=registry, provisioner_factory=provisioner_factory
    ).run(config)

    assert [t.name for t in report.tests] == ["api-a", "api-c"]
    assert report.counts.total == 2
    assert report["api-c"].outcome.reason == "broken"
    assert report.started_at.tzinfo is UTC
    assert report.started_at <= datetime.now(UTC)
    assert provisioner.outstanding == 0


async def test_empty_selection(provisioner_factory: Factory) -> None:
    """Returns an empty report when nothing matches."""
    registry = TestRegistry([TestCase(name="a", body=passing)])
    config = RunConfig(selection=SelectionFilter(tags=frozenset({"nightly"})))

    report = await Orchestrator(
        registry=registry, provisioner_factory=provisioner_factory
    ).run(config)

    assert report.tests == ()
    assert exit_status(report) == EXIT_OK


async def test_releases_real_resources(tmp_path: Path) -> None:
    """Leaves no temp dirs behind after a run with the local provisioner."""
    seen: list[Path] = []

    async def body(env: EnvironmentHandle, token: CancellationToken) -> None:
        seen.append(env.path("work"))
        assert env.path("work").is_dir()

    descriptor = EnvironmentDescriptor(resources=(TempDir(name="work"),))
    registry = TestRegistry(
        [
            TestCase(name=f"t{i}", body=body, environment=descriptor)
            for i in range(5)
        ]
    )
    config = RunConfig(
        concurrency=2, provisioner=ProvisionerConfig(temp_root=tmp_path)
    )

    report = await Orchestrator(registry=registry).run(config)

    assert report.counts.passed == 5
    assert len(set(seen)) == 5
    assert list(tmp_path.iterdir()) == []


async def test_task_cancellation_releases_everything(tmp_path: Path) -> None:
    """Releases every handle when the calling task is cancelled."""
    descriptor = EnvironmentDescriptor(resources=(TempDir(name="work"),))
    registry = TestRegistry(
        [
            TestCase(name=f"t{i}", body=sleeping(30), environment=descriptor)
            for i in range(4)
        ]
    )
    config = RunConfig(
        concurrency=4,
        cancel_grace=0.1,
        provisioner=ProvisionerConfig(temp_root=tmp_path),
    )

    task = asyncio.create_task(Orchestrator(registry=registry).run(config))
    await asyncio.sleep(0.1)
    task.cancel()

    with pytest.raises(asyncio.CancelledError):
        await task

    assert list(tmp_path.iterdir()) == []


async def test_token_cancellation_returns_report(
    provisioner: CountingProvisioner, provisioner_factory: Factory
) -> None:
    """Returns a report with cancelled and skipped tests when the token fires."""
    registry = TestRegistry(
        [TestCase(name=f"t{i}", body=sleeping(30)) for i in range(3)]
    )
    token = CancellationToken()
    asyncio.get_running_loop().call_later(0.05, token.cancel, "SIGINT")

    report = await Orchestrator(
        registry=registry, provisioner_factory=provisioner_factory
    ).run(RunConfig(concurrency=1), token)

    assert [t.outcome.status for t in report.tests] == [
        "cancelled",
        "skipped",
        "skipped",
    ]
    assert provisioner.outstanding == 0


class TestExitStatus:
    """Tests for exit_status."""

    async def run(self, factory: Factory, *cases: TestCase) -> int:
        report = await Orchestrator(
            registry=TestRegistry(cases), provisioner_factory=factory
        ).run(RunConfig())
        return exit_status(report)

    async def test_passed_and_skipped_are_success(
        self, provisioner_factory: Factory
    ) -> None:
        """Exits 0 when every test passed or was skipped."""
        code = await self.run(
            provisioner_factory,
            TestCase(name="a", body=passing),
            TestCase(name="b", body=skipping()),
        )

        assert code == EXIT_OK

    async def test_failure(self, provisioner_factory: Factory) -> None:
        """Exits 1 when a test failed."""
        code = await self.run(
            provisioner_factory,
            TestCase(name="a", body=passing),
            TestCase(name="b", body=failing()),
        )

        assert code == EXIT_TEST_FAILURE

    async def test_environment_error_takes_precedence(
        self, provisioner: CountingProvisioner, provisioner_factory: Factory
    ) -> None:
        """Exits 3 when an environment could not be provisioned."""
        provisioner.failing.add("broken")

        code = await self.run(
            provisioner_factory,
            TestCase(name="a", body=failing()),
            TestCase(
                name="b",
                body=passing,
                environment=EnvironmentDescriptor(name="broken"),
            ),
        )

        assert code == EXIT_ENVIRONMENT_ERROR

    async def test_self_skipped_test_is_success(
        self, provisioner_factory: Factory
    ) -> None:
        """Exits 0 when a test body skipped itself."""
        code = await self.run(provisioner_factory, TestCase(name="a", body=skipping()))

        assert code == EXIT_OK

    async def test_cancelled_run_with_unattempted_tests_fails(
        self, provisioner_factory: Factory
    ) -> None:
        """Exits 1 when cancellation left selected tests unattempted."""
        token = CancellationToken()
        token.cancel("SIGINT")
        registry = TestRegistry(
            [TestCase(name="a", body=passing), TestCase(name="b", body=passing)]
        )

        report = await Orchestrator(
            registry=registry, provisioner_factory=provisioner_factory
        ).run(RunConfig(), token)

        assert [t.outcome.status for t in report.tests] == ["skipped", "skipped"]
        assert len(report.not_run) == 2
        assert exit_status(report) == EXIT_TEST_FAILURE

    def test_tests_cut_off_by_global_timeout_fail(self) -> None:
        """Exits 1 when the global timeout skipped a test after others passed."""
        report = aggregate(
            [
                TestExecution(
                    case=TestCase(name="a", body=passing),
                    outcomes=(
                        Outcome(status="passed", attempt=1, duration=0.1),
                    ),
                ),
                TestExecution(
                    case=TestCase(name="b", body=passing),
                    outcomes=(Outcome.skipped(CEILING_REASON),),
                ),
            ],
            duration=0.2,
            started_at=datetime.now(UTC),
        )

        assert report.failures == ()
        assert [t.name for t in report.not_run] == ["b"]
        assert exit_status(report) == EXIT_TEST_FAILURE
