"""Shared fixtures for unit tests."""

import asyncio
from collections import Counter
from collections.abc import AsyncGenerator, Callable, Collection, Sequence
from contextlib import AbstractAsyncContextManager, asynccontextmanager

import pytest

from harness.cancellation import CancellationToken
from harness.errors import ProvisionError
from harness.models.config import ProvisionerConfig
from harness.models.environment import EnvironmentDescriptor
from harness.models.outcome import TeardownWarning
from harness.provisioning.base import Provisioner
from harness.provisioning.handle import EnvironmentHandle


class CountingProvisioner(Provisioner):
    """In-memory provisioner that records every provision and release."""

    def __init__(
        self,
        *,
        failing: Collection[str] = (),
        warning: Collection[str] = (),
    ) -> None:
        self.failing = set(failing)
        self.warning = set(warning)
        self.provisioned = 0
        self.released = 0
        self.outstanding = 0
        self.max_outstanding = 0
        self.releases: Counter[str] = Counter()
        self.handles: list[EnvironmentHandle] = []

    async def provision(
        self,
        descriptor: EnvironmentDescriptor,
        token: CancellationToken,
    ) -> EnvironmentHandle:
        await asyncio.sleep(0)
        if descriptor.name in self.failing:
            raise ProvisionError(f"cannot provision {descriptor.name}")
        handle = EnvironmentHandle(descriptor=descriptor)
        self.handles.append(handle)
        self.provisioned += 1
        self.outstanding += 1
        self.max_outstanding = max(self.max_outstanding, self.outstanding)
        return handle

    async def release(self, handle: EnvironmentHandle) -> Sequence[TeardownWarning]:
        self.releases[handle.handle_id] += 1
        if handle.released:
            return ()
        handle.released = True
        self.released += 1
        self.outstanding -= 1
        await asyncio.sleep(0)
        if handle.descriptor.name in self.warning:
            return [TeardownWarning(resource="server", message="kill failed")]
        return ()


@pytest.fixture
def provisioner() -> CountingProvisioner:
    """Create counting provisioner."""
    return CountingProvisioner()


@pytest.fixture
def provisioner_factory(
    provisioner: CountingProvisioner,
) -> Callable[[ProvisionerConfig], AbstractAsyncContextManager[CountingProvisioner]]:
    """Wrap the counting provisioner in a session factory."""

    @asynccontextmanager
    async def session(
        config: ProvisionerConfig,
    ) -> AsyncGenerator[CountingProvisioner, None]:
        yield provisioner

    return session
