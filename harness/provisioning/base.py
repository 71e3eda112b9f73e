"""Abstract base class for environment provisioners."""

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from types import TracebackType

from harness.cancellation import CancellationToken
from harness.models.environment import EnvironmentDescriptor
from harness.models.outcome import TeardownWarning
from harness.provisioning.handle import EnvironmentHandle

log = logging.getLogger(__name__)


class Provisioner(ABC):
    """Brings up and tears down the resources described by descriptors.

    Implementations serialize access to scarce resources internally; callers
    only ever see ``provision`` and ``release``.
    """

    @abstractmethod
    async def provision(
        self,
        descriptor: EnvironmentDescriptor,
        token: CancellationToken,
    ) -> EnvironmentHandle:
        """Provision a live handle for ``descriptor``.

        Args:
            descriptor: Resources to bring up
            token: Cancellation token observed while waiting for resources

        Returns:
            Handle owning the provisioned resources

        Raises:
            ProvisionError: If any resource cannot be provisioned. Resources
                already built for the descriptor are torn down first.

        """

    @abstractmethod
    async def release(self, handle: EnvironmentHandle) -> Sequence[TeardownWarning]:
        """Tear down a handle.

        Releasing an already released handle is a no-op.

        Returns:
            Warnings for resources that could not be released cleanly

        """

    def scope(
        self,
        descriptor: EnvironmentDescriptor,
        token: CancellationToken,
    ) -> "EnvironmentScope":
        """Return a scope that releases whatever it provisions on exit."""
        return EnvironmentScope(self, descriptor, token)


class EnvironmentScope:
    """Scoped acquisition of environment handles with guaranteed release.

    ``acquire`` provisions lazily and keeps the handle until ``release`` is
    called; leaving the ``async with`` block releases a handle still held, on
    every exit path. Warnings from that final release are kept in
    ``warnings``.
    """

    def __init__(
        self,
        provisioner: Provisioner,
        descriptor: EnvironmentDescriptor,
        token: CancellationToken,
    ) -> None:
        self._provisioner = provisioner
        self._descriptor = descriptor
        self._token = token
        self._handle: EnvironmentHandle | None = None
        self.warnings: list[TeardownWarning] = []

    @property
    def handle(self) -> EnvironmentHandle | None:
        return self._handle

    async def __aenter__(self) -> "EnvironmentScope":
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        self.warnings.extend(await self.release())

    async def acquire(self) -> EnvironmentHandle:
        if self._handle is None:
            self._handle = await self._provisioner.provision(
                self._descriptor, self._token
            )
        return self._handle

    async def release(self) -> Sequence[TeardownWarning]:
        handle, self._handle = self._handle, None
        if handle is None:
            return ()
        warnings = await self._provisioner.release(handle)
        for warning in warnings:
            log.warning("Teardown warning for %s: %s", self._descriptor.name, warning)
        return warnings
