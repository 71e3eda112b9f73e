"""Provisioner for resources on the local machine."""

import asyncio
import copy
import logging
import os
import shutil
import socket
import tempfile
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from harness.cancellation import CancellationToken
from harness.errors import ProvisionError, ServiceError
from harness.models.config import ProvisionerConfig
from harness.models.environment import (
    EnvironmentDescriptor,
    Fixture,
    Port,
    Process,
    TempDir,
)
from harness.models.outcome import TeardownWarning
from harness.provisioning.base import Provisioner
from harness.provisioning.handle import EnvironmentHandle
from harness.provisioning.process import ServiceProcess

log = logging.getLogger(__name__)

PORT_ALLOCATION_ATTEMPTS = 50


@dataclass(kw_only=True, eq=False)
class _Allocation:
    """Resources built for one descriptor, possibly shared by several handles."""

    descriptor: EnvironmentDescriptor
    dirs: dict[str, Path] = field(default_factory=dict)
    ports: dict[str, int] = field(default_factory=dict)
    reserved_ports: list[int] = field(default_factory=list)
    services: dict[str, ServiceProcess] = field(default_factory=dict)
    fixtures: dict[str, Any] = field(default_factory=dict)
    locks: list[asyncio.Lock] = field(default_factory=list)
    holders: set[str] = field(default_factory=set)


class LocalProvisioner(Provisioner):
    """Provisions temp dirs, ports, fixtures and subprocess services locally.

    Ephemeral ports are never handed out twice while reserved. Fixed ports and
    exclusive descriptors hold an internal lock for the lifetime of their
    handle, so two live handles never collide on them. Shareable descriptors
    are provisioned once and torn down when their last holder releases.
    """

    def __init__(self, config: ProvisionerConfig | None = None) -> None:
        self.config = config or ProvisionerConfig()
        self._allocation_lock = asyncio.Lock()
        self._reserved_ports: set[int] = set()
        self._locks: dict[str, asyncio.Lock] = {}
        self._shared: dict[str, _Allocation] = {}
        self._live: dict[str, tuple[EnvironmentHandle, _Allocation]] = {}

    @classmethod
    @asynccontextmanager
    async def session(
        cls, config: ProvisionerConfig | None = None
    ) -> AsyncGenerator["LocalProvisioner", None]:
        """Create a provisioner that releases every outstanding handle on exit."""
        provisioner = cls(config)
        try:
            yield provisioner
        finally:
            for warning in await provisioner.release_all():
                log.warning("Teardown warning on session close: %s", warning)

    @property
    def outstanding(self) -> int:
        """Number of handles provisioned and not yet released."""
        return len(self._live)

    async def provision(
        self,
        descriptor: EnvironmentDescriptor,
        token: CancellationToken,
    ) -> EnvironmentHandle:
        """Provision resources for ``descriptor``."""
        if not descriptor.shareable:
            return self._attach(await self._allocate(descriptor, token))

        key = descriptor.key()
        async with self._lock(f"shared:{key}"):
            allocation = self._shared.get(key)
            if allocation is None:
                allocation = await self._allocate(descriptor, token)
                self._shared[key] = allocation
            else:
                log.debug("Reusing shared environment %s", descriptor.name)
            return self._attach(allocation)

    async def release(self, handle: EnvironmentHandle) -> Sequence[TeardownWarning]:
        """Release ``handle``; tear resources down once nothing holds them."""
        if handle.released:
            return ()
        handle.released = True

        entry = self._live.pop(handle.handle_id, None)
        if entry is None:
            log.warning("Ignoring release of unknown handle %s", handle.handle_id)
            return ()
        _, allocation = entry
        allocation.holders.discard(handle.handle_id)

        descriptor = allocation.descriptor
        if descriptor.shareable:
            key = descriptor.key()
            async with self._lock(f"shared:{key}"):
                if allocation.holders:
                    return ()
                if self._shared.get(key) is allocation:
                    del self._shared[key]

        return await self._teardown(allocation)

    async def release_all(self) -> Sequence[TeardownWarning]:
        """Release every handle that is still outstanding."""
        warnings: list[TeardownWarning] = []
        for handle, _ in list(self._live.values()):
            log.info("Releasing leftover environment %s", handle.descriptor.name)
            warnings.extend(await self.release(handle))
        return warnings

    def _attach(self, allocation: _Allocation) -> EnvironmentHandle:
        handle = EnvironmentHandle(
            descriptor=allocation.descriptor,
            host=self.config.host,
            dirs=allocation.dirs,
            ports=allocation.ports,
            services=allocation.services,
            fixtures=allocation.fixtures,
        )
        allocation.holders.add(handle.handle_id)
        self._live[handle.handle_id] = (handle, allocation)
        return handle

    def _lock(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def _allocate(
        self,
        descriptor: EnvironmentDescriptor,
        token: CancellationToken,
    ) -> _Allocation:
        allocation = _Allocation(descriptor=descriptor)
        try:
            await self._acquire_exclusive(allocation, token)
            for resource in descriptor.resources:
                match resource:
                    case TempDir():
                        allocation.dirs[resource.name] = self._make_dir(
                            descriptor, resource
                        )
                    case Port(number=None):
                        port = await self._reserve_port()
                        allocation.reserved_ports.append(port)
                        allocation.ports[resource.name] = port
                    case Port(number=int() as number):
                        allocation.ports[resource.name] = number
                    case Fixture():
                        allocation.fixtures[resource.name] = copy.deepcopy(
                            resource.value
                        )

            # Processes last, so their commands can reference every other resource.
            for resource in descriptor.resources:
                if isinstance(resource, Process):
                    service = self._build_service(resource, allocation)
                    allocation.services[resource.name] = service
                    if resource.autostart:
                        await service.start()
                        await service.wait_ready(token)
        except ServiceError as exc:
            await self._discard(allocation)
            raise ProvisionError(str(exc)) from exc
        except BaseException:
            await self._discard(allocation)
            raise

        log.info(
            "Provisioned environment %s (dirs=%d, ports=%s, services=%d)",
            descriptor.name,
            len(allocation.dirs),
            sorted(allocation.ports.values()),
            len(allocation.services),
        )
        return allocation

    async def _discard(self, allocation: _Allocation) -> None:
        for warning in await self._teardown(allocation):
            log.warning(
                "Teardown warning after failed provisioning of %s: %s",
                allocation.descriptor.name,
                warning,
            )

    async def _acquire_exclusive(
        self, allocation: _Allocation, token: CancellationToken
    ) -> None:
        descriptor = allocation.descriptor
        keys = [f"port:{number}" for number in descriptor.fixed_ports]
        if descriptor.exclusive:
            keys.append(f"exclusive:{descriptor.name}")

        # Sorted acquisition keeps two descriptors from deadlocking each other.
        for key in sorted(set(keys)):
            lock = self._lock(key)
            if lock.locked():
                log.info("Environment %s waiting for %s", descriptor.name, key)
            await token.until_cancelled(lock.acquire())
            allocation.locks.append(lock)

    def _make_dir(self, descriptor: EnvironmentDescriptor, resource: TempDir) -> Path:
        try:
            return Path(
                tempfile.mkdtemp(
                    prefix=f"harness-{descriptor.name}-{resource.name}-",
                    dir=self.config.temp_root,
                )
            )
        except OSError as exc:
            raise ProvisionError(
                f"Cannot create temp dir '{resource.name}': {exc}"
            ) from exc

    async def _reserve_port(self) -> int:
        async with self._allocation_lock:
            for _ in range(PORT_ALLOCATION_ATTEMPTS):
                port = find_free_port(self.config.host)
                if port not in self._reserved_ports:
                    self._reserved_ports.add(port)
                    return port
        raise ProvisionError(
            f"No free port on {self.config.host} after "
            f"{PORT_ALLOCATION_ATTEMPTS} attempts"
        )

    def _build_service(
        self, resource: Process, allocation: _Allocation
    ) -> ServiceProcess:
        try:
            args = [
                arg.format(
                    ports=allocation.ports,
                    dirs=allocation.dirs,
                    host=self.config.host,
                )
                for arg in resource.command
            ]
        except (KeyError, IndexError, ValueError) as exc:
            raise ProvisionError(
                f"Invalid placeholder in command of '{resource.name}': {exc}"
            ) from exc

        return ServiceProcess(
            resource.name,
            args,
            env={**os.environ, **resource.env} if resource.env else None,
            cwd=allocation.dirs[resource.cwd] if resource.cwd else None,
            stop_timeout=resource.stop_timeout,
            ready=resource.ready,
            wait_after=resource.wait_after,
            host=self.config.host,
            ports=allocation.ports,
        )

    async def _teardown(self, allocation: _Allocation) -> list[TeardownWarning]:
        """Release everything in ``allocation``, newest first."""
        warnings: list[TeardownWarning] = []
        try:
            for name, service in reversed(allocation.services.items()):
                try:
                    await service.stop()
                except ServiceError as exc:
                    warnings.append(TeardownWarning(resource=name, message=str(exc)))
        finally:
            for name, path in reversed(allocation.dirs.items()):
                try:
                    shutil.rmtree(path)
                except FileNotFoundError:
                    pass
                except OSError as exc:
                    warnings.append(TeardownWarning(resource=name, message=str(exc)))
            for port in allocation.reserved_ports:
                self._reserved_ports.discard(port)
            for lock in reversed(allocation.locks):
                lock.release()
            allocation.reserved_ports.clear()
            allocation.locks.clear()

        log.info("Released environment %s", allocation.descriptor.name)
        return warnings


def find_free_port(host: str) -> int:
    """Ask the OS for a currently unused TCP port on ``host``.

    Raises:
        ProvisionError: If no socket can be bound

    """
    try:
        with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as sock:
            sock.bind((host, 0))
            return int(sock.getsockname()[1])
    except OSError as exc:
        raise ProvisionError(f"Cannot allocate a port on {host}: {exc}") from exc
