"""Subprocess services owned by an environment handle."""

import asyncio
import logging
from collections.abc import Mapping, Sequence
from pathlib import Path

from harness.cancellation import CancellationToken
from harness.errors import ServiceError
from harness.models.environment import ReadinessCheck
from harness.provisioning.readiness import wait_until_ready

log = logging.getLogger(__name__)


class ServiceProcess:
    """A subprocess that can be started and stopped by the harness.

    Each instance runs at most one process at a time.
    """

    def __init__(
        self,
        name: str,
        args: Sequence[str],
        *,
        env: Mapping[str, str] | None = None,
        cwd: Path | None = None,
        stop_timeout: float = 5.0,
        ready: ReadinessCheck | None = None,
        wait_after: float | None = None,
        host: str = "127.0.0.1",
        ports: Mapping[str, int] | None = None,
    ) -> None:
        self.name = name
        self.args = tuple(args)
        self.env = dict(env) if env is not None else None
        self.cwd = cwd
        self.stop_timeout = stop_timeout
        self.ready = ready
        self.wait_after = wait_after
        self.host = host
        self.ports = dict(ports or {})
        self._process: asyncio.subprocess.Process | None = None

    def __repr__(self) -> str:
        return f"<ServiceProcess {self.name} pid={self.pid}>"

    @property
    def pid(self) -> int | None:
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        return self._process.returncode if self._process is not None else None

    @property
    def is_running(self) -> bool:
        return self._process is not None and self._process.returncode is None

    @property
    def has_exited(self) -> bool:
        """True when the process was started and then exited on its own."""
        return self._process is not None and self._process.returncode is not None

    async def start(self) -> None:
        """Spawn the process.

        Raises:
            ServiceError: If the process is already running or cannot be spawned

        """
        if self.is_running:
            raise ServiceError(f"Service '{self.name}' is already running")

        log.info("Starting service %s: %s", self.name, " ".join(self.args))
        try:
            self._process = await asyncio.create_subprocess_exec(
                *self.args,
                cwd=self.cwd,
                env=self.env,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            raise ServiceError(
                f"Failed to start service '{self.name}': {exc}"
            ) from exc

    async def wait_ready(self, token: CancellationToken) -> None:
        """Wait for the readiness check, then for the settle delay.

        Raises:
            ProvisionError: If the service does not become ready
            RunCancelledError: If the token is cancelled while waiting

        """
        if self.ready is not None:
            await wait_until_ready(self, self.ready, self.host, self.ports, token)
        if self.wait_after:
            await token.sleep(self.wait_after)

    async def stop(self) -> None:
        """Terminate the process, killing it after ``stop_timeout``.

        Does nothing if the process is not running.

        Raises:
            ServiceError: If the process cannot be signalled

        """
        process = self._process
        if process is None or process.returncode is not None:
            return

        log.info("Stopping service %s (pid=%d)", self.name, process.pid)
        try:
            process.terminate()
            try:
                async with asyncio.timeout(self.stop_timeout):
                    await process.wait()
            except TimeoutError:
                log.warning(
                    "Service %s did not stop within %.1fs, killing it",
                    self.name,
                    self.stop_timeout,
                )
                process.kill()
                await process.wait()
        except ProcessLookupError:
            # Exited between the returncode check and the signal.
            await process.wait()
        except OSError as exc:
            raise ServiceError(f"Failed to stop service '{self.name}': {exc}") from exc
