"""Readiness probes for provisioned services."""

import asyncio
import logging
from collections.abc import Mapping
from typing import TYPE_CHECKING

import aiohttp
from yarl import URL

from harness.cancellation import CancellationToken
from harness.errors import ProvisionError
from harness.models.environment import HttpCheck, ReadinessCheck, TcpCheck

if TYPE_CHECKING:
    from harness.provisioning.process import ServiceProcess

log = logging.getLogger(__name__)


async def probe_http(session: aiohttp.ClientSession, url: URL, expected: int) -> bool:
    """Return True when ``url`` answers with the ``expected`` status."""
    try:
        async with session.get(url, allow_redirects=False) as response:
            return response.status == expected
    except (aiohttp.ClientError, OSError, TimeoutError):
        return False


async def probe_tcp(host: str, port: int) -> bool:
    """Return True when a TCP connection to ``host:port`` is accepted."""
    try:
        _, writer = await asyncio.open_connection(host, port)
    except OSError:
        return False
    writer.close()
    try:
        await writer.wait_closed()
    except OSError:
        pass
    return True


async def wait_until_ready(
    service: "ServiceProcess",
    check: ReadinessCheck,
    host: str,
    ports: Mapping[str, int],
    token: CancellationToken,
) -> None:
    """Poll ``check`` until it succeeds.

    Raises:
        ProvisionError: If the service exits or the check does not succeed
            within its timeout
        RunCancelledError: If the token is cancelled while waiting

    """
    port = ports[check.port]
    deadline = asyncio.get_running_loop().time() + check.timeout
    probe_timeout = aiohttp.ClientTimeout(total=max(check.interval, 1.0))

    async with aiohttp.ClientSession(timeout=probe_timeout) as session:
        attempt = 0
        while True:
            attempt += 1
            if service.has_exited:
                raise ProvisionError(
                    f"Service '{service.name}' exited with code "
                    f"{service.returncode} before becoming ready"
                )

            match check:
                case HttpCheck():
                    url = URL.build(
                        scheme="http", host=host, port=port, path=check.path
                    )
                    ready = await probe_http(session, url, check.expected_status)
                case TcpCheck():
                    ready = await probe_tcp(host, port)

            if ready:
                log.info(
                    "Service %s ready on port %d after %d probe(s)",
                    service.name,
                    port,
                    attempt,
                )
                return

            if asyncio.get_running_loop().time() >= deadline:
                raise ProvisionError(
                    f"Service '{service.name}' not ready on port {port} "
                    f"within {check.timeout} seconds"
                )

            await token.sleep(check.interval)
