"""Tests for environment scopes."""

import pytest

from harness.cancellation import CancellationToken
from harness.models.environment import EnvironmentDescriptor

from ..conftest import CountingProvisioner


async def test_acquire_is_lazy_and_cached(provisioner: CountingProvisioner) -> None:
    """Provisions on first acquire and returns the same handle afterwards."""
    scope = provisioner.scope(EnvironmentDescriptor(), CancellationToken())

    async with scope:
        assert provisioner.provisioned == 0
        first = await scope.acquire()
        second = await scope.acquire()

    assert first is second
    assert provisioner.provisioned == 1
    assert provisioner.released == 1


async def test_release_allows_fresh_handle(provisioner: CountingProvisioner) -> None:
    """Provisions a new handle after an explicit release."""
    async with provisioner.scope(EnvironmentDescriptor(), CancellationToken()) as scope:
        first = await scope.acquire()
        await scope.release()
        second = await scope.acquire()

    assert first is not second
    assert provisioner.released == 2
    assert set(provisioner.releases.values()) == {1}


async def test_releases_on_error(provisioner: CountingProvisioner) -> None:
    """Releases the held handle when the block raises."""
    with pytest.raises(RuntimeError):
        async with provisioner.scope(
            EnvironmentDescriptor(), CancellationToken()
        ) as scope:
            await scope.acquire()
            raise RuntimeError("boom")

    assert provisioner.outstanding == 0


async def test_exit_keeps_teardown_warnings(provisioner: CountingProvisioner) -> None:
    """Collects warnings of the release done on exit."""
    provisioner.warning.add("leaky")
    scope = provisioner.scope(EnvironmentDescriptor(name="leaky"), CancellationToken())

    async with scope:
        await scope.acquire()

    assert [str(w) for w in scope.warnings] == ["server: kill failed"]
    assert scope.handle is None


async def test_exit_without_acquire(provisioner: CountingProvisioner) -> None:
    """Releases nothing when nothing was acquired."""
    async with provisioner.scope(EnvironmentDescriptor(), CancellationToken()):
        pass

    assert provisioner.releases == {}
