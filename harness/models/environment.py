"""Declarative descriptions of the resources a test needs."""

from collections.abc import Mapping
from typing import Annotated, Literal

from pydantic import Field, JsonValue, model_validator

from harness.models.base import Model


class HttpCheck(Model):
    """Service is ready once an HTTP GET returns the expected status."""

    kind: Literal["http"] = "http"
    port: str = Field(..., description="Name of the port resource to probe")
    path: str = Field(default="/", description="Request path")
    expected_status: int = Field(default=200, description="Status meaning ready")
    interval: float = Field(default=0.1, gt=0, description="Seconds between probes")
    timeout: float = Field(default=10.0, gt=0, description="Seconds until giving up")


class TcpCheck(Model):
    """Service is ready once a TCP connection is accepted."""

    kind: Literal["tcp"] = "tcp"
    port: str = Field(..., description="Name of the port resource to probe")
    interval: float = Field(default=0.1, gt=0, description="Seconds between probes")
    timeout: float = Field(default=10.0, gt=0, description="Seconds until giving up")


ReadinessCheck = Annotated[HttpCheck | TcpCheck, Field(discriminator="kind")]


class TempDir(Model):
    """A temporary directory removed on teardown."""

    kind: Literal["temp_dir"] = "temp_dir"
    name: str


class Port(Model):
    """A TCP port, either ephemeral or fixed.

    Fixed ports are scarce: handles holding the same fixed port never overlap.
    """

    kind: Literal["port"] = "port"
    name: str
    number: int | None = Field(
        default=None, ge=1, le=65535, description="Fixed port (None = ephemeral)"
    )


class Fixture(Model):
    """Read-only data handed to the test body."""

    kind: Literal["fixture"] = "fixture"
    name: str
    value: JsonValue = None


class Process(Model):
    """A subprocess service started for the test.

    ``command`` items may reference other resources of the same descriptor
    through ``{ports[name]}``, ``{dirs[name]}`` and ``{host}`` placeholders.
    """

    kind: Literal["process"] = "process"
    name: str
    command: tuple[str, ...] = Field(..., min_length=1, description="argv")
    env: Mapping[str, str] = Field(
        default_factory=dict, description="Extra environment variables"
    )
    cwd: str | None = Field(
        default=None, description="Name of a temp_dir resource to run in"
    )
    autostart: bool = Field(default=True, description="Start during provisioning")
    ready: ReadinessCheck | None = None
    wait_after: float | None = Field(
        default=None, ge=0, description="Settle delay after the service starts"
    )
    stop_timeout: float = Field(
        default=5.0, gt=0, description="Seconds to wait before killing on stop"
    )


Resource = Annotated[
    TempDir | Port | Fixture | Process, Field(discriminator="kind")
]


class EnvironmentDescriptor(Model):
    """Declarative description of the resources a test case needs. Pure data."""

    name: str = Field(default="default", description="Descriptor name")
    resources: tuple[Resource, ...] = Field(default=())
    shareable: bool = Field(
        default=False,
        description="Concurrent tests with an equal descriptor share one handle",
    )
    reusable: bool = Field(
        default=False, description="Keep the handle across retry attempts"
    )
    exclusive: bool = Field(
        default=False,
        description="At most one live handle for this descriptor name at a time",
    )

    @model_validator(mode="after")
    def _check_references(self) -> "EnvironmentDescriptor":
        names = [r.name for r in self.resources]
        duplicates = sorted({n for n in names if names.count(n) > 1})
        if duplicates:
            raise ValueError(f"Duplicate resource names: {duplicates}")

        ports = {r.name for r in self.resources if isinstance(r, Port)}
        dirs = {r.name for r in self.resources if isinstance(r, TempDir)}
        for resource in self.resources:
            if not isinstance(resource, Process):
                continue
            if resource.cwd is not None and resource.cwd not in dirs:
                raise ValueError(
                    f"Process '{resource.name}' runs in unknown dir '{resource.cwd}'"
                )
            if resource.ready is not None and resource.ready.port not in ports:
                raise ValueError(
                    f"Process '{resource.name}' probes unknown port "
                    f"'{resource.ready.port}'"
                )
        return self

    @property
    def fixed_ports(self) -> tuple[int, ...]:
        return tuple(
            sorted(
                r.number
                for r in self.resources
                if isinstance(r, Port) and r.number is not None
            )
        )

    def key(self) -> str:
        """Stable identity used to share handles between equal descriptors."""
        return self.model_dump_json()
