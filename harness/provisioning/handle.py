"""Live environment handles."""

import uuid
from collections.abc import Mapping
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TypeVar

from yarl import URL

from harness.models.environment import EnvironmentDescriptor
from harness.provisioning.process import ServiceProcess

T = TypeVar("T")


@dataclass(kw_only=True, eq=False)
class EnvironmentHandle:
    """Resources provisioned for a descriptor.

    A handle belongs to the attempt that requested it, or to every holder of a
    shareable descriptor. It is released exactly once by its provisioner.
    """

    descriptor: EnvironmentDescriptor
    host: str = "127.0.0.1"
    dirs: Mapping[str, Path] = field(default_factory=dict)
    ports: Mapping[str, int] = field(default_factory=dict)
    services: Mapping[str, ServiceProcess] = field(default_factory=dict)
    fixtures: Mapping[str, Any] = field(default_factory=dict)
    handle_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    released: bool = False

    def path(self, name: str) -> Path:
        return _lookup(self.dirs, name, "temp dir")

    def port(self, name: str) -> int:
        return _lookup(self.ports, name, "port")

    def service(self, name: str) -> ServiceProcess:
        return _lookup(self.services, name, "service")

    def fixture(self, name: str) -> Any:
        return _lookup(self.fixtures, name, "fixture")

    def url(self, port: str, path: str = "/", scheme: str = "http") -> URL:
        """Build a URL pointing at one of the handle's ports."""
        return URL.build(scheme=scheme, host=self.host, port=self.port(port), path=path)


def _lookup(resources: Mapping[str, T], name: str, kind: str) -> T:
    try:
        return resources[name]
    except KeyError:
        available = sorted(resources)
        raise KeyError(
            f"No {kind} named '{name}' in environment. Available: {available}"
        ) from None
