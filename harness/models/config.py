"""Run configuration models."""

from collections.abc import Mapping
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any

from pydantic import Field, ValidationError

from harness.errors import ConfigError
from harness.models.base import Model


class SelectionFilter(Model):
    """Selects test cases by name pattern and tags.

    A case matches when its name matches any of ``names`` (all names match when
    empty), it carries any of ``tags`` (all cases match when empty) and it
    carries none of ``exclude_tags``.
    """

    names: tuple[str, ...] = Field(
        default=(), description="Glob patterns matched against test names"
    )
    tags: frozenset[str] = Field(
        default=frozenset(), description="Select cases carrying any of these tags"
    )
    exclude_tags: frozenset[str] = Field(
        default=frozenset(), description="Drop cases carrying any of these tags"
    )

    def matches(self, name: str, tags: frozenset[str]) -> bool:
        if self.names and not any(fnmatchcase(name, p) for p in self.names):
            return False
        if self.tags and not self.tags & tags:
            return False
        return not self.exclude_tags & tags


class ProvisionerConfig(Model):
    """Settings for the local environment provisioner."""

    temp_root: Path | None = Field(
        default=None, description="Directory for temporary dirs (system default)"
    )
    host: str = Field(default="127.0.0.1", description="Host services bind to")


class RunConfig(Model):
    """Everything a single run needs, passed explicitly to the orchestrator."""

    selection: SelectionFilter = Field(default_factory=SelectionFilter)
    concurrency: int = Field(default=4, ge=1, description="Worker slots")
    global_timeout: float | None = Field(
        default=None, gt=0, description="Ceiling for the whole run in seconds"
    )
    fail_fast: bool = Field(
        default=False, description="Stop dispatching after the first failure"
    )
    cancel_grace: float = Field(
        default=5.0,
        ge=0,
        description="Seconds to wait for a cancelled test body before abandoning it",
    )
    provisioner: ProvisionerConfig = Field(default_factory=ProvisionerConfig)

    @classmethod
    def build(cls, values: Mapping[str, Any]) -> "RunConfig":
        """Validate ``values`` into a config.

        Raises:
            ConfigError: If any value is invalid

        """
        try:
            return cls.model_validate(values)
        except ValidationError as exc:
            raise ConfigError(f"Invalid run configuration: {exc}") from exc
