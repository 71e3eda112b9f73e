"""Abstract base class for run report renderers."""

from abc import ABC, abstractmethod
from pathlib import Path

from harness.models.report import RunReport


class Reporter(ABC):
    """Renders a run report into one output form.

    Reporters only read the report, so several of them can render the same
    run without re-running anything.
    """

    @abstractmethod
    def render(self, report: RunReport) -> str:
        """Render ``report`` as text."""

    def write(self, report: RunReport, path: Path) -> Path:
        """Render ``report`` into ``path``, creating parent directories."""
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(self.render(report), encoding="utf-8")
        return path
