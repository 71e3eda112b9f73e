"""Loading of reporters from entry points."""

from importlib.metadata import entry_points

from harness.errors import ReporterNotFoundError
from harness.reporting.base import Reporter

ENTRY_POINT_GROUP = "harness.reporters"


def available_reporters() -> list[str]:
    """Keys of every installed reporter, sorted."""
    return sorted(entry.name for entry in entry_points(group=ENTRY_POINT_GROUP))


def load_reporter(key: str) -> Reporter:
    """Instantiate a reporter by key.

    Args:
        key: The reporter key as registered in pyproject.toml
             (e.g., "text", "json")

    Returns:
        A reporter instance built with default arguments

    Raises:
        ReporterNotFoundError: If no reporter with the given key is found

    """
    entries = entry_points(group=ENTRY_POINT_GROUP)

    for entry in entries:
        if entry.name == key:
            reporter_cls: type[Reporter] = entry.load()
            return reporter_cls()

    available = sorted(e.name for e in entries)
    raise ReporterNotFoundError(
        f"Reporter '{key}' not found. Available reporters: {available}"
    )
