"""Exceptions raised by the harness."""


class HarnessError(Exception):
    """Base class for all harness errors."""


class ConfigError(HarnessError):
    """Raised when a run configuration is invalid."""


class DuplicateNameError(HarnessError):
    """Raised when a test case name is registered twice."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Test case '{name}' is already registered")
        self.name = name


class ProvisionError(HarnessError):
    """Raised when an environment cannot be provisioned."""


class ServiceError(HarnessError):
    """Raised when a service process cannot be started or stopped."""


class TestFailure(HarnessError):
    """Raised by a test body to signal a failed assertion."""

    __test__ = False


class SkipTest(HarnessError):
    """Raised by a test body to skip itself."""


class RunCancelledError(HarnessError):
    """Raised when work is interrupted by a cancellation token."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class ReporterNotFoundError(HarnessError):
    """Raised when a reporter is not found."""
