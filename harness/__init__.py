"""Asynchronous end-to-end test orchestration."""

from harness.cancellation import CancellationToken
from harness.errors import (
    ConfigError,
    DuplicateNameError,
    HarnessError,
    ProvisionError,
    RunCancelledError,
    SkipTest,
    TestFailure,
)
from harness.models.case import RetryPolicy, TestCase
from harness.models.config import ProvisionerConfig, RunConfig, SelectionFilter
from harness.models.environment import EnvironmentDescriptor
from harness.models.outcome import Outcome, TeardownWarning
from harness.models.report import RunReport
from harness.orchestrator import Orchestrator, exit_status
from harness.provisioning.handle import EnvironmentHandle
from harness.registry import TestRegistry
from harness.steps import Call, StartService, Steps, StopService

__all__ = [
    "Call",
    "CancellationToken",
    "ConfigError",
    "DuplicateNameError",
    "EnvironmentDescriptor",
    "EnvironmentHandle",
    "HarnessError",
    "Orchestrator",
    "Outcome",
    "ProvisionError",
    "ProvisionerConfig",
    "RetryPolicy",
    "RunCancelledError",
    "RunConfig",
    "RunReport",
    "SelectionFilter",
    "SkipTest",
    "StartService",
    "Steps",
    "StopService",
    "TeardownWarning",
    "TestCase",
    "TestFailure",
    "TestRegistry",
    "exit_status",
]
