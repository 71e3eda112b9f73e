"""Test factories for generating test data."""

import uuid

from polyfactory import Use
from polyfactory.factories import DataclassFactory

from harness.models.case import RetryPolicy, TestCase
from harness.models.environment import EnvironmentDescriptor
from harness.models.outcome import Outcome
from harness.testing.bodies import passing


class OutcomeFactory(DataclassFactory[Outcome]):
    """Factory for Outcome."""

    attempt = 1
    reason = None
    warnings = ()


class TestCaseFactory(DataclassFactory[TestCase]):
    """Factory for TestCase that passes in an empty environment."""

    __test__ = False

    name = Use(lambda: f"case-{uuid.uuid4().hex[:8]}")
    body = Use(lambda: passing)
    tags = Use(frozenset)
    timeout = 5.0
    retry = Use(RetryPolicy)
    environment = Use(EnvironmentDescriptor)
    description = ""
