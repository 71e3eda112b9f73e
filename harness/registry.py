"""Explicit, ordered registry of test cases."""

import logging
from collections.abc import Callable, Iterator, Sequence

from harness.errors import DuplicateNameError
from harness.models.case import RetryPolicy, TestBody, TestCase, as_tags
from harness.models.config import SelectionFilter
from harness.models.environment import EnvironmentDescriptor

log = logging.getLogger(__name__)


class TestRegistry:
    """Holds test cases in registration order.

    Registries are plain objects: build one, register cases on it and hand it
    to an orchestrator. There is no process-wide default registry.
    """

    __test__ = False

    def __init__(self, cases: Sequence[TestCase] = ()) -> None:
        self._cases: dict[str, TestCase] = {}
        for case in cases:
            self.register(case)

    def __len__(self) -> int:
        return len(self._cases)

    def __iter__(self) -> Iterator[TestCase]:
        return iter(tuple(self._cases.values()))

    def __contains__(self, name: object) -> bool:
        return name in self._cases

    @property
    def names(self) -> Sequence[str]:
        return tuple(self._cases)

    def register(self, case: TestCase) -> TestCase:
        """Add a test case.

        Raises:
            DuplicateNameError: If a case with the same name is registered

        """
        if case.name in self._cases:
            raise DuplicateNameError(case.name)
        self._cases[case.name] = case
        log.debug("Registered test case %s", case.name)
        return case

    def test(
        self,
        name: str | None = None,
        *,
        tags: str | Sequence[str] = (),
        timeout: float = 60.0,
        retry: RetryPolicy | None = None,
        environment: EnvironmentDescriptor | None = None,
        description: str = "",
    ) -> Callable[[TestBody], TestBody]:
        """Register the decorated async function as a test case."""

        def decorator(body: TestBody) -> TestBody:
            self.register(
                TestCase(
                    name=name or getattr(body, "__name__", ""),
                    body=body,
                    tags=as_tags(tags),
                    timeout=timeout,
                    retry=retry or RetryPolicy(),
                    environment=environment or EnvironmentDescriptor(),
                    description=description or (getattr(body, "__doc__", None) or ""),
                )
            )
            return body

        return decorator

    def get(self, name: str) -> TestCase:
        try:
            return self._cases[name]
        except KeyError:
            raise KeyError(f"No test case named '{name}'") from None

    def select(self, selection: SelectionFilter | None = None) -> Sequence[TestCase]:
        """Return the matching cases in registration order."""
        if selection is None:
            return tuple(self._cases.values())
        return tuple(
            case
            for case in self._cases.values()
            if selection.matches(case.name, case.tags)
        )
