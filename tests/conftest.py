"""Tests configurations and fixtures."""

from datetime import UTC, datetime
from typing import TYPE_CHECKING

import pytest
import yaml

from pytest_acctest.clock import FrozenClock
from pytest_acctest.runner import CaseRunner
from pytest_acctest.schema import Case

from .examples import providers
from .examples.engine import FakeDriver

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

    from pytest_acctest.runner import StepReport


@pytest.fixture
def loader() -> type[yaml.SafeLoader]:
    """Provide an isolated YAML SafeLoader class for tests.

    Creates a dedicated subclass of `yaml.SafeLoader` to ensure that
    YAML constructors registered during a test do not leak into other
    tests or affect global loader state.
    """
    class Loader(yaml.SafeLoader):
        pass

    return Loader


@pytest.fixture
def driver() -> FakeDriver:
    """Provide an empty in-memory engine."""
    return FakeDriver()


@pytest.fixture
def clock() -> FrozenClock:
    """Provide a clock frozen at a known moment."""
    return FrozenClock(datetime(2024, 1, 1, tzinfo=UTC))


@pytest.fixture(autouse=True)
def reset_started() -> None:
    """Forget the provider factory calls of previous tests."""
    providers.STARTED.clear()


@pytest.fixture
def run_case(driver: FakeDriver,
             clock: FrozenClock) -> 'Callable[..., list[StepReport]]':
    """Provide a helper validating and running a case on the fake engine.

    The helper accepts the mapping form of a case and `CaseRunner`
    keyword arguments.
    """
    def run(data: 'dict[str, Any]', **kwargs: 'Any') -> 'list[StepReport]':
        case = Case.model_validate(data)
        return CaseRunner(case, driver, clock=clock, **kwargs).run()

    return run
