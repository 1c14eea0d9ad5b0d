"""Pytest items executing acceptance cases.

Each collected case runs against a dedicated engine working directory,
created by `TerraformDriver` from the acceptance settings, and is skipped
unless acceptance testing is enabled.
"""

from typing import TYPE_CHECKING

import pytest

from pytest_acctest.driver import TerraformDriver
from pytest_acctest.errors import AcceptanceError
from pytest_acctest.runner import CaseRunner
from pytest_acctest.schema import Case

if TYPE_CHECKING:
    from collections.abc import Mapping
    from pathlib import Path
    from typing import Any

if TYPE_CHECKING:
    from _pytest._code.code import ExceptionInfo, TerminalRepr

    from pytest_acctest.clock import Clock
    from pytest_acctest.driver import Driver
    from pytest_acctest.runner import StepReport
    from pytest_acctest.settings import AcceptanceSettings

SKIP_REASON = 'Acceptance cases run only when TF_ACC is set (or with --acc)'


def run_case(case: 'Case | Mapping[str, Any]', settings: 'AcceptanceSettings', *,
             driver: 'Driver | None' = None,
             clock: 'Clock | None' = None,
             persist_dir: 'Path | None' = None,
             name: str | None = None) -> list['StepReport']:
    """Run a case, skipping the calling test when it can not reach the engine.

    Args:
        case: Case or its mapping form.
        settings: Acceptance settings.
        driver: Driver to run against instead of the configured engine.
        clock: Clock handed to `preConfig` hooks.
        persist_dir: Artifact directory overriding the settings.
        name: Case name for error reporting.

    Returns:
        Reports of the executed steps.
    """
    if not isinstance(case, Case):
        case = Case.model_validate(case)

    if driver is None:
        if not settings.enabled:
            pytest.skip(SKIP_REASON)
        driver = TerraformDriver.from_settings(settings, case.working_dir)

    with driver:
        runner = CaseRunner(
            case,
            driver,
            clock=clock,
            persist_dir=persist_dir or settings.persist_working_dir,
            filename=name,
        )
        return runner.run()


class CaseItem(pytest.Item):
    """Pytest item executing a single acceptance case."""

    __test__ = False

    def __init__(self, *, case: Case, **kwargs: 'Any') -> None:
        """Initialize a pytest item backed by a case.

        Args:
            case: Validated case.
            **kwargs: Keyword pytest.Item arguments.
        """
        super().__init__(**kwargs)

        self.case = case
        self.add_marker('acctest')

    def runtest(self) -> None:
        """Execute the case."""
        run_case(
            self.case,
            self.config.acc_settings,  # type: ignore[attr-defined]
            name=f'{self.path}',
        )

    def repr_failure(self, excinfo: 'ExceptionInfo[BaseException]',
                     style: 'Any' = None) -> 'str | TerminalRepr':
        """Report acceptance errors with their formatted context only."""
        if isinstance(excinfo.value, AcceptanceError):
            return f'{excinfo.value}'

        return super().repr_failure(excinfo, style=style)

    def reportinfo(self) -> tuple['Path', int | None, str]:
        """Describe the case location for test reports."""
        return self.path, None, f'acceptance case: {self.case.title or self.name}'
