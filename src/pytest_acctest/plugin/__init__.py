"""Pytest plugin for collecting and running acceptance case files.

This module integrates pytest-acctest with pytest by:
- registering custom command-line options;
- resolving acceptance settings from the environment and the options;
- collecting YAML files as acceptance cases;
- providing the `acctest` fixture for cases written in Python.

YAML files matching the pattern `test_*.acc.yml` or `test_*.acc.yaml`
are collected as cases. Cases only reach the engine when acceptance
testing is enabled (`TF_ACC` or `--acc`); they are skipped otherwise.
"""

from pathlib import Path
from re import match
from typing import TYPE_CHECKING

import pytest
from yaml import Loader, SafeLoader

from .case import run_case
from .spec import CaseFile

if TYPE_CHECKING:
    from collections.abc import Callable

if TYPE_CHECKING:
    from _pytest.config import Config
    from _pytest.config.argparsing import Parser
    from _pytest.fixtures import FixtureRequest
    from _pytest.nodes import Node

    from pytest_acctest.runner import StepReport


def pytest_addoption(parser: 'Parser') -> None:
    """Register pytest command-line options for pytest-acctest.

    Args:
        parser: Pytest argument parser.
    """
    group = parser.getgroup('acctest', 'acceptance testing')
    group.addoption(
        '--acc',
        action='store_true',
        dest='acc_enabled',
        default=False,
        help='Run acceptance cases, as if TF_ACC was set.',
    )
    group.addoption(
        '--acc-terraform',
        action='store',
        dest='acc_terraform',
        default=None,
        help='Engine executable name or path, overriding TF_ACC_TERRAFORM_PATH.',
    )
    group.addoption(
        '--acc-persist-working-dir',
        action='store',
        dest='acc_persist_working_dir',
        default=None,
        help=(
            'Directory receiving the configuration, state and plan of every '
            'step, overriding TF_ACC_PERSIST_WORKING_DIR.'
        ),
    )
    group.addoption(
        '--acc-unsafe-yaml',
        action='store_true',
        dest='acc_unsafe_yaml',
        default=False,
        help=(
            'Allow loading case files using the unsafe PyYAML Loader. '
            'This enables execution of arbitrary Python objects and '
            'should only be used with trusted case files.'
        ),
    )


def pytest_configure(config: 'Config') -> None:
    """Configure pytest-acctest integration.

    This hook attaches a shared `CaseParser` instance and the resolved
    acceptance settings to the pytest configuration object as
    `config.acc_parser` and `config.acc_settings`.

    Args:
        config: Pytest configuration object.
    """
    loader: type[Loader | SafeLoader] = SafeLoader
    if config.getoption('acc_unsafe_yaml', default=False):
        loader = Loader

    from pytest_acctest.parser import CaseParser  # noqa: PLC0415
    from pytest_acctest.settings import AcceptanceSettings  # noqa: PLC0415

    settings = AcceptanceSettings()

    overrides = {}
    if config.getoption('acc_enabled', default=False):
        overrides['enabled'] = True
    if terraform_path := config.getoption('acc_terraform', default=None):
        overrides['terraform_path'] = terraform_path
    if persist_dir := config.getoption('acc_persist_working_dir', default=None):
        overrides['persist_working_dir'] = Path(persist_dir)

    config.acc_parser = CaseParser(loader)  # type: ignore[attr-defined]
    config.acc_settings = settings.model_copy(update=overrides)  # type: ignore[attr-defined]

    config.addinivalue_line('markers', 'acctest: acceptance case reaching the engine')


def pytest_collect_file(parent: 'Node', file_path: 'Path') -> CaseFile | None:
    """Collect YAML case files.

    Files matching the pattern `test_*.acc.yml` or `test_*.acc.yaml`
    are treated as acceptance cases and collected using `CaseFile`.

    Args:
        parent: Parent pytest collection node.
        file_path: Path to the file being considered.

    Returns:
        A `CaseFile` collector if the file matches the pattern, otherwise `None`.
    """
    if match(r'^test_.+\.acc\.ya?ml$', file_path.name):
        return CaseFile.from_parent(
            parent,
            path=file_path,
        )

    return None


@pytest.fixture
def acctest(request: 'FixtureRequest') -> 'Callable[..., list[StepReport]]':
    """Provide a runner for cases written in Python.

    The returned callable accepts a `Case` (or its mapping form) and
    optional `driver`, `clock` and `persist_dir` keyword arguments. Without
    an explicit driver the case runs against the engine configured by the
    acceptance settings, and is skipped unless acceptance testing is
    enabled.

    Example:
        >>> def test_password(acctest):
        ...     acctest({'providers': {...}, 'steps': [...]})
    """
    return lambda case, **kwargs: run_case(
        case,
        request.config.acc_settings,  # type: ignore[attr-defined]
        name=request.node.nodeid,
        **kwargs,
    )
