"""Command-line utilities for pytest-acctest.

Provides the JSON Schema of case files (and the VSCode settings using
it), a preview of the configuration composed for a step, and a way to
run a single case file outside pytest.
"""

import json
import logging
from pathlib import Path

from click import ClickException, IntRange, argument, echo, group, option
from click import Path as PathParam

from pytest_acctest.compose import compose_case
from pytest_acctest.driver import TerraformDriver
from pytest_acctest.errors import AcceptanceError
from pytest_acctest.jsonschema import SchemaGenerator
from pytest_acctest.parser import CaseParser
from pytest_acctest.runner import CaseRunner
from pytest_acctest.settings import AcceptanceSettings

#: VSCode YAML extension setting mapping schema files to glob patterns.
SCHEMAS_OPTION = 'yaml.schemas'

CASE_PATTERNS = (
    'test_*.acc.yaml',
    'test_*.acc.yml',
)

CasePath = PathParam(exists=True, dir_okay=False, path_type=Path)
OutputFile = PathParam(dir_okay=False, writable=True, path_type=Path)


def _write_text(path: Path, text: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(f'{text}\n', encoding='utf-8')


@group(help='Command-line utilities for pytest-acctest cases.')
def cli() -> None:
    """Group of the pytest-acctest commands."""


@cli.command(name='schema', help='Print the case file JSON Schema to standard output.')
def print_schema() -> None:
    """Print the JSON Schema."""
    echo(SchemaGenerator.make_schema())


@cli.command(
    name='vscode-configure',
    help='Write the case file JSON Schema and register it in VSCode settings.',
)
@option(
    '-s', '--schema',
    type=OutputFile,
    default='.vscode/acctest.schema.json',
    show_default=True,
    help='Where to write the JSON Schema.',
)
@argument('settings', type=OutputFile, default='.vscode/settings.json')
def configure_vscode(schema: Path, settings: Path) -> None:
    """Register the case file patterns for YAML validation.

    Other settings, and schemas registered for other files, are kept.
    """
    _write_text(schema, SchemaGenerator.make_schema())

    content = {}
    if settings.exists():
        content = json.loads(settings.read_text(encoding='utf-8') or '{}')

    schemas = content.get(SCHEMAS_OPTION)
    if not isinstance(schemas, dict):
        schemas = {}

    schemas[schema.as_posix()] = list(CASE_PATTERNS)
    content[SCHEMAS_OPTION] = schemas

    _write_text(settings, json.dumps(content, ensure_ascii=False, indent=4))


@cli.command(
    name='compose',
    help='Print the configuration composed for a step of a case file.',
)
@option(
    '--step', 'step_num',
    type=IntRange(min=1),
    default=1,
    show_default=True,
    help='Step number, starting from 1.',
)
@argument('path', type=CasePath)
def compose(path: Path, step_num: int) -> None:
    """Compose and print the configuration of a step.

    Args:
        path: Case file.
        step_num: Step number, starting from 1.
    """
    try:
        case = CaseParser().parse_file(path)
    except AcceptanceError as error:
        raise ClickException(f'{error}') from error

    composed = compose_case(case)
    if step_num > len(composed):
        raise ClickException(f'Case has {len(composed)} step(s), got step {step_num}')

    echo(composed[step_num - 1], nl=False)


@cli.command(
    name='run',
    help='Run a case file against the engine configured by TF_ACC_* variables.',
)
@option(
    '-v', '--verbose',
    is_flag=True,
    default=False,
    help='Log engine commands and step progress.',
)
@argument('path', type=CasePath)
def run_case(path: Path, verbose: bool) -> None:
    """Run every step of a case file.

    Args:
        path: Case file.
        verbose: Whether to log at debug level.
    """
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format='%(levelname)s %(name)s: %(message)s',
    )

    settings = AcceptanceSettings()

    try:
        case = CaseParser().parse_file(path)

        with TerraformDriver.from_settings(settings, case.working_dir) as driver:
            runner = CaseRunner(
                case,
                driver,
                persist_dir=settings.persist_working_dir,
                filename=f'{path}',
            )
            reports = runner.run()

    except (AcceptanceError, AssertionError) as error:
        raise ClickException(f'{error}') from error

    for report in reports:
        status = 'expected error' if report.failed else 'ok'
        echo(f'step {report.step_num + 1} ({report.mode}): {status}')


if __name__ == '__main__':
    cli()
