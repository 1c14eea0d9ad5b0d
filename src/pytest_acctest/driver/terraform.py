"""Driver running the `terraform` command-line engine.

The driver keeps configuration, state, saved plan and engine data of one
case inside a single working directory. Machine-readable (`-json`) output
is used wherever the engine offers it; other commands are scanned for the
`Error:`/`Warning:` blocks the engine prints.
"""

import logging
from json import JSONDecodeError, dumps, loads
from os import environ
from pathlib import Path
from shutil import rmtree
from subprocess import CompletedProcess, run  # noqa: S404
from tempfile import mkdtemp
from typing import TYPE_CHECKING, Any

from pytest_acctest.errors import EngineError

from .base import Driver
from .results import (
    ActionResult,
    Diagnostic,
    ImportResult,
    InstanceState,
    PlanResult,
    ResourceChange,
    ResourceState,
    State,
)

if TYPE_CHECKING:
    from collections.abc import Iterable, Mapping, Sequence

if TYPE_CHECKING:
    from pytest_acctest.settings import AcceptanceSettings

    from .results import Action

logger = logging.getLogger(__name__)

CONFIG_FILENAME = 'terraform_plugin_test.tf'
PLAN_FILENAME = 'tfplan'
STATE_FILENAME = 'terraform.tfstate'
SCRATCH_STATE_FILENAME = 'import.tfstate'

#: Exit code of `plan -detailed-exitcode` when changes are present.
EXIT_CHANGES = 2

#: Engine change actions mapped onto the plan JSON action lists.
PLANNED_ACTIONS: dict[str, tuple['Action', ...]] = {
    'noop': ('no-op',),
    'create': ('create',),
    'read': ('read',),
    'update': ('update',),
    'delete': ('delete',),
    'replace': ('delete', 'create'),
    'move': ('no-op',),
    'remove': ('forget',),
}

TEXT_SEVERITIES = {
    'Error: ': 'error',
    'Warning: ': 'warning',
}


def parse_json_diagnostics(stream: str) -> tuple[list[Diagnostic], list[ResourceChange]]:
    """Extract diagnostics and planned changes from a `-json` UI stream.

    Args:
        stream: Engine standard output, one JSON message per line.

    Returns:
        A tuple of diagnostics and planned resource changes.
    """
    diagnostics: list[Diagnostic] = []
    changes: list[ResourceChange] = []

    for line in stream.splitlines():
        if not line.strip():
            continue

        try:
            message = loads(line)
        except JSONDecodeError:
            continue

        kind = message.get('type')
        if kind == 'diagnostic' and (item := message.get('diagnostic')):
            diagnostics.append(Diagnostic(
                severity=item.get('severity', 'error'),
                summary=item.get('summary', ''),
                detail=item.get('detail', ''),
            ))
        elif kind == 'planned_change' and (item := message.get('change')):
            changes.append(ResourceChange(
                address=item.get('resource', {}).get('addr', ''),
                actions=PLANNED_ACTIONS.get(item.get('action', 'noop'), ('no-op',)),
            ))

    return diagnostics, changes


def parse_text_diagnostics(output: str) -> list[Diagnostic]:
    """Extract diagnostics from human-readable engine output.

    A diagnostic starts with a line `Error: <summary>` or
    `Warning: <summary>`; following lines up to the next diagnostic form
    its detail.

    Args:
        output: Engine output produced with `-no-color`.

    Returns:
        The diagnostics in output order.
    """
    diagnostics: list[Diagnostic] = []
    current: dict[str, Any] | None = None

    def flush() -> None:
        if current is not None:
            diagnostics.append(Diagnostic(
                severity=current['severity'],
                summary=current['summary'],
                detail='\n'.join(current['detail']).strip(),
            ))

    for raw in output.splitlines():
        line = raw.strip().lstrip('│').strip()
        for prefix, severity in TEXT_SEVERITIES.items():
            if line.startswith(prefix):
                flush()
                current = {
                    'severity': severity,
                    'summary': line.removeprefix(prefix).strip(),
                    'detail': [],
                }
                break
        else:
            if current is not None and line not in {'╷', '╵'}:
                current['detail'].append(line)

    flush()

    return diagnostics


def flatten_attributes(values: 'Mapping[str, Any]', prefix: str = '') -> dict[str, str]:
    """Flatten nested attribute values into dotted string keys.

    Lists produce a `<name>.#` count and indexed keys, maps a `<name>.%`
    count and keyed entries. Null values are omitted.

    Args:
        values: Attribute values as found in the state JSON.
        prefix: Key prefix for nested values.

    Returns:
        Flat mapping of attribute path to string value.
    """
    flat: dict[str, str] = {}

    for key, value in values.items():
        path = f'{prefix}{key}'
        if value is None:
            continue

        if isinstance(value, dict):
            flat[f'{path}.%'] = str(len(value))
            flat.update(flatten_attributes(value, f'{path}.'))
        elif isinstance(value, list):
            flat[f'{path}.#'] = str(len(value))
            flat.update(flatten_attributes(
                {str(index): item for index, item in enumerate(value)},
                f'{path}.',
            ))
        elif isinstance(value, bool):
            flat[path] = 'true' if value else 'false'
        elif isinstance(value, float) and value.is_integer():
            flat[path] = str(int(value))
        else:
            flat[path] = str(value)

    return flat


def _iter_modules(module: 'Mapping[str, Any]') -> 'Iterable[Mapping[str, Any]]':
    """Walk a state module and its child modules depth-first."""
    yield module
    for child in module.get('child_modules', ()):
        yield from _iter_modules(child)


def parse_state(document: 'Mapping[str, Any]') -> State:
    """Build a `State` from `show -json` output.

    Args:
        document: Decoded JSON state representation.

    Returns:
        The parsed state; empty if the document has no values.
    """
    root = (document.get('values') or {}).get('root_module') or {}
    resources = []

    for module in _iter_modules(root):
        for item in module.get('resources', ()):
            attributes = flatten_attributes(item.get('values') or {})
            resources.append(ResourceState(
                address=item['address'],
                mode=item.get('mode', 'managed'),
                type=item['type'],
                name=item['name'],
                provider=item.get('provider_name', ''),
                instance=InstanceState(
                    id=attributes.get('id', ''),
                    address=item['address'],
                    type=item['type'],
                    attributes=attributes,
                ),
            ))

    return State(resources=tuple(resources))


class TerraformDriver(Driver):
    """Driver executing the `terraform` binary in a working directory.

    Configuration, state, saved plan and the engine data directory all
    live in `base_dir`. A temporary directory is created (and removed on
    `close`) when no directory is given.
    """

    def __init__(self, base_dir: Path | None = None, *,
                 executable: str = 'terraform',
                 log_path: Path | None = None,
                 temp_dir: Path | None = None,
                 env: 'Mapping[str, str] | None' = None) -> None:
        """Initialize the driver.

        Args:
            base_dir: Working directory; a temporary one if omitted.
            executable: Engine executable name or path.
            log_path: Optional file for the engine's own log.
            temp_dir: Parent directory for the temporary working directory.
            env: Extra environment variables for every engine call.
        """
        self.owns_base_dir = base_dir is None
        if base_dir is None:
            base_dir = Path(mkdtemp(prefix='acctest', dir=temp_dir))
        base_dir.mkdir(parents=True, exist_ok=True)

        self.base_dir = base_dir
        self.executable = executable

        self.env: dict[str, str] = {
            'TF_IN_AUTOMATION': '1',
            'CHECKPOINT_DISABLE': '1',
            **(env or {}),
        }
        if log_path is not None:
            self.env['TF_LOG_PATH'] = f'{log_path}'

        self.has_config = False
        self.reattach_info: Mapping[str, Any] | None = None

    @classmethod
    def from_settings(cls, settings: 'AcceptanceSettings',
                      base_dir: Path | None = None) -> 'TerraformDriver':
        """Create a driver configured from acceptance settings."""
        return cls(
            base_dir,
            executable=settings.terraform_path,
            log_path=settings.log_path,
            temp_dir=settings.temp_dir,
        )

    @property
    def config_path(self) -> Path:
        """Path of the rendered configuration file."""
        return self.base_dir / CONFIG_FILENAME

    @property
    def plan_path(self) -> Path:
        """Path of the saved plan."""
        return self.base_dir / PLAN_FILENAME

    @property
    def state_path(self) -> Path:
        """Path of the state file."""
        return self.base_dir / STATE_FILENAME

    def execute(self, *args: str, json: bool = False,
                allowed_codes: 'Sequence[int]' = (0,)) -> CompletedProcess[str]:
        """Run an engine command in the working directory.

        Args:
            *args: Command-line arguments following the executable.
            json: Whether the command produces a `-json` UI stream.
            allowed_codes: Exit codes treated as success.

        Returns:
            The completed process.

        Raises:
            EngineError: If the engine exits with a code not allowed.
        """
        command = [self.executable, *args]
        logger.debug('Running %s in %s', ' '.join(command), self.base_dir)

        env = {**environ, **self.env}
        if self.reattach_info:
            env['TF_REATTACH_PROVIDERS'] = dumps(self.reattach_info)

        try:
            process = run(  # noqa: S603
                command,
                cwd=self.base_dir,
                env=env,
                capture_output=True,
                text=True,
                check=False,
            )
        except OSError as base:
            raise EngineError(f'Can not run {self.executable!r}', command=args[0]) from base

        if process.returncode not in allowed_codes:
            if json:
                diagnostics, _ = parse_json_diagnostics(process.stdout)
            else:
                diagnostics = parse_text_diagnostics(process.stderr)
            errors = [item for item in diagnostics if item.severity == 'error']

            message = f'Command {args[0]!r} failed with exit code {process.returncode}'
            if not errors and (output := process.stderr.strip()):
                message += f': {output}'

            raise EngineError(message, diagnostics=diagnostics, command=args[0])

        return process

    def _json_result(self, process: CompletedProcess[str]) -> ActionResult:
        diagnostics, _ = parse_json_diagnostics(process.stdout)
        return ActionResult(diagnostics=tuple(diagnostics))

    def _text_result(self, process: CompletedProcess[str]) -> ActionResult:
        return ActionResult(diagnostics=tuple(
            parse_text_diagnostics(f'{process.stdout}\n{process.stderr}'),
        ))

    def _require_config(self) -> None:
        if not self.has_config:
            raise EngineError('Configuration must be set before running the engine')

    def set_config(self, config: str) -> None:
        """Write the configuration file and clear any saved plan."""
        self.config_path.write_text(config, encoding='utf-8')
        self.has_config = True
        self.clear_plan()

    def set_reattach_info(self, info: 'Mapping[str, Any] | None') -> None:
        """Pass in-process provider addresses via `TF_REATTACH_PROVIDERS`."""
        self.reattach_info = dict(info) if info else None

    def init(self) -> ActionResult:
        """Run `terraform init`."""
        self._require_config()
        return self._text_result(self.execute('init', '-no-color', '-input=false'))

    def _plan(self, *extra: str) -> PlanResult:
        self._require_config()
        process = self.execute(
            'plan', '-json', '-input=false', '-refresh=false',
            '-detailed-exitcode', f'-out={PLAN_FILENAME}', *extra,
            json=True,
            allowed_codes=(0, EXIT_CHANGES),
        )
        diagnostics, changes = parse_json_diagnostics(process.stdout)

        return PlanResult(
            has_changes=process.returncode == EXIT_CHANGES,
            diagnostics=tuple(diagnostics),
            changes=tuple(changes),
        )

    def create_plan(self) -> PlanResult:
        """Run `terraform plan` saving the plan."""
        return self._plan()

    def create_destroy_plan(self) -> PlanResult:
        """Run `terraform plan -destroy` saving the plan."""
        return self._plan('-destroy')

    def apply(self) -> ActionResult:
        """Run `terraform apply`, using the saved plan when present."""
        self._require_config()
        if self.plan_path.exists():
            process = self.execute(
                'apply', '-json', '-input=false', PLAN_FILENAME,
                json=True,
            )
        else:
            process = self.execute(
                'apply', '-json', '-input=false', '-refresh=false', '-auto-approve',
                json=True,
            )

        return self._json_result(process)

    def refresh(self) -> ActionResult:
        """Run a refresh-only apply."""
        self._require_config()
        return self._json_result(self.execute(
            'apply', '-json', '-input=false', '-refresh-only', '-auto-approve',
            json=True,
        ))

    def import_state(self, address: str, import_id: str, *,
                     persist: bool = False) -> ImportResult:
        """Run `terraform import`, into a scratch state unless persisting.

        A persisted import replaces the recorded object. The working state
        is put back as it was when the import fails.
        """
        self._require_config()

        known: set[str] = set()
        if persist:
            current = self.state()
            known = {item.address for item in current.resources} - {address}

            backup = self.state_path.read_bytes() if self.state_path.exists() else None
            try:
                if address in current:
                    self.execute('state', 'rm', '-no-color', address)
                process = self.execute('import', '-no-color', '-input=false', address, import_id)
            except EngineError:
                logger.debug('Import of %s failed, restoring the working state', address)
                self._restore_state(backup)
                raise

            state = self.state()
        else:
            scratch = self.base_dir / SCRATCH_STATE_FILENAME
            scratch.unlink(missing_ok=True)
            try:
                process = self.execute(
                    'import', '-no-color', '-input=false',
                    f'-state={scratch}', f'-state-out={scratch}',
                    address, import_id,
                )
                state = self._show(f'{scratch}')
            finally:
                scratch.unlink(missing_ok=True)

        instances = [
            resource.instance
            for resource in state.resources
            if resource.mode == 'managed' and resource.address not in known
        ]

        return ImportResult(
            diagnostics=self._text_result(process).diagnostics,
            instances=tuple(instances),
        )

    def _restore_state(self, content: bytes | None) -> None:
        if content is None:
            self.state_path.unlink(missing_ok=True)
        else:
            self.state_path.write_bytes(content)

    def taint(self, address: str) -> ActionResult:
        """Run `terraform taint`."""
        return self._text_result(self.execute('taint', '-no-color', address))

    def destroy(self) -> ActionResult:
        """Run `terraform destroy`."""
        self._require_config()
        return self._json_result(self.execute(
            'destroy', '-json', '-input=false', '-refresh=false', '-auto-approve',
            json=True,
        ))

    def _show(self, *args: str) -> State:
        process = self.execute('show', '-json', '-no-color', *args)
        if not process.stdout.strip():
            return State()

        return parse_state(loads(process.stdout))

    def state(self) -> State:
        """Run `terraform show -json` against the working state."""
        if not self.state_path.exists():
            return State()

        return self._show()

    def saved_plan(self) -> PlanResult | None:
        """Run `terraform show -json` against the saved plan."""
        if not self.plan_path.exists():
            return None

        process = self.execute('show', '-json', '-no-color', PLAN_FILENAME)
        document = loads(process.stdout)

        changes = tuple(
            ResourceChange(
                address=item['address'],
                actions=tuple(item.get('change', {}).get('actions', ('no-op',))),
            )
            for item in document.get('resource_changes', ())
        )

        return PlanResult(
            has_changes=any(not change.is_noop for change in changes),
            changes=changes,
        )

    def schemas(self) -> dict[str, Any]:
        """Run `terraform providers schema -json`."""
        process = self.execute('providers', 'schema', '-json')
        return loads(process.stdout)

    def clear_state(self) -> None:
        """Delete the state file."""
        self.state_path.unlink(missing_ok=True)

    def clear_plan(self) -> None:
        """Delete the saved plan."""
        self.plan_path.unlink(missing_ok=True)

    def close(self) -> None:
        """Remove the working directory if the driver created it."""
        if self.owns_base_dir:
            rmtree(self.base_dir, ignore_errors=True)
