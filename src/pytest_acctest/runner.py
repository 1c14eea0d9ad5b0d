"""Step sequencing.

A `CaseRunner` executes the steps of a case in declared order against a
single engine working directory. For every step it:

1. runs the `preConfig` hook with the runner clock;
2. starts in-process providers and hands their reattach data over;
3. composes the configuration, writes it and initialises the engine;
4. taints the listed resources;
5. runs the primary action of the step mode;
6. runs the state checks, then the convergence verification;
7. runs the import sub-phase of import steps;
8. persists the step artifacts when asked to.

Any failure aborts the remaining steps. Whatever happened, a best-effort
destroy runs at the end so that no remote objects are left behind.
"""

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING
from warnings import warn

from pytest_acctest.clock import SystemClock
from pytest_acctest.compose import merge_config
from pytest_acctest.driver.results import Diagnostic
from pytest_acctest.driver.terraform import CONFIG_FILENAME, STATE_FILENAME
from pytest_acctest.errors import (
    AcceptanceError,
    CleanupWarning,
    EngineError,
    ErrorContext,
    ErrorFormatter,
    VerificationError,
)
from pytest_acctest.schema import ExternalProvider, merge_providers, run_checks
from pytest_acctest.verify import ConvergenceVerifier, ImportVerifier, match_diagnostics

if TYPE_CHECKING:
    from collections.abc import Iterable
    from pathlib import Path
    from typing import Any

if TYPE_CHECKING:
    from pytest_acctest.clock import Clock
    from pytest_acctest.driver import ActionResult, Driver, ImportResult, PlanResult
    from pytest_acctest.schema import Case, Step, StepMode

logger = logging.getLogger(__name__)

PLAN_JSON_FILENAME = 'tfplan.json'


@dataclass
class StepReport:
    """What happened during one step."""

    step_num: int
    mode: 'StepMode'

    #: Composed configuration the step ran with.
    config: str = ''

    #: Every diagnostic reported during the step.
    diagnostics: list[Diagnostic] = field(default_factory=list)

    #: The step ended with an expected engine error.
    failed: bool = False
    #: The step ended with an engine error the error check ignored.
    downgraded: bool = False

    plan: 'PlanResult | None' = None
    imported: 'ImportResult | None' = None

    def add(self, diagnostics: 'Iterable[Diagnostic]') -> None:
        """Collect diagnostics, skipping ones already collected."""
        for diagnostic in diagnostics:
            if diagnostic not in self.diagnostics:
                self.diagnostics.append(diagnostic)

    def record[R: ActionResult](self, result: R) -> R:
        """Collect the diagnostics of a result.

        Returns:
            The same result.

        Raises:
            EngineError: If the result carries error diagnostics.
        """
        self.add(result.diagnostics)

        if errors := result.errors:
            raise EngineError('Engine reported errors', diagnostics=errors)

        return result


class CaseRunner:
    """Sequencer executing the steps of one case."""

    def __init__(self, case: 'Case', driver: 'Driver', *,
                 clock: 'Clock | None' = None,
                 persist_dir: 'Path | None' = None,
                 filename: str | None = None) -> None:
        """Initialize a runner.

        Args:
            case: Case to execute.
            driver: Driver owning the case working directory.
            clock: Clock handed to `preConfig` hooks; the system clock
                if omitted.
            persist_dir: Directory receiving per-step artifacts.
            filename: Case file name for error reporting.
        """
        self.case = case
        self.driver = driver
        self.clock = clock or SystemClock()

        self.persist_dir = persist_dir
        self.filename = filename

        self.convergence = ConvergenceVerifier(driver)
        self.importer = ImportVerifier(driver)

        self.config = ''
        self.configured = False
        self.reports: list[StepReport] = []

    def run(self) -> list[StepReport]:
        """Execute every step, then destroy what is left.

        Returns:
            Reports of the executed steps.

        Raises:
            AcceptanceError: The first fatal error of the case.
            AssertionError: If a state or import check fails.
        """
        try:
            for step_num, step in enumerate(self.case.steps):
                self.reports.append(self.run_step(step, step_num=step_num))

        except Exception:
            self.cleanup()
            raise

        self.cleanup()

        return self.reports

    def run_step(self, step: 'Step', *, step_num: int = 0) -> StepReport:
        """Execute a single step with error context attached.

        Args:
            step: Step to execute.
            step_num: Position of the step in the case.

        Returns:
            Report of the step.
        """
        report = StepReport(step_num=step_num, mode=step.mode)
        logger.debug('Running step %d/%d (%s)', step_num + 1, len(self.case.steps), step.mode)

        try:
            self.sequence(step, report)

        except AcceptanceError as error:
            raise error.with_step(step, step_num=step_num, filename=self.filename)

        except AssertionError as base:
            raise self.fail(step, base, step_num=step_num) from base

        if self.persist_dir is not None:
            self.persist(report)

        return report

    def sequence(self, step: 'Step', report: StepReport) -> None:
        """Execute a step and settle its engine errors and diagnostics.

        Error diagnostics of an engine error the error check ignored are
        left out of the matching.
        """
        ignored: tuple[Diagnostic, ...] = ()

        try:
            self.execute(step, report)

        except EngineError as error:
            failure = self.downgrade(error)
            if failure is not None:
                self.expect_failure(step, report, error, failure)
                return

            report.downgraded = True
            ignored = error.diagnostics

        match_diagnostics(
            [item for item in report.diagnostics if item not in ignored],
            step.expect_error,
            step.expect_warning,
        )

    def execute(self, step: 'Step', report: StepReport) -> None:
        """Run every phase of a step in order."""
        if step.pre_config is not None:
            step.pre_config(self.clock)

        self.configure(step, report)

        for address in step.taint:
            logger.debug('Tainting %s', address)
            report.record(self.driver.taint(address))

        match step.mode:
            case 'apply':
                plan = report.record(self.driver.create_plan())
                self.convergence.check_replacements(step.taint, plan)
                report.record(self.driver.apply())
                self.check_state(step)
                report.plan = report.record(self.convergence.verify(step))

            case 'destroy':
                report.record(self.driver.create_destroy_plan())
                report.record(self.driver.apply())
                self.check_state(step)
                report.plan = report.record(self.convergence.verify(step))

            case 'plan-only':
                plan = report.record(self.driver.create_plan())
                self.convergence.check_replacements(step.taint, plan)
                self.convergence.check(step, plan)
                report.plan = plan
                self.check_state(step)

            case 'refresh-only':
                report.record(self.driver.refresh())
                self.check_state(step)
                report.plan = report.record(self.convergence.verify(step))

            case 'import-probe':
                state = self.driver.state()
                report.imported = report.record(self.importer.run(step.import_state, state))

    def configure(self, step: 'Step', report: StepReport) -> None:
        """Start in-process providers, write the configuration and init.

        The engine is reinitialised on every step with the providers of
        that step, so providers may change between steps.
        """
        providers = merge_providers(self.case.providers, step.providers)

        reattach: dict[str, Any] = {}
        for name, declaration in providers.items():
            if not isinstance(declaration, ExternalProvider):
                logger.debug('Starting provider %s (%s)', name, declaration.kind)
                reattach[name] = declaration.start()

        self.driver.set_reattach_info(reattach or None)

        if step.config:
            self.config = merge_config(
                self.case.providers,
                step.providers,
                step.config,
                skip_provider_block=step.skip_provider_block,
            )

        report.config = self.config

        self.driver.set_config(self.config)
        self.configured = True

        report.record(self.driver.init())

    def check_state(self, step: 'Step') -> None:
        """Run the state checks of a step.

        Raises:
            AssertionError: If a check fails.
        """
        if step.check:
            run_checks(step.check, self.driver.state())

    def downgrade(self, error: EngineError) -> Exception | None:
        """Give the case error check first refusal on an engine error.

        Returns:
            The error to handle, or `None` if the error is ignored.
        """
        if self.case.error_check is None:
            return error

        failure = self.case.error_check(error)
        if failure is None:
            logger.info('Engine error ignored by the error check: %s', error.message)

        return failure

    def expect_failure(self, step: 'Step', report: StepReport,
                       error: EngineError, failure: Exception) -> None:
        """Settle a step that stopped on an engine error.

        The step is complete when every error diagnostic matches the
        expected error pattern.

        Raises:
            Exception: The failure itself when nothing is expected of it.
            VerificationError: If the diagnostics do not match the
                expectations.
        """
        if failure is not error:
            raise failure from error

        diagnostics = list(error.diagnostics)
        if not any(item.severity == 'error' for item in diagnostics):
            if step.expect_error is None:
                raise error
            diagnostics.append(Diagnostic(severity='error', summary=error.message))

        report.add(diagnostics)
        report.failed = True

        try:
            match_diagnostics(report.diagnostics, step.expect_error, step.expect_warning)
        except VerificationError as mismatch:
            raise mismatch from error

        logger.debug('Step %d stopped with an expected error', report.step_num + 1)

    def persist(self, report: StepReport) -> None:
        """Copy the step artifacts into the persist directory.

        Artifacts land in `<persist_dir>/<step number>/`: the composed
        configuration, the state and, from the second step on, the
        saved plan.
        """
        target = self.persist_dir / f'{report.step_num + 1}'
        target.mkdir(parents=True, exist_ok=True)

        (target / CONFIG_FILENAME).write_text(report.config, encoding='utf-8')
        (target / STATE_FILENAME).write_text(
            self.driver.state().model_dump_json(indent=2),
            encoding='utf-8',
        )

        if report.step_num > 0 and (plan := self.driver.saved_plan()) is not None:
            (target / PLAN_JSON_FILENAME).write_text(
                plan.model_dump_json(indent=2),
                encoding='utf-8',
            )

        logger.debug('Step %d artifacts persisted to %s', report.step_num + 1, target)

    def cleanup(self) -> None:
        """Destroy every object left by the case, best-effort.

        Failures are reported with `CleanupWarning` and never raised.
        """
        if not self.configured:
            return

        logger.debug('Destroying objects left by the case')

        try:
            result = self.driver.destroy()
        except (AcceptanceError, OSError) as error:
            logger.warning('Destroy after case failed: %s', error)
            warn(
                f'Destroy after case failed, objects may be left behind: {error}',
                category=CleanupWarning,
                stacklevel=2,
            )
            return

        if errors := result.errors:
            message = '; '.join(item.text for item in errors)
            logger.warning('Destroy after case reported errors: %s', message)
            warn(
                f'Destroy after case reported errors, objects may be left behind: {message}',
                category=CleanupWarning,
                stacklevel=2,
            )

    def fail(self, step: 'Step', error: AssertionError, *,
             step_num: int | None = None) -> AssertionError:
        """Create an AssertionError enriched with step context.

        Args:
            step: Step whose check failed.
            error: Original check failure.
            step_num: Position of the step in the case.

        Returns:
            AssertionError with a formatted message.
        """
        error_context = ErrorContext(
            filename=self.filename,
            step_num=step_num,
            element=step.model_dump(
                exclude_none=True,
                exclude_defaults=True,
            ),
        )

        message = 'Check failed'
        if step.title:
            message += f' ({step.title})'
        message += f': {error}'

        return AssertionError(ErrorFormatter.format(message, error_context))
