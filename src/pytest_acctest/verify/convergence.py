"""Convergence verification.

After an action is applied the configuration is planned again: a
converged step leaves nothing to change. Steps declaring
`expectNonEmptyPlan` invert the rule and require the plan to propose
changes.

Diagnostics collected over a step are matched against the declared
error and warning expectations here as well.
"""

from typing import TYPE_CHECKING
from warnings import warn

from pytest_acctest.errors import (
    ConvergenceViolation,
    DiagnosticWarning,
    ExpectationMismatch,
    UnexpectedDiagnostic,
)

if TYPE_CHECKING:
    from collections.abc import Iterable
    from re import Pattern

if TYPE_CHECKING:
    from pytest_acctest.driver import Driver, PlanResult
    from pytest_acctest.driver.results import Diagnostic
    from pytest_acctest.schema import Step


def diagnostic_matches(pattern: 'Pattern[str]', diagnostic: 'Diagnostic') -> bool:
    """Search a pattern in the summary, detail or full text of a diagnostic."""
    return any(
        pattern.search(value)
        for value in (diagnostic.summary, diagnostic.detail, diagnostic.text)
        if value
    )


def match_diagnostics(diagnostics: 'Iterable[Diagnostic]',
                      expect_error: 'Pattern[str] | None' = None,
                      expect_warning: 'Pattern[str] | None' = None) -> None:
    """Match step diagnostics against the declared expectations.

    Args:
        diagnostics: Every diagnostic reported during the step.
        expect_error: Pattern every error diagnostic must match.
        expect_warning: Pattern at least one warning must match.

    Raises:
        UnexpectedDiagnostic: If an error diagnostic is not expected.
        ExpectationMismatch: If a declared pattern matches nothing.
    """
    errors: list[Diagnostic] = []
    warnings: list[Diagnostic] = []

    for diagnostic in diagnostics:
        if diagnostic.severity == 'error':
            errors.append(diagnostic)
        else:
            warnings.append(diagnostic)

    for diagnostic in errors:
        if expect_error is None or not diagnostic_matches(expect_error, diagnostic):
            raise UnexpectedDiagnostic(diagnostic)

    if expect_error is not None and not errors:
        raise ExpectationMismatch(f'Expected an error matching {expect_error.pattern!r}, but no error occurred')

    expected = [
        diagnostic
        for diagnostic in warnings
        if expect_warning is not None and diagnostic_matches(expect_warning, diagnostic)
    ]

    if expect_warning is not None and not expected:
        raise ExpectationMismatch(f'Expected a warning matching {expect_warning.pattern!r}, but no warning matched')

    for diagnostic in warnings:
        if diagnostic not in expected:
            warn(str(diagnostic), category=DiagnosticWarning, stacklevel=2)


def describe_changes(plan: 'PlanResult') -> str:
    """Render the proposed changes of a plan, one resource per line."""
    return ''.join(
        f'\n    {change.address}: {', '.join(change.actions)}'
        for change in plan.changes
        if not change.is_noop
    )


class ConvergenceVerifier:
    """Re-plan after an action and check the plan against the step contract."""

    def __init__(self, driver: 'Driver') -> None:
        """Initialize a verifier.

        Args:
            driver: Driver of the case working directory.
        """
        self.driver = driver

    def verify(self, step: 'Step') -> 'PlanResult':
        """Issue a fresh plan and check its emptiness.

        Destroy steps are verified with a destroy plan, which must be
        empty once everything has been torn down.

        Args:
            step: Step that just performed its action.

        Returns:
            The verification plan.

        Raises:
            ConvergenceViolation: If plan emptiness breaks the contract.
        """
        if step.destroy:
            plan = self.driver.create_destroy_plan()
        else:
            plan = self.driver.create_plan()

        self.check(step, plan)

        return plan

    @staticmethod
    def check(step: 'Step', plan: 'PlanResult') -> None:
        """Check an already issued plan against the step contract.

        Raises:
            ConvergenceViolation: If plan emptiness breaks the contract.
        """
        if plan.errors:
            return

        if plan.has_changes and not step.expect_non_empty_plan:
            raise ConvergenceViolation(
                f'After applying this step, the plan was not empty:{describe_changes(plan)}',
            )

        if not plan.has_changes and step.expect_non_empty_plan:
            raise ConvergenceViolation('Expected a non-empty plan, but got an empty plan')

    @staticmethod
    def check_replacements(addresses: 'Iterable[str]', plan: 'PlanResult') -> None:
        """Check that every tainted resource is planned for replacement.

        Raises:
            ConvergenceViolation: If a resource is not replaced.
        """
        for address in addresses:
            change = plan.change_for(address)
            if change is None or not change.is_replacement:
                actions = ', '.join(change.actions) if change else 'no change'
                raise ConvergenceViolation(
                    f'Expected tainted resource {address!r} to be replaced, got {actions}',
                )
