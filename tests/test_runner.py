"""Tests for step sequencing."""

import json
import logging
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING

import pytest

from pytest_acctest.driver import Diagnostic
from pytest_acctest.driver.terraform import CONFIG_FILENAME, STATE_FILENAME
from pytest_acctest.errors import (
    CleanupWarning,
    ConvergenceViolation,
    DiagnosticWarning,
    EngineError,
    ExpectationMismatch,
    UnexpectedDiagnostic,
)
from pytest_acctest.runner import PLAN_JSON_FILENAME, CaseRunner, StepReport
from pytest_acctest.schema import Case

from .examples import providers

if TYPE_CHECKING:
    from collections.abc import Callable

    from pyfakefs.fake_filesystem import FakeFilesystem

    from pytest_acctest.clock import Clock

    from .examples.engine import FakeDriver

CONFIG = '''resource "random_password" "test" {
  length = 12
}
'''

LONGER_CONFIG = '''resource "random_password" "test" {
  length = 20
}
'''

DRIFT_CONFIG = '''resource "fake_drift" "test" {
  value = "abc"
}
'''

DEPRECATED = Diagnostic(severity='warning', summary='Deprecated attribute', detail='"length" is deprecated')
BAD_REQUEST = Diagnostic(severity='error', summary='Bad request', detail='invalid length')

type RunCase = Callable[..., list[StepReport]]


def _length_check(length: str) -> dict[str, str]:
    return {'resource': 'random_password.test', 'attribute': 'length', 'equal': length}


def test_apply_converges(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Apply a configuration and verify the follow-up plan is empty."""
    reports = run_case({'steps': [{'config': CONFIG}]})

    assert len(reports) == 1
    assert reports[0].mode == 'apply'
    assert reports[0].config == CONFIG
    assert reports[0].plan is not None
    assert not reports[0].plan.has_changes

    assert driver.calls == ['init', 'plan', 'apply', 'plan', 'destroy']
    assert driver.resources == {}


def test_apply_updates_between_steps(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Apply each step on top of the state left by the previous one."""
    reports = run_case({
        'steps': [
            {'config': CONFIG, 'check': [_length_check('12')]},
            {'config': LONGER_CONFIG, 'check': [_length_check('20')]},
        ],
    })

    assert [report.step_num for report in reports] == [0, 1]
    assert driver.configs == [CONFIG, LONGER_CONFIG]


def test_apply_does_not_converge(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Fail a step whose configuration keeps proposing changes."""
    with pytest.raises(ConvergenceViolation, match='plan was not empty') as error:
        run_case({'steps': [{'config': DRIFT_CONFIG}]})

    assert 'fake_drift.test: update' in str(error.value)
    assert 'on step 1' in str(error.value)

    assert driver.calls[-1] == 'destroy'
    assert driver.resources == {}


def test_apply_expect_non_empty_plan(run_case: RunCase) -> None:
    """Accept a diverging configuration when changes are expected."""
    reports = run_case({'steps': [{'config': DRIFT_CONFIG, 'expectNonEmptyPlan': True}]})

    assert reports[0].plan is not None
    assert reports[0].plan.has_changes


def test_stop_at_first_failure(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Skip the steps following a failed one."""
    with pytest.raises(ConvergenceViolation):
        run_case({'steps': [{'config': DRIFT_CONFIG}, {'config': CONFIG}]})

    assert driver.configs == [DRIFT_CONFIG]


def test_expected_warning(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Pass a step whose only diagnostic is the expected warning."""
    driver.queue_diagnostics('apply', DEPRECATED)

    reports = run_case({'steps': [{'config': CONFIG, 'expectWarning': '.*deprecated.*'}]})

    assert reports[0].diagnostics == [DEPRECATED]
    assert not reports[0].failed


def test_expected_warning_with_error(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Fail a step reporting an error besides the expected warning."""
    driver.queue_diagnostics('apply', DEPRECATED, BAD_REQUEST)

    with pytest.raises(UnexpectedDiagnostic, match='Bad request') as error:
        run_case({'steps': [{'config': CONFIG, 'expectWarning': '.*deprecated.*'}]})

    assert isinstance(error.value.__cause__, EngineError)


def test_missing_expected_warning(run_case: RunCase) -> None:
    """Fail a step when no warning matches the expected warning."""
    with pytest.raises(ExpectationMismatch, match='no warning matched'):
        run_case({'steps': [{'config': CONFIG, 'expectWarning': 'deprecated'}]})


def test_unexpected_warning(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Report warnings nobody expected without failing."""
    driver.queue_diagnostics('plan', DEPRECATED)

    with pytest.warns(DiagnosticWarning, match='Deprecated attribute'):
        run_case({'steps': [{'config': CONFIG}]})


def test_expected_error(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Complete a step stopped by an expected error."""
    driver.queue_diagnostics('plan', BAD_REQUEST)

    reports = run_case({'steps': [{'config': CONFIG, 'expectError': 'invalid length'}]})

    assert reports[0].failed
    assert reports[0].diagnostics == [BAD_REQUEST]
    assert 'apply' not in driver.calls


def test_expected_error_without_diagnostics(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Match the message of an engine failure carrying no diagnostics."""
    driver.queue_failure('apply', EngineError('Engine exited with status 1'))

    reports = run_case({'steps': [{'config': CONFIG, 'expectError': 'status 1'}]})

    assert reports[0].failed
    assert reports[0].diagnostics[0].summary == 'Engine exited with status 1'


def test_expected_error_never_happens(run_case: RunCase) -> None:
    """Fail a step expecting an error that does not happen."""
    with pytest.raises(ExpectationMismatch, match='no error occurred'):
        run_case({'steps': [{'config': CONFIG, 'expectError': 'invalid length'}]})


def test_engine_failure(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Abort the case on an engine failure nobody expected."""
    driver.queue_failure('init', EngineError('Engine exited with status 1'))

    with pytest.raises(EngineError, match='status 1') as error:
        run_case({'steps': [{'config': CONFIG, 'title': 'Create password'}]})

    assert error.value.context is not None
    assert error.value.context['step_num'] == 0
    assert 'title: Create password' in str(error.value)


def test_error_check_ignores_error(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Let the error check downgrade an engine error."""
    driver.queue_failure('apply', EngineError('Engine exited with status 1'))

    reports = run_case({
        'errorCheck': 'tests.examples.providers.ignore_all',
        'steps': [{'config': CONFIG}, {'config': LONGER_CONFIG}],
    })

    assert reports[0].downgraded
    assert not reports[0].failed
    assert not reports[1].downgraded
    assert driver.configs == [CONFIG, LONGER_CONFIG]


def test_error_check_ignores_error_diagnostics(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Carry on after an error diagnostic the error check ignores."""
    driver.queue_diagnostics('apply', BAD_REQUEST)

    reports = run_case({
        'errorCheck': 'tests.examples.providers.ignore_all',
        'steps': [{'config': CONFIG}, {'config': LONGER_CONFIG}],
    })

    assert reports[0].downgraded
    assert reports[0].diagnostics == [BAD_REQUEST]
    assert reports[0].plan is None
    assert not reports[1].downgraded
    assert reports[1].plan is not None
    assert not reports[1].plan.has_changes
    assert driver.calls.count('apply') == 2


def test_error_check_replaces_error(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Fail with the error returned by the error check."""
    def replace(error: Exception) -> Exception:
        return RuntimeError(f'replaced: {error}')

    driver.queue_diagnostics('plan', BAD_REQUEST)

    with pytest.raises(RuntimeError, match='replaced') as error:
        run_case({'errorCheck': replace, 'steps': [{'config': CONFIG, 'expectError': 'invalid'}]})

    assert isinstance(error.value.__cause__, EngineError)
    assert driver.calls[-1] == 'destroy'


def test_taint_replaces_resource(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Replace a tainted resource on the next apply."""
    reports = run_case({
        'steps': [
            {'config': CONFIG},
            {'config': CONFIG, 'taint': ['random_password.test']},
        ],
    })

    assert reports[1].plan is not None
    assert not reports[1].plan.has_changes
    assert driver.calls.count('taint') == 1
    assert driver.calls.index('taint') < len(driver.calls) - 1


def test_taint_missing_resource(run_case: RunCase) -> None:
    """Fail a step tainting a resource that does not exist."""
    with pytest.raises(UnexpectedDiagnostic, match='No such resource instance'):
        run_case({'steps': [{'config': CONFIG, 'taint': ['random_password.test']}]})


def test_plan_only(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Plan without applying."""
    reports = run_case({'steps': [{'config': CONFIG, 'planOnly': True, 'expectNonEmptyPlan': True}]})

    assert reports[0].mode == 'plan-only'
    assert reports[0].plan is not None
    assert reports[0].plan.has_changes
    assert 'apply' not in driver.calls


def test_plan_only_not_empty(run_case: RunCase) -> None:
    """Fail a plan-only step proposing unexpected changes."""
    with pytest.raises(ConvergenceViolation, match='random_password.test: create'):
        run_case({'steps': [{'config': CONFIG, 'planOnly': True}]})


def test_refresh_detects_drift(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Refresh remote drift into the state and plan to undo it."""
    def drift(clock: 'Clock') -> None:  # noqa: ARG001
        driver.remote['random_password.test']['length'] = '16'

    reports = run_case({
        'steps': [
            {'config': CONFIG},
            {
                'refreshState': True,
                'expectNonEmptyPlan': True,
                'preConfig': drift,
                'check': [_length_check('16')],
            },
        ],
    })

    assert reports[1].mode == 'refresh-only'
    assert reports[1].config == CONFIG
    assert reports[1].plan is not None
    assert reports[1].plan.has_changes


def test_refresh_drift_not_expected(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Fail a refresh step whose drift leaves the plan non-empty."""
    def drift(clock: 'Clock') -> None:  # noqa: ARG001
        driver.remote['random_password.test']['length'] = '16'

    with pytest.raises(ConvergenceViolation, match='random_password.test: update') as error:
        run_case({'steps': [{'config': CONFIG}, {'refreshState': True, 'preConfig': drift}]})

    assert 'on step 2' in str(error.value)
    assert driver.calls[-1] == 'destroy'


def test_refresh_converges(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Plan again after a refresh without drift."""
    reports = run_case({'steps': [{'config': CONFIG}, {'refreshState': True}]})

    assert reports[1].plan is not None
    assert not reports[1].plan.has_changes
    assert driver.calls[-4:] == ['init', 'refresh', 'plan', 'destroy']

def test_destroy_step(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Destroy everything and verify with a destroy plan."""
    reports = run_case({'steps': [{'config': CONFIG}, {'config': CONFIG, 'destroy': True}]})

    assert reports[1].mode == 'destroy'
    assert reports[1].plan is not None
    assert not reports[1].plan.has_changes
    assert driver.calls.count('plan-destroy') == 2


def test_state_check_failure(run_case: RunCase) -> None:
    """Report a failing state check with its position and step."""
    with pytest.raises(AssertionError, match='check 1/1 error') as error:
        run_case({
            'steps': [{
                'title': 'Password length',
                'config': CONFIG,
                'check': [_length_check('13')],
            }],
        })

    message = str(error.value)
    assert message.startswith('Check failed (Password length)')
    assert "expected '13', got '12'" in message
    assert 'on step 1' in message


def test_pre_config_receives_clock(run_case: RunCase) -> None:
    """Run the pre-configuration hook with the runner clock."""
    moments = []

    run_case({'steps': [{'config': CONFIG, 'preConfig': lambda clock: moments.append(clock.now())}]})

    assert moments == [datetime(2024, 1, 1, tzinfo=UTC)]


def test_cleanup_skipped_before_configuration(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Destroy nothing when no step got configured."""
    def explode(clock: 'Clock') -> None:  # noqa: ARG001
        raise RuntimeError('not ready')

    with pytest.raises(RuntimeError, match='not ready'):
        run_case({'steps': [{'config': CONFIG, 'preConfig': explode}]})

    assert driver.calls == []


def test_cleanup_failure(run_case: RunCase, driver: 'FakeDriver',
                         caplog: pytest.LogCaptureFixture) -> None:
    """Warn about a failed destroy without failing the case."""
    driver.queue_failure('destroy', EngineError('State lock held'))

    with (
        caplog.at_level(logging.WARNING, logger='pytest_acctest.runner'),
        pytest.warns(CleanupWarning, match='State lock held'),
    ):
        reports = run_case({'steps': [{'config': CONFIG}]})

    assert len(reports) == 1
    assert 'Destroy after case failed' in caplog.text


def test_cleanup_failure_keeps_step_error(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Keep the error aborting the case when the destroy fails too."""
    driver.queue_failure('destroy', EngineError('State lock held'))

    with pytest.warns(CleanupWarning), pytest.raises(ConvergenceViolation):
        run_case({'steps': [{'config': DRIFT_CONFIG}]})


def test_cleanup_errors(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Warn about error diagnostics reported by the destroy."""
    driver.queue_diagnostics('destroy', Diagnostic(severity='error', summary='Dependency violation'))

    with pytest.warns(CleanupWarning, match='Dependency violation'):
        run_case({'steps': [{'config': CONFIG}]})


def test_providers_restart_every_step(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Start in-process providers and reinitialise on every step."""
    run_case({
        'providers': {'fake': {'kind': 'protocol6', 'factory': 'tests.examples.providers.serve_fake'}},
        'steps': [
            {'config': CONFIG},
            {'config': CONFIG, 'providers': {'random': {'source': 'hashicorp/random', 'version': '3.6.0'}}},
        ],
    })

    assert providers.STARTED == ['fake', 'fake']
    assert [sorted(info or {}) for info in driver.reattach_history] == [['fake'], ['fake']]
    assert driver.calls.count('init') == 2

    first, second = driver.configs
    assert first == CONFIG
    assert 'hashicorp/random' in second
    assert second.endswith(CONFIG)


def test_providers_without_factories(run_case: RunCase, driver: 'FakeDriver') -> None:
    """Clear reattach data when no in-process provider is declared."""
    run_case({'providers': {'random': {}}, 'steps': [{'config': CONFIG}]})

    assert driver.reattach_history == [None]
    assert driver.configs == [f'provider "random" {{}}\n{CONFIG}']


def test_persist_working_dir(driver: 'FakeDriver', fs: 'FakeFilesystem') -> None:  # noqa: ARG001
    """Copy the artifacts of every step into numbered directories."""
    case = Case.model_validate({'steps': [{'config': CONFIG}, {'config': LONGER_CONFIG}]})
    persist_dir = Path('/persist')

    CaseRunner(case, driver, persist_dir=persist_dir).run()

    assert (persist_dir / '1' / CONFIG_FILENAME).read_text(encoding='utf-8') == CONFIG
    assert (persist_dir / '2' / CONFIG_FILENAME).read_text(encoding='utf-8') == LONGER_CONFIG
    assert not (persist_dir / '1' / PLAN_JSON_FILENAME).exists()
    assert (persist_dir / '2' / PLAN_JSON_FILENAME).exists()

    state = json.loads((persist_dir / '2' / STATE_FILENAME).read_text(encoding='utf-8'))
    assert state['resources'][0]['address'] == 'random_password.test'
    assert state['resources'][0]['instance']['attributes']['length'] == '20'


def test_run_step_report(driver: 'FakeDriver') -> None:
    """Execute steps one at a time without cleanup."""
    case = Case.model_validate({'steps': [{'config': CONFIG}]})
    runner = CaseRunner(case, driver)

    report = runner.run_step(case.steps[0], step_num=0)

    assert report == StepReport(step_num=0, mode='apply', config=CONFIG, plan=report.plan)
    assert 'random_password.test' in driver.state()
    assert runner.configured
