"""Tests for runtime settings and clocks."""

import os
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING

import pydantic
import pytest

from pytest_acctest.clock import Clock, FrozenClock, SystemClock
from pytest_acctest.settings import AcceptanceSettings

if TYPE_CHECKING:
    from pytest_mock import MockerFixture


def test_settings_defaults(mocker: 'MockerFixture') -> None:
    """Disable acceptance cases unless asked to run them."""
    mocker.patch.dict(os.environ, {}, clear=True)

    settings = AcceptanceSettings()

    assert not settings.enabled
    assert settings.terraform_path == 'terraform'
    assert settings.persist_working_dir is None
    assert settings.log_path is None


@pytest.mark.parametrize('value, enabled', (
    pytest.param('1', True, id='one'),
    pytest.param('true', True, id='true'),
    pytest.param('0', False, id='zero'),
))
def test_settings_from_environment(value: str, enabled: bool, mocker: 'MockerFixture') -> None:
    """Read the switch and prefixed variables from the environment."""
    mocker.patch.dict(os.environ, {
        'TF_ACC': value,
        'TF_ACC_TERRAFORM_PATH': '/opt/terraform',
        'TF_ACC_PERSIST_WORKING_DIR': '/var/acctest',
    }, clear=True)

    settings = AcceptanceSettings()

    assert settings.enabled is enabled
    assert settings.terraform_path == '/opt/terraform'
    assert settings.persist_working_dir == Path('/var/acctest')


def test_settings_are_frozen(mocker: 'MockerFixture') -> None:
    """Keep resolved settings immutable."""
    mocker.patch.dict(os.environ, {}, clear=True)

    settings = AcceptanceSettings()

    with pytest.raises(pydantic.ValidationError):
        settings.enabled = True  # type: ignore[misc]

    assert settings.model_copy(update={'enabled': True}).enabled


def test_frozen_clock() -> None:
    """Move a frozen clock only when told to."""
    clock = FrozenClock(datetime(2024, 1, 1, tzinfo=UTC))

    clock.advance(timedelta(hours=2))
    assert clock.now() == datetime(2024, 1, 1, 2, tzinfo=UTC)

    clock.set(datetime(2030, 6, 1, tzinfo=UTC))
    assert clock.now() == datetime(2030, 6, 1, tzinfo=UTC)


def test_system_clock() -> None:
    """Report the current aware time."""
    clock = SystemClock()

    assert isinstance(clock, Clock)
    assert clock.now().tzinfo is UTC
