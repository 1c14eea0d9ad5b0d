"""Runtime settings resolved from the environment."""

from pathlib import Path

from pydantic import Field
from pydantic_settings import SettingsConfigDict

from pytest_acctest.models import SettingsModel


class AcceptanceSettings(SettingsModel):
    """Settings controlling how acceptance cases reach the engine.

    Every field is read from a `TF_ACC_`-prefixed environment variable,
    except `enabled`, which is the bare `TF_ACC` switch.
    """

    model_config = SettingsConfigDict(
        env_prefix='TF_ACC_',
        populate_by_name=True,
        frozen=True,
        extra='ignore',
    )

    enabled: bool = Field(
        default=False,
        validation_alias='TF_ACC',
        description='Run acceptance cases; they are skipped otherwise.',
    )

    terraform_path: str = Field(
        default='terraform',
        description='Engine executable name or path.',
    )

    persist_working_dir: Path | None = Field(
        default=None,
        description=(
            'Directory receiving per-step copies of the rendered '
            'configuration, state and plan.'
        ),
    )

    log_path: Path | None = Field(
        default=None,
        description='File the engine writes its own log to.',
    )

    temp_dir: Path | None = Field(
        default=None,
        description='Parent directory for temporary working directories.',
    )
