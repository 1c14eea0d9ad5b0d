"""Case definitions.

A case is the full ordered sequence of steps plus case-wide defaults:
provider declarations shared by every step, an optional error-downgrade
hook and an optional working directory.
"""

from pathlib import Path  # noqa: TC003
from typing import Literal, Self

from pydantic import Field, ImportString, model_validator

from pytest_acctest.models import DescribedMixin, SchemaModel

from .providers import ProvidersMixin
from .steps import Step


class CaseHeader(ProvidersMixin, DescribedMixin, SchemaModel):
    """Case-wide settings, as written in the first document of a case file."""

    #: Internal specification marker. Always `case` for case headers.
    spec: Literal['case'] = 'case'

    error_check: ImportString | None = Field(
        default=None,
        title='Error-downgrade hook',
        description=(
            'Callable (or dotted import path of one) given first refusal on '
            'every engine error. Returning `None` lets the case continue.'
        ),
    )

    working_dir: Path | None = Field(
        default=None,
        title='Working directory',
        description='Directory used instead of a temporary working directory.',
    )


class Case(CaseHeader):
    """Executable case."""

    steps: list[Step] = Field(
        min_length=1,
        title='Steps',
        description='Steps executed in declared order.',
    )

    @model_validator(mode='after')
    def check_first_step(self) -> Self:
        """Reject a first step that depends on a previous one.

        Raises:
            ValueError: If the first step only refreshes the state.
        """
        if self.steps[0].refresh_state:
            raise ValueError('The first step can not only refresh the state')

        return self
