"""Step definitions.

A step is one unit of declared configuration and expectations executed
in order within a case. Its action flags select a single execution mode:

- `apply` (default): plan and apply the configuration;
- `plan-only`: plan the configuration without applying it;
- `refresh-only`: refresh the recorded state, no new configuration;
- `import-probe`: import an existing object instead of applying;
- `destroy`: plan and apply the destruction of all objects.
"""

from re import Pattern
from typing import Literal, Self

from pydantic import Field, ImportString, model_validator

from pytest_acctest.models import DescribedMixin, SchemaModel
from pytest_acctest.names import ResourceAddress  # noqa: TC001

from .checks import ImportCheck, StateCheck  # noqa: TC001
from .providers import ProvidersMixin

type StepMode = Literal['apply', 'plan-only', 'refresh-only', 'import-probe', 'destroy']


class ImportSpec(SchemaModel):
    """Parameters of the import sub-phase of a step."""

    resource_name: ResourceAddress = Field(
        title='Resource address',
        description='Address the object is imported under.',
    )

    id: str | None = Field(
        default=None,
        title='Import id',
        description='Literal import identifier.',
    )

    id_func: ImportString | None = Field(
        default=None,
        title='Import id function',
        description=(
            'Callable (or dotted import path of one) deriving the import '
            'identifier from the state recorded before the import.'
        ),
    )

    id_attribute: str = Field(
        default='id',
        title='Import id attribute',
        description=(
            'Attribute of the resource recorded under `resourceName` used '
            'as the import identifier when no literal id or function is set.'
        ),
    )

    id_prefix: str = Field(
        default='',
        title='Import id prefix',
        description='Prefix prepended to the derived import identifier.',
    )

    persist: bool = Field(
        default=False,
        title='Persist flag',
        description=(
            'Keep the imported state for subsequent steps. Otherwise the '
            'import is read-only and the prior state carries forward.'
        ),
    )

    verify: bool = Field(
        default=False,
        title='Verify flag',
        description=(
            'Compare every imported instance with the instance recorded '
            'before the import, attribute by attribute.'
        ),
    )

    verify_ignore: list[str] = Field(
        default_factory=list,
        title='Ignored attributes',
        description=(
            'Attributes skipped by verification. Entries ending with a dot '
            'ignore every attribute under that prefix.'
        ),
    )

    check: list[ImportCheck] = Field(
        default_factory=list,
        title='Import checks',
        description='Checks run against the imported instances, in order.',
    )

    @model_validator(mode='after')
    def check_id_source(self) -> Self:
        """Reject a literal id combined with an id function.

        Raises:
            ValueError: If both `id` and `idFunc` are set.
        """
        if self.id is not None and self.id_func is not None:
            raise ValueError('Specified both a literal import id and an import id function')

        return self


class Step(ProvidersMixin, DescribedMixin, SchemaModel):
    """A single step of a case."""

    #: Internal specification marker. Always `step` for steps.
    spec: Literal['step'] = 'step'

    config: str = Field(
        default='',
        title='Configuration',
        description='Configuration text applied by the step.',
    )

    plan_only: bool = Field(
        default=False,
        title='Plan-only flag',
        description='Plan the configuration and verify the plan without applying it.',
    )

    refresh_state: bool = Field(
        default=False,
        title='Refresh flag',
        description='Refresh the recorded state instead of applying a configuration.',
    )

    destroy: bool = Field(
        default=False,
        title='Destroy flag',
        description='Plan and apply the destruction of every recorded object.',
    )

    taint: list[ResourceAddress] = Field(
        default_factory=list,
        title='Tainted resources',
        description='Resources forced to be replaced by this step.',
    )

    import_state: ImportSpec | None = Field(
        default=None,
        title='Import',
        description='Import an existing object instead of applying the configuration.',
    )

    skip_provider_block: bool = Field(
        default=False,
        title='Skip provider blocks',
        description='Do not synthesize empty provider blocks for external providers.',
    )

    expect_error: Pattern[str] | None = Field(
        default=None,
        title='Expected error',
        description=(
            'Regular expression every error diagnostic of the step must '
            'match. The step fails if no error occurs.'
        ),
    )

    expect_warning: Pattern[str] | None = Field(
        default=None,
        title='Expected warning',
        description='Regular expression at least one warning diagnostic must match.',
    )

    expect_non_empty_plan: bool = Field(
        default=False,
        title='Non-empty plan flag',
        description='Require the plan issued after the action to propose changes.',
    )

    check: list[StateCheck] = Field(
        default_factory=list,
        title='State checks',
        description='Checks run against the state after the action, in order.',
    )

    pre_config: ImportString | None = Field(
        default=None,
        title='Pre-configuration hook',
        description=(
            'Callable (or dotted import path of one) run before the step '
            'is configured. Receives the runner clock.'
        ),
    )

    @model_validator(mode='after')
    def check_modes(self) -> Self:
        """Validate the combination of action flags.

        Raises:
            ValueError: If mutually exclusive flags are combined or the
                step has nothing to do.
        """
        if self.plan_only and self.destroy:
            raise ValueError('Plan-only steps can not destroy')

        if self.refresh_state:
            if self.config:
                raise ValueError('Refresh steps can not set a configuration')
            if self.import_state or self.destroy or self.plan_only or self.taint:
                raise ValueError('Refresh steps can not be combined with other actions')

        if self.import_state and (self.plan_only or self.destroy):
            raise ValueError('Import steps can not be combined with plan-only or destroy')

        if self.import_state and self.check:
            raise ValueError('Import steps check the imported objects with importState.check')

        if self.taint and (self.import_state or self.destroy):
            raise ValueError('Only apply and plan-only steps can taint resources')

        if not self.config and not self.refresh_state and not self.import_state:
            raise ValueError('Step must set a configuration, refresh the state, or import')

        return self

    @property
    def mode(self) -> StepMode:
        """Execution mode selected by the action flags."""
        if self.refresh_state:
            return 'refresh-only'

        if self.import_state is not None:
            return 'import-probe'

        if self.plan_only:
            return 'plan-only'

        if self.destroy:
            return 'destroy'

        return 'apply'
