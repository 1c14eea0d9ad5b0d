"""Declarative schema for acceptance cases.

Defines immutable Pydantic models describing cases, steps, provider
declarations and check predicates. The models form the contract consumed
by the runner, the pytest plugin and the command-line tools.
"""

from .cases import Case, CaseHeader
from .checks import (
    AttributeCheck,
    FunctionCheck,
    ImportCheck,
    InstanceAttributeCheck,
    StateCheck,
    run_checks,
)
from .providers import (
    ExternalProvider,
    Protocol5Factory,
    Protocol6Factory,
    ProviderDeclaration,
    merge_providers,
)
from .steps import ImportSpec, Step, StepMode

__all__ = (
    'AttributeCheck',
    'Case',
    'CaseHeader',
    'ExternalProvider',
    'FunctionCheck',
    'ImportCheck',
    'ImportSpec',
    'InstanceAttributeCheck',
    'Protocol5Factory',
    'Protocol6Factory',
    'ProviderDeclaration',
    'StateCheck',
    'Step',
    'StepMode',
    'merge_providers',
    'run_checks',
)
