"""Engine drivers.

A driver is the boundary between the runner and the provisioning engine:
it executes init, plan, apply, refresh, import and destroy against one
working directory and reports structured results.
"""

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
from .terraform import TerraformDriver

__all__ = (
    'ActionResult',
    'Diagnostic',
    'Driver',
    'ImportResult',
    'InstanceState',
    'PlanResult',
    'ResourceChange',
    'ResourceState',
    'State',
    'TerraformDriver',
)
