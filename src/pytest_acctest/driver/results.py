"""Structured results produced by engine drivers.

Results are immutable and produced fresh for every driver call; the
runner never caches them beyond the step that produced them, except for
the pre-import state kept for import verification.
"""

from typing import Literal

from pydantic import Field

from pytest_acctest.models import ResultModel

type Severity = Literal['error', 'warning']

#: Change actions as reported by the engine for a single resource.
type Action = Literal['no-op', 'create', 'read', 'update', 'delete', 'forget']


class Diagnostic(ResultModel):
    """Structured error or warning message emitted by the engine."""

    severity: Severity
    summary: str = ''
    detail: str = ''

    @property
    def text(self) -> str:
        """Return summary and detail joined the way the engine prints them."""
        if self.detail:
            return f'{self.summary}: {self.detail}'

        return self.summary

    def __str__(self) -> str:
        """String representation."""
        return f'{self.severity}: {self.text}'


class ActionResult(ResultModel):
    """Outcome of a driver call that completed."""

    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def errors(self) -> tuple[Diagnostic, ...]:
        """Error diagnostics of this result."""
        return tuple(item for item in self.diagnostics if item.severity == 'error')

    @property
    def warnings(self) -> tuple[Diagnostic, ...]:
        """Warning diagnostics of this result."""
        return tuple(item for item in self.diagnostics if item.severity == 'warning')


class ResourceChange(ResultModel):
    """Planned change of one resource instance."""

    address: str
    actions: tuple[Action, ...] = ('no-op',)

    @property
    def is_replacement(self) -> bool:
        """Whether the change destroys and recreates the instance."""
        return 'delete' in self.actions and 'create' in self.actions

    @property
    def is_noop(self) -> bool:
        """Whether the change leaves the instance untouched."""
        return all(action in {'no-op', 'read'} for action in self.actions)


class PlanResult(ActionResult):
    """Outcome of a plan call."""

    has_changes: bool = False
    changes: tuple[ResourceChange, ...] = ()

    def change_for(self, address: str) -> ResourceChange | None:
        """Return the planned change for a resource address, if any."""
        for change in self.changes:
            if change.address == address:
                return change

        return None


class InstanceState(ResultModel):
    """Flattened attributes of a single resource instance."""

    id: str = ''
    address: str | None = None
    type: str | None = None
    attributes: dict[str, str] = Field(default_factory=dict)


class ResourceState(ResultModel):
    """A resource recorded in the state with its primary instance."""

    address: str
    mode: Literal['managed', 'data'] = 'managed'
    type: str
    name: str
    provider: str = ''
    instance: InstanceState


class State(ResultModel):
    """Snapshot of the recorded state of a working directory."""

    resources: tuple[ResourceState, ...] = ()

    def get(self, address: str) -> ResourceState | None:
        """Return the resource recorded under an address, if any."""
        for resource in self.resources:
            if resource.address == address:
                return resource

        return None

    def __contains__(self, address: object) -> bool:
        """Whether a resource is recorded under the address."""
        return isinstance(address, str) and self.get(address) is not None

    @property
    def instances(self) -> list[InstanceState]:
        """Primary instances of all managed resources."""
        return [
            resource.instance
            for resource in self.resources
            if resource.mode == 'managed'
        ]


class ImportResult(ActionResult):
    """Outcome of an import call."""

    instances: tuple[InstanceState, ...] = ()
