"""Engine driver contract.

A driver owns one working directory and executes engine actions against
it. The runner is the only caller and uses a driver from a single thread;
drivers are not required to be thread-safe.

Calls are blocking. A call that completes returns a result carrying the
engine diagnostics; a call that fails raises `EngineError`, with the error
diagnostics attached when the engine reported any.
"""

from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Mapping
    from types import TracebackType
    from typing import Self

if TYPE_CHECKING:
    from .results import ActionResult, ImportResult, PlanResult, State


class Driver(ABC):
    """Abstract engine driver bound to one working directory."""

    @abstractmethod
    def set_config(self, config: str) -> None:
        """Persist a new configuration and invalidate any saved plan."""

    @abstractmethod
    def set_reattach_info(self, info: 'Mapping[str, Any] | None') -> None:
        """Set (or clear with `None`) in-process provider connection data.

        The mapping is keyed by provider name and is handed to the engine
        untouched on every following call.
        """

    @abstractmethod
    def init(self) -> 'ActionResult':
        """Prepare the working directory for the configured providers."""

    @abstractmethod
    def create_plan(self) -> 'PlanResult':
        """Produce a saved plan consumed by the next `apply`."""

    @abstractmethod
    def create_destroy_plan(self) -> 'PlanResult':
        """Produce a saved destroy plan consumed by the next `apply`."""

    @abstractmethod
    def apply(self) -> 'ActionResult':
        """Apply the saved plan if present, otherwise plan and apply directly."""

    @abstractmethod
    def refresh(self) -> 'ActionResult':
        """Reconcile the recorded state with real objects."""

    @abstractmethod
    def import_state(self, address: str, import_id: str, *,
                     persist: bool = False) -> 'ImportResult':
        """Import an existing object under an address.

        Args:
            address: Resource address to import into.
            import_id: Engine-specific identifier of the object.
            persist: Whether the imported state replaces the working
                directory state. When false the import is performed
                against a scratch copy and the state is left untouched.

        Returns:
            Result carrying the imported instance snapshots.
        """

    @abstractmethod
    def taint(self, address: str) -> 'ActionResult':
        """Mark a resource instance for replacement on the next plan."""

    @abstractmethod
    def destroy(self) -> 'ActionResult':
        """Tear down every recorded object, ignoring any saved plan."""

    @abstractmethod
    def state(self) -> 'State':
        """Return the recorded state."""

    @abstractmethod
    def saved_plan(self) -> 'PlanResult | None':
        """Return the saved plan, or `None` if there is none."""

    @abstractmethod
    def schemas(self) -> dict[str, Any]:
        """Return the provider schemas as reported by the engine."""

    @abstractmethod
    def clear_state(self) -> None:
        """Remove the persisted state, leaving remote objects dangling."""

    @abstractmethod
    def clear_plan(self) -> None:
        """Remove the saved plan."""

    def close(self) -> None:  # noqa: B027
        """Release the working directory."""

    def __enter__(self) -> 'Self':
        """Enter the driver context."""
        return self

    def __exit__(self, exc_type: type[BaseException] | None,
                 exc_value: BaseException | None,
                 traceback: 'TracebackType | None') -> None:
        """Close the driver on context exit."""
        self.close()
