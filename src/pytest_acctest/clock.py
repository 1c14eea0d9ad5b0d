"""Clock capability passed to time-dependent hooks and fixtures.

The runner never consults the wall clock directly. A `Clock` instance is
injected into the runner and handed to every step `pre_config` hook, so
fixtures that depend on the current time can be driven deterministically.
"""

from datetime import UTC, datetime
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from datetime import timedelta


@runtime_checkable
class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Return the current moment as an aware datetime."""
        ...  # pragma: no cover


class SystemClock:
    """Clock backed by the system time."""

    def now(self) -> datetime:
        """Return the current UTC time."""
        return datetime.now(UTC)


class FrozenClock:
    """Clock that only moves when told to.

    Example:
        >>> clock = FrozenClock(datetime(2024, 1, 1, tzinfo=UTC))
        >>> clock.advance(timedelta(hours=2))
    """

    def __init__(self, moment: datetime | None = None) -> None:
        """Initialize the clock.

        Args:
            moment: Initial time; the current UTC time if omitted.
        """
        self._moment = moment or datetime.now(UTC)

    def now(self) -> datetime:
        """Return the frozen moment."""
        return self._moment

    def set(self, moment: datetime) -> None:
        """Move the clock to an absolute moment."""
        self._moment = moment

    def advance(self, delta: 'timedelta') -> None:
        """Move the clock forward (or backward for negative deltas)."""
        self._moment += delta
