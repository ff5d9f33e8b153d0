"""
clock.py - Epoch sources for lock-period checks

Classes:
- Clock: Protocol defining the epoch interface
- EpochClock: Manually advanced epoch counter (hosts and tests)
- ScheduleClock: Replays a fixed sequence of epochs, one per read
"""

from typing import List, Protocol, Sequence, runtime_checkable


@runtime_checkable
class Clock(Protocol):
    """
    Protocol for epoch sources.

    now() must be monotonically non-decreasing.
    """

    def now(self) -> int:
        """Current epoch."""
        ...


class EpochClock:
    """
    Epoch counter advanced by the host.

    Time can only move forward, never backward.
    """

    def __init__(self, initial_epoch: int = 0):
        if initial_epoch < 0:
            raise ValueError(f"initial_epoch cannot be negative, got {initial_epoch}")
        self._epoch = initial_epoch

    def now(self) -> int:
        return self._epoch

    def advance_to(self, epoch: int) -> None:
        """
        Raises:
            ValueError: if epoch is before the current epoch
        """
        if epoch < self._epoch:
            raise ValueError(f"Cannot move time backwards: {epoch} < {self._epoch}")
        self._epoch = epoch

    def advance(self, epochs: int = 1) -> int:
        """Move forward by a number of epochs and return the new epoch."""
        if epochs < 0:
            raise ValueError(f"Cannot move time backwards by {epochs} epochs")
        self._epoch += epochs
        return self._epoch

    def __repr__(self):
        return f"EpochClock(epoch={self._epoch})"


class ScheduleClock:
    """
    Clock that returns the next epoch of a schedule on every read.

    The last epoch repeats once the schedule is exhausted. A LendingEngine
    reads its clock once per operation call, rejected calls included, and
    does not rewind it on rollback: a rejected call consumes one epoch.
    """

    def __init__(self, epochs: Sequence[int]):
        if not epochs:
            raise ValueError("ScheduleClock needs at least one epoch")
        if any(later < earlier for earlier, later in zip(epochs, epochs[1:])):
            raise ValueError("ScheduleClock epochs must be non-decreasing")
        self._epochs: List[int] = list(epochs)
        self._index = 0

    def now(self) -> int:
        epoch = self._epochs[self._index]
        if self._index < len(self._epochs) - 1:
            self._index += 1
        return epoch

    def __repr__(self):
        return f"ScheduleClock({len(self._epochs)} epochs, at={self._index})"
