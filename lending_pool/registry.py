"""
registry.py - Position Registry

Stores the live Position records of a pool, keyed by position ID.

IDs come from a monotonic sequence and are never handed out twice, even after
the position they named has been removed:

    {prefix}:{sequence:012d}

Positions are frozen dataclasses; update() swaps in a new snapshot, so any
(id, Position) pair obtained from iterate() stays internally consistent while
the registry changes underneath it.
"""

from __future__ import annotations
from dataclasses import replace
from decimal import Decimal
from typing import Dict, List, Tuple

from .core import Position, PositionId, NotFound, pool_context


class PositionRegistry:
    """
    Mapping of position ID -> Position with unique, never-reused IDs.

    Not thread-safe on its own; LendingEngine serializes access.
    """

    def __init__(self, prefix: str = "ticket"):
        self.prefix = prefix
        self._positions: Dict[PositionId, Position] = {}
        self._next_sequence: int = 0

    def _generate_id(self) -> PositionId:
        sequence = self._next_sequence
        self._next_sequence += 1
        return f"{self.prefix}:{sequence:012d}"

    def create(self, collateral_amount: Decimal, opened_at: int) -> PositionId:
        """
        Insert a new position with no borrowed amount.

        Returns:
            The new position ID
        """
        position_id = self._generate_id()
        self._positions[position_id] = Position(
            id=position_id,
            collateral_amount=collateral_amount,
            borrowed_amount=Decimal("0"),
            opened_at=opened_at,
        )
        return position_id

    def get(self, position_id: PositionId) -> Position:
        """
        Raises:
            NotFound: if the ID is unknown or the position was removed
        """
        try:
            return self._positions[position_id]
        except KeyError:
            raise NotFound(f"Position {position_id} not found") from None

    def update(self, position_id: PositionId, new_state: Position) -> Position:
        """
        Replace the mutable fields of a position.

        Only collateral_amount and borrowed_amount are taken from new_state;
        id and opened_at always keep the values set by create().

        Returns:
            The stored Position

        Raises:
            NotFound: if the ID is unknown or the position was removed
        """
        current = self.get(position_id)
        updated = replace(
            current,
            collateral_amount=new_state.collateral_amount,
            borrowed_amount=new_state.borrowed_amount,
        )
        self._positions[position_id] = updated
        return updated

    def remove(self, position_id: PositionId) -> Position:
        """
        Destroy a position. Its ID is never reused.

        Raises:
            NotFound: if the ID is unknown or the position was removed
        """
        position = self.get(position_id)
        del self._positions[position_id]
        return position

    def iterate(self) -> List[Tuple[PositionId, Position]]:
        """
        Point-in-time snapshot of all live positions.

        Returns a list, not a view: callers may update or remove positions
        while consuming it.
        """
        return list(self._positions.items())

    def list_ids(self) -> List[PositionId]:
        return sorted(self._positions.keys())

    def total_collateral(self) -> Decimal:
        # Sorted for deterministic accumulation order
        with pool_context():
            return sum((self._positions[pid].collateral_amount for pid in self.list_ids()), Decimal("0"))

    def total_borrowed(self) -> Decimal:
        with pool_context():
            return sum((self._positions[pid].borrowed_amount for pid in self.list_ids()), Decimal("0"))

    def snapshot(self) -> Tuple[Dict[PositionId, Position], int]:
        return dict(self._positions), self._next_sequence

    def restore(self, saved: Tuple[Dict[PositionId, Position], int]) -> None:
        positions, next_sequence = saved
        self._positions = dict(positions)
        self._next_sequence = next_sequence

    def __contains__(self, position_id: object) -> bool:
        return position_id in self._positions

    def __len__(self) -> int:
        return len(self._positions)

    def __repr__(self) -> str:
        return f"PositionRegistry({len(self._positions)} live, next={self._next_sequence})"
