"""Optimistic move prediction and rollback."""

import structlog

from .hexgrid import GridBounds, neighbor
from .state import PlayerState
from .types import Direction, HexCoordinate

logger = structlog.get_logger()


class OptimisticMoveController:
    """Holds at most one predicted position on top of the canonical one.

    The override is cleared either by :meth:`rollback` or once a canonical read
    reports the predicted position. A stale read that still shows the old
    position leaves the prediction in place.
    """

    def __init__(self, state: PlayerState, bounds: GridBounds):
        self.state = state
        self.bounds = bounds

    @property
    def pending(self) -> HexCoordinate | None:
        return self.state.optimistic_position

    def predict(self, direction: Direction) -> HexCoordinate | None:
        """Where a move in ``direction`` would land, or None if off the grid."""
        current = self.state.effective_position
        if current is None:
            return None
        target = neighbor(current, direction)
        if not self.bounds.contains(target):
            return None
        return target

    def begin(self, direction: Direction) -> HexCoordinate | None:
        predicted = self.predict(direction)
        if predicted is None:
            return None
        self.state.optimistic_position = predicted
        logger.debug("optimistic_begin", direction=direction.label, q=predicted.q, r=predicted.r)
        return predicted

    def rollback(self) -> None:
        if self.state.optimistic_position is None:
            return
        logger.debug("optimistic_rollback", q=self.state.optimistic_position.q, r=self.state.optimistic_position.r)
        self.state.optimistic_position = None

    def observe_canonical(self, position: HexCoordinate) -> bool:
        """Clear the override if ``position`` matches it. Returns True if cleared."""
        if self.state.optimistic_position is None or position != self.state.optimistic_position:
            return False
        self.state.optimistic_position = None
        logger.debug("optimistic_confirmed", q=position.q, r=position.r)
        return True
