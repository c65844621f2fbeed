"""Tests for optimistic move prediction."""

import pytest

from hexed.hexgrid import GridBounds
from hexed.optimistic import OptimisticMoveController
from hexed.state import PlayerState
from hexed.types import Direction, HexCoordinate


@pytest.fixture
def state() -> PlayerState:
    return PlayerState(position=HexCoordinate(q=0, r=0))


@pytest.fixture
def controller(state: PlayerState) -> OptimisticMoveController:
    return OptimisticMoveController(state, GridBounds(width=5, height=5))


class TestPredict:
    """Tests for move prediction."""

    def test_predicts_neighbor(self, controller: OptimisticMoveController):
        assert controller.predict(Direction.EAST) == HexCoordinate(q=1, r=0)
        assert controller.predict(Direction.SOUTHEAST) == HexCoordinate(q=0, r=1)

    def test_off_grid_is_none(self, controller: OptimisticMoveController):
        assert controller.predict(Direction.WEST) is None
        assert controller.predict(Direction.NORTHEAST) is None

    def test_no_position(self):
        controller = OptimisticMoveController(PlayerState(), GridBounds())
        assert controller.predict(Direction.EAST) is None

    def test_predicts_from_pending(self, controller: OptimisticMoveController):
        controller.begin(Direction.EAST)
        assert controller.predict(Direction.EAST) == HexCoordinate(q=2, r=0)


class TestLifecycle:
    """Tests for begin, rollback and canonical confirmation."""

    def test_begin_sets_effective_position(self, controller: OptimisticMoveController, state: PlayerState):
        predicted = controller.begin(Direction.EAST)
        assert predicted == HexCoordinate(q=1, r=0)
        assert controller.pending == predicted
        assert state.effective_position == predicted
        assert state.position == HexCoordinate(q=0, r=0)

    def test_begin_off_grid_leaves_state(self, controller: OptimisticMoveController):
        assert controller.begin(Direction.WEST) is None
        assert controller.pending is None

    def test_rollback_restores_canonical(self, controller: OptimisticMoveController, state: PlayerState):
        controller.begin(Direction.EAST)
        controller.rollback()
        assert controller.pending is None
        assert state.effective_position == HexCoordinate(q=0, r=0)

    def test_rollback_without_pending_is_noop(self, controller: OptimisticMoveController):
        controller.rollback()
        assert controller.pending is None

    def test_stale_read_keeps_prediction(self, controller: OptimisticMoveController):
        controller.begin(Direction.EAST)
        assert controller.observe_canonical(HexCoordinate(q=0, r=0)) is False
        assert controller.pending == HexCoordinate(q=1, r=0)

    def test_matching_read_clears_prediction(self, controller: OptimisticMoveController):
        controller.begin(Direction.EAST)
        assert controller.observe_canonical(HexCoordinate(q=1, r=0)) is True
        assert controller.pending is None
