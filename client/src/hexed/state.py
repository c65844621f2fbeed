"""Local player state owned by the session director."""

import time
from collections import deque
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any

from .types import Direction, HexCoordinate

EVENT_LOG_SIZE = 100
POSITION_HISTORY_SIZE = 50


class SessionPhase(str, Enum):
    DISCONNECTED = "disconnected"
    INITIALIZING = "initializing"
    NO_ACTIVE_GAME = "no_active_game"
    ACTIVE = "active"
    DEAD = "dead"


@dataclass
class EventLogEntry:
    """An applied event, kept for display."""

    kind: str
    game_id: int | None
    payload: dict[str, Any]
    timestamp_ms: int = field(default_factory=lambda: int(time.time() * 1000))


@dataclass
class PlayerState:
    """The client's view of the connected player's game.

    Only the session director mutates this. ``optimistic_position`` is a
    prediction layered over the canonical ``position`` while a move is pending.
    """

    address: str | None = None
    game_id: int | None = None
    position: HexCoordinate | None = None
    optimistic_position: HexCoordinate | None = None
    hp: int = 0
    max_hp: int = 0
    xp: int = 0
    can_move: bool = False
    last_direction: Direction | None = None
    occupied_neighbors_mask: int = 0
    is_spawned: bool = False
    is_dead: bool = False
    death_xp: int | None = None
    death_reason: str | None = None
    phase: SessionPhase = SessionPhase.DISCONNECTED
    event_log: deque[EventLogEntry] = field(default_factory=lambda: deque(maxlen=EVENT_LOG_SIZE))
    position_history: deque[HexCoordinate] = field(
        default_factory=lambda: deque(maxlen=POSITION_HISTORY_SIZE)
    )

    @property
    def effective_position(self) -> HexCoordinate | None:
        """Position to display: the pending prediction if any, else canonical."""
        if self.optimistic_position is not None:
            return self.optimistic_position
        return self.position

    def occupied_neighbors(self) -> list[Direction]:
        return [d for d in Direction if self.occupied_neighbors_mask & (1 << d)]

    def set_position(self, position: HexCoordinate) -> None:
        if position != self.position:
            self.position_history.append(position)
        self.position = position

    def set_stats(self, hp: int, max_hp: int, xp: int) -> None:
        self.max_hp = max(0, max_hp)
        self.hp = min(max(0, hp), self.max_hp)
        self.xp = max(0, xp)

    def mark_dead(self, xp: int, reason: str) -> None:
        self.is_spawned = True
        self.is_dead = True
        self.hp = 0
        self.can_move = False
        self.optimistic_position = None
        self.death_xp = xp
        self.death_reason = reason
        self.phase = SessionPhase.DEAD

    def log_event(self, kind: str, game_id: int | None, payload: dict[str, Any]) -> None:
        self.event_log.appendleft(EventLogEntry(kind=kind, game_id=game_id, payload=payload))

    def reset(self, keep_address: bool = True) -> None:
        """Return to an unspawned state."""
        address = self.address if keep_address else None
        fresh = PlayerState(address=address)
        for f in fields(self):
            setattr(self, f.name, getattr(fresh, f.name))

    def snapshot(self) -> dict[str, Any]:
        """JSON-serialisable view for UI consumers."""
        effective = self.effective_position
        return {
            "address": self.address,
            "game_id": self.game_id,
            "phase": self.phase.value,
            "position": _coord(self.position),
            "optimistic_position": _coord(self.optimistic_position),
            "effective_position": _coord(effective),
            "hp": self.hp,
            "max_hp": self.max_hp,
            "xp": self.xp,
            "can_move": self.can_move,
            "last_direction": self.last_direction.label if self.last_direction is not None else None,
            "occupied_neighbors": [d.label for d in self.occupied_neighbors()],
            "is_spawned": self.is_spawned,
            "is_dead": self.is_dead,
            "death_xp": self.death_xp,
            "death_reason": self.death_reason,
        }


def _coord(pos: HexCoordinate | None) -> dict[str, int] | None:
    if pos is None:
        return None
    return {"q": pos.q, "r": pos.r}
