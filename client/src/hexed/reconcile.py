"""Periodic reconciliation against the ledger.

There is no push channel, so changes caused by other players (being attacked,
being killed) are only seen by re-reading the game state and comparing it with
the previous read. The comparison is a heuristic: it labels what probably
happened, it does not know.
"""

import asyncio
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

import structlog

from .config import ReconcileConfig
from .ledger import GameStateView
from .types import HexCoordinate

if TYPE_CHECKING:
    from .director import SessionDirector
    from .logging import SessionLogWriter

logger = structlog.get_logger()


class OccurrenceKind(str, Enum):
    RETALIATION = "retaliation"  # Lost hp without moving
    OVERPOWERED = "overpowered"  # Lost hp and was displaced
    MOVED = "moved"  # Displaced without losing hp
    DIED = "died"


@dataclass(frozen=True)
class Snapshot:
    hp: int
    position: HexCoordinate
    is_active: bool

    @classmethod
    def from_view(cls, view: GameStateView) -> "Snapshot":
        return cls(hp=view.hp, position=view.position, is_active=view.is_active)


@dataclass(frozen=True)
class Occurrence:
    """Something that changed between two reads."""

    kind: OccurrenceKind
    previous: Snapshot
    current: Snapshot

    @property
    def hp_delta(self) -> int:
        return self.current.hp - self.previous.hp

    def to_dict(self) -> dict:
        return {
            "kind": self.kind.value,
            "hp_delta": self.hp_delta,
            "previous": _snapshot_dict(self.previous),
            "current": _snapshot_dict(self.current),
        }


def _snapshot_dict(snap: Snapshot) -> dict:
    return {
        "hp": snap.hp,
        "position": {"q": snap.position.q, "r": snap.position.r},
        "is_active": snap.is_active,
    }


def classify(previous: Snapshot, current: Snapshot) -> list[Occurrence]:
    """Label the difference between two consecutive reads."""
    occurrences = []
    hp_dropped = current.hp < previous.hp
    moved = current.position != previous.position

    if hp_dropped and not moved:
        occurrences.append(Occurrence(OccurrenceKind.RETALIATION, previous, current))
    elif hp_dropped and moved:
        occurrences.append(Occurrence(OccurrenceKind.OVERPOWERED, previous, current))
    elif moved:
        occurrences.append(Occurrence(OccurrenceKind.MOVED, previous, current))

    if previous.is_active and not current.is_active and current.hp == 0:
        occurrences.append(Occurrence(OccurrenceKind.DIED, previous, current))
    return occurrences


class StateDiffer:
    """Keeps the last snapshot and diffs each new read against it.

    DIED is reported at most once until :meth:`reset`.
    """

    def __init__(self):
        self.snapshot: Snapshot | None = None
        self._death_reported = False

    def observe(self, view: GameStateView, self_caused: bool = False) -> list[Occurrence]:
        """Diff ``view`` against the last snapshot, then advance the snapshot.

        With ``self_caused`` hp and position changes are not reported; a
        death still is.
        """
        current = Snapshot.from_view(view)
        previous = self.snapshot
        self.snapshot = current

        if previous is None:
            if not current.is_active and current.hp == 0:
                self._death_reported = True
            return []

        candidates = classify(previous, current)
        if self_caused:
            candidates = [o for o in candidates if o.kind is OccurrenceKind.DIED]

        occurrences = []
        for occurrence in candidates:
            if occurrence.kind is OccurrenceKind.DIED:
                if self._death_reported:
                    continue
                self._death_reported = True
            occurrences.append(occurrence)
        return occurrences

    def reset(self) -> None:
        self.snapshot = None
        self._death_reported = False


class ReconciliationLoop:
    """Re-reads the session's game on a fixed interval.

    Ticks are skipped while a move is in flight and never overlap. The loop
    ends by itself once the session is no longer live (no active game, dead
    or disconnected).
    """

    def __init__(
        self,
        director: "SessionDirector",
        config: ReconcileConfig | None = None,
        log_writer: "SessionLogWriter | None" = None,
        on_occurrence: Callable[[Occurrence], None] | None = None,
    ):
        self.director = director
        self.config = config or ReconcileConfig()
        self.log_writer = log_writer
        self.on_occurrence = on_occurrence
        self._running = False
        self._in_tick = False
        self._stop_event = asyncio.Event()
        self._tick_count = 0
        self._failed_ticks = 0

    @property
    def running(self) -> bool:
        return self._running

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def failed_ticks(self) -> int:
        return self._failed_ticks

    async def tick(self) -> list[Occurrence]:
        """Run one reconciliation pass. Never raises."""
        if self._in_tick:
            logger.debug("reconcile_tick_dropped")
            return []
        if not self.director.is_live:
            return []
        if self.director.is_moving:
            logger.debug("reconcile_tick_skipped", reason="move_in_flight")
            return []

        self._in_tick = True
        self._tick_count += 1
        try:
            occurrences = await self.director.refresh()
        except Exception as e:
            self._failed_ticks += 1
            logger.warning("reconcile_tick_failed", tick=self._tick_count, error=str(e))
            return []
        finally:
            self._in_tick = False

        for occurrence in occurrences:
            logger.info(
                "occurrence_detected",
                kind=occurrence.kind.value,
                hp_delta=occurrence.hp_delta,
                game_id=self.director.state.game_id,
            )
            if self.on_occurrence is not None:
                self.on_occurrence(occurrence)

        if self.log_writer is not None:
            self.log_writer.log_tick(self._tick_count, self.director.state, occurrences)
        return occurrences

    async def run(self) -> None:
        """Run until stopped or the session stops being live."""
        self._running = True
        self._stop_event.clear()
        logger.info("reconcile_loop_started", interval_ms=self.config.interval_ms)

        interval_s = self.config.interval_ms / 1000.0
        try:
            while self._running and self.director.is_live:
                await self.tick()
                if not self.director.is_live:
                    break
                try:
                    await asyncio.wait_for(self._stop_event.wait(), timeout=interval_s)
                except asyncio.TimeoutError:
                    pass
        finally:
            self._running = False
            logger.info(
                "reconcile_loop_stopped",
                ticks=self._tick_count,
                failed=self._failed_ticks,
                phase=self.director.state.phase.value,
            )

    def stop(self) -> None:
        self._running = False
        self._stop_event.set()
