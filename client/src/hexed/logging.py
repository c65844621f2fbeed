"""Parquet logging for session replay."""

import json
import time
from collections.abc import Iterable
from pathlib import Path
from typing import TYPE_CHECKING

import pyarrow as pa
import pyarrow.parquet as pq
import structlog

from .events import DomainEvent
from .state import PlayerState
from .types import Direction, HexCoordinate

if TYPE_CHECKING:
    from .director import MoveOutcome
    from .reconcile import Occurrence

logger = structlog.get_logger()


TICK_SCHEMA = pa.schema([
    ("tick_id", pa.int32()),
    ("time_ms", pa.int64()),
    ("game_id", pa.int64()),
    ("q", pa.int32()),
    ("r", pa.int32()),
    ("hp", pa.int32()),
    ("max_hp", pa.int32()),
    ("xp", pa.int32()),
    ("can_move", pa.bool_()),
    ("phase", pa.string()),
    ("occurrences", pa.string()),  # Comma separated occurrence kinds
])

MOVE_SCHEMA = pa.schema([
    ("time_ms", pa.int64()),
    ("game_id", pa.int64()),
    ("direction", pa.string()),
    ("success", pa.bool_()),
    ("outcome", pa.string()),
    ("from_q", pa.int32()),
    ("from_r", pa.int32()),
    ("to_q", pa.int32()),
    ("to_r", pa.int32()),
    ("hp_delta", pa.int32()),
    ("xp_delta", pa.int32()),
    ("failure_reason", pa.string()),
])

EVENT_SCHEMA = pa.schema([
    ("time_ms", pa.int64()),
    ("game_id", pa.int64()),
    ("kind", pa.string()),
    ("payload_json", pa.string()),
])


def _now_ms() -> int:
    return int(time.time() * 1000)


class SessionLogWriter:
    """Writes session activity to Parquet files.

    Accumulates rows in memory and writes ``ticks.parquet``, ``moves.parquet``
    and ``events.parquet`` on flush or close.
    """

    def __init__(self, log_dir: Path, buffer_size: int = 100):
        self.log_dir = log_dir
        self.buffer_size = buffer_size

        self._tick_data: list[dict] = []
        self._move_data: list[dict] = []
        self._event_data: list[dict] = []

        self._files_exist = False

    def log_tick(self, tick_id: int, state: PlayerState, occurrences: Iterable["Occurrence"]) -> None:
        """Log one reconciliation pass and the state it left behind."""
        pos = state.position
        self._tick_data.append({
            "tick_id": tick_id,
            "time_ms": _now_ms(),
            "game_id": state.game_id,
            "q": pos.q if pos else None,
            "r": pos.r if pos else None,
            "hp": state.hp,
            "max_hp": state.max_hp,
            "xp": state.xp,
            "can_move": state.can_move,
            "phase": state.phase.value,
            "occurrences": ",".join(o.kind.value for o in occurrences),
        })
        self._maybe_flush()

    def log_move(self, game_id: int | None, outcome: "MoveOutcome") -> None:
        self._move_data.append({
            "time_ms": _now_ms(),
            "game_id": game_id,
            "direction": outcome.direction.label,
            "success": True,
            "outcome": outcome.kind.value,
            "from_q": outcome.origin.q,
            "from_r": outcome.origin.r,
            "to_q": outcome.position.q if outcome.position else None,
            "to_r": outcome.position.r if outcome.position else None,
            "hp_delta": outcome.hp_delta,
            "xp_delta": outcome.xp_delta,
            "failure_reason": None,
        })
        self._maybe_flush()

    def log_move_failure(
        self, game_id: int | None, direction: Direction, origin: HexCoordinate | None, reason: str
    ) -> None:
        self._move_data.append({
            "time_ms": _now_ms(),
            "game_id": game_id,
            "direction": direction.label,
            "success": False,
            "outcome": "failed",
            "from_q": origin.q if origin else None,
            "from_r": origin.r if origin else None,
            "to_q": None,
            "to_r": None,
            "hp_delta": 0,
            "xp_delta": 0,
            "failure_reason": reason,
        })
        self._maybe_flush()

    def log_events(self, events: Iterable[DomainEvent]) -> None:
        now = _now_ms()
        for event in events:
            payload = event.model_dump(mode="json")
            self._event_data.append({
                "time_ms": now,
                "game_id": payload.get("game_id"),
                "kind": event.kind,
                "payload_json": json.dumps(payload),
            })
        self._maybe_flush()

    def _maybe_flush(self) -> None:
        pending = len(self._tick_data) + len(self._move_data) + len(self._event_data)
        if pending >= self.buffer_size:
            self.flush()

    def flush(self) -> None:
        """Write buffered rows to Parquet files."""
        if not (self._tick_data or self._move_data or self._event_data):
            return

        self.log_dir.mkdir(parents=True, exist_ok=True)
        self._write_parquet("ticks.parquet", TICK_SCHEMA, self._tick_data)
        self._write_parquet("moves.parquet", MOVE_SCHEMA, self._move_data)
        self._write_parquet("events.parquet", EVENT_SCHEMA, self._event_data)

        self._tick_data.clear()
        self._move_data.clear()
        self._event_data.clear()

        self._files_exist = True
        logger.debug("log_flushed", log_dir=str(self.log_dir))

    def close(self) -> None:
        """Flush remaining data and finalize files."""
        self.flush()
        logger.info("log_writer_closed", log_dir=str(self.log_dir))

    def _write_parquet(self, filename: str, schema: pa.Schema, data: list[dict]) -> None:
        """Write data to a Parquet file, appending if it exists."""
        if not data:
            return

        filepath = self.log_dir / filename
        table = pa.Table.from_pylist(data, schema=schema)

        if self._files_exist and filepath.exists():
            # Append to existing file by reading, concatenating, and rewriting
            existing = pq.read_table(filepath)
            table = pa.concat_tables([existing, table])

        pq.write_table(table, filepath)
