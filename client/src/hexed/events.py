"""Event decoding: opaque ledger log records into typed domain events.

A log record carries two word lists. The selector words identify the event
(the ledger's generic emit marker first, then the event selector); the data
words hold the serialised keys and values:

    data[0]            number of keys (k)
    data[1 .. k]       keys, the first being a game id or a player address
    data[k + 1]        number of value words (m)
    data[k + 2 ..]     values, read according to the event's layout

Selectors differ per deployment, so the schema table is built from the
deployment manifest while the layouts themselves are fixed here.
"""

import json
from collections.abc import Callable, Iterable, Mapping
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Literal

import structlog
from pydantic import BaseModel, ValidationError

from .encoding import WordReader, parse_word
from .exceptions import DecodeAnomaly
from .types import Direction, HexCoordinate

if TYPE_CHECKING:
    from .ledger import Receipt

logger = structlog.get_logger()

# Manifest tags are "<namespace>-<EventName>"
DEFAULT_NAMESPACE = "hexed"


class LogRecord(BaseModel, frozen=True):
    """One raw event record as returned in a transaction receipt."""

    selector_words: tuple[str | int, ...]
    data_words: tuple[str | int, ...]
    from_address: str | None = None

    @classmethod
    def from_rpc(cls, raw: Mapping[str, Any]) -> "LogRecord":
        return cls(
            selector_words=tuple(raw.get("keys", ())),
            data_words=tuple(raw.get("data", ())),
            from_address=raw.get("from_address"),
        )


# Domain events


class Spawned(BaseModel, frozen=True):
    kind: Literal["spawned"] = "spawned"
    game_id: int
    player: str
    position: HexCoordinate


class Moved(BaseModel, frozen=True):
    kind: Literal["moved"] = "moved"
    game_id: int
    direction: Direction
    position: HexCoordinate


class CombatResult(BaseModel, frozen=True):
    """Outcome of a move into an occupied cell; ``game_id`` is the attacker."""

    kind: Literal["combat_result"] = "combat_result"
    game_id: int
    defender_game_id: int
    won: bool
    attacker_position: HexCoordinate
    defender_position: HexCoordinate
    damage_dealt: int
    retaliation_damage: int
    xp_awarded: int
    hp_reward: int
    attacker_died: bool
    defender_died: bool


class NeighborsRevealed(BaseModel, frozen=True):
    kind: Literal["neighbors_revealed"] = "neighbors_revealed"
    game_id: int
    position: HexCoordinate
    mask: int


class EncounterOccurred(BaseModel, frozen=True):
    kind: Literal["encounter_occurred"] = "encounter_occurred"
    game_id: int
    is_gift: bool
    outcome_kind: int
    hp_after: int
    max_hp_after: int
    xp_after: int
    died: bool


class PlayerDied(BaseModel, frozen=True):
    kind: Literal["player_died"] = "player_died"
    game_id: int
    killed_by: int | None
    position: HexCoordinate


class HighestScoreUpdated(BaseModel, frozen=True):
    kind: Literal["highest_score_updated"] = "highest_score_updated"
    player: str
    username: str
    xp: int


class Unknown(BaseModel, frozen=True):
    """A record the codec could not (or chose not to) decode."""

    kind: Literal["unknown"] = "unknown"
    selector: int | None = None
    name: str | None = None
    reason: str = ""


DomainEvent = (
    Spawned
    | Moved
    | CombatResult
    | NeighborsRevealed
    | EncounterOccurred
    | PlayerDied
    | HighestScoreUpdated
    | Unknown
)


# Schemas


class FieldKind(str, Enum):
    FELT = "felt"
    U8 = "u8"
    U32 = "u32"
    BOOL = "bool"
    I32 = "i32"
    DIRECTION = "direction"
    ADDRESS = "address"
    COORDINATE = "coordinate"
    SHORT_STRING = "short_string"
    OPTION_U32 = "option_u32"


_FIELD_READERS: dict[FieldKind, Callable[[WordReader], Any]] = {
    FieldKind.FELT: lambda r: r.read(),
    FieldKind.U8: lambda r: r.read_unsigned(8),
    FieldKind.U32: lambda r: r.read_unsigned(32),
    FieldKind.BOOL: lambda r: r.read_bool(),
    FieldKind.I32: lambda r: r.read_i32(),
    FieldKind.DIRECTION: lambda r: r.read_direction(),
    FieldKind.ADDRESS: lambda r: r.read_address(),
    FieldKind.COORDINATE: lambda r: r.read_coordinate(),
    FieldKind.SHORT_STRING: lambda r: r.read_short_string(),
    FieldKind.OPTION_U32: lambda r: r.read_option(lambda: r.read_unsigned(32)),
}


class FieldSpec(BaseModel, frozen=True):
    name: str
    kind: FieldKind


class EventSchema(BaseModel, frozen=True):
    """Layout of one event kind."""

    name: str
    key_layout: tuple[FieldSpec, ...]
    value_layout: tuple[FieldSpec, ...]

    @property
    def key_count(self) -> int:
        return len(self.key_layout)


def _layout(*fields: tuple[str, FieldKind]) -> tuple[FieldSpec, ...]:
    return tuple(FieldSpec(name=name, kind=kind) for name, kind in fields)


_GAME_KEY = _layout(("game_id", FieldKind.U32))

EVENT_SCHEMAS: dict[str, EventSchema] = {
    schema.name: schema
    for schema in (
        EventSchema(
            name="Spawned",
            key_layout=_GAME_KEY,
            value_layout=_layout(
                ("player", FieldKind.ADDRESS),
                ("position", FieldKind.COORDINATE),
            ),
        ),
        EventSchema(
            name="Moved",
            key_layout=_GAME_KEY,
            value_layout=_layout(
                ("direction", FieldKind.DIRECTION),
                ("position", FieldKind.COORDINATE),
            ),
        ),
        EventSchema(
            name="CombatResult",
            key_layout=_GAME_KEY,
            value_layout=_layout(
                ("defender_game_id", FieldKind.U32),
                ("won", FieldKind.BOOL),
                ("attacker_position", FieldKind.COORDINATE),
                ("defender_position", FieldKind.COORDINATE),
                ("damage_dealt", FieldKind.U32),
                ("retaliation_damage", FieldKind.U32),
                ("xp_awarded", FieldKind.U32),
                ("hp_reward", FieldKind.U32),
                ("attacker_died", FieldKind.BOOL),
                ("defender_died", FieldKind.BOOL),
            ),
        ),
        EventSchema(
            name="NeighborsRevealed",
            key_layout=_GAME_KEY,
            value_layout=_layout(
                ("position", FieldKind.COORDINATE),
                ("mask", FieldKind.U8),
            ),
        ),
        EventSchema(
            name="EncounterOccurred",
            key_layout=_GAME_KEY,
            value_layout=_layout(
                ("is_gift", FieldKind.BOOL),
                ("outcome_kind", FieldKind.U8),
                ("hp_after", FieldKind.U32),
                ("max_hp_after", FieldKind.U32),
                ("xp_after", FieldKind.U32),
                ("died", FieldKind.BOOL),
            ),
        ),
        EventSchema(
            name="PlayerDied",
            key_layout=_GAME_KEY,
            value_layout=_layout(
                ("killed_by", FieldKind.OPTION_U32),
                ("position", FieldKind.COORDINATE),
            ),
        ),
        EventSchema(
            name="HighestScoreUpdated",
            key_layout=_layout(("player", FieldKind.ADDRESS)),
            value_layout=_layout(
                ("username", FieldKind.SHORT_STRING),
                ("xp", FieldKind.U32),
            ),
        ),
    )
}

EVENT_TYPES: dict[str, type[BaseModel]] = {
    "Spawned": Spawned,
    "Moved": Moved,
    "CombatResult": CombatResult,
    "NeighborsRevealed": NeighborsRevealed,
    "EncounterOccurred": EncounterOccurred,
    "PlayerDied": PlayerDied,
    "HighestScoreUpdated": HighestScoreUpdated,
}


def schemas_from_selectors(selectors: Mapping[str, str | int]) -> dict[int, EventSchema]:
    """Build the selector table from an ``event name -> selector`` mapping.

    Names without a built-in layout are skipped.
    """
    table: dict[int, EventSchema] = {}
    for name, selector in selectors.items():
        schema = EVENT_SCHEMAS.get(name)
        if schema is None:
            logger.debug("event_schema_skipped", event_name=name)
            continue
        table[parse_word(selector)] = schema
    return table


def load_event_schemas(
    manifest: Mapping[str, Any] | str | Path, namespace: str = DEFAULT_NAMESPACE
) -> dict[int, EventSchema]:
    """Build the selector table from a deployment manifest.

    Events are matched by tag, e.g. ``hexed-Moved`` maps to the ``Moved`` layout.
    """
    if isinstance(manifest, (str, Path)):
        with open(manifest) as f:
            manifest = json.load(f)

    prefix = f"{namespace}-"
    selectors: dict[str, str | int] = {}
    for entry in manifest.get("events", []):
        tag = entry.get("tag", "")
        if not tag.startswith(prefix) or "selector" not in entry:
            continue
        selectors[tag[len(prefix):]] = entry["selector"]

    table = schemas_from_selectors(selectors)
    logger.info("event_schemas_loaded", count=len(table), namespace=namespace)
    return table


class EventCodec:
    """Decodes log records into domain events using a selector table.

    Decoding never raises: unknown selectors and malformed records come back
    as :class:`Unknown` so one bad record cannot poison a batch.
    """

    def __init__(self, schemas: Mapping[int, EventSchema] | None = None, selector_index: int = 1):
        self.schemas = dict(schemas or {})
        self.selector_index = selector_index

    @classmethod
    def from_manifest(cls, path: str | Path, namespace: str = DEFAULT_NAMESPACE) -> "EventCodec":
        return cls(load_event_schemas(path, namespace))

    def decode(self, record: LogRecord) -> DomainEvent:
        try:
            selector = parse_word(record.selector_words[self.selector_index])
        except (IndexError, DecodeAnomaly):
            return Unknown(reason="missing selector")

        schema = self.schemas.get(selector)
        if schema is None:
            return Unknown(selector=selector, reason="unknown selector")

        try:
            return self._decode_with(schema, record)
        except (DecodeAnomaly, ValidationError) as e:
            logger.warning(
                "event_decode_anomaly",
                event_name=schema.name,
                selector=hex(selector),
                error=str(e),
            )
            return Unknown(selector=selector, name=schema.name, reason=str(e))

    def _decode_with(self, schema: EventSchema, record: LogRecord) -> DomainEvent:
        reader = WordReader(record.data_words)
        fields: dict[str, Any] = {}

        key_count = reader.read_unsigned(32)
        if key_count != schema.key_count:
            raise DecodeAnomaly(f"{schema.name} expects {schema.key_count} keys, got {key_count}")
        for spec in schema.key_layout:
            fields[spec.name] = _FIELD_READERS[spec.kind](reader)

        value_count = reader.read_unsigned(32)
        if value_count > reader.remaining:
            raise DecodeAnomaly(
                f"{schema.name} declares {value_count} values, {reader.remaining} present"
            )
        start = reader.position
        for spec in schema.value_layout:
            fields[spec.name] = _FIELD_READERS[spec.kind](reader)
        consumed = reader.position - start
        if consumed > value_count:
            raise DecodeAnomaly(
                f"{schema.name} layout needs {consumed} values, record declares {value_count}"
            )

        return EVENT_TYPES[schema.name](**fields)

    def decode_all(self, records: Iterable[LogRecord]) -> list[DomainEvent]:
        """Decode a batch in order, dropping records that came back Unknown."""
        events = []
        for record in records:
            event = self.decode(record)
            if isinstance(event, Unknown):
                logger.debug("event_unknown", selector=event.selector, reason=event.reason)
                continue
            events.append(event)
        return events

    def decode_receipt(self, receipt: "Receipt") -> list[DomainEvent]:
        return self.decode_all(receipt.events)
