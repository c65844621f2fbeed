"""Tests for event decoding."""

import json

from conftest import EMIT_MARKER, PLAYER, SELECTORS, RecordFactory, make_receipt

from hexed.encoding import FIELD_PRIME
from hexed.events import (
    CombatResult,
    EncounterOccurred,
    EventCodec,
    HighestScoreUpdated,
    LogRecord,
    Moved,
    NeighborsRevealed,
    PlayerDied,
    Spawned,
    Unknown,
    load_event_schemas,
)
from hexed.types import Direction, HexCoordinate


class TestDecodeKinds:
    """Each event kind decodes from its wire layout."""

    def test_spawned(self, codec: EventCodec, records: RecordFactory):
        event = codec.decode(records.spawned(7, 3, 4))
        assert isinstance(event, Spawned)
        assert event.game_id == 7
        assert event.player == PLAYER
        assert event.position == HexCoordinate(q=3, r=4)

    def test_moved(self, codec: EventCodec, records: RecordFactory):
        event = codec.decode(records.moved(1, Direction.EAST, 1, 0))
        assert event == Moved(game_id=1, direction=Direction.EAST, position=HexCoordinate(q=1, r=0))

    def test_combat_result(self, codec: EventCodec, records: RecordFactory):
        record = records.combat(
            attacker=1,
            defender=2,
            won=True,
            attacker_pos=(4, 4),
            defender_pos=(5, 4),
            damage=12,
            retaliation=4,
            xp=8,
            hp_reward=2,
            defender_died=True,
        )
        event = codec.decode(record)
        assert isinstance(event, CombatResult)
        assert event.game_id == 1
        assert event.defender_game_id == 2
        assert event.won is True
        assert event.attacker_position == HexCoordinate(q=4, r=4)
        assert event.defender_position == HexCoordinate(q=5, r=4)
        assert (event.damage_dealt, event.retaliation_damage) == (12, 4)
        assert (event.xp_awarded, event.hp_reward) == (8, 2)
        assert event.attacker_died is False
        assert event.defender_died is True

    def test_neighbors_revealed(self, codec: EventCodec, records: RecordFactory):
        event = codec.decode(records.neighbors(1, 2, 2, 0b100001))
        assert isinstance(event, NeighborsRevealed)
        assert event.mask == 0b100001
        assert event.position == HexCoordinate(q=2, r=2)

    def test_encounter(self, codec: EventCodec, records: RecordFactory):
        event = codec.decode(records.encounter(1, is_gift=True, hp_after=105, max_hp_after=115, xp_after=4))
        assert isinstance(event, EncounterOccurred)
        assert event.is_gift is True
        assert (event.hp_after, event.max_hp_after, event.xp_after) == (105, 115, 4)
        assert event.died is False

    def test_highest_score_updated(self, codec: EventCodec, records: RecordFactory):
        event = codec.decode(records.highest_score(PLAYER, "alice", 77))
        assert event == HighestScoreUpdated(player=PLAYER, username="alice", xp=77)


class TestOptionalFields:
    """Optional fields advance the cursor by exactly what they hold."""

    def test_absent_killer_keeps_position_aligned(self, codec: EventCodec, records: RecordFactory):
        event = codec.decode(records.player_died(3, None, 6, 7))
        assert isinstance(event, PlayerDied)
        assert event.killed_by is None
        assert event.position == HexCoordinate(q=6, r=7)

    def test_present_killer(self, codec: EventCodec, records: RecordFactory):
        event = codec.decode(records.player_died(3, 9, 6, 7))
        assert event.killed_by == 9
        assert event.position == HexCoordinate(q=6, r=7)


class TestSignedFields:
    """Negative coordinates decode from both representations."""

    def test_field_native_negative(self, codec: EventCodec, records: RecordFactory):
        event = codec.decode(records.moved(1, Direction.WEST, -1, -5))
        assert event.position == HexCoordinate(q=-1, r=-5)

    def test_twos_complement_negative(self, codec: EventCodec, records: RecordFactory):
        record = records.record("Moved", [1], [int(Direction.WEST), 2**32 - 1, 0])
        assert codec.decode(record).position == HexCoordinate(q=-1, r=0)

    def test_value_too_wide_is_unknown(self, codec: EventCodec, records: RecordFactory):
        record = records.record("Moved", [1], [0, FIELD_PRIME - 2**40, 0])
        event = codec.decode(record)
        assert isinstance(event, Unknown)
        assert event.name == "Moved"


class TestUnknownAndMalformed:
    """Bad records decode to Unknown without raising."""

    def test_unknown_selector(self, codec: EventCodec):
        record = LogRecord(selector_words=(hex(EMIT_MARKER), "0xdead"), data_words=("0x0", "0x0"))
        event = codec.decode(record)
        assert isinstance(event, Unknown)
        assert event.selector == 0xDEAD

    def test_missing_selector(self, codec: EventCodec):
        event = codec.decode(LogRecord(selector_words=(hex(EMIT_MARKER),), data_words=()))
        assert isinstance(event, Unknown)

    def test_short_data(self, codec: EventCodec, records: RecordFactory):
        full = records.moved(1, Direction.EAST, 1, 0)
        truncated = full.model_copy(update={"data_words": full.data_words[:-1]})
        assert isinstance(codec.decode(truncated), Unknown)

    def test_declared_value_count_too_small(self, codec: EventCodec):
        record = LogRecord(
            selector_words=(hex(EMIT_MARKER), hex(SELECTORS["Moved"])),
            data_words=("0x1", "0x1", "0x2", "0x0", "0x1", "0x0"),
        )
        assert isinstance(codec.decode(record), Unknown)

    def test_bad_direction_ordinal(self, codec: EventCodec, records: RecordFactory):
        record = records.record("Moved", [1], [9, 1, 0])
        assert isinstance(codec.decode(record), Unknown)

    def test_bad_option_discriminant(self, codec: EventCodec, records: RecordFactory):
        record = records.record("PlayerDied", [1], [5, 0, 0])
        assert isinstance(codec.decode(record), Unknown)

    def test_wrong_key_count(self, codec: EventCodec, records: RecordFactory):
        record = records.record("Moved", [1, 2], [0, 1, 0])
        assert isinstance(codec.decode(record), Unknown)

    def test_bad_record_does_not_poison_batch(self, codec: EventCodec, records: RecordFactory):
        receipt = make_receipt([
            records.spawned(1, 0, 0),
            records.record("Moved", [1], [9, 1, 0]),
            LogRecord(selector_words=(hex(EMIT_MARKER), "0xdead"), data_words=()),
            records.moved(1, Direction.EAST, 1, 0),
        ])
        events = codec.decode_receipt(receipt)
        assert [type(e) for e in events] == [Spawned, Moved]

    def test_trailing_values_tolerated(self, codec: EventCodec, records: RecordFactory):
        record = records.record("Moved", [1], [0, 1, 0, 99])
        assert isinstance(codec.decode(record), Moved)


class TestLoadSchemas:
    """Tests for building the selector table from a manifest."""

    def manifest(self) -> dict:
        return {
            "events": [
                {"tag": "hexed-Moved", "selector": hex(SELECTORS["Moved"])},
                {"tag": "hexed-Spawned", "selector": hex(SELECTORS["Spawned"])},
                {"tag": "hexed-SomethingNew", "selector": "0x77"},
                {"tag": "other-Moved", "selector": "0x88"},
            ]
        }

    def test_matches_by_tag(self):
        table = load_event_schemas(self.manifest())
        assert {s.name for s in table.values()} == {"Moved", "Spawned"}
        assert table[SELECTORS["Moved"]].key_count == 1

    def test_from_file(self, tmp_path, records: RecordFactory):
        path = tmp_path / "manifest.json"
        path.write_text(json.dumps(self.manifest()))
        codec = EventCodec.from_manifest(path)
        assert isinstance(codec.decode(records.moved(1, Direction.EAST, 1, 0)), Moved)
        # Not in this manifest
        assert isinstance(codec.decode(records.player_died(1, None, 0, 0)), Unknown)
