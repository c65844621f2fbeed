"""Shared test fixtures for client tests."""

from collections.abc import Callable, Sequence
from typing import Any

import pytest

from hexed.config import Config, LedgerConfig, ReconcileConfig, TransactionConfig
from hexed.director import SessionDirector
from hexed.encoding import encode_short_string, encode_signed
from hexed.events import EventCodec, LogRecord, schemas_from_selectors
from hexed.ledger import Call, GameStateView, HighestScore, Receipt
from hexed.persistence import GameIdStore
from hexed.transaction import TransactionExecutor
from hexed.types import Direction, HexCoordinate

PLAYER = "0x123abc"
OTHER_PLAYER = "0x999def"
CONTRACT = "0xc0ffee"

# Generic emit marker that precedes every event selector
EMIT_MARKER = 0x1A2B3C

SELECTORS = {
    "Spawned": 0x1001,
    "Moved": 0x1002,
    "CombatResult": 0x1003,
    "NeighborsRevealed": 0x1004,
    "EncounterOccurred": 0x1005,
    "PlayerDied": 0x1006,
    "HighestScoreUpdated": 0x1007,
}


def make_view(
    game_id: int = 1,
    player: str = PLAYER,
    q: int = 0,
    r: int = 0,
    hp: int = 100,
    max_hp: int = 110,
    xp: int = 0,
    can_move: bool = True,
    is_active: bool = True,
    last_direction: Direction | None = None,
    neighbor_occupancy: int = 0,
) -> GameStateView:
    return GameStateView(
        game_id=game_id,
        player=player,
        position=HexCoordinate(q=q, r=r),
        last_direction=last_direction,
        can_move=can_move,
        is_active=is_active,
        hp=hp,
        max_hp=max_hp,
        xp=xp,
        neighbor_occupancy=neighbor_occupancy,
    )


def make_receipt(
    records: Sequence[LogRecord] = (),
    finality: str = "PRE_CONFIRMED",
    execution: str = "SUCCEEDED",
    revert_reason: str | None = None,
) -> Receipt:
    return Receipt(
        tx_hash="",
        finality_status=finality,
        execution_status=execution,
        revert_reason=revert_reason,
        events=tuple(records),
    )


class RecordFactory:
    """Builds raw log records the way the ledger serialises them."""

    def record(self, name: str, keys: Sequence[int], values: Sequence[int]) -> LogRecord:
        data = [len(keys), *keys, len(values), *values]
        return LogRecord(
            selector_words=(hex(EMIT_MARKER), hex(SELECTORS[name])),
            data_words=tuple(hex(w) for w in data),
        )

    def spawned(self, game_id: int, q: int, r: int, player: str = PLAYER) -> LogRecord:
        return self.record("Spawned", [game_id], [int(player, 16), encode_signed(q), encode_signed(r)])

    def moved(self, game_id: int, direction: Direction, q: int, r: int) -> LogRecord:
        return self.record("Moved", [game_id], [int(direction), encode_signed(q), encode_signed(r)])

    def combat(
        self,
        attacker: int,
        defender: int,
        won: bool,
        attacker_pos: tuple[int, int],
        defender_pos: tuple[int, int],
        damage: int = 10,
        retaliation: int = 5,
        xp: int = 3,
        hp_reward: int = 0,
        attacker_died: bool = False,
        defender_died: bool = False,
    ) -> LogRecord:
        return self.record(
            "CombatResult",
            [attacker],
            [
                defender,
                int(won),
                encode_signed(attacker_pos[0]),
                encode_signed(attacker_pos[1]),
                encode_signed(defender_pos[0]),
                encode_signed(defender_pos[1]),
                damage,
                retaliation,
                xp,
                hp_reward,
                int(attacker_died),
                int(defender_died),
            ],
        )

    def neighbors(self, game_id: int, q: int, r: int, mask: int) -> LogRecord:
        return self.record("NeighborsRevealed", [game_id], [encode_signed(q), encode_signed(r), mask])

    def encounter(
        self,
        game_id: int,
        is_gift: bool,
        hp_after: int,
        max_hp_after: int,
        xp_after: int,
        died: bool = False,
        outcome_kind: int = 1,
    ) -> LogRecord:
        return self.record(
            "EncounterOccurred",
            [game_id],
            [int(is_gift), outcome_kind, hp_after, max_hp_after, xp_after, int(died)],
        )

    def player_died(self, game_id: int, killed_by: int | None, q: int, r: int) -> LogRecord:
        killer = [1] if killed_by is None else [0, killed_by]
        return self.record("PlayerDied", [game_id], [*killer, encode_signed(q), encode_signed(r)])

    def highest_score(self, player: str, username: str, xp: int) -> LogRecord:
        return self.record(
            "HighestScoreUpdated", [int(player, 16)], [encode_short_string(username), xp]
        )


class FakeLedger:
    """In-memory ledger reads.

    ``states`` holds the current aggregate state per game. ``script`` queues
    one-off responses (views or exceptions) that are served before it.
    """

    def __init__(self):
        self.states: dict[int, GameStateView] = {}
        self.scripted: dict[int, list[Any]] = {}
        self.receipts: dict[str, list[Any]] = {}
        self.highest: HighestScore | None = None
        self.state_reads = 0
        self.receipt_reads = 0

    def script(self, game_id: int, *responses: Any) -> None:
        self.scripted.setdefault(game_id, []).extend(responses)

    async def get_game_state(self, game_id: int) -> GameStateView | None:
        self.state_reads += 1
        queue = self.scripted.get(game_id)
        if queue:
            item = queue.pop(0)
            if isinstance(item, Exception):
                raise item
            return item
        return self.states.get(game_id)

    async def get_receipt(self, tx_hash: str) -> Receipt | None:
        self.receipt_reads += 1
        queue = self.receipts.get(tx_hash)
        if not queue:
            return None
        # The last response sticks
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    async def get_highest_score(self) -> HighestScore | None:
        return self.highest


class FakeAccount:
    """Session account that records batches and plans their receipts."""

    def __init__(self, ledger: FakeLedger, address: str = PLAYER):
        self.ledger = ledger
        self.address = address
        self.executed: list[list[Call]] = []
        self._plans: list[tuple[list[Any], Callable[[], None] | None]] = []

    def plan(self, *responses: Any, effect: Callable[[], None] | None = None) -> None:
        """Queue receipt poll responses for the next batch, plus a ledger side effect."""
        self._plans.append((list(responses), effect))

    async def execute(self, calls: Sequence[Call]) -> str:
        self.executed.append(list(calls))
        tx_hash = hex(0xABC000 + len(self.executed))
        responses, effect = self._plans.pop(0) if self._plans else ([make_receipt()], None)
        self.ledger.receipts[tx_hash] = [
            r.model_copy(update={"tx_hash": tx_hash}) if isinstance(r, Receipt) else r
            for r in responses
        ]
        if effect is not None:
            effect()
        return tx_hash

    def entrypoints(self) -> list[list[str]]:
        return [[c.entrypoint for c in batch] for batch in self.executed]


@pytest.fixture
def records() -> RecordFactory:
    return RecordFactory()


@pytest.fixture
def codec() -> EventCodec:
    return EventCodec(schemas_from_selectors(SELECTORS))


@pytest.fixture
def fast_tx_config() -> TransactionConfig:
    """Transaction config with millisecond polls for tests."""
    return TransactionConfig(
        provisional_interval_ms=1,
        provisional_max_attempts=6,
        confirmation_interval_ms=1,
        confirmation_max_attempts=10,
        poll_error_delay_ms=1,
        gate_initial_backoff_ms=1,
        gate_max_backoff_ms=4,
        gate_backoff_multiplier=2.0,
        gate_max_attempts=10,
    )


@pytest.fixture
def config(fast_tx_config: TransactionConfig) -> Config:
    return Config(
        ledger=LedgerConfig(game_contract=CONTRACT),
        transactions=fast_tx_config,
        reconcile=ReconcileConfig(interval_ms=5, post_move_grace_ms=0),
    )


@pytest.fixture
def ledger() -> FakeLedger:
    return FakeLedger()


@pytest.fixture
def account(ledger: FakeLedger) -> FakeAccount:
    return FakeAccount(ledger)


@pytest.fixture
def executor(
    ledger: FakeLedger, codec: EventCodec, fast_tx_config: TransactionConfig, account: FakeAccount
) -> TransactionExecutor:
    return TransactionExecutor(ledger, codec, fast_tx_config, account)


@pytest.fixture
def store() -> GameIdStore:
    return GameIdStore(None)


@pytest.fixture
def director(
    ledger: FakeLedger, executor: TransactionExecutor, config: Config, store: GameIdStore
) -> SessionDirector:
    return SessionDirector(ledger, executor, config, store)
