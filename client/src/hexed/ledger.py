"""Ledger access: JSON-RPC reads, receipts and the session account seam.

Reads go through :class:`JsonRpcLedger`, an async httpx client speaking the
ledger's JSON-RPC dialect. Writes are signed elsewhere: anything that can take
a batch of :class:`Call` objects and hand back a transaction hash satisfies
:class:`SessionAccount`.
"""

import itertools
from collections.abc import Sequence
from typing import Any, Protocol

import httpx
import structlog
from Crypto.Hash import keccak
from pydantic import BaseModel

from .config import LedgerConfig
from .encoding import WordReader, encode_short_string, normalize_address, parse_word
from .events import LogRecord
from .exceptions import DecodeAnomaly, LedgerError
from .types import Direction, HexCoordinate

logger = structlog.get_logger()

# JSON-RPC error code for an unknown transaction hash
TX_HASH_NOT_FOUND = 29

# Finality states in which a transaction's effects are visible to reads
PROVISIONAL_STATES = frozenset({"PRE_CONFIRMED", "ACCEPTED_ON_L2", "ACCEPTED_ON_L1"})
CONFIRMED_STATES = frozenset({"ACCEPTED_ON_L2", "ACCEPTED_ON_L1"})

_SELECTOR_MASK = (1 << 250) - 1


def entrypoint_selector(name: str) -> int:
    """Selector of a contract entrypoint: keccak-256 of the name, truncated to 250 bits."""
    digest = keccak.new(digest_bits=256, data=name.encode("ascii")).digest()
    return int.from_bytes(digest, "big") & _SELECTOR_MASK


class Call(BaseModel, frozen=True):
    """One contract invocation inside a transaction batch."""

    contract_address: str
    entrypoint: str
    calldata: tuple[int, ...] = ()


def spawn_call(contract: str) -> Call:
    return Call(contract_address=contract, entrypoint="spawn")


def move_call(contract: str, game_id: int, direction: Direction) -> Call:
    return Call(contract_address=contract, entrypoint="move", calldata=(game_id, int(direction)))


def register_score_call(contract: str, player: str, username: str | None, xp: int) -> Call:
    """Build a ``register_score`` call.

    The username is packed as a short string. A missing username, or a
    ``0x`` username naming the player's own address, is sent as 0.
    """
    if not username or (
        username.lower().startswith("0x") and normalize_address(username) == normalize_address(player)
    ):
        encoded = 0
    else:
        encoded = encode_short_string(username)
    return Call(
        contract_address=contract,
        entrypoint="register_score",
        calldata=(int(player, 16), encoded, xp),
    )


class GameStateView(BaseModel, frozen=True):
    """One aggregate read of a game as stored on the ledger."""

    game_id: int
    player: str
    position: HexCoordinate
    last_direction: Direction | None
    can_move: bool
    is_active: bool
    hp: int
    max_hp: int
    xp: int
    neighbor_occupancy: int

    @classmethod
    def from_words(cls, words: Sequence[str | int]) -> "GameStateView":
        r = WordReader(words)
        return cls(
            game_id=r.read_unsigned(32),
            player=r.read_address(),
            position=r.read_coordinate(),
            last_direction=r.read_option(r.read_direction),
            can_move=r.read_bool(),
            is_active=r.read_bool(),
            hp=r.read_unsigned(32),
            max_hp=r.read_unsigned(32),
            xp=r.read_unsigned(32),
            neighbor_occupancy=r.read_unsigned(8),
        )


class HighestScore(BaseModel, frozen=True):
    player: str
    username: str
    xp: int

    @classmethod
    def from_words(cls, words: Sequence[str | int]) -> "HighestScore | None":
        r = WordReader(words)

        def read_entry() -> HighestScore:
            return cls(player=r.read_address(), username=r.read_short_string(), xp=r.read_unsigned(32))

        return r.read_option(read_entry)


class Receipt(BaseModel, frozen=True):
    """Status and emitted records of a submitted transaction."""

    tx_hash: str
    finality_status: str
    execution_status: str = "SUCCEEDED"
    revert_reason: str | None = None
    events: tuple[LogRecord, ...] = ()

    @property
    def is_reverted(self) -> bool:
        return self.execution_status == "REVERTED" or self.finality_status == "REJECTED"

    @classmethod
    def from_rpc(cls, raw: dict[str, Any]) -> "Receipt":
        return cls(
            tx_hash=raw.get("transaction_hash", ""),
            finality_status=raw.get("finality_status", "RECEIVED"),
            execution_status=raw.get("execution_status", "SUCCEEDED"),
            revert_reason=raw.get("revert_reason"),
            events=tuple(LogRecord.from_rpc(e) for e in raw.get("events", [])),
        )


class SessionAccount(Protocol):
    """Signs and submits call batches on behalf of the connected player."""

    address: str

    async def execute(self, calls: Sequence[Call]) -> str: ...


class Ledger(Protocol):
    """Read side of the ledger used by the executor and the director."""

    async def get_game_state(self, game_id: int) -> GameStateView | None: ...

    async def get_highest_score(self) -> HighestScore | None: ...

    async def get_receipt(self, tx_hash: str) -> Receipt | None: ...


class JsonRpcLedger:
    """Async JSON-RPC client for ledger reads.

    Usable as an async context manager; an externally created
    ``httpx.AsyncClient`` may be passed in and is then not closed here.
    """

    def __init__(self, config: LedgerConfig, client: httpx.AsyncClient | None = None):
        self.config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=config.timeout_ms / 1000)
        self._ids = itertools.count(1)

    async def __aenter__(self) -> "JsonRpcLedger":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    def selector(self, entrypoint: str) -> int:
        override = self.config.selectors.get(entrypoint)
        if override is not None:
            return parse_word(override)
        return entrypoint_selector(entrypoint)

    async def request(self, method: str, params: Any) -> Any:
        """Send one JSON-RPC request and return its ``result``.

        Raises:
            LedgerError: On transport failure, a non-2xx status or an error object.
        """
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            response = await self._client.post(self.config.rpc_url, json=payload)
            response.raise_for_status()
            body = response.json()
        except httpx.HTTPError as e:
            raise LedgerError(f"{method} failed: {e}") from e
        except ValueError as e:
            raise LedgerError(f"{method} returned invalid JSON") from e

        if "error" in body:
            error = body["error"] or {}
            raise LedgerError(
                f"{method} error {error.get('code')}: {error.get('message')}",
                code=error.get("code"),
            )
        return body.get("result")

    async def call(self, entrypoint: str, calldata: Sequence[int] = ()) -> list[str]:
        """Invoke a read-only entrypoint of the game contract."""
        request = {
            "contract_address": self.config.game_contract,
            "entry_point_selector": hex(self.selector(entrypoint)),
            "calldata": [hex(w) for w in calldata],
        }
        result = await self.request(
            "starknet_call", {"request": request, "block_id": self.config.block_tag}
        )
        return list(result or [])

    async def get_game_state(self, game_id: int) -> GameStateView | None:
        words = await self.call("get_game_state", [game_id])
        try:
            view = GameStateView.from_words(words)
        except DecodeAnomaly as e:
            raise LedgerError(f"Malformed game state for game {game_id}: {e}") from e
        # Unknown games read back as a zeroed struct
        if int(view.player, 16) == 0:
            logger.debug("game_state_missing", game_id=game_id)
            return None
        return view

    async def get_highest_score(self) -> HighestScore | None:
        words = await self.call("get_highest_score")
        try:
            return HighestScore.from_words(words)
        except DecodeAnomaly as e:
            raise LedgerError(f"Malformed highest score: {e}") from e

    async def get_receipt(self, tx_hash: str) -> Receipt | None:
        """Fetch a receipt, or None if the ledger does not know the hash yet."""
        try:
            result = await self.request(
                "starknet_getTransactionReceipt", {"transaction_hash": tx_hash}
            )
        except LedgerError as e:
            if e.code == TX_HASH_NOT_FOUND:
                return None
            raise
        if result is None:
            return None
        receipt = Receipt.from_rpc(result)
        if not receipt.tx_hash:
            receipt = receipt.model_copy(update={"tx_hash": tx_hash})
        return receipt
