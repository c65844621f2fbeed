"""Transaction lifecycle: gate, submit, poll, classify, decode.

A batch moves through ``SUBMITTED -> PROVISIONAL -> CONFIRMED | REVERTED``.
The business action itself is submitted exactly once; only the status polls
around it are retried.
"""

import asyncio
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from enum import Enum

import structlog

from .config import TransactionConfig
from .events import DomainEvent, EventCodec
from .exceptions import (
    LedgerError,
    NoSessionError,
    TransactionRevertedError,
    TransactionTimeoutError,
)
from .ledger import (
    CONFIRMED_STATES,
    PROVISIONAL_STATES,
    Call,
    Ledger,
    Receipt,
    SessionAccount,
)

logger = structlog.get_logger()


class TxStatus(str, Enum):
    IDLE = "idle"
    SUBMITTED = "submitted"
    PROVISIONAL = "provisional"
    CONFIRMED = "confirmed"
    REVERTED = "reverted"


@dataclass
class TransactionHandle:
    """Tracks one submitted batch."""

    tx_hash: str
    calls: list[Call]
    status: TxStatus = TxStatus.SUBMITTED
    receipt: Receipt | None = None
    events: list[DomainEvent] = field(default_factory=list)
    submitted_at_ms: int = field(default_factory=lambda: int(time.time() * 1000))


class TransactionExecutor:
    """Submits call batches through the session account and classifies results.

    Batches containing a ``move`` call first wait for the game's ``can_move``
    flag (bounded exponential backoff, then proceed anyway) so moves are not
    fired into a cooldown the ledger would reject.
    """

    def __init__(
        self,
        ledger: Ledger,
        codec: EventCodec,
        config: TransactionConfig | None = None,
        account: SessionAccount | None = None,
    ):
        self.ledger = ledger
        self.codec = codec
        self.config = config or TransactionConfig()
        self.account = account
        self.last_handle: TransactionHandle | None = None

    @property
    def has_session(self) -> bool:
        return self.account is not None

    async def execute(
        self,
        calls: Sequence[Call],
        on_revert: Callable[[], None] | None = None,
        on_provisional: Callable[[], None] | None = None,
    ) -> list[DomainEvent]:
        """Run a batch to provisional acceptance and return its decoded events.

        Raises:
            NoSessionError: If no session account is connected.
            TransactionRevertedError: If the ledger reverted the batch.
            TransactionTimeoutError: If it was not accepted within the poll ceiling.
        """
        if self.account is None:
            raise NoSessionError("No session account connected")
        if not calls:
            raise ValueError("Cannot execute an empty batch")

        await self.wait_for_move_gate(calls)

        tx_hash = await self.account.execute(list(calls))
        handle = TransactionHandle(tx_hash=tx_hash, calls=list(calls))
        self.last_handle = handle
        logger.info(
            "transaction_submitted",
            tx_hash=tx_hash,
            entrypoints=[c.entrypoint for c in calls],
        )

        receipt = await self.wait_for_provisional(tx_hash)
        handle.receipt = receipt
        handle.status = TxStatus.PROVISIONAL

        if receipt.is_reverted:
            handle.status = TxStatus.REVERTED
            logger.warning("transaction_reverted", tx_hash=tx_hash, reason=receipt.revert_reason)
            if on_revert is not None:
                on_revert()
            raise TransactionRevertedError(tx_hash, receipt.revert_reason)

        if on_provisional is not None:
            on_provisional()

        handle.events = self.codec.decode_receipt(receipt)
        handle.status = TxStatus.CONFIRMED
        logger.info(
            "transaction_accepted",
            tx_hash=tx_hash,
            finality=receipt.finality_status,
            events=len(handle.events),
        )
        return handle.events

    async def wait_for_move_gate(self, calls: Sequence[Call]) -> bool:
        """Wait until the moving game reports ``can_move``.

        Returns True when the gate opened (or no move is in the batch) and False
        when the attempts ran out; the caller proceeds either way.
        """
        move = next((c for c in calls if c.entrypoint == "move"), None)
        if move is None or not move.calldata:
            return True
        game_id = move.calldata[0]

        cfg = self.config
        backoff_ms = float(cfg.gate_initial_backoff_ms)
        for attempt in range(1, cfg.gate_max_attempts + 1):
            try:
                state = await self.ledger.get_game_state(game_id)
            except LedgerError as e:
                logger.debug("move_gate_read_failed", game_id=game_id, attempt=attempt, error=str(e))
                state = None

            if state is not None and state.can_move:
                if attempt > 1:
                    logger.debug("move_gate_open", game_id=game_id, attempts=attempt)
                return True

            if attempt < cfg.gate_max_attempts:
                await asyncio.sleep(backoff_ms / 1000)
                backoff_ms = min(backoff_ms * cfg.gate_backoff_multiplier, cfg.gate_max_backoff_ms)

        logger.warning("move_gate_exhausted", game_id=game_id, attempts=cfg.gate_max_attempts)
        return False

    async def wait_for_provisional(self, tx_hash: str) -> Receipt:
        return await self._poll(
            tx_hash,
            PROVISIONAL_STATES,
            self.config.provisional_interval_ms,
            self.config.provisional_max_attempts,
        )

    async def wait_for_confirmation(self, tx_hash: str) -> Receipt:
        """Wait for full acceptance, past the provisional stage."""
        return await self._poll(
            tx_hash,
            CONFIRMED_STATES,
            self.config.confirmation_interval_ms,
            self.config.confirmation_max_attempts,
        )

    async def _poll(
        self,
        tx_hash: str,
        accepted: frozenset[str],
        interval_ms: int,
        max_attempts: int,
    ) -> Receipt:
        for attempt in range(1, max_attempts + 1):
            delay_ms = interval_ms
            try:
                receipt = await self.ledger.get_receipt(tx_hash)
            except LedgerError as e:
                logger.debug("receipt_poll_failed", tx_hash=tx_hash, attempt=attempt, error=str(e))
                receipt = None
                delay_ms = self.config.poll_error_delay_ms

            if receipt is not None and (receipt.is_reverted or receipt.finality_status in accepted):
                return receipt

            if attempt < max_attempts:
                await asyncio.sleep(delay_ms / 1000)

        logger.warning("transaction_timeout", tx_hash=tx_hash, attempts=max_attempts)
        raise TransactionTimeoutError(tx_hash, max_attempts)
