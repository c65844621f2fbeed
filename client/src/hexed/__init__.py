"""Hexed client: a hex-grid game whose state lives on a remote ledger."""

from .director import MoveOutcome, MoveOutcomeKind, SessionDirector, SessionListener
from .events import EventCodec, load_event_schemas
from .exceptions import (
    DecodeAnomaly,
    HexedError,
    LedgerError,
    MoveRejectedError,
    NoSessionError,
    OwnershipMismatchError,
    TransactionRevertedError,
    TransactionTimeoutError,
)
from .ledger import JsonRpcLedger, SessionAccount
from .reconcile import Occurrence, OccurrenceKind, ReconciliationLoop
from .state import PlayerState, SessionPhase
from .transaction import TransactionExecutor
from .types import Direction, HexCoordinate

__all__ = [
    "DecodeAnomaly",
    "Direction",
    "EventCodec",
    "HexCoordinate",
    "HexedError",
    "JsonRpcLedger",
    "LedgerError",
    "MoveOutcome",
    "MoveOutcomeKind",
    "MoveRejectedError",
    "NoSessionError",
    "Occurrence",
    "OccurrenceKind",
    "OwnershipMismatchError",
    "PlayerState",
    "ReconciliationLoop",
    "SessionDirector",
    "SessionListener",
    "SessionPhase",
    "TransactionExecutor",
    "TransactionRevertedError",
    "TransactionTimeoutError",
    "load_event_schemas",
]
