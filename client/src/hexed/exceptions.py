"""Custom exceptions for the hexed client."""


class HexedError(Exception):
    """Base exception for client errors."""

    pass


class LedgerError(HexedError):
    """Raised when a ledger RPC fails or returns an error object."""

    def __init__(self, message: str, code: int | None = None):
        self.code = code
        super().__init__(message)


class NoSessionError(HexedError):
    """Raised when an action needs a session account and none is connected."""

    pass


class MoveRejectedError(HexedError):
    """Raised when a local guard rejects a move or spawn before it is submitted."""

    pass


class TransactionRevertedError(HexedError):
    """Raised when a submitted transaction reverted on the ledger.

    The action had no effect. Any optimistic prediction must be rolled back.
    """

    def __init__(self, tx_hash: str, reason: str | None = None):
        self.tx_hash = tx_hash
        self.reason = reason
        message = f"Transaction {tx_hash} reverted"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class TransactionTimeoutError(HexedError, TimeoutError):
    """Raised when status polling exceeds its retry ceiling.

    The outcome is unknown; callers should fall back to a state read.
    """

    def __init__(self, tx_hash: str, attempts: int):
        self.tx_hash = tx_hash
        self.attempts = attempts
        super().__init__(f"Transaction {tx_hash} not accepted after {attempts} polls")


class DecodeAnomaly(HexedError):
    """Raised inside the codec when a record does not match its layout."""

    pass


class OwnershipMismatchError(HexedError):
    """Raised when a game on the ledger belongs to a different address."""

    def __init__(self, game_id: int, expected: str, actual: str):
        self.game_id = game_id
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Game {game_id} is owned by {actual}, not by {expected}"
        )
