"""Persistence of the player's game id between sessions.

The stored id is only a hint: on resume it is checked against the ledger's
record of who owns the game before anything is adopted.
"""

import json
from pathlib import Path

import structlog

from .encoding import normalize_address

logger = structlog.get_logger()


class GameIdStore:
    """JSON file mapping ``{prefix}{address}`` keys to game ids.

    With ``path=None`` the mapping lives only in memory.
    """

    def __init__(self, path: Path | None, prefix: str = "hexed_game_id_"):
        self.path = path.expanduser() if path is not None else None
        self.prefix = prefix
        self._memory: dict[str, int] = {}

    def key(self, address: str) -> str:
        return f"{self.prefix}{normalize_address(address)}"

    def load(self, address: str) -> int | None:
        value = self._read().get(self.key(address))
        if value is None:
            return None
        try:
            game_id = int(value)
        except (TypeError, ValueError):
            logger.warning("stored_game_id_invalid", address=address, value=value)
            return None
        return game_id if game_id > 0 else None

    def save(self, address: str, game_id: int) -> None:
        data = self._read()
        data[self.key(address)] = game_id
        self._write(data)
        logger.debug("game_id_saved", address=address, game_id=game_id)

    def discard(self, address: str) -> None:
        data = self._read()
        if data.pop(self.key(address), None) is not None:
            self._write(data)
            logger.info("game_id_discarded", address=address)

    def _read(self) -> dict:
        if self.path is None:
            return dict(self._memory)
        if not self.path.exists():
            return {}
        try:
            data = json.loads(self.path.read_text())
        except json.JSONDecodeError as e:
            logger.warning("session_store_corrupt", path=str(self.path), error=str(e))
            return {}
        return data if isinstance(data, dict) else {}

    def _write(self, data: dict) -> None:
        if self.path is None:
            self._memory = dict(data)
            return
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(data, indent=2, sort_keys=True))
