"""Client configuration loading from TOML files."""

import tomllib
from pathlib import Path

from pydantic import BaseModel, Field

from .hexgrid import GridBounds


class LedgerConfig(BaseModel):
    """Where and how to reach the ledger."""

    rpc_url: str = "http://localhost:5050/rpc"
    game_contract: str = "0x0"
    block_tag: str = "pre_confirmed"  # Provisional transactions are visible at this tag
    manifest_path: str | None = None
    namespace: str = "hexed"
    timeout_ms: int = 10000
    selectors: dict[str, str] = Field(default_factory=dict)  # Entrypoint selector overrides


class TransactionConfig(BaseModel):
    """Status polling and cooldown gate settings."""

    provisional_interval_ms: int = 275
    provisional_max_attempts: int = 6
    confirmation_interval_ms: int = 350
    confirmation_max_attempts: int = 10
    poll_error_delay_ms: int = 500

    gate_initial_backoff_ms: int = 500
    gate_max_backoff_ms: int = 8000
    gate_backoff_multiplier: float = 2.0
    gate_max_attempts: int = 10


class ReconcileConfig(BaseModel):
    """Reconciliation loop timing."""

    interval_ms: int = 2000
    post_move_grace_ms: int = 1500


class SessionConfig(BaseModel):
    """Session persistence and identity."""

    storage_path: str = "~/.hexed/sessions.json"
    storage_key_prefix: str = "hexed_game_id_"
    username: str | None = None


class ViewerConfig(BaseModel):
    """Read-only WebSocket snapshot feed."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8765


class ReplayConfig(BaseModel):
    """Parquet session replay log."""

    enabled: bool = False
    log_dir: str = "logs"
    buffer_size: int = 100


class Config(BaseModel):
    """Complete configuration for a client session."""

    ledger: LedgerConfig = Field(default_factory=LedgerConfig)
    transactions: TransactionConfig = Field(default_factory=TransactionConfig)
    reconcile: ReconcileConfig = Field(default_factory=ReconcileConfig)
    grid: GridBounds = Field(default_factory=GridBounds)
    session: SessionConfig = Field(default_factory=SessionConfig)
    viewer: ViewerConfig = Field(default_factory=ViewerConfig)
    replay: ReplayConfig = Field(default_factory=ReplayConfig)


def _configs_dir() -> Path:
    return Path(__file__).parent.parent.parent / "configs"


def load_config(config_path: Path) -> Config:
    """Load configuration from a TOML file.

    Args:
        config_path: Path to the TOML config file.

    Returns:
        Parsed Config object.

    Raises:
        FileNotFoundError: If config file doesn't exist.
        tomllib.TOMLDecodeError: If TOML is malformed.
    """
    with open(config_path, "rb") as f:
        data = tomllib.load(f)
    return Config.model_validate(data)


def find_config(name: str) -> Path:
    """Find a config file by name.

    Searches in the following order:
    1. Exact path if name contains path separator or ends in .toml
    2. client/configs/{name}.toml
    3. client/configs/{name}

    Raises:
        FileNotFoundError: If config file is not found.
    """
    if "/" in name or name.endswith(".toml"):
        path = Path(name)
        if path.exists():
            return path
        raise FileNotFoundError(f"Config file not found: {name}")

    configs_dir = _configs_dir()

    config_path = configs_dir / f"{name}.toml"
    if config_path.exists():
        return config_path

    config_path = configs_dir / name
    if config_path.exists():
        return config_path

    raise FileNotFoundError(
        f"Config '{name}' not found in {configs_dir}. "
        f"Available configs: {list_configs()}"
    )


def list_configs() -> list[str]:
    """List available config names."""
    configs_dir = _configs_dir()
    if not configs_dir.exists():
        return []
    return sorted(p.stem for p in configs_dir.glob("*.toml"))
