"""Tests for client configuration."""

import pytest

from hexed.config import (
    Config,
    LedgerConfig,
    TransactionConfig,
    find_config,
    list_configs,
    load_config,
)


class TestDefaults:
    """Tests for default values."""

    def test_transaction_defaults(self):
        """Provisional polling is faster and shorter than confirmation polling."""
        config = TransactionConfig()
        assert config.provisional_interval_ms == 275
        assert config.provisional_max_attempts == 6
        assert config.confirmation_interval_ms == 350
        assert config.confirmation_max_attempts == 10
        assert config.gate_initial_backoff_ms == 500
        assert config.gate_max_attempts == 10

    def test_ledger_defaults(self):
        config = LedgerConfig()
        assert config.block_tag == "pre_confirmed"
        assert config.namespace == "hexed"
        assert config.selectors == {}

    def test_config_sections(self):
        config = Config()
        assert config.grid.width == 20
        assert config.reconcile.interval_ms == 2000
        assert config.session.storage_key_prefix == "hexed_game_id_"
        assert config.viewer.enabled is False


class TestLoadConfig:
    """Tests for loading TOML files."""

    def test_load_partial(self, tmp_path):
        path = tmp_path / "dev.toml"
        path.write_text(
            '[ledger]\nrpc_url = "http://node:5050"\ngame_contract = "0x42"\n'
            "[reconcile]\ninterval_ms = 500\n"
        )
        config = load_config(path)
        assert config.ledger.rpc_url == "http://node:5050"
        assert config.ledger.game_contract == "0x42"
        assert config.reconcile.interval_ms == 500
        assert config.transactions.provisional_max_attempts == 6

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "nope.toml")

    def test_bundled_default(self):
        assert "default" in list_configs()
        config = load_config(find_config("default"))
        assert config.grid.height == 20
        assert config.transactions.poll_error_delay_ms == 500

    def test_find_explicit_path(self, tmp_path):
        path = tmp_path / "x.toml"
        path.write_text("")
        assert find_config(str(path)) == path

    def test_find_unknown(self):
        with pytest.raises(FileNotFoundError):
            find_config("does-not-exist")
