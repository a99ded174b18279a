"""Tests for protocol configuration loading."""

from dataclasses import FrozenInstanceError

import pytest

from lending_ledger import ProtocolConfig, DEFAULT_CONFIG, load_config
from lending_ledger.config import config_from_dict


class TestDefaults:

    def test_default_values(self):
        assert DEFAULT_CONFIG.close_factor == 5000
        assert DEFAULT_CONFIG.min_health_factor == 10000
        assert DEFAULT_CONFIG.min_leverage_health_factor == 12000
        assert DEFAULT_CONFIG.trading_collateral_haircut == 8000
        assert DEFAULT_CONFIG.max_collaterals == 10
        assert DEFAULT_CONFIG.max_price_age == 60

    def test_frozen(self):
        with pytest.raises(FrozenInstanceError):
            DEFAULT_CONFIG.close_factor = 1


class TestFromDict:

    def test_overlay(self):
        cfg = config_from_dict({"close_factor": 2500})
        assert cfg.close_factor == 2500
        assert cfg.min_health_factor == 10000

    def test_unknown_key(self):
        with pytest.raises(ValueError, match="Unknown config keys"):
            config_from_dict({"close_factr": 2500})

    @pytest.mark.parametrize("raw", [
        {"close_factor": 0},
        {"close_factor": 10_001},
        {"trading_collateral_haircut": 12_000},
        {"min_health_factor": 0},
        {"max_debts": 0},
        {"max_price_age": -1},
        {"close_factor": "half"},
        {"max_collaterals": True},
    ])
    def test_invalid_values(self, raw):
        with pytest.raises(ValueError):
            config_from_dict(raw)


class TestLoadConfig:

    def test_top_level_keys(self, tmp_path):
        path = tmp_path / "protocol.yaml"
        path.write_text("close_factor: 4000\nmax_price_age: 30\n")
        cfg = load_config(path)
        assert cfg == ProtocolConfig(close_factor=4000, max_price_age=30)

    def test_protocol_section(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("protocol:\n  min_health_factor: 11000\n")
        assert load_config(str(path)).min_health_factor == 11000

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == DEFAULT_CONFIG

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(tmp_path / "absent.yaml")

    def test_non_mapping_root(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ValueError, match="mapping"):
            load_config(path)

    def test_invalid_value_in_file(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("close_factor: 20000\n")
        with pytest.raises(ValueError):
            load_config(path)
