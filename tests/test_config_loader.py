"""
Tests for config_loader.py
"""
import json
import os

import pytest

from backrun.config_loader import (
    ConfigLoader,
    ConfigValidationError,
    RelayEndpoint,
    RelayTable,
)

from tests.conftest import FLASHLOAN_CONTRACT, WETH

ENV_VARS = [
    "PRIVATE_KEY",
    "FLASHBOTS_AUTH_KEY",
    "FLASHLOAN_CONTRACT",
    "RPC_URL_OVERRIDE",
    "PERCENTAGE_TO_KEEP",
    "ALTERNATE_RELAY_COUNT",
    "RPC_TIMEOUT",
    "RELAY_TIMEOUT",
    "MAX_RETRIES",
    "DEBUG_MODE",
]


def _raw_config(**overrides):
    raw = {
        "chain_id": 1,
        "rpc_urls": ["https://rpc-1.example", "https://rpc-2.example"],
        "wnative_address": WETH,
        "flashloan_contract": FLASHLOAN_CONTRACT,
        "relays": [
            {"name": "MEV-Share", "url": "https://relay.flashbots.net"},
            {"name": "Flashbots", "url": "https://relay.flashbots.net"},
            {"name": "BloXroute Max Profit", "url": "https://mev.bloXroute.com"},
            {"name": "BloXroute Regulated", "url": "https://bloxroute.regulated.ethereum.blocknative.com"},
            {"name": "Blocknative", "url": "https://api.blocknative.com/v1/auction"},
        ],
    }
    raw.update(overrides)
    return raw


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    yield
    # load_dotenv writes straight into os.environ
    for name in ENV_VARS:
        os.environ.pop(name, None)


@pytest.fixture
def write_config(tmp_path):
    def _write(raw) -> str:
        path = tmp_path / "relays.json"
        path.write_text(json.dumps(raw), encoding="utf-8")
        return str(path)
    return _write


@pytest.fixture
def empty_env(tmp_path):
    path = tmp_path / ".env"
    path.write_text("", encoding="utf-8")
    return str(path)


class TestRelayTable:

    def test_first_endpoint_is_primary(self):
        endpoints = [RelayEndpoint(f"r{i}", f"https://r{i}.example") for i in range(6)]

        table = RelayTable.from_endpoints(endpoints, alternate_count=3)

        assert table.primary == endpoints[0]
        assert table.alternates == endpoints[1:4]
        assert list(table) == endpoints[:4]
        assert len(table) == 4

    def test_alternate_count_larger_than_list(self):
        endpoints = [RelayEndpoint("a", "https://a"), RelayEndpoint("b", "https://b")]

        table = RelayTable.from_endpoints(endpoints, alternate_count=10)

        assert table.alternates == endpoints[1:]

    def test_empty_endpoint_list_rejected(self):
        with pytest.raises(ConfigValidationError):
            RelayTable.from_endpoints([])

    def test_negative_alternate_count_rejected(self):
        with pytest.raises(ConfigValidationError):
            RelayTable.from_endpoints([RelayEndpoint("a", "https://a")], alternate_count=-1)


class TestConfigLoader:

    def test_loads_defaults(self, write_config, empty_env):
        config = ConfigLoader(write_config(_raw_config()), empty_env).get_executor_config()

        assert config.chain_id == 1
        assert config.relays.primary.name == "MEV-Share"
        assert [r.name for r in config.relays.alternates] == [
            "Flashbots", "BloXroute Max Profit", "BloXroute Regulated"
        ]
        assert config.blocks_to_try == 3
        assert config.gas_limit == 400000
        assert config.loan_amount_ether == 10
        assert config.private_key is None
        assert config.auth_key is None

    def test_env_overrides(self, write_config, empty_env, monkeypatch):
        monkeypatch.setenv("PRIVATE_KEY", "0xabc")
        monkeypatch.setenv("RPC_URL_OVERRIDE", "https://a.example, https://b.example")
        monkeypatch.setenv("ALTERNATE_RELAY_COUNT", "1")
        monkeypatch.setenv("PERCENTAGE_TO_KEEP", "5000")
        monkeypatch.setenv("DEBUG_MODE", "true")

        config = ConfigLoader(write_config(_raw_config()), empty_env).get_executor_config()

        assert config.rpc_urls == ["https://a.example", "https://b.example"]
        assert len(config.relays.alternates) == 1
        assert config.percentage_to_keep == 5000
        assert config.debug_mode is True
        assert config.auth_key == "0xabc"

    def test_separate_auth_key(self, write_config, empty_env, monkeypatch):
        monkeypatch.setenv("PRIVATE_KEY", "0xabc")
        monkeypatch.setenv("FLASHBOTS_AUTH_KEY", "0xdef")

        config = ConfigLoader(write_config(_raw_config()), empty_env).get_executor_config()

        assert config.auth_key == "0xdef"

    def test_dotenv_file_is_loaded(self, write_config, tmp_path):
        env_file = tmp_path / "custom.env"
        env_file.write_text("PERCENTAGE_TO_KEEP=4200\n", encoding="utf-8")

        config = ConfigLoader(write_config(_raw_config()), str(env_file)).get_executor_config()

        assert config.percentage_to_keep == 4200

    def test_config_is_cached(self, write_config, empty_env):
        loader = ConfigLoader(write_config(_raw_config()), empty_env)

        assert loader.get_executor_config() is loader.get_executor_config()

    def test_missing_file(self, tmp_path, empty_env):
        with pytest.raises(ConfigValidationError, match="配置文件不存在"):
            ConfigLoader(str(tmp_path / "missing.json"), empty_env)

    def test_invalid_json(self, tmp_path, empty_env):
        path = tmp_path / "relays.json"
        path.write_text("{not json", encoding="utf-8")

        with pytest.raises(ConfigValidationError):
            ConfigLoader(str(path), empty_env)

    @pytest.mark.parametrize("field", ["chain_id", "rpc_urls", "wnative_address", "relays"])
    def test_missing_required_field(self, write_config, empty_env, field):
        raw = _raw_config()
        del raw[field]

        with pytest.raises(ConfigValidationError, match=field):
            ConfigLoader(write_config(raw), empty_env).get_executor_config()

    @pytest.mark.parametrize("overrides", [
        {"rpc_urls": []},
        {"relays": []},
        {"relays": [{"name": "no-url"}]},
        {"wnative_address": "0x1234"},
        {"wnative_address": "0x" + "zz" * 20},
        {"flashloan_contract": ""},
        {"flashloan_contract": "0x" + "0" * 40},
        {"chain_id": "mainnet"},
        {"blocks_to_try": 0},
    ])
    def test_invalid_values(self, write_config, empty_env, overrides):
        with pytest.raises(ConfigValidationError):
            ConfigLoader(write_config(_raw_config(**overrides)), empty_env).get_executor_config()

    def test_empty_numeric_env_falls_back_to_default(self, write_config, empty_env, monkeypatch):
        monkeypatch.setenv("RPC_TIMEOUT", "")
        monkeypatch.setenv("MAX_RETRIES", "")

        config = ConfigLoader(write_config(_raw_config()), empty_env).get_executor_config()

        assert config.rpc_timeout == 10
        assert config.max_retries == 3

    @pytest.mark.parametrize("name", ["RPC_TIMEOUT", "RELAY_TIMEOUT", "MAX_RETRIES", "PERCENTAGE_TO_KEEP"])
    def test_non_integer_env_rejected(self, write_config, empty_env, monkeypatch, name):
        monkeypatch.setenv(name, "ten")

        with pytest.raises(ConfigValidationError, match=name):
            ConfigLoader(write_config(_raw_config()), empty_env).get_executor_config()

    def test_shipped_config_needs_contract_address(self, empty_env):
        with pytest.raises(ConfigValidationError, match="flashloan_contract"):
            ConfigLoader(env_path=empty_env).get_executor_config()

    def test_shipped_config_is_valid(self, empty_env, monkeypatch):
        monkeypatch.setenv("FLASHLOAN_CONTRACT", FLASHLOAN_CONTRACT)

        config = ConfigLoader(env_path=empty_env).get_executor_config()

        assert config.relays.primary.name == "MEV-Share"
        assert len(config.relays.alternates) == 3
