"""Tests for environment-driven settings and wiring helpers."""

import pytest

from portfolio_engine.alerts import NotificationPolicy
from portfolio_engine.config import Settings, build_oracle, build_registry
from portfolio_engine.data import get_all_supported_networks, get_rpc_env_var
from portfolio_engine.pricing import DeFiLlamaPriceOracle, StaticPriceOracle

RPC_ENV = ("ETHEREUM_RPC_URL", "POLYGON_RPC_URL", "BSC_RPC_URL", "ARBITRUM_RPC_URL")


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in RPC_ENV:
        monkeypatch.delenv(name, raising=False)
    for name in ("PRICE_SOURCE", "NOTIFICATION_POLICY", "DEFAULT_TIMEOUT", "DEFAULT_MAX_WORKERS"):
        monkeypatch.delenv(name, raising=False)


def test_defaults():
    """Test settings without any environment."""
    settings = Settings(_env_file=None)

    assert settings.endpoints() == {}
    assert settings.rpc_provider == "jsonrpc"
    assert settings.price_source == "static"
    assert settings.notification_policy is NotificationPolicy.REPEAT


def test_endpoints_from_environment(monkeypatch):
    """Test *_RPC_URL variables become endpoints."""
    monkeypatch.setenv("ETHEREUM_RPC_URL", "https://eth.example")
    monkeypatch.setenv("polygon_rpc_url", "https://polygon.example")
    monkeypatch.setenv("NOTIFICATION_POLICY", "on_change")

    settings = Settings(_env_file=None)

    assert settings.endpoints() == {"ethereum": "https://eth.example", "polygon": "https://polygon.example"}
    assert settings.notification_policy is NotificationPolicy.ON_CHANGE


def test_every_network_rpc_env_is_a_setting():
    """Test each bundled network's rpc_env names a declared settings field."""
    for network in get_all_supported_networks():
        assert get_rpc_env_var(network).lower() in Settings.model_fields


def test_endpoints_follow_rpc_env(monkeypatch, caplog):
    """Test endpoints are read from the variable each network's rpc_env names."""
    monkeypatch.setenv("ARBITRUM_RPC_URL", "https://arb.example")
    rpc_env = {"ethereum": "ARBITRUM_RPC_URL", "polygon": "SOLANA_RPC_URL"}
    monkeypatch.setattr(
        "portfolio_engine.config.get_rpc_env_var", lambda network: rpc_env.get(network, f"{network.upper()}_RPC_URL")
    )

    endpoints = Settings(_env_file=None).endpoints()

    assert endpoints == {"ethereum": "https://arb.example", "arbitrum": "https://arb.example"}
    assert "SOLANA_RPC_URL is not a known setting" in caplog.text


def test_per_network_pool_settings(monkeypatch):
    """Test networks.yaml overrides the default pool size and timeout."""
    monkeypatch.setenv("DEFAULT_TIMEOUT", "42")

    settings = Settings(_env_file=None)

    assert settings.default_timeout == 42.0
    assert settings.max_workers()["bsc"] == 2
    assert settings.timeouts()["bsc"] == 15.0
    assert settings.timeouts()["ethereum"] == 10.0


def test_invalid_settings_rejected(monkeypatch):
    """Test out-of-range values fail validation."""
    monkeypatch.setenv("DEFAULT_MAX_WORKERS", "0")

    with pytest.raises(ValueError):
        Settings(_env_file=None)


def test_build_oracle():
    """Test the configured price source is used."""
    assert isinstance(build_oracle(Settings(_env_file=None)), StaticPriceOracle)

    oracle = build_oracle(Settings(_env_file=None, price_source="defillama"))
    assert isinstance(oracle, DeFiLlamaPriceOracle)
    oracle.close()


def test_build_registry_without_endpoints(caplog):
    """Test an unconfigured environment gives an empty registry."""
    with build_registry(Settings(_env_file=None)) as registry:
        assert registry.networks() == []
    assert "No RPC endpoints configured" in caplog.text
