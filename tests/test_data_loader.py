"""Tests for data loading and the token registry."""

import pytest

from portfolio_engine.core.errors import NetworkUnsupportedForTokens, UnknownNetworkError
from portfolio_engine.data import (
    TokenRegistry,
    get_all_supported_networks,
    get_chain_id,
    get_network_config,
    get_rpc_env_var,
)


def test_get_all_supported_networks():
    """Test getting all supported network names."""
    networks = get_all_supported_networks()

    assert isinstance(networks, list)
    assert {"ethereum", "polygon", "bsc", "arbitrum"} <= set(networks)


def test_get_network_config():
    """Test getting network configuration."""
    config = get_network_config("ethereum")

    assert config["chain_id"] == 1
    assert config["native"]["symbol"] == "ETH"
    assert config["tokens"]


def test_get_network_config_unknown():
    """Test unknown networks raise."""
    with pytest.raises(UnknownNetworkError):
        get_network_config("solana")


def test_get_chain_id():
    """Test getting chain ID."""
    assert get_chain_id("ethereum") == 1
    assert get_chain_id("polygon") == 137
    assert get_chain_id("bsc") == 56
    assert get_chain_id("arbitrum") == 42161


def test_get_rpc_env_var():
    """Test RPC URL environment variable names."""
    assert get_rpc_env_var("ethereum") == "ETHEREUM_RPC_URL"
    assert get_rpc_env_var("bsc") == "BSC_RPC_URL"


def test_every_bundled_token_states_decimals():
    """Test bundled token lists never rely on the default decimals."""
    for network in get_all_supported_networks():
        for entry in get_network_config(network)["tokens"]:
            assert "decimals" in entry, f"{entry['symbol']} on {network}"


def test_token_registry_bundled_decimals():
    """Test stablecoin decimals on Ethereum."""
    registry = TokenRegistry()
    usdc = registry.lookup("ethereum", "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48")

    assert usdc is not None
    assert usdc.symbol == "USDC"
    assert usdc.decimals == 6


def test_token_registry_native_tokens():
    """Test native token table."""
    registry = TokenRegistry()

    assert registry.native_token("ethereum").symbol == "ETH"
    assert registry.native_token("polygon").symbol == "MATIC"
    assert registry.native_token("bsc").symbol == "BNB"
    assert registry.native_token("arbitrum").symbol == "ETH"
    assert registry.native_token("ethereum").is_native


def test_token_registry_unknown_network_native_fallback():
    """Test unknown networks get a generic native descriptor."""
    native = TokenRegistry().native_token("unknown")

    assert native.symbol == "NATIVE"
    assert native.name == "Native Token"
    assert native.decimals == 18


def test_token_registry_custom_data():
    """Test a custom network mapping and missing token lists."""
    registry = TokenRegistry(
        {
            "devnet": {
                "native": {"symbol": "DEV", "decimals": 18},
                "tokens": [{"address": "0x1111111111111111111111111111111111111111", "symbol": "TKN"}],
            },
            "bare": {"native": {"symbol": "BARE"}},
        }
    )

    (token,) = registry.tokens_for("devnet")
    assert token.symbol == "TKN"
    assert token.decimals == 18
    assert registry.networks() == ["devnet", "bare"]

    with pytest.raises(NetworkUnsupportedForTokens):
        registry.tokens_for("bare")
