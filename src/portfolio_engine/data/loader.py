"""Network and token reference data loader."""

from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml

from portfolio_engine.core.errors import UnknownNetworkError


@lru_cache(maxsize=1)
def load_networks() -> dict[str, Any]:
    """
    Load static network reference data from networks.yaml.

    Returns
    -------
    dict[str, Any]
        Mapping of network name to its configuration

    """
    path = Path(__file__).parent / "networks.yaml"
    with open(path, encoding="utf-8") as f:
        return yaml.safe_load(f)["networks"]


def get_network_config(network: str) -> dict[str, Any]:
    """
    Get configuration for a specific network.

    Parameters
    ----------
    network : str
        Network name (e.g., 'ethereum', 'polygon')

    Returns
    -------
    dict[str, Any]
        Network configuration including native token and token list

    Raises
    ------
    UnknownNetworkError
        If the network is not listed

    """
    networks = load_networks()
    if network not in networks:
        msg = f"network {network} is not supported"
        raise UnknownNetworkError(msg)
    return networks[network]


def get_all_supported_networks() -> list[str]:
    """
    Get list of all supported network names.

    Returns
    -------
    list[str]
        List of network names

    """
    return list(load_networks().keys())


def get_chain_id(network: str) -> int:
    """Get numeric chain ID."""
    return get_network_config(network)["chain_id"]


def get_rpc_env_var(network: str) -> str:
    """Environment variable holding the RPC URL for a network."""
    return get_network_config(network).get("rpc_env", f"{network.upper()}_RPC_URL")
