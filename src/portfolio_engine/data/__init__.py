"""Static network and token reference data."""

from portfolio_engine.data.loader import (
    get_all_supported_networks,
    get_chain_id,
    get_network_config,
    get_rpc_env_var,
    load_networks,
)
from portfolio_engine.data.tokens import TokenRegistry

__all__ = [
    "TokenRegistry",
    "get_all_supported_networks",
    "get_chain_id",
    "get_network_config",
    "get_rpc_env_var",
    "load_networks",
]
