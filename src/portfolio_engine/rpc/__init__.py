"""RPC layer with provider interface, retry logic and probe caching.

`ApeRPCProvider` lives in `portfolio_engine.rpc.ape` and is imported only
when an Ape-backed provider is requested.
"""

from portfolio_engine.rpc.cache import CacheEntry, TTLCache
from portfolio_engine.rpc.provider import ChainProvider, JsonRpcProvider
from portfolio_engine.rpc.retry import RetryConfig, call_with_retry

__all__ = [
    "CacheEntry",
    "ChainProvider",
    "JsonRpcProvider",
    "RetryConfig",
    "TTLCache",
    "call_with_retry",
]
