"""Engine settings loaded from the environment, and wiring helpers."""

import logging
from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from portfolio_engine.alerts.engine import NotificationPolicy
from portfolio_engine.core.registry import NetworkRegistry
from portfolio_engine.data.loader import get_rpc_env_var, load_networks
from portfolio_engine.pricing.base import PriceOracle
from portfolio_engine.pricing.defillama import DeFiLlamaPriceOracle
from portfolio_engine.pricing.static import StaticPriceOracle
from portfolio_engine.rpc.factory import default_provider_factory

logger = logging.getLogger(__name__)


class Settings(BaseSettings):
    """Engine settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # RPC endpoints, one per network; empty means the network is not connected
    ethereum_rpc_url: str = Field(default="", description="Ethereum mainnet RPC URL")
    polygon_rpc_url: str = Field(default="", description="Polygon RPC URL")
    bsc_rpc_url: str = Field(default="", description="BNB Smart Chain RPC URL")
    arbitrum_rpc_url: str = Field(default="", description="Arbitrum One RPC URL")

    rpc_provider: Literal["jsonrpc", "ape"] = Field(default="jsonrpc", description="Chain provider implementation")
    probe_ttl: float = Field(default=15.0, gt=0, description="Seconds a liveness probe may be reused")

    # Refresh pool sizing; networks.yaml overrides per network
    default_max_workers: int = Field(default=4, ge=1, le=64)
    default_timeout: float = Field(default=30.0, gt=0, description="Per-address fetch timeout in seconds")

    price_source: Literal["static", "defillama"] = Field(default="static")
    defillama_url: str = Field(default="https://coins.llama.fi")

    notification_policy: NotificationPolicy = Field(default=NotificationPolicy.REPEAT)

    log_level: str = Field(default="INFO")

    def endpoints(self) -> dict[str, str]:
        """Configured RPC URL per bundled network, read from the field named by its `rpc_env`."""
        urls = {}
        for network in load_networks():
            field = get_rpc_env_var(network).lower()
            if field not in type(self).model_fields:
                logger.warning("%s: rpc_env %s is not a known setting", network, field.upper())
                continue
            url = getattr(self, field)
            if url:
                urls[network] = url
        return urls

    def max_workers(self) -> dict[str, int]:
        """Pool size per network, from networks.yaml or the default."""
        return {
            network: int(config.get("max_workers", self.default_max_workers))
            for network, config in load_networks().items()
        }

    def timeouts(self) -> dict[str, float]:
        """Per-address timeout per network, from networks.yaml or the default."""
        return {
            network: float(config.get("timeout", self.default_timeout)) for network, config in load_networks().items()
        }


@lru_cache
def get_settings() -> Settings:
    """Cached settings instance."""
    return Settings()


def build_registry(settings: Settings) -> NetworkRegistry:
    """Create a registry and connect every network with a configured endpoint."""
    registry = NetworkRegistry(
        provider_factory=default_provider_factory(
            kind=settings.rpc_provider,
            timeouts=settings.timeouts(),
            default_timeout=settings.default_timeout,
        ),
        probe_ttl=settings.probe_ttl,
    )
    endpoints = settings.endpoints()
    if not endpoints:
        logger.warning("No RPC endpoints configured; set ETHEREUM_RPC_URL or another *_RPC_URL")
    registry.connect_all(endpoints)
    return registry


def build_oracle(settings: Settings) -> PriceOracle:
    if settings.price_source == "defillama":
        return DeFiLlamaPriceOracle(base_url=settings.defillama_url, timeout=settings.default_timeout)
    return StaticPriceOracle()
