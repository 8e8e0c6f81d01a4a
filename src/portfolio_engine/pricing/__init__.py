"""Pricing services for token fiat valuation."""

from portfolio_engine.pricing.base import PriceOracle, snapshot_prices
from portfolio_engine.pricing.defillama import DeFiLlamaPriceOracle
from portfolio_engine.pricing.static import DEFAULT_PRICES, StaticPriceOracle

__all__ = [
    "DEFAULT_PRICES",
    "DeFiLlamaPriceOracle",
    "PriceOracle",
    "StaticPriceOracle",
    "snapshot_prices",
]
