"""Core models, errors, registry, fetching, valuation and aggregation."""

from portfolio_engine.core.errors import (
    InvalidAddress,
    NetworkUnavailable,
    NotFoundError,
    PortfolioEngineError,
    PriceUnavailable,
    RPCError,
    ValidationError,
)
from portfolio_engine.core.models import (
    AddressRecord,
    Portfolio,
    PortfolioAllocation,
    PortfolioSummary,
    RawBalance,
    RefreshResult,
    TokenDescriptor,
    ValuedBalance,
)

__all__ = [
    "AddressRecord",
    "InvalidAddress",
    "NetworkUnavailable",
    "NotFoundError",
    "Portfolio",
    "PortfolioAllocation",
    "PortfolioEngineError",
    "PortfolioSummary",
    "PriceUnavailable",
    "RPCError",
    "RawBalance",
    "RefreshResult",
    "TokenDescriptor",
    "ValidationError",
    "ValuedBalance",
]
