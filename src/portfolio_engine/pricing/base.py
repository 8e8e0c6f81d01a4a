"""Price oracle interface and per-cycle price snapshots."""

import logging
from collections.abc import Iterable
from decimal import Decimal
from typing import Protocol, runtime_checkable

from portfolio_engine.core.errors import PriceUnavailable

logger = logging.getLogger(__name__)


@runtime_checkable
class PriceOracle(Protocol):
    """
    Source of fiat unit prices keyed by token symbol.

    Methods
    -------
    price_of(symbol)
        Current unit price; raises PriceUnavailable when unknown

    """

    def price_of(self, symbol: str) -> Decimal: ...


def snapshot_prices(oracle: PriceOracle, symbols: Iterable[str]) -> dict[str, Decimal | None]:
    """
    Look up every symbol once and freeze the results.

    Oracles exposing `prices_of(symbols)` are queried in one batch. A symbol
    without a price maps to None.

    Parameters
    ----------
    oracle : PriceOracle
        Price source
    symbols : Iterable[str]
        Symbols to price

    Returns
    -------
    dict[str, Decimal | None]
        Symbol (upper-cased) to unit price

    """
    wanted = sorted({symbol.upper() for symbol in symbols})
    if not wanted:
        return {}

    batch = getattr(oracle, "prices_of", None)
    if callable(batch):
        try:
            found = batch(wanted)
        except PriceUnavailable as e:
            logger.warning("Batch price lookup failed: %s", e)
            found = {}
        return {symbol: found.get(symbol) for symbol in wanted}

    prices: dict[str, Decimal | None] = {}
    for symbol in wanted:
        try:
            prices[symbol] = oracle.price_of(symbol)
        except PriceUnavailable as e:
            logger.debug("No price for %s: %s", symbol, e)
            prices[symbol] = None
    return prices
