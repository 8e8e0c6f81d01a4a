"""Static price table for bootstrapping and tests."""

from collections.abc import Mapping
from decimal import Decimal

from portfolio_engine.core.errors import PriceUnavailable

DEFAULT_PRICES: dict[str, Decimal] = {
    "USDT": Decimal("1.00"),
    "USDC": Decimal("1.00"),
    "DAI": Decimal("1.00"),
    "ETH": Decimal("2000.00"),
    "WETH": Decimal("2000.00"),
    "MATIC": Decimal("0.80"),
    "WMATIC": Decimal("0.80"),
}


class StaticPriceOracle:
    """
    Price oracle backed by a fixed symbol-to-price table.

    Parameters
    ----------
    prices : Mapping[str, Decimal | str | int] | None
        Price table; defaults to DEFAULT_PRICES. Values are converted to
        Decimal, floats are rejected.

    """

    def __init__(self, prices: Mapping[str, Decimal | str | int] | None = None) -> None:
        table = DEFAULT_PRICES if prices is None else prices
        self._prices: dict[str, Decimal] = {}
        for symbol, price in table.items():
            if isinstance(price, float):
                msg = f"price for {symbol} must not be a float"
                raise TypeError(msg)
            self._prices[symbol.upper()] = Decimal(price)

    def price_of(self, symbol: str) -> Decimal:
        """
        Unit price of a symbol.

        Raises
        ------
        PriceUnavailable
            If the symbol is not in the table

        """
        try:
            return self._prices[symbol.upper()]
        except KeyError:
            msg = f"price not available for {symbol}"
            raise PriceUnavailable(msg) from None

    def set_price(self, symbol: str, price: Decimal) -> None:
        self._prices[symbol.upper()] = Decimal(price)
