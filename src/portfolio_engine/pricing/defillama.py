"""DeFiLlama pricing service for fetching token USD prices by symbol."""

import logging
from collections.abc import Mapping
from decimal import Decimal

import httpx

from portfolio_engine.core.errors import PriceUnavailable

logger = logging.getLogger(__name__)

# Symbol to CoinGecko id, the key DeFiLlama uses for chain-agnostic prices.
COINGECKO_IDS: dict[str, str] = {
    "ETH": "ethereum",
    "WETH": "weth",
    "USDT": "tether",
    "USDC": "usd-coin",
    "DAI": "dai",
    "MATIC": "matic-network",
    "WMATIC": "wmatic",
    "BNB": "binancecoin",
}


class DeFiLlamaPriceOracle:
    """
    Fetches token prices from the DeFiLlama coins API.

    Prices are parsed straight into Decimal; no binary float is involved.

    Parameters
    ----------
    base_url : str
        DeFiLlama API base URL
    coin_ids : Mapping[str, str] | None
        Symbol to CoinGecko id mapping, defaults to COINGECKO_IDS
    timeout : float
        HTTP timeout in seconds
    transport : httpx.BaseTransport | None
        Custom transport (e.g. httpx.MockTransport in tests)

    """

    def __init__(
        self,
        base_url: str = "https://coins.llama.fi",
        coin_ids: Mapping[str, str] | None = None,
        timeout: float = 10.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.coin_ids = {symbol.upper(): coin for symbol, coin in (coin_ids or COINGECKO_IDS).items()}
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def price_of(self, symbol: str) -> Decimal:
        """
        Fetch the USD price of one symbol.

        Raises
        ------
        PriceUnavailable
            If the symbol is unmapped, the request fails, or no price is returned

        """
        symbol = symbol.upper()
        price = self.prices_of([symbol]).get(symbol)
        if price is None:
            msg = f"price not available for {symbol}"
            raise PriceUnavailable(msg)
        return price

    def prices_of(self, symbols: list[str]) -> dict[str, Decimal]:
        """
        Fetch USD prices for several symbols in one request.

        Symbols without a mapping or without a returned price are omitted.

        Raises
        ------
        PriceUnavailable
            If the request itself fails

        """
        wanted = {symbol.upper(): self._format_coin_id(symbol) for symbol in symbols}
        wanted = {symbol: coin for symbol, coin in wanted.items() if coin}
        if not wanted:
            return {}

        coins = self._fetch_batch_prices(sorted(set(wanted.values())))

        result = {}
        for symbol, coin_id in wanted.items():
            price_info = coins.get(coin_id)
            if price_info and price_info.get("price") is not None:
                result[symbol] = Decimal(price_info["price"])
        return result

    def _fetch_batch_prices(self, coin_ids: list[str]) -> dict:
        url = f"{self.base_url}/prices/current/{','.join(coin_ids)}"
        try:
            response = self.client.get(url)
            response.raise_for_status()
            data = response.json(parse_float=Decimal)
        except (httpx.HTTPError, ValueError) as e:
            msg = f"DeFiLlama price request failed: {e}"
            raise PriceUnavailable(msg) from e
        return data.get("coins", {})

    def _format_coin_id(self, symbol: str) -> str | None:
        coin = self.coin_ids.get(symbol.upper())
        return f"coingecko:{coin}" if coin else None

    def close(self) -> None:
        """Close HTTP client."""
        self.client.close()

    def __enter__(self) -> "DeFiLlamaPriceOracle":
        """Context manager entry."""
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Context manager exit."""
        self.close()
