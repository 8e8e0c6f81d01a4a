"""Static per-network token registry."""

from collections.abc import Mapping
from typing import Any

from portfolio_engine.core.errors import NetworkUnsupportedForTokens
from portfolio_engine.core.models import DEFAULT_TOKEN_DECIMALS, NATIVE_TOKEN_ADDRESS, TokenDescriptor
from portfolio_engine.data.loader import load_networks


class TokenRegistry:
    """
    Lookup of known tokens per network.

    Token lists are static; nothing is discovered on-chain. Any other source
    (a token-list API, a database table) can stand in as long as it is turned
    into the same `{network: config}` mapping.

    Parameters
    ----------
    networks : Mapping[str, Any] | None
        Network configuration in the networks.yaml shape. Defaults to the
        bundled reference data.

    """

    def __init__(self, networks: Mapping[str, Any] | None = None) -> None:
        self._tokens: dict[str, list[TokenDescriptor]] = {}
        self._by_key: dict[tuple[str, str], TokenDescriptor] = {}
        self._native: dict[str, TokenDescriptor] = {}

        for network, config in (networks if networks is not None else load_networks()).items():
            native = config.get("native") or {}
            self._native[network] = TokenDescriptor(
                network=network,
                contract_address=NATIVE_TOKEN_ADDRESS,
                symbol=native.get("symbol", "NATIVE"),
                name=native.get("name", "Native Token"),
                decimals=native.get("decimals", DEFAULT_TOKEN_DECIMALS),
            )

            if "tokens" not in config:
                continue
            descriptors = []
            for entry in config["tokens"] or []:
                token = TokenDescriptor(
                    network=network,
                    contract_address=entry["address"],
                    symbol=entry["symbol"],
                    name=entry.get("name"),
                    decimals=entry.get("decimals", DEFAULT_TOKEN_DECIMALS),
                )
                descriptors.append(token)
                self._by_key[token.key] = token
            self._tokens[network] = descriptors

    def tokens_for(self, network: str) -> list[TokenDescriptor]:
        """
        Get the known tokens for a network.

        Parameters
        ----------
        network : str
            Network name

        Returns
        -------
        list[TokenDescriptor]
            Known tokens (possibly empty)

        Raises
        ------
        NetworkUnsupportedForTokens
            If the network has no token list at all

        """
        if network not in self._tokens:
            msg = f"network {network} not supported for token balances"
            raise NetworkUnsupportedForTokens(msg)
        return list(self._tokens[network])

    def lookup(self, network: str, contract_address: str) -> TokenDescriptor | None:
        """Find a token by (network, contract address), case-insensitively."""
        return self._by_key.get((network, contract_address.lower()))

    def native_token(self, network: str) -> TokenDescriptor:
        """
        Native currency descriptor for a network.

        Unknown networks get a generic 'NATIVE' descriptor with default decimals.

        """
        if network in self._native:
            return self._native[network]
        return TokenDescriptor(
            network=network,
            contract_address=NATIVE_TOKEN_ADDRESS,
            symbol="NATIVE",
            name="Native Token",
        )

    def networks(self) -> list[str]:
        return list(self._native.keys())
