"""Provider construction from settings."""

from collections.abc import Callable, Mapping

from portfolio_engine.rpc.provider import ChainProvider, JsonRpcProvider

ProviderFactory = Callable[[str, str], ChainProvider]


def default_provider_factory(
    kind: str = "jsonrpc",
    timeouts: Mapping[str, float] | None = None,
    default_timeout: float = 10.0,
) -> ProviderFactory:
    """
    Build a factory that creates an unconnected provider per network.

    Parameters
    ----------
    kind : str
        'jsonrpc' for the httpx provider, 'ape' for Ape's network manager
    timeouts : Mapping[str, float] | None
        Per-network request timeouts in seconds
    default_timeout : float
        Timeout for networks without an entry in `timeouts`

    Returns
    -------
    ProviderFactory
        Callable taking (network, endpoint)

    """
    timeouts = dict(timeouts or {})

    if kind == "ape":
        from portfolio_engine.rpc.ape import ApeRPCProvider

        def make_ape(network: str, endpoint: str) -> ChainProvider:
            return ApeRPCProvider(network=network, endpoint=endpoint or None)

        return make_ape

    if kind != "jsonrpc":
        msg = f"unknown provider kind: {kind}"
        raise ValueError(msg)

    def make_jsonrpc(network: str, endpoint: str) -> ChainProvider:
        return JsonRpcProvider(network=network, endpoint=endpoint, timeout=timeouts.get(network, default_timeout))

    return make_jsonrpc
