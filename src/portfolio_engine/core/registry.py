"""Registry of per-network provider connections with liveness probing."""

import logging
import threading
import time
from collections.abc import Callable, Mapping
from datetime import UTC, datetime

from portfolio_engine.core.errors import NetworkConnectionError, UnknownNetworkError
from portfolio_engine.core.models import NetworkHandle
from portfolio_engine.rpc.cache import TTLCache
from portfolio_engine.rpc.factory import ProviderFactory, default_provider_factory
from portfolio_engine.rpc.provider import ChainProvider

logger = logging.getLogger(__name__)


class NetworkRegistry:
    """
    Holds one provider per connected network.

    The registry is constructed explicitly and passed to the components that
    need it. Networks that fail to connect are left out; running with only
    some networks available is a normal mode.

    Parameters
    ----------
    provider_factory : ProviderFactory | None
        Creates an unconnected provider for (network, endpoint). Defaults to
        the JSON-RPC provider.
    probe_ttl : float
        Seconds a liveness probe result may be reused
    clock : Callable[[], float]
        Monotonic clock, injectable for tests

    """

    def __init__(
        self,
        provider_factory: ProviderFactory | None = None,
        probe_ttl: float = 15.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.provider_factory = provider_factory or default_provider_factory()
        self._providers: dict[str, ChainProvider] = {}
        self._probes = TTLCache(default_ttl=probe_ttl, clock=clock)
        self._lock = threading.Lock()

    def connect(self, network_id: str, endpoint: str) -> ChainProvider:
        """
        Connect to a network and verify it with a block-height probe.

        Parameters
        ----------
        network_id : str
            Network name
        endpoint : str
            Node endpoint URL

        Returns
        -------
        ChainProvider
            The connected provider

        Raises
        ------
        NetworkConnectionError
            If the connection or the initial probe fails

        """
        provider = self.provider_factory(network_id, endpoint)
        try:
            provider.connect()
            height = provider.current_block_height()
        except Exception as e:
            try:
                provider.disconnect()
            except Exception as cleanup_error:
                logger.debug("Error closing %s provider: %s", network_id, cleanup_error)
            msg = f"failed to connect to {network_id}: {e}"
            raise NetworkConnectionError(msg) from e

        self.register(network_id, provider, block_height=height)
        logger.info("Connected to %s at block %d", network_id, height)
        return provider

    def register(self, network_id: str, provider: ChainProvider, block_height: int | None = None) -> None:
        """
        Add an already-connected provider.

        Replaces (and disconnects) any provider previously held for the network.

        """
        with self._lock:
            previous = self._providers.get(network_id)
            self._providers[network_id] = provider
        if previous is not None and previous is not provider:
            previous.disconnect()

        if block_height is None:
            self._probes.invalidate(network_id)
        else:
            self._probes.set(network_id, self._handle(network_id, live=True, block_height=block_height))

    def connect_all(self, endpoints: Mapping[str, str]) -> list[str]:
        """
        Connect every configured network, skipping the ones that fail.

        Parameters
        ----------
        endpoints : Mapping[str, str]
            Network name to endpoint URL

        Returns
        -------
        list[str]
            Networks that connected

        """
        connected = []
        for network_id, endpoint in endpoints.items():
            if not endpoint:
                continue
            try:
                self.connect(network_id, endpoint)
                connected.append(network_id)
            except NetworkConnectionError as e:
                logger.warning("Network %s unavailable, continuing without it: %s", network_id, e)

        logger.info("NetworkRegistry initialized with %d connected networks", len(connected))
        return connected

    def handle(self, network_id: str) -> ChainProvider:
        """
        Get the provider for a network.

        Raises
        ------
        UnknownNetworkError
            If the network has no connection

        """
        with self._lock:
            provider = self._providers.get(network_id)
        if provider is None:
            msg = f"network {network_id} not supported or not connected"
            raise UnknownNetworkError(msg)
        return provider

    def probe(self, network_id: str) -> NetworkHandle:
        """
        Liveness of a network, probing at most once per TTL.

        Unknown networks report as not live.

        """
        cached = self._probes.get(network_id)
        if cached is not None:
            return cached

        try:
            provider = self.handle(network_id)
        except UnknownNetworkError:
            return self._handle(network_id, live=False)

        try:
            handle = self._handle(network_id, live=True, block_height=provider.current_block_height())
        except Exception as e:
            logger.warning("Liveness probe failed for %s: %s", network_id, e)
            handle = self._handle(network_id, live=False)

        self._probes.set(network_id, handle)
        return handle

    def is_live(self, network_id: str) -> bool:
        return self.probe(network_id).live

    def networks(self) -> list[str]:
        """Names of networks with a connection."""
        with self._lock:
            return list(self._providers)

    def handles(self) -> list[NetworkHandle]:
        return [self.probe(network_id) for network_id in self.networks()]

    def status(self) -> dict[str, bool]:
        """Liveness of every connected network."""
        return {handle.network_id: handle.live for handle in self.handles()}

    def gas_price(self, network_id: str) -> int:
        """Suggested gas price in wei."""
        return self.handle(network_id).suggested_gas_price()

    def close(self) -> None:
        """Disconnect every provider."""
        with self._lock:
            providers = list(self._providers.items())
            self._providers.clear()
        self._probes.clear()

        for network_id, provider in providers:
            try:
                provider.disconnect()
            except Exception as e:
                logger.debug("Error disconnecting %s: %s", network_id, e)

    @staticmethod
    def _handle(network_id: str, live: bool, block_height: int | None = None) -> NetworkHandle:
        return NetworkHandle(
            network_id=network_id,
            live=live,
            block_height=block_height,
            checked_at=datetime.now(UTC),
        )

    def __enter__(self) -> "NetworkRegistry":
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        self.close()
