"""Chain provider backed by Ape's network management."""

import logging
from typing import Any

from ape import networks
from eth_utils import encode_hex

from portfolio_engine.core.errors import RPCError
from portfolio_engine.rpc.provider import hex_to_bytes, hex_to_int
from portfolio_engine.rpc.retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


class ApeRPCProvider:
    """
    RPC provider using Ape's network management system.

    Ape picks the node from its own configuration (e.g. Infura when
    WEB3_INFURA_PROJECT_ID is set). A custom endpoint URL can be given as the
    provider part of the network choice.

    Parameters
    ----------
    network : str
        Network name, used as the Ape ecosystem (e.g., 'ethereum', 'polygon')
    endpoint : str | None
        Node URL; None lets Ape choose its configured provider
    chain_network : str
        Ape network name (default: 'mainnet')
    retry_config : RetryConfig | None
        Retry configuration for each request

    """

    def __init__(
        self,
        network: str,
        endpoint: str | None = None,
        chain_network: str = "mainnet",
        retry_config: RetryConfig | None = None,
    ) -> None:
        self.network = network
        self.endpoint = endpoint
        self.chain_network = chain_network
        self._network_context = None
        self._provider = None
        self.retry_config = retry_config or RetryConfig(max_retries=2, base_delay=1.0, max_delay=10.0)

    @property
    def network_choice(self) -> str:
        choice = f"{self.network}:{self.chain_network}"
        if self.endpoint:
            choice = f"{choice}:{self.endpoint}"
        return choice

    def connect(self) -> None:
        """Connect to the network using Ape's network management."""
        try:
            self._network_context = networks.parse_network_choice(self.network_choice)
            self._network_context.__enter__()
            self._provider = networks.provider
        except Exception as e:
            error_msg = f"Failed to connect to {self.network_choice}: {e}"
            raise RPCError(error_msg) from e

    def disconnect(self) -> None:
        """Disconnect from the network."""
        if self._network_context:
            try:
                self._network_context.__exit__(None, None, None)
            except Exception as e:
                logger.debug("Error during network context cleanup: %s", e)
            self._network_context = None
        self._provider = None

    def make_request(self, method: str, params: list[Any]) -> Any:
        """
        Make an RPC request through Ape with retry logic.

        Raises
        ------
        RPCError
            If the provider is not connected or all attempts fail

        """
        if not self._provider:
            error_msg = "Provider not connected. Call connect() first."
            raise RPCError(error_msg)

        try:
            return call_with_retry(self.retry_config, self._provider.make_request, method, params)
        except Exception as e:
            msg = f"{self.network} RPC call {method} failed: {e}"
            raise RPCError(msg) from e

    def current_block_height(self) -> int:
        return hex_to_int(self.make_request("eth_blockNumber", []))

    def native_balance_at(self, address: str) -> int:
        return hex_to_int(self.make_request("eth_getBalance", [address, "latest"]))

    def call_read_only(self, contract_address: str, data: bytes) -> bytes:
        result = self.make_request("eth_call", [{"to": contract_address, "data": encode_hex(data)}, "latest"])
        return hex_to_bytes(result or "0x")

    def suggested_gas_price(self) -> int:
        return hex_to_int(self.make_request("eth_gasPrice", []))

    def __enter__(self) -> "ApeRPCProvider":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Context manager exit."""
        self.disconnect()
