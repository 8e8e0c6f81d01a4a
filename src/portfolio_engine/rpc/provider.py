"""Chain provider interface and a JSON-RPC implementation over httpx."""

import itertools
import logging
import threading
from typing import Any, Protocol, runtime_checkable

import httpx
from eth_utils import decode_hex, encode_hex, to_int

from portfolio_engine.core.errors import RPCError
from portfolio_engine.rpc.retry import RetryConfig, call_with_retry

logger = logging.getLogger(__name__)


@runtime_checkable
class ChainProvider(Protocol):
    """
    Read-only capabilities the engine needs from a network node.

    Any client library can back this interface; the engine never talks to a
    node through anything else.

    Methods
    -------
    connect()
        Open the underlying connection
    disconnect()
        Release the underlying connection
    current_block_height()
        Latest block number
    native_balance_at(address)
        Native currency balance in smallest units
    call_read_only(contract_address, data)
        eth_call against the latest block, returning raw bytes
    suggested_gas_price()
        Node's gas price suggestion in wei

    """

    def connect(self) -> None: ...

    def disconnect(self) -> None: ...

    def current_block_height(self) -> int: ...

    def native_balance_at(self, address: str) -> int: ...

    def call_read_only(self, contract_address: str, data: bytes) -> bytes: ...

    def suggested_gas_price(self) -> int: ...


def hex_to_int(value: Any) -> int:
    if isinstance(value, int):
        return value
    return to_int(hexstr=value)


def hex_to_bytes(value: Any) -> bytes:
    if isinstance(value, str):
        return decode_hex(value)
    return bytes(value)


class JsonRpcProvider:
    """
    Ethereum JSON-RPC provider over HTTP.

    Transport failures and 429/5xx responses are retried with exponential
    backoff; JSON-RPC error objects (e.g. a reverted call) are not.

    Parameters
    ----------
    network : str
        Network name, used in log and error messages
    endpoint : str
        HTTP(S) RPC endpoint URL
    timeout : float
        Per-request timeout in seconds
    retry_config : RetryConfig | None
        Retry configuration
    transport : httpx.BaseTransport | None
        Custom transport (e.g. httpx.MockTransport in tests)

    """

    def __init__(
        self,
        network: str,
        endpoint: str,
        timeout: float = 10.0,
        retry_config: RetryConfig | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        self.network = network
        self.endpoint = endpoint
        self.timeout = timeout
        self.retry_config = retry_config or RetryConfig(
            max_retries=2,
            base_delay=0.5,
            max_delay=5.0,
            retry_on=(httpx.TransportError, httpx.HTTPStatusError),
        )
        self._transport = transport
        self._client: httpx.Client | None = None
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def connect(self) -> None:
        """Create the HTTP client. Idempotent."""
        with self._lock:
            if self._client is None:
                self._client = httpx.Client(timeout=self.timeout, transport=self._transport)

    def disconnect(self) -> None:
        """Close the HTTP client."""
        with self._lock:
            if self._client is not None:
                self._client.close()
                self._client = None

    def make_request(self, method: str, params: list[Any]) -> Any:
        """
        Make a JSON-RPC request with retry logic.

        Parameters
        ----------
        method : str
            RPC method name (e.g., 'eth_call', 'eth_getBalance')
        params : list[Any]
            Method parameters

        Returns
        -------
        Any
            The `result` member of the response

        Raises
        ------
        RPCError
            If the provider is not connected, all attempts fail, or the node
            returns an error object

        """
        if self._client is None:
            msg = f"{self.network} provider not connected. Call connect() first."
            raise RPCError(msg)

        try:
            return call_with_retry(self.retry_config, self._post, method, params)
        except (httpx.HTTPError, ValueError) as e:
            msg = f"{self.network} RPC call {method} failed: {e}"
            raise RPCError(msg) from e

    def _post(self, method: str, params: list[Any]) -> Any:
        payload = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        response = self._client.post(self.endpoint, json=payload)
        response.raise_for_status()
        body = response.json()
        if not isinstance(body, dict):
            msg = f"{self.network} RPC call {method} returned a non-object response: {body!r}"
            raise RPCError(msg)

        if body.get("error"):
            error = body["error"]
            if not isinstance(error, dict):
                error = {"message": error}
            msg = f"{self.network} RPC call {method} returned error {error.get('code')}: {error.get('message')}"
            raise RPCError(msg)
        return body.get("result")

    def current_block_height(self) -> int:
        return hex_to_int(self.make_request("eth_blockNumber", []))

    def native_balance_at(self, address: str) -> int:
        return hex_to_int(self.make_request("eth_getBalance", [address, "latest"]))

    def call_read_only(self, contract_address: str, data: bytes) -> bytes:
        result = self.make_request("eth_call", [{"to": contract_address, "data": encode_hex(data)}, "latest"])
        return hex_to_bytes(result or "0x")

    def suggested_gas_price(self) -> int:
        return hex_to_int(self.make_request("eth_gasPrice", []))

    def __enter__(self) -> "JsonRpcProvider":
        """Context manager entry."""
        self.connect()
        return self

    def __exit__(self, exc_type: type, exc_val: Exception, exc_tb: object) -> None:
        """Context manager exit."""
        self.disconnect()
