"""Native and ERC-20 balance fetching through read-only RPC calls."""

import logging

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_utils import is_address, to_checksum_address

from portfolio_engine.core.errors import InvalidAddress, NetworkUnavailable, RPCError, UnknownNetworkError
from portfolio_engine.core.models import AddressRecord, RawBalance, TokenDescriptor
from portfolio_engine.core.registry import NetworkRegistry
from portfolio_engine.data.tokens import TokenRegistry
from portfolio_engine.rpc.provider import ChainProvider

logger = logging.getLogger(__name__)

# keccak256("balanceOf(address)")[:4]
BALANCE_OF_SELECTOR = bytes.fromhex("70a08231")


def normalize_address(address: str) -> str:
    """
    Validate a hex address and return its checksummed form.

    All-lowercase and all-uppercase addresses are accepted; mixed-case
    addresses must carry a valid EIP-55 checksum.

    Raises
    ------
    InvalidAddress
        If the address is malformed or its checksum does not match

    """
    if not isinstance(address, str) or not is_address(address):
        raise InvalidAddress(str(address))
    return to_checksum_address(address)


def encode_balance_of(owner: str) -> bytes:
    """Calldata for `balanceOf(owner)`."""
    return BALANCE_OF_SELECTOR + abi_encode(["address"], [owner])


def decode_uint256(data: bytes) -> int:
    """
    Decode the first returned word as an unsigned integer.

    An empty return value counts as zero.

    """
    if not data:
        return 0
    (result,) = abi_decode(["uint256"], data[:32])
    return result


class BalanceFetcher:
    """
    Fetches native and known-token balances for an address.

    Token balances are only queried for the static token list of each
    network; nothing is discovered on-chain.

    Parameters
    ----------
    registry : NetworkRegistry
        Source of per-network providers
    tokens : TokenRegistry | None
        Known tokens per network. Defaults to the bundled reference data.

    """

    def __init__(self, registry: NetworkRegistry, tokens: TokenRegistry | None = None) -> None:
        self.registry = registry
        self.tokens = tokens or TokenRegistry()

    def native_balance(self, address: str, network: str) -> int:
        """
        Native currency balance in smallest units.

        Parameters
        ----------
        address : str
            Hex address
        network : str
            Network name

        Returns
        -------
        int
            Balance in wei (or the network's equivalent)

        Raises
        ------
        InvalidAddress
            If the address is malformed (no RPC call is made)
        NetworkUnavailable
            If the network has no connection
        RPCError
            If the balance query fails

        """
        checksummed = normalize_address(address)
        provider = self._provider(network)

        try:
            balance = provider.native_balance_at(checksummed)
        except RPCError:
            raise
        except Exception as e:
            msg = f"failed to get balance for {checksummed} on {network}: {e}"
            raise RPCError(msg) from e

        logger.debug("Balance for %s on %s: %d", checksummed, network, balance)
        return balance

    def token_balance(self, address: str, token: TokenDescriptor) -> int:
        """
        Balance of one token via `balanceOf`.

        Raises
        ------
        InvalidAddress
            If the owner address is malformed
        NetworkUnavailable
            If the token's network has no connection
        RPCError
            If the contract call fails or returns malformed data

        """
        checksummed = normalize_address(address)
        provider = self._provider(token.network)
        return self._call_balance_of(provider, checksummed, token)

    def token_balances(
        self,
        address: str,
        network: str,
        record: AddressRecord | None = None,
    ) -> list[RawBalance]:
        """
        Nonzero balances of every known token on a network.

        A token whose call fails, or whose balance is zero, is skipped: the
        usual reason is that the address simply holds none of it.

        Parameters
        ----------
        address : str
            Hex address
        network : str
            Network name
        record : AddressRecord | None
            Address record to attach to the balances; a detached record is
            created when None

        Returns
        -------
        list[RawBalance]
            One entry per held token, in token-list order

        Raises
        ------
        InvalidAddress
            If the address is malformed
        NetworkUnsupportedForTokens
            If the network has no token list
        NetworkUnavailable
            If the network has no connection

        """
        checksummed = normalize_address(address)
        known_tokens = self.tokens.tokens_for(network)
        provider = self._provider(network)
        record = record or AddressRecord(portfolio_id="", address=checksummed, network=network)

        balances = []
        for token in known_tokens:
            try:
                amount = self._call_balance_of(provider, checksummed, token)
            except RPCError as e:
                logger.debug("Skipping %s on %s for %s: %s", token.symbol, network, checksummed, e)
                continue

            if amount == 0:
                continue
            balances.append(RawBalance(address=record, token=token, amount=amount))

        return balances

    def _provider(self, network: str) -> ChainProvider:
        try:
            return self.registry.handle(network)
        except UnknownNetworkError as e:
            raise NetworkUnavailable(str(e)) from e

    @staticmethod
    def _call_balance_of(provider: ChainProvider, owner: str, token: TokenDescriptor) -> int:
        try:
            result = provider.call_read_only(token.contract_address, encode_balance_of(owner))
            return decode_uint256(result)
        except RPCError:
            raise
        except Exception as e:
            msg = f"balanceOf call to {token.symbol} ({token.contract_address}) failed: {e}"
            raise RPCError(msg) from e
