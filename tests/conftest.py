"""Pytest configuration and shared fakes for web3-portfolio-engine tests."""

import threading
import time
from decimal import Decimal

import pytest

from portfolio_engine.core.errors import RPCError
from portfolio_engine.core.fetcher import BalanceFetcher
from portfolio_engine.core.models import AddressRecord, Portfolio
from portfolio_engine.core.registry import NetworkRegistry
from portfolio_engine.pricing.static import StaticPriceOracle

ALICE = "0x1111111111111111111111111111111111111111"
BOB = "0x2222222222222222222222222222222222222222"
CAROL = "0x3333333333333333333333333333333333333333"

ETH_USDC = "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"
ETH_DAI = "0x6B175474E89094C44Da98b954EedeAC495271d0F"
POLYGON_USDC = "0x2791Bca1f2de4661ED88A30C99A7a9449Aa84174"


def pytest_configure(config):
    """Disable ape plugin during tests."""
    # Unregister ape pytest plugin to avoid network connection issues
    config.pluginmanager.set_blocked("ape_test")


class FakeProvider:
    """
    In-memory ChainProvider.

    Balances are keyed by lowercased address; token balances by
    (contract, owner), both lowercased.
    """

    def __init__(
        self,
        native: dict[str, int] | None = None,
        tokens: dict[tuple[str, str], int] | None = None,
        block_height: int = 100,
        gas_price: int = 30 * 10**9,
    ) -> None:
        self.native = {k.lower(): v for k, v in (native or {}).items()}
        self.tokens = {(c.lower(), o.lower()): v for (c, o), v in (tokens or {}).items()}
        self.block_height = block_height
        self.gas_price = gas_price
        self.failing_addresses: set[str] = set()
        self.failing_contracts: set[str] = set()
        self.slow_addresses: dict[str, float] = {}
        self.down = False
        self.connected = False
        self.block_calls = 0
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def connect(self) -> None:
        self.connected = True

    def disconnect(self) -> None:
        self.connected = False

    def current_block_height(self) -> int:
        self.block_calls += 1
        if self.down:
            raise RPCError("node down")
        return self.block_height

    def native_balance_at(self, address: str) -> int:
        with self._lock:
            self.calls.append(("native", address))
        delay = self.slow_addresses.get(address.lower())
        if delay:
            time.sleep(delay)
        if address.lower() in self.failing_addresses:
            raise RPCError(f"eth_getBalance failed for {address}")
        return self.native.get(address.lower(), 0)

    def call_read_only(self, contract_address: str, data: bytes) -> bytes:
        owner = "0x" + data[-20:].hex()
        with self._lock:
            self.calls.append(("call", contract_address))
        if contract_address.lower() in self.failing_contracts:
            raise RPCError("execution reverted")
        amount = self.tokens.get((contract_address.lower(), owner.lower()), 0)
        return amount.to_bytes(32, "big")

    def suggested_gas_price(self) -> int:
        return self.gas_price

    def fail_address(self, address: str) -> None:
        self.failing_addresses.add(address.lower())


@pytest.fixture
def eth_provider():
    return FakeProvider(
        native={ALICE: 2 * 10**18},
        tokens={(ETH_USDC, ALICE): 1_500_000, (ETH_USDC, BOB): 3_000_000},
    )


@pytest.fixture
def polygon_provider():
    return FakeProvider(native={CAROL: 10**18}, tokens={(POLYGON_USDC, CAROL): 5_000_000})


@pytest.fixture
def registry(eth_provider, polygon_provider):
    registry = NetworkRegistry(provider_factory=lambda network, endpoint: FakeProvider())
    registry.register("ethereum", eth_provider, block_height=eth_provider.block_height)
    registry.register("polygon", polygon_provider, block_height=polygon_provider.block_height)
    yield registry
    registry.close()


@pytest.fixture
def fetcher(registry):
    return BalanceFetcher(registry)


@pytest.fixture
def oracle():
    return StaticPriceOracle(
        {
            "USDC": Decimal("2.00"),
            "ETH": Decimal("2000"),
            "MATIC": Decimal("0.80"),
        }
    )


def make_portfolio(*entries: tuple[str, str], owner_id: str = "user-1") -> Portfolio:
    """Portfolio with one address record per (address, network) pair."""
    portfolio = Portfolio(owner_id=owner_id, name="test")
    records = [
        AddressRecord(portfolio_id=portfolio.id, address=address, network=network) for address, network in entries
    ]
    return portfolio.model_copy(update={"addresses": records})
