"""Tests for the portfolio aggregator."""

import itertools
import threading
import time
from decimal import Decimal

import pytest
from conftest import ALICE, BOB, CAROL, ETH_USDC, FakeProvider, make_portfolio

from portfolio_engine.core.aggregator import PortfolioAggregator
from portfolio_engine.core.errors import RefreshCancelled, ValidationError
from portfolio_engine.core.fetcher import BalanceFetcher
from portfolio_engine.core.registry import NetworkRegistry
from portfolio_engine.pricing.static import StaticPriceOracle
from portfolio_engine.store import InMemoryRecordStore, attribute_key


def _aggregator(fetcher, oracle, **kwargs):
    return PortfolioAggregator(fetcher=fetcher, oracle=oracle, **kwargs)


def _normalized(result):
    return [
        (b.raw.address.id, b.raw.token.contract_address, b.raw.amount, b.scaled_amount, b.unit_price, b.fiat_value)
        for b in result.balances
    ]


def test_end_to_end_usdc_valuation():
    """Test 1,500,000 raw units at 6 decimals and price 2.00."""
    provider = FakeProvider(tokens={(ETH_USDC, ALICE): 1_500_000})
    registry = NetworkRegistry(provider_factory=lambda network, endpoint: provider)
    registry.register("ethereum", provider)
    aggregator = _aggregator(BalanceFetcher(registry), StaticPriceOracle({"USDC": Decimal("2.00")}))

    result = aggregator.refresh_balances(make_portfolio((ALICE, "ethereum")))

    assert result.failure_count == 0
    (balance,) = result.balances
    assert balance.symbol == "USDC"
    assert balance.scaled_amount == Decimal("1.5")
    assert balance.fiat_value == Decimal("3.00")
    assert balance.cycle_id == result.cycle_id


def test_native_balance_uses_native_token_table(fetcher, oracle):
    """Test nonzero native balances are reported with the network's native symbol."""
    result = _aggregator(fetcher, oracle).refresh_balances(make_portfolio((CAROL, "polygon")))

    native = [b for b in result.balances if b.raw.native]
    assert len(native) == 1
    assert native[0].symbol == "MATIC"
    assert native[0].fiat_value == Decimal("0.80")


def test_zero_native_balance_is_omitted(fetcher, oracle):
    """Test a zero native balance produces no entry."""
    result = _aggregator(fetcher, oracle).refresh_balances(make_portfolio((BOB, "ethereum")))

    assert [b.symbol for b in result.balances] == ["USDC"]


def test_missing_price_keeps_balance(fetcher):
    """Test an unpriced balance is kept with a null value."""
    result = _aggregator(fetcher, StaticPriceOracle({"ETH": Decimal("2000")})).refresh_balances(
        make_portfolio((ALICE, "ethereum"))
    )

    by_symbol = {b.symbol: b for b in result.balances}
    assert by_symbol["ETH"].fiat_value == Decimal("4000")
    assert by_symbol["USDC"].unit_price is None
    assert by_symbol["USDC"].fiat_value is None
    assert by_symbol["USDC"].scaled_amount == Decimal("1.5")


def test_partial_failure_is_isolated(fetcher, oracle, eth_provider):
    """Test one failing address out of three leaves the others intact."""
    eth_provider.fail_address(ALICE)
    portfolio = make_portfolio((ALICE, "ethereum"), (BOB, "ethereum"), (CAROL, "polygon"))

    result = _aggregator(fetcher, oracle).refresh_balances(portfolio)

    assert result.failure_count == 1
    failure = result.failures[0]
    assert failure.address == ALICE
    assert failure.error_type == "RPCError"
    assert {b.raw.address.address for b in result.balances} == {BOB, CAROL}
    bob_usdc = next(b for b in result.balances if b.raw.address.address == BOB)
    assert bob_usdc.fiat_value == Decimal("6.00")


def test_unconnected_network_counts_as_failure(fetcher, oracle):
    """Test an address on an unconnected network is a partial failure."""
    result = _aggregator(fetcher, oracle).refresh_balances(make_portfolio((ALICE, "bsc"), (BOB, "ethereum")))

    assert result.failure_count == 1
    assert result.failures[0].error_type == "NetworkUnavailable"
    assert len(result.balances) == 1


def test_all_addresses_failing_gives_empty_result(fetcher, oracle, eth_provider):
    """Test zero successful fetches is a valid, empty result."""
    eth_provider.fail_address(ALICE)
    eth_provider.fail_address(BOB)

    result = _aggregator(fetcher, oracle).refresh_balances(make_portfolio((ALICE, "ethereum"), (BOB, "ethereum")))

    assert result.balances == []
    assert result.failure_count == 2


def test_empty_portfolio(fetcher, oracle):
    """Test a portfolio without addresses."""
    result = _aggregator(fetcher, oracle).refresh_balances(make_portfolio())

    assert result.balances == []
    assert result.failures == []


def test_refresh_is_idempotent(fetcher, oracle):
    """Test two refreshes without upstream change give identical balances."""
    aggregator = _aggregator(fetcher, oracle)
    portfolio = make_portfolio((ALICE, "ethereum"), (BOB, "ethereum"), (CAROL, "polygon"))

    first = aggregator.refresh_balances(portfolio)
    second = aggregator.refresh_balances(portfolio)

    assert _normalized(first) == _normalized(second)
    assert first.cycle_id != second.cycle_id
    assert aggregator.latest(portfolio.id) is second


def test_stalled_address_times_out(fetcher, oracle, eth_provider):
    """Test a stalled provider call becomes a per-address failure."""
    eth_provider.slow_addresses[ALICE.lower()] = 1.0
    aggregator = _aggregator(fetcher, oracle, timeouts={"ethereum": 0.1})

    result = aggregator.refresh_balances(make_portfolio((ALICE, "ethereum"), (BOB, "ethereum")))

    assert result.failure_count == 1
    assert result.failures[0].error_type == "UnitTimeout"
    assert [b.raw.address.address for b in result.balances] == [BOB]


def test_stalled_network_does_not_hang_refresh(fetcher, oracle, eth_provider):
    """Test addresses queued behind a stalled single-worker pool fail fast."""
    eth_provider.slow_addresses[ALICE.lower()] = 2.0
    eth_provider.slow_addresses[BOB.lower()] = 2.0
    aggregator = _aggregator(fetcher, oracle, max_workers={"ethereum": 1}, timeouts={"ethereum": 0.2})

    started = time.monotonic()
    result = aggregator.refresh_balances(make_portfolio((ALICE, "ethereum"), (BOB, "ethereum"), (CAROL, "polygon")))
    elapsed = time.monotonic() - started

    assert elapsed < 1.5
    assert result.failure_count == 2
    assert {f.error_type for f in result.failures} == {"UnitTimeout"}
    assert {b.raw.address.address for b in result.balances} == {CAROL}


def test_superseded_refresh_is_cancelled(oracle):
    """Test a newer refresh of the same portfolio cancels the older one."""
    gate = threading.Event()
    entered = threading.Event()
    calls = itertools.count()

    class GatedProvider(FakeProvider):
        def native_balance_at(self, address):
            # only the first refresh blocks
            if next(calls) == 0:
                entered.set()
                gate.wait(5)
            return super().native_balance_at(address)

    provider = GatedProvider(tokens={(ETH_USDC, ALICE): 1_000_000})
    registry = NetworkRegistry(provider_factory=lambda network, endpoint: provider)
    registry.register("ethereum", provider)
    aggregator = _aggregator(BalanceFetcher(registry), oracle)
    portfolio = make_portfolio((ALICE, "ethereum"))

    errors = []

    def first_refresh():
        try:
            aggregator.refresh_balances(portfolio)
        except RefreshCancelled as e:
            errors.append(e)

    thread = threading.Thread(target=first_refresh)
    thread.start()
    assert entered.wait(5)

    second = aggregator.refresh_balances(portfolio)
    thread.join(5)
    gate.set()

    assert len(errors) == 1
    assert aggregator.latest(portfolio.id) is second
    assert second.balances[0].scaled_amount == Decimal("1")


def test_cancel_without_inflight_refresh(fetcher, oracle):
    """Test cancel reports whether a refresh was running."""
    assert _aggregator(fetcher, oracle).cancel("nope") is False


def test_completed_refresh_upserts_to_store(fetcher, oracle):
    """Test balances are upserted keyed by (address id, token address)."""
    store = InMemoryRecordStore(key=attribute_key("record_key"), owner=attribute_key("portfolio_id"))
    aggregator = _aggregator(fetcher, oracle, store=store)
    portfolio = make_portfolio((ALICE, "ethereum"))

    aggregator.refresh_balances(portfolio)
    aggregator.refresh_balances(portfolio)

    stored = store.find_by_owner(portfolio.id)
    assert len(stored) == 2
    assert {b.symbol for b in stored} == {"ETH", "USDC"}


def test_store_drops_tokens_missing_from_latest_cycle(fetcher, oracle, eth_provider):
    """Test a token that went to zero leaves the stored set."""
    store = InMemoryRecordStore(key=attribute_key("record_key"), owner=attribute_key("portfolio_id"))
    aggregator = _aggregator(fetcher, oracle, store=store)
    portfolio = make_portfolio((ALICE, "ethereum"))

    aggregator.refresh_balances(portfolio)
    eth_provider.tokens[(ETH_USDC.lower(), ALICE.lower())] = 0
    latest = aggregator.refresh_balances(portfolio)

    stored = store.find_by_owner(portfolio.id)
    assert [b.symbol for b in stored] == ["ETH"]
    assert {b.cycle_id for b in stored} == {latest.cycle_id}


def test_summarize(fetcher, oracle):
    """Test summary totals, counts and top assets."""
    aggregator = _aggregator(fetcher, StaticPriceOracle({"USDC": Decimal("2.00"), "ETH": Decimal("2000")}))
    result = aggregator.refresh_balances(make_portfolio((ALICE, "ethereum"), (CAROL, "polygon")))

    summary = aggregator.summarize(result.balances, top_n=2, portfolio_id="p1")

    # ETH 4000 + USDC 3 + USDC 10 (polygon) + MATIC unpriced
    assert summary.total_value == Decimal("4013.00")
    assert summary.asset_count == 4
    assert summary.priced_asset_count == 3
    assert summary.network_count == 2
    assert [(a.symbol, a.network) for a in summary.top_assets] == [("ETH", "ethereum"), ("USDC", "polygon")]
    assert summary.network_allocation == {"ethereum": Decimal("4003.00"), "polygon": Decimal("10.00")}


def test_summarize_breaks_ties_by_symbol(fetcher):
    """Test equal values are ordered by symbol."""
    oracle = StaticPriceOracle({"USDC": Decimal("1"), "MATIC": Decimal("5")})
    aggregator = _aggregator(fetcher, oracle)
    result = aggregator.refresh_balances(make_portfolio((CAROL, "polygon")))

    summary = aggregator.summarize(result.balances)

    # MATIC: 1 * 5 = 5, USDC: 5 * 1 = 5
    assert [a.symbol for a in summary.top_assets] == ["MATIC", "USDC"]
    assert [a.symbol for a in aggregator.summarize(list(reversed(result.balances))).top_assets] == ["MATIC", "USDC"]


def test_allocate_percentages_sum_to_100(fetcher, oracle):
    """Test allocation shares add up to 100."""
    aggregator = _aggregator(fetcher, oracle)
    result = aggregator.refresh_balances(make_portfolio((ALICE, "ethereum"), (BOB, "ethereum"), (CAROL, "polygon")))

    allocation = aggregator.allocate(result.balances)

    network_total = sum(share.percentage for share in allocation.by_network.values())
    asset_total = sum(share.percentage for share in allocation.by_asset.values())
    assert abs(network_total - 100) <= Decimal("0.00000010")
    assert abs(asset_total - 100) <= Decimal("0.00000010")
    assert allocation.by_asset["USDC"].networks == ["ethereum", "polygon"]
    assert allocation.by_asset["USDC"].amount == Decimal("9.5")
    assert allocation.by_network["ethereum"].asset_count == 3


def test_allocate_zero_total(fetcher):
    """Test a zero total gives 0% everywhere."""
    aggregator = _aggregator(fetcher, StaticPriceOracle({}))
    result = aggregator.refresh_balances(make_portfolio((ALICE, "ethereum")))

    allocation = aggregator.allocate(result.balances)

    assert allocation.total_value == 0
    assert all(share.percentage == 0 for share in allocation.by_network.values())
    assert all(share.percentage == 0 for share in allocation.by_asset.values())


def test_performance_and_history_placeholders(fetcher, oracle):
    """Test flat series derived from the latest total."""
    aggregator = _aggregator(fetcher, oracle)
    portfolio = make_portfolio((BOB, "ethereum"))
    aggregator.refresh_balances(portfolio)

    performance = aggregator.performance(portfolio.id, "7d")
    history = aggregator.history(portfolio.id, "30d")

    assert len(performance.data) == 7
    assert len(history.data) == 30
    assert all(point.value == Decimal("6.00") for point in history.data)
    assert history.data[0].day < history.data[-1].day
    assert performance.total_return == 0
    assert aggregator.history("never-refreshed", "24h").data[0].value == 0

    with pytest.raises(ValidationError):
        aggregator.performance(portfolio.id, "2w")
