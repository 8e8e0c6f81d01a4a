"""Portfolio aggregator orchestrating balance fetching and valuation across networks."""

import logging
import threading
from collections import defaultdict
from collections.abc import Iterable, Mapping
from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from uuid import uuid4

from portfolio_engine.core.errors import RefreshCancelled, ValidationError
from portfolio_engine.core.fetcher import BalanceFetcher
from portfolio_engine.core.models import (
    AddressRecord,
    AssetAllocation,
    DataPoint,
    FetchFailure,
    NetworkAllocation,
    Portfolio,
    PortfolioAllocation,
    PortfolioAsset,
    PortfolioHistory,
    PortfolioPerformance,
    PortfolioSummary,
    RawBalance,
    RefreshResult,
    ValuedBalance,
)
from portfolio_engine.core.pool import BoundedExecutor, UnitOutcome
from portfolio_engine.core.valuation import VALUATION_CONTEXT, to_display, value_balance
from portfolio_engine.pricing.base import PriceOracle, snapshot_prices
from portfolio_engine.store.base import RecordStore

logger = logging.getLogger(__name__)

# Days covered by each supported performance/history period.
PERIOD_DAYS = {
    "24h": 1,
    "1d": 1,
    "7d": 7,
    "30d": 30,
    "90d": 90,
    "1y": 365,
}

_HUNDRED = Decimal(100)
_ZERO = Decimal(0)


class PortfolioAggregator:
    """
    Orchestrates balance fetching and valuation for every address of a portfolio.

    Workflow of one refresh cycle:
    1. Group the portfolio's addresses by network
    2. Fetch native and token balances per address, one bounded pool per network
    3. Snapshot prices once for every symbol seen in the cycle
    4. Value each balance against that snapshot
    5. Replace the portfolio's latest result (and its stored balances)

    Parameters
    ----------
    fetcher : BalanceFetcher
        Balance source
    oracle : PriceOracle
        Price source
    store : RecordStore | None
        Optional store holding the balances of each portfolio's latest cycle
    max_workers : Mapping[str, int] | None
        Pool size per network
    timeouts : Mapping[str, float] | None
        Per-address timeout per network, in seconds
    default_max_workers : int
        Pool size for networks missing from `max_workers`
    default_timeout : float
        Timeout for networks missing from `timeouts`

    """

    def __init__(
        self,
        fetcher: BalanceFetcher,
        oracle: PriceOracle,
        store: RecordStore | None = None,
        max_workers: Mapping[str, int] | None = None,
        timeouts: Mapping[str, float] | None = None,
        default_max_workers: int = 4,
        default_timeout: float = 30.0,
    ) -> None:
        self.fetcher = fetcher
        self.oracle = oracle
        self.store = store
        self.max_workers = dict(max_workers or {})
        self.timeouts = dict(timeouts or {})
        self.default_max_workers = default_max_workers
        self.default_timeout = default_timeout

        self._lock = threading.Lock()
        self._inflight: dict[str, threading.Event] = {}
        self._latest: dict[str, RefreshResult] = {}

    def refresh_balances(self, portfolio: Portfolio) -> RefreshResult:
        """
        Fetch and value every balance held by a portfolio's addresses.

        A newer call for the same portfolio cancels this one; the cancelled
        call raises and its partial results are discarded.

        Parameters
        ----------
        portfolio : Portfolio
            Portfolio to refresh

        Returns
        -------
        RefreshResult
            Valued balances plus one failure entry per failed address

        Raises
        ------
        RefreshCancelled
            If superseded by a newer refresh of the same portfolio

        """
        cycle_id = str(uuid4())
        cancel_event = threading.Event()
        with self._lock:
            previous = self._inflight.get(portfolio.id)
            if previous is not None:
                logger.info("Superseding in-flight refresh of portfolio %s", portfolio.id)
                previous.set()
            self._inflight[portfolio.id] = cancel_event

        try:
            raw_balances, failures = self._fetch_all(portfolio.addresses, cancel_event)

            prices = snapshot_prices(self.oracle, (raw.token.symbol for raw in raw_balances))
            balances = [value_balance(raw, prices.get(raw.token.symbol.upper()), cycle_id) for raw in raw_balances]

            result = RefreshResult(
                portfolio_id=portfolio.id,
                cycle_id=cycle_id,
                balances=balances,
                failures=failures,
            )

            with self._lock:
                if cancel_event.is_set():
                    msg = f"refresh {cycle_id} of portfolio {portfolio.id} was superseded"
                    raise RefreshCancelled(msg)
                self._latest[portfolio.id] = result
                if self.store is not None:
                    self._replace_stored(portfolio.id, balances)
        finally:
            with self._lock:
                if self._inflight.get(portfolio.id) is cancel_event:
                    del self._inflight[portfolio.id]

        logger.info(
            "Refreshed portfolio %s: %d balance(s), %d failure(s)",
            portfolio.id,
            len(balances),
            result.failure_count,
        )
        return result

    def cancel(self, portfolio_id: str) -> bool:
        """Cancel the in-flight refresh of a portfolio. Returns False if none is running."""
        with self._lock:
            event = self._inflight.get(portfolio_id)
            if event is None:
                return False
            event.set()
            return True

    def latest(self, portfolio_id: str) -> RefreshResult | None:
        """Last completed refresh of a portfolio, if any."""
        with self._lock:
            return self._latest.get(portfolio_id)

    def forget(self, portfolio_id: str) -> None:
        """Drop the cached result of a portfolio."""
        with self._lock:
            self._latest.pop(portfolio_id, None)

    def _replace_stored(self, portfolio_id: str, balances: list[ValuedBalance]) -> None:
        # caller holds self._lock; the stored set must match exactly one cycle
        current = {balance.record_key for balance in balances}
        for stale in self.store.find_by_owner(portfolio_id):
            if stale.record_key not in current:
                self.store.delete(stale.record_key)
        for balance in balances:
            self.store.upsert(balance)

    def _fetch_all(
        self,
        addresses: Iterable[AddressRecord],
        cancel_event: threading.Event,
    ) -> tuple[list[RawBalance], list[FetchFailure]]:
        by_network: dict[str, list[AddressRecord]] = defaultdict(list)
        ordered = list(addresses)
        for record in ordered:
            by_network[record.network].append(record)

        if not by_network:
            return [], []

        outcomes: dict[str, UnitOutcome] = {}
        with ThreadPoolExecutor(max_workers=len(by_network), thread_name_prefix="network") as executor:
            futures = [
                executor.submit(self._fetch_network, network, records, cancel_event)
                for network, records in by_network.items()
            ]
            # Every future is awaited so a cancellation surfaces only after
            # all network pools have been told to stop.
            errors = []
            for future in futures:
                try:
                    outcomes.update(future.result())
                except RefreshCancelled as e:
                    errors.append(e)
            if errors:
                raise errors[0]

        raw_balances: list[RawBalance] = []
        failures: list[FetchFailure] = []
        for record in ordered:
            outcome = outcomes[record.id]
            if outcome.ok:
                raw_balances.extend(outcome.value)
                continue

            error = outcome.error
            logger.warning("Fetch failed for %s on %s: %s", record.address, record.network, error)
            failures.append(
                FetchFailure(
                    address_id=record.id,
                    address=record.address,
                    network=record.network,
                    error_type=type(error).__name__,
                    message=str(error),
                )
            )
        return raw_balances, failures

    def _fetch_network(
        self,
        network: str,
        records: list[AddressRecord],
        cancel_event: threading.Event,
    ) -> dict[str, UnitOutcome]:
        pool = BoundedExecutor(
            max_workers=self.max_workers.get(network, self.default_max_workers),
            timeout=self.timeouts.get(network, self.default_timeout),
            name=f"fetch-{network}",
        )
        units = {record.id: self._address_unit(record) for record in records}
        return pool.run(units, cancel_event=cancel_event)

    def _address_unit(self, record: AddressRecord):
        def fetch() -> list[RawBalance]:
            balances = []
            native_amount = self.fetcher.native_balance(record.address, record.network)
            if native_amount > 0:
                balances.append(
                    RawBalance(
                        address=record,
                        token=self.fetcher.tokens.native_token(record.network),
                        amount=native_amount,
                        native=True,
                    )
                )
            balances.extend(self.fetcher.token_balances(record.address, record.network, record=record))
            return balances

        return fetch

    def summarize(
        self,
        balances: Iterable[ValuedBalance],
        top_n: int = 5,
        portfolio_id: str | None = None,
    ) -> PortfolioSummary:
        """
        Roll valued balances up into a summary.

        Unpriced balances count as zero towards the total and are excluded
        from the priced-asset count. Top assets are ordered by value
        (descending), then symbol, then network.

        Parameters
        ----------
        balances : Iterable[ValuedBalance]
            Balances from one refresh cycle
        top_n : int
            Number of top assets to report
        portfolio_id : str | None
            Portfolio the summary belongs to

        Returns
        -------
        PortfolioSummary
            Aggregated totals

        """
        balances = list(balances)
        total = _ZERO
        network_values: dict[str, Decimal] = defaultdict(lambda: _ZERO)
        for balance in balances:
            fiat = balance.fiat_value if balance.fiat_value is not None else _ZERO
            total = VALUATION_CONTEXT.add(total, fiat)
            network_values[balance.network] = VALUATION_CONTEXT.add(network_values[balance.network], fiat)

        ranked = sorted(balances, key=_rank_key)[: max(top_n, 0)]
        top_assets = [
            PortfolioAsset(
                symbol=balance.symbol,
                name=balance.raw.token.name,
                amount=balance.scaled_amount,
                value=balance.fiat_value,
                network=balance.network,
            )
            for balance in ranked
        ]

        return PortfolioSummary(
            portfolio_id=portfolio_id,
            total_value=total,
            asset_count=len(balances),
            priced_asset_count=sum(1 for balance in balances if balance.is_priced),
            network_count=len(network_values),
            top_assets=top_assets,
            network_allocation=dict(network_values),
        )

    def allocate(self, balances: Iterable[ValuedBalance]) -> PortfolioAllocation:
        """
        Group valued balances by network and by symbol.

        Percentages are in the 0-100 range, rounded for display. A zero
        total yields 0 for every group.

        """
        by_network: dict[str, dict] = {}
        by_asset: dict[str, dict] = {}
        total = _ZERO

        for balance in balances:
            fiat = balance.fiat_value if balance.fiat_value is not None else _ZERO
            total = VALUATION_CONTEXT.add(total, fiat)

            network = by_network.setdefault(balance.network, {"value": _ZERO, "asset_count": 0})
            network["value"] = VALUATION_CONTEXT.add(network["value"], fiat)
            network["asset_count"] += 1

            asset = by_asset.setdefault(balance.symbol, {"value": _ZERO, "amount": _ZERO, "networks": []})
            asset["value"] = VALUATION_CONTEXT.add(asset["value"], fiat)
            asset["amount"] = VALUATION_CONTEXT.add(asset["amount"], balance.scaled_amount)
            if balance.network not in asset["networks"]:
                asset["networks"].append(balance.network)

        return PortfolioAllocation(
            total_value=total,
            by_network={
                name: NetworkAllocation(
                    value=group["value"],
                    percentage=_percentage(group["value"], total),
                    asset_count=group["asset_count"],
                )
                for name, group in by_network.items()
            },
            by_asset={
                symbol: AssetAllocation(
                    value=group["value"],
                    percentage=_percentage(group["value"], total),
                    amount=group["amount"],
                    networks=group["networks"],
                )
                for symbol, group in by_asset.items()
            },
        )

    def performance(self, portfolio_id: str, period: str = "30d") -> PortfolioPerformance:
        """
        Performance series for a period.

        No price history is stored, so the series is flat at the latest
        total value with zero change.

        Raises
        ------
        ValidationError
            If the period is not one of PERIOD_DAYS

        """
        points = self._flat_series(portfolio_id, period, with_volume=True)
        return PortfolioPerformance(period=period, data=points)

    def history(self, portfolio_id: str, period: str = "30d") -> PortfolioHistory:
        """Value history for a period; flat at the latest total value."""
        points = self._flat_series(portfolio_id, period, with_volume=False)
        return PortfolioHistory(period=period, data=points)

    def _flat_series(self, portfolio_id: str, period: str, with_volume: bool) -> list[DataPoint]:
        if period not in PERIOD_DAYS:
            msg = f"invalid period: {period!r}, expected one of {', '.join(PERIOD_DAYS)}"
            raise ValidationError(msg, field="period")

        latest = self.latest(portfolio_id)
        total = self.summarize(latest.balances).total_value if latest is not None else _ZERO
        total = to_display(total)

        today = datetime.now(UTC).date()
        days = PERIOD_DAYS[period]
        return [
            DataPoint(
                day=today - timedelta(days=offset),
                value=total,
                volume=_ZERO if with_volume else None,
            )
            for offset in range(days - 1, -1, -1)
        ]


def _rank_key(balance: ValuedBalance) -> tuple[Decimal, str, str]:
    fiat = balance.fiat_value if balance.fiat_value is not None else _ZERO
    return -fiat, balance.symbol, balance.network


def _percentage(part: Decimal, total: Decimal) -> Decimal:
    if total == 0:
        return _ZERO
    share = VALUATION_CONTEXT.divide(VALUATION_CONTEXT.multiply(part, _HUNDRED), total)
    return to_display(share)
