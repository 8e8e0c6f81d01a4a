"""Owner-scoped portfolio management and refresh entry points."""

import logging
from collections.abc import Iterable

from portfolio_engine.core.aggregator import PortfolioAggregator
from portfolio_engine.core.errors import NotFoundError, ValidationError
from portfolio_engine.core.fetcher import normalize_address
from portfolio_engine.core.models import (
    AddressRecord,
    Portfolio,
    PortfolioAllocation,
    PortfolioHistory,
    PortfolioPerformance,
    PortfolioSummary,
    RefreshResult,
    ValuedBalance,
    utcnow,
)
from portfolio_engine.data.loader import get_all_supported_networks
from portfolio_engine.store.base import RecordStore

logger = logging.getLogger(__name__)


class PortfolioService:
    """
    Portfolio and address management for a single owner at a time.

    Every operation checks ownership first; a portfolio belonging to another
    owner is reported as not found and nothing else happens.

    Parameters
    ----------
    portfolios : RecordStore[Portfolio]
        Portfolio store keyed by id, owner key `owner_id`
    aggregator : PortfolioAggregator
        Refresh and rollup engine
    balances : RecordStore[ValuedBalance] | None
        Balance store keyed by `record_key`, owner key `portfolio_id`;
        cleared when a portfolio is deleted
    networks : Iterable[str] | None
        Networks addresses may be added on. Defaults to every bundled network.

    """

    def __init__(
        self,
        portfolios: RecordStore[Portfolio],
        aggregator: PortfolioAggregator,
        balances: RecordStore[ValuedBalance] | None = None,
        networks: Iterable[str] | None = None,
    ) -> None:
        self.portfolios = portfolios
        self.aggregator = aggregator
        self.balances = balances
        self.networks = set(networks) if networks is not None else set(get_all_supported_networks())

    def create(self, owner_id: str, name: str) -> Portfolio:
        if not name:
            raise ValidationError("portfolio name is required", field="name")
        portfolio = Portfolio(owner_id=owner_id, name=name)
        self.portfolios.upsert(portfolio)
        return portfolio

    def get(self, owner_id: str, portfolio_id: str) -> Portfolio:
        portfolio = self.portfolios.find_by_id(portfolio_id)
        if portfolio.owner_id != owner_id:
            msg = f"portfolio {portfolio_id} not found"
            raise NotFoundError(msg)
        return portfolio

    def list_portfolios(self, owner_id: str) -> list[Portfolio]:
        return sorted(self.portfolios.find_by_owner(owner_id), key=lambda p: p.created_at)

    def rename(self, owner_id: str, portfolio_id: str, name: str) -> Portfolio:
        portfolio = self.get(owner_id, portfolio_id)
        if not name:
            raise ValidationError("portfolio name is required", field="name")
        return self._save(portfolio.model_copy(update={"name": name}))

    def delete(self, owner_id: str, portfolio_id: str) -> None:
        """Delete a portfolio together with its addresses and stored balances."""
        self.get(owner_id, portfolio_id)
        self.aggregator.cancel(portfolio_id)
        if self.balances is not None:
            for balance in self.balances.find_by_owner(portfolio_id):
                self.balances.delete(balance.record_key)
        self.aggregator.forget(portfolio_id)
        self.portfolios.delete(portfolio_id)
        logger.info("Deleted portfolio %s", portfolio_id)

    def add_address(
        self,
        owner_id: str,
        portfolio_id: str,
        address: str,
        network: str,
        label: str = "",
    ) -> AddressRecord:
        """
        Add a watched address to a portfolio.

        Raises
        ------
        InvalidAddress
            If the address is malformed
        ValidationError
            If the network is unsupported or the address is already tracked
            on it

        """
        checksummed = normalize_address(address)
        if network not in self.networks:
            msg = f"unsupported network: {network}"
            raise ValidationError(msg, field="network")

        portfolio = self.get(owner_id, portfolio_id)
        if any(r.address == checksummed and r.network == network for r in portfolio.addresses):
            msg = f"{checksummed} is already tracked on {network}"
            raise ValidationError(msg, field="address")

        record = AddressRecord(portfolio_id=portfolio_id, address=checksummed, network=network, label=label)
        self._save(portfolio.model_copy(update={"addresses": [*portfolio.addresses, record]}))
        return record

    def update_address(self, owner_id: str, portfolio_id: str, address_id: str, label: str) -> AddressRecord:
        portfolio = self.get(owner_id, portfolio_id)
        record = self._find_address(portfolio, address_id)
        updated = record.model_copy(update={"label": label})
        addresses = [updated if r.id == address_id else r for r in portfolio.addresses]
        self._save(portfolio.model_copy(update={"addresses": addresses}))
        return updated

    def remove_address(self, owner_id: str, portfolio_id: str, address_id: str) -> None:
        portfolio = self.get(owner_id, portfolio_id)
        self._find_address(portfolio, address_id)
        if self.balances is not None:
            for balance in self.balances.find_by_owner(portfolio_id):
                if balance.raw.address.id == address_id:
                    self.balances.delete(balance.record_key)
        addresses = [r for r in portfolio.addresses if r.id != address_id]
        self._save(portfolio.model_copy(update={"addresses": addresses}))

    def refresh(self, owner_id: str, portfolio_id: str) -> RefreshResult:
        """Refresh balances of an owned portfolio."""
        return self.aggregator.refresh_balances(self.get(owner_id, portfolio_id))

    def summary(self, owner_id: str, portfolio_id: str, top_n: int = 5) -> PortfolioSummary:
        """Summary of the latest refresh; empty if the portfolio was never refreshed."""
        self.get(owner_id, portfolio_id)
        return self.aggregator.summarize(self._latest_balances(portfolio_id), top_n=top_n, portfolio_id=portfolio_id)

    def allocation(self, owner_id: str, portfolio_id: str) -> PortfolioAllocation:
        self.get(owner_id, portfolio_id)
        return self.aggregator.allocate(self._latest_balances(portfolio_id))

    def performance(self, owner_id: str, portfolio_id: str, period: str = "30d") -> PortfolioPerformance:
        self.get(owner_id, portfolio_id)
        return self.aggregator.performance(portfolio_id, period)

    def history(self, owner_id: str, portfolio_id: str, period: str = "30d") -> PortfolioHistory:
        self.get(owner_id, portfolio_id)
        return self.aggregator.history(portfolio_id, period)

    def _latest_balances(self, portfolio_id: str) -> list[ValuedBalance]:
        latest = self.aggregator.latest(portfolio_id)
        return latest.balances if latest is not None else []

    def _save(self, portfolio: Portfolio) -> Portfolio:
        return self.portfolios.upsert(portfolio.model_copy(update={"updated_at": utcnow()}))

    @staticmethod
    def _find_address(portfolio: Portfolio, address_id: str) -> AddressRecord:
        for record in portfolio.addresses:
            if record.id == address_id:
                return record
        msg = f"address {address_id} not found"
        raise NotFoundError(msg)
