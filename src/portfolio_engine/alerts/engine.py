"""Alert rule validation, evaluation and notification dispatch."""

import logging
import threading
from collections.abc import Iterable, Mapping
from decimal import Decimal
from enum import StrEnum
from functools import partial
from typing import Any

from pydantic import TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from portfolio_engine.alerts.conditions import (
    AlertConditions,
    AlertEvaluationResult,
    AlertKind,
    AlertRule,
    AlertSnapshot,
    BalanceConditions,
    Operator,
    PriceConditions,
    TransactionConditions,
    compare,
    snapshot_key,
)
from portfolio_engine.alerts.sinks import NotificationSink
from portfolio_engine.core.errors import (
    InvalidAddress,
    InvalidOperatorError,
    MissingFieldError,
    NotFoundError,
    UnknownAlertKindError,
    ValidationError,
)
from portfolio_engine.core.fetcher import BalanceFetcher
from portfolio_engine.core.models import TokenDescriptor
from portfolio_engine.core.pool import BoundedExecutor
from portfolio_engine.core.valuation import scale
from portfolio_engine.pricing.base import PriceOracle, snapshot_prices

logger = logging.getLogger(__name__)

REQUIRED_FIELDS: dict[AlertKind, tuple[str, ...]] = {
    AlertKind.PRICE: ("token", "operator", "value"),
    AlertKind.BALANCE: ("address", "network", "operator", "value"),
    AlertKind.TRANSACTION: ("address", "network"),
}

_CONDITIONS = TypeAdapter(AlertConditions)


def validate(kind: AlertKind | str, conditions: Mapping[str, Any]) -> AlertConditions:
    """
    Check an untyped condition mapping and turn it into typed conditions.

    The operator is checked first, then the required fields of the kind in
    order, then field types.

    Parameters
    ----------
    kind : AlertKind | str
        'price', 'balance' or 'transaction'
    conditions : Mapping[str, Any]
        Raw conditions, e.g. ``{"token": "ETH", "operator": ">", "value": 100}``

    Returns
    -------
    AlertConditions
        The typed conditions variant for the kind

    Raises
    ------
    UnknownAlertKindError
        If the kind is not supported
    InvalidOperatorError
        If an operator is given and is not one of >, <, >=, <=, ==, !=
    MissingFieldError
        If a required field is absent or empty
    InvalidAddress
        If the address field is malformed
    ValidationError
        For any other malformed field (e.g. a non-numeric value)

    """
    try:
        kind = AlertKind(kind)
    except ValueError:
        raise UnknownAlertKindError(kind) from None

    operator = conditions.get("operator")
    if operator is not None and operator not in [op.value for op in Operator]:
        raise InvalidOperatorError(operator)

    for field in REQUIRED_FIELDS[kind]:
        if conditions.get(field) in (None, ""):
            raise MissingFieldError(field)

    payload = {key: val for key, val in conditions.items() if key not in ("kind", "type")}
    payload["kind"] = kind.value
    try:
        return _CONDITIONS.validate_python(payload)
    except PydanticValidationError as e:
        error = e.errors()[0]
        field = str(error["loc"][-1]) if error["loc"] else None
        if field == "address":
            raise InvalidAddress(str(conditions.get("address"))) from e
        msg = f"invalid {field or 'conditions'}: {error['msg']}"
        raise ValidationError(msg, field=field) from e


class NotificationPolicy(StrEnum):
    """
    When triggered rules reach the sink.

    REPEAT
        Every cycle in which the rule is triggered
    ON_CHANGE
        Only when the rule goes from not triggered to triggered

    """

    REPEAT = "repeat"
    ON_CHANGE = "on_change"


class AlertEngine:
    """
    Evaluates alert rules against snapshots and notifies a sink.

    Evaluation itself is stateless and deterministic; the only state kept
    is the last triggered flag per rule, used by the ON_CHANGE policy.

    Parameters
    ----------
    sink : NotificationSink | None
        Receives triggered results; None disables delivery
    policy : NotificationPolicy | str
        Notification policy, REPEAT by default
    max_workers : int
        Pool size for run_cycle
    timeout : float | None
        Per-rule evaluation timeout in seconds

    """

    def __init__(
        self,
        sink: NotificationSink | None = None,
        policy: NotificationPolicy | str = NotificationPolicy.REPEAT,
        max_workers: int = 4,
        timeout: float | None = 10.0,
    ) -> None:
        self.sink = sink
        self.policy = NotificationPolicy(policy)
        self.pool = BoundedExecutor(max_workers=max_workers, timeout=timeout, name="alert")
        self._last_triggered: dict[str, bool] = {}
        self._lock = threading.Lock()

    def evaluate(self, rule: AlertRule, snapshot: AlertSnapshot) -> AlertEvaluationResult:
        """
        Evaluate one rule against a snapshot.

        A rule whose observed value is missing from the snapshot produces an
        untriggered result with `error` set.

        """
        match rule.conditions:
            case PriceConditions() as conditions:
                return self._evaluate_threshold(
                    rule,
                    conditions,
                    observed=snapshot.price(conditions.token),
                    missing=f"no price for {conditions.token}",
                    data={"token": conditions.token},
                    observed_key="current_price",
                    target_key="target_price",
                )
            case BalanceConditions() as conditions:
                return self._evaluate_threshold(
                    rule,
                    conditions,
                    observed=snapshot.balance(conditions.network, conditions.address, conditions.token),
                    missing=f"no balance for {conditions.address} on {conditions.network}",
                    data={
                        "address": conditions.address,
                        "network": conditions.network,
                        "token": conditions.token,
                    },
                    observed_key="current_balance",
                    target_key="target_balance",
                )
            case TransactionConditions() as conditions:
                count = snapshot.transaction_count(conditions.network, conditions.address)
                triggered = count > 0
                data = {"address": conditions.address, "network": conditions.network}
                if triggered:
                    data["message"] = "New transaction detected"
                return AlertEvaluationResult(
                    rule_id=rule.id,
                    kind=rule.kind,
                    triggered=triggered,
                    observed=Decimal(count),
                    message=_message(rule, triggered),
                    data=data,
                )
        msg = f"unsupported conditions type: {type(rule.conditions).__name__}"
        raise TypeError(msg)

    @staticmethod
    def _evaluate_threshold(
        rule: AlertRule,
        conditions: PriceConditions | BalanceConditions,
        observed: Decimal | None,
        missing: str,
        data: dict[str, Any],
        observed_key: str,
        target_key: str,
    ) -> AlertEvaluationResult:
        if observed is None:
            return AlertEvaluationResult(
                rule_id=rule.id,
                kind=rule.kind,
                triggered=False,
                target=conditions.value,
                operator=conditions.operator,
                message="Data not available",
                data=data,
                error=missing,
            )

        triggered = compare(observed, conditions.operator, conditions.value)
        return AlertEvaluationResult(
            rule_id=rule.id,
            kind=rule.kind,
            triggered=triggered,
            observed=observed,
            target=conditions.value,
            operator=conditions.operator,
            message=_message(rule, triggered),
            data={
                **data,
                observed_key: str(observed),
                target_key: str(conditions.value),
                "operator": conditions.operator.value,
            },
        )

    def run_cycle(self, rules: Iterable[AlertRule], snapshot: AlertSnapshot) -> list[AlertEvaluationResult]:
        """
        Evaluate every active rule and deliver the triggered ones.

        Rules are evaluated on the bounded pool. A rule that raises or times
        out yields an error result; a sink that raises is logged and does not
        affect the returned results.

        Returns
        -------
        list[AlertEvaluationResult]
            One result per active rule, in input order

        """
        active = [rule for rule in rules if rule.active]
        if not active:
            return []

        outcomes = self.pool.run({rule.id: partial(self.evaluate, rule, snapshot) for rule in active})

        results = []
        for rule in active:
            outcome = outcomes[rule.id]
            if outcome.ok:
                results.append(outcome.value)
                continue
            logger.warning("Error checking alert %s: %s", rule.id, outcome.error)
            results.append(
                AlertEvaluationResult(
                    rule_id=rule.id,
                    kind=rule.kind,
                    triggered=False,
                    message="Evaluation failed",
                    error=f"{type(outcome.error).__name__}: {outcome.error}",
                )
            )

        for result in results:
            if self._should_notify(result):
                self._deliver(result)

        return results

    def _should_notify(self, result: AlertEvaluationResult) -> bool:
        if result.error is not None:
            return False
        with self._lock:
            previously = self._last_triggered.get(result.rule_id, False)
            self._last_triggered[result.rule_id] = result.triggered
        if not result.triggered:
            return False
        return self.policy is NotificationPolicy.REPEAT or not previously

    def _deliver(self, result: AlertEvaluationResult) -> None:
        if self.sink is None:
            return
        try:
            self.sink.deliver(result)
        except Exception as e:
            logger.warning("Failed to deliver alert %s: %s", result.rule_id, e)

    def reset(self, rule_id: str | None = None) -> None:
        """Forget triggered state for one rule, or for all rules."""
        with self._lock:
            if rule_id is None:
                self._last_triggered.clear()
            else:
                self._last_triggered.pop(rule_id, None)


def _message(rule: AlertRule, triggered: bool) -> str:
    if triggered:
        return f"Alert triggered: {rule.name}"
    return f"Condition not met: {rule.name}"


class SnapshotBuilder:
    """
    Builds the AlertSnapshot a set of rules needs.

    Prices come from one oracle snapshot; balances are fetched on a bounded
    pool and a balance that cannot be fetched is left out (its rules then
    evaluate with an error). Transaction counts are supplied by the caller.

    Parameters
    ----------
    fetcher : BalanceFetcher
        Balance source
    oracle : PriceOracle
        Price source
    max_workers : int
        Pool size for balance fetches
    timeout : float | None
        Per-balance timeout in seconds

    """

    def __init__(
        self,
        fetcher: BalanceFetcher,
        oracle: PriceOracle,
        max_workers: int = 4,
        timeout: float | None = 30.0,
    ) -> None:
        self.fetcher = fetcher
        self.oracle = oracle
        self.pool = BoundedExecutor(max_workers=max_workers, timeout=timeout, name="snapshot")

    def build(
        self,
        rules: Iterable[AlertRule],
        transactions: Mapping[str, int] | None = None,
    ) -> AlertSnapshot:
        """
        Snapshot prices and balances for the active rules.

        Parameters
        ----------
        rules : Iterable[AlertRule]
            Rules to gather data for; inactive rules are ignored
        transactions : Mapping[str, int] | None
            New-transaction counts keyed by snapshot_key(network, address)

        """
        active = [rule for rule in rules if rule.active]

        tokens = {rule.conditions.token for rule in active if isinstance(rule.conditions, PriceConditions)}
        prices = snapshot_prices(self.oracle, tokens)

        balance_conditions = {
            snapshot_key(c.network, c.address, c.token): c
            for c in (rule.conditions for rule in active)
            if isinstance(c, BalanceConditions)
        }
        outcomes = self.pool.run({key: partial(self._balance, c) for key, c in balance_conditions.items()})

        balances = {}
        for key, outcome in outcomes.items():
            if outcome.ok:
                balances[key] = outcome.value
            else:
                logger.warning("Could not fetch balance %s: %s", key, outcome.error)

        return AlertSnapshot(prices=prices, balances=balances, transactions=dict(transactions or {}))

    def _balance(self, conditions: BalanceConditions) -> Decimal:
        if conditions.token is None:
            native = self.fetcher.tokens.native_token(conditions.network)
            amount = self.fetcher.native_balance(conditions.address, conditions.network)
            return scale(amount, native.decimals)

        token = self._find_token(conditions.network, conditions.token)
        amount = self.fetcher.token_balance(conditions.address, token)
        return scale(amount, token.decimals)

    def _find_token(self, network: str, symbol: str) -> TokenDescriptor:
        for token in self.fetcher.tokens.tokens_for(network):
            if token.symbol.upper() == symbol.upper():
                return token
        msg = f"token {symbol} not known on {network}"
        raise NotFoundError(msg)
