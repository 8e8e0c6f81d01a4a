"""Alert rule models: typed conditions per alert kind, snapshots and results."""

import operator as _op
from datetime import datetime
from decimal import Decimal
from enum import StrEnum
from typing import Annotated, Any, Literal

from eth_utils import is_address, to_checksum_address
from pydantic import BaseModel, Field, field_validator, model_validator

from portfolio_engine.core.models import new_id, utcnow


class AlertKind(StrEnum):
    """Kinds of alert rule."""

    PRICE = "price"
    BALANCE = "balance"
    TRANSACTION = "transaction"


class Operator(StrEnum):
    """Comparison operators accepted in alert conditions."""

    GT = ">"
    LT = "<"
    GTE = ">="
    LTE = "<="
    EQ = "=="
    NEQ = "!="

    def apply(self, observed: Decimal, target: Decimal) -> bool:
        return _COMPARATORS[self](observed, target)


_COMPARATORS = {
    Operator.GT: _op.gt,
    Operator.LT: _op.lt,
    Operator.GTE: _op.ge,
    Operator.LTE: _op.le,
    Operator.EQ: _op.eq,
    Operator.NEQ: _op.ne,
}


def compare(observed: Decimal, operator: Operator | str, target: Decimal) -> bool:
    """
    Compare two decimals with zero tolerance.

    `==` and `!=` are exact, so `Decimal('1.0') == Decimal('1')` holds but
    `Decimal('0.30000001') == Decimal('0.3')` does not.

    """
    return Operator(operator).apply(observed, target)


def _to_decimal(value: Any) -> Any:
    # YAML and JSON hand over floats; their shortest repr is what the user typed.
    if isinstance(value, float):
        return Decimal(repr(value))
    return value


class _ThresholdMixin(BaseModel):
    operator: Operator
    value: Decimal

    @field_validator("value", mode="before")
    @classmethod
    def _decimal_value(cls, value: Any) -> Any:
        return _to_decimal(value)


class _AddressMixin(BaseModel):
    address: str
    network: str

    @field_validator("address")
    @classmethod
    def _checksum(cls, value: str) -> str:
        if not is_address(value):
            msg = f"invalid address format: {value}"
            raise ValueError(msg)
        return to_checksum_address(value)


class PriceConditions(_ThresholdMixin):
    """Fires when a token's unit price compares true against `value`."""

    kind: Literal["price"] = "price"
    token: str


class BalanceConditions(_ThresholdMixin, _AddressMixin):
    """
    Fires when an address's balance compares true against `value`.

    The native balance is watched unless `token` names a known token on
    the network.

    """

    kind: Literal["balance"] = "balance"
    token: str | None = None


class TransactionConditions(_AddressMixin):
    """Fires when new transactions were observed for an address."""

    kind: Literal["transaction"] = "transaction"


AlertConditions = Annotated[
    PriceConditions | BalanceConditions | TransactionConditions,
    Field(discriminator="kind"),
]


class AlertRule(BaseModel):
    """
    A user-defined alert.

    Attributes
    ----------
    id : str
        Rule identifier
    owner_id : str
        Owning user
    kind : AlertKind
        Alert kind; always equal to `conditions.kind`
    name : str
        Display name
    conditions : AlertConditions
        Kind-specific typed conditions
    active : bool
        Inactive rules are never evaluated

    """

    id: str = Field(default_factory=new_id)
    owner_id: str
    kind: AlertKind
    name: str
    conditions: AlertConditions
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def _kind_matches(self) -> "AlertRule":
        if self.conditions.kind != self.kind:
            msg = f"conditions are for {self.conditions.kind}, rule is {self.kind}"
            raise ValueError(msg)
        return self


def snapshot_key(network: str, address: str, token: str | None = None) -> str:
    """Key of a balance or transaction entry in an AlertSnapshot."""
    key = f"{network}:{address.lower()}"
    if token:
        key = f"{key}:{token.upper()}"
    return key


class AlertSnapshot(BaseModel):
    """
    Data one evaluation cycle runs against.

    Attributes
    ----------
    prices : dict[str, Decimal | None]
        Upper-cased symbol to unit price
    balances : dict[str, Decimal]
        snapshot_key(network, address[, token]) to scaled balance
    transactions : dict[str, int]
        snapshot_key(network, address) to number of new transactions
    taken_at : datetime
        When the snapshot was taken

    """

    prices: dict[str, Decimal | None] = Field(default_factory=dict)
    balances: dict[str, Decimal] = Field(default_factory=dict)
    transactions: dict[str, int] = Field(default_factory=dict)
    taken_at: datetime = Field(default_factory=utcnow)

    def price(self, token: str) -> Decimal | None:
        return self.prices.get(token.upper())

    def balance(self, network: str, address: str, token: str | None = None) -> Decimal | None:
        return self.balances.get(snapshot_key(network, address, token))

    def transaction_count(self, network: str, address: str) -> int:
        return self.transactions.get(snapshot_key(network, address), 0)


class AlertEvaluationResult(BaseModel):
    """
    Outcome of evaluating one rule against one snapshot.

    A result with `error` set means the rule could not be evaluated (for
    example, the snapshot had no price for its token); it is never
    triggered.

    """

    rule_id: str
    kind: AlertKind
    triggered: bool
    observed: Decimal | None = None
    target: Decimal | None = None
    operator: Operator | None = None
    message: str = ""
    data: dict[str, Any] = Field(default_factory=dict)
    error: str | None = None
    timestamp: datetime = Field(default_factory=utcnow)
