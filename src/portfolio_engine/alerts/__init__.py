"""Alert rule validation, evaluation and management."""

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
from portfolio_engine.alerts.engine import AlertEngine, NotificationPolicy, SnapshotBuilder, validate
from portfolio_engine.alerts.service import AlertService
from portfolio_engine.alerts.sinks import CollectingSink, LoggingSink, NotificationSink

__all__ = [
    "AlertConditions",
    "AlertEngine",
    "AlertEvaluationResult",
    "AlertKind",
    "AlertRule",
    "AlertService",
    "AlertSnapshot",
    "BalanceConditions",
    "CollectingSink",
    "LoggingSink",
    "NotificationPolicy",
    "NotificationSink",
    "Operator",
    "PriceConditions",
    "SnapshotBuilder",
    "TransactionConditions",
    "compare",
    "snapshot_key",
    "validate",
]
