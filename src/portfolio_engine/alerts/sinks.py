"""Notification sinks receiving triggered alert results."""

import logging
import threading
from typing import Protocol, runtime_checkable

from portfolio_engine.alerts.conditions import AlertEvaluationResult

logger = logging.getLogger(__name__)


@runtime_checkable
class NotificationSink(Protocol):
    """Delivery target for triggered alerts. Delivery failures never affect evaluation."""

    def deliver(self, result: AlertEvaluationResult) -> None: ...


class LoggingSink:
    """Logs every triggered alert at INFO."""

    def __init__(self, name: str = "portfolio_engine.alerts.notifications") -> None:
        self.logger = logging.getLogger(name)

    def deliver(self, result: AlertEvaluationResult) -> None:
        self.logger.info(
            "%s [%s] observed=%s %s target=%s",
            result.message,
            result.kind,
            result.observed,
            result.operator or "",
            result.target,
        )


class CollectingSink:
    """Keeps delivered results in memory, in delivery order."""

    def __init__(self) -> None:
        self.results: list[AlertEvaluationResult] = []
        self._lock = threading.Lock()

    def deliver(self, result: AlertEvaluationResult) -> None:
        with self._lock:
            self.results.append(result)

    def clear(self) -> None:
        with self._lock:
            self.results.clear()

    def __len__(self) -> int:
        return len(self.results)
