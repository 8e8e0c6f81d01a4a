"""Bounded thread pool with per-unit timeouts and cooperative cancellation."""

import logging
import threading
import time
from collections.abc import Callable, Hashable, Mapping
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from portfolio_engine.core.errors import RefreshCancelled

logger = logging.getLogger(__name__)

K = TypeVar("K", bound=Hashable)
T = TypeVar("T")


@dataclass
class UnitOutcome(Generic[K, T]):
    """Result or error of one unit of work."""

    key: K
    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class UnitTimeout(TimeoutError):
    """A unit ran longer than its timeout and was abandoned."""


class BoundedExecutor:
    """
    Runs independent units of work on a bounded pool.

    Each unit's timeout is measured from the moment a worker picks it up, so
    queueing behind other units does not count against it. A unit that
    overruns is abandoned (its thread is not awaited) and reported as a
    UnitTimeout; the remaining units are unaffected. Once every worker is
    held by an abandoned unit, the units still queued are failed with
    UnitTimeout as well instead of waiting for a thread that may never free.

    Parameters
    ----------
    max_workers : int
        Pool size
    timeout : float | None
        Per-unit timeout in seconds, None for no limit
    name : str
        Thread name prefix
    poll_interval : float
        How often timeouts and cancellation are checked

    """

    def __init__(
        self,
        max_workers: int,
        timeout: float | None = None,
        name: str = "unit",
        poll_interval: float = 0.05,
    ) -> None:
        if max_workers < 1:
            msg = f"max_workers must be at least 1, got {max_workers}"
            raise ValueError(msg)
        self.max_workers = max_workers
        self.timeout = timeout
        self.name = name
        self.poll_interval = poll_interval

    def run(
        self,
        units: Mapping[K, Callable[[], T]],
        cancel_event: threading.Event | None = None,
    ) -> dict[K, UnitOutcome[K, T]]:
        """
        Run every unit and collect outcomes in input order.

        Parameters
        ----------
        units : Mapping[K, Callable[[], T]]
            Unit key to zero-argument callable
        cancel_event : threading.Event | None
            When set, pending units are cancelled, running ones abandoned, and
            RefreshCancelled is raised

        Returns
        -------
        dict[K, UnitOutcome]
            One outcome per unit

        Raises
        ------
        RefreshCancelled
            If cancel_event is set before all units finish

        """
        if not units:
            return {}

        started: dict[Any, float] = {}
        outcomes: dict[K, UnitOutcome[K, T]] = {}
        abandoned: set[Future] = set()

        def timed(key: K, fn: Callable[[], T]) -> T:
            started[key] = time.monotonic()
            return fn()

        executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix=self.name)
        try:
            futures: dict[Future, K] = {executor.submit(timed, key, fn): key for key, fn in units.items()}
            pending = set(futures)

            while pending:
                if cancel_event is not None and cancel_event.is_set():
                    msg = f"{self.name}: cancelled with {len(pending)} unit(s) outstanding"
                    raise RefreshCancelled(msg)

                done, pending = wait(pending, timeout=self.poll_interval, return_when=FIRST_COMPLETED)
                for future in done:
                    key = futures[future]
                    try:
                        outcomes[key] = UnitOutcome(key=key, value=future.result())
                    except Exception as e:
                        outcomes[key] = UnitOutcome(key=key, error=e)

                if self.timeout is None:
                    continue

                now = time.monotonic()
                for future in list(pending):
                    key = futures[future]
                    begun = started.get(key)
                    if begun is not None and now - begun > self.timeout:
                        pending.discard(future)
                        abandoned.add(future)
                        logger.warning("%s: unit %s timed out after %.1fs", self.name, key, self.timeout)
                        outcomes[key] = UnitOutcome(
                            key=key,
                            error=UnitTimeout(f"{key} timed out after {self.timeout}s"),
                        )

                # every worker is stuck in an abandoned unit: queued units would never start
                abandoned = {future for future in abandoned if not future.done()}
                if len(abandoned) < self.max_workers:
                    continue
                for future in list(pending):
                    key = futures[future]
                    if key not in started and future.cancel():
                        pending.discard(future)
                        logger.warning("%s: unit %s not started, all workers stalled", self.name, key)
                        outcomes[key] = UnitOutcome(
                            key=key,
                            error=UnitTimeout(f"{key} not started: all {self.max_workers} worker(s) stalled"),
                        )
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

        return {key: outcomes[key] for key in units}
