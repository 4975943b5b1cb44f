"""
Blocking readiness polling used by every wait in the deployment.
"""

from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
import threading
import time

from loguru import logger


class Clock(ABC):
    """
    Source of time for polling loops. Swappable so that waits can be exercised without actually sleeping.
    """

    @abstractmethod
    def now(self) -> float:
        """
        Return a monotonic timestamp in seconds.
        """

    @abstractmethod
    def sleep(self, seconds: float) -> bool:
        """
        Block for *seconds*. Returns `False` if the sleep was interrupted by a cancellation.
        """


@dataclass
class SystemClock(Clock):
    """
    Wall clock implementation. Sleeping waits on an event, so that calling [cancel()] from another thread aborts
    any pending wait.
    """

    cancelled: threading.Event = field(default_factory=threading.Event)

    def now(self) -> float:
        return time.monotonic()

    def sleep(self, seconds: float) -> bool:
        return not self.cancelled.wait(seconds)

    def cancel(self) -> None:
        self.cancelled.set()


def wait_until(
    timeout: float,
    interval: float,
    predicate: Callable[[], bool],
    clock: Clock | None = None,
) -> bool:
    """
    Evaluate *predicate* every *interval* seconds until it returns `True` or *timeout* seconds have passed.

    The predicate is evaluated immediately. There is no backoff, and no sleep happens after the last evaluation
    that still fits into the timeout, e.g. a timeout of 120 with an interval of 10 evaluates the predicate at most
    12 times.

    Args:
        timeout: The total time budget in seconds.
        interval: The time to sleep between two evaluations.
        predicate: The condition to wait for.
        clock: The clock to use, defaults to a [SystemClock].
    Returns:
        `True` as soon as the predicate returned `True`, `False` if the budget was exhausted or the wait cancelled.
    """

    if clock is None:
        clock = SystemClock()

    deadline = clock.now() + timeout
    while True:
        if predicate():
            return True
        if clock.now() + interval >= deadline:
            return False
        if not clock.sleep(interval):
            logger.debug("Wait was cancelled")
            return False


@dataclass
class ReadinessProbe:
    """
    A single readiness wait: a condition together with its time budget.
    """

    description: str
    predicate: Callable[[], bool]
    timeout_seconds: float
    poll_interval_seconds: float

    def wait(self, clock: Clock | None = None) -> bool:
        logger.info(
            "Waiting for {} (timeout={}s, interval={}s)",
            self.description,
            self.timeout_seconds,
            self.poll_interval_seconds,
        )
        return wait_until(self.timeout_seconds, self.poll_interval_seconds, self.predicate, clock)
