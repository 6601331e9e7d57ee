"""Two-tier admission control around work with unpredictable run time."""

from __future__ import annotations

import inspect
import logging
import time
from contextlib import contextmanager, nullcontext
from dataclasses import dataclass
from typing import Callable, Iterable, Iterator, Optional, TypeVar, Union

from double_restraint.common.errors import DEFAULT_TIMEOUT_ERRORS, CapacityExceededError, ThrottledError
from double_restraint.common.logging import correlation_scope
from double_restraint.limiter import ConcurrencyLimiter, Slot
from double_restraint.metrics import ESCALATIONS_TOTAL, POOL_OCCUPANCY, THROTTLED_TOTAL, WORK_DURATION

logger = logging.getLogger(__name__)

T = TypeVar("T")

TimeoutErrors = Union[
    type[BaseException],
    Iterable[type[BaseException]],
    Callable[[BaseException], bool],
]


@dataclass(frozen=True)
class PoolConfig:
    name: str
    capacity_limit: Optional[int] = None

    @property
    def limited(self) -> bool:
        return self.capacity_limit is not None and self.capacity_limit > 0


def _timeout_classifier(timeout_errors: TimeoutErrors) -> Callable[[BaseException], bool]:
    if inspect.isclass(timeout_errors):
        if not issubclass(timeout_errors, BaseException):
            raise TypeError(f"timeout_errors must be an exception class, got {timeout_errors!r}")
        error_classes: tuple[type[BaseException], ...] = (timeout_errors,)
    elif callable(timeout_errors):
        return timeout_errors
    else:
        error_classes = tuple(timeout_errors)
        for error_class in error_classes:
            if not (inspect.isclass(error_class) and issubclass(error_class, BaseException)):
                raise TypeError(f"timeout_errors must contain exception classes, got {error_class!r}")

    def is_timeout(error: BaseException) -> bool:
        return isinstance(error, error_classes)

    return is_timeout


class DoubleRestraint:
    """
    Runs a block of work in a fast pool and retries it in a long running pool
    if it times out.

    The work is called with ``timeout`` first. If it raises one of the
    ``timeout_errors`` it is called once more with ``long_running_timeout``,
    this time holding a slot in the long running pool. The work must be
    idempotent since it can run twice.

    :param name: Namespace of the two pools.
    :param timeout: Timeout handed to the first invocation.
    :param long_running_timeout: Timeout handed to the retry after a timeout.
    :param long_running_limit: Maximum number of concurrent retries across all
        processes sharing the limiter. Required.
    :param limit: Maximum number of concurrent first invocations. ``None`` or
        a value <= 0 leaves the first invocation unthrottled.
    :param timeout_errors: Exception class, iterable of classes, or predicate
        deciding which errors count as a timeout.
    :param limiter: The concurrency limiter that keeps the pool counts.
    """

    def __init__(
        self,
        name: str,
        *,
        timeout: float,
        long_running_timeout: float,
        long_running_limit: int,
        limit: Optional[int] = None,
        timeout_errors: TimeoutErrors = DEFAULT_TIMEOUT_ERRORS,
        limiter: ConcurrencyLimiter,
    ):
        if isinstance(long_running_limit, bool) or not isinstance(long_running_limit, int) or long_running_limit <= 0:
            raise ValueError(f"long_running_limit must be a positive integer, got {long_running_limit!r}")
        if limit is not None and (isinstance(limit, bool) or not isinstance(limit, int)):
            raise ValueError(f"limit must be an integer or None, got {limit!r}")

        self.name = str(name)
        self.timeout = timeout
        self.long_running_timeout = long_running_timeout
        self.limiter = limiter
        self._is_timeout = _timeout_classifier(timeout_errors)
        self.fast_pool = PoolConfig(f"DoubleRestrainer({self.name})", limit)
        self.slow_pool = PoolConfig(f"DoubleRestrainer({self.name}).long_running", long_running_limit)

        slot_timeout = getattr(limiter, "slot_timeout", None)
        if slot_timeout is not None and max(timeout, long_running_timeout) >= slot_timeout:
            raise ValueError(
                f"Timeouts of restraint {self.name} must stay below the limiter slot timeout of {slot_timeout}s, "
                "otherwise slots of running work expire and the pools admit too many callers"
            )

        if round(timeout, 6) == round(long_running_timeout, 6):
            logger.warning(
                "Restraint %s uses the same timeout for both pools; is_long_running_timeout() cannot tell them apart",
                self.name,
            )

    def execute(self, work: Callable[[float], T]) -> T:
        """
        Execute ``work``, passing it the timeout it should honor.

        Both invocations share one correlation id in the logs; a caller
        supplied id is kept.

        :raises ThrottledError: if the pool needed for an invocation is full.
            ``work`` is not called in that case.
        """
        with correlation_scope():
            return self._execute(work)

    def _execute(self, work: Callable[[float], T]) -> T:
        first_slot = self._slot(self.fast_pool) if self.fast_pool.limited else nullcontext()
        with first_slot:
            try:
                return self._invoke(work, self.timeout, "default")
            except BaseException as e:
                if not self._is_timeout(e):
                    raise
                first_timeout = e

        ESCALATIONS_TOTAL.labels(restraint=self.name).inc()
        logger.info(
            "Restraint %s timed out after %ss (%s), retrying with %ss",
            self.name,
            self.timeout,
            type(first_timeout).__name__,
            self.long_running_timeout,
            extra={"extra_fields": {"restraint": self.name, "pool": self.slow_pool.name, "event": "escalated"}},
        )
        with self._slot(self.slow_pool):
            return self._invoke(work, self.long_running_timeout, "long_running")

    @contextmanager
    def _slot(self, pool: PoolConfig) -> Iterator[Slot]:
        try:
            held = self.limiter.acquire(pool.name, pool.capacity_limit)
        except CapacityExceededError as e:
            THROTTLED_TOTAL.labels(pool=pool.name).inc()
            logger.warning(
                "%s throttled at %s concurrent executions",
                pool.name,
                pool.capacity_limit,
                extra={"extra_fields": {"restraint": self.name, "pool": pool.name, "event": "throttled"}},
            )
            raise ThrottledError(pool.name, pool.capacity_limit) from e
        try:
            yield held
        finally:
            self.limiter.release(held)

    def _invoke(self, work: Callable[[float], T], timeout: float, tier: str) -> T:
        start = time.perf_counter()
        try:
            return work(timeout)
        finally:
            WORK_DURATION.labels(restraint=self.name, tier=tier).observe(time.perf_counter() - start)

    def is_timeout_error(self, error: BaseException) -> bool:
        return self._is_timeout(error)

    def is_long_running_timeout(self, timeout: float) -> bool:
        """
        True if ``timeout`` is the long running timeout handed to the work.

        Compared after rounding to 6 decimal places. Meaningless when
        ``timeout`` and ``long_running_timeout`` are configured equal.
        """
        return round(timeout, 6) == round(self.long_running_timeout, 6)

    def default_pool_occupancy(self) -> int:
        return self.limiter.current_occupancy(self.fast_pool.name)

    def long_running_pool_occupancy(self) -> int:
        return self.limiter.current_occupancy(self.slow_pool.name)

    def default_pool_limit(self) -> int:
        """The first invocation limit, or -1 if it is unthrottled."""
        if not self.fast_pool.limited:
            return -1
        return self.fast_pool.capacity_limit

    def long_running_pool_limit(self) -> int:
        return self.slow_pool.capacity_limit

    def report_occupancy(self) -> None:
        """Publish the current pool occupancy to the metrics gauges."""
        POOL_OCCUPANCY.labels(pool=self.fast_pool.name).set(self.default_pool_occupancy())
        POOL_OCCUPANCY.labels(pool=self.slow_pool.name).set(self.long_running_pool_occupancy())

    def __repr__(self) -> str:
        return (
            f"DoubleRestraint(name={self.name!r}, timeout={self.timeout}, "
            f"long_running_timeout={self.long_running_timeout}, limit={self.default_pool_limit()}, "
            f"long_running_limit={self.long_running_pool_limit()})"
        )
