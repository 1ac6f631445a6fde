# goldshop/retry.py
from __future__ import annotations
import time
import logging
from typing import Callable, Iterable, TypeVar

log = logging.getLogger(__name__)

T = TypeVar("T")


class RetryExhausted(Exception):
    def __init__(self, attempts: int, last_error: BaseException):
        super().__init__(f"gave up after {attempts} attempts: {last_error}")
        self.attempts = attempts
        self.last_error = last_error


def retry_fixed(fn: Callable[[], T], delays: Iterable[float] = (0.0, 0.5, 1.0, 2.0), *,
                retry_on: tuple[type[BaseException], ...] = (Exception,),
                sleep: Callable[[float], None] = time.sleep,
                label: str = "call") -> T:
    """Run ``fn`` once per entry in ``delays``, waiting that long before each attempt.

    The schedule is fixed: ``len(delays)`` attempts at most, no growth, no
    deadline. When every attempt fails the last error is wrapped in
    RetryExhausted. Exceptions outside ``retry_on`` propagate immediately.
    """
    delays = list(delays)
    if not delays:
        raise ValueError("retry_fixed needs at least one delay")

    last_error: BaseException | None = None
    for attempt, delay in enumerate(delays, start=1):
        if delay > 0:
            sleep(delay)
        try:
            return fn()
        except retry_on as e:
            last_error = e
            log.info("%s failed (attempt %s/%s): %s", label, attempt, len(delays), e)
    raise RetryExhausted(len(delays), last_error)
