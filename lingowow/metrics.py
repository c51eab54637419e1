from __future__ import annotations

import functools
import logging
import time
from contextlib import contextmanager
from typing import Callable, Iterator

from lingowow.config import settings


logger = logging.getLogger('lingowow.metrics')


class Stopwatch:
    def __init__(self) -> None:
        self.started = time.perf_counter()
        self.duration_ms = 0.0

    def stop(self) -> float:
        self.duration_ms = (time.perf_counter() - self.started) * 1000.0
        return self.duration_ms


@contextmanager
def stopwatch() -> Iterator[Stopwatch]:
    watch = Stopwatch()
    try:
        yield watch
    finally:
        watch.stop()


def timed_service(label: str, *, threshold_ms: int | None = None) -> Callable[[Callable[..., object]], Callable[..., object]]:
    """Log calls to a service function that run past the slow threshold."""

    def decorator(func: Callable[..., object]) -> Callable[..., object]:
        @functools.wraps(func)
        def wrapper(*args: object, **kwargs: object):
            limit = threshold_ms if threshold_ms is not None else settings.metrics_slow_ms
            watch = Stopwatch()
            try:
                return func(*args, **kwargs)
            finally:
                if watch.stop() >= limit:
                    logger.info('service_slow label=%s duration_ms=%.2f', label, watch.duration_ms)

        return wrapper

    return decorator


def run_timed_job(label: str, fn: Callable[[], object]) -> object:
    """Run a scheduler task; the job's return value is logged alongside its duration."""
    with stopwatch() as watch:
        try:
            result = fn()
        except Exception:
            logger.exception('job_failed name=%s', label)
            raise
    logger.info('job_completed name=%s result=%s duration_ms=%.2f', label, result, watch.duration_ms)
    return result
