"""
Benchmark worker loop for gohttp.

``run_benchmark`` drives ``concurrency`` workers that drain a shared
amount of work, each worker sending one request at a time.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from .response import ResponseRecord

logger = logging.getLogger(__name__)

SendFunc = Callable[[], Awaitable[ResponseRecord]]
ProgressFunc = Callable[[int], None]

PROGRESS_EVERY = 50


class _WorkCounter:
    """
    Remaining-work counter shared by the workers.

    ``take`` has no suspension point, so under asyncio no two workers
    can claim the same unit. Threads would need a lock here.
    """

    def __init__(self, total: int) -> None:
        self._remaining = total

    def take(self) -> bool:
        if self._remaining <= 0:
            return False
        self._remaining -= 1
        return True

    @property
    def remaining(self) -> int:
        return self._remaining


@dataclass
class BenchmarkResult:
    """Outcome of a benchmark run."""

    success: int = 0
    fail: int = 0
    elapsed: float = 0.0

    @property
    def total(self) -> int:
        return self.success + self.fail

    @property
    def rps(self) -> float:
        """Requests per second."""
        return self.total / self.elapsed if self.elapsed > 0 else 0.0

    def report(self) -> str:
        return (
            f"Time: {self.elapsed:.3f}s\n"
            f"Requests: {self.total} (success: {self.success}, fail: {self.fail})\n"
            f"RPS: {self.rps:.2f}"
        )


async def run_benchmark(
    send: SendFunc,
    total: int,
    concurrency: int,
    on_progress: Optional[ProgressFunc] = None,
) -> BenchmarkResult:
    """
    Send ``total`` requests with ``concurrency`` workers.

    A request counts as a success when its record is ``ok``; failed
    records and raised exceptions count as failures.

    Args:
        send: Coroutine function performing one request
        total: Number of requests
        concurrency: Number of concurrent workers
        on_progress: Called with the number of requests completed since
            the previous call (every 50 requests per worker, then the rest)
    """
    if concurrency < 1:
        raise ValueError("concurrency must be at least 1")

    counter = _WorkCounter(total)
    result = BenchmarkResult()

    async def worker() -> None:
        processed = 0
        while counter.take():
            try:
                record = await send()
            except Exception as e:
                logger.debug(f"Benchmark request failed: {e}")
                result.fail += 1
            else:
                if record.ok:
                    result.success += 1
                else:
                    result.fail += 1

            processed += 1
            if on_progress is not None and processed % PROGRESS_EVERY == 0:
                on_progress(PROGRESS_EVERY)
                processed = 0

        if on_progress is not None and processed:
            on_progress(processed)

    start = time.perf_counter()
    await asyncio.gather(*(worker() for _ in range(concurrency)))
    result.elapsed = time.perf_counter() - start

    logger.info(f"Benchmark done: {result.success} ok, {result.fail} failed in {result.elapsed:.3f}s")
    return result
