"""
Worker pool for block-parallel numeric processing.

Splits a job of N independent items (transform blocks, beams) into
contiguous index ranges and runs them on a bounded thread pool. numpy
releases the GIL inside FFTs and large array operations, so threads
give real parallelism here.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Callable, List, Optional, Tuple

from .config import ProcessingConfig

logger = logging.getLogger(__name__)


class WorkerPool:
    """
    Bounded thread pool running work over disjoint index ranges.

    Each task receives a ``(start, stop)`` range and must write only to
    output slots belonging to that range. No ordering is guaranteed
    between ranges.

    Thread Safety:
        - A pool may be shared, but the callers in this package drive it
          from one thread at a time.

    Example:
        with WorkerPool(ProcessingConfig(max_workers=4)) as pool:
            pool.run(lambda start, stop: process(out[start:stop]), n_blocks)
    """

    def __init__(self, config: Optional[ProcessingConfig] = None) -> None:
        """
        Initialize worker pool.

        Args:
            config: Processing configuration (worker count, inline threshold)
        """
        self._config = config or ProcessingConfig()
        self._executor: Optional[ThreadPoolExecutor] = None

    @property
    def max_workers(self) -> int:
        """Maximum number of worker threads."""
        return self._config.worker_count

    def split(self, n_items: int) -> List[Tuple[int, int]]:
        """Split ``n_items`` into at most ``max_workers`` contiguous ranges."""
        if n_items <= 0:
            return []
        n_chunks = min(self.max_workers, n_items)
        if n_items < self._config.min_parallel_items:
            n_chunks = 1
        base, extra = divmod(n_items, n_chunks)
        ranges = []
        start = 0
        for i in range(n_chunks):
            stop = start + base + (1 if i < extra else 0)
            ranges.append((start, stop))
            start = stop
        return ranges

    def run(self, task: Callable[[int, int], None], n_items: int) -> None:
        """
        Run ``task(start, stop)`` over all items.

        Exceptions raised by a task are propagated to the caller after
        every range has finished.
        """
        ranges = self.split(n_items)
        if not ranges:
            return
        if len(ranges) == 1:
            task(*ranges[0])
            return

        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=self.max_workers, thread_name_prefix="sonar-worker"
            )
            logger.debug(f"Started worker pool with {self.max_workers} threads")

        futures = [self._executor.submit(task, start, stop) for start, stop in ranges]
        errors = [f.exception() for f in futures]
        for error in errors:
            if error is not None:
                raise error

    def close(self) -> None:
        """Shut down worker threads."""
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self) -> "WorkerPool":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()
