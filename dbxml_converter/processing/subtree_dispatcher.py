"""
Depth-bounded fan-out for building nested sub-trees.

The exporter builds the children of a row as one independent task per child
row. Shallow levels are worth running concurrently; deep levels are not, and
unbounded nesting of pool tasks that wait on their own sub-tasks can starve a
fixed-size pool. SubtreeDispatcher therefore:

- dispatches a task to its executor only below the configured depth AND while a
  permit is free (permits == pool size, so a dispatched task always gets a
  thread and waiting parents can never hold every worker);
- otherwise runs the task inline on the calling thread;
- joins all dispatched siblings before returning, logging and re-raising the
  first failure once every sibling has settled.
"""

import logging
import threading

from concurrent.futures import Executor, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, TypeVar


T = TypeVar('T')
R = TypeVar('R')


@dataclass
class DispatchStats:
    """
    Counters describing how sub-tree tasks were executed.

    Attributes:
        dispatched: Tasks handed to the executor
        inline: Tasks run on the calling thread
        max_live: Highest number of dispatched tasks alive at once
        dispatched_by_depth: Dispatched task count per depth
        inline_by_depth: Inline task count per depth
    """
    dispatched: int = 0
    inline: int = 0
    max_live: int = 0
    dispatched_by_depth: Dict[int, int] = field(default_factory=dict)
    inline_by_depth: Dict[int, int] = field(default_factory=dict)


class SubtreeDispatcher:
    """
    Runs sibling sub-tree tasks concurrently up to a depth and permit bound.

    Args:
        max_workers: Pool size; also the number of concurrently live tasks
        async_depth: Depths below this value may be dispatched
        executor: Optional externally managed executor (must have at least
                  ``max_workers`` threads)
    """

    def __init__(self, max_workers: int, async_depth: int, executor: Optional[Executor] = None):
        if max_workers <= 0:
            raise ValueError("max_workers must be positive")
        self.logger = logging.getLogger(__name__)
        self.max_workers = max_workers
        self.async_depth = async_depth
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(max_workers=max_workers,
                                                        thread_name_prefix="subtree")
        self._permits = threading.BoundedSemaphore(max_workers)
        self._lock = threading.Lock()
        self._live = 0
        self.stats = DispatchStats()

    def map(self, task: Callable[[T], R], items: Sequence[T], depth: int) -> List[R]:
        """
        Run ``task`` for every item and return the results in item order.

        Args:
            task: Builds one sub-tree; must not mutate shared state
            items: Sibling inputs (e.g. child rows of one parent)
            depth: Nesting depth of the siblings (children of root rows are depth 1)

        Returns:
            One result per item, in the original order

        Raises:
            Exception: The first task failure, after every sibling has settled
        """
        results: List[Optional[R]] = [None] * len(items)
        futures: Dict[Future, int] = {}
        first_error: Optional[BaseException] = None

        try:
            for index, item in enumerate(items):
                if depth < self.async_depth and self._permits.acquire(blocking=False):
                    try:
                        future = self._executor.submit(self._run_dispatched, task, item)
                    except BaseException:
                        self._permits.release()
                        raise
                    futures[future] = index
                    self._count(depth, dispatched=True)
                else:
                    self._count(depth, dispatched=False)
                    results[index] = task(item)
        except Exception as e:
            first_error = e
        finally:
            # Barrier: siblings already dispatched always complete before we return
            if futures:
                wait(futures)

        for future, index in sorted(futures.items(), key=lambda entry: entry[1]):
            error = future.exception()
            if error is not None:
                self.logger.error(f"Sub-tree task at depth {depth} failed: {error}")
                if first_error is None:
                    first_error = error
            else:
                results[index] = future.result()

        if first_error is not None:
            raise first_error
        return results

    def _run_dispatched(self, task: Callable[[T], R], item: T) -> R:
        with self._lock:
            self._live += 1
            if self._live > self.stats.max_live:
                self.stats.max_live = self._live
        try:
            return task(item)
        finally:
            with self._lock:
                self._live -= 1
            self._permits.release()

    def _count(self, depth: int, dispatched: bool):
        with self._lock:
            if dispatched:
                self.stats.dispatched += 1
                self.stats.dispatched_by_depth[depth] = self.stats.dispatched_by_depth.get(depth, 0) + 1
            else:
                self.stats.inline += 1
                self.stats.inline_by_depth[depth] = self.stats.inline_by_depth.get(depth, 0) + 1

    def shutdown(self):
        if self._owns_executor:
            self._executor.shutdown(wait=True)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.shutdown()
        return False
