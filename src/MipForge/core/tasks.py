"""Shared worker pool with submit / join-all semantics."""

import logging
import os
from concurrent.futures import ALL_COMPLETED, Future, ThreadPoolExecutor, wait
from typing import Callable, Iterable, List, Optional

logger = logging.getLogger("mipforge.tasks")


def default_worker_count() -> int:
    """Return a worker count suited to CPU-bound resampling."""
    return max(1, min(32, os.cpu_count() or 1))


class TaskPool:
    """Thin wrapper over ``ThreadPoolExecutor``.

    Tasks cannot be cancelled once submitted; ``join_all`` blocks on the
    futures themselves instead of polling completion flags.
    """

    def __init__(self, max_workers: Optional[int] = None, name: str = "mipforge"):
        """Create the executor; ``max_workers`` None or 0 picks a CPU-based default."""
        self.max_workers = max_workers or default_worker_count()
        self.name = name
        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix=name
        )
        logger.debug("Started task pool '%s' with %d workers", name, self.max_workers)

    def submit(self, fn: Callable, *args, **kwargs) -> Future:
        return self._executor.submit(fn, *args, **kwargs)

    def join_all(self, handles: Iterable[Future]) -> List[Future]:
        """Block until every handle has finished; return them in input order."""
        handles = list(handles)
        if handles:
            wait(handles, return_when=ALL_COMPLETED)
        return handles

    def shutdown(self, wait: bool = True) -> None:
        logger.debug("Shutting down task pool '%s'", self.name)
        self._executor.shutdown(wait=wait)

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.shutdown(wait=True)
