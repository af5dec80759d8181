"""
Single-flight helper: concurrent callers share one in-flight population.
"""

import asyncio
from typing import Any, Awaitable, Callable, Optional


class SingleFlight:
    """Memoizes the pending operation of a cache while it runs.

    The first caller starts the operation as a task; callers arriving before
    it finishes await that same task. The handle is cleared once the task
    completes, whether it succeeded or raised, so a later call starts afresh.
    """

    def __init__(self):
        self._task: Optional[asyncio.Task] = None

    @property
    def in_flight(self) -> bool:
        return self._task is not None

    async def run(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        if self._task is None:
            self._task = asyncio.ensure_future(self._run(operation))
        # A cancelled waiter must not cancel the work other callers share
        return await asyncio.shield(self._task)

    async def _run(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await operation()
        finally:
            if self._task is asyncio.current_task():
                self._task = None

    def is_current(self) -> bool:
        """True when called from the operation of the flight that is still in effect.

        After reset() the orphaned operation keeps running for its waiters,
        but it must not store its result in the cache.
        """
        return self._task is not None and self._task is asyncio.current_task()

    def reset(self):
        self._task = None
