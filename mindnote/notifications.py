"""Best-effort side effects (usage tracking, interaction logs).

Failures are captured by an error sink and never reach the caller.
"""

import asyncio
import logging
from collections import deque
from typing import Any, Awaitable, Callable, Deque, Optional, Set, Tuple

logger = logging.getLogger(__name__)

ErrorSink = Callable[[str, BaseException], None]


class BestEffortNotifier:
    """Runs side effects either awaited (``call``) or detached (``dispatch``).

    Detached tasks are tracked so shutdown and tests can ``drain()`` them.
    """

    def __init__(self, error_sink: Optional[ErrorSink] = None, max_recent_errors: int = 50):
        self._sink = error_sink
        self._tasks: Set[asyncio.Task] = set()
        self.recent_errors: Deque[Tuple[str, str]] = deque(maxlen=max_recent_errors)

    def _record(self, name: str, exc: BaseException) -> None:
        logger.warning("Best-effort %s failed: %s", name, exc)
        self.recent_errors.append((name, str(exc)))
        if self._sink is not None:
            try:
                self._sink(name, exc)
            except Exception as sink_exc:
                logger.debug("Error sink raised for %s: %s", name, sink_exc)

    async def call(self, name: str, factory: Callable[[], Awaitable[Any]]) -> Any:
        """Await a side effect; return its result, or None if it failed."""
        try:
            return await factory()
        except Exception as exc:
            self._record(name, exc)
            return None

    def dispatch(self, name: str, factory: Callable[[], Awaitable[Any]]) -> asyncio.Task:
        """Start a side effect without waiting for it."""
        task = asyncio.get_running_loop().create_task(self.call(name, factory))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    @property
    def pending(self) -> int:
        return len(self._tasks)

    async def drain(self) -> None:
        """Wait for every dispatched side effect to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))
