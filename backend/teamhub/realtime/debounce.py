"""Trailing-edge debounce for re-fetch callbacks."""

import asyncio
from collections.abc import Awaitable, Callable

import structlog

logger = structlog.get_logger()


class Debouncer:
    """Run ``callback`` once, ``delay`` seconds after the last ``trigger()``.

    A burst of triggers inside the window collapses into a single call.
    A trigger arriving while the callback runs schedules one more call,
    which waits for the running one to finish.
    ``aclose()`` cancels the pending timer and any running callback.
    """

    def __init__(self, delay: float, callback: Callable[[], Awaitable[None]]):
        self.delay = delay
        self._callback = callback
        self._timer: asyncio.Task | None = None
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self._lock = asyncio.Lock()

    @property
    def pending(self) -> bool:
        return self._timer is not None and not self._timer.done()

    def trigger(self) -> None:
        if self._closed:
            return
        if self.pending:
            self._timer.cancel()
        task = asyncio.get_running_loop().create_task(self._fire())
        self._timer = task
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _fire(self) -> None:
        await asyncio.sleep(self.delay)
        # Past the window: later triggers start a new timer instead of cancelling this call
        self._timer = None
        try:
            async with self._lock:
                await self._callback()
        except asyncio.CancelledError:
            raise
        except Exception:
            logger.exception("debounced_callback_failed")

    async def aclose(self) -> None:
        self._closed = True
        tasks = list(self._tasks)
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._timer = None
