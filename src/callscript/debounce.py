import asyncio
import inspect
import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)


class DebounceTimer:
    """Single-shot timer that restarts on every reset().

    The callback runs once the timer has gone `delay_s` without a reset.
    `sleep` is injectable so tests can drive time themselves, and flush()
    runs a pending callback immediately.
    """

    def __init__(
        self,
        delay_s: float,
        callback: Callable[[], Awaitable[None] | None],
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        label: str = "debounce",
    ):
        self.delay_s = delay_s
        self._callback = callback
        self._sleep = sleep
        self.label = label
        self._task: asyncio.Task | None = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def reset(self) -> None:
        """Cancel any pending run and start the wait again. Needs a running loop."""
        self.cancel()
        self._task = asyncio.get_running_loop().create_task(self._wait_then_fire())

    def cancel(self) -> None:
        if self._task and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self) -> bool:
        """Fire now if a run is pending. Returns whether the callback ran."""
        if not self.pending:
            return False
        self.cancel()
        await self._fire()
        return True

    async def _wait_then_fire(self):
        await self._sleep(self.delay_s)
        # Detach first so a reset() from inside the callback starts a fresh task
        self._task = None
        await self._fire()

    async def _fire(self):
        try:
            result = self._callback()
            if inspect.isawaitable(result):
                await result
        except Exception:
            logger.exception("%s callback failed", self.label)
