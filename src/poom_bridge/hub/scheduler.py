from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Protocol

logger = logging.getLogger(__name__)

TickCallback = Callable[[], Awaitable[None]]


class ScheduledHandle(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    def schedule(self, delay: float, callback: TickCallback) -> ScheduledHandle:
        """Run `callback` once after `delay` seconds unless the returned handle is cancelled first."""
        ...


class _AsyncioHandle:
    def __init__(self) -> None:
        self._timer: Optional[asyncio.TimerHandle] = None
        self._task: Optional[asyncio.Task[None]] = None
        self._cancelled = False

    def cancel(self) -> None:
        self._cancelled = True
        if self._timer is not None:
            self._timer.cancel()
        task = self._task
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    def _fire(self, callback: TickCallback) -> None:
        if self._cancelled:
            return
        self._task = asyncio.get_running_loop().create_task(callback())
        self._task.add_done_callback(_log_tick_result)


def _log_tick_result(task: asyncio.Task) -> None:
    try:
        task.result()
    except asyncio.CancelledError:
        return
    except Exception:
        logger.exception("Scheduled tick failed.")


class AsyncioScheduler:
    """Timer scheduler backed by the running event loop."""

    def schedule(self, delay: float, callback: TickCallback) -> ScheduledHandle:
        handle = _AsyncioHandle()
        handle._timer = asyncio.get_running_loop().call_later(max(0.0, delay), handle._fire, callback)
        return handle
