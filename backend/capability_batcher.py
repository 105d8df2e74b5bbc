"""
Capability Batcher - coalesces bursts of color capability changes.

The first change opens a fixed window; every change arriving inside it is
merged (latest value per key wins) and the whole set is flushed once when the
window closes. Callers get a future that resolves with the flush result, so
an error posting the merged update still reaches whoever asked for it.
"""
MODULE_VERSION = "1.0.0"

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger("capability-batcher")

DEFAULT_WINDOW_MS = 300


class CapabilityBatcher:

    def __init__(self, flush: Callable[[dict], Awaitable], window_ms: int = DEFAULT_WINDOW_MS):
        self._flush = flush
        self.window = window_ms / 1000
        self._pending: dict = {}
        self._future: Optional[asyncio.Future] = None
        self._timer: Optional[asyncio.Task] = None

    @property
    def pending(self) -> dict:
        return dict(self._pending)

    def push(self, changes: dict) -> asyncio.Future:
        """Add changes to the open batch (opening one if needed)."""
        self._pending.update(changes)
        if self._timer is None:
            loop = asyncio.get_running_loop()
            self._future = loop.create_future()
            self._timer = asyncio.create_task(self._run(self._future))
        return self._future

    async def _run(self, future: asyncio.Future):
        try:
            await asyncio.sleep(self.window)
            changes, self._pending = self._pending, {}
            self._timer = None
            self._future = None
            logger.debug(f"Flushing {len(changes)} batched change(s): {', '.join(changes)}")
            result = await self._flush(changes)
        except asyncio.CancelledError:
            if not future.done():
                future.cancel()
            raise
        except Exception as e:
            if not future.done():
                future.set_exception(e)
            return
        if not future.done():
            future.set_result(result)

    def cancel(self):
        """Drop the open batch without flushing."""
        if self._timer is not None:
            self._timer.cancel()
        # The timer may not have started yet, so resolve waiters here too
        if self._future is not None and not self._future.done():
            self._future.cancel()
        self._timer = None
        self._future = None
        self._pending = {}
