"""
State Poller - periodically mirrors a strip's power and brightness.

Never contends with an animation: while the session is animating a tick does
nothing at all, and a fetch that was already in flight when an animation
started is thrown away.
"""
MODULE_VERSION = "1.0.0"

import asyncio
import logging
from typing import Optional

from settings_schema import clamp
from wled_client import WLEDError

logger = logging.getLogger("state-poller")

POLL_INTERVAL = 30.0
FALLBACK_BRI = 128


def parse_brightness(raw) -> int:
    """WLED `bri` from an untrusted response, clamped to 0-255."""
    if isinstance(raw, bool) or not isinstance(raw, (int, float)) or raw != raw:
        return FALLBACK_BRI
    return int(clamp(raw, 0, 255))


class StatePoller:

    def __init__(self, session, interval: float = POLL_INTERVAL):
        self.session = session
        self.interval = interval
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self):
        self.stop()
        self._task = asyncio.create_task(self._loop())

    def stop(self):
        if self._task is not None:
            self._task.cancel()
            self._task = None

    async def _loop(self):
        while True:
            await asyncio.sleep(self.interval)
            try:
                await self.tick()
            except Exception:
                logger.exception(f"{self.session.name}: poll error")

    async def tick(self):
        session = self.session
        state = session.state
        if state.animating:
            return  # don't overwrite state mid-animation

        try:
            remote = await session.client.get_state(state.address)
        except WLEDError as e:
            logger.error(f"{session.name}: poll failed: {e}")
            await session.set_unavailable(f"Offline: {e}")
            return

        if state.animating:
            logger.debug(f"{session.name}: animation started during poll, discarding result")
            return

        bri = parse_brightness(remote.get("bri"))
        session.set_capability("onoff", bool(remote.get("on")))
        session.set_capability("dim", bri / 255)
        await session.set_available()
