"""
Slide Engine - the worm/snake slide-on / slide-off effect.

Two WLED segments are used at once:
  Segment 0 - the bright body of the worm (full color)
  Segment 1 - a single dim LED at the moving edge (TAIL_BRIGHTNESS)

Each step posts both segments in one request, so the tail always tracks the
edge of the body: one LED ahead while sliding on, one LED behind while
sliding off. Every request uses transition 0; the motion is purely geometric.

Cancellation is cooperative. Each run takes a generation number; before
every step and before the final cleanup it compares that number with the
session's current generation and quietly stops if a newer run has started.
An HTTP call already in flight is allowed to finish.
"""
MODULE_VERSION = "1.0.0"

import asyncio
import logging

from settings_schema import EffectParams
from wled_client import WLEDError

logger = logging.getLogger("slide-engine")

OFF = [0, 0, 0]
CLEAR_TAIL = {"id": 1, "start": 0, "stop": 0}


def _colors(color) -> list:
    return [list(color), OFF, OFF]


def _tail(start: int, stop: int, tail_color) -> dict:
    return {"id": 1, "start": start, "stop": stop, "col": _colors(tail_color), "fx": 0}


def _initial(params: EffectParams, start: int, stop: int) -> dict:
    """Establish the body at its starting extent and clear any leftover tail."""
    return {
        "on": True,
        "bri": params.brightness,
        "transition": 0,
        "seg": [
            {"id": 0, "start": start, "stop": stop, "col": _colors(params.color), "fx": 0},
            dict(CLEAR_TAIL),
        ],
    }


def _forward_on_steps(n: int, tail_color):
    # Body grows to i LEDs; the dim head-glow sits one step ahead
    for i in range(2, n + 1):
        yield {
            "transition": 0,
            "seg": [{"id": 0, "stop": i}, _tail(i, min(n, i + 1), tail_color)],
        }


def _forward_off_steps(n: int, tail_color):
    # Body shrinks to i LEDs; the dim tail-glow sits one step behind
    for i in range(n - 1, 0, -1):
        yield {
            "transition": 0,
            "seg": [{"id": 0, "stop": i}, _tail(i, i + 1, tail_color)],
        }


def _reverse_on_steps(n: int, tail_color):
    # Body grows from the far end towards LED 0; head-glow just below it
    for s in range(n - 2, -1, -1):
        tail = _tail(s - 1, s, tail_color) if s > 0 else dict(CLEAR_TAIL)
        yield {"transition": 0, "seg": [{"id": 0, "start": s}, tail]}


def _reverse_off_steps(n: int, tail_color):
    # Body retreats towards the far end; tail-glow on the LED just vacated
    for s in range(1, n):
        yield {
            "transition": 0,
            "seg": [{"id": 0, "start": s}, _tail(s - 1, s, tail_color)],
        }


def build_slide(direction: str, reverse: bool, params: EffectParams):
    """Return (initial, steps, final) payloads for one slide run.

    `steps` is a list of the N-1 intermediate updates, so a full run posts
    N updates plus the final tail clear.
    """
    n = params.led_count
    if direction == "on":
        if reverse:
            initial = _initial(params, n - 1, n)
            steps = _reverse_on_steps(n, params.tail_color)
        else:
            initial = _initial(params, 0, 1)
            steps = _forward_on_steps(n, params.tail_color)
        final = {"transition": 0, "seg": [dict(CLEAR_TAIL)]}
    elif direction == "off":
        initial = _initial(params, 0, n)
        if reverse:
            steps = _reverse_off_steps(n, params.tail_color)
        else:
            steps = _forward_off_steps(n, params.tail_color)
        final = {"on": False, "transition": 0, "seg": [dict(CLEAR_TAIL)]}
    else:
        raise ValueError(f"Unknown slide direction: {direction}")
    return initial, list(steps), final


class SlideEngine:
    """Runs slide animations for one DeviceSession."""

    def __init__(self, session, sleep=asyncio.sleep):
        self.session = session
        self._sleep = sleep

    @property
    def state(self):
        return self.session.state

    def is_current(self, gen: int) -> bool:
        return self.state.generation == gen

    async def slide_on(self):
        await self._run("on")

    async def slide_off(self):
        await self._run("off")

    async def _run(self, direction: str):
        state = self.state
        # Any in-progress run sees the new generation at its next checkpoint
        state.generation += 1
        gen = state.generation
        state.animating = True
        name = f"slide{direction.capitalize()}"

        params = state.effect_params()
        initial, steps, final = build_slide(direction, state.reverse, params)
        logger.info(f"{self.session.name}: {name} starting "
                    f"({params.led_count} LEDs, {params.step_delay_ms} ms/step, gen {gen})")

        try:
            await self.session.post(initial)

            for payload in steps:
                if not self.is_current(gen):
                    logger.info(f"{self.session.name}: {name} superseded by newer animation")
                    return
                await self.session.post(payload)
                await self._sleep(params.step_delay_ms / 1000)

            if not self.is_current(gen):
                logger.info(f"{self.session.name}: {name} superseded before cleanup")
                return
            await self.session.post(final)
            self.session.set_capability("onoff", direction == "on")
            logger.info(f"{self.session.name}: {name} complete")
            await self.session.emit("slide_completed", {"direction": direction})

        except WLEDError as e:
            if not self.is_current(gen):
                # stale - newer animation owns the strip
                logger.debug(f"{self.session.name}: ignoring error from superseded {name}: {e}")
                return
            logger.error(f"{self.session.name}: {name} failed: {e}")
            await self.session.set_unavailable(str(e))
        finally:
            if self.is_current(gen):
                state.animating = False
