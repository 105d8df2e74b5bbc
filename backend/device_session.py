"""
Device Session - one paired WLED strip.

Wires capability changes (onoff, dim, color) to the slide engine and to
single WLED updates, owns the settings that pace the animation, tracks
availability and forwards events to whoever listens.
"""
MODULE_VERSION = "1.0.0"

import asyncio
import logging
import numbers
from typing import Optional

from capability_batcher import DEFAULT_WINDOW_MS, CapabilityBatcher
from color_utils import round_half_up
from session_state import CAPABILITIES, COLOR_CAPABILITIES, SessionState
from settings_schema import (
    DEFAULT_DEVICE_SETTINGS, ValidationError, coerce_slide_speed, validate_settings,
)
from slide_engine import CLEAR_TAIL, OFF, SlideEngine
from state_poller import POLL_INTERVAL, StatePoller
from wled_client import InvalidAddress, WLEDClient, assert_valid_ip

logger = logging.getLogger("device-session")

LIGHT_MODES = ("color", "temperature")


def check_capability(name: str, value):
    if name not in CAPABILITIES:
        raise ValidationError(f"Unknown capability: {name}")
    if name == "onoff":
        if not isinstance(value, bool):
            raise ValidationError(f"onoff must be true or false (got {value!r})")
    elif name == "light_mode":
        if value not in LIGHT_MODES:
            raise ValidationError(f"light_mode must be one of {', '.join(LIGHT_MODES)} (got {value!r})")
    elif (isinstance(value, bool) or not isinstance(value, numbers.Real)
          or not 0 <= value <= 1):
        raise ValidationError(f"{name} must be a number between 0 and 1 (got {value!r})")


class DeviceSession:
    """A single WLED strip: capability handlers, settings, slide effect, polling."""

    def __init__(self, device_id: str, name: str, address: str, client: WLEDClient,
                 settings: Optional[dict] = None, poll_interval: float = POLL_INTERVAL,
                 color_debounce_ms: int = DEFAULT_WINDOW_MS, sleep=asyncio.sleep):
        self.id = device_id
        self.name = name
        self.client = client
        self.settings = {**DEFAULT_DEVICE_SETTINGS, **(settings or {}), "ip_address": address}
        self.state = SessionState(
            address=address,
            led_count=self.settings["num_leds"],
            step_delay_ms=self.settings["slide_speed_ms"],
            reverse=bool(self.settings["reverse"]),
        )
        self.event_callback = None     # async (device_id, event, payload), set by DeviceManager
        self.settings_callback = None  # async (session), persists settings/address changes

        self.engine = SlideEngine(self, sleep=sleep)
        self.poller = StatePoller(self, poll_interval)
        self.batcher = CapabilityBatcher(self._on_color, color_debounce_ms)

    # ── Lifecycle ───────────────────────────────────────────────────────

    async def start(self):
        logger.info(f'Device init: "{self.name}" @ {self.state.address}')
        self.poller.start()
        await self.set_available()

    async def remove(self):
        """Retire the session: stop polling and disown any running animation."""
        logger.info(f'Device "{self.name}" removed')
        self.poller.stop()
        self.batcher.cancel()
        # An in-flight slide sees the bump at its next checkpoint and stops
        self.state.generation += 1
        self.state.animating = False

    # ── Plumbing used by the engine and the poller ──────────────────────

    async def post(self, payload: dict) -> dict:
        return await self.client.set_state(self.state.address, payload)

    def set_capability(self, name: str, value):
        self.state.capabilities[name] = value

    async def set_available(self):
        state = self.state
        if state.available and state.unavailable_reason is None:
            return
        state.available = True
        state.unavailable_reason = None
        await self.emit("availability", {"available": True})

    async def set_unavailable(self, reason: str):
        state = self.state
        state.available = False
        state.unavailable_reason = reason
        await self.emit("availability", {"available": False, "reason": reason})

    async def emit(self, event: str, payload: dict):
        if self.event_callback is None:
            return
        try:
            await self.event_callback(self.id, event, payload)
        except Exception:
            logger.exception(f"{self.name}: event callback for '{event}' failed")

    # ── Capability handlers ─────────────────────────────────────────────

    async def set_capabilities(self, changes: dict):
        """Apply capability changes the way a UI/controller would send them.

        Color keys are batched; the call returns once the merged color update
        (if any) has been posted.
        """
        if not changes:
            raise ValidationError("No capabilities given")
        for name, value in changes.items():
            check_capability(name, value)

        color_changes = {k: v for k, v in changes.items() if k in COLOR_CAPABILITIES}
        color_done = None
        if color_changes:
            for name, value in color_changes.items():
                self.set_capability(name, value)
            color_done = self.batcher.push(color_changes)

        try:
            if "dim" in changes:
                await self._on_dim(changes["dim"])
            if "onoff" in changes:
                await self._on_onoff(changes["onoff"])
        finally:
            # The merged color post is still owed to this caller
            if color_done is not None:
                await color_done

    async def _on_onoff(self, value: bool):
        logger.info(f"{self.name}: onoff -> {value}")
        if value:
            await self.slide_on()
        else:
            await self.slide_off()

    async def _on_dim(self, value: float):
        bri = round_half_up(value * 255)
        logger.info(f"{self.name}: dim -> {value} (bri {bri})")
        await self.post({"bri": bri, "transition": 0})
        self.set_capability("dim", value)

    async def _on_color(self, changes: dict):
        params = self.state.effect_params()
        logger.info(f"{self.name}: color -> RGB {params.color} "
                    f"mode={self.state.capability('light_mode')} ({', '.join(changes)})")
        # Reset segment 0 and clear the tail segment in case a cancelled
        # animation left them mid-slide
        return await self.post({
            "bri": params.brightness,
            "transition": 0,
            "seg": [
                {"id": 0, "start": 0, "stop": params.led_count,
                 "col": [params.color, OFF, OFF], "fx": 0},
                dict(CLEAR_TAIL),
            ],
        })

    # ── Flow actions ────────────────────────────────────────────────────

    async def slide_on(self):
        await self.engine.slide_on()

    async def slide_off(self):
        await self.engine.slide_off()

    async def set_slide_speed(self, speed) -> int:
        clamped = coerce_slide_speed(speed)
        logger.info(f"{self.name}: set slide speed = {clamped} ms")
        await self.update_settings({"slide_speed_ms": clamped})
        return clamped

    # ── Settings / address ──────────────────────────────────────────────

    async def update_settings(self, new_settings: dict, changed_keys=None) -> dict:
        """Validate, then apply. A ValidationError leaves everything untouched."""
        clean = validate_settings(new_settings, changed_keys)
        if not clean:
            return dict(self.settings)
        logger.info(f"{self.name}: settings changed: {', '.join(clean)}")

        if "ip_address" in clean:
            self.state.address = clean["ip_address"]
        if "num_leds" in clean:
            self.state.led_count = clean["num_leds"]
        if "slide_speed_ms" in clean:
            self.state.step_delay_ms = clean["slide_speed_ms"]
        if "reverse" in clean:
            self.state.reverse = clean["reverse"]
        self.settings.update(clean)

        await self._persist()
        return dict(self.settings)

    async def update_address(self, address) -> bool:
        """Address reported by discovery. Invalid addresses are ignored."""
        try:
            assert_valid_ip(address)
        except InvalidAddress as e:
            logger.error(f'{self.name}: ignoring invalid address "{address}": {e}')
            return False
        if address != self.state.address:
            logger.info(f"{self.name}: IP changed to {address}")
        self.state.address = address
        self.settings["ip_address"] = address
        await self._persist()
        await self.set_available()
        return True

    async def _persist(self):
        if self.settings_callback is not None:
            await self.settings_callback(self)

    def status(self) -> dict:
        state = self.state
        return {
            "id": self.id,
            "name": self.name,
            "ip": state.address,
            "online": state.available,
            "unavailable_reason": state.unavailable_reason,
            "animating": state.animating,
            "generation": state.generation,
            "capabilities": dict(state.capabilities),
            "settings": dict(self.settings),
        }
