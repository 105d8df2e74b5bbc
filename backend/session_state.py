"""
Per-strip session state. Owned by one DeviceSession and only ever mutated
from the event loop, so no locking.
"""
MODULE_VERSION = "1.0.0"

from dataclasses import dataclass, field
from typing import Optional

from color_utils import resolve_color, round_half_up, scale_color
from settings_schema import (
    DEFAULT_LED_COUNT, DEFAULT_STEP_DELAY_MS, EffectParams,
    LED_COUNT_MAX, LED_COUNT_MIN, STEP_DELAY_MAX, STEP_DELAY_MIN, clamp, clamp_int,
)

# Worm-tail brightness as a fraction of the main color (0 = off, 1 = full)
TAIL_BRIGHTNESS = 0.35

CAPABILITIES = ("onoff", "dim", "light_hue", "light_saturation", "light_temperature", "light_mode")
COLOR_CAPABILITIES = ("light_hue", "light_saturation", "light_temperature", "light_mode")

# Snapshot fallbacks for capabilities never reported by the device
CAPABILITY_DEFAULTS = {
    "onoff": False,
    "dim": 1.0,
    "light_hue": 0.0,
    "light_saturation": 1.0,
    "light_temperature": 0.5,
    "light_mode": "color",
}


@dataclass
class SessionState:
    address: str
    led_count: int = DEFAULT_LED_COUNT
    step_delay_ms: int = DEFAULT_STEP_DELAY_MS
    reverse: bool = False
    capabilities: dict = field(default_factory=lambda: dict.fromkeys(CAPABILITIES))
    generation: int = 0
    animating: bool = False
    available: bool = False
    unavailable_reason: Optional[str] = None

    def capability(self, name: str):
        value = self.capabilities.get(name)
        return CAPABILITY_DEFAULTS[name] if value is None else value

    @property
    def current_color(self) -> list:
        caps = self.capabilities
        return resolve_color(
            caps.get("light_mode"),
            hue=caps.get("light_hue"),
            saturation=caps.get("light_saturation"),
            temperature=caps.get("light_temperature"),
        )

    @property
    def current_brightness(self) -> float:
        return clamp(float(self.capability("dim")), 0.0, 1.0)

    def effect_params(self) -> EffectParams:
        """Snapshot everything an animation run needs, clamped."""
        color = self.current_color
        return EffectParams(
            led_count=clamp_int(self.led_count, LED_COUNT_MIN, LED_COUNT_MAX, DEFAULT_LED_COUNT),
            step_delay_ms=clamp_int(self.step_delay_ms, STEP_DELAY_MIN, STEP_DELAY_MAX,
                                    DEFAULT_STEP_DELAY_MS),
            color=color,
            tail_color=scale_color(color, TAIL_BRIGHTNESS),
            brightness=round_half_up(self.current_brightness * 255),
        )
