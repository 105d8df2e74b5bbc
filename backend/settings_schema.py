"""
Device settings - validation at the settings boundary and the clamped
effect-parameter snapshot the slide engine paces itself with.
"""
MODULE_VERSION = "1.0.0"

import math
from dataclasses import dataclass

from color_utils import round_half_up
from wled_client import InvalidAddress, assert_valid_ip

LED_COUNT_MIN, LED_COUNT_MAX = 1, 1024
STEP_DELAY_MIN, STEP_DELAY_MAX = 10, 500

# Used before the device has ever been contacted / when a stored value is junk
DEFAULT_LED_COUNT = 20
DEFAULT_STEP_DELAY_MS = 50

DEFAULT_DEVICE_SETTINGS = {
    "num_leds": DEFAULT_LED_COUNT,
    "slide_speed_ms": DEFAULT_STEP_DELAY_MS,
    "reverse": False,
    "firmware": "unknown",
}


class ValidationError(ValueError):
    """A settings value is out of range or of the wrong type."""


def _as_number(value):
    if isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    return n if math.isfinite(n) else None


def clamp(value, lo, hi):
    return max(lo, min(hi, value))


def clamp_int(value, lo: int, hi: int, default: int) -> int:
    """Round and clamp; fall back to `default` for anything non-numeric."""
    n = _as_number(value)
    if n is None:
        return default
    return clamp(round_half_up(n), lo, hi)


def validate_settings(new_settings: dict, changed_keys=None) -> dict:
    """Validate changed settings and return them normalised.

    Raises ValidationError on the first bad value; callers apply nothing
    unless this returns.
    """
    keys = list(changed_keys) if changed_keys is not None else list(new_settings)
    clean = {}
    for key in keys:
        if key not in new_settings:
            continue
        value = new_settings[key]

        if key == "num_leds":
            n = _as_number(value)
            if n is None or n != round(n) or not LED_COUNT_MIN <= n <= LED_COUNT_MAX:
                raise ValidationError(
                    f"num_leds must be between {LED_COUNT_MIN} and {LED_COUNT_MAX} (got {value})")
            clean[key] = int(n)

        elif key == "slide_speed_ms":
            n = _as_number(value)
            if n is None or not STEP_DELAY_MIN <= n <= STEP_DELAY_MAX:
                raise ValidationError(
                    f"Slide speed must be {STEP_DELAY_MIN}-{STEP_DELAY_MAX} ms (got {value})")
            clean[key] = round_half_up(n)

        elif key == "reverse":
            if not isinstance(value, bool):
                raise ValidationError(f"reverse must be true or false (got {value!r})")
            clean[key] = value

        elif key == "ip_address":
            try:
                clean[key] = assert_valid_ip(value)
            except InvalidAddress as e:
                raise ValidationError(str(e)) from e

        else:
            raise ValidationError(f"Unknown setting: {key}")
    return clean


def coerce_slide_speed(value) -> int:
    """Slide-speed flow action: reject non-numbers, clamp everything else."""
    n = _as_number(value)
    if n is None:
        raise ValidationError(f"Invalid speed value: {value}")
    return clamp(round_half_up(n), STEP_DELAY_MIN, STEP_DELAY_MAX)


@dataclass(frozen=True)
class EffectParams:
    led_count: int
    step_delay_ms: int
    color: list
    tail_color: list
    brightness: int
