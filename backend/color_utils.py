"""
Color helpers - map light capabilities (hue/saturation or temperature) to the
RGB triples WLED segments expect.
"""
MODULE_VERSION = "1.0.0"

import math

COLD_WHITE = (200, 220, 255)  # ~6500 K
WARM_WHITE = (255, 147, 41)   # ~2700 K


def round_half_up(x: float) -> int:
    """Nearest integer with exact halves rounded up (12.5 -> 13, 80.5 -> 81)."""
    return math.floor(x + 0.5)


def hsv_to_rgb(h: float, s: float, v: float) -> list:
    """Convert HSV (all 0-1) to an RGB list (0-255)."""
    i = math.floor(h * 6)
    f = h * 6 - i
    p = v * (1 - s)
    q = v * (1 - f * s)
    t = v * (1 - (1 - f) * s)
    r, g, b = {
        0: (v, t, p),
        1: (q, v, p),
        2: (p, v, t),
        3: (p, q, v),
        4: (t, p, v),
        5: (v, p, q),
    }[i % 6]
    return [round_half_up(r * 255), round_half_up(g * 255), round_half_up(b * 255)]


def ct_to_rgb(ct: float) -> list:
    """Light temperature 0 (cold) .. 1 (warm) to an RGB white.

    Linear blend between the two white points; exact midpoints round down,
    so ct=0.5 gives [227, 183, 148].
    """
    return [math.ceil(c + (w - c) * ct - 0.5) for c, w in zip(COLD_WHITE, WARM_WHITE)]


def resolve_color(mode, hue=None, saturation=None, temperature=None) -> list:
    """RGB for the current light mode.

    Value is always 1: brightness lives in WLED's global `bri`, never in the
    segment color.
    """
    if mode == "temperature":
        return ct_to_rgb(0.5 if temperature is None else temperature)
    return hsv_to_rgb(
        0 if hue is None else hue,
        1 if saturation is None else saturation,
        1,
    )


def scale_color(color, factor: float) -> list:
    """Scale every channel, e.g. for the dimmer worm tail."""
    return [round_half_up(c * factor) for c in color]
