import asyncio

import pytest

from color_utils import scale_color
from session_state import TAIL_BRIGHTNESS
from settings_schema import EffectParams
from slide_engine import build_slide
from wled_client import WLEDRemoteError

RED = [255, 0, 0]


def params(n, color=RED, brightness=255):
    return EffectParams(
        led_count=n,
        step_delay_ms=10,
        color=color,
        tail_color=scale_color(color, TAIL_BRIGHTNESS),
        brightness=brightness,
    )


def tail_window(payload):
    tail = payload["seg"][1]
    return tail["start"], tail["stop"]


# ── Geometry ────────────────────────────────────────────────────────────────

def test_forward_slide_on_geometry():
    initial, steps, final = build_slide("on", False, params(5))

    assert initial["on"] is True
    assert initial["seg"][0]["start"] == 0 and initial["seg"][0]["stop"] == 1
    assert initial["seg"][1] == {"id": 1, "start": 0, "stop": 0}
    assert [s["seg"][0]["stop"] for s in steps] == [2, 3, 4, 5]
    assert [tail_window(s) for s in steps] == [(2, 3), (3, 4), (4, 5), (5, 5)]
    assert final == {"transition": 0, "seg": [{"id": 1, "start": 0, "stop": 0}]}


def test_forward_slide_off_geometry():
    initial, steps, final = build_slide("off", False, params(5))

    assert initial["seg"][0]["start"] == 0 and initial["seg"][0]["stop"] == 5
    assert [s["seg"][0]["stop"] for s in steps] == [4, 3, 2, 1]
    assert [tail_window(s) for s in steps] == [(4, 5), (3, 4), (2, 3), (1, 2)]
    assert final["on"] is False
    assert final["seg"] == [{"id": 1, "start": 0, "stop": 0}]


def test_reverse_slide_on_geometry():
    initial, steps, final = build_slide("on", True, params(4))

    assert (initial["seg"][0]["start"], initial["seg"][0]["stop"]) == (3, 4)
    assert [s["seg"][0]["start"] for s in steps] == [2, 1, 0]
    assert [tail_window(s) for s in steps] == [(1, 2), (0, 1), (0, 0)]
    assert "col" not in steps[-1]["seg"][1]
    assert final["seg"] == [{"id": 1, "start": 0, "stop": 0}]


def test_reverse_slide_off_geometry():
    initial, steps, final = build_slide("off", True, params(4))

    assert (initial["seg"][0]["start"], initial["seg"][0]["stop"]) == (0, 4)
    assert [s["seg"][0]["start"] for s in steps] == [1, 2, 3]
    assert [tail_window(s) for s in steps] == [(0, 1), (1, 2), (2, 3)]
    assert final["on"] is False


@pytest.mark.parametrize("direction", ["on", "off"])
@pytest.mark.parametrize("reverse", [False, True])
@pytest.mark.parametrize("n", [1, 2, 3, 17, 1024])
def test_step_count_and_zero_transition(direction, reverse, n):
    initial, steps, final = build_slide(direction, reverse, params(n))

    assert len(steps) == n - 1
    for payload in [initial, *steps, final]:
        assert payload["transition"] == 0


def test_tail_uses_scaled_color_on_every_step():
    color = [120, 200, 33]
    p = params(6, color=color)
    for direction in ("on", "off"):
        for reverse in (False, True):
            _, steps, _ = build_slide(direction, reverse, p)
            for step in steps:
                tail = step["seg"][1]
                if tail["stop"] > tail["start"]:
                    assert tail["col"][0] == [42, 70, 12]
                    assert tail["col"][1:] == [[0, 0, 0], [0, 0, 0]]
                    assert tail["fx"] == 0


def test_initial_carries_color_and_brightness():
    initial, _, _ = build_slide("on", False, params(3, color=[10, 20, 30], brightness=128))

    assert initial["bri"] == 128
    assert initial["seg"][0]["col"] == [[10, 20, 30], [0, 0, 0], [0, 0, 0]]
    assert initial["seg"][0]["fx"] == 0


def test_unknown_direction_rejected():
    with pytest.raises(ValueError):
        build_slide("sideways", False, params(3))


# ── Runs ────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_slide_on_end_to_end(make_session, client, events):
    session = make_session(num_leds=5)

    await session.slide_on()

    assert len(client.posts) == 6
    assert [p["seg"][0]["stop"] for p in client.posts[:5]] == [1, 2, 3, 4, 5]
    assert [tail_window(p) for p in client.posts[1:5]] == [(2, 3), (3, 4), (4, 5), (5, 5)]
    assert client.posts[-1] == {"transition": 0, "seg": [{"id": 1, "start": 0, "stop": 0}]}
    assert events.named("slide_completed") == [{"direction": "on"}]
    assert session.state.capabilities["onoff"] is True
    assert session.state.animating is False
    assert session.state.generation == 1


@pytest.mark.asyncio
async def test_slide_off_end_to_end(make_session, client, events):
    session = make_session(num_leds=5)

    await session.slide_off()

    assert len(client.posts) == 6
    assert [p["seg"][0]["stop"] for p in client.posts[:5]] == [5, 4, 3, 2, 1]
    assert client.posts[-1]["on"] is False
    assert client.posts[-1]["seg"] == [{"id": 1, "start": 0, "stop": 0}]
    assert events.named("slide_completed") == [{"direction": "off"}]
    assert session.state.capabilities["onoff"] is False
    assert session.state.animating is False


@pytest.mark.asyncio
@pytest.mark.parametrize("n", [1, 2, 9])
async def test_completed_run_posts_n_updates_plus_cleanup(make_session, client, n):
    session = make_session(num_leds=n)

    await session.slide_on()

    assert len(client.posts) == n + 1
    assert client.posts[n - 1]["seg"][0]["stop"] == n


@pytest.mark.asyncio
async def test_reverse_setting_selects_mirrored_geometry(make_session, client):
    session = make_session(num_leds=4, reverse=True)

    await session.slide_on()

    assert [p["seg"][0]["start"] for p in client.posts[:4]] == [3, 2, 1, 0]


@pytest.mark.asyncio
async def test_generation_increments_per_run(make_session):
    session = make_session(num_leds=2)

    await session.slide_on()
    await session.slide_off()
    await session.slide_on()

    assert session.state.generation == 3


@pytest.mark.asyncio
async def test_run_uses_current_color_and_tail(make_session, client):
    session = make_session(num_leds=3)
    session.set_capability("light_mode", "temperature")
    session.set_capability("light_temperature", 0)
    session.set_capability("dim", 0.5)

    await session.slide_on()

    initial = client.posts[0]
    assert initial["bri"] == round(0.5 * 255)
    assert initial["seg"][0]["col"][0] == [200, 220, 255]
    assert client.posts[1]["seg"][1]["col"][0] == [70, 77, 89]


@pytest.mark.asyncio
async def test_superseded_run_stops_writing(make_session, client, events):
    session = make_session(num_leds=10)
    snapshots = {}

    first = asyncio.create_task(session.slide_on())
    first.add_done_callback(lambda t: snapshots.setdefault("animating", session.state.animating))
    while len(client.posts) < 3:
        await asyncio.sleep(0)
    switch_at = len(client.posts)

    await session.slide_off()
    await first

    expected_initial, expected_steps, expected_final = build_slide(
        "off", False, session.state.effect_params())
    assert client.posts[switch_at:] == [expected_initial, *expected_steps, expected_final]
    assert session.state.generation == 2
    # the stale run left `animating` alone; the newer run owned it then
    assert snapshots["animating"] is True
    assert session.state.animating is False
    assert events.named("slide_completed") == [{"direction": "off"}]
    assert first.exception() is None


@pytest.mark.asyncio
async def test_in_flight_request_finishes_then_stale_run_exits(make_session, client):
    session = make_session(num_leds=6)
    gate = asyncio.Event()
    client.gates[3] = gate

    first = asyncio.create_task(session.slide_on())
    while len(client.posts) < 3:
        await asyncio.sleep(0)

    await session.slide_off()
    off_posts = len(client.posts) - 3
    gate.set()
    await first

    assert off_posts == 7
    assert len(client.posts) == 3 + off_posts
    assert session.state.animating is False
    assert session.state.capabilities["onoff"] is False


@pytest.mark.asyncio
async def test_failure_marks_device_unavailable(make_session, client, events):
    session = make_session(num_leds=5)
    await session.set_available()
    client.errors[2] = WLEDRemoteError("WLED returned HTTP 500 for /json/state")

    await session.slide_on()

    assert session.state.available is False
    assert session.state.unavailable_reason == "WLED returned HTTP 500 for /json/state"
    assert session.state.animating is False
    assert len(client.posts) == 2
    assert events.named("slide_completed") == []


@pytest.mark.asyncio
async def test_failure_of_stale_run_is_suppressed(make_session, client):
    session = make_session(num_leds=4)
    await session.set_available()
    gate = asyncio.Event()
    client.gates[2] = gate
    client.errors[2] = WLEDRemoteError("boom")

    first = asyncio.create_task(session.slide_on())
    while len(client.posts) < 2:
        await asyncio.sleep(0)

    await session.slide_off()
    gate.set()
    await first

    assert session.state.available is True
    assert session.state.unavailable_reason is None
    assert session.state.animating is False
    assert first.exception() is None


@pytest.mark.asyncio
async def test_tail_rounds_half_channels_up(make_session, client):
    session = make_session(num_leds=3)
    session.set_capability("light_mode", "temperature")
    # blue channel 255 + (41 - 255) * 25/214 = 230; 230 * 0.35 = 80.5
    session.set_capability("light_temperature", 25 / 214)

    await session.slide_on()

    assert client.posts[0]["seg"][0]["col"][0][2] == 230
    assert client.posts[1]["seg"][1]["col"][0][2] == 81
