"""Shared fixtures: a recording fake WLED client and session factories."""

import asyncio
import copy

import pytest

from device_session import DeviceSession


class FakeWLEDClient:
    """Stands in for WLEDClient. Records every posted payload.

    `gates[n]` (an asyncio.Event) holds the n-th post (1-based) in flight
    until set; `errors[n]` makes the n-th post raise after its gate opens.
    """

    def __init__(self, state=None, info=None):
        self.posts = []
        self.addresses = []
        self.gates = {}
        self.errors = {}
        self.state = state if state is not None else {"on": False, "bri": 128}
        self.info = info if info is not None else {
            "name": "Kitchen Strip",
            "mac": "AABBCCDDEEFF",
            "ver": "0.14.0",
            "leds": {"count": 30},
        }
        self.state_error = None
        self.info_error = None
        self.get_state_calls = 0
        self.get_info_calls = 0
        self.on_get_state = None
        self.closed = False

    async def set_state(self, ip, payload):
        self.posts.append(copy.deepcopy(payload))
        self.addresses.append(ip)
        index = len(self.posts)
        gate = self.gates.get(index)
        if gate is not None:
            await gate.wait()
        error = self.errors.get(index)
        if error is not None:
            raise error
        return {"success": True}

    async def get_state(self, ip):
        self.get_state_calls += 1
        if self.on_get_state is not None:
            self.on_get_state()
        if self.state_error is not None:
            raise self.state_error
        return dict(self.state)

    async def get_info(self, ip):
        self.get_info_calls += 1
        if self.info_error is not None:
            raise self.info_error
        return dict(self.info)

    async def close(self):
        self.closed = True


async def fast_sleep(seconds):
    # Yield to the loop without actually waiting out the step delay
    await asyncio.sleep(0)


class EventRecorder:
    def __init__(self):
        self.events = []

    async def __call__(self, device_id, event, payload):
        self.events.append((device_id, event, payload))

    def named(self, name):
        return [payload for _, event, payload in self.events if event == name]


@pytest.fixture
def client():
    return FakeWLEDClient()


@pytest.fixture
def events():
    return EventRecorder()


@pytest.fixture
def make_session(client, events):
    def _make(**settings):
        color_debounce_ms = settings.pop("color_debounce_ms", 20)
        session = DeviceSession(
            "aabbccddeeff", "Test Strip", "192.168.1.50", client,
            settings=settings or None,
            color_debounce_ms=color_debounce_ms,
            sleep=fast_sleep,
        )
        session.event_callback = events
        return session
    return _make
