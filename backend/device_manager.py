"""
Device Manager - pairing, persistence and lifecycle of WLED strip sessions.
"""
MODULE_VERSION = "2.0.0"

import logging
import re
from typing import Optional

from config_manager import ConfigManager
from device_session import DeviceSession
from settings_schema import DEFAULT_LED_COUNT, LED_COUNT_MAX, LED_COUNT_MIN, clamp_int
from wled_client import WLEDClient, assert_valid_ip

logger = logging.getLogger("device-manager")

_UNSAFE_CHARS = re.compile(r"[<>&\"']")


def _sanitize(value, limit: int) -> str:
    """Never trust device-reported strings for display."""
    return _UNSAFE_CHARS.sub("", str(value)[:limit])


def build_device_record(ip: str, info: dict) -> dict:
    """Turn a /json/info response into the stored device record."""
    name = _sanitize(info.get("name") or "WLED", 64)
    leds = info.get("leds") if isinstance(info.get("leds"), dict) else {}
    return {
        # MAC is stable across reboots and IP changes, use it as the id
        "id": str(info.get("mac") or ip).lower()[:64],
        "name": name or "WLED Strip",
        "address": ip,
        "settings": {
            "num_leds": clamp_int(leds.get("count") or DEFAULT_LED_COUNT,
                                  LED_COUNT_MIN, LED_COUNT_MAX, DEFAULT_LED_COUNT),
            "slide_speed_ms": 50,
            "reverse": False,
            "firmware": _sanitize(info.get("ver") or "unknown", 32),
        },
    }


class DeviceManager:
    """Manages the paired WLED strips."""

    def __init__(self, config: ConfigManager, client: Optional[WLEDClient] = None):
        self.config = config
        self.client = client or WLEDClient(timeout=config.setting("request_timeout"))
        self.sessions: dict[str, DeviceSession] = {}
        self.event_callback = None  # async (device_id, event, payload)

    def _make_session(self, record: dict) -> DeviceSession:
        session = DeviceSession(
            record["id"],
            record.get("name", record["id"]),
            record["address"],
            self.client,
            settings=record.get("settings"),
            poll_interval=self.config.setting("poll_interval"),
            color_debounce_ms=self.config.setting("color_debounce_ms"),
        )
        session.event_callback = self._forward_event
        session.settings_callback = self._persist_session
        return session

    async def _forward_event(self, device_id: str, event: str, payload: dict):
        if self.event_callback is not None:
            await self.event_callback(device_id, event, payload)

    async def start(self):
        """Create sessions for all saved devices."""
        for record in self.config.devices():
            try:
                assert_valid_ip(record.get("address"))
            except ValueError as e:
                logger.error(f"Skipping saved device {record.get('name', '?')}: {e}")
                continue
            session = self._make_session(record)
            self.sessions[session.id] = session
            await session.start()
            logger.info(f"Loaded device {session.name} ({session.state.address})")

    async def stop(self):
        """Stop every session and close the HTTP client."""
        for session in list(self.sessions.values()):
            await session.remove()
        self.sessions.clear()
        await self.client.close()

    async def pair(self, ip: str) -> DeviceSession:
        """Pair a strip by IP. Fetches /json/info once to build the record.

        Raises InvalidAddress / WLEDTimeout / WLEDRemoteError.
        """
        assert_valid_ip(ip)
        info = await self.client.get_info(ip)
        record = build_device_record(ip, info)

        existing = self.sessions.get(record["id"])
        if existing is not None:
            logger.info(f"Device {existing.name} already paired, updating address to {ip}")
            await existing.update_address(ip)
            return existing

        session = self._make_session(record)
        self.sessions[session.id] = session
        self.config.upsert_device(record)
        await session.start()
        logger.info(f'Device "{session.name}" added ({ip}, {record["settings"]["num_leds"]} LEDs)')
        return session

    async def remove_device(self, device_id: str) -> bool:
        session = self.sessions.pop(device_id, None)
        if session is None:
            return False
        await session.remove()
        self.config.remove_device(device_id)
        logger.info(f"Device {session.name} removed")
        return True

    def get(self, device_id: str) -> Optional[DeviceSession]:
        return self.sessions.get(device_id)

    def all_devices(self) -> list:
        return [s.status() for s in self.sessions.values()]

    async def _persist_session(self, session: DeviceSession):
        settings = {k: v for k, v in session.settings.items() if k != "ip_address"}
        if not self.config.update_device(session.id, session.state.address, settings):
            logger.warning(f"{session.name}: no stored record to update")
