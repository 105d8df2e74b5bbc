"""
Configuration Manager - Persists paired strips and service settings as JSON.

Layout of config.json:
    {
      "devices":  [ {id, name, address, settings{num_leds, slide_speed_ms, reverse, firmware}} ],
      "settings": {poll_interval, color_debounce_ms, request_timeout}
    }
"""
MODULE_VERSION = "2.0.0"

import copy
import json
import logging
from pathlib import Path
from typing import Any, Optional

logger = logging.getLogger("config-manager")

DEFAULT_SETTINGS = {
    "poll_interval": 30,
    "color_debounce_ms": 300,
    "request_timeout": 5,
}

DEFAULT_CONFIG = {
    "devices": [],
    "settings": DEFAULT_SETTINGS,
}


class ConfigManager:
    """JSON-backed store for device records and service settings."""

    def __init__(self, config_path: str = "config.json"):
        self.config_path = Path(config_path)
        self._config: dict = copy.deepcopy(DEFAULT_CONFIG)

    def load(self):
        """Load config.json, creating it with defaults when missing.

        A corrupt file is logged and replaced by defaults in memory only, so
        the broken file is still on disk for inspection until the next save.
        """
        if not self.config_path.exists():
            logger.info(f"No config file at {self.config_path}, using defaults")
            self._config = copy.deepcopy(DEFAULT_CONFIG)
            self.save()
            return
        try:
            with open(self.config_path, "r", encoding="utf-8") as f:
                loaded = json.load(f)
        except (OSError, ValueError) as e:
            logger.error(f"Error loading config: {e}")
            self._config = copy.deepcopy(DEFAULT_CONFIG)
            return
        if not isinstance(loaded, dict):
            logger.error(f"Ignoring {self.config_path}: top level is not an object")
            self._config = copy.deepcopy(DEFAULT_CONFIG)
            return
        self._config = self._deep_merge(copy.deepcopy(DEFAULT_CONFIG), loaded)
        if not isinstance(self._config.get("devices"), list):
            logger.error("Ignoring malformed device list in config")
            self._config["devices"] = []
        logger.info(f"Configuration loaded from {self.config_path} "
                    f"({len(self._config['devices'])} devices)")

    def save(self):
        try:
            self.config_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_path, "w", encoding="utf-8") as f:
                json.dump(self._config, f, indent=2, ensure_ascii=False)
            logger.debug("Configuration saved")
        except OSError as e:
            logger.error(f"Error saving config: {e}")

    # ── Service settings ────────────────────────────────────────────────

    def setting(self, key: str) -> Any:
        """Service setting with its default as fallback."""
        return self._config.get("settings", {}).get(key, DEFAULT_SETTINGS.get(key))

    # ── Device records ──────────────────────────────────────────────────

    def devices(self) -> list:
        return [d for d in self._config.get("devices", []) if isinstance(d, dict)]

    def find_device(self, device_id: str) -> Optional[dict]:
        for record in self.devices():
            if record.get("id") == device_id:
                return record
        return None

    def upsert_device(self, record: dict):
        """Insert or replace a device record (matched by id) and save."""
        devices = [d for d in self.devices() if d.get("id") != record["id"]]
        devices.append(record)
        self._config["devices"] = devices
        self.save()

    def update_device(self, device_id: str, address: str, settings: dict) -> bool:
        """Store a paired strip's current address and settings. False if unknown."""
        record = self.find_device(device_id)
        if record is None:
            return False
        record["address"] = address
        record["settings"] = dict(settings)
        self.save()
        return True

    def remove_device(self, device_id: str) -> bool:
        devices = self.devices()
        kept = [d for d in devices if d.get("id") != device_id]
        if len(kept) == len(devices):
            return False
        self._config["devices"] = kept
        self.save()
        return True

    @staticmethod
    def _deep_merge(base: dict, override: dict) -> dict:
        """Deep merge override into base."""
        result = base.copy()
        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = ConfigManager._deep_merge(result[key], value)
            else:
                result[key] = value
        return result
