"""
WLED Client - HTTP/JSON API communication with WLED devices.
Only the three calls the slide effect needs: info, state read, state write.

WLED speaks plain HTTP without TLS. Fine on a trusted home LAN, never expose
a WLED device directly to the internet.
"""
MODULE_VERSION = "2.0.0"

import asyncio
import ipaddress
import logging
from typing import Optional

import aiohttp

logger = logging.getLogger("wled-client")

REQUEST_TIMEOUT = 5.0

# 0.0.0.0/8 is wider than ipaddress' is_unspecified (single address)
_THIS_NETWORK = ipaddress.ip_network("0.0.0.0/8")
_MULTICAST_AND_UP = ipaddress.IPv4Address("224.0.0.0")


class WLEDError(Exception):
    """Base class for everything the WLED client raises."""


class InvalidAddress(WLEDError, ValueError):
    """Malformed or reserved-range address, rejected before any request."""


class WLEDTimeout(WLEDError):
    """No response within the request timeout."""


class WLEDRemoteError(WLEDError):
    """Non-success HTTP status, transport failure or malformed response."""


def assert_valid_ip(ip) -> str:
    """Validate a unicast IPv4 address and block reserved / SSRF-risky ranges.

    Returns the address unchanged so callers can validate inline.
    """
    if not isinstance(ip, str):
        raise InvalidAddress(f'Invalid IP address: "{ip}"')
    try:
        addr = ipaddress.IPv4Address(ip)
    except ValueError:
        raise InvalidAddress(f'Invalid IP address: "{ip}"') from None

    if (
        addr in _THIS_NETWORK          # unspecified
        or addr.is_loopback            # 127.0.0.0/8
        or addr.is_link_local          # 169.254.0.0/16
        or addr >= _MULTICAST_AND_UP   # multicast & reserved
    ):
        raise InvalidAddress(f'Blocked reserved IP address: "{ip}"')
    return ip


class WLEDClient:
    """Client for the WLED JSON API. The address is passed per call so a
    single client (and its connection pool) serves every paired strip."""

    def __init__(self, timeout: float = REQUEST_TIMEOUT,
                 session: Optional[aiohttp.ClientSession] = None):
        self.timeout = aiohttp.ClientTimeout(total=timeout)
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(timeout=self.timeout)
            self._owns_session = True
        return self._session

    async def close(self):
        """Close the pooled HTTP session (only if this client created it)."""
        if self._session is not None and self._owns_session and not self._session.closed:
            await self._session.close()
        self._session = None

    async def _request(self, method: str, ip: str, path: str, data: Optional[dict] = None) -> dict:
        assert_valid_ip(ip)
        url = f"http://{ip}{path}"
        session = self._get_session()
        try:
            async with session.request(method, url, json=data, timeout=self.timeout) as resp:
                if resp.status != 200:
                    raise WLEDRemoteError(f"WLED returned HTTP {resp.status} for {path}")
                try:
                    body = await resp.json(content_type=None)
                except ValueError as e:
                    raise WLEDRemoteError(f"Malformed JSON from {ip}{path}: {e}") from e
        except asyncio.TimeoutError:
            logger.warning(f"{method} {ip}{path} timed out")
            raise WLEDTimeout(f"Timeout connecting to {ip}") from None
        except aiohttp.ClientError as e:
            logger.warning(f"{method} {ip}{path} failed: {e}")
            raise WLEDRemoteError(f"Request to {ip} failed: {e}") from e

        if not isinstance(body, dict):
            raise WLEDRemoteError(f"Unexpected response from {ip}{path}")
        return body

    async def get_info(self, ip: str) -> dict:
        """Get device info (name, mac, version, LED count)."""
        return await self._request("GET", ip, "/json/info")

    async def get_state(self, ip: str) -> dict:
        """Get current device state (on/off, brightness, segments)."""
        return await self._request("GET", ip, "/json/state")

    async def set_state(self, ip: str, state: dict) -> dict:
        """Post a partial state document; WLED merges it device-side."""
        return await self._request("POST", ip, "/json/state", state)
