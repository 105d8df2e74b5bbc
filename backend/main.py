"""
WLED Slide - Main Application
Worm/slide on-off effect for WLED strips, with state polling and a JSON API.
"""

import asyncio
import json
import logging
import os
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from config_manager import ConfigManager
from device_manager import DeviceManager
from device_session import DeviceSession, check_capability
from settings_schema import ValidationError
from wled_client import InvalidAddress, WLEDError, WLEDTimeout
from paths import CONFIG_FILE, get_version as get_app_version

# Module version imports
from device_manager import MODULE_VERSION as DEVICE_MGR_VERSION
from wled_client import MODULE_VERSION as WLED_VERSION
from slide_engine import MODULE_VERSION as SLIDE_ENGINE_VERSION
from state_poller import MODULE_VERSION as POLLER_VERSION
from capability_batcher import MODULE_VERSION as BATCHER_VERSION

logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
logger = logging.getLogger("wled-slide")

# Global instances
config_manager = ConfigManager(str(CONFIG_FILE))
device_manager = DeviceManager(config_manager)

# WebSocket connections for live UI updates
ws_connections: list[WebSocket] = []

# Event log (in-memory, last 200 events)
event_log: list = []
EVENT_LOG_MAX = 200

# Slides started from the API run in the background; keep them referenced
_slide_tasks: set = set()


async def broadcast_ws(msg: dict):
    """Broadcast a message to all connected WebSocket clients."""
    dead = []
    for ws in ws_connections:
        try:
            await ws.send_json(msg)
        except Exception:
            dead.append(ws)
    for ws in dead:
        ws_connections.remove(ws)


async def log_event(event_name: str, device_id: str = "", details: dict = None):
    """Log an event and broadcast it to connected clients."""
    entry = {
        "timestamp": time.time(),
        "event": event_name,
        "device": device_id,
        "details": details or {},
    }
    event_log.append(entry)
    if len(event_log) > EVENT_LOG_MAX:
        event_log.pop(0)
    await broadcast_ws({"type": "event_fired", "entry": entry})


async def on_device_event(device_id: str, event: str, payload: dict):
    await log_event(event, device_id, payload)


def _spawn(coro) -> asyncio.Task:
    task = asyncio.create_task(coro)
    _slide_tasks.add(task)
    task.add_done_callback(_slide_tasks.discard)
    return task


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifecycle management."""
    logger.info("Starting WLED Slide...")
    config_manager.load()
    device_manager.event_callback = on_device_event
    await device_manager.start()
    yield
    logger.info("Shutting down...")
    await device_manager.stop()
    config_manager.save()


app = FastAPI(title="WLED Slide", version="1.0.0", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# ─── Error mapping ────────────────────────────────────────────────────────────

@app.exception_handler(ValidationError)
async def validation_error_handler(request: Request, exc: ValidationError):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(WLEDError)
async def wled_error_handler(request: Request, exc: WLEDError):
    if isinstance(exc, InvalidAddress):
        status = 400
    elif isinstance(exc, WLEDTimeout):
        status = 504
    else:
        status = 502
    return JSONResponse(status_code=status, content={"detail": str(exc)})


def _session(device_id: str) -> DeviceSession:
    session = device_manager.get(device_id)
    if session is None:
        raise HTTPException(404, "Device not found")
    return session


# ─── WebSocket for live updates ───────────────────────────────────────────────

@app.websocket("/ws")
async def websocket_endpoint(ws: WebSocket):
    await ws.accept()
    ws_connections.append(ws)
    try:
        while True:
            data = await ws.receive_text()
            msg = json.loads(data)
            if msg.get("type") == "ping":
                await ws.send_json({"type": "pong"})
    except WebSocketDisconnect:
        if ws in ws_connections:
            ws_connections.remove(ws)


# ─── Device Management ────────────────────────────────────────────────────────

@app.get("/api/devices")
async def get_devices():
    """Get all paired WLED strips with their current status."""
    return {"devices": device_manager.all_devices()}


@app.post("/api/devices")
async def add_device(data: dict):
    """Pair a WLED strip by IP address."""
    ip = str(data.get("ip") or "").strip()
    if not ip:
        raise HTTPException(400, "IP address required")
    session = await device_manager.pair(ip)
    return session.status()


@app.get("/api/devices/{device_id}")
async def get_device(device_id: str):
    return _session(device_id).status()


@app.delete("/api/devices/{device_id}")
async def remove_device(device_id: str):
    """Remove a strip. A slide still running on it stops at its next step."""
    if await device_manager.remove_device(device_id):
        return {"success": True}
    raise HTTPException(404, "Device not found")


@app.post("/api/devices/{device_id}/address")
async def set_device_address(device_id: str, data: dict):
    """Address change reported by discovery or entered by hand."""
    session = _session(device_id)
    if not await session.update_address(data.get("ip")):
        raise HTTPException(400, f'Invalid IP address: "{data.get("ip")}"')
    return session.status()


# ─── Capabilities ─────────────────────────────────────────────────────────────

@app.post("/api/devices/{device_id}/capabilities")
async def set_capabilities(device_id: str, data: dict, wait: bool = False):
    """Change onoff / dim / light_* capabilities.

    onoff starts a slide; unless `wait` is set the request returns as soon as
    the slide has been started.
    """
    session = _session(device_id)
    if not data:
        raise ValidationError("No capabilities given")
    for name, value in data.items():
        check_capability(name, value)

    others = {k: v for k, v in data.items() if k != "onoff"}
    if others:
        await session.set_capabilities(others)
    if "onoff" in data:
        if wait:
            await session.set_capabilities({"onoff": data["onoff"]})
        else:
            _spawn(session.set_capabilities({"onoff": data["onoff"]}))
    return session.status()


# ─── Flow Actions ─────────────────────────────────────────────────────────────

@app.post("/api/devices/{device_id}/slide-on")
async def slide_on(device_id: str, wait: bool = False):
    session = _session(device_id)
    logger.info(f"[flow] slide_on -> {session.name}")
    if wait:
        await session.slide_on()
    else:
        _spawn(session.slide_on())
    return {"success": True}


@app.post("/api/devices/{device_id}/slide-off")
async def slide_off(device_id: str, wait: bool = False):
    session = _session(device_id)
    logger.info(f"[flow] slide_off -> {session.name}")
    if wait:
        await session.slide_off()
    else:
        _spawn(session.slide_off())
    return {"success": True}


@app.post("/api/devices/{device_id}/slide-speed")
async def set_slide_speed(device_id: str, data: dict):
    session = _session(device_id)
    speed = await session.set_slide_speed(data.get("speed"))
    return {"success": True, "slide_speed_ms": speed}


# ─── Settings ─────────────────────────────────────────────────────────────────

@app.get("/api/devices/{device_id}/settings")
async def get_settings(device_id: str):
    return {"settings": _session(device_id).settings}


@app.post("/api/devices/{device_id}/settings")
async def update_settings(device_id: str, data: dict):
    """Validate and apply settings. One bad value rejects the whole change."""
    settings = await _session(device_id).update_settings(data)
    return {"success": True, "settings": settings}


# ─── Event Log ────────────────────────────────────────────────────────────────

@app.get("/api/event-log")
async def get_event_log():
    """Get recent event log entries."""
    return {"log": event_log[-100:]}


@app.post("/api/event-log/clear")
async def clear_event_log():
    """Clear the event log."""
    event_log.clear()
    return {"success": True}


# ─── Module System ───────────────────────────────────────────────────────────

@app.get("/api/modules")
async def get_modules():
    """Get all modules with version and status."""
    devices = device_manager.all_devices()
    online = [d for d in devices if d.get("online")]
    return {"version": get_app_version(), "modules": [
        {
            "id": "wled",
            "name": "WLED Controller",
            "version": DEVICE_MGR_VERSION,
            "sub_version": WLED_VERSION,
            "running": len(online) > 0,
            "detail": f"{len(online)}/{len(devices)} devices online",
        },
        {
            "id": "slide",
            "name": "Slide Effect",
            "version": SLIDE_ENGINE_VERSION,
            "running": any(d.get("animating") for d in devices),
            "detail": f"{sum(1 for d in devices if d.get('animating'))} animating",
        },
        {
            "id": "poller",
            "name": "State Poller",
            "version": POLLER_VERSION,
            "running": True,
            "detail": f"every {config_manager.setting('poll_interval')} s",
        },
        {
            "id": "batcher",
            "name": "Color Batching",
            "version": BATCHER_VERSION,
            "running": True,
            "detail": f"{config_manager.setting('color_debounce_ms')} ms window",
        },
    ]}


def main():
    """Entry point."""
    host = os.environ.get("HOST", "0.0.0.0")
    port = int(os.environ.get("PORT", "8420"))
    logger.info(f"WLED Slide v{get_app_version()} - config: {CONFIG_FILE}")
    logger.info(f"Starting server on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="info")


if __name__ == "__main__":
    main()
