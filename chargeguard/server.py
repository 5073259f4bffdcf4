"""HTTP status service for chargeguard."""

import asyncio
import json
import logging

from aiohttp import web

from chargeguard.config import DEFAULT
from chargeguard.control import ChargeControl, HardwareError
from chargeguard.thresholds import Outcome

log = logging.getLogger(__name__)

_control_key = web.AppKey("control", ChargeControl)
_stop_event_key = web.AppKey("stop_event", asyncio.Event)

_HTTP_STATUS = {
    Outcome.SUCCESS: 200,
    Outcome.NOT_CONFIGURED: 200,
    Outcome.INVALID_START: 400,
    Outcome.INVALID_STOP: 400,
    Outcome.INVALID_GAP: 400,
    Outcome.NOT_FOUND: 404,
    Outcome.UNSUPPORTED: 409,
    Outcome.READ_ERROR: 500,
    Outcome.WRITE_ERROR: 500,
    Outcome.DISCARDED_BY_FIRMWARE: 500,
}


def create_app(control: ChargeControl, stop_event: asyncio.Event | None = None) -> web.Application:
    app = web.Application()
    app[_control_key] = control
    if stop_event is not None:
        app[_stop_event_key] = stop_event

    app.router.add_get("/api/status", handle_status)
    app.router.add_get("/api/batteries/{battery_id}", handle_battery)
    app.router.add_put("/api/batteries/{battery_id}/thresholds", handle_put_thresholds)
    app.router.add_post("/api/apply", handle_apply)
    app.router.add_post("/api/shutdown", handle_shutdown)
    return app


async def handle_status(request: web.Request) -> web.Response:
    control: ChargeControl = request.app[_control_key]
    return web.json_response(control.status())


async def handle_battery(request: web.Request) -> web.Response:
    control: ChargeControl = request.app[_control_key]
    battery_id = request.match_info["battery_id"]
    try:
        battery = control.resolve(battery_id)
    except HardwareError as e:
        return web.json_response({"error": str(e)}, status=503)
    if battery is None:
        return web.json_response({"error": f"battery {battery_id} not present"}, status=404)
    return web.json_response(control.battery_status(battery))


def _threshold_value(value):
    if value is None or value == DEFAULT:
        return value
    if isinstance(value, bool) or not isinstance(value, int):
        raise TypeError(f"threshold must be an integer or {DEFAULT!r}, got {value!r}")
    return value


async def handle_put_thresholds(request: web.Request) -> web.Response:
    control: ChargeControl = request.app[_control_key]
    try:
        data = await request.json()
    except json.JSONDecodeError:
        return web.json_response({"error": "Invalid JSON"}, status=400)

    try:
        start = _threshold_value(data.get("start"))
        stop = _threshold_value(data.get("stop"))
    except (TypeError, AttributeError) as e:
        return web.json_response({"error": str(e)}, status=400)

    try:
        result = control.set_thresholds(request.match_info["battery_id"], start, stop)
    except HardwareError as e:
        return web.json_response({"error": str(e)}, status=503)
    return web.json_response(result.as_dict(), status=_HTTP_STATUS[result.outcome])


async def handle_apply(request: web.Request) -> web.Response:
    control: ChargeControl = request.app[_control_key]
    try:
        results = control.apply_config()
    except HardwareError as e:
        return web.json_response({"error": str(e)}, status=503)
    return web.json_response({
        "ok": all(r.ok for r in results),
        "results": [r.as_dict() for r in results],
    })


async def handle_shutdown(request: web.Request) -> web.Response:
    stop_event = request.app.get(_stop_event_key)
    resp = web.json_response({"ok": True})
    await resp.prepare(request)
    await resp.write_eof()
    log.info("Shutdown requested via API")
    if stop_event is not None:
        stop_event.set()
    return resp
