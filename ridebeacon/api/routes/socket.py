"""
Realtime socket  (``/ws``)
==========================

Frames are JSON ``{"event": <name>, "data": <payload>}`` both ways.

Client commands
---------------
* ``join_driver``      data: driverId             -> joins ``driver_<id>``
* ``join_ride``        data: rideId               -> joins ``ride_<id>``
* ``leave_ride``       data: rideId               -> leaves ``ride_<id>``
* ``driver_location``  data: {rideId?, driverId, lat, lng}
* ``ping``             answered with ``pong``

``join_*`` also accept an object (``{"driverId": 7}`` / ``{"rideId": 3}``).
Malformed or unknown commands are ignored: there is no error channel on
the socket, clients fall back to refetching over HTTP.
"""

from __future__ import annotations

import json
import logging
from typing import Any, Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ridebeacon.domain.events import driver_room, ride_room
from ridebeacon.domain.exceptions import ValidationFailed
from ridebeacon.domain.proximity import LocationIndex
from ridebeacon.realtime.hub import BroadcastHub
from ridebeacon.services.drivers import broadcast_location

logger = logging.getLogger(__name__)

router = APIRouter(tags=["realtime"])


def _as_id(data: Any, key: str) -> Optional[int]:
    if isinstance(data, dict):
        data = data.get(key)
    if isinstance(data, bool):
        return None
    try:
        return int(data)
    except (TypeError, ValueError):
        return None


async def handle_command(
    hub: BroadcastHub,
    locations: LocationIndex,
    connection_id: str,
    websocket: WebSocket,
    message: Any,
) -> None:
    if not isinstance(message, dict):
        logger.debug("Ignoring non-object frame from %s", connection_id)
        return
    event = message.get("event")
    data = message.get("data")

    if event == "join_driver":
        driver_id = _as_id(data, "driverId")
        if driver_id is not None:
            hub.join(connection_id, driver_room(driver_id))
            logger.debug("Connection %s joined driver_%s", connection_id, driver_id)
    elif event == "join_ride":
        ride_id = _as_id(data, "rideId")
        if ride_id is not None:
            hub.join(connection_id, ride_room(ride_id))
            logger.debug("Connection %s joined ride_%s", connection_id, ride_id)
    elif event == "leave_ride":
        ride_id = _as_id(data, "rideId")
        if ride_id is not None:
            hub.leave(connection_id, ride_room(ride_id))
    elif event == "driver_location":
        if not isinstance(data, dict):
            return
        driver_id = _as_id(data, "driverId")
        if driver_id is None:
            return
        try:
            await broadcast_location(
                hub,
                locations,
                driver_id,
                data.get("lat"),
                data.get("lng"),
                _as_id(data, "rideId"),
            )
        except ValidationFailed as exc:
            logger.debug("Dropped location from %s: %s", connection_id, exc)
    elif event == "ping":
        await websocket.send_json({"event": "pong", "data": data})
    else:
        logger.debug("Ignoring unknown command %r from %s", event, connection_id)


@router.websocket("/ws")
async def realtime_socket(websocket: WebSocket):
    hub: BroadcastHub = websocket.app.state.hub
    locations: LocationIndex = websocket.app.state.locations

    await websocket.accept()
    connection_id = hub.connect(websocket)
    logger.debug("Socket %s connected", connection_id)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                message = json.loads(raw)
            except ValueError:
                logger.debug("Ignoring non-JSON frame from %s", connection_id)
                continue
            await handle_command(hub, locations, connection_id, websocket, message)
    except WebSocketDisconnect:
        pass
    finally:
        hub.disconnect(connection_id)
        logger.debug("Socket %s disconnected", connection_id)
