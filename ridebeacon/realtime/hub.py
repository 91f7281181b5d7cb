"""
Realtime Broadcast Hub.

Keeps socket-room membership for this process and fans events out to
the right connections.

Rooms
-----
* ``driver_<id>`` -- one driver's private channel
* ``ride_<id>``   -- everyone following one ride (rider, driver, observers)

A connection may sit in any number of rooms; ``disconnect`` removes it
from all of them.  Membership changes are plain dict/set operations with
no ``await`` in between, so they are atomic with respect to other
coroutines on the loop.

Delivery
--------
Best-effort, at most once, no replay.  Fan-out to a room holds that
room's ``asyncio.Lock`` for the whole send loop, so every subscriber
sees one room's events in emission order.  There is no ordering across
rooms.  A connection whose send fails is dropped.

Frames on the wire: ``{"event": <name>, "data": <payload>}``.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
import weakref
from typing import TYPE_CHECKING, Any, Optional, Protocol

from ridebeacon.domain.events import RideEvent

if TYPE_CHECKING:
    from .relay import RedisRelay

logger = logging.getLogger(__name__)

ALL_CONNECTIONS = "*"


class Connection(Protocol):
    async def send_json(self, data: Any) -> None: ...


class BroadcastHub:
    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}
        self._rooms: dict[str, set[str]] = {}
        self._memberships: dict[str, set[str]] = {}
        # a room's lock lives only while an emitter holds it or waits on it
        self._locks: "weakref.WeakValueDictionary[str, asyncio.Lock]" = (
            weakref.WeakValueDictionary()
        )
        self._relay: Optional["RedisRelay"] = None

        self._total_connections = 0
        self._total_messages_sent = 0

    # ── Membership ────────────────────────────────────────────────────

    def attach_relay(self, relay: Optional["RedisRelay"]) -> None:
        self._relay = relay

    def connect(self, connection: Connection) -> str:
        connection_id = uuid.uuid4().hex
        self._connections[connection_id] = connection
        self._memberships[connection_id] = set()
        self._total_connections += 1
        return connection_id

    def join(self, connection_id: str, room: str) -> bool:
        if connection_id not in self._connections:
            return False
        self._memberships[connection_id].add(room)
        self._rooms.setdefault(room, set()).add(connection_id)
        return True

    def leave(self, connection_id: str, room: str) -> None:
        rooms = self._memberships.get(connection_id)
        if rooms is not None:
            rooms.discard(room)
        members = self._rooms.get(room)
        if members is not None:
            members.discard(connection_id)
            if not members:
                del self._rooms[room]

    def disconnect(self, connection_id: str) -> None:
        for room in list(self._memberships.get(connection_id, ())):
            self.leave(connection_id, room)
        self._memberships.pop(connection_id, None)
        self._connections.pop(connection_id, None)

    def members(self, room: str) -> set[str]:
        return set(self._rooms.get(room, ()))

    def rooms_of(self, connection_id: str) -> set[str]:
        return set(self._memberships.get(connection_id, ()))

    @property
    def active_connections(self) -> int:
        return len(self._connections)

    def stats(self) -> dict[str, int]:
        return {
            "active_connections": len(self._connections),
            "total_rooms": len(self._rooms),
            "total_connections_ever": self._total_connections,
            "total_messages_sent": self._total_messages_sent,
        }

    # ── Fan-out ───────────────────────────────────────────────────────

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        return lock

    async def _send_all(self, connection_ids: list[str], frame: dict[str, Any]) -> int:
        sent = 0
        failed: list[str] = []
        for connection_id in connection_ids:
            connection = self._connections.get(connection_id)
            if connection is None:
                continue
            try:
                await connection.send_json(frame)
            except Exception as exc:
                logger.debug("Dropping connection %s after send failure: %s", connection_id, exc)
                failed.append(connection_id)
                continue
            sent += 1
        self._total_messages_sent += sent
        for connection_id in failed:
            self.disconnect(connection_id)
        return sent

    async def emit_to_room(self, room: str, event: str, payload: Any) -> int:
        if not self._rooms.get(room) and room not in self._locks:
            return 0
        frame = {"event": event, "data": payload}
        async with self._lock_for(room):
            targets = sorted(self._rooms.get(room, ()))
            return await self._send_all(targets, frame)

    async def emit_to_all(self, event: str, payload: Any) -> int:
        frame = {"event": event, "data": payload}
        async with self._lock_for(ALL_CONNECTIONS):
            return await self._send_all(list(self._connections), frame)

    async def deliver(self, event: RideEvent) -> int:
        """Send a typed event to the local connections it targets."""
        room = event.room()
        if room is None:
            return await self.emit_to_all(event.event, event.payload())
        return await self.emit_to_room(room, event.event, event.payload())

    async def publish(self, event: RideEvent) -> None:
        """
        Fire-and-forget entry point for the rest of the application.

        With a relay attached the event goes through redis so every API
        instance delivers it to its own sockets; otherwise it is
        delivered locally.  Never raises.
        """
        try:
            if self._relay is not None:
                try:
                    await self._relay.publish(event)
                    return
                except Exception:
                    logger.warning(
                        "Relay publish failed for %s, delivering locally",
                        event.event,
                        exc_info=True,
                    )
            await self.deliver(event)
        except Exception:
            logger.exception("Broadcast of %s failed", event.event)

    async def publish_many(self, *events: RideEvent) -> None:
        for event in events:
            await self.publish(event)
