"""
Redis pub/sub relay between API instances.

When more than one API process serves sockets, an event raised on one
instance must reach connections held by the others.  ``publish`` writes
the event to a single redis channel; every instance runs a listener that
hands what it receives to its local ``BroadcastHub.deliver``.  A single
channel keeps the per-room emission order intact.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import TYPE_CHECKING, Any, Optional

from pydantic import ValidationError

from ridebeacon.domain.events import RideEvent, parse_event

if TYPE_CHECKING:
    from redis.asyncio import Redis

    from .hub import BroadcastHub

logger = logging.getLogger(__name__)


class RedisRelay:
    def __init__(self, redis: "Redis", channel: str, hub: "BroadcastHub") -> None:
        self._redis = redis
        self._channel = channel
        self._hub = hub
        self._pubsub: Any = None
        self._task: Optional[asyncio.Task] = None
        self._running = False

    async def publish(self, event: RideEvent) -> None:
        await self._redis.publish(self._channel, json.dumps(event.to_wire()))

    async def start(self) -> None:
        if self._running:
            return
        self._pubsub = self._redis.pubsub()
        await self._pubsub.subscribe(self._channel)
        self._running = True
        self._task = asyncio.create_task(self._listen())
        logger.info("Realtime relay subscribed to %s", self._channel)

    async def stop(self) -> None:
        self._running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        if self._pubsub is not None:
            await self._pubsub.unsubscribe()
            await self._pubsub.aclose()
        logger.info("Realtime relay stopped")

    async def _listen(self) -> None:
        while self._running:
            try:
                message = await self._pubsub.get_message(
                    ignore_subscribe_messages=True, timeout=1.0
                )
                if message is None:
                    continue
                await self.handle_message(message)
            except asyncio.CancelledError:
                raise
            except Exception:
                logger.exception("Realtime relay listener error")
                await asyncio.sleep(1)

    async def handle_message(self, message: dict[str, Any]) -> None:
        if message.get("type") != "message":
            return
        data = message.get("data")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            event = parse_event(json.loads(data))
        except (ValueError, ValidationError):
            logger.warning("Ignoring malformed relay message: %r", data)
            return
        await self._hub.deliver(event)
