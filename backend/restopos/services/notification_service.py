"""Fire-and-forget fanout of domain events.

Services call ``publish`` after their transaction commits. Delivery to
WebSocket clients is scheduled on the application event loop and never
awaited; an optional Redis pub/sub mirror lets other processes follow the
same stream. Any delivery failure is logged and dropped.
"""

import asyncio
import logging
import time
from collections import deque
from typing import Any, Callable, Deque, Dict, Iterable, Optional

import redis

from restopos.core.config import settings
from restopos.services.websocket_service import (
    Channel,
    ConnectionManager,
    EventType,
    WebSocketMessage,
    ws_manager,
)

logger = logging.getLogger(__name__)


class NotificationFanout:
    """Publishes events to WebSocket channels and, when configured, Redis."""

    def __init__(
        self,
        manager: ConnectionManager,
        redis_url: Optional[str] = None,
        redis_channel: str = "restopos:events",
        history_size: int = 200,
        redis_retry_seconds: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._manager = manager
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._redis_url = redis_url
        self._redis_channel = redis_channel
        self._redis: Optional[redis.Redis] = None
        self._redis_retry_seconds = redis_retry_seconds
        self._redis_down_until = 0.0
        self._clock = clock
        self.history: Deque[WebSocketMessage] = deque(maxlen=history_size)

    def bind_loop(self, loop: Optional[asyncio.AbstractEventLoop]) -> None:
        """Attach the event loop that owns the WebSocket connections."""
        self._loop = loop

    def publish(
        self,
        event: EventType,
        data: Dict[str, Any],
        channels: Iterable[Channel] = (Channel.ORDERS,),
    ) -> WebSocketMessage:
        message = WebSocketMessage(event=event.value, data=data)
        self.history.append(message)
        for channel in channels:
            try:
                self._dispatch(message, channel)
            except Exception as e:
                logger.warning(f"Publishing {event.value} to '{channel.value}' failed: {e}")
        self._mirror(message)
        logger.debug(f"Published {event.value}")
        return message

    def events(self, event: Optional[EventType] = None):
        """Recently published messages, optionally filtered by event type."""
        if event is None:
            return list(self.history)
        return [m for m in self.history if m.event == event.value]

    def _dispatch(self, message: WebSocketMessage, channel: Channel) -> None:
        loop = self._loop
        if loop is None or loop.is_closed():
            return
        try:
            running = asyncio.get_running_loop()
        except RuntimeError:
            running = None

        coro = self._manager.broadcast(message.to_dict(), channel.value)
        if running is loop:
            loop.create_task(coro)
        else:
            asyncio.run_coroutine_threadsafe(coro, loop)

    def _mirror(self, message: WebSocketMessage) -> None:
        """Copy the message to Redis. After a failure the mirror stays off for
        ``redis_retry_seconds`` so a dead server costs one timeout, not one per event.
        """
        if not self._redis_url or self._clock() < self._redis_down_until:
            return
        try:
            if self._redis is None:
                self._redis = redis.from_url(
                    self._redis_url, socket_connect_timeout=1, socket_timeout=1
                )
            self._redis.publish(self._redis_channel, message.to_json())
        except (redis.RedisError, OSError) as e:
            self._redis = None
            self._redis_down_until = self._clock() + self._redis_retry_seconds
            logger.warning(
                f"Redis mirror of {message.event} failed, pausing for {self._redis_retry_seconds:.0f}s: {e}"
            )


fanout = NotificationFanout(
    ws_manager,
    redis_url=settings.redis_url,
    redis_channel=settings.redis_event_channel,
)
