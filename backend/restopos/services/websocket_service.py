"""
WebSocket real-time service.

Channel-scoped connection registry used by kitchen displays, captain devices
and cashier terminals.
"""

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from fastapi import WebSocket, status

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    """Domain events pushed to real-time clients."""

    KOT_CREATED = "kot:created"
    KOT_ACCEPTED = "kot:accepted"
    KOT_PREPARING = "kot:preparing"
    KOT_ITEM_READY = "kot:item_ready"
    KOT_READY = "kot:ready"
    KOT_SERVED = "kot:served"
    KOT_CANCELLED = "kot:cancelled"
    KOT_ITEM_CANCELLED = "kot:item_cancelled"
    KOT_REPRINTED = "kot:reprinted"
    ORDER_BILLED = "order:billed"
    ORDER_PAYMENT_RECEIVED = "order:payment_received"
    TABLE_UPDATED = "table:updated"


class Channel(str, Enum):
    KITCHEN = "kitchen"
    ORDERS = "orders"
    TABLES = "tables"


@dataclass
class WebSocketMessage:
    """Standard WebSocket message format"""

    event: str
    data: Dict[str, Any]
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), default=str)


class ConnectionManager:
    """Manages WebSocket connections per channel."""

    MAX_CONNECTIONS_PER_CHANNEL = 1000

    def __init__(self):
        self.active_connections: Dict[str, List[WebSocket]] = {}
        self.connection_metadata: Dict[int, Dict[str, Any]] = {}

    async def connect(self, websocket: WebSocket, channel: str, user_id: Optional[int] = None) -> bool:
        """Accept a WebSocket onto a channel. Returns False when the channel is full."""
        if len(self.active_connections.get(channel, [])) >= self.MAX_CONNECTIONS_PER_CHANNEL:
            logger.warning(f"WebSocket connection rejected: channel '{channel}' at capacity")
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return False

        await websocket.accept()
        self.active_connections.setdefault(channel, []).append(websocket)
        self.connection_metadata[id(websocket)] = {
            "connected_at": datetime.now(timezone.utc),
            "user_id": user_id,
            "channel": channel,
        }
        logger.debug(f"WebSocket connected to channel '{channel}', user_id={user_id}")
        return True

    def disconnect(self, websocket: WebSocket, channel: str):
        connections = self.active_connections.get(channel, [])
        if websocket in connections:
            connections.remove(websocket)
        self.connection_metadata.pop(id(websocket), None)
        logger.debug(f"WebSocket disconnected from channel '{channel}'")

    def update_ping(self, websocket: WebSocket):
        meta = self.connection_metadata.get(id(websocket))
        if meta is not None:
            meta["last_ping"] = datetime.now(timezone.utc)

    async def broadcast(self, message: Dict[str, Any], channel: str):
        """Broadcast a message to all connections in a channel."""
        disconnected = []
        for connection in list(self.active_connections.get(channel, [])):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.debug(f"WebSocket send failed: {e}")
                disconnected.append(connection)

        for conn in disconnected:
            self.disconnect(conn, channel)

    def get_connection_count(self, channel: Optional[str] = None) -> int:
        if channel:
            return len(self.active_connections.get(channel, []))
        return sum(len(conns) for conns in self.active_connections.values())


# Global connection manager instance
ws_manager = ConnectionManager()
