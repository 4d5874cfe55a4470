"""
ErgoPulse WebSocket Manager
Handles real-time streaming of live state, notifications and break events.
"""

import logging
from typing import Dict, Set
from fastapi import WebSocket

logger = logging.getLogger("ergo.websocket")

MONITOR = "monitor"
BREAKS = "breaks"


class ConnectionManager:
    """Manages WebSocket connections for real-time streaming"""

    def __init__(self):
        # Channel-based connections
        self.active_connections: Dict[str, Set[WebSocket]] = {
            MONITOR: set(),
            BREAKS: set(),
        }

    async def connect(self, websocket: WebSocket, channel: str = MONITOR):
        await websocket.accept()
        if channel not in self.active_connections:
            self.active_connections[channel] = set()
        self.active_connections[channel].add(websocket)
        logger.info(f"Client connected to channel: {channel} (total: {len(self.active_connections[channel])})")

    def disconnect(self, websocket: WebSocket, channel: str = MONITOR):
        if channel in self.active_connections:
            self.active_connections[channel].discard(websocket)
        logger.info(f"Client disconnected from channel: {channel}")

    async def broadcast_to_channel(self, channel: str, message: dict):
        """Send message to all clients on a channel; drop the ones that fail"""
        if channel not in self.active_connections:
            return

        dead = set()
        for ws in list(self.active_connections[channel]):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug(f"Dropping dead socket on {channel}: {e}")
                dead.add(ws)

        for ws in dead:
            self.active_connections[channel].discard(ws)

    async def send_live_state(self, state: dict):
        await self.broadcast_to_channel(MONITOR, {
            "type": "live_state",
            "data": state,
        })

    async def send_notification(self, notification: dict):
        await self.broadcast_to_channel(MONITOR, {
            "type": "notification",
            "data": notification,
        })

    async def send_break_event(self, event: dict):
        """Scheduler events are already shaped as {type, data, timestamp}"""
        await self.broadcast_to_channel(BREAKS, event)

    @property
    def total_connections(self) -> int:
        return sum(len(conns) for conns in self.active_connections.values())


# Global instance
ws_manager = ConnectionManager()
