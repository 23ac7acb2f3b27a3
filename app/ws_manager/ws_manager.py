from fastapi import WebSocket
from typing import Dict, Set
import json

from app.utils.logger_config import setup_logger

logger = setup_logger()

CLIENT_TYPES = ("admin", "customer", "vendor", "rider")


class ConnectionManager:
    def __init__(self):
        # Store active connections by client type
        self.active_connections: Dict[str, Set[WebSocket]] = {
            client_type: set() for client_type in CLIENT_TYPES
        }
        # Event types each connection asked for; empty means everything
        self.connection_subscriptions: Dict[WebSocket, Set[str]] = {}
        # Map user_id to WebSocket(s)
        self.user_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(
        self, websocket: WebSocket, client_type: str = "customer", user_id: str = None
    ):
        """Accept a new WebSocket connection and register it for personal messages."""
        await websocket.accept()
        self.active_connections.setdefault(client_type, set()).add(websocket)
        self.connection_subscriptions[websocket] = set()
        if user_id:
            self.user_connections.setdefault(user_id, set()).add(websocket)
        logger.info(
            f"Client connected. Total {client_type} connections: {len(self.active_connections[client_type])}"
        )

    def disconnect(
        self, websocket: WebSocket, client_type: str = "customer", user_id: str = None
    ):
        self.active_connections.get(client_type, set()).discard(websocket)
        self.connection_subscriptions.pop(websocket, None)
        if user_id and user_id in self.user_connections:
            self.user_connections[user_id].discard(websocket)
            if not self.user_connections[user_id]:
                del self.user_connections[user_id]
        logger.info(
            f"Client disconnected. Total {client_type} connections: {len(self.active_connections.get(client_type, set()))}"
        )

    async def subscribe(self, websocket: WebSocket, event: str):
        if websocket in self.connection_subscriptions:
            self.connection_subscriptions[websocket].add(event)

    async def unsubscribe(self, websocket: WebSocket, event: str):
        if websocket in self.connection_subscriptions:
            self.connection_subscriptions[websocket].discard(event)

    def _wants(self, connection: WebSocket, message: dict) -> bool:
        events = self.connection_subscriptions.get(connection)
        return not events or message.get("type") in events

    async def broadcast_to_admins(self, message: dict) -> int:
        """Broadcast message to every admin connection subscribed to its type"""
        disconnected = set()
        sent = 0

        for connection in list(self.active_connections["admin"]):
            if not self._wants(connection, message):
                continue
            try:
                await connection.send_text(json.dumps(message))
                sent += 1
            except Exception as e:
                logger.warning(f"Error sending message to admin: {e}")
                disconnected.add(connection)

        for connection in disconnected:
            self.disconnect(connection, "admin")
        return sent

    async def send_personal_message(self, message: dict, user_id: str) -> int:
        """Send a message to all WebSocket connections for a specific user_id."""
        if user_id not in self.user_connections:
            return 0
        disconnected = set()
        sent = 0
        for connection in list(self.user_connections[user_id]):
            if not self._wants(connection, message):
                continue
            try:
                await connection.send_text(json.dumps(message))
                sent += 1
            except Exception as e:
                logger.warning(f"Error sending personal message to user {user_id}: {e}")
                disconnected.add(connection)

        for connection in disconnected:
            self.user_connections[user_id].discard(connection)
        if user_id in self.user_connections and not self.user_connections[user_id]:
            del self.user_connections[user_id]
        return sent


# Global manager instance
manager = ConnectionManager()
