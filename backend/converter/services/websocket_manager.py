"""WebSocket connection manager for pushing job updates."""
import logging
from typing import Optional, Set
from fastapi import WebSocket

logger = logging.getLogger(__name__)


class WebSocketManager:
    """Tracks subscriber connections and fans out job events."""

    def __init__(self):
        self.connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        """
        Accept and register new WebSocket connection.

        Args:
            websocket: WebSocket connection
        """
        await websocket.accept()
        self.connections.add(websocket)
        logger.info(f"WebSocket connected. Total connections: {len(self.connections)}")

    def disconnect(self, websocket: WebSocket):
        self.connections.discard(websocket)
        logger.info(f"WebSocket disconnected. Total connections: {len(self.connections)}")

    async def broadcast(self, message: dict):
        """
        Send a message to every connected client, dropping dead connections.

        Args:
            message: Message dictionary to broadcast
        """
        if not self.connections:
            return

        dead_connections = set()

        for connection in list(self.connections):
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.warning(f"Error sending message to WebSocket: {e}")
                dead_connections.add(connection)

        for connection in dead_connections:
            self.connections.discard(connection)

        if dead_connections:
            logger.info(f"Removed {len(dead_connections)} dead connections")

    async def publish_status(self, job_id: str, status: str, error: Optional[str] = None,
                             output_path: Optional[str] = None):
        await self.broadcast({
            "type": "job_status",
            "job_id": job_id,
            "status": status,
            "error": error,
            "output_path": output_path,
        })

    async def publish_progress(self, job_id: str, progress: float):
        await self.broadcast({
            "type": "job_progress",
            "job_id": job_id,
            "progress": progress,
        })

    async def send_to(self, websocket: WebSocket, message: dict):
        try:
            await websocket.send_json(message)
        except Exception as e:
            logger.warning(f"Error sending message to WebSocket: {e}")
            self.connections.discard(websocket)

    def get_connection_count(self) -> int:
        """Get number of active connections."""
        return len(self.connections)


# Global WebSocket manager instance
websocket_manager = WebSocketManager()
