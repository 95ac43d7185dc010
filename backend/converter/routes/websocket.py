"""WebSocket endpoint for pushed job updates."""
import logging
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from converter.services.websocket_manager import websocket_manager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """
    Push channel mirroring job store writes.

    Clients receive:
    - job_status: status changes (uploading -> converting -> ready/failed/cancelled)
    - job_progress: progress changes while a job is active
    """
    await websocket_manager.connect(websocket)

    try:
        await websocket_manager.send_to(websocket, {
            "type": "system",
            "message": "Connected to conversion service",
        })

        while True:
            try:
                data = await websocket.receive_json()
            except WebSocketDisconnect:
                logger.info("WebSocket client disconnected normally")
                break

            if data.get("type") == "ping":
                await websocket_manager.send_to(websocket, {"type": "pong"})

    except Exception as e:
        logger.error(f"WebSocket error: {e}")

    finally:
        websocket_manager.disconnect(websocket)
