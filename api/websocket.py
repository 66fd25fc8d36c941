"""
WebSocket handler for chat turns.
"""
import json
from typing import Any, Dict

from fastapi import WebSocket, WebSocketDisconnect
from loguru import logger
from pydantic import ValidationError

from api.main import ChatRequest
from modelhub.manager import ModelManager


class ConnectionManager:
    """Manages WebSocket connections."""

    def __init__(self):
        self.active_connections: Dict[str, WebSocket] = {}

    async def connect(self, websocket: WebSocket, client_id: str):
        await websocket.accept()
        self.active_connections[client_id] = websocket
        logger.info(f"WebSocket connected: {client_id}")

    def disconnect(self, client_id: str):
        if client_id in self.active_connections:
            del self.active_connections[client_id]
            logger.info(f"WebSocket disconnected: {client_id}")

    async def send_message(self, client_id: str, message: Dict[str, Any]) -> bool:
        """Send a message to a specific client; False if it has gone away."""
        websocket = self.active_connections.get(client_id)
        if websocket is None:
            return False
        try:
            await websocket.send_text(json.dumps(message))
            return True
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.error(f"Error sending message to {client_id}: {e}")
            self.disconnect(client_id)
            return False


manager = ConnectionManager()


async def handle_websocket(websocket: WebSocket, model_manager: ModelManager, client_id: str = "default"):
    """Receive ``{message, model_id, image_data?}`` frames and answer each one."""
    await manager.connect(websocket, client_id)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                request = ChatRequest.model_validate_json(data)
            except ValidationError as e:
                await manager.send_message(client_id, {
                    "type": "error",
                    "error": {"code": "invalid_request", "message": f"Invalid chat frame: {e}"},
                })
                continue

            model_id = request.model_id
            await manager.send_message(client_id, {"type": "start", "model_id": model_id})

            result = await model_manager.chat(request.message, model_id, request.image_data)
            if "error" in result:
                await manager.send_message(client_id, {"type": "error", "error": result["error"]})
            else:
                await manager.send_message(client_id, {
                    "type": "complete",
                    "model_id": model_id,
                    "content": result["response"],
                })

    except WebSocketDisconnect:
        manager.disconnect(client_id)
        logger.info(f"WebSocket client {client_id} disconnected")
    except Exception as e:
        logger.error(f"WebSocket error for {client_id}: {e}")
        manager.disconnect(client_id)
