#!/usr/bin/env python3
"""
Example client for the Local Vision Chat service

Lists models, then chats over REST (optionally with an image) and WebSocket.
"""

import asyncio
import base64
import json
import sys
from pathlib import Path
from typing import Optional

import httpx
import websockets


class ChatClientError(Exception):
    """Raised when the service answers a chat turn with a structured error."""

    def __init__(self, status_code: int, detail):
        self.status_code = status_code
        self.detail = detail
        message = detail.get("message") if isinstance(detail, dict) else str(detail)
        super().__init__(f"{status_code}: {message}")


class VisionChatClient:
    """Client for interacting with the Local Vision Chat service."""

    def __init__(self, base_url: str = "http://localhost:8000"):
        self.base_url = base_url
        self.ws_url = base_url.replace("http", "ws", 1)

    async def get_models(self) -> list:
        async with httpx.AsyncClient() as client:
            response = await client.get(f"{self.base_url}/models")
            response.raise_for_status()
            return response.json()

    async def chat(self, message: str, model_id: str, image_path: Optional[Path] = None) -> str:
        """Chat using the REST API; loading a model on first use can take minutes."""
        payload = {"message": message, "model_id": model_id}
        if image_path is not None:
            payload["image_data"] = base64.b64encode(Path(image_path).read_bytes()).decode("ascii")

        async with httpx.AsyncClient(timeout=httpx.Timeout(600.0)) as client:
            response = await client.post(f"{self.base_url}/chat", json=payload)
            if response.status_code != 200:
                raise ChatClientError(response.status_code, response.json().get("detail"))
            return response.json()["response"]

    async def chat_websocket(self, message: str, model_id: str) -> str:
        async with websockets.connect(f"{self.ws_url}/ws") as websocket:
            await websocket.send(json.dumps({"message": message, "model_id": model_id}))
            while True:
                data = json.loads(await websocket.recv())
                if data["type"] == "complete":
                    return data["content"]
                if data["type"] == "error":
                    raise ChatClientError(0, data["error"])


async def main():
    client = VisionChatClient()

    print("Available models:")
    models = await client.get_models()
    for model in models:
        status = "available" if model["is_available"] else f"missing {model['missing_files']}"
        vision = " [vision]" if model["is_vision"] else ""
        print(f"  - {model['id']}{vision}: {status}")
    print()

    ready = [m for m in models if m["is_available"]]
    if not ready:
        print("No model is available. Download one into the model cache first.")
        return

    model = ready[0]
    image_path = Path(sys.argv[1]) if len(sys.argv) > 1 else None
    try:
        if image_path is not None and model["is_vision"]:
            reply = await client.chat("Describe this image.", model["id"], image_path)
        else:
            reply = await client.chat("Hello, how are you?", model["id"])
        print(f"REST reply from {model['id']}: {reply}")

        reply = await client.chat_websocket("Tell me a short joke", model["id"])
        print(f"WebSocket reply from {model['id']}: {reply}")
    except ChatClientError as e:
        print(f"Chat failed: {e}")


if __name__ == "__main__":
    asyncio.run(main())
