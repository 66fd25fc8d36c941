"""
Main FastAPI Application

REST and WebSocket surface for model discovery and chat turns.
"""

from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import Depends, FastAPI, HTTPException, WebSocket
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from pydantic import BaseModel, Field

from modelhub.config import Settings, configure_logging
from modelhub.manager import ModelManager


# Global model manager instance
model_manager: Optional[ModelManager] = None

ERROR_STATUS = {
    "unknown_model": 404,
    "unsupported_modality": 400,
    "missing_required_input": 400,
    "image_decode_error": 400,
    "incomplete_artifact_set": 409,
    "cancelled": 409,
    "credential_missing": 503,
    "session_build_error": 500,
    "inference_engine_error": 502,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan management."""
    global model_manager

    settings = Settings.from_env()
    configure_logging(settings.log_level)
    logger.info("Starting model hub service...")
    model_manager = ModelManager(settings)

    yield

    logger.info("Shutting down model hub service...")
    if model_manager:
        await model_manager.unload_all()


app = FastAPI(
    title="Local Vision Chat",
    description="Chat with local and remote models, with optional image input",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


class ChatRequest(BaseModel):
    message: str = Field(..., description="User message")
    model_id: str = Field(..., description="Identifier of the model to answer")
    image_data: Optional[str] = Field(
        None, description="Base64 image, raw or as a data URL"
    )


class ChatResponse(BaseModel):
    response: str
    model_id: str


class ModelInfo(BaseModel):
    id: str
    name: str
    description: str
    packaging_kind: str
    size_estimate: Optional[str] = None
    is_available: bool
    repo: Optional[str] = None
    files: List[str]
    is_vision: bool
    missing_files: List[str] = []
    reason: Optional[str] = None
    loaded: bool = False


class HealthResponse(BaseModel):
    status: str
    message: str
    loaded_models: List[str] = []


def get_model_manager() -> ModelManager:
    if not model_manager:
        raise HTTPException(status_code=503, detail="Model manager not initialized")
    return model_manager


@app.get("/health", response_model=HealthResponse)
async def health_check():
    if not model_manager:
        return HealthResponse(status="error", message="Model manager not initialized")
    return HealthResponse(
        status="healthy",
        message="Service is running",
        loaded_models=model_manager.cache.loaded_ids(),
    )


@app.get("/system")
async def get_system_info(manager: ModelManager = Depends(get_model_manager)):
    return await manager.get_system_info()


@app.get("/models", response_model=List[ModelInfo])
async def discover_models(manager: ModelManager = Depends(get_model_manager)):
    """All registered models with a fresh availability scan."""
    return await manager.discover_models()


@app.get("/models/{model_id}/availability", response_model=ModelInfo)
async def get_model_availability(model_id: str, manager: ModelManager = Depends(get_model_manager)):
    result = await manager.get_model_availability(model_id)
    if "error" in result:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@app.post("/models/{model_id}/evict")
async def evict_model(model_id: str, manager: ModelManager = Depends(get_model_manager)):
    result = await manager.evict_model(model_id)
    if "error" in result:
        raise HTTPException(status_code=404, detail=result["error"])
    return result


@app.post("/chat", response_model=ChatResponse)
async def chat(request: ChatRequest, manager: ModelManager = Depends(get_model_manager)):
    """Answer one chat turn, optionally with an attached image."""
    result = await manager.chat(request.message, request.model_id, request.image_data)
    if "error" in result:
        error: Dict[str, Any] = result["error"]
        raise HTTPException(status_code=ERROR_STATUS.get(error["code"], 500), detail=error)
    return result


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, client_id: str = "default"):
    """WebSocket endpoint for chat turns."""
    from api.websocket import handle_websocket
    await handle_websocket(websocket, get_model_manager(), client_id)


@app.get("/")
async def root():
    return {
        "service": "Local Vision Chat",
        "version": "1.0.0",
        "endpoints": {
            "health": "/health",
            "system": "/system",
            "models": "/models",
            "chat": "/chat",
            "websocket": "/ws",
        },
    }


if __name__ == "__main__":
    uvicorn.run(
        "api.main:app",
        host="0.0.0.0",
        port=8000,
        reload=False,
        log_level="info",
    )
