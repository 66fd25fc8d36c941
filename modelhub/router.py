"""
Chat Router

Validates a chat turn against the selected model's capabilities, decodes any
attached image and invokes the model's session.
"""

from enum import Enum
from typing import Optional

from loguru import logger

from .cache import SessionCache
from .classifier import FormatClassifier
from .errors import (
    InferenceEngineError,
    MissingRequiredInput,
    ModelHubError,
    UnsupportedModality,
)
from .imaging import decode_image
from .registry import ModelRegistry


class ImagePolicy(str, Enum):
    """What to do when a vision model gets a turn without an image."""
    OPTIONAL = "optional"   # proceed text-only
    REQUIRED = "required"   # reject with MissingRequiredInput


class ChatRouter:
    """Routes chat turns to the session of the requested model."""

    def __init__(
        self,
        registry: ModelRegistry,
        classifier: FormatClassifier,
        cache: SessionCache,
        image_policy: ImagePolicy = ImagePolicy.OPTIONAL,
    ):
        self.registry = registry
        self.classifier = classifier
        self.cache = cache
        self.image_policy = ImagePolicy(image_policy)

    async def route(self, model_id: str, text: str, image_data: Optional[str] = None) -> str:
        descriptor = self.registry.get(model_id)

        if not isinstance(text, str) or not text.strip():
            raise MissingRequiredInput("Message must be non-empty text", model_id)

        has_image = bool(image_data)
        if has_image and not descriptor.is_vision:
            raise UnsupportedModality(model_id)

        if descriptor.is_vision and not has_image and self.image_policy is ImagePolicy.REQUIRED:
            raise MissingRequiredInput("Vision model requires an image input", model_id)

        image = decode_image(image_data) if has_image else None
        config = self.classifier.classify(descriptor)

        session = await self.cache.acquire(model_id, config)

        try:
            return await session.generate(text, image)
        except ModelHubError:
            raise
        except Exception as e:
            logger.error(f"Inference failed for {model_id}: {e}")
            raise InferenceEngineError(f"Model {model_id} failed to answer: {e}", model_id) from e
