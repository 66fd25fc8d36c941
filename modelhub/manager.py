"""
Model Manager

Entry point for the surrounding application: model discovery, chat turns and
session lifecycle, wired from the registry, scanner, classifier, factory,
cache and router.
"""

import asyncio
from typing import Any, Dict, List, Optional, Type

from loguru import logger

from .cache import SessionCache
from .classifier import FormatClassifier, QuantizationPolicy
from .config import Settings
from .detector import HardwareDetector
from .engine import TransformersModelBuilder
from .errors import ModelHubError
from .factory import SessionFactory
from .registry import ModelDescriptor, ModelRegistry, default_registry
from .router import ChatRouter, ImagePolicy
from .scanner import ArtifactScanner, AvailabilityStatus


class ModelManager:
    """Discovers models and answers chat turns with hot-switching sessions."""

    def __init__(
        self,
        settings: Optional[Settings] = None,
        registry: Optional[ModelRegistry] = None,
        hardware_detector: Optional[HardwareDetector] = None,
        builder_cls: Type[TransformersModelBuilder] = TransformersModelBuilder,
    ):
        self.settings = settings or Settings.from_env()
        self.registry = registry or default_registry()
        self.hardware_detector = hardware_detector or HardwareDetector()

        self.scanner = ArtifactScanner(self.settings.models_dir, self.settings.hf_token)
        self.classifier = FormatClassifier(
            self.scanner,
            self.settings.templates_dir,
            QuantizationPolicy.from_names(
                self.settings.quant_preference, self.settings.adaptive_quant
            ),
        )
        self.factory = SessionFactory(
            self.scanner, self.settings, self.hardware_detector, builder_cls
        )
        self.cache = SessionCache(self.factory.build, slots=self.settings.session_slots)
        self.router = ChatRouter(
            self.registry,
            self.classifier,
            self.cache,
            ImagePolicy(self.settings.image_policy),
        )

        logger.info(
            f"Model manager ready: {len(self.registry)} models, "
            f"artifacts in {self.settings.models_dir}, {self.settings.session_slots} session slot(s)"
        )

    def _check(self, descriptor: ModelDescriptor) -> AvailabilityStatus:
        """Scan and classify one descriptor; problems become an unavailable status."""
        try:
            status = self.scanner.scan(descriptor)
            if status.is_available:
                self.classifier.classify(descriptor)
            return status
        except ModelHubError as e:
            logger.warning(f"Model {descriptor.id} cannot be classified: {e.message}")
            return AvailabilityStatus(descriptor.id, False, reason=e.message)
        except Exception as e:
            logger.warning(f"Failed to scan model {descriptor.id}: {e}")
            return AvailabilityStatus(descriptor.id, False, reason=f"scan failed: {e}")

    def _describe(self, descriptor: ModelDescriptor, status: AvailabilityStatus) -> Dict[str, Any]:
        return {
            "id": descriptor.id,
            "name": descriptor.name,
            "description": descriptor.description,
            "packaging_kind": descriptor.packaging_kind.value,
            "size_estimate": descriptor.size_estimate,
            "is_available": status.is_available,
            "repo": descriptor.repo,
            "files": list(descriptor.files),
            "is_vision": descriptor.is_vision,
            "missing_files": status.missing_files,
            "reason": status.reason,
            "loaded": descriptor.id in self.cache.loaded_ids(),
        }

    async def discover_models(self) -> List[Dict[str, Any]]:
        """List every registered model with a fresh availability scan."""
        descriptors = self.registry.list()
        statuses = await asyncio.gather(
            *(asyncio.to_thread(self._check, d) for d in descriptors)
        )
        models = [self._describe(d, s) for d, s in zip(descriptors, statuses)]
        available = sum(1 for m in models if m["is_available"])
        logger.info(f"Discovered {len(models)} models, {available} available")
        return models

    async def get_model_availability(self, model_id: str) -> Dict[str, Any]:
        """Availability of a single model."""
        if model_id not in self.registry:
            return {"error": f"Model {model_id} not found"}
        descriptor = self.registry.get(model_id)
        status = await asyncio.to_thread(self._check, descriptor)
        return self._describe(descriptor, status)

    async def chat(
        self, message: str, model_id: str, image_data: Optional[str] = None
    ) -> Dict[str, Any]:
        """Answer one chat turn; returns ``{"response": ...}`` or ``{"error": {...}}``."""
        logger.info(f"Chat request for model {model_id} (image={'yes' if image_data else 'no'})")
        try:
            response = await self.router.route(model_id, message, image_data)
        except ModelHubError as e:
            logger.warning(f"Chat turn failed [{e.code}]: {e.message}")
            return {"error": e.to_dict()}
        return {"response": response, "model_id": model_id}

    async def evict_model(self, model_id: str) -> Dict[str, Any]:
        """Release a loaded (or loading) model."""
        if model_id not in self.registry:
            return {"error": f"Model {model_id} not found"}
        evicted = await self.cache.evict(model_id)
        if not evicted:
            return {"success": False, "message": f"Model {model_id} is not loaded"}
        return {"success": True, "message": f"Model {model_id} unloaded"}

    async def unload_all(self):
        await self.cache.clear()
        logger.info("All models unloaded")

    async def get_system_info(self) -> Dict[str, Any]:
        return {
            "hardware": self.hardware_detector.get_system_info(),
            "device": self.hardware_detector.resolve_device(self.settings.device),
            "session_slots": self.cache.capacity,
            "loaded_models": self.cache.loaded_ids(),
            "image_policy": self.settings.image_policy,
            "credential_configured": self.settings.has_token,
        }
