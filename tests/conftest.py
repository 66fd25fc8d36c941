"""
Pytest configuration and fixtures for model hub tests.
"""

import base64
import io
import shutil
import tempfile
import time
from pathlib import Path
from unittest.mock import Mock

import pytest
from PIL import Image

from modelhub.config import Settings
from modelhub.engine import InferenceSession, TransformersModelBuilder
from modelhub.manager import ModelManager
from modelhub.registry import ModelDescriptor, ModelRegistry, PackagingKind, QuantLevel
from modelhub.scanner import ArtifactScanner


class FakeSession(InferenceSession):
    """Session whose "model" echoes the prompt back."""

    def _generate_sync(self, text, image):
        suffix = f" [image {image.size[0]}x{image.size[1]}]" if image is not None else ""
        return f"reply to: {text}{suffix}"


class FakeModelBuilder(TransformersModelBuilder):
    """Builder that records what it was asked to build instead of loading weights."""
    builds = []
    delay = 0.0
    error = None

    def build(self):
        type(self).builds.append(self)
        if self.delay:
            time.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return FakeSession(
            self.model_id,
            model=object(),
            device=self.device,
            is_vision=self.vision,
            system_prompt=self.system_prompt,
            generation=self.generation,
        )


TEST_DESCRIPTORS = (
    ModelDescriptor(
        id="remote-model-x",
        name="Remote X",
        description="Remote GGUF model",
        packaging_kind=PackagingKind.REMOTE_HOSTED,
        repo="org/remote-x",
        files=("remote-x.Q4_K_M.gguf",),
        gguf_file="remote-x.Q4_K_M.gguf",
    ),
    ModelDescriptor(
        id="local-text-a",
        name="Local Text A",
        description="Multi-file text model",
        packaging_kind=PackagingKind.LOCAL_MULTI_FILE_TEXT,
        repo="test/local-text-a",
        files=("tok.json", "cfg.json", "weights.bin"),
    ),
    ModelDescriptor(
        id="local-text-b",
        name="Local Text B",
        description="Multi-file text model with quantized variants",
        packaging_kind=PackagingKind.LOCAL_MULTI_FILE_TEXT,
        repo="test/local-text-b",
        files=(
            "config.json",
            "tokenizer.json",
            "tokenizer_config.json",
            "model.q4k.safetensors",
            "model.q8_0.safetensors",
        ),
    ),
    ModelDescriptor(
        id="local-gguf",
        name="Local GGUF",
        description="Single-file model",
        packaging_kind=PackagingKind.LOCAL_SELF_CONTAINED,
        repo="test/local-gguf",
        files=("model.Q4_K_M.gguf",),
        chat_template="mistral.json",
    ),
    ModelDescriptor(
        id="local-vision",
        name="Local Vision",
        description="Multi-file vision model",
        packaging_kind=PackagingKind.LOCAL_MULTI_FILE_VISION,
        repo="test/local-vision",
        files=(
            "config.json",
            "tokenizer.json",
            "preprocessor_config.json",
            "model.q4k.safetensors",
            "model.q5k.safetensors",
        ),
        is_vision=True,
    ),
    ModelDescriptor(
        id="local-adaptive",
        name="Local Adaptive",
        description="Vision model quantized on load",
        packaging_kind=PackagingKind.LOCAL_ADAPTIVE_VISION,
        repo="test/local-adaptive",
        files=("config.json", "tokenizer.json", "model.safetensors"),
        is_vision=True,
        quantization=QuantLevel.Q8_0,
    ),
)


@pytest.fixture
def temp_cache_dir():
    """Create a temporary directory for model artifacts."""
    temp_dir = tempfile.mkdtemp()
    yield Path(temp_dir)
    shutil.rmtree(temp_dir)


@pytest.fixture
def settings(temp_cache_dir):
    return Settings(
        models_dir=temp_cache_dir / "models",
        templates_dir=temp_cache_dir / "templates",
        hf_token=None,
    )


@pytest.fixture
def registry():
    return ModelRegistry(TEST_DESCRIPTORS)


@pytest.fixture
def scanner(settings):
    return ArtifactScanner(settings.models_dir, settings.hf_token)


@pytest.fixture
def populate(settings, registry):
    """Write a descriptor's manifest to disk, optionally skipping some files."""
    def _populate(model_id, skip=(), empty=()):
        descriptor = registry.get(model_id)
        base = settings.models_dir / descriptor.repo.replace("/", "--")
        base.mkdir(parents=True, exist_ok=True)
        for filename in descriptor.files:
            if filename in skip:
                continue
            path = base / filename
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_bytes(b"" if filename in empty else b"artifact")
        return base
    return _populate


@pytest.fixture
def fake_builder_cls():
    class Builder(FakeModelBuilder):
        builds = []
        delay = 0.0
        error = None
    return Builder


@pytest.fixture
def make_session():
    def _make(model_id="model", is_vision=False):
        return FakeSession(model_id, model=object(), is_vision=is_vision)
    return _make


@pytest.fixture
def mock_hardware_detector():
    detector = Mock()
    detector.resolve_device.return_value = "cpu"
    detector.get_system_info.return_value = {
        "cpu_cores": 8,
        "total_memory_gb": 16.0,
        "available_memory_gb": 12.0,
        "has_gpu": False,
        "has_mps": False,
        "gpu_memory_gb": None,
        "gpu_name": None,
        "platform": "linux",
        "architecture": "x86_64",
    }
    return detector


@pytest.fixture
def model_manager(settings, registry, mock_hardware_detector, fake_builder_cls):
    return ModelManager(
        settings=settings,
        registry=registry,
        hardware_detector=mock_hardware_detector,
        builder_cls=fake_builder_cls,
    )


@pytest.fixture
def png_base64():
    buffer = io.BytesIO()
    Image.new("RGB", (4, 3), "red").save(buffer, format="PNG")
    return base64.b64encode(buffer.getvalue()).decode("ascii")
