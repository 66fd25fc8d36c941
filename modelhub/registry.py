"""
Model Registry

Static catalog of known model identities and their packaging metadata.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from loguru import logger

from .errors import UnknownModel


class PackagingKind(str, Enum):
    """On-disk or remote format family of a model artifact set."""
    LOCAL_SELF_CONTAINED = "local-self-contained-quantized"
    LOCAL_MULTI_FILE_TEXT = "local-multi-file-quantized-text"
    LOCAL_MULTI_FILE_VISION = "local-multi-file-quantized-vision"
    LOCAL_ADAPTIVE_VISION = "local-adaptive-vision"
    REMOTE_HOSTED = "remote-hosted"

    @property
    def is_local(self) -> bool:
        return self is not PackagingKind.REMOTE_HOSTED


class QuantLevel(str, Enum):
    """Quantization tiers, named the way artifact shards are labelled."""
    Q4K = "q4k"
    Q5K = "q5k"
    Q8_0 = "q8_0"
    AFQ4 = "afq4"
    F8E4M3 = "f8e4m3"

    @property
    def bits(self) -> int:
        return _QUANT_BITS[self]


_QUANT_BITS = {
    QuantLevel.Q4K: 4,
    QuantLevel.Q5K: 5,
    QuantLevel.Q8_0: 8,
    QuantLevel.AFQ4: 4,
    QuantLevel.F8E4M3: 8,
}


@dataclass(frozen=True)
class ModelDescriptor:
    """Immutable description of one model identity."""
    id: str
    name: str
    description: str
    packaging_kind: PackagingKind
    files: Tuple[str, ...] = ()
    size_estimate: Optional[str] = None
    repo: Optional[str] = None
    is_vision: bool = False
    chat_template: Optional[str] = None
    quantization: Optional[QuantLevel] = None
    gguf_file: Optional[str] = None


class ModelRegistry:
    """Read-only catalog of model descriptors, ordered by identifier."""

    def __init__(self, descriptors: Iterable[ModelDescriptor]):
        by_id: Dict[str, ModelDescriptor] = {}
        for descriptor in descriptors:
            if descriptor.id in by_id:
                raise ValueError(f"Duplicate model identifier: {descriptor.id}")
            if descriptor.packaging_kind.is_local and not descriptor.repo:
                raise ValueError(f"Local model {descriptor.id} needs a repository reference")
            by_id[descriptor.id] = descriptor

        self._descriptors: Tuple[ModelDescriptor, ...] = tuple(
            by_id[key] for key in sorted(by_id)
        )
        self._by_id = by_id
        logger.info(f"Model registry initialized with {len(self._descriptors)} models")

    def list(self) -> List[ModelDescriptor]:
        return list(self._descriptors)

    def get(self, model_id: str) -> ModelDescriptor:
        try:
            return self._by_id[model_id]
        except KeyError:
            raise UnknownModel(model_id) from None

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._by_id

    def __len__(self) -> int:
        return len(self._descriptors)


DEFAULT_CATALOG = (
    ModelDescriptor(
        id="mistral-7b-gguf",
        name="Mistral 7B Instruct (GGUF)",
        description="TheBloke's quantized GGUF format - single file, CPU friendly",
        packaging_kind=PackagingKind.LOCAL_SELF_CONTAINED,
        size_estimate="~4.4GB",
        repo="TheBloke/Mistral-7B-Instruct-v0.1-GGUF",
        files=("mistral-7b-instruct-v0.1.Q4_K_M.gguf",),
        chat_template="mistral.json",
    ),
    ModelDescriptor(
        id="llama-3.2-11b-vision",
        name="Llama 3.2 11B Vision Instruct",
        description="Vision-capable model with pre-quantized weight variants",
        packaging_kind=PackagingKind.LOCAL_MULTI_FILE_VISION,
        size_estimate="12-17GB",
        repo="meta-llama/Llama-3.2-11B-Vision-Instruct",
        files=(
            "config.json",
            "tokenizer.json",
            "tokenizer_config.json",
            "preprocessor_config.json",
            "generation_config.json",
            "model.q4k.safetensors",
            "model.q5k.safetensors",
            "model.q8_0.safetensors",
        ),
        is_vision=True,
    ),
    ModelDescriptor(
        id="gemma-3n-e2b",
        name="Google Gemma 3n E2B Instruct",
        description="Multimodal model quantized in place after load",
        packaging_kind=PackagingKind.LOCAL_ADAPTIVE_VISION,
        size_estimate="~8GB",
        repo="google/gemma-3n-E2B-it",
        files=(
            "config.json",
            "tokenizer.json",
            "tokenizer_config.json",
            "processor_config.json",
            "preprocessor_config.json",
            "model.safetensors",
        ),
        is_vision=True,
        quantization=QuantLevel.Q4K,
    ),
    ModelDescriptor(
        id="smollm3-3b",
        name="SmolLM3 3B",
        description="Small 3B parameter model with hybrid reasoning",
        packaging_kind=PackagingKind.LOCAL_MULTI_FILE_TEXT,
        size_estimate="~1-3GB",
        repo="HuggingFaceTB/SmolLM3-3B",
        files=(
            "config.json",
            "tokenizer.json",
            "tokenizer_config.json",
            "generation_config.json",
            "model.q4k.safetensors",
            "model.q8_0.safetensors",
        ),
    ),
    ModelDescriptor(
        id="mistral-7b-remote",
        name="Mistral 7B Instruct (remote)",
        description="Fetched from the Hugging Face Hub on first use (requires HF_TOKEN)",
        packaging_kind=PackagingKind.REMOTE_HOSTED,
        size_estimate="~4.4GB",
        repo="TheBloke/Mistral-7B-Instruct-v0.1-GGUF",
        files=("mistral-7b-instruct-v0.1.Q4_K_M.gguf",),
        chat_template="mistral.json",
        gguf_file="mistral-7b-instruct-v0.1.Q4_K_M.gguf",
    ),
    ModelDescriptor(
        id="smollm3-remote",
        name="SmolLM3 3B (remote)",
        description="Fetched from the Hugging Face Hub and quantized to 8 bits on load",
        packaging_kind=PackagingKind.REMOTE_HOSTED,
        size_estimate="~3GB",
        repo="HuggingFaceTB/SmolLM3-3B",
        quantization=QuantLevel.Q8_0,
    ),
)


def default_registry() -> ModelRegistry:
    return ModelRegistry(DEFAULT_CATALOG)
