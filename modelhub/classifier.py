"""
Format Classifier

Maps a descriptor's packaging kind to a loading strategy and quantization choice.
Classification is pure: it never touches the filesystem, so the same descriptor
and policy always produce an equal SessionConfig.
"""

import re
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from .errors import SessionBuildError
from .registry import ModelDescriptor, PackagingKind, QuantLevel
from .scanner import ArtifactScanner


SHARD_PATTERN = re.compile(
    r"^model\.(?P<level>[a-z0-9_]+?)(?:-\d{5}-of-\d{5})?\.safetensors$"
)


@dataclass(frozen=True)
class SessionConfig:
    """Everything needed to construct a loaded session for one model."""
    model_id: str
    packaging_kind: PackagingKind
    source: str
    files: Tuple[str, ...] = ()
    weight_files: Tuple[str, ...] = ()
    quantization: Optional[QuantLevel] = None
    in_place: bool = False
    chat_template: Optional[Path] = None
    is_vision: bool = False
    repo: Optional[str] = None
    local_dir: Optional[Path] = None


@dataclass(frozen=True)
class QuantizationPolicy:
    """Which level to pick when several pre-quantized variants are shipped."""
    preference: Tuple[QuantLevel, ...] = (
        QuantLevel.Q5K,
        QuantLevel.Q8_0,
        QuantLevel.Q4K,
        QuantLevel.AFQ4,
        QuantLevel.F8E4M3,
    )
    adaptive_default: QuantLevel = QuantLevel.Q4K

    @classmethod
    def from_names(cls, preference: Sequence[str], adaptive_default: str) -> "QuantizationPolicy":
        try:
            levels = tuple(QuantLevel(name) for name in preference)
            adaptive = QuantLevel(adaptive_default)
        except ValueError as e:
            valid = ", ".join(level.value for level in QuantLevel)
            raise ValueError(f"Unknown quantization level ({e}); expected one of: {valid}") from e
        return cls(preference=levels, adaptive_default=adaptive)

    def select(self, available: Sequence[QuantLevel]) -> Optional[QuantLevel]:
        for level in self.preference:
            if level in available:
                return level
        return None


def group_shards(files: Sequence[str]) -> Dict[QuantLevel, List[str]]:
    """Group manifested weight shards by the quantization level in their name."""
    shards: Dict[QuantLevel, List[str]] = {}
    for relative_path in files:
        match = SHARD_PATTERN.match(Path(relative_path).name)
        if not match:
            continue
        try:
            level = QuantLevel(match.group("level"))
        except ValueError:
            continue
        shards.setdefault(level, []).append(relative_path)
    return shards


class FormatClassifier:
    """Dispatches on packaging kind to produce a SessionConfig."""

    def __init__(
        self,
        scanner: ArtifactScanner,
        templates_dir: Path,
        policy: Optional[QuantizationPolicy] = None,
    ):
        self.scanner = scanner
        self.templates_dir = Path(templates_dir)
        self.policy = policy or QuantizationPolicy()

    def classify(self, descriptor: ModelDescriptor) -> SessionConfig:
        kind = descriptor.packaging_kind
        template = (
            self.templates_dir / descriptor.chat_template
            if descriptor.chat_template else None
        )
        local_dir = self.scanner.artifact_dir(descriptor)

        if kind is PackagingKind.LOCAL_SELF_CONTAINED:
            weights = tuple(f for f in descriptor.files if f.endswith(".gguf"))
            if len(weights) != 1:
                raise SessionBuildError(
                    f"Model {descriptor.id} must declare exactly one .gguf file, found {len(weights)}",
                    descriptor.id,
                )
            return SessionConfig(
                model_id=descriptor.id,
                packaging_kind=kind,
                source=str(local_dir),
                files=descriptor.files,
                weight_files=weights,
                chat_template=template,
                is_vision=descriptor.is_vision,
                repo=descriptor.repo,
                local_dir=local_dir,
            )

        elif kind in (PackagingKind.LOCAL_MULTI_FILE_TEXT, PackagingKind.LOCAL_MULTI_FILE_VISION):
            shards = group_shards(descriptor.files)
            level = self.policy.select(list(shards))
            if level is None:
                raise SessionBuildError(
                    f"Model {descriptor.id} ships no weight shards for the configured "
                    f"levels {[p.value for p in self.policy.preference]}",
                    descriptor.id,
                )
            logger.debug(f"Model {descriptor.id}: selected {level.value} among {[s.value for s in shards]}")
            return SessionConfig(
                model_id=descriptor.id,
                packaging_kind=kind,
                source=str(local_dir),
                files=descriptor.files,
                weight_files=tuple(shards[level]),
                quantization=level,
                chat_template=template,
                is_vision=kind is PackagingKind.LOCAL_MULTI_FILE_VISION,
                repo=descriptor.repo,
                local_dir=local_dir,
            )

        elif kind is PackagingKind.LOCAL_ADAPTIVE_VISION:
            weights = tuple(f for f in descriptor.files if f.endswith(".safetensors"))
            return SessionConfig(
                model_id=descriptor.id,
                packaging_kind=kind,
                source=str(local_dir),
                files=descriptor.files,
                weight_files=weights,
                quantization=descriptor.quantization or self.policy.adaptive_default,
                in_place=True,
                chat_template=template,
                is_vision=True,
                repo=descriptor.repo,
                local_dir=local_dir,
            )

        elif kind is PackagingKind.REMOTE_HOSTED:
            if not descriptor.repo:
                raise SessionBuildError(
                    f"Remote model {descriptor.id} has no repository reference", descriptor.id
                )
            weights = (descriptor.gguf_file,) if descriptor.gguf_file else ()
            return SessionConfig(
                model_id=descriptor.id,
                packaging_kind=kind,
                source=descriptor.repo,
                files=descriptor.files,
                weight_files=weights,
                quantization=descriptor.quantization,
                in_place=descriptor.quantization is not None and not descriptor.gguf_file,
                chat_template=template,
                is_vision=descriptor.is_vision,
                repo=descriptor.repo,
                local_dir=local_dir,
            )

        raise SessionBuildError(f"Unsupported packaging kind: {kind}", descriptor.id)
