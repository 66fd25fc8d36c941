"""
Session Factory

Turns a SessionConfig into a loaded InferenceSession through the engine builder.
"""

from typing import Optional, Type

from loguru import logger

from .classifier import SessionConfig
from .config import Settings
from .detector import HardwareDetector
from .engine import InferenceSession, TransformersModelBuilder
from .errors import CredentialMissing, IncompleteArtifactSet, ModelHubError, SessionBuildError
from .registry import PackagingKind
from .scanner import ArtifactScanner


class SessionFactory:
    """Builds sessions; blocking, meant to run in a worker thread."""

    def __init__(
        self,
        scanner: ArtifactScanner,
        settings: Settings,
        hardware: Optional[HardwareDetector] = None,
        builder_cls: Type[TransformersModelBuilder] = TransformersModelBuilder,
    ):
        self.scanner = scanner
        self.settings = settings
        self.hardware = hardware
        self.builder_cls = builder_cls

    def _device(self) -> str:
        if self.hardware is not None:
            return self.hardware.resolve_device(self.settings.device)
        return "cpu" if self.settings.device == "auto" else self.settings.device

    def _resolve_source(self, config: SessionConfig):
        """Return (source, token) after checking local files or the credential."""
        if config.packaging_kind.is_local:
            missing = self.scanner.missing_in(config.local_dir, config.files)
            if missing:
                raise IncompleteArtifactSet(config.model_id, missing)
            return config.source, None

        if config.local_dir is not None and config.files:
            if not self.scanner.missing_in(config.local_dir, config.files):
                logger.info(f"Using local copy of remote model {config.model_id} at {config.local_dir}")
                return str(config.local_dir), None

        if not self.settings.has_token:
            raise CredentialMissing(config.model_id, self.settings.token_variable)
        return config.source, self.settings.hf_token

    def _configure(self, config: SessionConfig) -> TransformersModelBuilder:
        source, token = self._resolve_source(config)
        kind = config.packaging_kind

        builder = (
            self.builder_cls(source, model_id=config.model_id)
            .with_token(token)
            .with_device(self._device())
            .with_vision(config.is_vision)
            .with_system_prompt(self.settings.system_prompt)
            .with_generation(
                max_new_tokens=self.settings.max_new_tokens,
                temperature=self.settings.temperature,
                top_p=self.settings.top_p,
            )
        )

        if kind is PackagingKind.LOCAL_SELF_CONTAINED:
            builder = builder.with_gguf_file(config.weight_files[0])
        elif kind in (PackagingKind.LOCAL_MULTI_FILE_TEXT, PackagingKind.LOCAL_MULTI_FILE_VISION):
            builder = builder.with_variant(config.quantization.value)
        elif kind is PackagingKind.LOCAL_ADAPTIVE_VISION:
            builder = builder.with_in_place_quantization(config.quantization)
        elif kind is PackagingKind.REMOTE_HOSTED:
            if config.weight_files:
                builder = builder.with_gguf_file(config.weight_files[0])
            elif config.in_place:
                builder = builder.with_in_place_quantization(config.quantization)

        if config.chat_template is not None:
            builder = builder.with_chat_template(config.chat_template)
        return builder

    def build(self, config: SessionConfig) -> InferenceSession:
        """Construct a loaded session; any unclassified failure becomes SessionBuildError."""
        kind = config.packaging_kind
        try:
            return self._configure(config).build()
        except ModelHubError:
            raise
        except Exception as e:
            logger.error(f"Failed to build {kind.value} model {config.model_id}: {e}")
            raise SessionBuildError(
                f"Failed to build {kind.value} model {config.model_id}: {e}",
                config.model_id,
            ) from e
