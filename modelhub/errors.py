"""
Error taxonomy for model discovery, loading and chat routing.

Every error carries a stable ``code`` and the ``stage`` it was raised in so
callers can tell "could not be loaded" apart from "loaded but failed to answer".
"""

from typing import Any, Dict, List, Optional


class ModelHubError(Exception):
    """Base class for all typed model hub errors."""

    code = "model_hub_error"
    stage = "validation"

    def __init__(self, message: str, model_id: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.model_id = model_id

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "code": self.code,
            "message": self.message,
            "stage": self.stage,
        }
        if self.model_id is not None:
            data["model_id"] = self.model_id
        if self.__cause__ is not None:
            data["cause"] = f"{type(self.__cause__).__name__}: {self.__cause__}"
        return data


class UnknownModel(ModelHubError):
    code = "unknown_model"

    def __init__(self, model_id: str):
        super().__init__(f"Model {model_id} not found", model_id)


class IncompleteArtifactSet(ModelHubError):
    code = "incomplete_artifact_set"
    stage = "load"

    def __init__(self, model_id: str, missing_files: List[str]):
        super().__init__(
            f"Model {model_id} is missing required files: {', '.join(missing_files)}",
            model_id,
        )
        self.missing_files = list(missing_files)

    def to_dict(self) -> Dict[str, Any]:
        data = super().to_dict()
        data["missing_files"] = self.missing_files
        return data


class UnsupportedModality(ModelHubError):
    code = "unsupported_modality"

    def __init__(self, model_id: str):
        super().__init__(
            f"Model {model_id} does not support image inputs. "
            "Select a vision-capable model to analyze images.",
            model_id,
        )


class MissingRequiredInput(ModelHubError):
    code = "missing_required_input"


class ImageDecodeError(ModelHubError):
    code = "image_decode_error"


class CredentialMissing(ModelHubError):
    code = "credential_missing"
    stage = "load"

    def __init__(self, model_id: str, variable: str = "HF_TOKEN"):
        super().__init__(
            f"{variable} not found. Set {variable} in the environment or .env file "
            f"to access remote model {model_id}",
            model_id,
        )


class SessionBuildError(ModelHubError):
    code = "session_build_error"
    stage = "load"


class InferenceEngineError(ModelHubError):
    code = "inference_engine_error"
    stage = "inference"


class Cancelled(ModelHubError):
    code = "cancelled"
    stage = "load"

    def __init__(self, model_id: str):
        super().__init__(f"Loading of model {model_id} was cancelled", model_id)
