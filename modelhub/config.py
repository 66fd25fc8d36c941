"""
Runtime configuration

Settings are read once from the environment (and an optional ``.env`` file).
"""

import os
import sys
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional, Tuple

from dotenv import load_dotenv
from loguru import logger


DEFAULT_SYSTEM_PROMPT = (
    "You are a helpful AI assistant. Keep your responses concise and friendly."
)
DEFAULT_QUANT_PREFERENCE = ("q5k", "q8_0", "q4k", "afq4", "f8e4m3")
IMAGE_POLICIES = ("optional", "required")


@dataclass(frozen=True)
class Settings:
    """Process-wide settings for the model hub."""
    models_dir: Path = Path("./models_cache")
    templates_dir: Path = Path("./templates")
    hf_token: Optional[str] = None
    session_slots: int = 1
    image_policy: str = "optional"
    quant_preference: Tuple[str, ...] = DEFAULT_QUANT_PREFERENCE
    adaptive_quant: str = "q4k"
    device: str = "auto"
    max_new_tokens: int = 512
    temperature: float = 0.7
    top_p: float = 0.9
    system_prompt: str = DEFAULT_SYSTEM_PROMPT
    log_level: str = "INFO"
    token_variable: str = field(default="HF_TOKEN", repr=False)

    def __post_init__(self):
        if self.session_slots < 1:
            raise ValueError(f"session_slots must be at least 1, got {self.session_slots}")
        if self.image_policy not in IMAGE_POLICIES:
            raise ValueError(
                f"image_policy must be one of {IMAGE_POLICIES}, got {self.image_policy!r}"
            )
        if not self.quant_preference:
            raise ValueError("quant_preference must name at least one level")

    @property
    def has_token(self) -> bool:
        return bool(self.hf_token)

    @classmethod
    def from_env(cls, env_file: Optional[str] = None) -> "Settings":
        """Build settings from environment variables."""
        load_dotenv(dotenv_path=env_file)

        preference = os.getenv("QUANT_PREFERENCE")
        if preference:
            levels = tuple(p.strip().lower() for p in preference.split(",") if p.strip())
        else:
            levels = DEFAULT_QUANT_PREFERENCE

        return cls(
            models_dir=Path(os.getenv("MODEL_CACHE_DIR", "./models_cache")),
            templates_dir=Path(os.getenv("TEMPLATES_DIR", "./templates")),
            hf_token=os.getenv("HF_TOKEN") or None,
            session_slots=int(os.getenv("SESSION_SLOTS", "1")),
            image_policy=os.getenv("VISION_IMAGE_POLICY", "optional").lower(),
            quant_preference=levels,
            adaptive_quant=os.getenv("ADAPTIVE_QUANT", "q4k").lower(),
            device=os.getenv("MODEL_DEVICE", "auto"),
            max_new_tokens=int(os.getenv("MAX_NEW_TOKENS", "512")),
            temperature=float(os.getenv("TEMPERATURE", "0.7")),
            top_p=float(os.getenv("TOP_P", "0.9")),
            system_prompt=os.getenv("SYSTEM_PROMPT", DEFAULT_SYSTEM_PROMPT),
            log_level=os.getenv("LOG_LEVEL", "INFO").upper(),
        )


def configure_logging(level: str = "INFO"):
    """Reset loguru to a single stderr sink at the given level."""
    logger.remove()
    logger.add(
        sys.stderr,
        level=level,
        format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function} - {message}",
    )
