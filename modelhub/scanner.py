"""
Artifact Scanner

Checks the local artifact root against each descriptor's required-file manifest.
"""

import os
import stat
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional, Sequence

from loguru import logger

from .registry import ModelDescriptor, PackagingKind


@dataclass
class AvailabilityStatus:
    """Result of one scan of one descriptor."""
    model_id: str
    is_available: bool
    missing_files: List[str] = field(default_factory=list)
    reason: Optional[str] = None


class ArtifactScanner:
    """Inspects manifested paths only; never walks the artifact tree."""

    def __init__(self, models_dir: Path, token: Optional[str] = None):
        self.models_dir = Path(models_dir)
        self.token = token

    @property
    def has_credential(self) -> bool:
        return bool(self.token)

    def artifact_dir(self, descriptor: ModelDescriptor) -> Optional[Path]:
        """Directory keyed by the descriptor's repository reference."""
        if not descriptor.repo:
            return None
        return self.models_dir / descriptor.repo.replace("/", "--")

    def missing_files(self, descriptor: ModelDescriptor) -> List[str]:
        """Return the manifested files that are absent or empty."""
        base = self.artifact_dir(descriptor)
        if base is None:
            return list(descriptor.files)
        return self.missing_in(base, descriptor.files)

    def missing_in(self, base: Path, files: Sequence[str]) -> List[str]:
        return [
            relative_path for relative_path in files
            if not self._check_file(Path(base) / relative_path)
        ]

    def has_local_copy(self, descriptor: ModelDescriptor) -> bool:
        return bool(descriptor.files) and not self.missing_files(descriptor)

    def scan(self, descriptor: ModelDescriptor) -> AvailabilityStatus:
        """Compute a fresh availability status for ``descriptor``."""
        missing = self.missing_files(descriptor)

        if descriptor.packaging_kind is PackagingKind.REMOTE_HOSTED:
            local_complete = bool(descriptor.files) and not missing
            if self.has_credential or local_complete:
                return AvailabilityStatus(descriptor.id, True)
            logger.debug(f"Remote model {descriptor.id} unavailable: no credential, no local copy")
            return AvailabilityStatus(
                descriptor.id, False, missing, reason="credential missing"
            )

        if missing:
            logger.debug(f"Model {descriptor.id} is missing {missing}")
            return AvailabilityStatus(
                descriptor.id, False, missing, reason="incomplete artifact set"
            )
        return AvailabilityStatus(descriptor.id, True)

    @staticmethod
    def _check_file(path: Path) -> bool:
        """A required file must be a regular, non-empty file."""
        try:
            info = os.stat(path)
        except (FileNotFoundError, NotADirectoryError):
            return False
        return stat.S_ISREG(info.st_mode) and info.st_size > 0
