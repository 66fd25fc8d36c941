"""
Local Vision Chat Model Hub

Model discovery, artifact checks, format classification and single-flight
session loading for local and remote chat models.
"""

from .manager import ModelManager
from .config import Settings
from .registry import ModelDescriptor, ModelRegistry, PackagingKind, QuantLevel

__all__ = [
    "ModelManager",
    "Settings",
    "ModelDescriptor",
    "ModelRegistry",
    "PackagingKind",
    "QuantLevel",
]
