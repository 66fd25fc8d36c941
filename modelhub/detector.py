"""
Hardware Detection Module

Detects system capabilities used to place loaded sessions on a device.
"""

import platform
from dataclasses import dataclass
from typing import Any, Dict, Optional

import psutil
import torch
from loguru import logger


@dataclass
class HardwareSpecs:
    """Hardware specifications used for device placement."""
    cpu_cores: int
    total_memory_gb: float
    available_memory_gb: float
    has_gpu: bool
    has_mps: bool = False
    gpu_memory_gb: Optional[float] = None
    gpu_name: Optional[str] = None
    platform: str = "unknown"
    architecture: str = "unknown"


class HardwareDetector:
    """Detects and reports system hardware capabilities."""

    def __init__(self):
        self.specs = self._detect_hardware()
        logger.info(f"Hardware detected: {self.specs}")

    def _detect_hardware(self) -> HardwareSpecs:
        """Detect current hardware specifications."""
        memory = psutil.virtual_memory()

        has_gpu = torch.cuda.is_available()
        gpu_memory = None
        gpu_name = None
        if has_gpu:
            gpu_memory = torch.cuda.get_device_properties(0).total_memory / (1024**3)
            gpu_name = torch.cuda.get_device_name(0)
            logger.info(f"GPU detected: {gpu_name} ({gpu_memory:.1f}GB)")

        mps_backend = getattr(torch.backends, "mps", None)
        has_mps = bool(mps_backend) and mps_backend.is_available()

        return HardwareSpecs(
            cpu_cores=psutil.cpu_count(logical=False) or 1,
            total_memory_gb=memory.total / (1024**3),
            available_memory_gb=memory.available / (1024**3),
            has_gpu=has_gpu,
            has_mps=has_mps,
            gpu_memory_gb=gpu_memory,
            gpu_name=gpu_name,
            platform=platform.system().lower(),
            architecture=platform.machine().lower(),
        )

    def resolve_device(self, requested: str = "auto") -> str:
        """Map a requested device ("auto", "cuda", "mps", "cpu") to one that exists."""
        if requested == "auto":
            if self.specs.has_gpu:
                return "cuda"
            if self.specs.has_mps:
                return "mps"
            return "cpu"
        if requested == "cuda" and not self.specs.has_gpu:
            logger.warning("CUDA requested but not available, falling back to CPU")
            return "cpu"
        if requested == "mps" and not self.specs.has_mps:
            logger.warning("MPS requested but not available, falling back to CPU")
            return "cpu"
        return requested

    def get_system_info(self) -> Dict[str, Any]:
        return {
            "cpu_cores": self.specs.cpu_cores,
            "total_memory_gb": round(self.specs.total_memory_gb, 2),
            "available_memory_gb": round(self.specs.available_memory_gb, 2),
            "has_gpu": self.specs.has_gpu,
            "has_mps": self.specs.has_mps,
            "gpu_memory_gb": round(self.specs.gpu_memory_gb, 2) if self.specs.gpu_memory_gb else None,
            "gpu_name": self.specs.gpu_name,
            "platform": self.specs.platform,
            "architecture": self.specs.architecture,
        }
