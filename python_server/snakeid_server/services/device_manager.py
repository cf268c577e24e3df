"""Compute device selection for model runtimes.

Provides:
- Device detection (CUDA > MPS > CPU priority)
- ONNX Runtime execution provider selection for the detected device
- Cache clearing after model teardown
"""

import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class DeviceManager:
    """Detects the compute device used for TorchScript and ONNX models.

    Priority: CUDA > MPS > CPU. A requested device other than "auto" is
    used as-is.
    """

    def __init__(self, requested: str = "auto"):
        self._device_type: str = "cpu"
        self._device = None
        self._device_name: str = "CPU"

        if requested == "auto":
            self._detect_device()
        else:
            self._device_type = requested
            self._device_name = requested.upper()

    def _detect_device(self) -> None:
        """Detect available GPU device with priority CUDA > MPS > CPU."""
        try:
            import torch

            if torch.cuda.is_available():
                self._device_type = "cuda"
                self._device_name = torch.cuda.get_device_name(0)
                logger.info("CUDA GPU detected: %s", self._device_name)
                return

            if hasattr(torch.backends, 'mps') and torch.backends.mps.is_available():
                self._device_type = "mps"
                self._device_name = "Apple Silicon (MPS)"
                logger.info("Apple MPS device detected")
                return

            logger.info("No GPU available, using CPU")

        except ImportError:
            logger.warning("PyTorch not installed, GPU detection unavailable")
        except Exception as e:
            logger.warning("GPU detection failed: %s", e)

        self._device_type = "cpu"
        self._device_name = "CPU"

    @property
    def device_type(self) -> str:
        """Get device type string ('cuda', 'mps', or 'cpu')."""
        return self._device_type

    @property
    def device(self):
        """Get torch.device object."""
        if self._device is None:
            import torch
            self._device = torch.device(self._device_type)
        return self._device

    def is_available(self) -> bool:
        """Check if a GPU (CUDA or MPS) is in use."""
        return self._device_type != "cpu"

    def get_device_name(self) -> str:
        """Get human-readable device name."""
        return self._device_name

    def get_onnx_providers(self) -> List[str]:
        """Get ONNX execution providers for the detected device.

        Returns:
            Provider names, always ending with the CPU provider
        """
        try:
            import onnxruntime as ort
            available = ort.get_available_providers()
        except ImportError:
            logger.warning("ONNX Runtime not available")
            return ["CPUExecutionProvider"]

        if self._device_type == "cuda" and "CUDAExecutionProvider" in available:
            return ["CUDAExecutionProvider", "CPUExecutionProvider"]
        if self._device_type == "mps" and "CoreMLExecutionProvider" in available:
            return ["CoreMLExecutionProvider", "CPUExecutionProvider"]

        return ["CPUExecutionProvider"]

    def clear_cache(self) -> None:
        """Release cached GPU memory. Safe to call on any device type."""
        try:
            import torch

            if self._device_type == "cuda":
                torch.cuda.empty_cache()
                logger.debug("Cleared CUDA memory cache")
            elif self._device_type == "mps" and hasattr(torch.mps, 'empty_cache'):
                torch.mps.empty_cache()
                logger.debug("Cleared MPS memory cache")

        except Exception as e:
            logger.warning("Failed to clear GPU cache: %s", e)

    def get_info(self) -> Dict[str, Any]:
        """Get device info for the /device endpoint."""
        return {
            "available": self.is_available(),
            "device_type": self._device_type,
            "name": self._device_name,
            "onnx_providers": self.get_onnx_providers(),
        }


# Singleton instance for shared access
_device_manager_instance: Optional[DeviceManager] = None


def get_device_manager() -> DeviceManager:
    """Get or create the singleton DeviceManager instance."""
    global _device_manager_instance
    if _device_manager_instance is None:
        _device_manager_instance = DeviceManager()
    return _device_manager_instance
