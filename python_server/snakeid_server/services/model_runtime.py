"""Model runtimes for the snake classifier.

A runtime takes a (3, S, S) float32 tensor and returns a ModelOutput, a
tagged variant that is either a single best-effort label or a raw score
vector with one entry per class. Supported formats:

- ONNX (.onnx) via onnxruntime, preferred for inference efficiency
- TorchScript (.pt) via torch.jit.load
- PyTorch Lite (.ptl) via the lite interpreter, as exported for mobile
"""

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional, Union

import numpy as np

from ..exceptions import ModelLoadError
from .device_manager import DeviceManager, get_device_manager

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LabelOutput:
    """Model returned a single label string with no score."""
    label: str


@dataclass(frozen=True)
class ScoresOutput:
    """Model returned a raw score vector (logits or confidences)."""
    scores: np.ndarray


ModelOutput = Union[LabelOutput, ScoresOutput]


def to_model_output(raw: Any) -> ModelOutput:
    """Convert a raw runtime result to a ModelOutput.

    Strings (or arrays of strings) become LabelOutput; anything numeric is
    flattened into a 1-D ScoresOutput. A leading batch dimension of 1 is
    dropped.
    """
    if isinstance(raw, bytes):
        raw = raw.decode("utf-8")
    if isinstance(raw, str):
        return LabelOutput(raw)

    if isinstance(raw, (list, tuple)) and raw and isinstance(raw[0], str):
        return LabelOutput(raw[0])

    if hasattr(raw, "detach"):
        raw = raw.detach().cpu().numpy()

    arr = np.asarray(raw)
    if arr.dtype.kind in ("U", "S", "O"):
        value = arr.reshape(-1)[0]
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return LabelOutput(str(value))

    return ScoresOutput(arr.astype(np.float64).reshape(-1))


class ModelRuntime(ABC):
    """Interface of a loaded classification model."""

    #: Number of classes when the runtime can report it, else None
    output_dim: Optional[int] = None

    @abstractmethod
    def predict(self, tensor: np.ndarray) -> ModelOutput:
        """Run the model on one (3, S, S) float32 tensor."""


class OnnxModel(ModelRuntime):
    """ONNX Runtime backed model."""

    def __init__(self, session):
        self.session = session
        self.input_name = session.get_inputs()[0].name
        output_shape = session.get_outputs()[0].shape
        if output_shape and isinstance(output_shape[-1], int):
            self.output_dim = output_shape[-1]

    def predict(self, tensor: np.ndarray) -> ModelOutput:
        batch = np.ascontiguousarray(tensor[np.newaxis], dtype=np.float32)
        outputs = self.session.run(None, {self.input_name: batch})
        return to_model_output(outputs[0])


class TorchScriptModel(ModelRuntime):
    """TorchScript / PyTorch Lite model."""

    def __init__(self, module, device):
        self.module = module
        self.device = device

    def predict(self, tensor: np.ndarray) -> ModelOutput:
        import torch

        batch = torch.from_numpy(np.ascontiguousarray(tensor, dtype=np.float32))
        batch = batch.unsqueeze(0).to(self.device)
        with torch.no_grad():
            outputs = self.module(batch)
        if isinstance(outputs, (list, tuple)) and outputs and not isinstance(outputs[0], str):
            outputs = outputs[0]
        return to_model_output(outputs)


def _load_onnx(path: Path, device_manager: DeviceManager) -> OnnxModel:
    import onnxruntime as ort

    session = ort.InferenceSession(
        str(path),
        providers=device_manager.get_onnx_providers()
    )
    return OnnxModel(session)


def _load_torchscript(path: Path, device_manager: DeviceManager) -> TorchScriptModel:
    import torch

    if path.suffix.lower() == ".ptl":
        # Lite interpreter modules run on CPU only
        from torch.jit.mobile import _load_for_lite_interpreter
        module = _load_for_lite_interpreter(str(path))
        return TorchScriptModel(module, torch.device("cpu"))

    device = device_manager.device
    module = torch.jit.load(str(path), map_location=device)
    module.eval()
    return TorchScriptModel(module, device)


def load_model(
    model_path: Union[str, Path],
    device_manager: Optional[DeviceManager] = None,
) -> ModelRuntime:
    """Load a classification model from disk, choosing the runtime by suffix.

    Args:
        model_path: Path to a .onnx, .pt or .ptl file
        device_manager: Optional DeviceManager (uses singleton if not provided)

    Returns:
        Loaded ModelRuntime

    Raises:
        ModelLoadError: If the file is missing, has an unsupported suffix,
            or the runtime fails to load it
    """
    path = Path(model_path)
    device_manager = device_manager or get_device_manager()

    if not path.is_file():
        raise ModelLoadError(f"No model found at {path}")

    loaders = {
        ".onnx": _load_onnx,
        ".pt": _load_torchscript,
        ".ptl": _load_torchscript,
    }
    loader = loaders.get(path.suffix.lower())
    if loader is None:
        raise ModelLoadError(
            f"Unsupported model format '{path.suffix}' for {path.name}")

    logger.info("Loading %s model from %s", path.suffix.lstrip("."), path)
    try:
        model = loader(path, device_manager)
    except ImportError as e:
        raise ModelLoadError(f"Runtime for {path.suffix} models is not installed: {e}")
    except Exception as e:
        raise ModelLoadError(f"Failed to load model {path.name}: {e}")

    logger.info("Model loaded (output_dim=%s)", model.output_dim)
    return model
