"""Session configuration."""

import os
from dataclasses import dataclass
from typing import Any, Dict, Tuple

# ImageNet statistics used by the deployed classifier
IMAGENET_MEAN = (0.485, 0.456, 0.406)
IMAGENET_STD = (0.229, 0.224, 0.225)

DEFAULT_MODEL_NAMES = ("snake_model.onnx", "snake_model.pt", "snake_model.ptl")
DEFAULT_LABELS_NAME = "class_names.txt"
DEFAULT_REFERENCE_TABLE_NAME = "Snake_Names_And_Venom.csv"


@dataclass
class SessionConfig:
    """Configuration for one classifier session.

    Attributes:
        assets_dir: Directory holding the model, label list and reference table
        model_names: Candidate model file names, first existing one wins
        labels_name: Label list file name (one label per line)
        reference_table_name: Reference table file name
        input_size: Square model input dimension
        resize_policy: "resize" (direct resize) or "center_crop"
        crop_scale: Shorter-side scale factor for the center_crop policy
        normalization: "imagenet" (mean/std scaling) or "unit_range" ([0, 1])
        top_k: Number of ranked candidates returned per request
        scores_are_probabilities: Model already emits a distribution
        min_frame_interval_s: Minimum spacing between accepted stream frames
        load_timeout_s: Deadline for loading model and tables
        device: "auto", "cuda", "mps" or "cpu"
        require_reference_table: Treat a reference table failure as fatal
    """
    assets_dir: str = "assets"
    model_names: Tuple[str, ...] = DEFAULT_MODEL_NAMES
    labels_name: str = DEFAULT_LABELS_NAME
    reference_table_name: str = DEFAULT_REFERENCE_TABLE_NAME
    input_size: int = 224
    resize_policy: str = "resize"
    crop_scale: float = 1.15
    normalization: str = "imagenet"
    mean: Tuple[float, float, float] = IMAGENET_MEAN
    std: Tuple[float, float, float] = IMAGENET_STD
    top_k: int = 3
    scores_are_probabilities: bool = False
    min_frame_interval_s: float = 0.8
    load_timeout_s: float = 30.0
    device: str = "auto"
    require_reference_table: bool = False

    def input_config(self) -> Dict[str, Any]:
        """Build the input configuration dict consumed by the normalizer."""
        return {
            "input_size": self.input_size,
            "resize_policy": self.resize_policy,
            "crop_scale": self.crop_scale,
            "normalization": {
                "strategy": self.normalization,
                "mean": list(self.mean),
                "std": list(self.std),
            },
        }

    @classmethod
    def from_env(cls, **overrides: Any) -> "SessionConfig":
        """Create a config from SNAKEID_* environment variables.

        Explicit keyword overrides take precedence over the environment.
        """
        env = os.environ
        values: Dict[str, Any] = {}
        if "SNAKEID_ASSETS_DIR" in env:
            values["assets_dir"] = env["SNAKEID_ASSETS_DIR"]
        if "SNAKEID_TOP_K" in env:
            values["top_k"] = int(env["SNAKEID_TOP_K"])
        if "SNAKEID_RESIZE_POLICY" in env:
            values["resize_policy"] = env["SNAKEID_RESIZE_POLICY"]
        if "SNAKEID_LOAD_TIMEOUT" in env:
            values["load_timeout_s"] = float(env["SNAKEID_LOAD_TIMEOUT"])
        if "SNAKEID_FRAME_INTERVAL" in env:
            values["min_frame_interval_s"] = float(env["SNAKEID_FRAME_INTERVAL"])
        if "SNAKEID_DEVICE" in env:
            values["device"] = env["SNAKEID_DEVICE"]
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
