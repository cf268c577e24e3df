"""Image normalization for classifier input.

Turns a decoded RGB image into the planar channel-first float tensor the
classifier was trained on. Two resize policies are supported:

- "resize": the whole image is resized directly to S x S
- "center_crop": the shorter side is resized to S * crop_scale, keeping the
  aspect ratio, then the central S x S region is cropped

Pixel bytes are scaled to [0, 1] and, with the "imagenet" strategy,
standardized per channel with the ImageNet mean/std.
"""
import logging
from typing import Any, Dict, Sequence

import numpy as np
from PIL import Image

from ..config import IMAGENET_MEAN, IMAGENET_STD

logger = logging.getLogger(__name__)

RESIZE_POLICIES = ("resize", "center_crop")
NORMALIZATION_STRATEGIES = ("imagenet", "unit_range")


def resize_to_square(img: Image.Image, size: int) -> Image.Image:
    """Resize an image directly to size x size, ignoring aspect ratio."""
    return img.resize((size, size), Image.BILINEAR)


def resize_center_crop(img: Image.Image, size: int, crop_scale: float = 1.15) -> Image.Image:
    """Resize the shorter side to size * crop_scale and crop the center.

    Args:
        img: Input RGB image
        size: Output square dimension
        crop_scale: Ratio between the resized shorter side and the crop

    Returns:
        size x size image
    """
    width, height = img.size
    short_side = max(size, int(round(size * crop_scale)))
    if width <= height:
        new_w = short_side
        new_h = max(short_side, int(round(height * short_side / width)))
    else:
        new_h = short_side
        new_w = max(short_side, int(round(width * short_side / height)))
    resized = img.resize((new_w, new_h), Image.BILINEAR)

    left = (new_w - size) // 2
    top = (new_h - size) // 2
    return resized.crop((left, top, left + size, top + size))


def to_chw_tensor(
    img: Image.Image,
    strategy: str = "imagenet",
    mean: Sequence[float] = IMAGENET_MEAN,
    std: Sequence[float] = IMAGENET_STD,
) -> np.ndarray:
    """Convert an RGB image to a planar (C, H, W) float32 tensor.

    All R values come first, then all G, then all B.
    """
    if strategy not in NORMALIZATION_STRATEGIES:
        raise ValueError(
            "Unknown normalization strategy '%s' (expected one of %s)"
            % (strategy, ", ".join(NORMALIZATION_STRATEGIES)))

    arr = np.asarray(img.convert("RGB"), dtype=np.float32) / 255.0

    if strategy == "imagenet":
        mean_arr = np.asarray(mean, dtype=np.float32).reshape(1, 1, 3)
        std_arr = np.asarray(std, dtype=np.float32).reshape(1, 1, 3)
        arr = (arr - mean_arr) / std_arr

    # HWC -> CHW
    return np.ascontiguousarray(arr.transpose(2, 0, 1), dtype=np.float32)


def normalize(img: Image.Image, input_config: Dict[str, Any]) -> np.ndarray:
    """Resize and normalize an image using the config-specified policy.

    Args:
        img: Decoded RGB image
        input_config: Configuration dict with "input_size", "resize_policy",
            "crop_scale" and a "normalization" sub-dict

    Returns:
        Float32 tensor with shape (3, input_size, input_size)
    """
    size = int(input_config.get("input_size", 224))
    policy = input_config.get("resize_policy", "resize")
    norm_config = input_config.get("normalization", {})

    if policy == "resize":
        img = resize_to_square(img, size)
    elif policy == "center_crop":
        img = resize_center_crop(img, size, input_config.get("crop_scale", 1.15))
    else:
        raise ValueError(
            "Unknown resize policy '%s' (expected one of %s)"
            % (policy, ", ".join(RESIZE_POLICIES)))

    return to_chw_tensor(
        img,
        strategy=norm_config.get("strategy", "imagenet"),
        mean=norm_config.get("mean", IMAGENET_MEAN),
        std=norm_config.get("std", IMAGENET_STD),
    )
