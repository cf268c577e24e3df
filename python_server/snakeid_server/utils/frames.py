"""Raw frame decoding.

Converts capture-source frames into RGB images:
- Planar YUV 4:2:0 camera frames (separate Y, U, V planes, chroma
  subsampled 2:1 in both axes, with row and pixel strides per plane)
- Pre-encoded image buffers (JPEG, PNG, ...) decoded with Pillow
"""

import io
import logging
from dataclasses import dataclass
from typing import Optional, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from ..exceptions import DecodeError

logger = logging.getLogger(__name__)


@dataclass
class YuvFrame:
    """A planar YUV 4:2:0 frame as delivered by a camera stream.

    U and V share the same row and pixel stride, as camera APIs report
    them for the chroma planes.
    """
    width: int
    height: int
    y_plane: bytes
    u_plane: bytes
    v_plane: bytes
    uv_row_stride: int
    uv_pixel_stride: int
    y_row_stride: Optional[int] = None
    y_pixel_stride: int = 1
    rotation: int = 0


@dataclass
class EncodedImage:
    """An already-encoded image byte buffer."""
    data: bytes


RawFrame = Union[YuvFrame, EncodedImage]


def _plane_array(plane: bytes, name: str) -> np.ndarray:
    try:
        return np.frombuffer(plane, dtype=np.uint8)
    except (TypeError, ValueError) as e:
        raise DecodeError(f"{name} plane is not a byte buffer: {e}")


def yuv420_to_rgb(frame: YuvFrame) -> np.ndarray:
    """Convert a planar YUV 4:2:0 frame to an interleaved RGB raster.

    Uses the BT.601 full-range transform. Each channel is truncated toward
    zero and clamped to [0, 255].

    Args:
        frame: Planar frame with stride metadata

    Returns:
        uint8 array with shape (height, width, 3)

    Raises:
        DecodeError: If dimensions or strides are invalid or a plane is
            too short for the indices the frame geometry requires
    """
    width, height = frame.width, frame.height
    if width <= 0 or height <= 0:
        raise DecodeError(f"Invalid frame size {width}x{height}")

    y_row_stride = frame.y_row_stride if frame.y_row_stride is not None else width
    if min(y_row_stride, frame.y_pixel_stride,
           frame.uv_row_stride, frame.uv_pixel_stride) <= 0:
        raise DecodeError("Plane strides must be positive")

    y_plane = _plane_array(frame.y_plane, "Y")
    u_plane = _plane_array(frame.u_plane, "U")
    v_plane = _plane_array(frame.v_plane, "V")

    xs = np.arange(width)
    ys = np.arange(height)

    y_index = ys[:, None] * y_row_stride + xs[None, :] * frame.y_pixel_stride
    uv_index = (frame.uv_pixel_stride * (xs[None, :] // 2)
                + frame.uv_row_stride * (ys[:, None] // 2))

    y_needed = int(y_index[-1, -1]) + 1
    uv_needed = int(uv_index[-1, -1]) + 1
    if len(y_plane) < y_needed:
        raise DecodeError(
            f"Y plane too short: need {y_needed} bytes, got {len(y_plane)}")
    for name, plane in (("U", u_plane), ("V", v_plane)):
        if len(plane) < uv_needed:
            raise DecodeError(
                f"{name} plane too short: need {uv_needed} bytes, got {len(plane)}")

    y = y_plane[y_index].astype(np.float64)
    u = u_plane[uv_index].astype(np.float64) - 128.0
    v = v_plane[uv_index].astype(np.float64) - 128.0

    r = y + 1.402 * v
    g = y - 0.344136 * u - 0.714136 * v
    b = y + 1.772 * u

    rgb = np.stack([r, g, b], axis=-1)
    return np.clip(np.trunc(rgb), 0, 255).astype(np.uint8)


def rotate_clockwise(rgb: np.ndarray, degrees: int) -> np.ndarray:
    """Rotate an HWC raster clockwise by a multiple of 90 degrees."""
    if degrees % 90 != 0:
        raise DecodeError(f"Unsupported rotation {degrees}; must be a multiple of 90")
    turns = (degrees // 90) % 4
    if turns == 0:
        return rgb
    # np.rot90 rotates counter-clockwise for positive k
    return np.ascontiguousarray(np.rot90(rgb, k=-turns))


def decode_yuv_frame(frame: YuvFrame) -> Image.Image:
    """Decode a planar frame and correct sensor orientation."""
    rgb = yuv420_to_rgb(frame)
    rgb = rotate_clockwise(rgb, frame.rotation)
    logger.debug("Decoded %dx%d YUV frame (rotation %d)",
                 frame.width, frame.height, frame.rotation)
    return Image.fromarray(rgb)


def decode_image_bytes(data: bytes) -> Image.Image:
    """Decode an encoded image buffer to an RGB image.

    Raises:
        DecodeError: If Pillow cannot identify or decode the buffer
    """
    if not data:
        raise DecodeError("Image buffer is empty")
    try:
        img = Image.open(io.BytesIO(data))
        img.load()
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeError(f"Could not decode image: {e}")
    return img.convert("RGB")


def to_image(frame: RawFrame) -> Image.Image:
    """Decode any supported raw frame into an RGB image."""
    if isinstance(frame, YuvFrame):
        return decode_yuv_frame(frame)
    if isinstance(frame, EncodedImage):
        return decode_image_bytes(frame.data)
    if isinstance(frame, (bytes, bytearray)):
        return decode_image_bytes(bytes(frame))
    raise DecodeError(f"Unsupported frame type: {type(frame).__name__}")
