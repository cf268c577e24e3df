"""Tests for raw frame decoding.

Tests cover:
- YUV 4:2:0 to RGB conversion (values, strides, clamping)
- Rotation to upright orientation
- Encoded image decoding
- Decode failures
"""

import io

import numpy as np
import pytest
from PIL import Image


class TestYuvConversion:
    """Test planar YUV to RGB conversion."""

    def test_mid_gray(self, make_yuv_frame):
        """Neutral chroma with mid luma decodes to mid gray."""
        from snakeid_server.utils.frames import yuv420_to_rgb

        rgb = yuv420_to_rgb(make_yuv_frame(4, 4, y=128, u=128, v=128))

        assert rgb.shape == (4, 4, 3)
        assert rgb.dtype == np.uint8
        assert np.all(rgb == 128)

    def test_known_values_and_clamping(self):
        """Values truncate toward zero and clamp to [0, 255]."""
        from snakeid_server.utils.frames import YuvFrame, yuv420_to_rgb

        frame = YuvFrame(
            width=2, height=2,
            y_plane=bytes([100, 150, 200, 50]),
            u_plane=bytes([90]),
            v_plane=bytes([200]),
            uv_row_stride=1,
            uv_pixel_stride=1,
        )

        rgb = yuv420_to_rgb(frame)

        expected = np.array([
            [[200, 61, 32], [250, 111, 82]],
            [[255, 161, 132], [150, 11, 0]],
        ], dtype=np.uint8)
        np.testing.assert_array_equal(rgb, expected)

    def test_chroma_shared_by_2x2_block(self):
        """Each chroma sample covers a 2x2 block of luma."""
        from snakeid_server.utils.frames import YuvFrame, yuv420_to_rgb

        frame = YuvFrame(
            width=4, height=2,
            y_plane=bytes([128] * 8),
            u_plane=bytes([128, 128]),
            v_plane=bytes([128, 255]),
            uv_row_stride=2,
            uv_pixel_stride=1,
        )

        rgb = yuv420_to_rgb(frame)

        assert np.all(rgb[:, :2] == rgb[0, 0])
        assert np.all(rgb[:, 2:] == rgb[0, 2])
        assert rgb[0, 2, 0] > rgb[0, 0, 0]

    def test_interleaved_chroma_pixel_stride(self):
        """A chroma pixel stride of 2 skips the interleaved bytes."""
        from snakeid_server.utils.frames import YuvFrame, yuv420_to_rgb

        frame = YuvFrame(
            width=4, height=2,
            y_plane=bytes([120] * 8),
            u_plane=bytes([90, 255, 90]),
            v_plane=bytes([160, 0, 160]),
            uv_row_stride=4,
            uv_pixel_stride=2,
        )

        rgb = yuv420_to_rgb(frame)

        assert np.all(rgb == rgb[0, 0])

    def test_padded_luma_rows(self):
        """Luma row padding is skipped using the luma row stride."""
        from snakeid_server.utils.frames import YuvFrame, yuv420_to_rgb

        tight = YuvFrame(
            width=2, height=2,
            y_plane=bytes([10, 20, 30, 40]),
            u_plane=bytes([128]), v_plane=bytes([128]),
            uv_row_stride=1, uv_pixel_stride=1,
        )
        padded = YuvFrame(
            width=2, height=2,
            y_plane=bytes([10, 20, 0, 0, 30, 40]),
            u_plane=bytes([128]), v_plane=bytes([128]),
            uv_row_stride=1, uv_pixel_stride=1,
            y_row_stride=4,
        )

        np.testing.assert_array_equal(yuv420_to_rgb(tight), yuv420_to_rgb(padded))

    def test_short_plane_raises(self):
        """A plane shorter than the geometry requires is a decode error."""
        from snakeid_server.exceptions import DecodeError
        from snakeid_server.utils.frames import YuvFrame, yuv420_to_rgb

        frame = YuvFrame(
            width=4, height=4,
            y_plane=bytes(10),
            u_plane=bytes(4), v_plane=bytes(4),
            uv_row_stride=2, uv_pixel_stride=1,
        )

        with pytest.raises(DecodeError, match="Y plane too short"):
            yuv420_to_rgb(frame)

    def test_invalid_geometry_raises(self, make_yuv_frame):
        """Zero dimensions and non-positive strides are rejected."""
        from snakeid_server.exceptions import DecodeError
        from snakeid_server.utils.frames import yuv420_to_rgb

        frame = make_yuv_frame(4, 4)
        frame.width = 0
        with pytest.raises(DecodeError):
            yuv420_to_rgb(frame)

        frame = make_yuv_frame(4, 4)
        frame.uv_pixel_stride = 0
        with pytest.raises(DecodeError):
            yuv420_to_rgb(frame)


class TestRotation:
    """Test orientation correction."""

    def test_rotate_90_clockwise(self):
        """Top-left of the result is the bottom-left of the source."""
        from snakeid_server.utils.frames import rotate_clockwise

        rgb = np.arange(2 * 3 * 3, dtype=np.uint8).reshape(2, 3, 3)

        rotated = rotate_clockwise(rgb, 90)

        assert rotated.shape == (3, 2, 3)
        np.testing.assert_array_equal(rotated[0, 0], rgb[1, 0])
        np.testing.assert_array_equal(rotated[0, 1], rgb[0, 0])

    def test_full_turn_is_identity(self):
        """0 and 360 degrees leave the raster unchanged."""
        from snakeid_server.utils.frames import rotate_clockwise

        rgb = np.arange(12, dtype=np.uint8).reshape(2, 2, 3)

        np.testing.assert_array_equal(rotate_clockwise(rgb, 0), rgb)
        np.testing.assert_array_equal(rotate_clockwise(rgb, 360), rgb)

    def test_non_right_angle_rejected(self):
        """Only multiples of 90 degrees are supported."""
        from snakeid_server.exceptions import DecodeError
        from snakeid_server.utils.frames import rotate_clockwise

        with pytest.raises(DecodeError):
            rotate_clockwise(np.zeros((2, 2, 3), dtype=np.uint8), 45)

    def test_decoded_frame_is_upright(self, make_yuv_frame):
        """A landscape sensor frame rotated 90 degrees becomes portrait."""
        from snakeid_server.utils.frames import decode_yuv_frame

        img = decode_yuv_frame(make_yuv_frame(width=8, height=4, rotation=90))

        assert img.mode == "RGB"
        assert img.size == (4, 8)


class TestEncodedImages:
    """Test encoded image decoding."""

    def test_decode_jpeg(self, jpeg_bytes):
        """JPEG bytes decode to an RGB image."""
        from snakeid_server.utils.frames import decode_image_bytes

        img = decode_image_bytes(jpeg_bytes)

        assert img.mode == "RGB"
        assert img.size == (64, 48)

    def test_grayscale_converted_to_rgb(self):
        """Single-channel images are expanded to RGB."""
        from snakeid_server.utils.frames import decode_image_bytes

        buffer = io.BytesIO()
        Image.new("L", (10, 10), color=77).save(buffer, format="PNG")

        img = decode_image_bytes(buffer.getvalue())

        assert img.mode == "RGB"
        assert img.getpixel((0, 0)) == (77, 77, 77)

    def test_garbage_bytes_raise(self):
        """Unrecognized data is a decode error."""
        from snakeid_server.exceptions import DecodeError
        from snakeid_server.utils.frames import decode_image_bytes

        with pytest.raises(DecodeError):
            decode_image_bytes(b"definitely not an image")

    def test_empty_bytes_raise(self):
        """An empty buffer is a decode error."""
        from snakeid_server.exceptions import DecodeError
        from snakeid_server.utils.frames import decode_image_bytes

        with pytest.raises(DecodeError, match="empty"):
            decode_image_bytes(b"")


class TestToImage:
    """Test frame type dispatch."""

    def test_dispatch(self, make_yuv_frame, jpeg_bytes):
        """Both frame kinds and raw bytes are accepted."""
        from snakeid_server.utils.frames import EncodedImage, to_image

        assert to_image(make_yuv_frame(4, 4)).size == (4, 4)
        assert to_image(EncodedImage(jpeg_bytes)).size == (64, 48)
        assert to_image(jpeg_bytes).size == (64, 48)

    def test_unsupported_type(self):
        """Other inputs are a decode error."""
        from snakeid_server.exceptions import DecodeError
        from snakeid_server.utils.frames import to_image

        with pytest.raises(DecodeError, match="Unsupported frame type"):
            to_image(12345)
