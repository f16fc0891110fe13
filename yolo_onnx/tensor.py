"""
Planar (channel-major) input tensor packing.

The packer writes R, G and B planes of the letterboxed canvas into one flat
float32 buffer: pixel `i` lands at `i`, `i + n*n` and `i + 2*n*n`, scaled to
[0, 1]. Padding stays exactly zero.
"""

from __future__ import annotations

from typing import Optional

import numpy as np

from .letterbox import check_image, compute_letterbox, paste_offset
from .types import LetterboxGeometry


def _resize(image: np.ndarray, width: int, height: int) -> np.ndarray:
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for tensor packing. Install with `pip install opencv-python`.") from e

    if image.shape[1] == width and image.shape[0] == height:
        return image
    return cv2.resize(np.ascontiguousarray(image), (width, height), interpolation=cv2.INTER_LINEAR)


def _as_rgb(image: np.ndarray) -> np.ndarray:
    image = check_image(image)
    if image.dtype != np.uint8:
        raise ValueError(f"Expected uint8 pixels, got {image.dtype}")
    if image.ndim == 2:
        return np.repeat(image[:, :, None], 3, axis=2)
    # Alpha is dropped.
    return image[:, :, :3]


class TensorPacker:
    """
    Caller-owned scratch arena for one model size.

    `pack()` overwrites and returns the same buffer on every call, so a packer
    must not be shared between threads; create one per thread instead.
    """

    def __init__(self, size: int):
        if size <= 0:
            raise ValueError(f"size must be > 0, got {size}")
        self.size = int(size)
        self._canvas = np.zeros((self.size, self.size, 3), dtype=np.uint8)
        self._buffer = np.zeros(3 * self.size * self.size, dtype=np.float32)

    @property
    def buffer(self) -> np.ndarray:
        return self._buffer

    def as_nchw(self, buffer: Optional[np.ndarray] = None) -> np.ndarray:
        buf = self._buffer if buffer is None else buffer
        return buf.reshape(1, 3, self.size, self.size)

    def pack(self, image: np.ndarray, geometry: Optional[LetterboxGeometry] = None) -> np.ndarray:
        rgb = _as_rgb(image)
        h, w = rgb.shape[:2]
        if geometry is None:
            geometry = compute_letterbox(w, h, self.size)
        elif geometry.target_size != self.size:
            raise ValueError(
                f"Geometry targets {geometry.target_size}px but packer was built for {self.size}px"
            )

        self._canvas.fill(0)
        resized = _resize(rgb, geometry.padded_width, geometry.padded_height)
        left, top = paste_offset(geometry)
        self._canvas[top : top + geometry.padded_height, left : left + geometry.padded_width] = resized

        plane = self.size * self.size
        flat = self._canvas.reshape(plane, 3)
        for c in range(3):
            np.divide(flat[:, c], 255.0, out=self._buffer[c * plane : (c + 1) * plane], casting="unsafe")
        return self._buffer


def pack_image(image: np.ndarray, size: int, geometry: Optional[LetterboxGeometry] = None) -> np.ndarray:
    """
    One-shot packing into a freshly allocated buffer of length 3 * size * size.
    """

    return TensorPacker(size).pack(image, geometry).copy()
