import math
from typing import Tuple

import numpy as np

from .types import LetterboxGeometry


def compute_letterbox(width: int, height: int, size: int) -> LetterboxGeometry:
    """
    Fit a (width, height) image inside a size x size square, keeping aspect ratio.

    Zero-sized sources are rejected upstream (see `check_image`).
    """

    r = min(size / width, size / height)
    # At least one pixel per axis so very thin sources still get drawn.
    padded_w, padded_h = max(1, int(round(width * r))), max(1, int(round(height * r)))
    dw, dh = (size - padded_w) / 2, (size - padded_h) / 2

    return LetterboxGeometry(
        scale=r,
        padded_width=padded_w,
        padded_height=padded_h,
        pad_x=dw,
        pad_y=dh,
        source_width=int(width),
        source_height=int(height),
        target_size=int(size),
    )


def paste_offset(geometry: LetterboxGeometry) -> Tuple[int, int]:
    # Integer top-left corner of the scaled image inside the canvas.
    return int(math.floor(geometry.pad_x)), int(math.floor(geometry.pad_y))


def check_image(image: np.ndarray) -> np.ndarray:
    if image is None or not hasattr(image, "shape"):
        raise TypeError("image must be a NumPy array (H, W), (H, W, 3) or (H, W, 4).")
    if image.ndim == 2:
        pass
    elif image.ndim != 3 or image.shape[2] not in (3, 4):
        raise ValueError(f"Expected image shape (H, W), (H, W, 3) or (H, W, 4), got {image.shape}")
    if image.shape[0] == 0 or image.shape[1] == 0:
        raise ValueError(f"Image has no pixels (shape {image.shape})")
    return image


def letterbox(
    image: np.ndarray,
    size: int = 640,
    color: Tuple[int, int, int] = (0, 0, 0),
):
    """
    Resize and pad an RGB(A) or grayscale image into a square model canvas.

    Returns:
        canvas: (size, size, 3) uint8 image, scaled content centered
        geometry: the LetterboxGeometry used, needed later to invert boxes
    """
    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for letterbox(). Install with `pip install opencv-python`.") from e

    image = check_image(image)
    if image.ndim == 2:
        image = np.repeat(image[:, :, None], 3, axis=2)
    elif image.shape[2] == 4:
        image = image[:, :, :3]

    h, w = image.shape[:2]
    geometry = compute_letterbox(w, h, size)

    canvas = np.empty((size, size, 3), dtype=np.uint8)
    canvas[:] = color
    resized = image
    if (w, h) != (geometry.padded_width, geometry.padded_height):
        resized = cv2.resize(
            np.ascontiguousarray(image),
            (geometry.padded_width, geometry.padded_height),
            interpolation=cv2.INTER_LINEAR,
        )

    left, top = paste_offset(geometry)
    canvas[top : top + geometry.padded_height, left : left + geometry.padded_width] = resized
    return canvas, geometry
