from __future__ import annotations

from typing import Dict, Iterable, Optional, Sequence, Tuple

import numpy as np

from .types import ClassCatalog, Detection

Color = Tuple[int, int, int]

# Demo palette (hex #60a5fa, #34d399, ...) in BGR for OpenCV.
DEFAULT_PALETTE: Tuple[Color, ...] = (
    (250, 165, 96),
    (153, 211, 52),
    (21, 204, 250),
    (182, 114, 244),
    (252, 132, 192),
    (133, 113, 251),
    (212, 234, 94),
)


class ColorTable:
    """
    Class index -> BGR color lookup, owned by the presentation layer.

    Colors are handed out from the palette in first-seen order and then stay fixed
    for the table's lifetime.
    """

    def __init__(self, palette: Sequence[Color] = DEFAULT_PALETTE):
        if not palette:
            raise ValueError("palette must contain at least one color")
        self._palette = tuple(tuple(int(v) for v in c) for c in palette)
        self._assigned: Dict[int, Color] = {}

    def __len__(self) -> int:
        return len(self._assigned)

    def color_for(self, class_index: int) -> Color:
        color = self._assigned.get(class_index)
        if color is None:
            color = self._palette[len(self._assigned) % len(self._palette)]
            self._assigned[class_index] = color
        return color


def format_label(det: Detection, catalog: Optional[ClassCatalog]) -> str:
    name = catalog.name_for(det.class_index) if catalog is not None else str(det.class_index)
    return f"{name} {det.confidence * 100:.1f}%"


def draw_detections(
    image_bgr: np.ndarray,
    detections: Iterable[Detection],
    *,
    catalog: Optional[ClassCatalog] = None,
    colors: Optional[ColorTable] = None,
    box_thickness: int = 3,
    fill_alpha: float = 0.2,
    font_scale: float = 0.5,
    font_thickness: int = 1,
) -> np.ndarray:
    """
    Draw translucent boxes + labels on an OpenCV BGR image and return a copy.

    Args:
        image_bgr: input image in BGR (H, W, 3).
        detections: iterable of Detection in source image pixels.
        catalog: optional class names; falls back to the class index.
        colors: color lookup to reuse across frames; a fresh one is made if omitted.
    """

    try:
        import cv2  # type: ignore
    except Exception as e:  # pragma: no cover
        raise ImportError("OpenCV is required for draw_detections(). Install with `pip install opencv-python`.") from e

    if image_bgr is None or not hasattr(image_bgr, "shape"):
        raise TypeError("image_bgr must be a NumPy array (BGR).")
    if image_bgr.ndim != 3 or image_bgr.shape[2] != 3:
        raise ValueError(f"Expected image shape (H, W, 3), got {getattr(image_bgr, 'shape', None)}")

    colors = colors if colors is not None else ColorTable()
    out = image_bgr.copy()
    h, w = out.shape[:2]

    for det in detections:
        x1, y1, x2, y2 = det.as_xyxy()
        x1i = int(np.clip(round(x1), 0, w - 1))
        y1i = int(np.clip(round(y1), 0, h - 1))
        x2i = int(np.clip(round(x2), 0, w - 1))
        y2i = int(np.clip(round(y2), 0, h - 1))
        color = colors.color_for(det.class_index)

        if fill_alpha > 0:
            roi = out[y1i : y2i + 1, x1i : x2i + 1]
            tint = np.empty_like(roi)
            tint[:] = color
            out[y1i : y2i + 1, x1i : x2i + 1] = cv2.addWeighted(tint, fill_alpha, roi, 1.0 - fill_alpha, 0)
        cv2.rectangle(out, (x1i, y1i), (x2i, y2i), color, thickness=box_thickness)

        label = format_label(det, catalog)
        (tw, th), baseline = cv2.getTextSize(label, cv2.FONT_HERSHEY_SIMPLEX, font_scale, font_thickness)
        # Place label above the box if possible, else inside.
        y_text_top = y1i - th - baseline
        if y_text_top < 0:
            y_text_top = y1i

        x_text_right = min(x1i + tw, w - 1)
        y_text_bottom = min(y_text_top + th + baseline, h - 1)

        cv2.rectangle(out, (x1i, y_text_top), (x_text_right, y_text_bottom), color, thickness=-1)
        cv2.putText(
            out,
            label,
            (x1i, min(y_text_top + th, h - 1)),
            cv2.FONT_HERSHEY_SIMPLEX,
            font_scale,
            (32, 18, 11),
            thickness=font_thickness,
            lineType=cv2.LINE_AA,
        )

    return out
