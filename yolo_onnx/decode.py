from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

import numpy as np

from .errors import DecodeError
from .types import ClassCatalog, Detection, LetterboxGeometry, RawOutput

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecoderConfig:
    """
    Decoding options for a YOLO export.

    - conf_threshold: rows scoring below this are dropped
    - has_objectness: None auto-detects from the column count; True forces
      [cx, cy, w, h, obj, classes...] (5 + K); False forces [cx, cy, w, h, classes...] (4 + K)
    - apply_sigmoid: the export emits raw logits for objectness/class scores
    """

    conf_threshold: float = 0.35
    has_objectness: Optional[bool] = None
    apply_sigmoid: bool = False

    def __post_init__(self) -> None:
        if not 0.0 < self.conf_threshold < 1.0:
            raise ValueError(f"conf_threshold must be in (0, 1), got {self.conf_threshold}")


@dataclass(frozen=True)
class OutputLayout:
    rows: int
    cols: int
    transposed: bool
    has_objectness: bool


def _expected_cols(num_classes: int, has_objectness: Optional[bool]) -> Tuple[int, ...]:
    # Preference order when the shape does not settle it: 5 + K first.
    if has_objectness is True:
        return (num_classes + 5,)
    if has_objectness is False:
        return (num_classes + 4,)
    return (num_classes + 5, num_classes + 4)


def _layout_for(rows: int, cols: int, transposed: bool, num_classes: int) -> OutputLayout:
    return OutputLayout(rows=rows, cols=cols, transposed=transposed, has_objectness=cols == num_classes + 5)


def resolve_layout(
    shape: Optional[Sequence[int]],
    total: int,
    num_classes: int,
    has_objectness: Optional[bool] = None,
) -> OutputLayout:
    """
    Work out how a flat output buffer maps onto [rows, cols].

    Supported:
    - (rows, cols) row-major
    - (1, rows, cols) row-major
    - (1, cols, rows) attribute-major, e.g. 11 x 8400 for 7 classes; needs a transpose
    Anything else falls back to total / expected column count.
    """

    candidates = _expected_cols(num_classes, has_objectness)

    if shape is not None:
        dims = tuple(int(d) for d in shape)
        declared = int(np.prod(dims)) if dims else 0
        if dims and declared != total:
            raise DecodeError(f"Output buffer holds {total} values but shape {dims} declares {declared}.")

        if len(dims) == 3 and dims[0] != 1:
            raise DecodeError(f"Batch > 1 is not supported (got shape {dims}). Pass one image at a time.")

        if len(dims) in (2, 3):
            a, b = dims[-2], dims[-1]
            for cols in candidates:
                if b == cols:
                    return _layout_for(a, b, False, num_classes)
            for cols in candidates:
                if a == cols:
                    return _layout_for(b, a, True, num_classes)

    for cols in candidates:
        if total % cols == 0:
            return _layout_for(total // cols, cols, False, num_classes)

    raise DecodeError(
        f"Cannot map output of {total} values (shape {None if shape is None else tuple(shape)}) "
        f"onto rows of {' or '.join(str(c) for c in candidates)} columns for {num_classes} classes."
    )


def normalize_output(raw: RawOutput, num_classes: int, has_objectness: Optional[bool] = None) -> Tuple[np.ndarray, OutputLayout]:
    """
    Return the output as a row-major (rows, cols) array plus the resolved layout.
    """

    layout = resolve_layout(raw.shape, raw.size, num_classes, has_objectness)
    if layout.transposed:
        table = raw.data.reshape(layout.cols, layout.rows).T
    else:
        table = raw.data.reshape(layout.rows, layout.cols)
    return np.ascontiguousarray(table), layout


def _sigmoid(x: np.ndarray) -> np.ndarray:
    return 1.0 / (1.0 + np.exp(-x))


class DetectionDecoder:
    """
    Turns one raw YOLO output into detections in source-image pixels.

    Rows are kept in output order; suppression happens afterwards.
    """

    def __init__(self, catalog: ClassCatalog, cfg: DecoderConfig = DecoderConfig()):
        self.catalog = catalog
        self.cfg = cfg

    def decode(self, raw: RawOutput, geometry: LetterboxGeometry) -> List[Detection]:
        k = len(self.catalog)
        table, layout = normalize_output(raw, k, self.cfg.has_objectness)
        logger.debug(
            "Output shape %s -> rows=%d cols=%d transposed=%s objectness=%s",
            raw.shape,
            layout.rows,
            layout.cols,
            layout.transposed,
            layout.has_objectness,
        )
        if layout.rows == 0:
            return []

        table = table.astype(np.float64, copy=False)
        boxes = table[:, 0:4]
        start = 5 if layout.has_objectness else 4
        class_scores = table[:, start : start + k]
        if self.cfg.apply_sigmoid:
            class_scores = _sigmoid(class_scores)

        # argmax keeps the lowest index on ties.
        class_ids = np.argmax(class_scores, axis=1)
        best = class_scores[np.arange(class_scores.shape[0]), class_ids]

        if layout.has_objectness:
            objectness = table[:, 4]
            if self.cfg.apply_sigmoid:
                objectness = _sigmoid(objectness)
            scores = objectness * best
        else:
            scores = best

        keep = (best > 0) & (scores >= self.cfg.conf_threshold)
        if not np.any(keep):
            return []

        boxes_xywh, box_keep = self._scale_boxes(boxes[keep], geometry)
        scores = scores[keep][box_keep]
        class_ids = class_ids[keep][box_keep]

        return [
            Detection(
                x=float(x),
                y=float(y),
                w=float(w),
                h=float(h),
                class_index=int(cls_id),
                confidence=float(score),
            )
            for (x, y, w, h), score, cls_id in zip(boxes_xywh, scores, class_ids)
        ]

    # ------------------------------------------------------------------ #
    # Internal helpers
    # ------------------------------------------------------------------ #
    def _scale_boxes(self, boxes: np.ndarray, geometry: LetterboxGeometry) -> Tuple[np.ndarray, np.ndarray]:
        """
        Map center-format boxes from the letterboxed canvas back to the source image.

        Returns (N', 4) top-left boxes and the boolean mask of rows that survived.
        """

        boxes = boxes.copy()
        normalized = np.all((boxes >= 0.0) & (boxes <= 1.0), axis=1)
        boxes[normalized] *= geometry.target_size

        r = geometry.scale
        x_center = (boxes[:, 0] - geometry.pad_x) / r
        y_center = (boxes[:, 1] - geometry.pad_y) / r
        width = boxes[:, 2] / r
        height = boxes[:, 3] / r

        img_w, img_h = geometry.source_width, geometry.source_height
        x = np.maximum(0.0, x_center - width / 2)
        y = np.maximum(0.0, y_center - height / 2)
        inside = (x < img_w) & (y < img_h)
        width = np.minimum(width, img_w - x)
        height = np.minimum(height, img_h - y)
        keep = inside & (width > 1) & (height > 1)

        out = np.stack([x, y, width, height], axis=1)
        return out[keep], keep


def decode_output(
    raw: RawOutput,
    catalog: ClassCatalog,
    geometry: LetterboxGeometry,
    conf_threshold: float = 0.35,
    has_objectness: Optional[bool] = None,
    apply_sigmoid: bool = False,
) -> List[Detection]:
    cfg = DecoderConfig(conf_threshold=conf_threshold, has_objectness=has_objectness, apply_sigmoid=apply_sigmoid)
    return DetectionDecoder(catalog, cfg).decode(raw, geometry)
