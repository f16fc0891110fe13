from dataclasses import dataclass
from typing import List, Optional, Sequence

import numpy as np

from .types import Detection


@dataclass(frozen=True)
class NMSConfig:
    iou_threshold: float = 0.45
    max_detections: Optional[int] = None
    # Cross-class suppression by default; False runs NMS per class then merges.
    class_agnostic: bool = True


def iou(a: Detection, b: Detection) -> float:
    ax1, ay1, ax2, ay2 = a.as_xyxy()
    bx1, by1, bx2, by2 = b.as_xyxy()

    iw = max(0.0, min(ax2, bx2) - max(ax1, bx1))
    ih = max(0.0, min(ay2, by2) - max(ay1, by1))
    inter = iw * ih
    if inter <= 0:
        return 0.0
    union = a.w * a.h + b.w * b.h - inter
    return 0.0 if union <= 0 else inter / union


def _iou_one_to_many(box: np.ndarray, others: np.ndarray) -> np.ndarray:
    x1 = np.maximum(box[0], others[:, 0])
    y1 = np.maximum(box[1], others[:, 1])
    x2 = np.minimum(box[0] + box[2], others[:, 0] + others[:, 2])
    y2 = np.minimum(box[1] + box[3], others[:, 1] + others[:, 3])

    inter = np.maximum(0.0, x2 - x1) * np.maximum(0.0, y2 - y1)
    union = box[2] * box[3] + others[:, 2] * others[:, 3] - inter
    out = np.zeros(others.shape[0], dtype=np.float64)
    valid = (inter > 0) & (union > 0)
    out[valid] = inter[valid] / union[valid]
    return out


def nms_indices(boxes_xywh: np.ndarray, scores: np.ndarray, cfg: NMSConfig = NMSConfig()) -> np.ndarray:
    """
    Greedy NMS over (N, 4) top-left/size boxes and (N,) scores.

    Candidates are visited by descending score with a stable sort, so equal
    scores keep their input order. Returns kept indices in visit order.
    """

    boxes = np.asarray(boxes_xywh, dtype=np.float64).reshape(-1, 4)
    scores = np.asarray(scores, dtype=np.float64).reshape(-1)
    if boxes.shape[0] == 0:
        return np.empty((0,), dtype=np.int64)

    order = np.argsort(-scores, kind="stable")
    keep: List[int] = []

    while order.size > 0:
        if cfg.max_detections is not None and len(keep) >= cfg.max_detections:
            break
        i = order[0]
        keep.append(int(i))

        overlaps = _iou_one_to_many(boxes[i], boxes[order[1:]])
        order = order[1:][overlaps <= cfg.iou_threshold]

    return np.array(keep, dtype=np.int64)


def _per_class_indices(boxes: np.ndarray, scores: np.ndarray, class_ids: np.ndarray, cfg: NMSConfig) -> np.ndarray:
    local_cfg = NMSConfig(iou_threshold=cfg.iou_threshold, class_agnostic=True)
    kept: List[int] = []
    for cls in np.unique(class_ids):
        idx = np.where(class_ids == cls)[0]
        kept.extend(idx[nms_indices(boxes[idx], scores[idx], local_cfg)].tolist())

    if not kept:
        return np.empty((0,), dtype=np.int64)

    # Merge back by score; ties resolved by original position.
    merged = np.array(sorted(kept), dtype=np.int64)
    merged = merged[np.argsort(-scores[merged], kind="stable")]
    if cfg.max_detections is not None:
        merged = merged[: cfg.max_detections]
    return merged


def nms(
    detections: Sequence[Detection],
    iou_threshold: float = 0.45,
    class_agnostic: bool = True,
    max_detections: Optional[int] = None,
) -> List[Detection]:
    """
    De-duplicate overlapping detections, highest confidence first.
    """

    if not detections:
        return []

    cfg = NMSConfig(iou_threshold=iou_threshold, max_detections=max_detections, class_agnostic=class_agnostic)
    boxes = np.array([[d.x, d.y, d.w, d.h] for d in detections], dtype=np.float64)
    scores = np.array([d.confidence for d in detections], dtype=np.float64)

    if cfg.class_agnostic:
        keep = nms_indices(boxes, scores, cfg)
    else:
        class_ids = np.array([d.class_index for d in detections], dtype=np.int64)
        keep = _per_class_indices(boxes, scores, class_ids, cfg)

    return [detections[int(i)] for i in keep]
