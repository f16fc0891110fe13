from __future__ import annotations

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from .types import ClassCatalog

MODEL_SIZE_OPTIONS: Tuple[int, ...] = (320, 416, 512, 640)
FRAME_STRIDE_OPTIONS: Tuple[int, ...] = (1, 2, 3)
CONF_RANGE: Tuple[float, float] = (0.1, 0.9)

DEFAULT_CLASS_NAMES: Tuple[str, ...] = (
    "bateria_12v",
    "cmos_battery",
    "cpu",
    "cpu_socket",
    "placa_rede_wifi",
    "ram_slot",
    "sata_or_m2",
)


@dataclass(frozen=True)
class DetectorConfig:
    model_path: str = "models/best.onnx"
    model_size: int = 640
    conf_threshold: float = 0.35
    iou_threshold: float = 0.45
    class_names: Tuple[str, ...] = DEFAULT_CLASS_NAMES
    has_objectness: Optional[bool] = None
    apply_sigmoid: bool = False
    class_agnostic_nms: bool = True
    frame_stride: int = 1
    providers: Optional[Tuple[str, ...]] = field(default=None)

    def __post_init__(self) -> None:
        if not self.model_path.strip():
            raise ValueError("model_path must be a non-empty string")
        if self.model_size not in MODEL_SIZE_OPTIONS:
            raise ValueError(f"model_size must be one of {list(MODEL_SIZE_OPTIONS)}, got {self.model_size}")
        lo, hi = CONF_RANGE
        if not lo <= self.conf_threshold <= hi:
            raise ValueError(f"conf_threshold must be in [{lo}, {hi}], got {self.conf_threshold}")
        if not 0.0 < self.iou_threshold < 1.0:
            raise ValueError(f"iou_threshold must be in (0, 1), got {self.iou_threshold}")
        if self.frame_stride not in FRAME_STRIDE_OPTIONS:
            raise ValueError(f"frame_stride must be one of {list(FRAME_STRIDE_OPTIONS)}, got {self.frame_stride}")
        # Raises on empty/duplicate names.
        ClassCatalog(self.class_names)

    @property
    def catalog(self) -> ClassCatalog:
        return ClassCatalog(self.class_names)


def _require_number(payload: Dict[str, Any], key: str) -> float:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"{key} must be a number")
    return float(value)


def _require_int(payload: Dict[str, Any], key: str) -> int:
    value = payload[key]
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{key} must be an integer")
    return int(value)


def _require_bool(payload: Dict[str, Any], key: str) -> bool:
    value = payload[key]
    if not isinstance(value, bool):
        raise ValueError(f"{key} must be a boolean")
    return value


def _require_str_list(payload: Dict[str, Any], key: str) -> Tuple[str, ...]:
    value = payload[key]
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"{key} must be a list of strings")
    cleaned = [item.strip() for item in value]
    if not cleaned or any(not item for item in cleaned):
        raise ValueError(f"{key} must not be empty or contain empty strings")
    return tuple(cleaned)


def detector_config_from_dict(payload: Dict[str, Any]) -> DetectorConfig:
    allowed = {
        "model_path",
        "model_size",
        "conf_threshold",
        "iou_threshold",
        "class_names",
        "has_objectness",
        "apply_sigmoid",
        "class_agnostic_nms",
        "frame_stride",
        "providers",
    }
    unknown = sorted(set(payload.keys()) - allowed)
    if unknown:
        raise ValueError(f"Unknown detector config keys: {unknown}")

    kwargs: Dict[str, Any] = {}
    if "model_path" in payload:
        value = payload["model_path"]
        if not isinstance(value, str) or not value.strip():
            raise ValueError("model_path must be a non-empty string")
        kwargs["model_path"] = value
    if "model_size" in payload:
        kwargs["model_size"] = _require_int(payload, "model_size")
    if "conf_threshold" in payload:
        kwargs["conf_threshold"] = _require_number(payload, "conf_threshold")
    if "iou_threshold" in payload:
        kwargs["iou_threshold"] = _require_number(payload, "iou_threshold")
    if "class_names" in payload:
        kwargs["class_names"] = _require_str_list(payload, "class_names")
    if payload.get("has_objectness") is not None:
        kwargs["has_objectness"] = _require_bool(payload, "has_objectness")
    if "apply_sigmoid" in payload:
        kwargs["apply_sigmoid"] = _require_bool(payload, "apply_sigmoid")
    if "class_agnostic_nms" in payload:
        kwargs["class_agnostic_nms"] = _require_bool(payload, "class_agnostic_nms")
    if "frame_stride" in payload:
        kwargs["frame_stride"] = _require_int(payload, "frame_stride")
    if payload.get("providers") is not None:
        kwargs["providers"] = _require_str_list(payload, "providers")

    return DetectorConfig(**kwargs)


def load_detector_config(path: Path) -> DetectorConfig:
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Detector config not found: {path}")
    raw = path.read_text(encoding="utf-8")
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise ValueError(f"Invalid detector config JSON: {path}") from exc
    if not isinstance(payload, dict):
        raise ValueError("Detector config must be a JSON object")
    return detector_config_from_dict(payload)
