"""
YOLO (ONNX export) detection helpers: letterbox pre-processing, planar tensor
packing, output decoding and NMS.

Works on NumPy arrays; OpenCV does the resizing and drawing and ONNX Runtime is
only needed by `load_pipeline()`.
"""

from .types import ClassCatalog, Detection, DetectionResult, LetterboxGeometry, RawOutput
from .errors import DecodeError
from .letterbox import compute_letterbox, letterbox
from .tensor import TensorPacker, pack_image
from .decode import DecoderConfig, DetectionDecoder, OutputLayout, decode_output, normalize_output, resolve_layout
from .nms import NMSConfig, iou, nms, nms_indices
from .config import DetectorConfig, load_detector_config
from .metadata import load_class_catalog, load_class_names
from .runtime import DetectionPipeline, FrameStride, class_counts, load_pipeline, pipeline_from_config, resolve_path
from .visualize import ColorTable, draw_detections

__all__ = [
    "ClassCatalog",
    "Detection",
    "DetectionResult",
    "LetterboxGeometry",
    "RawOutput",
    "DecodeError",
    "compute_letterbox",
    "letterbox",
    "TensorPacker",
    "pack_image",
    "DecoderConfig",
    "DetectionDecoder",
    "OutputLayout",
    "decode_output",
    "normalize_output",
    "resolve_layout",
    "NMSConfig",
    "iou",
    "nms",
    "nms_indices",
    "DetectorConfig",
    "load_detector_config",
    "load_class_catalog",
    "load_class_names",
    "DetectionPipeline",
    "FrameStride",
    "class_counts",
    "load_pipeline",
    "pipeline_from_config",
    "resolve_path",
    "ColorTable",
    "draw_detections",
]
