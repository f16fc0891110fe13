from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple, Union

import numpy as np

from .config import DetectorConfig
from .decode import DecoderConfig, DetectionDecoder
from .letterbox import check_image, compute_letterbox
from .nms import nms
from .tensor import TensorPacker
from .types import ClassCatalog, Detection, DetectionResult, LetterboxGeometry, RawOutput

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]
InferOutput = Union[RawOutput, np.ndarray, Tuple[np.ndarray, Sequence[int]]]


def find_project_root(
    start: Optional[PathLike] = None,
    markers: Sequence[str] = ("pyproject.toml", ".git"),
) -> Path:
    """
    Best-effort project root discovery, so `models/best.onnx` resolves the same
    way no matter which directory a script is launched from.
    """

    p = Path(start) if start is not None else Path.cwd()
    p = p.resolve()

    # If a file is provided, start from its directory.
    if p.is_file():
        p = p.parent

    for parent in (p, *p.parents):
        for m in markers:
            if (parent / m).exists():
                return parent
    return p


def resolve_path(path: PathLike, root: Optional[PathLike] = "auto") -> Path:
    """
    Resolve `path` to an absolute Path.

    - Absolute paths are returned as-is.
    - Relative paths are resolved against `root` if provided, else the project root.
    """

    p = Path(path)
    if p.is_absolute():
        return p

    if root == "auto" or root is None:
        base = find_project_root()
    else:
        base = Path(root).resolve()

    return (base / p).resolve()


def to_raw_output(out: InferOutput) -> RawOutput:
    """
    Accept the usual collaborator return types: RawOutput, (buffer, shape) or ndarray.
    """

    if isinstance(out, RawOutput):
        return out
    if isinstance(out, tuple) and len(out) == 2:
        data, shape = out
        return RawOutput(data=np.asarray(data), shape=None if shape is None else tuple(shape))
    if isinstance(out, (list, tuple)) and out and isinstance(out[0], np.ndarray):
        # Session.run() style list of outputs: take the primary one.
        return RawOutput.from_array(out[0])
    return RawOutput.from_array(np.asarray(out))


def class_counts(detections: Iterable[Detection], catalog: ClassCatalog) -> Dict[str, int]:
    """
    Occurrences per class name, in catalog order, for classes that appear at least once.
    """

    counts = Counter(det.class_index for det in detections)
    return {catalog.name_for(idx): counts[idx] for idx in range(len(catalog)) if counts.get(idx)}


class FrameStride:
    """
    Frame-selection policy for live sources: process one frame out of every `stride`.

    Sits above the pipeline; the pipeline itself always processes what it is given.
    """

    def __init__(self, stride: int = 1):
        if stride < 1:
            raise ValueError(f"stride must be >= 1, got {stride}")
        self.stride = int(stride)
        self._counter = 0

    def should_process(self) -> bool:
        self._counter += 1
        return self._counter % self.stride == 0

    def reset(self) -> None:
        self._counter = 0


@dataclass(frozen=True)
class PreprocessResult:
    blob: np.ndarray
    geometry: LetterboxGeometry


class DetectionPipeline:
    """
    Plug-and-play pipeline: letterbox -> pack -> inference -> decode -> NMS.

    Images are RGB(A) `np.ndarray`s; results are in source image pixels. The input
    buffer is reused between calls, so a pipeline instance must not be called from
    several threads at once.
    """

    def __init__(
        self,
        infer_fn: Callable[[np.ndarray], InferOutput],
        catalog: ClassCatalog,
        *,
        model_size: int = 640,
        decoder_cfg: DecoderConfig = DecoderConfig(),
        iou_threshold: float = 0.45,
        class_agnostic_nms: bool = True,
        backend: Optional[object] = None,
    ):
        self._infer_fn = infer_fn
        self.catalog = catalog
        self.model_size = int(model_size)
        self.decoder = DetectionDecoder(catalog, decoder_cfg)
        self.iou_threshold = iou_threshold
        self.class_agnostic_nms = class_agnostic_nms
        self.backend = backend
        self._packer = TensorPacker(self.model_size)

    @property
    def conf_threshold(self) -> float:
        return self.decoder.cfg.conf_threshold

    def preprocess(self, image: np.ndarray) -> PreprocessResult:
        image = check_image(image)
        h, w = image.shape[:2]
        geometry = compute_letterbox(w, h, self.model_size)
        buf = self._packer.pack(image, geometry)
        return PreprocessResult(blob=self._packer.as_nchw(buf), geometry=geometry)

    def postprocess(self, raw: RawOutput, geometry: LetterboxGeometry) -> List[Detection]:
        detections = self.decoder.decode(raw, geometry)
        return nms(detections, iou_threshold=self.iou_threshold, class_agnostic=self.class_agnostic_nms)

    def __call__(self, image: np.ndarray) -> DetectionResult:
        prep = self.preprocess(image)
        raw = to_raw_output(self._infer_fn(prep.blob))
        kept = self.postprocess(raw, prep.geometry)
        logger.debug("Kept %d detections at conf>=%.2f", len(kept), self.conf_threshold)
        return DetectionResult(detections=kept, geometry=prep.geometry, counts=class_counts(kept, self.catalog))


def pipeline_from_config(
    cfg: DetectorConfig,
    infer_fn: Callable[[np.ndarray], InferOutput],
    backend: Optional[object] = None,
) -> DetectionPipeline:
    return DetectionPipeline(
        infer_fn,
        cfg.catalog,
        model_size=cfg.model_size,
        decoder_cfg=DecoderConfig(
            conf_threshold=cfg.conf_threshold,
            has_objectness=cfg.has_objectness,
            apply_sigmoid=cfg.apply_sigmoid,
        ),
        iou_threshold=cfg.iou_threshold,
        class_agnostic_nms=cfg.class_agnostic_nms,
        backend=backend,
    )


def load_pipeline(
    cfg: DetectorConfig = DetectorConfig(),
    *,
    root: Optional[PathLike] = "auto",
    input_name: Optional[str] = None,
    output_name: Optional[str] = None,
) -> DetectionPipeline:
    """
    Create a pipeline backed by ONNX Runtime for the model named in `cfg`.

    Typical usage:
        pipe = load_pipeline(DetectorConfig(model_path="models/best.onnx", model_size=416))

    Args:
        cfg: detector settings; relative `model_path` resolves against the project root by default
        root: base directory for resolving relative model paths ("auto" uses best-effort project root)
    """

    from .backends.onnxruntime_backend import OnnxRuntimeBackend, OnnxRuntimeBackendConfig

    resolved = resolve_path(cfg.model_path, root=root)
    if resolved.suffix.lower() != ".onnx":
        raise ValueError(f"Expected an .onnx model, got '{resolved.name}'")

    ort_backend = OnnxRuntimeBackend(
        resolved,
        OnnxRuntimeBackendConfig(
            providers=cfg.providers,
            input_name=input_name,
            output_name=output_name,
        ),
    )
    return pipeline_from_config(cfg, ort_backend.infer, backend=ort_backend)
