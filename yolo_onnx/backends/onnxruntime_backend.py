from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Union

import numpy as np

from ..types import RawOutput

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]

_OPT_LEVELS = {
    "disable": "ORT_DISABLE_ALL",
    "basic": "ORT_ENABLE_BASIC",
    "extended": "ORT_ENABLE_EXTENDED",
    "all": "ORT_ENABLE_ALL",
}


@dataclass(frozen=True)
class OnnxRuntimeBackendConfig:
    """
    Configuration for ONNX Runtime inference.

    - providers: ORT execution providers in preference order; unavailable ones are
      dropped and CPUExecutionProvider is always kept as the last fallback
    - input_name/output_name: override auto-selected I/O names if needed
    - graph_optimization: one of disable/basic/extended/all
    - intra_op_threads: 0 lets ORT decide
    """

    providers: Optional[Sequence[str]] = None
    input_name: Optional[str] = None
    output_name: Optional[str] = None
    graph_optimization: str = "all"
    intra_op_threads: int = 0

    def __post_init__(self) -> None:
        if self.graph_optimization not in _OPT_LEVELS:
            raise ValueError(
                f"graph_optimization must be one of {sorted(_OPT_LEVELS)}, got {self.graph_optimization!r}"
            )
        if self.intra_op_threads < 0:
            raise ValueError("intra_op_threads must be >= 0")


def select_providers(requested: Optional[Sequence[str]], available: Sequence[str]) -> Optional[List[str]]:
    """
    Keep the requested providers ORT can actually use, CPU last.

    Returns None when nothing was requested so ORT applies its own default.
    """

    if requested is None:
        return None
    chosen: List[str] = []
    for name in requested:
        if name in available:
            if name not in chosen:
                chosen.append(name)
        else:
            logger.warning("Execution provider %s is not available, skipping", name)
    if "CPUExecutionProvider" not in chosen:
        chosen.append("CPUExecutionProvider")
    return chosen


class OnnxRuntimeBackend:
    """
    Minimal ONNX Runtime backend.

    Expects an NCHW float32 blob shaped (1, 3, H, W).
    Returns the primary output as a RawOutput (flat data + declared shape).
    """

    def __init__(self, model_path: PathLike, cfg: OnnxRuntimeBackendConfig = OnnxRuntimeBackendConfig()):
        try:
            import onnxruntime as ort  # type: ignore
        except Exception as e:  # pragma: no cover
            raise ImportError(
                "onnxruntime is required for the ONNX backend. Install it with `pip install onnxruntime` "
                "(or `onnxruntime-gpu`)."
            ) from e

        self._ort = ort
        self.model_path = Path(model_path)
        if not self.model_path.exists():
            raise FileNotFoundError(str(self.model_path))

        sess_opts = ort.SessionOptions()
        sess_opts.graph_optimization_level = getattr(ort.GraphOptimizationLevel, _OPT_LEVELS[cfg.graph_optimization])
        if cfg.intra_op_threads:
            sess_opts.intra_op_num_threads = int(cfg.intra_op_threads)

        providers = select_providers(cfg.providers, ort.get_available_providers())
        self.session = ort.InferenceSession(str(self.model_path), sess_options=sess_opts, providers=providers)
        logger.info("Loaded %s with providers %s", self.model_path, list(self.session.get_providers()))

        self.input_name = cfg.input_name or self.session.get_inputs()[0].name
        # If output_name not provided, pick first output.
        self.output_name = cfg.output_name or self.session.get_outputs()[0].name

    @property
    def providers_in_use(self) -> Sequence[str]:
        # ORT returns providers in priority order for this session.
        return tuple(self.session.get_providers())

    @property
    def available_providers(self) -> Sequence[str]:
        return tuple(self._ort.get_available_providers())

    def infer(self, blob: np.ndarray, extra_inputs: Optional[Dict[str, Any]] = None) -> RawOutput:
        inputs: Dict[str, Any] = {self.input_name: np.asarray(blob, dtype=np.float32)}
        if extra_inputs:
            inputs.update(extra_inputs)
        outputs = self.session.run([self.output_name], inputs)
        return RawOutput.from_array(outputs[0])
