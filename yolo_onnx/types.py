from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Sequence, Tuple

import numpy as np


@dataclass(frozen=True)
class LetterboxGeometry:
    """
    Scale-and-pad mapping from a source image into a square model input.

    `scale` is shared by both axes; the scaled image is centered, so `pad_x` /
    `pad_y` are half of the leftover slack and may be fractional.
    """

    scale: float
    padded_width: int
    padded_height: int
    pad_x: float
    pad_y: float
    source_width: int
    source_height: int
    target_size: int

    @property
    def ratio(self) -> Tuple[float, float]:
        return self.scale, self.scale

    @property
    def pad(self) -> Tuple[float, float]:
        return self.pad_x, self.pad_y


@dataclass(frozen=True)
class RawOutput:
    """
    Model output as handed back by the inference collaborator.

    `shape` is whatever the exporter declared (2 or 3 dims) and may be None.
    """

    data: np.ndarray
    shape: Optional[Tuple[int, ...]] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "data", np.asarray(self.data, dtype=np.float32).reshape(-1))
        if self.shape is not None:
            object.__setattr__(self, "shape", tuple(int(d) for d in self.shape))

    @classmethod
    def from_array(cls, array: np.ndarray) -> "RawOutput":
        arr = np.asarray(array)
        return cls(data=arr, shape=tuple(arr.shape))

    @property
    def size(self) -> int:
        return int(self.data.size)


@dataclass
class Detection:
    """
    One decoded box in source-image pixels (top-left + size).
    """

    x: float
    y: float
    w: float
    h: float
    class_index: int
    confidence: float

    def as_xyxy(self) -> Tuple[float, float, float, float]:
        return self.x, self.y, self.x + self.w, self.y + self.h

    @property
    def area(self) -> float:
        return max(0.0, self.w) * max(0.0, self.h)

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.w / 2, self.y + self.h / 2


class ClassCatalog:
    """
    Fixed, ordered class names; a detection's `class_index` points into it.
    """

    def __init__(self, names: Sequence[str]):
        cleaned = tuple(str(n) for n in names)
        if not cleaned:
            raise ValueError("ClassCatalog needs at least one class name")
        if any(not n.strip() for n in cleaned):
            raise ValueError("ClassCatalog names must be non-empty strings")
        dupes = sorted({n for n in cleaned if cleaned.count(n) > 1})
        if dupes:
            raise ValueError(f"Duplicate class names: {dupes}")
        self._names = cleaned

    @property
    def names(self) -> Tuple[str, ...]:
        return self._names

    def __len__(self) -> int:
        return len(self._names)

    def __getitem__(self, index: int) -> str:
        return self._names[index]

    def __iter__(self) -> Iterator[str]:
        return iter(self._names)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ClassCatalog):
            return NotImplemented
        return self._names == other._names

    def __hash__(self) -> int:
        return hash(self._names)

    def __repr__(self) -> str:
        return f"ClassCatalog({list(self._names)!r})"

    def name_for(self, index: int) -> str:
        if not 0 <= index < len(self._names):
            raise IndexError(f"class index {index} outside catalog of {len(self._names)} classes")
        return self._names[index]


@dataclass
class DetectionResult:
    detections: List[Detection]
    geometry: LetterboxGeometry
    counts: Dict[str, int] = field(default_factory=dict)

    def __len__(self) -> int:
        return len(self.detections)
