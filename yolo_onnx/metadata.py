from __future__ import annotations

from pathlib import Path
from typing import Dict, List, Union

from .types import ClassCatalog

PathLike = Union[str, Path]


def load_class_names(metadata_path: PathLike) -> Dict[int, str]:
    """
    Load class names from a lightweight `metadata.yaml` as written by YOLO exports:

        names:
          0: bateria_12v
          1: cmos_battery
          ...

    Parsed by hand to avoid a PyYAML dependency.
    """

    names: Dict[int, str] = {}
    in_names = False

    with open(metadata_path, "r", encoding="utf-8") as f:
        for raw in f:
            line = raw.strip()
            if not line or line.startswith("#"):
                continue
            if line == "names:":
                in_names = True
                continue
            if not in_names:
                continue
            # A new top-level key ends the names block.
            if not raw[:1].isspace() and not line.split(":", 1)[0].strip().isdigit():
                break

            # Parse "id: label"
            if ":" not in line:
                continue
            left, right = line.split(":", 1)
            left = left.strip()
            right = right.strip().strip("'").strip('"')
            if not left.isdigit():
                continue
            names[int(left)] = right

    return names


def load_class_catalog(path: PathLike) -> ClassCatalog:
    """
    Build a ClassCatalog from either a metadata.yaml `names:` block or a plain
    text file with one class name per line.
    """

    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Class list not found: {p}")

    if p.suffix.lower() in {".yaml", ".yml"}:
        mapping = load_class_names(p)
        if not mapping:
            raise ValueError(f"No `names:` entries found in {p}")
        ids = sorted(mapping)
        if ids != list(range(len(ids))):
            raise ValueError(f"Class ids in {p} must be contiguous from 0, got {ids}")
        return ClassCatalog([mapping[i] for i in ids])

    lines: List[str] = []
    for raw in p.read_text(encoding="utf-8").splitlines():
        line = raw.strip()
        if line and not line.startswith("#"):
            lines.append(line)
    return ClassCatalog(lines)
