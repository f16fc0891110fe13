"""
Optional inference backends for yolo_onnx.

Backends are kept in a separate module so core functionality (pre/post-processing)
stays lightweight and can be used without installing inference runtimes.
"""

from __future__ import annotations

__all__ = []
