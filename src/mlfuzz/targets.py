# Copyright (c) Syntropy Systems
"""Target model formats."""
from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    from pathlib import Path


class TargetKind(str, Enum):
    """The closed set of formats mlfuzz knows how to exercise."""

    GGUF = "gguf"
    ONNX = "onnx"
    SAFETENSORS = "safetensors"

    @property
    def extension(self) -> str:
        """Corpus file extension for this format, lower case with dot."""
        return f".{self.value}"

    @property
    def reference_module(self) -> str:
        """Import name of the upstream Python implementation."""
        return self.value

    def matches(self, path: Path) -> bool:
        """Check whether a path carries this format's extension, any case."""
        return path.suffix.lower() == self.extension

    @classmethod
    def from_path(cls, path: Path) -> Optional[TargetKind]:
        """Guess the target from a file extension."""
        for kind in cls:
            if kind.matches(path):
                return kind
        return None
