# Copyright (c) Syntropy Systems
"""Pydantic model for a pinned reference library's meta.json."""

from __future__ import annotations

from typing import Optional

from .base import MlfuzzBaseModel


class TargetMeta(MlfuzzBaseModel):
    """Record left by the asset preparer under ``targets/<kind>/meta.json``."""

    schema_version: int
    target: str
    version: str
    source_url: str
    source_kind: str
    downloaded_file: str
    downloaded_sha256: str
    downloaded_size_bytes: Optional[int] = None
