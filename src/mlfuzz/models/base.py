# Copyright (c) Syntropy Systems
"""Shared Pydantic model helpers for mlfuzz."""

from __future__ import annotations

from typing import ClassVar

from pydantic import BaseModel, ConfigDict


class MlfuzzBaseModel(BaseModel):
    """Base model with shared config for mlfuzz records."""

    model_config: ClassVar[ConfigDict] = ConfigDict(
        extra="ignore",
        populate_by_name=True,
        use_enum_values=True,
    )
