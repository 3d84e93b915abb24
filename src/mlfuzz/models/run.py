# Copyright (c) Syntropy Systems
"""Pydantic model for a bulk run's status.json."""

from __future__ import annotations

from .base import MlfuzzBaseModel


class RunStatus(MlfuzzBaseModel):
    """Aggregate outcome of one bulk run, written once after every worker joined."""

    run_id: str
    target: str
    total: int
    success: int
    failed: int
    timeout: int
    retries: int
    workers: int
    timeout_sec: int
    restart_limit: int
