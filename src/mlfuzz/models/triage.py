# Copyright (c) Syntropy Systems
"""Pydantic models for a triage session's summary.json."""

from __future__ import annotations

from pydantic import Field

from .base import MlfuzzBaseModel


class TriageAttemptRecord(MlfuzzBaseModel):
    """One reproduction attempt."""

    attempt: int
    result: str
    signature_top3: list[str] = Field(default_factory=list)


class TriageSummary(MlfuzzBaseModel):
    """Outcome of a triage session."""

    triage_id: str
    target: str
    input: str
    repro_retries: int
    timeout_sec: int
    success_count: int
    failed_count: int
    timeout_count: int
    signature_consistent: bool
    verdict: str
    attempts: list[TriageAttemptRecord] = Field(default_factory=list)
