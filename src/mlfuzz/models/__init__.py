# Copyright (c) Syntropy Systems
"""Pydantic models for records mlfuzz persists."""

from .run import RunStatus
from .target import TargetMeta
from .triage import TriageAttemptRecord, TriageSummary

__all__ = ["RunStatus", "TargetMeta", "TriageAttemptRecord", "TriageSummary"]
