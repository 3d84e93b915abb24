# Copyright (c) Syntropy Systems
"""Pytest fixtures for mlfuzz tests."""

from __future__ import annotations

import json
import struct
import tempfile
import threading
import time
from collections.abc import Generator
from pathlib import Path
from typing import Callable, Optional

import pytest

from mlfuzz.runner import HarnessExecResult, HarnessOutcome, ResultKind, summarize


def build_gguf(
    version: int = 3,
    kv: Optional[list[tuple[str, int, bytes]]] = None,
    tensors: Optional[list[tuple[str, list[int], int, int]]] = None,
) -> bytes:
    """Serialize a GGUF file. ``kv`` holds (key, value_type, encoded value)."""
    kv = kv or []
    tensors = tensors or []
    out = b"GGUF" + struct.pack("<IQQ", version, len(tensors), len(kv))
    for key, value_type, encoded in kv:
        raw = key.encode()
        out += struct.pack("<Q", len(raw)) + raw + struct.pack("<I", value_type) + encoded
    for name, dims, ggml_type, offset in tensors:
        raw = name.encode()
        out += struct.pack("<Q", len(raw)) + raw + struct.pack("<I", len(dims))
        out += b"".join(struct.pack("<Q", d) for d in dims)
        out += struct.pack("<IQ", ggml_type, offset)
    return out


def gguf_string(value: str) -> bytes:
    raw = value.encode()
    return struct.pack("<Q", len(raw)) + raw


def encode_varint(value: int) -> bytes:
    out = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value:
            out.append(byte | 0x80)
        else:
            out.append(byte)
            return bytes(out)


def build_safetensors(header: object, data: bytes = b"", pad: str = "") -> bytes:
    raw = (json.dumps(header) + pad).encode()
    return struct.pack("<Q", len(raw)) + raw + data


def make_outcome(
    kind: ResultKind,
    stdout: str = "",
    stderr: str = "",
) -> HarnessOutcome:
    """Build a harness outcome without spawning anything."""
    exit_code = {ResultKind.SUCCESS: 0, ResultKind.FAILED: 1, ResultKind.TIMEOUT: 124}[kind]
    return HarnessOutcome(
        result=HarnessExecResult(kind, summarize(stdout, stderr)),
        stdout=stdout,
        stderr=stderr,
        exit_code=exit_code,
        duration=0.0,
    )


class ScriptedExecutor:
    """Executor stand-in returning scripted results per input file name.

    Inputs without a script always succeed. Thread-safe, records every call.
    """

    def __init__(
        self,
        scripts: Optional[dict[str, list[HarnessOutcome]]] = None,
        delay: float = 0.0,
    ) -> None:
        self.scripts = {k: list(v) for k, v in (scripts or {}).items()}
        self.delay = delay
        self.calls: list[tuple[str, str]] = []
        self._lock = threading.Lock()

    def execute(self, target, input_path: Path) -> HarnessOutcome:
        with self._lock:
            self.calls.append((input_path.name, threading.current_thread().name))
            script = self.scripts.get(input_path.name)
            outcome = script.pop(0) if script else make_outcome(ResultKind.SUCCESS, "ok")
        if self.delay:
            time.sleep(self.delay)
        return outcome


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for testing."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def data_dir(temp_dir: Path) -> Path:
    """Empty mlfuzz data directory."""
    path = temp_dir / "data"
    path.mkdir()
    return path


@pytest.fixture
def corpus_dir(temp_dir: Path) -> Path:
    """Empty corpus directory."""
    path = temp_dir / "corpus"
    path.mkdir()
    return path


@pytest.fixture
def make_corpus(corpus_dir: Path) -> Callable[[dict[str, bytes]], Path]:
    """Write files into the corpus directory and return it."""

    def _make(files: dict[str, bytes]) -> Path:
        for name, content in files.items():
            _ = (corpus_dir / name).write_bytes(content)
        return corpus_dir

    return _make
