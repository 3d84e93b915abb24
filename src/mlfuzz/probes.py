# Copyright (c) Syntropy Systems
"""Optional cross-validation probes run from inside the harness child.

Both probes are informational. Whatever they report, the harness exit status
only depends on the precheck and the structural walk.
"""
from __future__ import annotations

import logging
import shlex
import shutil
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from mlfuzz.targets import TargetKind

logger = logging.getLogger(__name__)

# Exit status the reference snippets use for "library not installed"
PROBE_SKIP_EXIT = 77

_SKIP_PREAMBLE = """\
import importlib.util, sys
if importlib.util.find_spec({module!r}) is None:
    print("{module} not installed")
    sys.exit({skip})
"""

_REFERENCE_SNIPPETS = {
    TargetKind.GGUF: """\
import gguf
reader = gguf.GGUFReader(sys.argv[1])
print(f"gguf reader fields={len(reader.fields)} tensors={len(reader.tensors)}")
""",
    TargetKind.ONNX: """\
import onnx
model = onnx.load(sys.argv[1])
onnx.checker.check_model(model)
print(f"onnx checker ok ir_version={model.ir_version} nodes={len(model.graph.node)}")
""",
    TargetKind.SAFETENSORS: """\
from safetensors import safe_open
with safe_open(sys.argv[1], framework="numpy") as f:
    names = list(f.keys())
    for name in names:
        f.get_slice(name).get_shape()
print(f"safetensors safe_open ok tensors={len(names)}")
""",
}


@dataclass(frozen=True)
class ProbeResult:
    """What a probe reported, folded into one report line."""

    status: str  # skipped, exit, timeout, error
    detail: str = ""
    exit_code: Optional[int] = None

    def render(self) -> str:
        if self.status == "exit":
            return f"exit={self.exit_code} {self.detail}".rstrip()
        if self.detail:
            return f"{self.status} ({self.detail})"
        return self.status


def first_line(*texts: str) -> str:
    """First non-empty line across the given outputs, stripped."""
    for text in texts:
        for line in text.splitlines():
            if line.strip():
                return line.strip()
    return ""


def _run_probe(argv: list[str], timeout: float) -> ProbeResult:
    logger.debug("Running probe: %s", argv)
    try:
        proc = subprocess.run(  # noqa: S603
            argv,
            capture_output=True,
            text=True,
            errors="replace",
            timeout=timeout,
            check=False,
        )
    except subprocess.TimeoutExpired:
        return ProbeResult("timeout", f"after {timeout:g}s")
    except OSError as e:
        return ProbeResult("error", str(e))
    if proc.returncode == PROBE_SKIP_EXIT:
        return ProbeResult("skipped", first_line(proc.stdout))
    return ProbeResult("exit", first_line(proc.stdout, proc.stderr), proc.returncode)


def reference_probe_argv(
    target: TargetKind, python: str, input_path: Path
) -> list[str]:
    """Command that loads ``input_path`` with the upstream Python library."""
    module = target.reference_module
    code = _SKIP_PREAMBLE.format(module=module, skip=PROBE_SKIP_EXIT)
    code += _REFERENCE_SNIPPETS[target]
    return [python, "-c", code, str(input_path)]


def run_direct_probe(
    target: TargetKind,
    input_path: Path,
    python: Optional[str],
    timeout: float,
) -> ProbeResult:
    """Load the input with the reference implementation in a separate interpreter."""
    if not python:
        return ProbeResult("skipped", "no python runtime configured")
    resolved = shutil.which(python)
    if resolved is None:
        return ProbeResult("skipped", f"python runtime {python!r} not found")
    return _run_probe(reference_probe_argv(target, resolved, input_path), timeout)


def run_external_probe(
    command: Optional[str],
    input_path: Path,
    timeout: float,
) -> ProbeResult:
    """Run a user-configured probe command with the input path appended."""
    if not command or not command.strip():
        return ProbeResult("skipped", "not configured")
    try:
        argv = shlex.split(command)
    except ValueError as e:
        return ProbeResult("error", f"bad probe command: {e}")
    resolved = shutil.which(argv[0])
    if resolved is None:
        return ProbeResult("skipped", f"{argv[0]!r} not found")
    return _run_probe([resolved, *argv[1:], str(input_path)], timeout)


def reference_available(target: TargetKind, python: str, timeout: float = 10.0) -> bool:
    """Check whether ``python`` can import the upstream library for ``target``."""
    code = (
        "import importlib.util, sys\n"
        f"sys.exit(0 if importlib.util.find_spec({target.reference_module!r}) "
        f"else {PROBE_SKIP_EXIT})\n"
    )
    result = _run_probe([python, "-c", code], timeout)
    return result.status == "exit" and result.exit_code == 0
