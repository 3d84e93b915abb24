# Copyright (c) Syntropy Systems
"""Header validators for GGUF, ONNX and safetensors.

Every function here takes an immutable ``bytes`` buffer straight from a
fuzzer and must never index past its end or trust a length field before
comparing it to the buffer size. Malformed input raises ``PrecheckError``.
"""
from __future__ import annotations

import struct
from dataclasses import dataclass

from mlfuzz.errors import PrecheckError
from mlfuzz.targets import TargetKind

GGUF_MAGIC = b"GGUF"
GGUF_HEADER_SIZE = 24
ONNX_IR_VERSION_TAG = 0x08
SAFETENSORS_PREFIX_SIZE = 8
VARINT_MAX_SHIFT = 64
U64_LIMIT = 1 << 64

_GGUF_HEADER = struct.Struct("<4sIQQ")


@dataclass(frozen=True)
class GgufHeader:
    """Fixed GGUF header fields."""

    version: int
    tensor_count: int
    kv_count: int


def parse_gguf_header(data: bytes) -> GgufHeader:
    """Decode the 24-byte GGUF header."""
    if len(data) < GGUF_HEADER_SIZE:
        msg = f"too small for GGUF header ({len(data)} < {GGUF_HEADER_SIZE} bytes)"
        raise PrecheckError(msg)
    magic, version, tensor_count, kv_count = _GGUF_HEADER.unpack_from(data, 0)
    if magic != GGUF_MAGIC:
        msg = f"bad GGUF magic {magic!r}"
        raise PrecheckError(msg)
    return GgufHeader(version=version, tensor_count=tensor_count, kv_count=kv_count)


def check_gguf(data: bytes) -> str:
    header = parse_gguf_header(data)
    return (
        f"gguf header version={header.version} "
        f"kv_count={header.kv_count} tensor_count={header.tensor_count}"
    )


def decode_varint(data: bytes, offset: int = 0) -> tuple[int, int]:
    """Decode a protobuf base-128 varint.

    Returns ``(value, consumed)``. Raises ``PrecheckError`` when the buffer
    ends while the continuation bit is still set, or when the value does not
    fit in 64 bits.
    """
    value = 0
    shift = 0
    pos = offset
    while pos < len(data):
        if shift >= VARINT_MAX_SHIFT:
            msg = f"varint too large at offset {offset}"
            raise PrecheckError(msg)
        byte = data[pos]
        value |= (byte & 0x7F) << shift
        pos += 1
        if not byte & 0x80:
            if value >= U64_LIMIT:
                msg = f"varint too large at offset {offset}"
                raise PrecheckError(msg)
            return value, pos - offset
        shift += 7
    msg = f"varint truncated at offset {offset}"
    raise PrecheckError(msg)


def parse_onnx_ir_version(data: bytes) -> int:
    """Read the leading ``ir_version`` field of a serialized ModelProto."""
    if not data:
        msg = "too small for ONNX model (empty file)"
        raise PrecheckError(msg)
    tag, consumed = decode_varint(data, 0)
    if tag != ONNX_IR_VERSION_TAG:
        msg = f"unexpected first field tag 0x{tag:x} (expected ir_version 0x08)"
        raise PrecheckError(msg)
    ir_version, _ = decode_varint(data, consumed)
    return ir_version


def check_onnx(data: bytes) -> str:
    return f"onnx ir_version={parse_onnx_ir_version(data)}"


def parse_safetensors_header(data: bytes) -> tuple[int, str]:
    """Return ``(header_len, header_text)`` after minimal sanity checks."""
    if len(data) < SAFETENSORS_PREFIX_SIZE:
        msg = (
            f"too small for safetensors prefix "
            f"({len(data)} < {SAFETENSORS_PREFIX_SIZE} bytes)"
        )
        raise PrecheckError(msg)
    (header_len,) = struct.unpack_from("<Q", data, 0)
    if header_len == 0:
        msg = "safetensors header length is zero"
        raise PrecheckError(msg)
    end = SAFETENSORS_PREFIX_SIZE + header_len
    # Python ints do not wrap, so overflow shows up as a value past u64.
    if end >= U64_LIMIT:
        msg = f"safetensors header length {header_len} overflows"
        raise PrecheckError(msg)
    if end > len(data):
        msg = (
            f"safetensors header length {header_len} exceeds file size "
            f"{len(data)}"
        )
        raise PrecheckError(msg)
    try:
        text = data[SAFETENSORS_PREFIX_SIZE:end].decode("utf-8")
    except UnicodeDecodeError as e:
        msg = f"safetensors header is not valid UTF-8: {e.reason} at {e.start}"
        raise PrecheckError(msg) from e
    trimmed = text.strip()
    if not (trimmed.startswith("{") and trimmed.endswith("}")):
        msg = "safetensors header is not a JSON object"
        raise PrecheckError(msg)
    if ":" not in trimmed:
        msg = "safetensors header has no key/value pairs"
        raise PrecheckError(msg)
    return header_len, text


def check_safetensors(data: bytes) -> str:
    header_len, _ = parse_safetensors_header(data)
    return f"safetensors header_len={header_len}"


_CHECKS = {
    TargetKind.GGUF: check_gguf,
    TargetKind.ONNX: check_onnx,
    TargetKind.SAFETENSORS: check_safetensors,
}


def precheck(target: TargetKind, data: bytes) -> str:
    """Run the header validator for ``target``."""
    return _CHECKS[target](data)
