# Copyright (c) Syntropy Systems
"""Bounded structural walks that go past the fixed headers.

These run in the harness child after the header precheck passes. They parse
the whole metadata section of each format the way a loader would, but every
length is compared against the bytes remaining before anything is sliced.
"""
from __future__ import annotations

import json
import math
import struct
from typing import Callable

from mlfuzz.errors import PrecheckError
from mlfuzz.precheck import (
    GGUF_HEADER_SIZE,
    SAFETENSORS_PREFIX_SIZE,
    decode_varint,
    parse_gguf_header,
    parse_onnx_ir_version,
    parse_safetensors_header,
)
from mlfuzz.targets import TargetKind

GGUF_SUPPORTED_VERSIONS = (2, 3)
GGUF_MAX_DIMS = 4
GGUF_MAX_ARRAY_DEPTH = 4
GGML_TYPE_COUNT = 40

# gguf value type -> struct format for fixed-size scalars
GGUF_SCALAR_FORMATS = {
    0: "<B",  # uint8
    1: "<b",  # int8
    2: "<H",  # uint16
    3: "<h",  # int16
    4: "<I",  # uint32
    5: "<i",  # int32
    6: "<f",  # float32
    7: "<?",  # bool
    10: "<Q",  # uint64
    11: "<q",  # int64
    12: "<d",  # float64
}
GGUF_TYPE_STRING = 8
GGUF_TYPE_ARRAY = 9

SAFETENSORS_DTYPE_SIZES = {
    "BOOL": 1,
    "U8": 1,
    "I8": 1,
    "F8_E5M2": 1,
    "F8_E4M3": 1,
    "I16": 2,
    "U16": 2,
    "F16": 2,
    "BF16": 2,
    "I32": 4,
    "U32": 4,
    "F32": 4,
    "I64": 8,
    "U64": 8,
    "F64": 8,
}

ONNX_GRAPH_FIELD = 7
ONNX_OPSET_IMPORT_FIELD = 8


class _Reader:
    """Cursor over a byte buffer that refuses to read past the end."""

    def __init__(self, data: bytes, pos: int = 0) -> None:
        self.data = data
        self.pos = pos

    @property
    def remaining(self) -> int:
        return len(self.data) - self.pos

    def take(self, size: int, what: str) -> bytes:
        if size < 0 or size > self.remaining:
            msg = (
                f"truncated {what} at offset {self.pos} "
                f"(need {size}, have {self.remaining})"
            )
            raise PrecheckError(msg)
        chunk = self.data[self.pos:self.pos + size]
        self.pos += size
        return chunk

    def unpack(self, fmt: str, what: str) -> int | float | bool:
        size = struct.calcsize(fmt)
        (value,) = struct.unpack(fmt, self.take(size, what))
        return value

    def u32(self, what: str) -> int:
        return int(self.unpack("<I", what))

    def u64(self, what: str) -> int:
        return int(self.unpack("<Q", what))


def _gguf_string(reader: _Reader, what: str) -> str:
    length = reader.u64(f"{what} length")
    raw = reader.take(length, what)
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError as e:
        msg = f"{what} is not valid UTF-8"
        raise PrecheckError(msg) from e


def _gguf_value(reader: _Reader, value_type: int, key: str, depth: int) -> None:
    if value_type in GGUF_SCALAR_FORMATS:
        _ = reader.unpack(GGUF_SCALAR_FORMATS[value_type], f"value of {key!r}")
        return
    if value_type == GGUF_TYPE_STRING:
        _ = _gguf_string(reader, f"string value of {key!r}")
        return
    if value_type == GGUF_TYPE_ARRAY:
        if depth >= GGUF_MAX_ARRAY_DEPTH:
            msg = f"array nesting too deep in {key!r}"
            raise PrecheckError(msg)
        elem_type = reader.u32(f"array type of {key!r}")
        count = reader.u64(f"array length of {key!r}")
        # Smallest possible encoding of one element bounds the count.
        if elem_type in GGUF_SCALAR_FORMATS:
            min_size = struct.calcsize(GGUF_SCALAR_FORMATS[elem_type])
        elif elem_type == GGUF_TYPE_STRING:
            min_size = 8
        elif elem_type == GGUF_TYPE_ARRAY:
            min_size = 12
        else:
            msg = f"unknown array element type {elem_type} in {key!r}"
            raise PrecheckError(msg)
        if count * min_size > reader.remaining:
            msg = f"array length {count} of {key!r} exceeds remaining bytes"
            raise PrecheckError(msg)
        if elem_type in GGUF_SCALAR_FORMATS:
            _ = reader.take(count * min_size, f"array data of {key!r}")
            return
        for _i in range(count):
            _gguf_value(reader, elem_type, key, depth + 1)
        return
    msg = f"unknown value type {value_type} for {key!r}"
    raise PrecheckError(msg)


def walk_gguf(data: bytes) -> str:
    """Walk every metadata pair and tensor-info record of a GGUF file."""
    header = parse_gguf_header(data)
    if header.version not in GGUF_SUPPORTED_VERSIONS:
        msg = f"unsupported GGUF version {header.version}"
        raise PrecheckError(msg)
    reader = _Reader(data, GGUF_HEADER_SIZE)

    # key length + type + one byte of value is the smallest kv record
    if header.kv_count * 13 > reader.remaining:
        msg = f"kv_count {header.kv_count} exceeds remaining bytes"
        raise PrecheckError(msg)
    for index in range(header.kv_count):
        key = _gguf_string(reader, f"key #{index}")
        value_type = reader.u32(f"type of {key!r}")
        _gguf_value(reader, value_type, key, 0)

    # name length + n_dims + type + offset is the smallest tensor record
    if header.tensor_count * 24 > reader.remaining:
        msg = f"tensor_count {header.tensor_count} exceeds remaining bytes"
        raise PrecheckError(msg)
    for index in range(header.tensor_count):
        name = _gguf_string(reader, f"tensor #{index} name")
        n_dims = reader.u32(f"n_dims of {name!r}")
        if n_dims > GGUF_MAX_DIMS:
            msg = f"tensor {name!r} has {n_dims} dims (max {GGUF_MAX_DIMS})"
            raise PrecheckError(msg)
        dims = [reader.u64(f"dim of {name!r}") for _ in range(n_dims)]
        if math.prod(dims) >= 1 << 63:
            msg = f"tensor {name!r} element count overflows"
            raise PrecheckError(msg)
        ggml_type = reader.u32(f"type of {name!r}")
        if ggml_type >= GGML_TYPE_COUNT:
            msg = f"tensor {name!r} has unknown ggml type {ggml_type}"
            raise PrecheckError(msg)
        _ = reader.u64(f"offset of {name!r}")

    return (
        f"gguf walked {header.kv_count} kv pairs, "
        f"{header.tensor_count} tensors, {reader.remaining} data bytes"
    )


def walk_onnx(data: bytes) -> str:
    """Walk every top-level protobuf field of a ModelProto."""
    ir_version = parse_onnx_ir_version(data)
    pos = 0
    fields = 0
    has_graph = False
    opsets = 0
    while pos < len(data):
        key, consumed = decode_varint(data, pos)
        pos += consumed
        field_number, wire_type = key >> 3, key & 0x7
        if field_number == 0:
            msg = f"field number 0 at offset {pos - consumed}"
            raise PrecheckError(msg)
        if wire_type == 0:
            _, consumed = decode_varint(data, pos)
            pos += consumed
        elif wire_type == 1:
            pos += 8
        elif wire_type == 2:
            length, consumed = decode_varint(data, pos)
            pos += consumed + length
        elif wire_type == 5:
            pos += 4
        elif wire_type in (3, 4):
            msg = f"deprecated group wire type in field {field_number}"
            raise PrecheckError(msg)
        else:
            msg = f"invalid wire type {wire_type} in field {field_number}"
            raise PrecheckError(msg)
        if pos > len(data):
            msg = f"field {field_number} runs past end of file"
            raise PrecheckError(msg)
        fields += 1
        if field_number == ONNX_GRAPH_FIELD:
            has_graph = True
        elif field_number == ONNX_OPSET_IMPORT_FIELD:
            opsets += 1
    return (
        f"onnx ir_version={ir_version} fields={fields} "
        f"graph={'yes' if has_graph else 'no'} opsets={opsets}"
    )


def _is_shape(value: object) -> bool:
    return isinstance(value, list) and all(
        isinstance(d, int) and not isinstance(d, bool) and d >= 0 for d in value
    )


def walk_safetensors(data: bytes) -> str:
    """Parse the safetensors JSON header and check every tensor entry."""
    header_len, text = parse_safetensors_header(data)
    data_size = len(data) - SAFETENSORS_PREFIX_SIZE - header_len
    try:
        header = json.loads(text)
    except (ValueError, RecursionError) as e:
        msg = f"safetensors header is not valid JSON: {e}"
        raise PrecheckError(msg) from e
    if not isinstance(header, dict):
        msg = "safetensors header is not a JSON object"
        raise PrecheckError(msg)

    spans: list[tuple[int, int, str]] = []
    for name, entry in header.items():
        if name == "__metadata__":
            if not isinstance(entry, dict) or not all(
                isinstance(v, str) for v in entry.values()
            ):
                msg = "__metadata__ must map strings to strings"
                raise PrecheckError(msg)
            continue
        if not isinstance(entry, dict):
            msg = f"tensor {name!r} entry is not an object"
            raise PrecheckError(msg)
        dtype = entry.get("dtype")
        if not isinstance(dtype, str) or dtype not in SAFETENSORS_DTYPE_SIZES:
            msg = f"tensor {name!r} has unknown dtype {dtype!r}"
            raise PrecheckError(msg)
        shape = entry.get("shape")
        if not _is_shape(shape):
            msg = f"tensor {name!r} has invalid shape {shape!r}"
            raise PrecheckError(msg)
        offsets = entry.get("data_offsets")
        if not (_is_shape(offsets) and len(offsets) == 2):
            msg = f"tensor {name!r} has invalid data_offsets {offsets!r}"
            raise PrecheckError(msg)
        begin, end = offsets
        if begin > end or end > data_size:
            msg = (
                f"tensor {name!r} data_offsets [{begin}, {end}] outside "
                f"data section of {data_size} bytes"
            )
            raise PrecheckError(msg)
        expected = math.prod(shape) * SAFETENSORS_DTYPE_SIZES[dtype]
        if expected != end - begin:
            msg = (
                f"tensor {name!r} spans {end - begin} bytes, "
                f"shape needs {expected}"
            )
            raise PrecheckError(msg)
        spans.append((begin, end, name))

    spans.sort()
    for (_, prev_end, prev_name), (begin, _, name) in zip(spans, spans[1:]):
        if begin < prev_end:
            msg = f"tensors {prev_name!r} and {name!r} overlap"
            raise PrecheckError(msg)
    return f"safetensors walked {len(spans)} tensors, {data_size} data bytes"


_WALKS: dict[TargetKind, Callable[[bytes], str]] = {
    TargetKind.GGUF: walk_gguf,
    TargetKind.ONNX: walk_onnx,
    TargetKind.SAFETENSORS: walk_safetensors,
}


def walk(target: TargetKind, data: bytes) -> str:
    """Run the structural walk for ``target``."""
    return _WALKS[target](data)
