"""Interchange format for HyperLogLog register state.

A snapshot is a flat mapping with four fields, kept in this order:

    M  register count (unsigned integer)
    B  index bit width (unsigned 32-bit integer)
    A  bias correction constant (float)
    R  register values, one integer in 0..255 per register

The JSON text form is compact (``{"M":16,"B":4,"A":0.673,"R":[0,...]}``) so
that snapshots written by other implementations of the same format load
unchanged. The Arrow form carries the same four columns in a one-row record
batch and tags its schema with a format version.
"""
import json
import math

import pyarrow as pa

from sketches.errors import DeserializationFailure, SerializationFailure


FIELDS = ("M", "B", "A", "R")
FORMAT_VERSION = "1"

SNAPSHOT_SCHEMA = pa.schema(
    [
        ("M", pa.uint64()),
        ("B", pa.uint32()),
        ("A", pa.float64()),
        ("R", pa.list_(pa.uint8())),
    ],
    metadata={"format_version": FORMAT_VERSION},
)


def encode_json(data: dict) -> str:
    """Encode a snapshot mapping as compact JSON text"""
    try:
        return json.dumps(
            {key: data[key] for key in FIELDS},
            separators=(",", ":"),
            allow_nan=False,
        )
    except (KeyError, TypeError, ValueError) as e:
        raise SerializationFailure(f"cannot encode snapshot: {e}") from e


def decode_json(text) -> dict:
    """Parse JSON text into a checked snapshot mapping
    Args:
    text: str or bytes holding one JSON object
    Returns:
    Mapping with keys M, B, A, R and normalised Python values
    """
    try:
        obj = json.loads(text, parse_constant=_reject_constant)
    except (TypeError, ValueError) as e:
        raise DeserializationFailure(f"snapshot is not valid JSON: {e}") from e
    return check_shape(obj)


def to_record_batch(data: dict) -> pa.RecordBatch:
    """Pack a snapshot mapping into a one-row Arrow record batch"""
    try:
        return pa.RecordBatch.from_pylist(
            [{key: data[key] for key in FIELDS}], schema=SNAPSHOT_SCHEMA
        ).replace_schema_metadata(SNAPSHOT_SCHEMA.metadata)
    except (KeyError, pa.ArrowException, OverflowError) as e:
        raise SerializationFailure(f"cannot encode snapshot: {e}") from e


def from_record_batch(batch) -> dict:
    """Unpack a one-row record batch (or table) into a checked snapshot mapping"""
    if not isinstance(batch, (pa.RecordBatch, pa.Table)):
        raise DeserializationFailure(
            f"expected a RecordBatch or Table, got {type(batch).__name__}"
        )
    if batch.num_rows != 1:
        raise DeserializationFailure(
            f"snapshot batch must hold exactly one row, got {batch.num_rows}"
        )

    metadata = batch.schema.metadata or {}
    version = metadata.get(b"format_version")
    if version is not None and version.decode() != FORMAT_VERSION:
        raise DeserializationFailure(
            f"unsupported snapshot format version {version.decode()!r}"
        )
    return check_shape(batch.to_pylist()[0])


def check_shape(obj) -> dict:
    """Verify a decoded object has the four snapshot fields with sane types.

    Only the shape is checked here. Whether M is a power of two, or R holds
    exactly M registers, is left to the caller.
    """
    if not isinstance(obj, dict):
        raise DeserializationFailure(
            f"snapshot must be an object, got {type(obj).__name__}"
        )
    missing = [key for key in FIELDS if key not in obj]
    if missing:
        raise DeserializationFailure(f"snapshot is missing fields {missing}")

    m, b, alpha, registers = (obj[key] for key in FIELDS)
    if not _is_uint(m, 64):
        raise DeserializationFailure(f"M must be an unsigned integer, got {m!r}")
    if not _is_uint(b, 32):
        raise DeserializationFailure(f"B must be an unsigned 32-bit integer, got {b!r}")
    if isinstance(alpha, bool) or not isinstance(alpha, (int, float)):
        raise DeserializationFailure(f"A must be a number, got {alpha!r}")
    try:
        alpha = float(alpha)
    except OverflowError as e:
        raise DeserializationFailure(f"A must be finite, got {alpha!r}") from e
    if not math.isfinite(alpha):
        raise DeserializationFailure(f"A must be finite, got {alpha!r}")
    if not isinstance(registers, list):
        raise DeserializationFailure(f"R must be a list, got {type(registers).__name__}")
    for i, value in enumerate(registers):
        if not _is_uint(value, 8):
            raise DeserializationFailure(
                f"R[{i}] must be an integer in 0..255, got {value!r}"
            )

    return {"M": m, "B": b, "A": alpha, "R": list(registers)}


def _is_uint(value, bits: int) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and 0 <= value < (1 << bits)
    )


def _reject_constant(name: str):
    raise ValueError(f"non-finite number {name} in snapshot")
