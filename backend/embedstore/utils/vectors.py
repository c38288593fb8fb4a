"""Conversions between Python values and their stored representations.

Functions:
    encode_vector(vector, dimensions): Render an embedding as the ``[a,b,c]`` literal accepted by pgvector and sqlite-vec.
    decode_vector(literal): Parse a stored vector literal back into floats.
    encode_meta(value): Serialise optional metadata for the ``meta`` column.
    decode_meta(raw): Deserialise stored metadata, degrading to ``{}`` on corruption.
"""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping
from typing import Any, Sequence

import numpy as np

from embedstore.core.errors import InvalidVector, SerializationError

_LOGGER = logging.getLogger(__name__)


def _as_array(vector: Sequence[float] | np.ndarray) -> np.ndarray:
    try:
        arr = np.asarray(vector, dtype=np.float64)
    except (TypeError, ValueError) as exc:
        raise InvalidVector(f"Embedding is not numeric: {exc}") from exc
    if arr.ndim != 1:
        raise InvalidVector(f"Embedding must be one-dimensional, got shape {arr.shape}")
    if arr.size == 0:
        raise InvalidVector("Embedding is required")
    if not np.all(np.isfinite(arr)):
        raise InvalidVector("Embedding contains non-finite values")
    return arr


def encode_vector(vector: Sequence[float] | np.ndarray, dimensions: int | None = None) -> str:
    if vector is None:
        raise InvalidVector("Embedding is required")
    arr = _as_array(vector)
    if dimensions is not None and arr.size != dimensions:
        raise InvalidVector(f"Embedding must have {dimensions} dimensions, got {arr.size}")
    return "[" + ",".join(repr(float(value)) for value in arr) + "]"


def decode_vector(literal: str) -> list[float]:
    try:
        values = json.loads(literal)
    except (TypeError, json.JSONDecodeError) as exc:
        raise InvalidVector(f"Malformed vector literal: {exc}") from exc
    return _as_array(values).tolist()


def encode_meta(value: Any) -> str | None:
    """Return the stored form of *value*.

    ``None`` means no metadata. Anything else is stored as JSON text so it
    decodes back to the same value and is accepted by a ``jsonb`` column.
    """

    if value is None:
        return None
    try:
        return json.dumps(value, allow_nan=False)
    except (TypeError, ValueError) as exc:
        raise SerializationError(f"Failed to encode metadata: {exc}") from exc


def decode_meta(raw: Any) -> Any:
    if raw is None or raw == "" or raw == b"":
        return {}
    if isinstance(raw, Mapping):
        return dict(raw)
    if isinstance(raw, (bytes, bytearray)):
        raw = raw.decode("utf-8", errors="replace")
    try:
        return json.loads(raw)
    except (TypeError, json.JSONDecodeError):
        _LOGGER.warning("Discarding undecodable metadata payload (%d chars)", len(str(raw)))
        return {}
