"""Shared utilities."""

from __future__ import annotations

import hashlib
import time
from typing import Any

import numpy as np
import orjson


def now_ms() -> int:
    return int(time.time() * 1000)


def json_dumps(obj: Any) -> str:
    return orjson.dumps(obj).decode()


def content_hash(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def text_hash(text: str) -> str:
    return content_hash(text.encode("utf-8"))


def vector_to_blob(vec: np.ndarray) -> bytes:
    return np.ascontiguousarray(vec, dtype=np.float32).tobytes()


def blob_to_vector(blob: bytes) -> np.ndarray:
    return np.frombuffer(blob, dtype=np.float32).copy()
