from __future__ import annotations

import dataclasses
import json
import time
from enum import Enum
from pathlib import Path
from typing import Any, Optional

import orjson
from blake3 import blake3
from pydantic import BaseModel

CANONICALIZATION = "orjson_sort_keys_utf8"
HASH_ALGORITHM = "blake3"

# rough chars-per-token ratio for English-ish model output
CHARS_PER_TOKEN = 4


def to_jsonable(value: Any) -> Any:
    """Normalise states, moves and records into plain JSON values.

    Tuples become lists, so a state hashes the same whether it came from
    the domain (tuples) or from a parsed response (lists).
    """
    if isinstance(value, Enum):
        return to_jsonable(value.value)
    if isinstance(value, BaseModel):
        return to_jsonable(value.model_dump())
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(dataclasses.asdict(value))
    if isinstance(value, Path):
        return str(value)
    if isinstance(value, (list, tuple)):
        return [to_jsonable(item) for item in value]
    if isinstance(value, dict):
        return {str(key): to_jsonable(val) for key, val in value.items()}
    if isinstance(value, (int, str, bool)) or value is None:
        return value
    if isinstance(value, float):
        return float(f"{value:.6f}")
    return json.loads(json.dumps(value, default=str))


def canonical_dumps(data: Any) -> bytes:
    return orjson.dumps(to_jsonable(data), option=orjson.OPT_SORT_KEYS)


def stable_hash(data: Any, length: Optional[int] = None) -> str:
    digest = blake3(canonical_dumps(data)).hexdigest()
    return digest[:length] if length else digest


def now_ts_ns() -> int:
    return time.time_ns()


def monotonic_ns() -> int:
    return time.monotonic_ns()


def read_json(path: Path) -> Any:
    return orjson.loads(path.read_bytes())


def append_jsonl(path: Path, record: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("ab") as handle:
        handle.write(canonical_dumps(record) + b"\n")


def estimate_tokens(text: str) -> int:
    return max(1, len(text) // CHARS_PER_TOKEN)
