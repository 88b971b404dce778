"""Deterministic hashing for scored chunks.

Lets two runs over the same inputs be compared chunk by chunk: identical
records and model must produce identical digests.
"""

from __future__ import annotations

import hashlib
import json
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List

import numpy as np
import pandas as pd


def _serialize_value(val: Any) -> Any:
    """Serialize a value for deterministic hashing."""
    if val is None:
        return None
    elif isinstance(val, Decimal):
        return str(val)
    elif isinstance(val, datetime):
        return val.isoformat()
    elif isinstance(val, dict):
        return {str(k): _serialize_value(v) for k, v in sorted(val.items())}
    elif isinstance(val, (list, tuple)):
        return [_serialize_value(v) for v in val]
    elif isinstance(val, np.generic):
        return val.item()
    elif isinstance(val, (int, float, str, bool)):
        return val
    else:
        return str(val)


def compute_hash(data: Dict[str, Any]) -> str:
    """Compute deterministic SHA256 hash of a dictionary.

    The hash is computed from a canonical JSON representation
    with sorted keys and consistent formatting.

    Args:
        data: Dictionary to hash

    Returns:
        Hex-encoded SHA256 hash (64 characters)
    """
    serialized = _serialize_value(data)
    canonical = json.dumps(serialized, sort_keys=True, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def compute_frame_hash(frame: pd.DataFrame) -> str:
    """Hash a frame's column names, dtypes and row contents, in order.

    Row order matters: the same records in a different order hash differently.
    """
    row_hashes = pd.util.hash_pandas_object(frame, index=False).to_numpy(dtype=np.uint64)
    payload = {
        "columns": [str(c) for c in frame.columns],
        "dtypes": [str(t) for t in frame.dtypes],
        "n_rows": len(frame),
        "rows": hashlib.sha256(row_hashes.tobytes()).hexdigest(),
    }
    return compute_hash(payload)


def compute_run_hash(digests: Dict[int, str]) -> str:
    """Combine per-chunk digests into one, ordered by chunk index."""
    ordered: List[List[Any]] = [[idx, digests[idx]] for idx in sorted(digests)]
    return compute_hash({"chunks": ordered})


__all__ = [
    "compute_hash",
    "compute_frame_hash",
    "compute_run_hash",
]
