"""Chunked batch scoring.

This package contains the core of the scoring pipeline:
- Static partitioning of the source into ordinal-modulo chunks
- File-per-chunk staging with atomic writes
- Model loading and pure per-chunk scoring
- A bounded worker pool draining a shared descriptor queue
- Sequential aggregation into the destination

The end-to-end driver lives in ``chunkscore.pipeline.runner``.
"""

from __future__ import annotations

from .partition import ChunkFilter, partition, predicate_for
from .types import (
    ChunkDescriptor,
    ChunkResult,
    ChunkScoreError,
    ChunkState,
    InvalidConfiguration,
    MissingArtifactError,
    ModelLoadError,
    Role,
    RunReport,
    SchemaMismatchError,
    ScoringError,
    StorageReadError,
    StorageWriteError,
)

__all__ = [
    "ChunkFilter",
    "partition",
    "predicate_for",
    "ChunkDescriptor",
    "ChunkResult",
    "ChunkScoreError",
    "ChunkState",
    "InvalidConfiguration",
    "MissingArtifactError",
    "ModelLoadError",
    "Role",
    "RunReport",
    "SchemaMismatchError",
    "ScoringError",
    "StorageReadError",
    "StorageWriteError",
]
