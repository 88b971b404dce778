"""Static partitioning of a source table into ordinal-modulo chunks.

Every record carries a stable integer ordinal. Chunk ``i`` of ``N`` selects
the records whose ordinal satisfies ``ordinal % N == i - 1``, so the ``N``
predicates are disjoint and together cover the whole source.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import List

import numpy as np
import pandas as pd
from sqlalchemy import Integer, column
from sqlalchemy.sql.elements import ColumnElement

from chunkscore.pipeline.types import ChunkDescriptor, InvalidConfiguration

DEFAULT_ORDINAL_COLUMN = "seq"


def _require_positive_int(name: str, value: object) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        raise InvalidConfiguration(f"{name} must be an integer, got {value!r}")
    if value < 1:
        raise InvalidConfiguration(f"{name} must be >= 1, got {value}")
    return int(value)


@dataclass(frozen=True)
class ChunkFilter:
    """Predicate selecting one chunk's records by ordinal."""

    ordinal_column: str
    modulus: int
    remainder: int

    def to_clause(self) -> ColumnElement[bool]:
        """Render as a SQLAlchemy WHERE clause."""
        ordinal = column(self.ordinal_column, Integer)
        return (ordinal % self.modulus) == self.remainder

    def mask(self, frame: pd.DataFrame) -> pd.Series:
        """Boolean mask over an in-memory frame holding the ordinal column."""
        if self.ordinal_column not in frame.columns:
            raise KeyError(self.ordinal_column)
        ordinals = frame[self.ordinal_column].to_numpy(dtype=np.int64)
        return pd.Series(np.mod(ordinals, self.modulus) == self.remainder, index=frame.index)


def partition(total_chunks: int) -> List[ChunkDescriptor]:
    """Return descriptors ``1..total_chunks``.

    Raises:
        InvalidConfiguration: if ``total_chunks`` is not a positive integer.
    """
    total = _require_positive_int("total_chunks", total_chunks)
    return [ChunkDescriptor(index=i, total=total) for i in range(1, total + 1)]


def predicate_for(
    index: int,
    total: int,
    ordinal_column: str = DEFAULT_ORDINAL_COLUMN,
) -> ChunkFilter:
    """Deterministic filter for chunk ``index`` of ``total``."""
    descriptor = ChunkDescriptor(index=index, total=total)
    if not ordinal_column:
        raise InvalidConfiguration("ordinal_column must be a non-empty column name")
    return ChunkFilter(
        ordinal_column=ordinal_column,
        modulus=descriptor.total,
        remainder=descriptor.index - 1,
    )


def predicate_for_descriptor(
    descriptor: ChunkDescriptor,
    ordinal_column: str = DEFAULT_ORDINAL_COLUMN,
) -> ChunkFilter:
    return predicate_for(descriptor.index, descriptor.total, ordinal_column)


def validate_partition(descriptors: List[ChunkDescriptor]) -> int:
    """Check that ``descriptors`` is exactly ``1..N`` for one ``N``; return ``N``."""
    if not descriptors:
        raise InvalidConfiguration("descriptor set is empty")
    totals = {d.total for d in descriptors}
    if len(totals) != 1:
        raise InvalidConfiguration(f"descriptors disagree on total: {sorted(totals)}")
    total = totals.pop()
    indices = sorted(d.index for d in descriptors)
    if indices != list(range(1, total + 1)):
        raise InvalidConfiguration(
            f"descriptors do not form a full partition of {total} chunks: {indices}"
        )
    return total


__all__ = [
    "DEFAULT_ORDINAL_COLUMN",
    "ChunkFilter",
    "partition",
    "predicate_for",
    "predicate_for_descriptor",
    "validate_partition",
]
