"""Sequential egress aggregation into the destination sink."""

from __future__ import annotations

import logging
from typing import Callable, Dict, List, Optional, Protocol, Sequence

import pandas as pd
from pandas.api import types as ptypes

from chunkscore.pipeline.partition import validate_partition
from chunkscore.pipeline.stage import StageStore
from chunkscore.pipeline.types import (
    ChunkDescriptor,
    MissingArtifactError,
    Role,
    SchemaMismatchError,
)

logger = logging.getLogger(__name__)


class Sink(Protocol):
    """Destination collaborator. Must not be shared with workers."""

    def create_table(self, name: str, records: pd.DataFrame) -> None: ...

    def append_table(self, name: str, records: pd.DataFrame) -> None: ...


def missing_egress(store: StageStore, descriptors: Sequence[ChunkDescriptor]) -> List[int]:
    return sorted(d.index for d in descriptors if not store.exists(Role.EGRESS, d))


def dtype_families(frame: pd.DataFrame) -> List[Optional[str]]:
    """Coarse storage kind per column: bool, numeric, datetime, timedelta or text.

    Integers and floats share a family, since a chunk with a missing integer
    value loads as float. A column with no values at all has no kind (None).
    """
    out: List[Optional[str]] = []
    for name, dtype in frame.dtypes.items():
        if frame[name].isna().all():
            out.append(None)
        elif ptypes.is_bool_dtype(dtype):
            out.append("bool")
        elif ptypes.is_numeric_dtype(dtype):
            out.append("numeric")
        elif ptypes.is_datetime64_any_dtype(dtype):
            out.append("datetime")
        elif ptypes.is_timedelta64_dtype(dtype):
            out.append("timedelta")
        else:
            out.append("text")
    return out


def aggregate(
    descriptors: Sequence[ChunkDescriptor],
    store: StageStore,
    sink: Sink,
    table: str,
    on_chunk: Optional[Callable[[ChunkDescriptor, pd.DataFrame], None]] = None,
) -> int:
    """Merge every egress artifact into ``table`` in ascending index order.

    Chunk 1 creates the table; later chunks append to it and must carry the
    same columns, in the same order. All egress artifacts are checked before
    anything is written.

    Args:
        descriptors: A full partition ``1..N``.
        store: Stage store holding the egress artifacts.
        sink: Destination handle.
        table: Target relation name.
        on_chunk: Optional callback invoked with each descriptor and its
            frame once the rows are written.

    Returns:
        Total rows written.

    Raises:
        MissingArtifactError: if any egress artifact is absent.
        SchemaMismatchError: if a chunk's columns differ from chunk 1's, or
            a column holds a different kind of value (numeric, text, ...)
            than in earlier chunks.
        StorageReadError: if an artifact is unreadable.
    """
    validate_partition(list(descriptors))
    ordered = sorted(descriptors, key=lambda d: d.index)

    missing = missing_egress(store, ordered)
    if missing:
        raise MissingArtifactError(
            f"Missing egress artifacts for chunks {missing}", indices=missing
        )

    columns: List[str] = []
    kinds: Dict[str, str] = {}
    rows_written = 0
    for descriptor in ordered:
        frame = store.read(Role.EGRESS, descriptor)
        if descriptor.index == 1:
            columns = list(frame.columns)
        elif list(frame.columns) != columns:
            raise SchemaMismatchError(
                f"Chunk {descriptor.label} columns {list(frame.columns)} "
                f"differ from {columns}",
                index=descriptor.index,
            )

        # Empty chunks and all-missing columns carry no values, so they never
        # fix or contradict a column's kind.
        for column, kind in zip(columns, dtype_families(frame)):
            if kind is None:
                continue
            expected = kinds.setdefault(column, kind)
            if kind != expected:
                raise SchemaMismatchError(
                    f"Chunk {descriptor.label} column '{column}' holds {kind} "
                    f"values, earlier chunks hold {expected}",
                    index=descriptor.index,
                )

        if descriptor.index == 1:
            sink.create_table(table, frame)
        else:
            sink.append_table(table, frame)
        rows_written += len(frame)
        logger.info(
            f"Aggregated chunk {descriptor.label} into {table} ({len(frame)} rows)"
        )
        if on_chunk is not None:
            on_chunk(descriptor, frame)

    return rows_written


__all__ = ["Sink", "aggregate", "dtype_families", "missing_egress"]
