"""Tests for sequential egress aggregation."""

from unittest.mock import MagicMock

import pandas as pd
import pytest

from chunkscore.database import SqlDestination
from chunkscore.pipeline.aggregate import aggregate, missing_egress
from chunkscore.pipeline.partition import partition
from chunkscore.pipeline.types import (
    ChunkDescriptor,
    InvalidConfiguration,
    MissingArtifactError,
    Role,
    SchemaMismatchError,
    StorageReadError,
)


def _chunk(start, n, with_score=True):
    frame = pd.DataFrame({"seq": range(start, start + n), "x": [float(i) for i in range(n)]})
    if with_score:
        frame["score"] = frame["x"] * 2.0
    return frame


@pytest.fixture
def staged(store):
    """Three egress artifacts with 3, 2 and 4 rows."""
    sizes = {1: 3, 2: 2, 3: 4}
    for index, n in sizes.items():
        store.write(Role.EGRESS, ChunkDescriptor(index, 3), _chunk(index * 100, n))
    return sizes


class TestAggregateWithMockSink:
    """Ordering and create/append semantics."""

    def test_create_then_append_in_order(self, store, staged):
        sink = MagicMock()
        rows = aggregate(list(reversed(partition(3))), store, sink, "scores")

        assert rows == 9
        assert sink.create_table.call_count == 1
        assert sink.append_table.call_count == 2
        created = sink.create_table.call_args[0][1]
        assert created["seq"].tolist() == [100, 101, 102]
        appended = [c[0][1]["seq"].iloc[0] for c in sink.append_table.call_args_list]
        assert appended == [200, 300]
        assert sink.method_calls[0][0] == "create_table"

    def test_on_chunk_callback_order(self, store, staged):
        seen = []
        aggregate(
            partition(3), store, MagicMock(), "scores",
            on_chunk=lambda d, frame: seen.append((d.index, len(frame))),
        )
        assert seen == [(1, 3), (2, 2), (3, 4)]

    def test_missing_artifacts_raise_before_writing(self, store):
        store.write(Role.EGRESS, ChunkDescriptor(1, 3), _chunk(0, 2))
        sink = MagicMock()

        with pytest.raises(MissingArtifactError) as exc:
            aggregate(partition(3), store, sink, "scores")

        assert exc.value.indices == [2, 3]
        sink.create_table.assert_not_called()
        sink.append_table.assert_not_called()

    def test_schema_mismatch_raises(self, store, staged):
        store.write(Role.EGRESS, ChunkDescriptor(2, 3), _chunk(200, 2, with_score=False))
        sink = MagicMock()

        with pytest.raises(SchemaMismatchError) as exc:
            aggregate(partition(3), store, sink, "scores")

        assert exc.value.index == 2
        sink.append_table.assert_not_called()

    def test_column_order_matters(self, store, staged):
        reordered = _chunk(300, 4)[["score", "seq", "x"]]
        store.write(Role.EGRESS, ChunkDescriptor(3, 3), reordered)
        with pytest.raises(SchemaMismatchError):
            aggregate(partition(3), store, MagicMock(), "scores")

    def test_column_type_divergence_raises(self, store, staged):
        retyped = _chunk(200, 2)
        retyped["seq"] = retyped["seq"].map(lambda v: f"id-{v}")
        store.write(Role.EGRESS, ChunkDescriptor(2, 3), retyped)
        sink = MagicMock()

        with pytest.raises(SchemaMismatchError, match="'seq'") as exc:
            aggregate(partition(3), store, sink, "scores")

        assert exc.value.index == 2
        sink.append_table.assert_not_called()

    def test_int_and_float_chunks_are_compatible(self, store, staged):
        widened = _chunk(200, 2)
        widened["seq"] = widened["seq"].astype("float64")
        store.write(Role.EGRESS, ChunkDescriptor(2, 3), widened)
        assert aggregate(partition(3), store, MagicMock(), "scores") == 9

    def test_empty_chunk_types_not_compared(self, store, staged):
        empty = pd.DataFrame({"seq": [], "x": [], "score": []}, dtype=object)
        store.write(Role.EGRESS, ChunkDescriptor(2, 3), empty)
        assert aggregate(partition(3), store, MagicMock(), "scores") == 7

    def test_all_missing_column_not_compared(self, store, staged):
        gaps = _chunk(200, 2)
        gaps["x"] = pd.Series([None, None], dtype=object)
        store.write(Role.EGRESS, ChunkDescriptor(2, 3), gaps)
        assert aggregate(partition(3), store, MagicMock(), "scores") == 9

    def test_malformed_artifact_raises(self, store, staged):
        store.path_for(Role.EGRESS, ChunkDescriptor(3, 3)).write_text("")
        with pytest.raises(StorageReadError):
            aggregate(partition(3), store, MagicMock(), "scores")

    def test_partial_descriptor_set_raises(self, store, staged):
        with pytest.raises(InvalidConfiguration):
            aggregate([ChunkDescriptor(2, 3)], store, MagicMock(), "scores")

    def test_missing_egress_helper(self, store, staged):
        assert missing_egress(store, partition(3)) == []
        assert missing_egress(store, partition(4)) == [1, 2, 3, 4]


class TestAggregateIntoSqlite:
    """Row counts and schema in a real destination."""

    def test_row_count_and_schema(self, store, staged, destination_url, read_table):
        destination = SqlDestination(destination_url)
        with destination.session() as sink:
            rows = aggregate(partition(3), store, sink, "scores")

        table = read_table(destination_url, "scores")
        assert rows == sum(staged.values()) == len(table)
        assert list(table.columns) == list(store.read(Role.EGRESS, ChunkDescriptor(1, 3)).columns)

    def test_mid_way_failure_rolls_back(self, store, staged, destination_url, table_exists):
        """A schema mismatch at chunk 3 leaves no table behind."""
        store.write(Role.EGRESS, ChunkDescriptor(3, 3), _chunk(300, 4, with_score=False))
        destination = SqlDestination(destination_url)

        with pytest.raises(SchemaMismatchError):
            with destination.session() as sink:
                aggregate(partition(3), store, sink, "scores")

        assert not table_exists(destination_url, "scores")

    def test_empty_first_chunk_keeps_numeric_columns(self, store, destination_url, read_table):
        empty = pd.DataFrame({
            "seq": pd.Series(dtype="int64"),
            "x": pd.Series(dtype="float64"),
            "score": pd.Series(dtype="float64"),
        })
        store.write(Role.EGRESS, ChunkDescriptor(1, 2), empty)
        store.write(Role.EGRESS, ChunkDescriptor(2, 2), _chunk(10, 3))

        with SqlDestination(destination_url).session() as sink:
            assert aggregate(partition(2), store, sink, "scores") == 3

        table = read_table(destination_url, "scores")
        assert table["score"].dtype.kind == "f"
        assert table["seq"].dtype.kind == "i"
        assert table["score"].tolist() == [0.0, 2.0, 4.0]
