"""Tests for the SQL source and destination handles."""

import pandas as pd
import pytest
from sqlalchemy import column, create_engine, text

from chunkscore.database import DestinationSession, SqlDestination, SqlSource
from chunkscore.pipeline.partition import predicate_for


@pytest.fixture
def source(source_url):
    return SqlSource(source_url, "mtcars", "seq")


class TestSqlSource:
    def test_query_with_chunk_filter(self, source):
        with source.session() as s:
            frame = s.query(predicate_for(2, 4))
        assert frame["seq"].tolist() == [1, 5, 9, 13, 17, 21, 25, 29]

    def test_query_with_clause(self, source):
        with source.session() as s:
            frame = s.query(column("seq") <= 3)
        assert frame["seq"].tolist() == [1, 2, 3]

    def test_query_with_text_clause(self, source):
        with source.session() as s:
            frame = s.query(text("cyl = 4"))
        assert (frame["cyl"] == 4).all()

    def test_raw_string_rejected(self, source):
        with source.session() as s:
            with pytest.raises(TypeError, match="Raw SQL"):
                s.query("seq > 1")

    def test_other_types_rejected(self, source):
        with source.session() as s:
            with pytest.raises(TypeError):
                s.query(42)

    def test_empty_result_keeps_declared_dtypes(self, source, cars):
        with source.session() as s:
            frame = s.query(column("seq") > 1000)
        assert frame.empty
        assert list(frame.columns) == list(cars.columns)
        assert frame.dtypes.astype(str).to_dict() == cars.dtypes.astype(str).to_dict()

    def test_text_values_untouched(self, tmp_path):
        url = f"sqlite:///{tmp_path / 'codes.db'}"
        codes = pd.DataFrame({"seq": [1, 2], "code": ["007", "010"], "note": ["NA", "n/a"]})
        engine = create_engine(url)
        with engine.begin() as conn:
            codes.to_sql("codes", conn, index=False)
        engine.dispose()

        with SqlSource(url, "codes").session() as s:
            frame = s.query(predicate_for(1, 1))
        assert frame["code"].tolist() == ["007", "010"]
        assert frame["note"].tolist() == ["NA", "n/a"]

    def test_query_preserves_columns(self, source, cars):
        with source.session() as s:
            frame = s.query(predicate_for(1, 1))
        assert list(frame.columns) == list(cars.columns)
        assert len(frame) == len(cars)


class TestSqlDestination:
    def test_invalid_if_exists(self, destination_url):
        with pytest.raises(ValueError, match="if_exists"):
            SqlDestination(destination_url, "append")

    def test_create_then_append_commits(self, destination_url, read_table):
        dest = SqlDestination(destination_url)
        with dest.session() as sink:
            assert isinstance(sink, DestinationSession)
            sink.create_table("t", pd.DataFrame({"a": [1, 2]}))
            sink.append_table("t", pd.DataFrame({"a": [3]}))
        assert read_table(destination_url, "t")["a"].tolist() == [1, 2, 3]

    def test_fail_when_table_exists(self, destination_url, read_table):
        dest = SqlDestination(destination_url)
        with dest.session() as sink:
            sink.create_table("t", pd.DataFrame({"a": [1]}))
        with pytest.raises(ValueError):
            with dest.session() as sink:
                sink.create_table("t", pd.DataFrame({"a": [2]}))
        assert read_table(destination_url, "t")["a"].tolist() == [1]

    def test_replace_when_table_exists(self, destination_url, read_table):
        with SqlDestination(destination_url).session() as sink:
            sink.create_table("t", pd.DataFrame({"a": [1, 2, 3]}))
        replace = SqlDestination(destination_url, "replace")
        with replace.session() as sink:
            sink.create_table("t", pd.DataFrame({"a": [9]}))
        assert read_table(destination_url, "t")["a"].tolist() == [9]

    def test_exception_rolls_back_ddl(self, destination_url, table_exists):
        dest = SqlDestination(destination_url)
        with pytest.raises(RuntimeError):
            with dest.session() as sink:
                sink.create_table("t", pd.DataFrame({"a": [1]}))
                raise RuntimeError("abort")
        assert not table_exists(destination_url, "t")
