"""
Source and destination handles for the scoring pipeline.

Each store is touched by a single logical actor per phase: the ingress loop
holds the source session, the aggregation loop holds the destination session,
and neither is ever handed to the worker pool. Engines are created when a
session opens and disposed when it closes, success or failure.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, Literal

import pandas as pd
from sqlalchemy import column, create_engine, event, literal_column, select, table
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.sql.elements import ClauseElement, TextClause

from chunkscore.pipeline.partition import ChunkFilter

logger = logging.getLogger(__name__)

IfExists = Literal["fail", "replace"]


def _is_sqlite(url: str) -> bool:
    return url.startswith("sqlite")


def enable_sqlite_transactional_ddl(engine: Engine) -> None:
    """Make pysqlite honour BEGIN/ROLLBACK around DDL as well as DML.

    The stdlib driver otherwise runs CREATE TABLE outside the transaction, so
    a rolled-back aggregation would leave an empty table behind.
    """

    @event.listens_for(engine, "connect")
    def _disable_pysqlite_autobegin(dbapi_connection: Any, connection_record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn: Connection) -> None:
        conn.exec_driver_sql("BEGIN")


def _as_clause(predicate: Any) -> ClauseElement:
    if isinstance(predicate, str):
        raise TypeError("Raw SQL strings are disallowed. Use a ChunkFilter or sqlalchemy clause.")
    if isinstance(predicate, ChunkFilter):
        return predicate.to_clause()
    if not isinstance(predicate, (TextClause, ClauseElement)):
        raise TypeError("Predicate must be a ChunkFilter or SQLAlchemy ClauseElement.")
    return predicate


_PANDAS_DTYPES = {
    bool: "bool",
    int: "int64",
    float: "float64",
    datetime: "datetime64[ns]",
}


class SourceSession:
    """Read handle bound to one open connection."""

    def __init__(self, connection: Connection, table_name: str, ordinal_column: str):
        self.connection = connection
        self.table_name = table_name
        self.ordinal_column = ordinal_column

    def query(self, predicate: Any) -> pd.DataFrame:
        """Return the records matching ``predicate``, ordered by ordinal.

        An empty result keeps the dtypes of the table's declared column types.
        """
        stmt = (
            select(literal_column("*"))
            .select_from(table(self.table_name))
            .where(_as_clause(predicate))
            .order_by(column(self.ordinal_column))
        )
        frame = pd.read_sql(stmt, self.connection)
        if frame.empty:
            frame = frame.astype(self._declared_dtypes(frame.columns))
        return frame

    def _declared_dtypes(self, columns: Any) -> Dict[str, str]:
        dtypes: Dict[str, str] = {}
        for col in sa_inspect(self.connection).get_columns(self.table_name):
            try:
                python_type = col["type"].python_type
            except NotImplementedError:
                continue
            dtype = _PANDAS_DTYPES.get(python_type)
            if dtype is not None and col["name"] in columns:
                dtypes[col["name"]] = dtype
        return dtypes


class SqlSource:
    """Queryable source table with a stable integer ordinal column."""

    def __init__(self, url: str, table_name: str, ordinal_column: str = "seq"):
        self.url = url
        self.table_name = table_name
        self.ordinal_column = ordinal_column

    @contextmanager
    def session(self) -> Iterator[SourceSession]:
        engine = create_engine(self.url, future=True)
        try:
            with engine.connect() as conn:
                logger.debug(f"Opened source session on {self.table_name}")
                yield SourceSession(conn, self.table_name, self.ordinal_column)
        finally:
            engine.dispose()


class DestinationSession:
    """Write handle; every call runs inside the session's single transaction."""

    def __init__(self, connection: Connection, if_exists: IfExists = "fail"):
        self.connection = connection
        self.if_exists = if_exists

    def create_table(self, name: str, records: pd.DataFrame) -> None:
        records.to_sql(name, self.connection, if_exists=self.if_exists, index=False)

    def append_table(self, name: str, records: pd.DataFrame) -> None:
        records.to_sql(name, self.connection, if_exists="append", index=False)


class SqlDestination:
    """Destination database. One session is one transaction."""

    def __init__(self, url: str, if_exists: IfExists = "fail"):
        if if_exists not in ("fail", "replace"):
            raise ValueError(f"if_exists must be 'fail' or 'replace', got {if_exists!r}")
        self.url = url
        self.if_exists = if_exists

    @contextmanager
    def session(self) -> Iterator[DestinationSession]:
        """Open a transaction that commits on clean exit and rolls back otherwise."""
        engine = create_engine(self.url, future=True)
        if _is_sqlite(self.url):
            enable_sqlite_transactional_ddl(engine)
        try:
            with engine.begin() as conn:
                yield DestinationSession(conn, self.if_exists)
        finally:
            engine.dispose()


__all__ = [
    "SourceSession",
    "SqlSource",
    "DestinationSession",
    "SqlDestination",
    "enable_sqlite_transactional_ddl",
]
