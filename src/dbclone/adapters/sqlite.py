import os
import sqlite3
from collections.abc import Sequence
from typing import Any

from dbclone.adapters.base import DatabaseAdapter
from dbclone.config import DatabaseType
from dbclone.constants import WORKSPACE_PREFIX
from dbclone.exceptions import ConnectionError, SchemaError
from dbclone.logging import get_logger, log_query_execution
from dbclone.models import Column, ForeignKey, SchemaGraph, Table
from dbclone.utils.connection import parse_database_url

logger = get_logger(__name__)

MEMORY_DATABASE = ":memory:"


class SQLiteAdapter(DatabaseAdapter):
    """
    SQLite adapter.

    The source database is the ``main`` schema of the connection; staging
    namespaces are attached databases (in memory for an in-memory source,
    otherwise files next to the source database).
    """

    source_namespace = "main"

    def __init__(self) -> None:
        self._conn: sqlite3.Connection | None = None
        self._database: str = MEMORY_DATABASE
        self._attached: dict[str, str] = {}

    def connect(self, url: str) -> None:
        config = parse_database_url(url)

        if config.db_type != DatabaseType.SQLITE:
            raise ConnectionError(url, f"Expected SQLite URL, got {config.db_type.value}")

        try:
            # Autocommit; transactions are opened explicitly with BEGIN.
            self._conn = sqlite3.connect(config.database, isolation_level=None)
            self._database = config.database
            logger.info("SQLite connection established", database=config.database)
        except sqlite3.Error as e:
            logger.error("SQLite connection failed", error=str(e), exc_info=True)
            raise ConnectionError(url, str(e))

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.debug("SQLite connection closed")

    @property
    def connection(self) -> sqlite3.Connection:
        if self._conn is None:
            raise ConnectionError(f"sqlite:///{self._database}", "not connected")
        return self._conn

    def get_placeholder(self) -> str:
        return "?"

    def window_column(self, column: str) -> str:
        # SQLite has no timestamp type: text values are normalized to
        # CUTOFF_FORMAT ('T' separator, offsets, date-only) and numbers are
        # read as unix epoch seconds. Unparseable values fall outside the window.
        return (
            f"CASE WHEN typeof({column}) IN ('integer', 'real') "
            f"THEN datetime({column}, 'unixepoch') ELSE datetime({column}) END"
        )

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        log_query_execution(logger, sql, tuple(params))
        cur = self.connection.execute(sql, tuple(params))
        return max(cur.rowcount, 0)

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
        log_query_execution(logger, sql, tuple(params))
        return [tuple(row) for row in self.connection.execute(sql, tuple(params)).fetchall()]

    def get_schema(self, schema_name: str | None = None) -> SchemaGraph:
        namespace = schema_name or self.source_namespace
        logger.info("Starting schema introspection", schema=namespace)

        try:
            names = self.fetch_column(
                f"SELECT name FROM {self.quote_identifier(namespace)}.sqlite_master "
                "WHERE type = 'table' AND name NOT LIKE 'sqlite_%' ORDER BY name"
            )
            names = [name for name in names if not name.startswith(WORKSPACE_PREFIX)]

            tables: dict[str, Table] = {}
            for name in names:
                tables[name] = self._fetch_table(namespace, name)

            edges: list[ForeignKey] = []
            for name in names:
                edges.extend(self._fetch_foreign_keys(namespace, name, tables))
        except sqlite3.Error as e:
            logger.error("Schema introspection failed", error=str(e), exc_info=True)
            raise SchemaError(str(e))

        graph = SchemaGraph(tables=tables, edges=edges)
        logger.info(
            "Schema introspection complete",
            schema=namespace,
            table_count=len(tables),
            fk_count=len(edges),
        )
        return graph

    def _fetch_table(self, namespace: str, name: str) -> Table:
        rows = self.fetch_all(
            f"PRAGMA {self.quote_identifier(namespace)}.table_info({self.quote_identifier(name)})"
        )
        columns = []
        pk_positions: list[tuple[int, str]] = []
        for _cid, col_name, data_type, notnull, default, pk in rows:
            columns.append(
                Column(
                    name=col_name,
                    data_type=data_type or "",
                    nullable=not notnull and not pk,
                    is_primary_key=bool(pk),
                    default=default,
                )
            )
            if pk:
                pk_positions.append((pk, col_name))

        return Table(
            name=name,
            columns=tuple(columns),
            primary_key=tuple(col for _, col in sorted(pk_positions)),
            schema=namespace,
        )

    def _fetch_foreign_keys(
        self, namespace: str, name: str, tables: dict[str, Table]
    ) -> list[ForeignKey]:
        rows = self.fetch_all(
            f"PRAGMA {self.quote_identifier(namespace)}.foreign_key_list"
            f"({self.quote_identifier(name)})"
        )
        table = tables[name]
        fks = []
        for fk_id, seq, target_table, source_column, target_column, *_ in rows:
            if target_table not in tables:
                continue
            if target_column is None:
                # REFERENCES parent without a column list targets the parent's primary key
                parent_pk = tables[target_table].primary_key
                if seq >= len(parent_pk):
                    continue
                target_column = parent_pk[seq]
            column = table.get_column(source_column)
            fks.append(
                ForeignKey(
                    name=f"fk_{name}_{fk_id}_{seq}",
                    source_table=name,
                    source_column=source_column,
                    target_table=target_table,
                    target_column=target_column,
                    is_nullable=column.nullable if column else True,
                )
            )
        return fks

    def create_namespace(self, name: str) -> None:
        if name in self._attached:
            return
        if self._database in ("", MEMORY_DATABASE):
            path = MEMORY_DATABASE
        else:
            directory = os.path.dirname(os.path.abspath(self._database))
            path = os.path.join(directory, f"{name}.sqlite3")
        self.execute(f"ATTACH DATABASE ? AS {self.quote_identifier(name)}", (path,))
        self._attached[name] = path
        logger.debug("Attached staging database", namespace=name, path=path)

    def drop_namespace(self, name: str) -> None:
        path = self._attached.pop(name, None)
        if path is None:
            return
        self.execute(f"DETACH DATABASE {self.quote_identifier(name)}")
        if path != MEMORY_DATABASE and os.path.exists(path):
            os.remove(path)
        logger.debug("Detached staging database", namespace=name)

    def table_exists(self, table: str, namespace: str | None = None) -> bool:
        namespace = namespace or self.source_namespace
        if namespace != self.source_namespace and namespace not in self._attached:
            return False
        count = self.fetch_scalar(
            f"SELECT COUNT(*) FROM {self.quote_identifier(namespace)}.sqlite_master "
            "WHERE type = 'table' AND name = ?",
            (table,),
        )
        return bool(count)

    def copy_table(self, table: str, target_namespace: str, target_table: str) -> None:
        self.execute(
            f"CREATE TABLE {self.qualify(target_table, target_namespace)} "
            f"AS SELECT * FROM {self.source_ref(table)}"
        )
