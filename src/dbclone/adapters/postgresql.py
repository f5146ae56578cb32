from collections.abc import Sequence
from datetime import datetime
from typing import Any

import psycopg2

from dbclone.adapters.base import DatabaseAdapter
from dbclone.config import DatabaseType
from dbclone.constants import WORKSPACE_PREFIX
from dbclone.exceptions import ConnectionError, SchemaError
from dbclone.logging import get_logger, log_query_execution
from dbclone.models import Column, ForeignKey, SchemaGraph, Table
from dbclone.utils.connection import parse_database_url

logger = get_logger(__name__)


class PostgreSQLAdapter(DatabaseAdapter):
    """PostgreSQL-specific database adapter."""

    def __init__(self, schema: str | None = None):
        self._conn: Any = None
        self.source_namespace = schema or "public"
        self._schema_cache: SchemaGraph | None = None

    def connect(self, url: str) -> None:
        """Establish PostgreSQL connection."""
        config = parse_database_url(url)

        if config.db_type != DatabaseType.POSTGRESQL:
            raise ConnectionError(url, f"Expected PostgreSQL URL, got {config.db_type.value}")

        logger.debug(
            "Connecting to PostgreSQL",
            host=config.host,
            port=config.port,
            database=config.database,
            user=config.user,
        )

        try:
            self._conn = psycopg2.connect(
                host=config.host,
                port=config.port,
                user=config.user,
                password=config.password,
                dbname=config.database,
                **{k: v for k, v in config.options.items()},
            )
            # Autocommit; transactions are opened explicitly with BEGIN.
            self._conn.autocommit = True

            logger.info(
                "PostgreSQL connection established",
                database=config.database,
                schema=self.source_namespace,
            )
        except psycopg2.Error as e:
            logger.error("PostgreSQL connection failed", error=str(e), exc_info=True)
            raise ConnectionError(url, str(e))

    def close(self) -> None:
        if self._conn:
            self._conn.close()
            self._conn = None
            logger.debug("PostgreSQL connection closed")

    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        log_query_execution(logger, sql, tuple(params))
        with self._conn.cursor() as cur:
            cur.execute(sql, tuple(params) or None)
            return max(cur.rowcount, 0)

    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
        log_query_execution(logger, sql, tuple(params))
        with self._conn.cursor() as cur:
            cur.execute(sql, tuple(params) or None)
            return [tuple(row) for row in cur.fetchall()]

    def format_timestamp(self, value: datetime) -> Any:
        return value

    def get_schema(self, schema_name: str | None = None) -> SchemaGraph:
        """Introspect PostgreSQL schema."""
        schema = schema_name or self.source_namespace
        if self._schema_cache is not None and schema == self.source_namespace:
            logger.debug("Returning cached schema")
            return self._schema_cache

        logger.info("Starting schema introspection", schema=schema)

        try:
            tables = self._fetch_tables(schema)
            logger.debug("Tables fetched", count=len(tables))

            edges = self._fetch_foreign_keys(schema)
            logger.debug("Foreign keys fetched", count=len(edges))
        except psycopg2.Error as e:
            logger.error("Schema introspection failed", error=str(e), exc_info=True)
            raise SchemaError(str(e))

        graph = SchemaGraph(tables=tables, edges=edges)
        if schema == self.source_namespace:
            self._schema_cache = graph
        logger.info(
            "Schema introspection complete",
            schema=schema,
            table_count=len(tables),
            fk_count=len(edges),
        )
        return graph

    def _fetch_tables(self, schema: str) -> dict[str, Table]:
        """Fetch all tables with their columns and primary keys."""
        all_pks: dict[str, list[str]] = {}
        for table_name, col_name in self.fetch_all(
            """
            SELECT tc.table_name, kcu.column_name
            FROM information_schema.table_constraints tc
            JOIN information_schema.key_column_usage kcu
                ON tc.constraint_name = kcu.constraint_name
                AND tc.table_schema = kcu.table_schema
            WHERE tc.constraint_type = 'PRIMARY KEY'
              AND tc.table_schema = %s
            ORDER BY tc.table_name, kcu.ordinal_position
            """,
            (schema,),
        ):
            all_pks.setdefault(table_name, []).append(col_name)

        all_columns: dict[str, list[Column]] = {}
        for table_name, col_name, data_type, is_nullable, default in self.fetch_all(
            """
            SELECT table_name, column_name, data_type, is_nullable, column_default
            FROM information_schema.columns
            WHERE table_schema = %s
            ORDER BY table_name, ordinal_position
            """,
            (schema,),
        ):
            all_columns.setdefault(table_name, []).append(
                Column(
                    name=col_name,
                    data_type=data_type,
                    nullable=is_nullable == "YES",
                    is_primary_key=col_name in all_pks.get(table_name, []),
                    default=default,
                )
            )

        table_names = self.fetch_column(
            """
            SELECT table_name
            FROM information_schema.tables
            WHERE table_schema = %s
              AND table_type = 'BASE TABLE'
            ORDER BY table_name
            """,
            (schema,),
        )

        tables: dict[str, Table] = {}
        for table_name in table_names:
            if table_name.startswith(WORKSPACE_PREFIX):
                continue
            tables[table_name] = Table(
                name=table_name,
                columns=tuple(all_columns.get(table_name, [])),
                primary_key=tuple(all_pks.get(table_name, [])),
                schema=schema,
            )

        return tables

    def _fetch_foreign_keys(self, schema: str) -> list[ForeignKey]:
        """
        Fetch all foreign key relationships, one edge per column pair.

        Uses pg_catalog rather than information_schema, which produces a
        cross product of source and target columns for multi-column FKs.
        """
        fks: list[ForeignKey] = []
        rows = self.fetch_all(
            """
            SELECT
                c.conname AS constraint_name,
                source_cls.relname AS source_table,
                a_source.attname AS source_column,
                target_cls.relname AS target_table,
                a_target.attname AS target_column,
                NOT a_source.attnotnull AS is_nullable
            FROM pg_constraint c
            JOIN pg_class source_cls ON c.conrelid = source_cls.oid
            JOIN pg_class target_cls ON c.confrelid = target_cls.oid
            JOIN pg_namespace ns ON source_cls.relnamespace = ns.oid
            CROSS JOIN LATERAL unnest(c.conkey, c.confkey)
                WITH ORDINALITY AS u(source_attnum, target_attnum, ord)
            JOIN pg_attribute a_source
                ON a_source.attrelid = c.conrelid
                AND a_source.attnum = u.source_attnum
            JOIN pg_attribute a_target
                ON a_target.attrelid = c.confrelid
                AND a_target.attnum = u.target_attnum
            WHERE c.contype = 'f'
              AND ns.nspname = %s
            ORDER BY c.conname, u.ord
            """,
            (schema,),
        )
        for constraint_name, source_table, source_col, target_table, target_col, nullable in rows:
            fks.append(
                ForeignKey(
                    name=constraint_name,
                    source_table=source_table,
                    source_column=source_col,
                    target_table=target_table,
                    target_column=target_col,
                    is_nullable=bool(nullable),
                )
            )

        return fks

    def create_namespace(self, name: str) -> None:
        self.execute(f"CREATE SCHEMA IF NOT EXISTS {self.quote_identifier(name)}")

    def drop_namespace(self, name: str) -> None:
        self.execute(f"DROP SCHEMA IF EXISTS {self.quote_identifier(name)} CASCADE")

    def table_exists(self, table: str, namespace: str | None = None) -> bool:
        count = self.fetch_scalar(
            """
            SELECT COUNT(*)
            FROM information_schema.tables
            WHERE table_schema = %s AND table_name = %s
            """,
            (namespace or self.source_namespace, table),
        )
        return bool(count)

    def copy_table(self, table: str, target_namespace: str, target_table: str) -> None:
        # Foreign keys are not copied: staged tables are trimmed independently.
        target = self.qualify(target_table, target_namespace)
        self.execute(
            f"CREATE TABLE {target} (LIKE {self.source_ref(table)} "
            "INCLUDING DEFAULTS INCLUDING CONSTRAINTS INCLUDING INDEXES)"
        )
        self.execute(f"INSERT INTO {target} SELECT * FROM {self.source_ref(table)}")
