from abc import ABC, abstractmethod
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from datetime import datetime
from typing import Any

from dbclone.constants import CUTOFF_FORMAT
from dbclone.models import SchemaGraph


class DatabaseAdapter(ABC):
    """
    Abstract base class for database adapters.

    Each adapter implements database-specific logic for:
    - Connection management
    - Schema introspection
    - Statement execution and transaction control
    - Staging primitives (namespaces and table copies) used by workspaces

    Identifiers are always double-quoted, so generated SQL is portable
    between the supported engines as long as the placeholder style matches.
    """

    #: Namespace that holds the source tables.
    source_namespace: str = "main"

    @abstractmethod
    def connect(self, url: str) -> None:
        """
        Establish database connection.

        Raises:
            ConnectionError: If connection fails
        """
        pass

    @abstractmethod
    def close(self) -> None:
        """Close database connection."""
        pass

    @abstractmethod
    def get_schema(self, schema_name: str | None = None) -> SchemaGraph:
        """
        Introspect and return the complete schema graph.

        Raises:
            SchemaError: If introspection fails
        """
        pass

    @abstractmethod
    def execute(self, sql: str, params: Sequence[Any] = ()) -> int:
        """
        Execute a statement.

        Returns:
            Number of affected rows (0 when the driver reports none)
        """
        pass

    @abstractmethod
    def fetch_all(self, sql: str, params: Sequence[Any] = ()) -> list[tuple[Any, ...]]:
        """Run a query and return every row as a tuple."""
        pass

    @abstractmethod
    def create_namespace(self, name: str) -> None:
        """Create a namespace for staged tables (schema or attached database)."""
        pass

    @abstractmethod
    def drop_namespace(self, name: str) -> None:
        """Drop a staging namespace and everything in it."""
        pass

    @abstractmethod
    def table_exists(self, table: str, namespace: str | None = None) -> bool:
        pass

    @abstractmethod
    def copy_table(self, table: str, target_namespace: str, target_table: str) -> None:
        """Create ``target_namespace.target_table`` as a full copy of a source table."""
        pass

    def fetch_column(self, sql: str, params: Sequence[Any] = ()) -> list[Any]:
        return [row[0] for row in self.fetch_all(sql, params)]

    def fetch_scalar(self, sql: str, params: Sequence[Any] = ()) -> Any:
        rows = self.fetch_all(sql, params)
        return rows[0][0] if rows else None

    def drop_table(self, table: str, namespace: str | None = None) -> None:
        self.execute(f"DROP TABLE IF EXISTS {self.qualify(table, namespace)}")

    def count_rows(self, table: str, namespace: str | None = None) -> int:
        return int(self.fetch_scalar(f"SELECT COUNT(*) FROM {self.qualify(table, namespace)}"))

    @contextmanager
    def transaction(self) -> Iterator[None]:
        """
        Run the enclosed statements atomically.

        Commits on success; rolls back and re-raises on any exception.
        """
        self.execute("BEGIN")
        try:
            yield
        except BaseException:
            self.execute("ROLLBACK")
            raise
        else:
            self.execute("COMMIT")

    def __enter__(self):
        """Support using adapter as context manager."""
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        """Close connection when exiting context."""
        self.close()
        return False

    # Helper methods that can be overridden if needed

    def quote_identifier(self, name: str) -> str:
        """Quote an identifier (table or column name) for safe SQL."""
        return '"' + name.replace('"', '""') + '"'

    def get_placeholder(self) -> str:
        """
        Get the parameter placeholder for this database.

        Default is %s (psycopg2 style). Override for others.
        """
        return "%s"

    def qualify(self, table: str, namespace: str | None = None) -> str:
        """Quoted, namespace-qualified table reference."""
        if namespace:
            return f"{self.quote_identifier(namespace)}.{self.quote_identifier(table)}"
        return self.quote_identifier(table)

    def source_ref(self, table: str) -> str:
        """Reference to the unmodified source copy of ``table``."""
        return self.qualify(table, self.source_namespace)

    def format_timestamp(self, value: datetime) -> Any:
        """Bind value for a timestamp compared against a column."""
        return value.strftime(CUTOFF_FORMAT)

    def window_column(self, column: str) -> str:
        """
        SQL expression a quoted timestamp column is compared through in a
        ``keep_days`` window. The value must be comparable with
        ``format_timestamp`` output.
        """
        return column
