from dataclasses import dataclass

from dbclone.adapters.base import DatabaseAdapter
from dbclone.core.compiler import CompiledQuery, KeepSetCompiler
from dbclone.core.keepset import KeepSet
from dbclone.exceptions import ExecutionError
from dbclone.logging import get_logger
from dbclone.workspace import Workspace

logger = get_logger(__name__)


@dataclass
class LimitResult:
    """Outcome of limiting one staged table."""

    table: str
    rows_removed: int = 0
    rows_kept: int | None = None
    error: ExecutionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class LimitExecutor:
    """
    Deletes staged rows whose key is absent from a keep-set.

    The keep-set is evaluated against the source tables, never against
    other staged copies, so tables can be limited in any order. Each call
    runs in its own transaction: either the delete completes or the staged
    table is left untouched.
    """

    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter
        self.compiler = KeepSetCompiler(adapter)

    def delete_statement(self, keep_set: KeepSet, workspace: Workspace) -> CompiledQuery:
        """DELETE removing every staged row of ``keep_set.table`` outside the keep-set."""
        keep = self.compiler.compile(keep_set)
        key = self.adapter.quote_identifier(keep_set.key or "")
        # NULL values in the NOT IN list would make every comparison unknown
        sql = (
            f"DELETE FROM {workspace.qualified_name(keep_set.table)} "
            f"WHERE {key} NOT IN (SELECT {key} FROM ({keep.sql}) AS _keep "
            f"WHERE {key} IS NOT NULL)"
        )
        return CompiledQuery(sql=sql, params=keep.params)

    def apply(self, table: str, keep_set: KeepSet, workspace: Workspace) -> int:
        """
        Trim the staged copy of ``table`` down to ``keep_set``.

        Returns:
            Number of rows removed from the staged copy

        Raises:
            ExecutionError: If the staged copy is missing or the delete fails
        """
        if keep_set.table != table:
            raise ExecutionError(table, f"keep-set was resolved for '{keep_set.table}'")
        if keep_set.key is None:
            raise ExecutionError(table, "table has no key column")
        if not workspace.has(table):
            raise ExecutionError(table, "staged copy is missing")

        statement = self.delete_statement(keep_set, workspace)

        try:
            with self.adapter.transaction():
                removed = self.adapter.execute(statement.sql, statement.params)
        except Exception as e:
            logger.error("Limit failed; staged table left untouched", table=table, error=str(e))
            raise ExecutionError(table, str(e)) from e

        logger.info("Limit applied", table=table, rows_removed=removed)
        return removed
