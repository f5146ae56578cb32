"""
Staged copies of source tables.

Limits are applied to a workspace copy, never to the source. Two strategies:

- ``schema``: copies live in their own namespace under the source table names
  (a schema on PostgreSQL, an attached database on SQLite).
- ``tables``: copies live next to the source as ``_dbclone_<table>``.

A workspace created with an explicit name is kept by ``cleanup_all``;
a generated one is dropped.
"""

import secrets
import time

from dbclone.adapters.base import DatabaseAdapter
from dbclone.config import WorkspaceStrategy
from dbclone.constants import WORKSPACE_PREFIX
from dbclone.logging import get_logger

logger = get_logger(__name__)


class Workspace:
    def __init__(
        self,
        adapter: DatabaseAdapter,
        strategy: WorkspaceStrategy = WorkspaceStrategy.SCHEMA,
        name: str | None = None,
    ):
        self.adapter = adapter
        self.strategy = strategy
        self.keep = name is not None
        self.name = name or f"{WORKSPACE_PREFIX}{int(time.time())}_{secrets.token_hex(2)}"
        self._prepared: list[str] = []
        self._namespace_ready = False

    @property
    def namespace(self) -> str:
        if self.strategy == WorkspaceStrategy.SCHEMA:
            return self.name
        return self.adapter.source_namespace

    def staged_name(self, table: str) -> str:
        if self.strategy == WorkspaceStrategy.SCHEMA:
            return table
        return f"{WORKSPACE_PREFIX}{table}"

    def qualified_name(self, table: str) -> str:
        """Quoted reference to the staged copy of ``table``."""
        return self.adapter.qualify(self.staged_name(table), self.namespace)

    @property
    def tables(self) -> list[str]:
        return list(self._prepared)

    def _ensure_namespace(self) -> None:
        if self._namespace_ready or self.strategy != WorkspaceStrategy.SCHEMA:
            return
        self.adapter.create_namespace(self.name)
        self._namespace_ready = True
        logger.debug("Workspace namespace ready", workspace=self.name)

    def prepare(self, table: str) -> None:
        """Stage a full copy of a source table, replacing any earlier copy."""
        self._ensure_namespace()
        self.adapter.drop_table(self.staged_name(table), self.namespace)
        self.adapter.copy_table(table, self.namespace, self.staged_name(table))
        if table not in self._prepared:
            self._prepared.append(table)
        logger.debug("Staged table", table=table, staged=self.qualified_name(table))

    def has(self, table: str) -> bool:
        if self.strategy == WorkspaceStrategy.SCHEMA and not self._namespace_ready:
            return False
        return self.adapter.table_exists(self.staged_name(table), self.namespace)

    def count(self, table: str) -> int:
        return self.adapter.count_rows(self.staged_name(table), self.namespace)

    def cleanup(self, table: str) -> None:
        self.adapter.drop_table(self.staged_name(table), self.namespace)
        if table in self._prepared:
            self._prepared.remove(table)

    def cleanup_all(self) -> None:
        """Drop staged copies, unless this is a named (kept) workspace."""
        if self.keep:
            logger.info("Keeping workspace", workspace=self.name, tables=len(self._prepared))
            return

        if self.strategy == WorkspaceStrategy.SCHEMA:
            if self._namespace_ready:
                self.adapter.drop_namespace(self.name)
                self._namespace_ready = False
            self._prepared.clear()
        else:
            for table in list(self._prepared):
                self.cleanup(table)
        logger.debug("Workspace dropped", workspace=self.name)

    def __enter__(self) -> "Workspace":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.cleanup_all()
        return False
