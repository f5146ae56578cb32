import time
from dataclasses import dataclass, field
from datetime import datetime

from dbclone.adapters.base import DatabaseAdapter
from dbclone.config import SyncConfig
from dbclone.core.executor import LimitExecutor, LimitResult
from dbclone.core.keepset import KeepSet
from dbclone.core.resolver import SubsetResolver
from dbclone.core.schema import load_schema_graph, topological_order
from dbclone.exceptions import ExecutionError, TableNotFoundError
from dbclone.logging import get_logger, log_table_processing
from dbclone.models import SchemaGraph
from dbclone.utils.connection import get_adapter_for_url, parse_database_url
from dbclone.validation import IntegrityValidator, ValidationResult
from dbclone.workspace import Workspace

logger = get_logger(__name__)


@dataclass
class SyncResult:
    """
    Outcome of one staging + limiting run.

    Attributes:
        workspace: Name of the workspace the tables were staged in
        kept: Whether the workspace survived the run (named workspaces do)
        staged: Tables copied into the workspace, in import order
        limits: LimitResult per table a keep-set was applied to
        validation_result: Integrity check of the staged tables (None if skipped)
        duration_ms: Wall-clock time of the run
    """

    workspace: str
    kept: bool = False
    staged: list[str] = field(default_factory=list)
    limits: dict[str, LimitResult] = field(default_factory=dict)
    validation_result: ValidationResult | None = None
    duration_ms: int = 0

    @property
    def failed(self) -> list[LimitResult]:
        return [result for result in self.limits.values() if not result.ok]

    @property
    def ok(self) -> bool:
        if self.failed:
            return False
        return self.validation_result is None or self.validation_result.is_valid

    def total_removed(self) -> int:
        return sum(result.rows_removed for result in self.limits.values())


class RetentionEngine:
    """
    Orchestrates a sync: load the schema graph, resolve keep-sets, stage
    every synced table and trim the staged copies.

    Flow:
    1. Connect to the source database (unless an adapter is supplied)
    2. Introspect the schema and restrict it to the synced tables
    3. Resolve a keep-set per limited table
    4. Stage a copy of every synced table, parents first
    5. Apply each keep-set to its staged copy
    6. Optionally check referential integrity of the staged copies
    """

    def __init__(
        self,
        config: SyncConfig,
        adapter: DatabaseAdapter | None = None,
        now: datetime | None = None,
    ):
        self.config = config
        self.adapter = adapter
        self.now = now
        self.graph: SchemaGraph | None = None
        self._owns_adapter = adapter is None

    def connect(self) -> DatabaseAdapter:
        if self.adapter is None:
            db_config = parse_database_url(self.config.database_url)
            self.adapter = get_adapter_for_url(self.config.database_url, self.config.schema)
            with logger.timed_operation("database_connection", database=db_config.database):
                self.adapter.connect(self.config.database_url)
        return self.adapter

    def close(self) -> None:
        if self.adapter is not None and self._owns_adapter:
            self.adapter.close()
            self.adapter = None
            logger.debug("Database connection closed")

    def __enter__(self) -> "RetentionEngine":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False

    def load(self) -> SchemaGraph:
        """Introspect the source database into the graph used for this sync."""
        if self.graph is not None:
            return self.graph

        adapter = self.connect()
        with logger.timed_operation("schema_introspection"):
            self.graph = load_schema_graph(
                adapter,
                include=self.config.include_tables,
                exclude=self.config.exclude_tables,
                key_overrides=self.config.key_overrides,
                schema_name=self.config.schema,
            )
        return self.graph

    def resolver(self) -> SubsetResolver:
        return SubsetResolver(
            self.load(), self.config.limits, now=self.now, cascade=self.config.cascade
        )

    def plan(self, tables: list[str] | None = None) -> dict[str, KeepSet]:
        """
        Resolve keep-sets without touching any data.

        Raises:
            TableNotFoundError: If a requested table is not part of the sync
        """
        graph = self.load()
        if tables:
            for table in tables:
                if not graph.has_table(table):
                    raise TableNotFoundError(table, graph.get_table_names())
        return self.resolver().plan(tables)

    def run(self, workspace: Workspace | None = None) -> SyncResult:
        """
        Stage and limit every synced table.

        A caller-supplied workspace is left in place; otherwise one is created
        from the config and dropped afterwards unless it was given a name.

        Raises:
            ExecutionError: On the first failed table when ``fail_fast`` is set,
                or when staging a table fails
        """
        start_time = time.time()
        graph = self.load()
        adapter = self.connect()
        plan = self.plan()

        owns_workspace = workspace is None
        if workspace is None:
            workspace = Workspace(
                adapter,
                strategy=self.config.workspace_strategy,
                name=self.config.workspace_name,
            )

        result = SyncResult(workspace=workspace.name, kept=workspace.keep or not owns_workspace)
        order = topological_order(graph)

        logger.info(
            "Starting sync",
            workspace=workspace.name,
            table_count=len(order),
            limited_tables=len(plan),
        )

        try:
            with logger.timed_operation("staging", table_count=len(order)):
                for position, table in enumerate(order, 1):
                    self._stage(workspace, table, position, len(order))
                    result.staged.append(table)

            executor = LimitExecutor(adapter)
            for position, (table, keep_set) in enumerate(plan.items(), 1):
                result.limits[table] = self._limit(executor, workspace, table, keep_set)
                if result.limits[table].ok:
                    log_table_processing(
                        logger,
                        table,
                        "limit",
                        result.limits[table].rows_kept or 0,
                        current=position,
                        total=len(plan),
                    )

            if self.config.validate:
                with logger.timed_operation("validation"):
                    result.validation_result = IntegrityValidator(
                        adapter, graph, workspace
                    ).validate()
        finally:
            if owns_workspace:
                workspace.cleanup_all()

        result.duration_ms = int((time.time() - start_time) * 1000)
        logger.info(
            "Sync completed",
            workspace=workspace.name,
            rows_removed=result.total_removed(),
            failed_tables=len(result.failed),
            duration_ms=result.duration_ms,
        )
        return result

    def _stage(self, workspace: Workspace, table: str, current: int, total: int) -> None:
        try:
            workspace.prepare(table)
            row_count = workspace.count(table)
        except Exception as e:
            raise ExecutionError(table, f"staging failed: {e}") from e
        log_table_processing(logger, table, "stage", row_count, current=current, total=total)

    def _limit(
        self,
        executor: LimitExecutor,
        workspace: Workspace,
        table: str,
        keep_set: KeepSet,
    ) -> LimitResult:
        try:
            removed = executor.apply(table, keep_set, workspace)
        except ExecutionError as e:
            if self.config.fail_fast:
                raise
            logger.warning("Continuing after failed limit", table=table, error=e.reason)
            return LimitResult(table=table, error=e)

        return LimitResult(table=table, rows_removed=removed, rows_kept=workspace.count(table))
