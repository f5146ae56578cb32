from datetime import datetime, timedelta

from dbclone.config import RetentionPolicy
from dbclone.core.keepset import Inclusion, IntrinsicClause, KeepSet, ParentConstraint
from dbclone.core.schema import topological_order
from dbclone.exceptions import TableNotFoundError
from dbclone.logging import get_logger
from dbclone.models import SchemaGraph

logger = get_logger(__name__)


class SubsetResolver:
    """
    Resolves which key values of each table survive a retention policy.

    Two forces shape a table's keep-set:

    - Bottom-up inclusion: rows kept in a *directly* limited child force the
      parent rows they reference to be kept, even past the parent's own cap.
    - Top-down exclusion: a row is only kept if each of its parent references
      is NULL or kept in that parent.

    Resolution is a pure function of (graph, policy, now). Nothing is cached
    between calls: each keep-set is derived afresh from the source schema so
    that the result never depends on the order tables are processed in.
    Recursion over circular foreign keys stops at the first revisit, which
    then keeps every row of the revisited table.
    """

    def __init__(
        self,
        graph: SchemaGraph,
        policy: RetentionPolicy,
        now: datetime | None = None,
        cascade: bool = False,
    ):
        self.graph = graph
        self.now = now or datetime.now()
        self.cascade = cascade
        self.policy = self._usable_policy(graph, policy)

    @staticmethod
    def _usable_policy(graph: SchemaGraph, policy: RetentionPolicy) -> RetentionPolicy:
        """Drop entries for tables outside the sync or without a usable key."""
        dropped: set[str] = set()
        for table in policy:
            table_info = graph.get_table(table)
            if table_info is None:
                logger.warning("Limit configured for a table outside the sync", table=table)
                dropped.add(table)
            elif table_info.key_column is None:
                logger.warning(
                    "Table has no primary key or id column; keeping all rows",
                    table=table,
                )
                dropped.add(table)
        return policy.without(dropped) if dropped else policy

    def _key_column(self, table: str) -> str | None:
        table_info = self.graph.get_table(table)
        if table_info is None:
            raise TableNotFoundError(table, self.graph.get_table_names())
        return table_info.key_column

    def has_limit_anywhere(self, table: str, path: frozenset[str] = frozenset()) -> bool:
        """
        True if ``table`` or any table below it (following child edges) has a
        direct limit.

        A parent for which this is False keeps all of its rows, so a
        constraint against it would be a no-op. A revisit within ``path``
        counts as "no limit" for this check.
        """
        if table in path:
            return False
        path = path | {table}

        if self.policy.has_limit(table):
            return True

        return any(
            self.has_limit_anywhere(fk.source_table, path) for fk in self.graph.children_of(table)
        )

    def is_restricted(self, table: str, path: frozenset[str] = frozenset()) -> bool:
        """
        True if ``table`` can lose rows: it has a limit anywhere below it, or
        one of its ancestors does. Only consulted when cascading.
        """
        if table in path:
            return False
        path = path | {table}

        if self.has_limit_anywhere(table):
            return True

        return any(self.is_restricted(fk.target_table, path) for fk in self.graph.parents_of(table))

    def _needs_constraint(self, parent: str) -> bool:
        if self.has_limit_anywhere(parent):
            return True
        return self.cascade and self.is_restricted(parent)

    def build_keep_set(self, table: str, path: tuple[str, ...] = ()) -> KeepSet:
        """
        Synthesize the keep-set for ``table``.

        Args:
            table: Table to resolve
            path: Tables currently being resolved further up the recursion

        Returns:
            KeepSet selecting the key values to retain
        """
        key = self._key_column(table)

        if table in path:
            logger.debug(
                "Circular reference reached; keeping all rows",
                table=table,
                path=" -> ".join(path + (table,)),
            )
            return KeepSet.unrestricted(table, key, cycle_break=True)

        if key is None:
            return KeepSet.unrestricted(table, key)

        path = path + (table,)

        intrinsic = self._intrinsic_clause(table, key)

        inclusions = []
        for fk in self.graph.children_of(table):
            if not self.policy.has_limit(fk.source_table):
                continue
            inclusions.append(Inclusion(edge=fk, child=self.build_keep_set(fk.source_table, path)))

        constraints = []
        for fk in self.graph.parents_of(table):
            if not self._needs_constraint(fk.target_table):
                logger.debug(
                    "Parent is never restricted; skipping constraint",
                    table=table,
                    parent=fk.target_table,
                    column=fk.source_column,
                )
                continue
            constraints.append(
                ParentConstraint(edge=fk, parent=self.build_keep_set(fk.target_table, path))
            )

        return KeepSet(
            table=table,
            key=key,
            intrinsic=intrinsic,
            inclusions=tuple(inclusions),
            constraints=tuple(constraints),
        )

    def _intrinsic_clause(self, table: str, key: str) -> IntrinsicClause | None:
        if not self.policy.has_limit(table):
            return None

        limit = self.policy[table]
        order_by = limit.order_column(key)

        table_info = self.graph.tables[table]
        if table_info.columns and not table_info.has_column(order_by):
            logger.warning(
                "Unknown order_by column; ordering by key column instead",
                table=table,
                order_by=order_by,
                key_column=key,
            )
            order_by = key

        cutoff = None
        if limit.keep_days is not None:
            cutoff = self.now - timedelta(days=limit.keep_days)

        return IntrinsicClause(
            order_by=order_by,
            direction=limit.direction,
            max_rows=limit.max_rows,
            cutoff=cutoff,
        )

    def limited_tables(self) -> list[str]:
        """Directly limited tables, in import (topological) order."""
        return [table for table in topological_order(self.graph) if self.policy.has_limit(table)]

    def plan(self, tables: list[str] | None = None) -> dict[str, KeepSet]:
        """
        Resolve keep-sets for every directly limited table. When cascading,
        unlimited tables whose rows depend on a restricted parent are
        planned too, so their orphans are trimmed.

        Args:
            tables: Restrict the plan to these tables

        Returns:
            Ordered mapping of table -> KeepSet, parents first
        """
        wanted = set(tables) if tables is not None else None
        plan: dict[str, KeepSet] = {}
        for table in topological_order(self.graph):
            if wanted is not None and table not in wanted:
                continue
            if self._key_column(table) is None:
                continue
            if not self.policy.has_limit(table) and not self.cascade:
                continue
            keep_set = self.build_keep_set(table)
            if keep_set.keeps_all_candidates and not keep_set.constraints:
                continue
            logger.debug(
                "Resolved keep-set",
                table=table,
                depth=keep_set.depth(),
                reads=sorted(keep_set.tables()),
                inclusions=len(keep_set.inclusions),
                constraints=len(keep_set.constraints),
            )
            plan[table] = keep_set
        return plan
