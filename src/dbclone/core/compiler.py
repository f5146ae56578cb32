from dataclasses import dataclass
from typing import Any

from dbclone.adapters.base import DatabaseAdapter
from dbclone.core.keepset import Inclusion, KeepSet, ParentConstraint


@dataclass(frozen=True)
class CompiledQuery:
    """SQL text plus its positional parameters, in placeholder order."""

    sql: str
    params: tuple[Any, ...] = ()

    def __str__(self) -> str:
        return self.sql


class KeepSetCompiler:
    """
    Compiles KeepSet values into nested set-membership SQL.

    Every table reference points at the adapter's *source* namespace, so a
    compiled keep-set reads the unmodified data no matter which staged
    copies have been trimmed already. Derived tables carrying ORDER BY/LIMIT
    are wrapped in an aliased subquery so they stay valid inside IN/UNION.
    """

    def __init__(self, adapter: DatabaseAdapter):
        self.adapter = adapter

    def compile(self, keep_set: KeepSet) -> CompiledQuery:
        """
        Compile a keep-set into a query returning the kept key values.

        Raises:
            ValueError: If the table has no key column
        """
        params: list[Any] = []
        sql = self._keep_sql(keep_set, params)
        return CompiledQuery(sql=sql, params=tuple(params))

    def _q(self, name: str) -> str:
        return self.adapter.quote_identifier(name)

    def _keep_sql(self, keep_set: KeepSet, params: list[Any]) -> str:
        if keep_set.key is None:
            raise ValueError(f"Table '{keep_set.table}' has no key column to select")

        key = self._q(keep_set.key)
        source = self.adapter.source_ref(keep_set.table)
        select = f"SELECT {key} FROM {source}"

        if keep_set.is_unrestricted:
            return select

        wheres = []
        # Without an intrinsic clause the candidate set is the whole table,
        # so the union with bottom-up inclusions cannot add anything.
        if not keep_set.keeps_all_candidates:
            candidates = [self._intrinsic_sql(keep_set, params)]
            for inclusion in keep_set.inclusions:
                candidates.append(self._inclusion_sql(keep_set, inclusion, params))
            wheres.append(f"{key} IN ({' UNION '.join(candidates)})")

        for constraint in keep_set.constraints:
            wheres.append(self._constraint_sql(constraint, params))

        if not wheres:
            return select
        return f"{select} WHERE {' AND '.join(wheres)}"

    def _intrinsic_sql(self, keep_set: KeepSet, params: list[Any]) -> str:
        clause = keep_set.intrinsic
        assert clause is not None and keep_set.key is not None

        key = self._q(keep_set.key)
        order_by = self._q(clause.order_by)
        placeholder = self.adapter.get_placeholder()

        inner = f"SELECT {key} FROM {self.adapter.source_ref(keep_set.table)}"

        if clause.cutoff is not None:
            inner += f" WHERE {self.adapter.window_column(order_by)} >= {placeholder}"
            params.append(self.adapter.format_timestamp(clause.cutoff))

        if clause.max_rows is not None:
            direction = clause.direction.sql
            inner += f" ORDER BY {order_by} {direction}"
            if clause.order_by != keep_set.key:
                # Ties on the ordering column are broken by key so the cap is deterministic
                inner += f", {key} {direction}"
            inner += f" LIMIT {placeholder}"
            params.append(clause.max_rows)

        alias = self._q(f"_base_{keep_set.table}")
        return f"SELECT {key} FROM ({inner}) AS {alias}"

    def _inclusion_sql(self, keep_set: KeepSet, inclusion: Inclusion, params: list[Any]) -> str:
        """Key values of ``keep_set.table`` referenced by the child's kept rows."""
        edge = inclusion.edge
        child = inclusion.child
        assert child.key is not None and keep_set.key is not None

        column = self._q(edge.source_column)
        referenced = (
            f"SELECT {column} FROM {self.adapter.source_ref(edge.source_table)} "
            f"WHERE {self._membership(child.key, child, params)}{column} IS NOT NULL"
        )

        if edge.target_column == keep_set.key:
            return referenced

        # The FK points at a non-key column: map referenced values back to keys
        return (
            f"SELECT {self._q(keep_set.key)} FROM {self.adapter.source_ref(keep_set.table)} "
            f"WHERE {self._q(edge.target_column)} IN ({referenced})"
        )

    def _membership(self, key: str, keep_set: KeepSet, params: list[Any]) -> str:
        """``key IN (<keep-set>) AND `` prefix, empty for an unrestricted keep-set."""
        if keep_set.is_unrestricted:
            return ""
        return f"{self._q(key)} IN ({self._keep_sql(keep_set, params)}) AND "

    def _constraint_sql(self, constraint: ParentConstraint, params: list[Any]) -> str:
        """The row's reference is NULL or points at a kept parent row."""
        edge = constraint.edge
        parent = constraint.parent
        column = self._q(edge.source_column)
        target = self._q(edge.target_column)
        parent_source = self.adapter.source_ref(parent.table)

        if parent.is_unrestricted:
            parent_values = f"SELECT {target} FROM {parent_source}"
        elif edge.target_column == parent.key:
            parent_values = self._keep_sql(parent, params)
        else:
            assert parent.key is not None
            parent_values = (
                f"SELECT {target} FROM {parent_source} "
                f"WHERE {self._q(parent.key)} IN ({self._keep_sql(parent, params)})"
            )

        return f"({column} IS NULL OR {column} IN ({parent_values}))"
