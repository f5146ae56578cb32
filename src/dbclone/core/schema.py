"""Schema graph loading, import ordering and cycle diagnostics."""

from collections.abc import Iterable
from dataclasses import replace

from dbclone.adapters.base import DatabaseAdapter
from dbclone.exceptions import SchemaError
from dbclone.logging import get_logger
from dbclone.models import SchemaGraph

logger = get_logger(__name__)


def load_schema_graph(
    adapter: DatabaseAdapter,
    include: Iterable[str] | None = None,
    exclude: Iterable[str] = (),
    key_overrides: dict[str, str] | None = None,
    schema_name: str | None = None,
) -> SchemaGraph:
    """
    Build the SchemaGraph for one sync operation.

    Args:
        adapter: Connected adapter for the source database
        include: Tables taking part in the sync (None = every table)
        exclude: Tables left out of the sync; their edges are dropped
        key_overrides: Fallback key column per table without a primary key
        schema_name: Catalog schema to introspect (adapter default if None)

    Returns:
        SchemaGraph restricted to the synced tables. An empty schema yields
        an empty graph.

    Raises:
        SchemaError: If catalog introspection is unavailable
    """
    try:
        full = adapter.get_schema(schema_name)
    except SchemaError:
        raise
    except Exception as e:
        raise SchemaError(str(e)) from e

    tables = full.tables
    if key_overrides:
        tables = {
            name: replace(table, key_override=key_overrides[name])
            if name in key_overrides
            else table
            for name, table in tables.items()
        }

    graph = SchemaGraph(tables=tables, edges=full.edges + full.self_references).restrict(
        include=set(include) if include is not None else None,
        exclude=set(exclude),
    )

    for name in sorted(graph.tables):
        table = graph.tables[name]
        if table.has_composite_key:
            logger.warning(
                "Composite primary key reduced to its first column",
                table=name,
                primary_key=", ".join(table.primary_key),
                key_column=table.key_column,
            )

    cycles = find_cycles(graph)
    for cycle in cycles:
        logger.warning(
            "Circular foreign keys detected; revisited tables keep all rows",
            cycle=" -> ".join(cycle + [cycle[0]]),
        )

    logger.info(
        "Schema graph loaded",
        table_count=len(graph.tables),
        fk_count=len(graph.edges),
        self_reference_count=len(graph.self_references),
        cycle_count=len(cycles),
    )
    return graph


def topological_order(graph: SchemaGraph) -> list[str]:
    """
    Order tables so that referenced (parent) tables come before children.

    Depth-first with visiting/visited marks. Reaching a table that is still
    being visited means a cycle: that edge is not followed again and the walk
    carries on, so every table appears exactly once and the sort is total.
    Runs in O(tables + edges) and never raises.
    """
    dependencies = graph.dependencies()
    ordered: list[str] = []
    visited: set[str] = set()
    visiting: set[str] = set()

    def visit(table: str) -> None:
        if table in visited or table in visiting:
            return

        visiting.add(table)
        for dep in sorted(dependencies.get(table, ())):
            visit(dep)
        visiting.discard(table)

        visited.add(table)
        ordered.append(table)

    for table in sorted(graph.tables):
        visit(table)

    return ordered


def find_cycles(graph: SchemaGraph) -> list[list[str]]:
    """
    Find cycles in the dependency graph using depth-first search.

    Uses the recursion stack to detect back edges. Self-references are not
    part of the graph and are never reported.

    Returns:
        List of cycles, each a list of table names in path order
    """
    dependencies = graph.dependencies()
    cycles: list[list[str]] = []
    visited: set[str] = set()
    rec_stack: list[str] = []

    def dfs(node: str) -> None:
        if node in rec_stack:
            cycle_start = rec_stack.index(node)
            cycles.append(rec_stack[cycle_start:])
            return

        if node in visited:
            return

        visited.add(node)
        rec_stack.append(node)

        for neighbor in sorted(dependencies.get(node, ())):
            dfs(neighbor)

        rec_stack.pop()

    for node in sorted(dependencies):
        if node not in visited:
            dfs(node)

    return cycles
