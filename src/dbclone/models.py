from dataclasses import dataclass, field

from dbclone.constants import DEFAULT_KEY_COLUMN


@dataclass(frozen=True)
class Column:
    """Represents a database column."""

    name: str
    data_type: str
    nullable: bool
    is_primary_key: bool
    default: str | None = None

    def __hash__(self) -> int:
        return hash((self.name, self.data_type))


@dataclass(frozen=True)
class ForeignKey:
    """
    A single-column foreign key edge: child (source) row -> parent (target) row.

    Composite catalog constraints are reported as one edge per column pair.
    """

    name: str
    source_table: str
    source_column: str
    target_table: str
    target_column: str
    is_nullable: bool = True

    def as_edge(self) -> tuple[str, str]:
        """Return as directed edge (child -> parent)."""
        return (self.source_table, self.target_table)

    @property
    def is_self_referential(self) -> bool:
        return self.source_table == self.target_table

    def __str__(self) -> str:
        return (
            f"{self.source_table}.{self.source_column} -> "
            f"{self.target_table}.{self.target_column}"
        )


@dataclass(frozen=True)
class Table:
    """
    A table as seen by one sync operation.

    ``key_override`` carries a configured fallback key column for tables
    without a catalog primary key.
    """

    name: str
    columns: tuple[Column, ...] = ()
    primary_key: tuple[str, ...] = ()
    schema: str | None = None
    key_override: str | None = field(default=None, compare=False)

    @property
    def key_column(self) -> str | None:
        """
        Column whose values identify rows of this table.

        First primary-key column; else the configured fallback; else ``id``
        when the table has such a column; else None (the table is keyless
        and cannot be row-limited).
        """
        if self.primary_key:
            return self.primary_key[0]
        if self.key_override and self.has_column(self.key_override):
            return self.key_override
        if self.has_column(DEFAULT_KEY_COLUMN):
            return DEFAULT_KEY_COLUMN
        return None

    @property
    def has_composite_key(self) -> bool:
        return len(self.primary_key) > 1

    def get_column(self, name: str) -> Column | None:
        for col in self.columns:
            if col.name == name:
                return col
        return None

    def has_column(self, name: str) -> bool:
        return self.get_column(name) is not None

    def get_column_names(self) -> list[str]:
        return [col.name for col in self.columns]


@dataclass
class SchemaGraph:
    """
    Tables and foreign-key edges for one sync operation.

    Adjacency is built once on construction; treat instances as immutable.
    Self-referencing edges never enter ``edges``: they are kept apart in
    ``self_references`` and take no part in ordering or subset propagation.
    """

    tables: dict[str, Table]
    edges: list[ForeignKey]
    self_references: list[ForeignKey] = field(default_factory=list)
    _children: dict[str, tuple[ForeignKey, ...]] = field(
        init=False, repr=False, compare=False, default_factory=dict
    )
    _parents: dict[str, tuple[ForeignKey, ...]] = field(
        init=False, repr=False, compare=False, default_factory=dict
    )

    def __post_init__(self) -> None:
        kept: list[ForeignKey] = []
        self_refs: list[ForeignKey] = []
        for fk in self.edges:
            if fk.source_table not in self.tables or fk.target_table not in self.tables:
                continue
            if fk.is_self_referential:
                self_refs.append(fk)
                continue
            kept.append(fk)
        self.edges = kept
        self.self_references = [*self.self_references, *self_refs]

        children: dict[str, list[ForeignKey]] = {}
        parents: dict[str, list[ForeignKey]] = {}
        for fk in self.edges:
            children.setdefault(fk.target_table, []).append(fk)
            parents.setdefault(fk.source_table, []).append(fk)
        self._children = {name: tuple(fks) for name, fks in children.items()}
        self._parents = {name: tuple(fks) for name, fks in parents.items()}

    def get_table(self, name: str) -> Table | None:
        return self.tables.get(name)

    def has_table(self, name: str) -> bool:
        return name in self.tables

    def get_table_names(self) -> list[str]:
        return list(self.tables.keys())

    def children_of(self, table: str) -> tuple[ForeignKey, ...]:
        """Edges whose parent (target) is ``table``."""
        return self._children.get(table, ())

    def parents_of(self, table: str) -> tuple[ForeignKey, ...]:
        """Edges whose child (source) is ``table``."""
        return self._parents.get(table, ())

    def dependencies(self) -> dict[str, set[str]]:
        """Map of table -> set of tables it references."""
        deps: dict[str, set[str]] = {name: set() for name in self.tables}
        for fk in self.edges:
            deps[fk.source_table].add(fk.target_table)
        return deps

    def restrict(
        self, include: set[str] | None = None, exclude: set[str] | None = None
    ) -> "SchemaGraph":
        """
        Return a new graph limited to the given tables.

        Edges with an endpoint outside the result are dropped.
        """
        names = set(self.tables) if include is None else set(include) & set(self.tables)
        if exclude:
            names -= set(exclude)
        return SchemaGraph(
            tables={name: table for name, table in self.tables.items() if name in names},
            edges=self.edges + self.self_references,
        )
