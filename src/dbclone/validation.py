"""Post-limit validation of referential integrity.

Checks that the staged copies still form a closed set: every non-null
foreign key in a staged table points at a row that survived in the staged
parent. A failure here means a keep-set let an orphan through.
"""

from dataclasses import dataclass, field
from typing import Any

from dbclone.adapters.base import DatabaseAdapter
from dbclone.logging import get_logger
from dbclone.models import ForeignKey, SchemaGraph
from dbclone.workspace import Workspace

logger = get_logger(__name__)

MAX_SAMPLES_PER_FK = 20


@dataclass
class OrphanedRecord:
    """A staged row whose parent reference has no staged parent row."""

    table: str
    key_column: str | None
    key_value: Any
    fk: ForeignKey
    fk_value: Any

    def __str__(self) -> str:
        key = f"{self.key_column}={self.key_value}" if self.key_column else "?"
        return (
            f"{self.table}({key}) -> {self.fk.target_table}"
            f"({self.fk.target_column}={self.fk_value}) via '{self.fk.name}' - parent not kept"
        )


@dataclass
class ValidationResult:
    """Result of a referential-integrity check over a workspace."""

    is_valid: bool = True
    orphaned_records: list[OrphanedRecord] = field(default_factory=list)
    orphan_counts: dict[str, int] = field(default_factory=dict)
    total_fk_checks: int = 0

    def add_orphans(self, fk: ForeignKey, count: int, samples: list[OrphanedRecord]) -> None:
        self.orphan_counts[fk.name] = count
        self.orphaned_records.extend(samples)
        self.is_valid = False

    @property
    def total_orphans(self) -> int:
        return sum(self.orphan_counts.values())

    def format_report(self) -> str:
        """Multi-line human-readable report."""
        lines = []
        lines.append("=" * 80)
        lines.append("REFERENTIAL INTEGRITY REPORT")
        lines.append("=" * 80)
        lines.append("")
        lines.append(f"Foreign key checks performed: {self.total_fk_checks}")
        lines.append("")

        if self.is_valid:
            lines.append("Status: VALID")
            lines.append("All foreign key references point to kept rows.")
        else:
            lines.append("Status: INVALID")
            lines.append(f"Found {self.total_orphans} orphaned row(s):")
            lines.append("")

            by_table: dict[str, list[OrphanedRecord]] = {}
            for orphan in self.orphaned_records:
                by_table.setdefault(orphan.table, []).append(orphan)

            for table, orphans in sorted(by_table.items()):
                lines.append(f"Table: {table}")
                for orphan in orphans:
                    lines.append(f"  - {orphan}")
                lines.append("")

        lines.append("=" * 80)
        return "\n".join(lines)


class IntegrityValidator:
    """Checks every FK edge between staged tables for dangling references."""

    def __init__(self, adapter: DatabaseAdapter, graph: SchemaGraph, workspace: Workspace):
        self.adapter = adapter
        self.graph = graph
        self.workspace = workspace

    def validate(self) -> ValidationResult:
        staged = set(self.workspace.tables)
        result = ValidationResult()

        logger.info("Starting integrity validation", table_count=len(staged))

        for fk in self.graph.edges:
            if fk.source_table not in staged or fk.target_table not in staged:
                continue

            result.total_fk_checks += 1
            count = self._count_orphans(fk)
            if count:
                samples = self._sample_orphans(fk)
                result.add_orphans(fk, count, samples)
                logger.warning(
                    "Orphaned rows detected",
                    table=fk.source_table,
                    parent_table=fk.target_table,
                    fk_name=fk.name,
                    count=count,
                )

        logger.info(
            "Validation complete",
            is_valid=result.is_valid,
            orphaned_count=result.total_orphans,
            fk_checks=result.total_fk_checks,
        )
        return result

    def _orphan_condition(self, fk: ForeignKey) -> str:
        q = self.adapter.quote_identifier
        column = q(fk.source_column)
        target = q(fk.target_column)
        parent = self.workspace.qualified_name(fk.target_table)
        return (
            f"{column} IS NOT NULL AND {column} NOT IN "
            f"(SELECT {target} FROM {parent} WHERE {target} IS NOT NULL)"
        )

    def _count_orphans(self, fk: ForeignKey) -> int:
        child = self.workspace.qualified_name(fk.source_table)
        return int(
            self.adapter.fetch_scalar(
                f"SELECT COUNT(*) FROM {child} WHERE {self._orphan_condition(fk)}"
            )
        )

    def _sample_orphans(self, fk: ForeignKey) -> list[OrphanedRecord]:
        q = self.adapter.quote_identifier
        table_info = self.graph.get_table(fk.source_table)
        key_column = table_info.key_column if table_info else None
        child = self.workspace.qualified_name(fk.source_table)
        key_expr = q(key_column) if key_column else "NULL"

        rows = self.adapter.fetch_all(
            f"SELECT {key_expr}, {q(fk.source_column)} FROM {child} "
            f"WHERE {self._orphan_condition(fk)} LIMIT {MAX_SAMPLES_PER_FK}"
        )
        return [
            OrphanedRecord(
                table=fk.source_table,
                key_column=key_column,
                key_value=key_value,
                fk=fk,
                fk_value=fk_value,
            )
            for key_value, fk_value in rows
        ]
