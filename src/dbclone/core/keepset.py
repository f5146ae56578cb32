"""
Declarative keep-set values.

A KeepSet describes which key values of one table survive limiting:

    (intrinsic rows  UNION  rows referenced by limited children)
    AND every parent reference is NULL or kept in the parent's KeepSet

Instances are immutable and carry no connection or cached results; the
compiler turns them into SQL evaluated against the source database.
"""

from dataclasses import dataclass
from datetime import datetime

from dbclone.config import SortDirection
from dbclone.constants import CUTOFF_FORMAT
from dbclone.models import ForeignKey


@dataclass(frozen=True)
class IntrinsicClause:
    """A table's own window/cap. ``cutoff`` is None when no day window applies."""

    order_by: str
    direction: SortDirection
    max_rows: int | None = None
    cutoff: datetime | None = None


@dataclass(frozen=True)
class Inclusion:
    """Bottom-up: keep parent rows referenced by the child's kept rows."""

    edge: ForeignKey
    child: "KeepSet"


@dataclass(frozen=True)
class ParentConstraint:
    """Top-down: the row's reference along ``edge`` is NULL or kept in ``parent``."""

    edge: ForeignKey
    parent: "KeepSet"


@dataclass(frozen=True)
class KeepSet:
    table: str
    key: str | None
    intrinsic: IntrinsicClause | None = None
    inclusions: tuple[Inclusion, ...] = ()
    constraints: tuple[ParentConstraint, ...] = ()
    cycle_break: bool = False

    @classmethod
    def unrestricted(cls, table: str, key: str | None, cycle_break: bool = False) -> "KeepSet":
        """Every row of ``table``."""
        return cls(table=table, key=key, cycle_break=cycle_break)

    @property
    def is_unrestricted(self) -> bool:
        return self.intrinsic is None and not self.inclusions and not self.constraints

    @property
    def keeps_all_candidates(self) -> bool:
        """True when the candidate set is the whole table (no intrinsic clause)."""
        return self.intrinsic is None

    def depth(self) -> int:
        """Nesting depth of the keep-set tree (1 for a leaf)."""
        nested = [inc.child.depth() for inc in self.inclusions]
        nested += [con.parent.depth() for con in self.constraints]
        return 1 + max(nested, default=0)

    def tables(self) -> set[str]:
        """All tables the keep-set reads from."""
        names = {self.table}
        for inc in self.inclusions:
            names |= inc.child.tables()
        for con in self.constraints:
            names |= con.parent.tables()
        return names

    def describe(self, indent: int = 0) -> str:
        """Readable multi-line outline, used by ``dbclone plan --explain``."""
        pad = "  " * indent
        if self.cycle_break:
            return f"{pad}{self.table}: all rows (cycle break)"
        if self.is_unrestricted:
            return f"{pad}{self.table}: all rows"

        lines = [f"{pad}{self.table}:"]
        if self.intrinsic is None:
            lines.append(f"{pad}  candidates: all rows")
        else:
            parts = []
            if self.intrinsic.cutoff is not None:
                cutoff = self.intrinsic.cutoff.strftime(CUTOFF_FORMAT)
                parts.append(f"{self.intrinsic.order_by} >= {cutoff}")
            if self.intrinsic.max_rows is not None:
                parts.append(
                    f"first {self.intrinsic.max_rows} by "
                    f"{self.intrinsic.order_by} {self.intrinsic.direction.sql}"
                )
            lines.append(f"{pad}  candidates: {'; '.join(parts)}")
        for inc in self.inclusions:
            lines.append(f"{pad}  + referenced by {inc.edge}")
            lines.append(inc.child.describe(indent + 2))
        for con in self.constraints:
            lines.append(f"{pad}  requires {con.edge} kept")
            lines.append(con.parent.describe(indent + 2))
        return "\n".join(lines)
