from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from dbclone.constants import DEFAULT_WORKSPACE_STRATEGY
from dbclone.exceptions import ConfigError
from dbclone.logging import get_logger

logger = get_logger(__name__)


class DatabaseType(Enum):
    """Supported database types."""

    POSTGRESQL = "postgresql"
    SQLITE = "sqlite"


class SortDirection(Enum):
    """Order in which rows compete for a ``max_rows`` cap."""

    ASC = "asc"
    DESC = "desc"

    @property
    def sql(self) -> str:
        return self.value.upper()


class WorkspaceStrategy(Enum):
    """Where staged copies live."""

    SCHEMA = "schema"  # Separate schema (PostgreSQL) or attached database (SQLite)
    TABLES = "tables"  # Prefixed tables next to the source tables


LIMIT_FIELDS = ("max_rows", "keep_days", "order_by", "direction")


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


@dataclass(frozen=True)
class TableLimit:
    """
    Intrinsic retention rule for a single table.

    ``keep_days`` keeps rows whose ``order_by`` value is at or after
    now - keep_days; ``max_rows`` then caps the windowed rows, ordered by
    ``order_by`` in ``direction``. Both compose by intersection.
    """

    max_rows: int | None = None
    keep_days: int | None = None
    order_by: str | None = None
    direction: SortDirection = SortDirection.DESC

    @property
    def is_empty(self) -> bool:
        """True when the rule restricts nothing."""
        return self.max_rows is None and self.keep_days is None

    def order_column(self, key_column: str) -> str:
        return self.order_by or key_column

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {}
        if self.max_rows is not None:
            data["max_rows"] = self.max_rows
        if self.keep_days is not None:
            data["keep_days"] = self.keep_days
        if self.order_by is not None:
            data["order_by"] = self.order_by
        data["direction"] = self.direction.value
        return data

    @classmethod
    def parse(cls, table: str, raw: Mapping[str, Any], strict: bool = False) -> "TableLimit":
        """
        Parse a raw limit mapping.

        Invalid fields fall back to "no restriction" (``direction`` falls back
        to descending) and are logged as warnings. With ``strict=True`` the
        first problem is raised instead.

        Raises:
            ConfigError: If ``strict`` and a field is invalid
        """
        problems: list[ConfigError] = []

        for key in raw:
            if key not in LIMIT_FIELDS:
                problems.append(ConfigError(table, str(key), "unknown option"))

        max_rows = raw.get("max_rows")
        if max_rows is not None and not (_is_int(max_rows) and max_rows > 0):
            problems.append(
                ConfigError(table, "max_rows", f"expected a positive integer, got {max_rows!r}")
            )
            max_rows = None

        keep_days = raw.get("keep_days")
        if keep_days is not None and not (_is_int(keep_days) and keep_days >= 0):
            problems.append(
                ConfigError(
                    table, "keep_days", f"expected a non-negative integer, got {keep_days!r}"
                )
            )
            keep_days = None

        order_by = raw.get("order_by")
        if order_by is not None and not (isinstance(order_by, str) and order_by.strip()):
            problems.append(
                ConfigError(table, "order_by", f"expected a column name, got {order_by!r}")
            )
            order_by = None
        elif order_by is not None:
            order_by = order_by.strip()

        direction = SortDirection.DESC
        raw_direction = raw.get("direction")
        if raw_direction is not None:
            try:
                direction = SortDirection(str(raw_direction).strip().lower())
            except ValueError:
                problems.append(
                    ConfigError(
                        table,
                        "direction",
                        f"expected 'asc' or 'desc', got {raw_direction!r}; using 'desc'",
                    )
                )

        if problems and strict:
            raise problems[0]

        for problem in problems:
            logger.warning(
                "Ignoring invalid limit option",
                table=problem.table,
                option=problem.field,
                reason=problem.reason,
            )

        return cls(
            max_rows=max_rows,
            keep_days=keep_days,
            order_by=order_by,
            direction=direction,
        )


class RetentionPolicy(Mapping[str, TableLimit]):
    """
    Immutable mapping of table name -> TableLimit.

    A table without an entry has no intrinsic restriction. Entries that
    restrict nothing are not stored.
    """

    def __init__(self, limits: Mapping[str, TableLimit] | None = None):
        self._limits: dict[str, TableLimit] = {
            table: limit for table, limit in (limits or {}).items() if not limit.is_empty
        }

    def __getitem__(self, table: str) -> TableLimit:
        return self._limits[table]

    def __iter__(self) -> Iterator[str]:
        return iter(self._limits)

    def __len__(self) -> int:
        return len(self._limits)

    def __repr__(self) -> str:
        return f"RetentionPolicy({self._limits!r})"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, RetentionPolicy):
            return self._limits == other._limits
        return NotImplemented

    def __hash__(self) -> int:
        return hash(frozenset(self._limits.items()))

    def has_limit(self, table: str) -> bool:
        """True if ``table`` has a direct (intrinsic) limit."""
        return table in self._limits

    def without(self, tables: set[str]) -> "RetentionPolicy":
        return RetentionPolicy(
            {table: limit for table, limit in self._limits.items() if table not in tables}
        )

    def to_dict(self) -> dict[str, dict[str, Any]]:
        return {table: limit.to_dict() for table, limit in self._limits.items()}

    @classmethod
    def from_mapping(
        cls, data: Mapping[str, Any] | None, strict: bool = False
    ) -> "RetentionPolicy":
        """
        Build a policy from a raw ``{table: {option: value}}`` mapping.

        Raises:
            ConfigError: If ``strict`` and any entry is invalid
        """
        limits: dict[str, TableLimit] = {}
        for table, raw in (data or {}).items():
            if raw is None:
                continue
            if not isinstance(raw, Mapping):
                error = ConfigError(str(table), "*", "limit entry must be a mapping")
                if strict:
                    raise error
                logger.warning("Ignoring invalid limit entry", table=table, reason=error.reason)
                continue

            limit = TableLimit.parse(str(table), raw, strict=strict)
            if limit.is_empty:
                logger.warning(
                    "Limit entry restricts nothing (set max_rows or keep_days); ignoring",
                    table=table,
                )
                continue
            limits[str(table)] = limit

        return cls(limits)


@dataclass
class SyncConfig:
    """Configuration for one sync operation."""

    database_url: str
    limits: RetentionPolicy = field(default_factory=RetentionPolicy)
    schema: str | None = None
    include_tables: set[str] | None = None
    exclude_tables: set[str] = field(default_factory=set)
    key_overrides: dict[str, str] = field(default_factory=dict)
    workspace_strategy: WorkspaceStrategy = WorkspaceStrategy(DEFAULT_WORKSPACE_STRATEGY)
    workspace_name: str | None = None  # Named workspaces survive the run
    validate: bool = True
    fail_fast: bool = False
    cascade: bool = False  # Also trim unlimited children of restricted parents
    verbose: bool = False
