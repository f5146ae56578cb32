from dbclone.constants import MAX_SIMILAR_SUGGESTIONS

__all__ = [
    "DbcloneError",
    "ConnectionError",
    "InvalidURLError",
    "UnsupportedDatabaseError",
    "TableNotFoundError",
    "SchemaError",
    "ConfigError",
    "ConfigFileError",
    "ExecutionError",
]


class DbcloneError(Exception):
    """Base exception for all dbclone errors."""

    pass


class ConnectionError(DbcloneError):
    """Failed to connect to database."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        masked_url = self._mask_password(url)
        super().__init__(f"Cannot connect to {masked_url}: {reason}")

    @staticmethod
    def _mask_password(url: str) -> str:
        """Mask password in database URL for safe display."""
        import re

        return re.sub(r"(://[^:]+:)(.+)(@[^@]+)$", r"\1****\3", url)


class InvalidURLError(DbcloneError):
    """Database URL is malformed."""

    def __init__(self, url: str, reason: str):
        self.url = url
        self.reason = reason
        super().__init__(f"Invalid database URL: {reason}")


class UnsupportedDatabaseError(DbcloneError):
    """Database type is not supported."""

    def __init__(self, db_type: str):
        self.db_type = db_type
        super().__init__(
            f"Unsupported database type: '{db_type}'. Supported types: postgresql, sqlite"
        )


class TableNotFoundError(DbcloneError):
    """Referenced table does not exist in the sync."""

    def __init__(self, table: str, available_tables: list[str] | None = None):
        self.table = table
        self.available_tables = available_tables
        msg = f"Table '{table}' not found in database"
        if available_tables:
            suggestions = self._find_similar(table, available_tables)
            if suggestions:
                msg += f". Did you mean: {', '.join(suggestions)}?"
        super().__init__(msg)

    @staticmethod
    def _find_similar(
        target: str, candidates: list[str], max_results: int = MAX_SIMILAR_SUGGESTIONS
    ) -> list[str]:
        """Find similar table names using simple substring matching."""
        target_lower = target.lower()
        similar = []
        for name in candidates:
            name_lower = name.lower()
            if target_lower in name_lower or name_lower in target_lower:
                similar.append(name)
            elif len(set(target_lower) & set(name_lower)) > len(target_lower) // 2:
                similar.append(name)
        return similar[:max_results]


class SchemaError(DbcloneError):
    """Catalog metadata is unavailable or malformed. Fatal for the whole sync."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Failed to introspect schema: {reason}")


class ConfigError(DbcloneError):
    """
    A retention policy entry is structurally invalid.

    Lenient policy parsing logs these as warnings and falls back to
    "no restriction" for the offending field; strict parsing raises them.
    """

    def __init__(self, table: str, field: str, reason: str):
        self.table = table
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid limit '{field}' for table '{table}': {reason}")


class ConfigFileError(ConfigError):
    """Error loading or parsing a configuration file."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.table = ""
        self.field = ""
        self.reason = reason
        DbcloneError.__init__(self, f"Failed to load config from '{path}': {reason}")


class ExecutionError(DbcloneError):
    """Applying a keep-set to a staged table failed. Fatal for that table only."""

    def __init__(self, table: str, reason: str):
        self.table = table
        self.reason = reason
        super().__init__(f"Limit failed for table '{table}': {reason}")
