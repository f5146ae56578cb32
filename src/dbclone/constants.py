DEFAULT_POSTGRESQL_PORT = 5432
"""Default port number for PostgreSQL connections."""

DEFAULT_KEY_COLUMN = "id"
"""Column used as the row key when a table has no catalog primary key."""

WORKSPACE_PREFIX = "_dbclone_"
"""Prefix for staged tables and generated workspace namespaces."""

DEFAULT_WORKSPACE_STRATEGY = "schema"
"""Default staging strategy: a separate schema/attached database."""

MAX_SIMILAR_SUGGESTIONS = 3
"""Maximum number of similar suggestions to show in error messages."""

CUTOFF_FORMAT = "%Y-%m-%d %H:%M:%S"
"""Format of the keep_days cutoff timestamp bound into SQL."""
