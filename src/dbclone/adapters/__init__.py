from dbclone.adapters.base import DatabaseAdapter
from dbclone.adapters.postgresql import PostgreSQLAdapter
from dbclone.adapters.sqlite import SQLiteAdapter

__all__ = [
    "DatabaseAdapter",
    "PostgreSQLAdapter",
    "SQLiteAdapter",
]
