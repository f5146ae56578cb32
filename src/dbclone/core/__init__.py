from dbclone.core.engine import RetentionEngine, SyncResult
from dbclone.core.executor import LimitExecutor, LimitResult
from dbclone.core.keepset import KeepSet
from dbclone.core.resolver import SubsetResolver

__all__ = [
    "RetentionEngine",
    "SyncResult",
    "LimitExecutor",
    "LimitResult",
    "KeepSet",
    "SubsetResolver",
]
