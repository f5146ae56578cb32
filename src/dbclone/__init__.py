"""
dbclone - Clone a database into a shrunk, referentially-intact working copy.

Resolves per-table retention limits across the foreign-key graph so that
trimming a table never orphans child rows and never drops parents that kept
children still reference.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
