"""Persistence for the guard: store interface, SQL and in-memory stores."""

from .memory_store import MemoryGuardStore
from .sql_store import SqlGuardStore
from .store import GuardStore, call_store

__all__ = [
    "GuardStore",
    "MemoryGuardStore",
    "SqlGuardStore",
    "call_store",
]
