"""
Persistence adapters for the offline queue and the technician session.
"""

from fieldops.infrastructure.persistence.queue import InMemoryActionQueue, SQLiteActionQueue
from fieldops.infrastructure.persistence.session import (
    FilesystemSessionStore,
    InMemorySessionStore,
)

__all__ = [
    "InMemoryActionQueue",
    "SQLiteActionQueue",
    "InMemorySessionStore",
    "FilesystemSessionStore",
]
