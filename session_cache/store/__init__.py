"""
Persistence for storage states.

Provides the store protocol and its filesystem and in-memory backends.
"""

from session_cache.store.file_store import FileStorageStateStore
from session_cache.store.memory_store import MemoryStorageStateStore
from session_cache.store.protocol import StorageStateStore

__all__ = ["FileStorageStateStore", "MemoryStorageStateStore", "StorageStateStore"]
