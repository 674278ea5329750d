"""
Coordination primitives: session keys, single-flight calls, cross-process locks.
"""

from session_cache.core.file_lock import DirectoryLock
from session_cache.core.keys import session_key
from session_cache.core.single_flight import SingleFlight

__all__ = ["DirectoryLock", "SingleFlight", "session_key"]
