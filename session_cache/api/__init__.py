"""
HTTP access to the application under test.
"""

from session_cache.api.probe import StorageStateProbe, cookie_header

__all__ = ["StorageStateProbe", "cookie_header"]
