"""
Business logic services for the session cache.
"""

from session_cache.services.login_flow import LoginFlow
from session_cache.services.session_manager import SessionManager, TrackedSession
from session_cache.services.storage_state_updater import StorageStateUpdater

__all__ = [
    "LoginFlow",
    "SessionManager",
    "StorageStateUpdater",
    "TrackedSession",
]
