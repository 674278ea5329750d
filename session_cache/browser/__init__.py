"""
Interface to the browser-automation driver.
"""

from session_cache.browser.protocol import AuthenticatorFactory, BrowserAuthenticator, Cookie

__all__ = ["AuthenticatorFactory", "BrowserAuthenticator", "Cookie"]
