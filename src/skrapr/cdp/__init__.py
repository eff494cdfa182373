"""
CDP Module - Chrome DevTools Protocol transport, target discovery and node cache.
"""
from skrapr.cdp.dom import NodeCache
from skrapr.cdp.session import ChromeSession, PendingCommand, setup_logging
from skrapr.cdp.targets import find_page_session, get_chrome_sessions

__all__ = [
    "ChromeSession",
    "PendingCommand",
    "setup_logging",
    "NodeCache",
    "find_page_session",
    "get_chrome_sessions",
]
