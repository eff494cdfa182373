"""
Skrapr Error Taxonomy - Custom exception classes for protocol sessions and scraping runs.

This module defines a hierarchy of exceptions so callers can tell transport
failures, protocol rejections, timeouts and task failures apart and decide
whether to retry, skip or abort.
"""
from typing import Any, Dict, Optional


class SkraprError(Exception):
    """Base exception for all skrapr errors."""
    
    def __init__(self, message: str, target_id: Optional[str] = None,
                 method: Optional[str] = None, **context):
        super().__init__(message)
        self.message = message
        self.target_id = target_id
        self.method = method
        self.context = context
    
    def __str__(self):
        parts = [self.message]
        if self.target_id:
            parts.append(f"target_id={self.target_id}")
        if self.method:
            parts.append(f"method={self.method}")
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            parts.append(f"context=({context_str})")
        return " | ".join(parts)


class CDPConnectionError(SkraprError):
    """Raised when the debugging endpoint is unreachable or the socket is lost."""
    pass


class CDPTimeoutError(SkraprError):
    """Raised when a command or a navigation wait exceeds its deadline."""
    
    def __init__(self, message: str, timeout: Optional[float] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.timeout = timeout


class CommandError(SkraprError):
    """Raised when the browser rejects a command with an error payload."""
    
    def __init__(self, message: str, code: Optional[int] = None,
                 cdp_error: Optional[Dict[str, Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.code = code
        self.cdp_error = cdp_error


class NavigationError(CommandError):
    """Raised when Page.navigate reports an errorText (DNS failure, aborted load...)."""
    pass


class EvaluationError(CommandError):
    """Raised when page-side script evaluation throws."""
    pass


class SessionClosedError(SkraprError):
    """Raised when an operation is attempted on a disposed or closed session."""
    pass


class CDPSessionError(SkraprError):
    """Raised when a session cannot be brought into a usable state."""
    pass


class CDPTargetError(SkraprError):
    """Raised when no suitable debuggable target can be found."""
    pass


class DefinitionError(SkraprError):
    """Raised when a scrape definition is missing or malformed."""
    pass


class TaskError(SkraprError):
    """Raised by a task for a recoverable failure; the worker logs it and moves on."""
    pass


class FatalTaskError(TaskError):
    """Raised by a task when the run cannot continue; the worker stops."""
    pass
