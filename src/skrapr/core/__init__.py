"""
Core module - errors, data models and configuration.
"""
from skrapr.core.config import SkraprConfig
from skrapr.core.errors import (
    CDPConnectionError,
    CDPSessionError,
    CDPTargetError,
    CDPTimeoutError,
    CommandError,
    DefinitionError,
    EvaluationError,
    FatalTaskError,
    NavigationError,
    SessionClosedError,
    SkraprError,
    TaskError,
)
from skrapr.core.models import (
    ChromeSessionInfo,
    ExecutionContextDescription,
    FrameState,
    LayoutTreeNode,
    PageDimensions,
    TargetInfo,
)

__all__ = [
    "SkraprConfig",
    "SkraprError",
    "CDPConnectionError",
    "CDPSessionError",
    "CDPTargetError",
    "CDPTimeoutError",
    "CommandError",
    "DefinitionError",
    "EvaluationError",
    "FatalTaskError",
    "NavigationError",
    "SessionClosedError",
    "TaskError",
    "ChromeSessionInfo",
    "ExecutionContextDescription",
    "FrameState",
    "LayoutTreeNode",
    "PageDimensions",
    "TargetInfo",
]
