"""
Skrapr - rule driven browser automation over the Chrome DevTools Protocol.

This package attaches to a running Chrome tab, tracks the state of its main
frame from protocol events, and runs the tasks of every rule whose conditions
match the page until no rule has anything left to do.

Usage:
    from skrapr import SkraprDefinition, SkraprDevTools, SkraprWorker
    from skrapr import find_page_session, get_chrome_sessions

    info = find_page_session(await get_chrome_sessions())
    devtools = await SkraprDevTools.connect(info)
    worker = SkraprWorker(devtools, SkraprDefinition.load("definition.json"))
    worker.add_start_urls()
    result = await worker.start()
    await worker.dispose()

Low-level protocol access:
    async with await ChromeSession.connect(info.web_socket_debugger_url) as session:
        await session.send_command("Page.enable")
"""
from skrapr.cdp import (
    ChromeSession,
    NodeCache,
    PendingCommand,
    find_page_session,
    get_chrome_sessions,
    setup_logging,
)
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
from skrapr.definition import SkraprDefinition
from skrapr.devtools import SkraprDevTools
from skrapr.rules import PredicateRule, SkraprRule, UrlPatternRule
from skrapr.tasks import (
    DelayTask,
    InjectScriptTask,
    InjectStyleTask,
    NavigateTask,
    ScreenshotTask,
    ScrollToBottomTask,
    SkraprTask,
)
from skrapr.worker import SkraprWorker, WorkerResult, WorkerState, seed_worker

__version__ = "0.1.0"

__all__ = [
    # Main API
    "SkraprDevTools",
    "SkraprWorker",
    "SkraprDefinition",
    "SkraprConfig",
    "WorkerResult",
    "WorkerState",
    "seed_worker",
    # Transport
    "ChromeSession",
    "PendingCommand",
    "NodeCache",
    "get_chrome_sessions",
    "find_page_session",
    "setup_logging",
    # Models
    "ChromeSessionInfo",
    "TargetInfo",
    "ExecutionContextDescription",
    "PageDimensions",
    "FrameState",
    "LayoutTreeNode",
    # Rules and tasks
    "SkraprRule",
    "UrlPatternRule",
    "PredicateRule",
    "SkraprTask",
    "NavigateTask",
    "ScreenshotTask",
    "InjectScriptTask",
    "InjectStyleTask",
    "ScrollToBottomTask",
    "DelayTask",
    # Errors
    "SkraprError",
    "CDPConnectionError",
    "CDPTimeoutError",
    "CommandError",
    "NavigationError",
    "EvaluationError",
    "SessionClosedError",
    "CDPSessionError",
    "CDPTargetError",
    "DefinitionError",
    "TaskError",
    "FatalTaskError",
    # Version
    "__version__",
]
