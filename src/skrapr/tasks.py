"""
Tasks - atomic browser interactions executed by the worker.

Every task runs against a SkraprDevTools instance and either returns,
raises (TaskError and anything else is logged and skipped), or raises
FatalTaskError to stop the run. Tasks carry no ordering relationship to each
other beyond the worker's queue order.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, fields
from typing import TYPE_CHECKING, Any, ClassVar, Dict, Mapping, Optional, Type

from skrapr.core.errors import DefinitionError

if TYPE_CHECKING:
    from skrapr.devtools import SkraprDevTools

logger = logging.getLogger("skrapr")


class SkraprTask:
    """Base class for worker tasks."""

    type: ClassVar[str] = "task"
    timeout: Optional[float] = None

    @property
    def name(self) -> str:
        return self.type

    async def execute(self, devtools: SkraprDevTools) -> None:
        raise NotImplementedError


# =============================================================================
# Built-in tasks
# =============================================================================

@dataclass
class NavigateTask(SkraprTask):
    """Navigate the current frame to a URL and wait for it to load."""

    type: ClassVar[str] = "navigate"

    url: str
    force: bool = False
    navigation_timeout: Optional[float] = None
    timeout: Optional[float] = None

    def __post_init__(self):
        if not self.url:
            raise ValueError("navigate task requires a url")

    async def execute(self, devtools: SkraprDevTools) -> None:
        still_loading = await devtools.navigate(
            self.url,
            force=self.force,
            timeout=self.navigation_timeout,
        )
        if still_loading:
            logger.warning(f"Page still loading after navigating to {self.url}")


@dataclass
class ScreenshotTask(SkraprTask):
    """Save a full page screenshot."""

    type: ClassVar[str] = "screenshot"

    path: str
    timeout: Optional[float] = None

    def __post_init__(self):
        if not self.path or not self.path.strip():
            raise ValueError("screenshot task requires a path")

    async def execute(self, devtools: SkraprDevTools) -> None:
        await devtools.take_full_page_screenshot(self.path)


@dataclass
class InjectScriptTask(SkraprTask):
    """Add a <script> element, external or inline."""

    type: ClassVar[str] = "inject_script"

    url: Optional[str] = None
    contents: Optional[str] = None
    script_type: str = "text/javascript"
    is_async: bool = True
    timeout: Optional[float] = None

    def __post_init__(self):
        if self.url is None and self.contents is None:
            raise ValueError("inject_script task requires a url or contents")

    async def execute(self, devtools: SkraprDevTools) -> None:
        node_id = await devtools.inject_script_element(
            self.url, self.contents, self.script_type, self.is_async
        )
        logger.debug(f"Injected script as node {node_id}")


@dataclass
class InjectStyleTask(SkraprTask):
    """Add a <style> element."""

    type: ClassVar[str] = "inject_style"

    styles: str
    style_type: str = "text/css"
    timeout: Optional[float] = None

    async def execute(self, devtools: SkraprDevTools) -> None:
        node_id = await devtools.inject_style_element(self.styles, self.style_type)
        logger.debug(f"Injected style as node {node_id}")


@dataclass
class ScrollToBottomTask(SkraprTask):
    type: ClassVar[str] = "scroll_to_bottom"

    max_scrolls: int = 10
    delay: float = 1.0
    timeout: Optional[float] = None

    async def execute(self, devtools: SkraprDevTools) -> None:
        await devtools.scroll_to_absolute_bottom(self.max_scrolls, self.delay)


@dataclass
class DelayTask(SkraprTask):
    type: ClassVar[str] = "delay"

    seconds: float = 1.0
    timeout: Optional[float] = None

    async def execute(self, devtools: SkraprDevTools) -> None:
        await asyncio.sleep(self.seconds)


# =============================================================================
# Registry
# =============================================================================

TASK_TYPES: Dict[str, Type[SkraprTask]] = {
    task_cls.type: task_cls
    for task_cls in (
        NavigateTask,
        ScreenshotTask,
        InjectScriptTask,
        InjectStyleTask,
        ScrollToBottomTask,
        DelayTask,
    )
}


def task_from_dict(data: Mapping[str, Any]) -> SkraprTask:
    """
    Build a task from its definition entry, e.g. {"type": "navigate", "url": "..."}.

    Raises:
        DefinitionError: If the type is unknown or the fields are invalid.
    """
    values = dict(data)
    type_name = values.pop("type", None)
    task_cls = TASK_TYPES.get(type_name)
    if task_cls is None:
        raise DefinitionError(
            f"Unknown task type: {type_name!r}",
            known_types=", ".join(sorted(TASK_TYPES)),
        )

    allowed = {f.name for f in fields(task_cls)}
    unknown = sorted(set(values) - allowed)
    if unknown:
        raise DefinitionError(f"Unknown fields for {type_name} task: {', '.join(unknown)}")

    try:
        return task_cls(**values)
    except (TypeError, ValueError) as e:
        raise DefinitionError(f"Invalid {type_name} task: {e}") from e
