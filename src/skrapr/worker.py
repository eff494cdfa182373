"""
SkraprWorker - rule driven task scheduler.

The worker follows a simple loop:
1. Execute queued tasks in FIFO order against the dev tools
2. Once the queue drains, wait for any in-flight load of the current frame
3. Evaluate every rule against the current frame state and enqueue the tasks
   of the rules that match
4. Repeat until no rule produces new tasks, then resolve completion

Usage:
    worker = SkraprWorker(devtools, SkraprDefinition.load("definition.json"))
    worker.add_start_urls()
    result = await worker.start()
    await worker.dispose()
"""
from __future__ import annotations

import asyncio
import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Deque, List, Optional, Set, Tuple

from skrapr.core.errors import (
    CDPConnectionError,
    FatalTaskError,
    SessionClosedError,
)
from skrapr.core.models import FrameState
from skrapr.definition import SkraprDefinition
from skrapr.rules import SkraprRule
from skrapr.tasks import NavigateTask, SkraprTask

if TYPE_CHECKING:
    from skrapr.devtools import SkraprDevTools

logger = logging.getLogger("skrapr")

# Errors after which nothing else can succeed.
FATAL_ERRORS = (FatalTaskError, SessionClosedError, CDPConnectionError)

# Frame state reads per scheduling cycle before giving up on rule evaluation.
STATE_ATTEMPTS = 3


class WorkerState(Enum):
    IDLE = "idle"
    SCHEDULING = "scheduling"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class WorkerResult:
    """Outcome of a run that drained gracefully."""
    tasks_executed: int = 0
    tasks_failed: int = 0
    errors: List[str] = field(default_factory=list)


class SkraprWorker:
    """
    Owns the task queue and the rule set and drives the run to completion.

    A rule fires at most once per page load: its tasks are enqueued the first
    time it matches after each stop-loading event of the tracked frame. This
    keeps an unchanged page from re-enqueuing the same tasks forever while
    matching itself stays stateless.
    """

    def __init__(
        self,
        devtools: SkraprDevTools,
        definition: SkraprDefinition,
        *,
        navigation_timeout: Optional[float] = None,
    ):
        self._devtools = devtools
        self.definition = definition
        self.navigation_timeout = navigation_timeout
        self._queue: Deque[SkraprTask] = deque()
        self._state = WorkerState.IDLE
        self._completion: Optional[asyncio.Future] = None
        self._run_task: Optional[asyncio.Task] = None
        self._fired: Set[Tuple[int, int]] = set()
        self._result = WorkerResult()
        self._disposed = False

    @property
    def state(self) -> WorkerState:
        return self._state

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def rules(self) -> List[SkraprRule]:
        return self.definition.rules

    @property
    def completion(self) -> asyncio.Future:
        """Resolves with a WorkerResult, or with the first fatal error."""
        if self._completion is None:
            self._completion = asyncio.get_running_loop().create_future()
        return self._completion

    # =========================================================================
    # Queue
    # =========================================================================

    def add_task(self, task: SkraprTask) -> None:
        self._queue.append(task)
        logger.debug(f"Queued task {task.name}", extra={"task": task.name, "queue_size": len(self._queue)})

    def add_start_urls(self) -> None:
        """Seed the queue with a navigation to every start url of the definition."""
        for url in self.definition.start_urls:
            self.add_task(NavigateTask(url=url))

    async def get_matching_rules(self) -> List[SkraprRule]:
        """Rules matching the current frame state. Has no side effects."""
        state = await self._devtools.get_current_frame_state()
        return [rule for _, rule in self._match(state)]

    def _match(self, state: FrameState) -> List[Tuple[int, SkraprRule]]:
        matching = []
        for index, rule in enumerate(self.definition.rules):
            try:
                if rule.matches(state):
                    matching.append((index, rule))
            except Exception as e:
                logger.error(f"Rule {rule.describe()} failed to evaluate: {e}", exc_info=True)
        return matching

    # =========================================================================
    # Scheduling
    # =========================================================================

    def start(self) -> asyncio.Future:
        """Start scheduling. Returns the completion future."""
        completion = self.completion
        if self._run_task is None and not self._disposed:
            self._run_task = asyncio.create_task(self._run())
        return completion

    async def _run(self) -> None:
        try:
            while True:
                while self._queue:
                    await self._execute(self._queue.popleft())

                if not await self._schedule_matching_rules():
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._state = WorkerState.FAILED
            logger.error(f"Worker stopped by fatal error: {e}", exc_info=True)
            if not self.completion.done():
                self.completion.set_exception(e)
            return

        self._state = WorkerState.COMPLETED
        logger.info(
            f"Worker completed: {self._result.tasks_executed} tasks executed, "
            f"{self._result.tasks_failed} failed"
        )
        if not self.completion.done():
            self.completion.set_result(self._result)

    async def _schedule_matching_rules(self) -> int:
        self._state = WorkerState.SCHEDULING

        if self._devtools.is_loading:
            await self._devtools.wait_for_current_navigation(self.navigation_timeout)

        state = await self._read_frame_state()
        if state is None:
            return 0

        scheduled = 0
        for index, rule in self._match(state):
            key = (index, state.navigation_count)
            if key in self._fired:
                continue
            self._fired.add(key)

            tasks = rule.create_tasks(state)
            logger.info(
                f"Rule {rule.describe()} matched {state.url}; queuing {len(tasks)} tasks",
                extra={"url": state.url}
            )
            for task in tasks:
                self.add_task(task)
            scheduled += len(tasks)

        return scheduled

    async def _read_frame_state(self) -> Optional[FrameState]:
        """Frame state for rule evaluation, or None when it cannot be read."""
        for attempt in range(1, STATE_ATTEMPTS + 1):
            try:
                return await self._devtools.get_current_frame_state()
            except FATAL_ERRORS:
                raise
            except Exception as e:
                logger.warning(f"Could not read frame state (attempt {attempt}/{STATE_ATTEMPTS}): {e}")
        logger.error("Frame state unavailable; no rules evaluated")
        return None

    async def _execute(self, task: SkraprTask) -> None:
        self._state = WorkerState.EXECUTING
        loop = asyncio.get_running_loop()
        start_time = loop.time()
        logger.info(f"Executing task {task.name}", extra={"task": task.name})

        self._result.tasks_executed += 1
        try:
            if task.timeout is not None:
                await asyncio.wait_for(task.execute(self._devtools), timeout=task.timeout)
            else:
                await task.execute(self._devtools)
        except FATAL_ERRORS:
            self._result.tasks_failed += 1
            raise
        except asyncio.TimeoutError:
            self._record_failure(task, f"timed out after {task.timeout}s")
        except Exception as e:
            self._record_failure(task, str(e))
        else:
            logger.debug(
                f"Task {task.name} completed",
                extra={"task": task.name, "duration_ms": (loop.time() - start_time) * 1000}
            )

    def _record_failure(self, task: SkraprTask, message: str) -> None:
        self._result.tasks_failed += 1
        self._result.errors.append(f"{task.name}: {message}")
        logger.error(f"Task {task.name} failed: {message}", extra={"task": task.name})

    # =========================================================================
    # Teardown
    # =========================================================================

    async def dispose(self) -> None:
        """Stop scheduling, cancel the running task and release the session. Idempotent."""
        if self._disposed:
            return
        self._disposed = True

        if self._run_task is not None and not self._run_task.done():
            self._run_task.cancel()
            try:
                await self._run_task
            except asyncio.CancelledError:
                pass

        if self._completion is not None and not self._completion.done():
            self._completion.cancel()

        await self._devtools.dispose()


async def seed_worker(worker: SkraprWorker, devtools: SkraprDevTools, *, attach: bool = False) -> None:
    """
    Seed the queue for a new run.

    When attaching to a tab that is already somewhere useful, re-navigate to
    its current URL so the matching rules fire against it; otherwise start
    from the definition's start urls.
    """
    if not attach:
        logger.debug("Adding start urls.")
        worker.add_start_urls()
        return

    matching = await worker.get_matching_rules()
    if matching:
        target_info = await devtools.get_target_info()
        logger.debug(
            f"Attach specified and {len(matching)} rules match the current session's state; continuing."
        )
        worker.add_task(NavigateTask(url=target_info.url))
    else:
        logger.debug("Attach specified but no rules matched the current session's state; adding start urls.")
        worker.add_start_urls()
