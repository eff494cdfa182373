"""
CDP Session - Chrome DevTools Protocol WebSocket transport.

A ChromeSession owns the WebSocket connection to one debuggable target. It
assigns message ids, correlates replies to waiting callers by id, and fans out
unsolicited events to subscribers from a single reader task. It knows nothing
about frames or navigation; see skrapr.devtools for that.
"""
import asyncio
import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Set, Type

import websockets
from websockets.asyncio.client import connect

from skrapr.core.errors import (
    CDPConnectionError,
    CDPTimeoutError,
    CommandError,
    SessionClosedError,
    SkraprError,
)

logger = logging.getLogger("skrapr")

EventHandler = Callable[[Dict[str, Any]], Any]

DEFAULT_COMMAND_TIMEOUT = 30.0

# Full page screenshots of long pages arrive as a single base64 frame.
MAX_MESSAGE_SIZE = 256 * 1024 * 1024


def setup_logging(level: int = logging.INFO, debug: bool = False):
    """Configure logging for skrapr."""
    if debug:
        level = logging.DEBUG

    logger.setLevel(level)

    if not logger.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)


@dataclass
class PendingCommand:
    """A command that has been written to the socket and awaits its reply."""
    message_id: int
    method: str
    future: asyncio.Future
    sent_at: float


class ChromeSession:
    """
    Request/response and event-subscription API over a DevTools WebSocket.

    Usage:
        session = await ChromeSession.connect(ws_url)
        session.subscribe("Page.frameStoppedLoading", on_stopped)
        result = await session.send_command("Page.navigate", {"url": url})
        await session.dispose()
    """

    def __init__(self, ws, *, command_timeout: float = DEFAULT_COMMAND_TIMEOUT, debug: bool = False):
        """
        Wrap an already-open WebSocket. Call start() to begin reading.

        Args:
            ws: An open connection exposing async send/recv/close.
            command_timeout: Default reply deadline for send_command (seconds).
            debug: Trace every command and reply at DEBUG level.
        """
        self.ws = ws
        self.command_timeout = command_timeout
        self.debug = debug
        self.message_id = 0
        self.pending_commands: Dict[int, PendingCommand] = {}
        self._subscriptions: Dict[str, List[EventHandler]] = {}
        self._handler_tasks: Set[asyncio.Task] = set()
        self._listen_task: Optional[asyncio.Task] = None
        self._closed = False
        self._disposed = False

    @classmethod
    async def connect(
        cls,
        ws_url: str,
        *,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        debug: bool = False,
        open_timeout: float = 10.0,
    ) -> "ChromeSession":
        """
        Open a WebSocket to a target and start the reader.

        Raises:
            CDPConnectionError: On refusal, DNS failure or handshake failure.
        """
        logger.info(f"Connecting to Chrome via WebSocket: {ws_url}")

        try:
            ws = await connect(ws_url, max_size=MAX_MESSAGE_SIZE, open_timeout=open_timeout)
        except Exception as e:
            logger.error(f"Failed to establish WebSocket connection: {e}")
            raise CDPConnectionError(
                f"Failed to connect to Chrome WebSocket: {e}",
                method="connect",
                ws_url=ws_url,
            ) from e

        logger.info("WebSocket connection established")
        session = cls(ws, command_timeout=command_timeout, debug=debug)
        session.start()
        return session

    @property
    def is_closed(self) -> bool:
        """True once the session was disposed or the socket went away."""
        return self._closed

    def start(self) -> None:
        """Start the inbound dispatch loop. Safe to call more than once."""
        if self._closed:
            raise SessionClosedError("Cannot start a closed session", method="start")
        if self._listen_task is None:
            self._listen_task = asyncio.create_task(self.listen())

    # =========================================================================
    # Commands
    # =========================================================================

    async def send_command(
        self,
        method: str,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Send a CDP command and wait for its reply.

        Args:
            method: Protocol method, e.g. "Page.navigate".
            params: Method parameters.
            timeout: Reply deadline in seconds; defaults to command_timeout.

        Returns:
            The reply's result object.

        Raises:
            CommandError: The browser answered with an error payload.
            CDPTimeoutError: No reply arrived before the deadline.
            SessionClosedError: The session was disposed or closed.
            CDPConnectionError: The socket failed while the command was pending.
        """
        if self._closed:
            raise SessionClosedError(f"Cannot send {method}: session is closed", method=method)

        self.message_id += 1
        msg_id = self.message_id
        loop = asyncio.get_running_loop()
        future = loop.create_future()
        start_time = loop.time()

        self.pending_commands[msg_id] = PendingCommand(
            message_id=msg_id,
            method=method,
            future=future,
            sent_at=start_time,
        )

        message = {"id": msg_id, "method": method, "params": params or {}}
        deadline = self.command_timeout if timeout is None else timeout

        if self.debug:
            logger.debug(
                f"CDP command: {method}",
                extra={"method": method, "params": params, "message_id": msg_id}
            )

        try:
            try:
                await self.ws.send(json.dumps(message))
            except SkraprError:
                raise
            except Exception as e:
                raise CDPConnectionError(
                    f"CDP command {method} could not be written: {e}",
                    method=method,
                ) from e

            result = await asyncio.wait_for(future, timeout=deadline)

            if self.debug:
                duration = loop.time() - start_time
                logger.debug(
                    f"CDP response: {method} (duration={duration:.3f}s)",
                    extra={
                        "method": method,
                        "message_id": msg_id,
                        "duration_ms": duration * 1000,
                    }
                )

            return result
        except asyncio.TimeoutError as e:
            logger.warning(
                f"CDP command timeout: {method} after {deadline:.3f}s",
                extra={"method": method, "message_id": msg_id, "timeout": deadline}
            )
            raise CDPTimeoutError(
                f"CDP command {method} timed out after {deadline:.3f}s",
                timeout=deadline,
                method=method,
                message_id=msg_id,
            ) from e
        finally:
            self.pending_commands.pop(msg_id, None)

    # =========================================================================
    # Events
    # =========================================================================

    def subscribe(self, event: str, handler: EventHandler) -> EventHandler:
        """
        Register a handler for an event method, e.g. "Page.frameStoppedLoading".

        Handlers receive the event params and run in subscription order. A
        handler may be a coroutine function; its coroutine is scheduled as a
        task so it never blocks the reader.
        """
        self._subscriptions.setdefault(event, []).append(handler)
        return handler

    def unsubscribe(self, event: str, handler: EventHandler) -> bool:
        """Remove a handler. Returns False if it was not subscribed."""
        handlers = self._subscriptions.get(event)
        if not handlers or handler not in handlers:
            return False
        handlers.remove(handler)
        if not handlers:
            del self._subscriptions[event]
        return True

    def subscriber_count(self, event: str) -> int:
        return len(self._subscriptions.get(event, ()))

    # =========================================================================
    # Inbound dispatch
    # =========================================================================

    async def listen(self):
        """Read frames until the socket closes, dispatching each in arrival order."""
        try:
            while True:
                raw = await self.ws.recv()
                self.dispatch(raw)
        except websockets.exceptions.ConnectionClosed:
            if not self._closed:
                logger.warning("WebSocket connection closed by the remote end")
            self._mark_closed(CDPConnectionError, "WebSocket connection closed")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Error in listen loop: {e}", exc_info=True)
            self._mark_closed(CDPConnectionError, f"Unexpected error in listen loop: {e}")

    def dispatch(self, raw) -> None:
        """Route one raw frame. Never raises."""
        try:
            data = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning(f"Dropping malformed CDP frame: {str(raw)[:100]}")
            return

        if not isinstance(data, dict):
            logger.warning(f"Dropping non-object CDP frame: {str(raw)[:100]}")
            return

        if "id" in data:
            self._handle_reply(data)
        elif "method" in data:
            self._handle_event(data)
        else:
            logger.warning(f"Dropping CDP frame with neither id nor method: {str(raw)[:100]}")

    def _handle_reply(self, data: Dict[str, Any]) -> None:
        msg_id = data["id"]
        pending = self.pending_commands.pop(msg_id, None) if isinstance(msg_id, int) else None

        if pending is None or pending.future.done():
            logger.debug(
                f"Dropping reply for unknown or expired message id {msg_id!r}",
                extra={"message_id": msg_id}
            )
            return

        if "error" in data:
            error_data = data["error"]
            if not isinstance(error_data, dict):
                error_data = {"message": str(error_data)}
            error_code = error_data.get("code")
            error_message = error_data.get("message", "Unknown CDP error")

            logger.warning(
                f"CDP protocol error: {error_message}",
                extra={
                    "error_code": error_code,
                    "method": pending.method,
                    "message_id": msg_id,
                }
            )

            pending.future.set_exception(CommandError(
                f"CDP Error: {error_message}",
                code=error_code,
                cdp_error=error_data,
                method=pending.method,
            ))
        else:
            result = data.get("result")
            pending.future.set_result(result if isinstance(result, dict) else {})

    def _handle_event(self, data: Dict[str, Any]) -> None:
        method = data["method"]
        params = data.get("params") or {}

        if self.debug:
            logger.debug(f"CDP event: {method}", extra={"method": method})

        # Copy so handlers may (un)subscribe while being dispatched.
        for handler in list(self._subscriptions.get(method, ())):
            try:
                result = handler(params)
                if asyncio.iscoroutine(result):
                    task = asyncio.create_task(result)
                    self._handler_tasks.add(task)
                    task.add_done_callback(self._on_handler_task_done)
            except Exception as e:
                logger.error(
                    f"Error in CDP event handler for {method}: {e}",
                    exc_info=True,
                    extra={"method": method},
                )

    def _on_handler_task_done(self, task: asyncio.Task) -> None:
        self._handler_tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.error(f"Error in async CDP event handler: {error}", exc_info=error)

    # =========================================================================
    # Teardown
    # =========================================================================

    def _mark_closed(self, error_type: Type[SkraprError], message: str) -> None:
        self._closed = True
        for pending in list(self.pending_commands.values()):
            if not pending.future.done():
                pending.future.set_exception(error_type(message, method=pending.method))
        self.pending_commands.clear()

    async def dispose(self) -> None:
        """
        Close the socket, fail outstanding commands with SessionClosedError and
        drop all subscriptions. Idempotent.
        """
        if self._disposed:
            return
        self._disposed = True

        self._mark_closed(SessionClosedError, "Session disposed")
        self._subscriptions.clear()

        if self._listen_task is not None and not self._listen_task.done():
            self._listen_task.cancel()
            try:
                await self._listen_task
            except asyncio.CancelledError:
                pass

        for task in list(self._handler_tasks):
            task.cancel()

        try:
            await self.ws.close()
        except Exception as e:
            logger.debug(f"Error closing WebSocket: {e}")

        logger.debug("CDP session disposed")

    async def __aenter__(self) -> "ChromeSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.dispose()
