"""
Pytest configuration and shared fixtures.

No test needs a browser: FakeChrome plays the browser end of a DevTools
WebSocket, answering commands from a table of scripted responses and pushing
events on demand.
"""
import asyncio
import json
import os
import sys
from typing import Any, Callable, Dict, List, Optional, Union

import pytest
import websockets

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "src"))

from skrapr.cdp.session import ChromeSession  # noqa: E402
from skrapr.devtools import SkraprDevTools  # noqa: E402

# Scripted response that is never answered.
NO_REPLY = object()

_DISCONNECT = object()


class ProtocolError:
    """Scripted error reply."""

    def __init__(self, code: int, message: str):
        self.code = code
        self.message = message


Response = Union[Dict[str, Any], ProtocolError, Callable[[Dict[str, Any]], Any], object]


class FakeChrome:
    """
    In-memory stand-in for the WebSocket a ChromeSession talks to.

    Every command written is recorded in `sent`. If auto_reply is on, the
    reply is looked up in `responses` by method: a dict is the result, a
    ProtocolError is an error reply, a callable receives the params and
    returns either of those, and NO_REPLY leaves the command pending.
    Unknown methods are answered with an empty result.
    """

    def __init__(self):
        self.sent: List[Dict[str, Any]] = []
        self.responses: Dict[str, Response] = {}
        self.auto_reply = True
        self.closed = False
        self._incoming: asyncio.Queue = asyncio.Queue()

    # WebSocket surface used by ChromeSession

    async def send(self, data: str) -> None:
        message = json.loads(data)
        self.sent.append(message)
        if not self.auto_reply:
            return

        response = self.responses.get(message["method"], {})
        if callable(response):
            response = response(message.get("params") or {})
        if response is NO_REPLY:
            return
        if isinstance(response, ProtocolError):
            self.reply(message["id"], error={"code": response.code, "message": response.message})
        else:
            self.reply(message["id"], response)

    async def recv(self) -> str:
        item = await self._incoming.get()
        if item is _DISCONNECT:
            raise websockets.exceptions.ConnectionClosedError(None, None)
        return item

    async def close(self) -> None:
        self.closed = True

    # Browser side controls

    def reply(self, message_id: int, result: Optional[Dict[str, Any]] = None,
              error: Optional[Dict[str, Any]] = None) -> None:
        frame: Dict[str, Any] = {"id": message_id}
        if error is not None:
            frame["error"] = error
        else:
            frame["result"] = result or {}
        self.push(frame)

    def emit(self, method: str, params: Optional[Dict[str, Any]] = None,
             delay: Optional[float] = None) -> None:
        """Push an event now, or after delay seconds."""
        frame = {"method": method, "params": params or {}}
        if delay is None:
            self.push(frame)
        else:
            asyncio.get_running_loop().call_later(delay, self.push, frame)

    def push(self, frame: Union[Dict[str, Any], str]) -> None:
        self._incoming.put_nowait(frame if isinstance(frame, str) else json.dumps(frame))

    def disconnect(self) -> None:
        self._incoming.put_nowait(_DISCONNECT)

    def methods(self) -> List[str]:
        return [message["method"] for message in self.sent]

    def last(self, method: str) -> Dict[str, Any]:
        for message in reversed(self.sent):
            if message["method"] == method:
                return message
        raise AssertionError(f"{method} was never sent")


async def wait_for_sent(chrome: FakeChrome, count: int, timeout: float = 1.0) -> None:
    """Wait until at least count commands were written."""
    async def _poll():
        while len(chrome.sent) < count:
            await asyncio.sleep(0)
    await asyncio.wait_for(_poll(), timeout=timeout)


async def settle() -> None:
    """Give the reader task time to dispatch everything queued so far."""
    await asyncio.sleep(0.01)


def page_responses(url: str = "about:blank", frame_id: str = "F1", ready_state: str = "complete") -> Dict[str, Any]:
    """Responses for a page at url whose main frame is frame_id."""
    return {
        "Page.getResourceTree": {"frameTree": {"frame": {"id": frame_id, "url": url}}},
        "Target.getTargetInfo": {
            "targetInfo": {"targetId": "T1", "type": "page", "url": url, "title": "Test"}
        },
        "Runtime.evaluate": {"result": {"type": "string", "value": ready_state}},
    }


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def chrome():
    return FakeChrome()


@pytest.fixture
async def session(chrome):
    s = ChromeSession(chrome, command_timeout=1.0)
    s.start()
    yield s
    await s.dispose()


@pytest.fixture
async def devtools(chrome, session):
    """Dev tools initialized against an idle about:blank page (frame F1)."""
    chrome.responses.update(page_responses())
    d = SkraprDevTools(session, "T1", navigation_timeout=1.0, screenshot_timeout=1.0)
    await d.initialize()
    yield d
    await d.dispose()
