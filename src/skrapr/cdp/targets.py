"""
Target discovery - lists debuggable targets over the browser's HTTP endpoint.
"""
import logging
from typing import Iterable, List, Optional

import httpx

from skrapr.core.errors import CDPConnectionError, CDPTargetError
from skrapr.core.models import ChromeSessionInfo

logger = logging.getLogger("skrapr")


async def get_chrome_sessions(
    host: str = "localhost",
    port: int = 9222,
    *,
    timeout: float = 5.0,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> List[ChromeSessionInfo]:
    """
    List the debuggable targets exposed at http://host:port/json.

    Raises:
        CDPConnectionError: If the endpoint cannot be reached or answers garbage.
    """
    url = f"http://{host}:{port}/json"
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as client:
            response = await client.get(url)
            response.raise_for_status()
            targets = response.json()
    except httpx.HTTPError as e:
        raise CDPConnectionError(
            f"Failed to connect to Chrome at {host}:{port}",
            method="get_chrome_sessions"
        ) from e
    except ValueError as e:
        raise CDPConnectionError(
            f"Chrome at {host}:{port} returned an invalid target listing",
            method="get_chrome_sessions"
        ) from e

    if not isinstance(targets, list):
        raise CDPConnectionError(
            f"Chrome at {host}:{port} returned an invalid target listing",
            method="get_chrome_sessions"
        )

    sessions = [ChromeSessionInfo.from_dict(t) for t in targets if isinstance(t, dict)]
    logger.debug(f"Found {len(sessions)} targets at {host}:{port}")
    return sessions


def find_page_session(sessions: Iterable[ChromeSessionInfo]) -> ChromeSessionInfo:
    """
    Pick the first page target that has a WebSocket endpoint.

    A page whose DevTools window is open has no webSocketDebuggerUrl, so it is
    skipped.

    Raises:
        CDPTargetError: If no such target exists.
    """
    for session in sessions:
        if session.type == "page" and session.web_socket_debugger_url.strip():
            logger.debug(f"Found page target, ws_url={session.web_socket_debugger_url}")
            return session

    raise CDPTargetError(
        "Unable to locate a suitable session. Ensure that the Developer Tools window "
        "is closed on an existing tab or start Chrome with --remote-debugging-port.",
        method="find_page_session"
    )
