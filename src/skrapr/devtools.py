"""
SkraprDevTools - frame state tracking and browsing operations over a ChromeSession.

The tracker keeps the authoritative view of the current frame (its id, whether
it is loading, and its script execution context) purely from protocol events,
and composes session commands into higher level operations: navigate and wait,
measure the page, inject scripts and styles, scroll, and take full page
screenshots.

Usage:
    info = find_page_session(await get_chrome_sessions())
    devtools = await SkraprDevTools.connect(info)
    await devtools.navigate("https://example.com")
    await devtools.take_full_page_screenshot("example.png")
    await devtools.dispose()
"""
from __future__ import annotations

import asyncio
import base64
import binascii
import json
import logging
import math
from pathlib import Path
from typing import Any, Dict, Mapping, Optional, Tuple, Union

from skrapr.cdp.dom import NodeCache
from skrapr.cdp.session import DEFAULT_COMMAND_TIMEOUT, ChromeSession
from skrapr.core.errors import (
    CDPSessionError,
    CommandError,
    EvaluationError,
    NavigationError,
    SkraprError,
)
from skrapr.core.models import (
    ChromeSessionInfo,
    ExecutionContextDescription,
    FrameState,
    LayoutTreeNode,
    PageDimensions,
    TargetInfo,
)
from skrapr.utils.javascript import (
    PAGE_DIMENSIONS_SCRIPT,
    build_inject_script,
    build_inject_style,
    build_scroll_to,
)

logger = logging.getLogger("skrapr")

DEFAULT_NAVIGATION_TIMEOUT = 15.0
DEFAULT_SCREENSHOT_TIMEOUT = 60.0

_IMAGE_FORMATS = {".jpg": "jpeg", ".jpeg": "jpeg", ".webp": "webp"}


class SkraprDevTools:
    """
    Facade over a ChromeSession that tracks frame state from events.

    Event handlers only mutate in-memory state and never send commands, so the
    session's reader is never blocked waiting on itself.
    """

    def __init__(
        self,
        session: ChromeSession,
        target_id: Optional[str] = None,
        *,
        navigation_timeout: float = DEFAULT_NAVIGATION_TIMEOUT,
        screenshot_timeout: float = DEFAULT_SCREENSHOT_TIMEOUT,
    ):
        self._session = session
        self._target_id = target_id
        self.navigation_timeout = navigation_timeout
        self.screenshot_timeout = screenshot_timeout
        self._current_frame_id: Optional[str] = None
        self._current_frame_context: Optional[ExecutionContextDescription] = None
        self._frame_stopped_loading = asyncio.Event()
        self._navigation_count = 0
        self._node_cache = NodeCache()
        self._navigation_lock = asyncio.Lock()
        self._handlers = {
            "Page.frameStartedLoading": self._on_frame_started_loading,
            "Page.frameStoppedLoading": self._on_frame_stopped_loading,
            "Runtime.executionContextCreated": self._on_execution_context_created,
            "Runtime.executionContextDestroyed": self._on_execution_context_destroyed,
            "DOM.documentUpdated": self._on_document_updated,
            "DOM.setChildNodes": self._on_set_child_nodes,
        }
        self._subscribed = False
        self._initialized = False

    @classmethod
    async def connect(
        cls,
        session_info: ChromeSessionInfo,
        *,
        command_timeout: float = DEFAULT_COMMAND_TIMEOUT,
        navigation_timeout: float = DEFAULT_NAVIGATION_TIMEOUT,
        screenshot_timeout: float = DEFAULT_SCREENSHOT_TIMEOUT,
        debug: bool = False,
    ) -> SkraprDevTools:
        """
        Connect to a discovered target and initialize frame tracking.

        Raises:
            CDPConnectionError: If the WebSocket cannot be opened.
            CDPSessionError: If the protocol domains cannot be enabled.
        """
        session = await ChromeSession.connect(
            session_info.web_socket_debugger_url,
            command_timeout=command_timeout,
            debug=debug,
        )
        devtools = cls(
            session,
            session_info.id,
            navigation_timeout=navigation_timeout,
            screenshot_timeout=screenshot_timeout,
        )
        try:
            await devtools.initialize()
        except Exception:
            await session.dispose()
            raise
        return devtools

    # =========================================================================
    # Properties
    # =========================================================================

    @property
    def session(self) -> ChromeSession:
        return self._session

    @property
    def target_id(self) -> Optional[str]:
        return self._target_id

    @property
    def current_frame_id(self) -> Optional[str]:
        return self._current_frame_id

    @property
    def current_frame_context(self) -> Optional[ExecutionContextDescription]:
        return self._current_frame_context

    @property
    def is_loading(self) -> bool:
        return not self._frame_stopped_loading.is_set()

    @property
    def navigation_count(self) -> int:
        """Number of stop-loading events seen for the tracked frame."""
        return self._navigation_count

    @property
    def child_nodes(self) -> Mapping[int, Dict[str, Any]]:
        """Read-only view of the nodes the browser has pushed so far."""
        return self._node_cache.nodes

    # =========================================================================
    # Initialization
    # =========================================================================

    async def initialize(self) -> None:
        """
        Subscribe to frame, runtime and DOM events, enable the domains and
        record the main frame id. Mirrors what the DevTools frontend does when
        it attaches.

        Raises:
            CDPSessionError: If any enablement command fails.
        """
        if self._initialized:
            return

        self._subscribe()
        try:
            await self._session.send_command("Emulation.resetPageScaleFactor")
            await self._session.send_command("Page.enable")
            resource_tree = await self._session.send_command("Page.getResourceTree")
            self._set_current_frame(resource_tree["frameTree"]["frame"]["id"])
            await self._session.send_command("Runtime.enable")
            await self._session.send_command("DOM.enable")
        except (SkraprError, KeyError, TypeError) as e:
            self._unsubscribe()
            logger.error(f"Failed to initialize dev tools: {e}", extra={"target_id": self._target_id})
            raise CDPSessionError(
                f"Failed to initialize dev tools: {e}",
                target_id=self._target_id,
                method="initialize",
            ) from e

        await self._sync_ready_state()
        self._initialized = True
        logger.debug(
            f"Dev tools initialized (frame id: {self._current_frame_id})",
            extra={"frame_id": self._current_frame_id, "target_id": self._target_id}
        )

    async def _sync_ready_state(self) -> None:
        # An already loaded page will not emit frameStoppedLoading again.
        try:
            remote = await self.evaluate("document.readyState", return_by_value=True)
        except SkraprError as e:
            logger.debug(f"Could not read document.readyState: {e}")
            return
        if remote.get("value") == "complete":
            self._frame_stopped_loading.set()

    def _subscribe(self) -> None:
        if self._subscribed:
            return
        for event, handler in self._handlers.items():
            self._session.subscribe(event, handler)
        self._subscribed = True

    def _unsubscribe(self) -> None:
        if not self._subscribed:
            return
        for event, handler in self._handlers.items():
            self._session.unsubscribe(event, handler)
        self._subscribed = False

    def _set_current_frame(self, frame_id: str) -> None:
        self._current_frame_id = frame_id
        context = self._current_frame_context
        if context is not None and context.frame_id != frame_id:
            self._current_frame_context = None

    # =========================================================================
    # Event handlers
    # =========================================================================

    def _on_frame_started_loading(self, params: Dict[str, Any]) -> None:
        if params.get("frameId") == self._current_frame_id:
            self._frame_stopped_loading.clear()

    def _on_frame_stopped_loading(self, params: Dict[str, Any]) -> None:
        if params.get("frameId") == self._current_frame_id:
            self._navigation_count += 1
            self._frame_stopped_loading.set()

    def _on_execution_context_created(self, params: Dict[str, Any]) -> None:
        try:
            context = ExecutionContextDescription.from_dict(params.get("context") or {})
        except KeyError:
            logger.debug("Ignoring execution context without an id")
            return

        if context.frame_id != self._current_frame_id:
            return
        # Isolated worlds share the frame id; prefer the page's main world.
        if not context.is_default and self._current_frame_context is not None:
            return
        self._current_frame_context = context

    def _on_execution_context_destroyed(self, params: Dict[str, Any]) -> None:
        context = self._current_frame_context
        if context is not None and params.get("executionContextId") == context.id:
            self._current_frame_context = None

    def _on_document_updated(self, params: Dict[str, Any]) -> None:
        self._node_cache.clear()

    def _on_set_child_nodes(self, params: Dict[str, Any]) -> None:
        self._node_cache.upsert(params.get("nodes") or [])

    # =========================================================================
    # Queries
    # =========================================================================

    async def evaluate(
        self,
        expression: str,
        *,
        await_promise: bool = False,
        return_by_value: bool = False,
        timeout: Optional[float] = None,
    ) -> Dict[str, Any]:
        """
        Evaluate an expression in the current frame's execution context.

        Returns:
            The RemoteObject describing the result.

        Raises:
            EvaluationError: If the expression throws or its promise rejects.
        """
        params: Dict[str, Any] = {
            "expression": expression,
            "awaitPromise": await_promise,
            "returnByValue": return_by_value,
        }
        if self._current_frame_context is not None:
            params["contextId"] = self._current_frame_context.id

        result = await self._session.send_command("Runtime.evaluate", params, timeout=timeout)

        if "exceptionDetails" in result:
            details = result["exceptionDetails"] or {}
            exception = details.get("exception") or {}
            text = exception.get("description") or details.get("text") or "JavaScript error"
            raise EvaluationError(
                f"Script evaluation failed: {text}",
                cdp_error=details,
                method="Runtime.evaluate",
            )

        return result.get("result") or {}

    async def get_target_info(self) -> TargetInfo:
        params = {"targetId": self._target_id} if self._target_id else {}
        result = await self._session.send_command("Target.getTargetInfo", params)
        return TargetInfo.from_dict(result.get("targetInfo") or {})

    async def get_current_frame_state(self) -> FrameState:
        """Snapshot of the current frame for rule evaluation."""
        target_info = await self.get_target_info()
        resource_tree = await self._session.send_command("Page.getResourceTree")

        return FrameState(
            frame_id=self._current_frame_id,
            url=target_info.url,
            title=target_info.title,
            is_loading=self.is_loading,
            navigation_count=self._navigation_count,
            frame_tree=resource_tree.get("frameTree") or {},
        )

    async def get_page_dimensions(self) -> PageDimensions:
        """
        Measure scroll position, full content size, viewport size and device
        pixel ratio. Content size is the maximum of the client, scroll and
        offset extents of both the body and the document element.

        Raises:
            EvaluationError: If the measurement fails or returns malformed data.
        """
        remote = await self.evaluate(PAGE_DIMENSIONS_SCRIPT, return_by_value=True)
        raw = remote.get("value")

        try:
            data = json.loads(raw) if isinstance(raw, str) else raw
        except ValueError as e:
            raise EvaluationError(
                f"Page dimensions are not valid JSON: {raw!r}",
                method="get_page_dimensions",
            ) from e

        if not isinstance(data, dict):
            raise EvaluationError(
                f"Page dimensions script returned {type(data).__name__}",
                method="get_page_dimensions",
            )

        try:
            return PageDimensions.from_dict(data)
        except ValueError as e:
            raise EvaluationError(str(e), method="get_page_dimensions") from e

    async def get_page_scale_factor(self) -> Tuple[float, float]:
        """
        Scale factor of the page, comparing the document element's box model
        against the layout viewport.
        """
        document = await self._session.send_command("DOM.getDocument")
        root_id = document["root"]["nodeId"]
        html = await self._session.send_command(
            "DOM.querySelector", {"nodeId": root_id, "selector": "html"}
        )
        box = await self._session.send_command("DOM.getBoxModel", {"nodeId": html["nodeId"]})
        metrics = await self._session.send_command("Page.getLayoutMetrics")

        model = box.get("model") or {}
        viewport = metrics.get("cssLayoutViewport") or metrics.get("layoutViewport") or {}
        width = model.get("width") or 0
        height = model.get("height") or 0

        scale_x = viewport.get("clientWidth", 0) / width if width else 1.0
        scale_y = viewport.get("clientHeight", 0) / height if height else 1.0
        return scale_x, scale_y

    async def get_layout_tree_node(self, selector: str) -> Optional[LayoutTreeNode]:
        """
        Layout box of the first element matching a CSS selector.

        Returns:
            None if nothing matches or the element is not rendered.
        """
        document = await self._session.send_command("DOM.getDocument")
        element = await self._session.send_command(
            "DOM.querySelector", {"nodeId": document["root"]["nodeId"], "selector": selector}
        )
        node_id = element.get("nodeId") or 0
        if node_id <= 0:
            return None

        try:
            box = await self._session.send_command("DOM.getBoxModel", {"nodeId": node_id})
        except CommandError as e:
            # display:none and detached elements have no box model.
            logger.debug(f"No layout for {selector!r}: {e}")
            return None

        return LayoutTreeNode.from_box_model(node_id, box.get("model") or {})

    # =========================================================================
    # Navigation
    # =========================================================================

    async def navigate(self, url: str, force: bool = False, timeout: Optional[float] = None) -> bool:
        """
        Navigate the current frame to url and wait for it to stop loading.

        Calls are serialized per tracker so two navigations never interleave
        their waits.

        Args:
            url: Destination URL.
            force: Navigate even if the target already reports this URL.
            timeout: Seconds to wait for the load; defaults to navigation_timeout.

        Returns:
            True if the page was still loading when the wait ended.

        Raises:
            NavigationError: If the browser refuses the navigation.
        """
        timeout = self.navigation_timeout if timeout is None else timeout

        async with self._navigation_lock:
            logger.debug(f"Navigating to {url}", extra={"url": url})

            if not force:
                target_info = await self.get_target_info()
                if target_info.url == url:
                    logger.debug(f"No navigation needed - target already at {url}")
                    return self.is_loading

            # Cleared up front so a load that stops before the reply is not missed.
            was_stopped = self._frame_stopped_loading.is_set()
            self._frame_stopped_loading.clear()
            accepted = False
            try:
                response = await self._session.send_command("Page.navigate", {"url": url})

                error_text = response.get("errorText")
                if error_text:
                    raise NavigationError(
                        f"Navigation to {url} failed: {error_text}",
                        method="Page.navigate",
                        url=url,
                    )
                accepted = True
            finally:
                # A rejected navigation emits no frame events to undo the clear.
                if not accepted and was_stopped:
                    self._frame_stopped_loading.set()

            frame_id = response.get("frameId")
            if frame_id:
                self._set_current_frame(frame_id)

            is_loading = await self.wait_for_current_navigation(timeout)
            logger.debug(
                f"Completed navigation to {url} (frame id: {self._current_frame_id})",
                extra={"url": url, "frame_id": self._current_frame_id, "is_loading": is_loading}
            )
            return is_loading

    async def wait_for_current_navigation(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until the current frame stops loading. Returns immediately if it
        already has.

        Returns:
            True if the frame was still loading when the wait ended.
        """
        timeout = self.navigation_timeout if timeout is None else timeout
        logger.debug("Waiting for current navigation to complete.")
        await self._wait_for_stop(timeout)
        return self.is_loading

    async def wait_for_next_navigation(self, timeout: Optional[float] = None) -> bool:
        """
        Wait for a future stop-loading event, even if the frame is idle now.

        Returns:
            True if the frame was still loading when the wait ended.
        """
        timeout = self.navigation_timeout if timeout is None else timeout
        logger.debug("Waiting for next navigation.")
        if not self.is_loading:
            self._frame_stopped_loading.clear()
        await self._wait_for_stop(timeout)
        return self.is_loading

    async def _wait_for_stop(self, timeout: float) -> None:
        try:
            await asyncio.wait_for(self._frame_stopped_loading.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(
                f"Frame still loading after {timeout}s",
                extra={"frame_id": self._current_frame_id, "timeout": timeout}
            )

    # =========================================================================
    # Page manipulation
    # =========================================================================

    async def inject_script_element(
        self,
        script_url: Optional[str] = None,
        contents: Optional[str] = None,
        script_type: str = "text/javascript",
        is_async: bool = True,
    ) -> int:
        """
        Append a <script> element pointing at script_url or holding contents.

        Returns:
            The node id of the injected element.

        Raises:
            EvaluationError: If the script fails to load.
        """
        if script_url is None and contents is None:
            raise ValueError("Either script_url or contents is required")

        logger.debug(f"Injecting script tag with src={script_url} type={script_type}")
        remote = await self.evaluate(
            build_inject_script(script_url, contents, script_type, is_async),
            await_promise=True,
        )
        return await self._request_node(remote)

    async def inject_style_element(self, styles: str, style_type: str = "text/css") -> int:
        """
        Append a <style> element to the document head.

        Returns:
            The node id of the injected element.
        """
        logger.debug("Injecting style tag.")
        remote = await self.evaluate(build_inject_style(styles, style_type))
        return await self._request_node(remote)

    async def _request_node(self, remote: Dict[str, Any]) -> int:
        object_id = remote.get("objectId")
        if not object_id:
            raise EvaluationError(
                "Injected element was not returned as a remote object",
                method="DOM.requestNode",
            )
        response = await self._session.send_command("DOM.requestNode", {"objectId": object_id})
        return response["nodeId"]

    async def scroll_to_absolute_bottom(self, max_scrolls: int = 10, iterate_delay: float = 1.0) -> int:
        """
        Keep scrolling to the bottom until the scroll position stabilizes, for
        pages that load more content as they are scrolled.

        Returns:
            The number of scrolls performed.
        """
        scrolls = 0
        last_scroll_y: Optional[float] = None

        while scrolls < max_scrolls:
            dimensions = await self.get_page_dimensions()
            if last_scroll_y is not None and dimensions.scroll_y == last_scroll_y:
                logger.debug(f"Scroll position stable at {last_scroll_y} after {scrolls} scrolls")
                break
            last_scroll_y = dimensions.scroll_y

            await self.evaluate(build_scroll_to(0, dimensions.full_height))
            scrolls += 1
            await asyncio.sleep(iterate_delay)

        return scrolls

    async def take_full_page_screenshot(self, output_path: Union[str, Path]) -> Path:
        """
        Save an image of the entire page, not just the viewport.

        The emulated viewport is resized to the full content size for the
        capture and the override is always cleared afterwards.

        Returns:
            The path written.
        """
        if not output_path or not str(output_path).strip():
            raise ValueError("output_path is required")

        output = Path(output_path)
        dimensions = await self.get_page_dimensions()
        width = int(math.ceil(dimensions.full_width))
        height = int(math.ceil(dimensions.full_height))
        logger.debug(f"Taking full page screenshot ({width}x{height})")

        # TODO: Chrome clips captures above ~16384px per side; tile taller pages.
        await self._set_viewport_size(width, height)
        try:
            result = await self._session.send_command(
                "Page.captureScreenshot",
                {"format": _IMAGE_FORMATS.get(output.suffix.lower(), "png")},
                timeout=self.screenshot_timeout,
            )
            try:
                image_bytes = base64.b64decode(result["data"], validate=True)
            except (KeyError, binascii.Error) as e:
                raise EvaluationError(
                    "Screenshot reply carried no image data",
                    method="Page.captureScreenshot",
                ) from e

            output.parent.mkdir(parents=True, exist_ok=True)
            output.write_bytes(image_bytes)
            logger.debug(f"Wrote {len(image_bytes)} bytes to {output}")
        except BaseException:
            try:
                await self._clear_viewport_size()
            except Exception as e:
                logger.error(f"Failed to restore viewport after screenshot failure: {e}")
            raise

        await self._clear_viewport_size()
        return output

    async def _set_viewport_size(self, width: int, height: int) -> None:
        await self._session.send_command(
            "Emulation.setDeviceMetricsOverride",
            {"width": width, "height": height, "deviceScaleFactor": 0, "mobile": False},
        )

    async def _clear_viewport_size(self) -> None:
        await self._session.send_command("Emulation.clearDeviceMetricsOverride")

    async def dispose(self) -> None:
        """Stop tracking and release the session."""
        self._unsubscribe()
        await self._session.dispose()
