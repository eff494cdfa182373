"""
Tests for SkraprDevTools - frame state tracking and the browsing operations
composed from session commands.

Run with: pytest tests/test_devtools.py -v
"""
import asyncio
import base64
import json

import pytest

from skrapr.core.errors import (
    CDPSessionError,
    CommandError,
    EvaluationError,
    NavigationError,
)
from skrapr.devtools import SkraprDevTools
from tests.conftest import ProtocolError, page_responses, settle


def dimensions(scroll_y=0, full_height=3000, full_width=1280, window_width=1280, window_height=720):
    return {
        "scrollX": 0,
        "scrollY": scroll_y,
        "fullWidth": full_width,
        "fullHeight": full_height,
        "windowWidth": window_width,
        "windowHeight": window_height,
        "devicePixelRatio": 1,
        "originalOverflowStyle": "",
    }


def evaluate_responder(measurements):
    """Runtime.evaluate answering each measurement in turn, the last one forever."""
    remaining = list(measurements)

    def respond(params):
        if "fullHeight" in params["expression"]:
            current = remaining.pop(0) if len(remaining) > 1 else remaining[0]
            return {"result": {"type": "string", "value": json.dumps(current)}}
        return {"result": {"type": "undefined"}}

    return respond


async def make_devtools(chrome, session, **kwargs):
    chrome.responses.update(page_responses(**kwargs))
    devtools = SkraprDevTools(session, "T1", navigation_timeout=1.0, screenshot_timeout=1.0)
    await devtools.initialize()
    return devtools


# =============================================================================
# Initialization
# =============================================================================

class TestInitialization:
    """Tests for domain enablement and initial state."""

    @pytest.mark.asyncio
    async def test_enables_domains_in_order(self, chrome, devtools):
        assert chrome.methods() == [
            "Emulation.resetPageScaleFactor",
            "Page.enable",
            "Page.getResourceTree",
            "Runtime.enable",
            "DOM.enable",
            "Runtime.evaluate",
        ]
        assert devtools.current_frame_id == "F1"
        assert devtools.target_id == "T1"
        assert devtools.navigation_count == 0

    @pytest.mark.asyncio
    async def test_loaded_page_is_not_loading(self, devtools):
        assert devtools.is_loading is False

    @pytest.mark.asyncio
    async def test_page_still_loading_at_attach(self, chrome, session):
        devtools = await make_devtools(chrome, session, ready_state="interactive")
        assert devtools.is_loading is True

    @pytest.mark.asyncio
    async def test_enable_failure_raises_session_error(self, chrome, session):
        chrome.responses.update(page_responses())
        chrome.responses["Page.enable"] = ProtocolError(-32601, "'Page.enable' wasn't found")
        devtools = SkraprDevTools(session, "T1")

        with pytest.raises(CDPSessionError):
            await devtools.initialize()

        assert session.subscriber_count("Page.frameStoppedLoading") == 0

    @pytest.mark.asyncio
    async def test_missing_frame_tree_raises_session_error(self, chrome, session):
        chrome.responses["Page.getResourceTree"] = {}
        devtools = SkraprDevTools(session, "T1")

        with pytest.raises(CDPSessionError):
            await devtools.initialize()


# =============================================================================
# Event driven state
# =============================================================================

class TestFrameEvents:
    """Tests for state mutation from frame, runtime and DOM events."""

    @pytest.mark.asyncio
    async def test_started_and_stopped_loading(self, chrome, devtools):
        chrome.emit("Page.frameStartedLoading", {"frameId": "F1"})
        await settle()
        assert devtools.is_loading is True

        chrome.emit("Page.frameStoppedLoading", {"frameId": "F1"})
        await settle()
        assert devtools.is_loading is False
        assert devtools.navigation_count == 1

    @pytest.mark.asyncio
    async def test_other_frames_are_ignored(self, chrome, devtools):
        chrome.emit("Page.frameStartedLoading", {"frameId": "IFRAME"})
        chrome.emit("Page.frameStoppedLoading", {"frameId": "IFRAME"})
        await settle()

        assert devtools.is_loading is False
        assert devtools.navigation_count == 0

    @pytest.mark.asyncio
    async def test_execution_context_tracking(self, chrome, devtools):
        chrome.emit("Runtime.executionContextCreated", {
            "context": {"id": 5, "origin": "https://a", "name": "",
                        "auxData": {"frameId": "F1", "isDefault": True}},
        })
        chrome.emit("Runtime.executionContextCreated", {
            "context": {"id": 6, "origin": "", "name": "isolated",
                        "auxData": {"frameId": "F1", "isDefault": False}},
        })
        chrome.emit("Runtime.executionContextCreated", {
            "context": {"id": 7, "origin": "https://b", "name": "",
                        "auxData": {"frameId": "IFRAME", "isDefault": True}},
        })
        await settle()

        assert devtools.current_frame_context.id == 5

        await devtools.evaluate("1 + 1")
        assert chrome.last("Runtime.evaluate")["params"]["contextId"] == 5

        chrome.emit("Runtime.executionContextDestroyed", {"executionContextId": 5})
        await settle()
        assert devtools.current_frame_context is None

        await devtools.evaluate("1 + 1")
        assert "contextId" not in chrome.last("Runtime.evaluate")["params"]

    @pytest.mark.asyncio
    async def test_document_updated_clears_node_cache(self, chrome, devtools):
        chrome.emit("DOM.setChildNodes", {
            "parentId": 1,
            "nodes": [{"nodeId": 5, "nodeName": "DIV", "children": [{"nodeId": 6, "nodeName": "SPAN"}]}],
        })
        await settle()
        assert set(devtools.child_nodes) == {5, 6}

        chrome.emit("DOM.documentUpdated")
        await settle()
        assert len(devtools.child_nodes) == 0

        chrome.emit("DOM.setChildNodes", {"parentId": 1, "nodes": [{"nodeId": 5, "nodeName": "P"}]})
        await settle()
        assert devtools.child_nodes[5]["nodeName"] == "P"

    @pytest.mark.asyncio
    async def test_child_nodes_is_read_only(self, devtools):
        with pytest.raises(TypeError):
            devtools.child_nodes[1] = {"nodeId": 1}


# =============================================================================
# Queries
# =============================================================================

class TestQueries:
    """Tests for evaluation and page measurements."""

    @pytest.mark.asyncio
    async def test_evaluate_exception_raises(self, chrome, devtools):
        chrome.responses["Runtime.evaluate"] = {
            "result": {"type": "object", "subtype": "error"},
            "exceptionDetails": {
                "text": "Uncaught",
                "exception": {"description": "ReferenceError: nope is not defined"},
            },
        }

        with pytest.raises(EvaluationError) as exc_info:
            await devtools.evaluate("nope()")
        assert "ReferenceError" in str(exc_info.value)

    @pytest.mark.asyncio
    async def test_get_page_dimensions(self, chrome, devtools):
        chrome.responses["Runtime.evaluate"] = evaluate_responder([dimensions(scroll_y=120)])

        result = await devtools.get_page_dimensions()

        assert result.scroll_y == 120
        assert result.full_height == 3000
        assert result.window_width == 1280

    @pytest.mark.asyncio
    async def test_malformed_dimensions_raise(self, chrome, devtools):
        chrome.responses["Runtime.evaluate"] = {"result": {"type": "string", "value": '{"scrollX": "a"}'}}

        with pytest.raises(EvaluationError):
            await devtools.get_page_dimensions()

    @pytest.mark.asyncio
    async def test_get_current_frame_state(self, chrome, devtools):
        chrome.responses.update(page_responses(url="https://x/login"))

        state = await devtools.get_current_frame_state()

        assert state.url == "https://x/login"
        assert state.frame_id == "F1"
        assert state.is_loaded
        assert state.frame_tree["frame"]["id"] == "F1"

    @pytest.mark.asyncio
    async def test_get_target_info_passes_target_id(self, chrome, devtools):
        info = await devtools.get_target_info()

        assert info.target_id == "T1"
        assert chrome.last("Target.getTargetInfo")["params"] == {"targetId": "T1"}

    @pytest.mark.asyncio
    async def test_get_page_scale_factor(self, chrome, devtools):
        chrome.responses.update({
            "DOM.getDocument": {"root": {"nodeId": 1}},
            "DOM.querySelector": {"nodeId": 2},
            "DOM.getBoxModel": {"model": {"width": 1000, "height": 2000}},
            "Page.getLayoutMetrics": {"cssLayoutViewport": {"clientWidth": 500, "clientHeight": 1000}},
        })

        assert await devtools.get_page_scale_factor() == (0.5, 0.5)

    @pytest.mark.asyncio
    async def test_get_layout_tree_node(self, chrome, devtools):
        chrome.responses.update({
            "DOM.getDocument": {"root": {"nodeId": 1}},
            "DOM.querySelector": {"nodeId": 5},
            "DOM.getBoxModel": {"model": {
                "border": [10, 20, 110, 20, 110, 70, 10, 70],
                "content": [12, 22, 108, 22, 108, 68, 12, 68],
                "width": 100,
                "height": 50,
            }},
        })

        node = await devtools.get_layout_tree_node("#login")

        assert node is not None
        assert node.node_id == 5
        assert (node.x, node.y, node.width, node.height) == (10.0, 20.0, 100.0, 50.0)
        assert node.content[:2] == [12.0, 22.0]
        assert chrome.last("DOM.querySelector")["params"] == {"nodeId": 1, "selector": "#login"}
        assert chrome.last("DOM.getBoxModel")["params"] == {"nodeId": 5}

    @pytest.mark.asyncio
    async def test_get_layout_tree_node_not_found(self, chrome, devtools):
        chrome.responses.update({
            "DOM.getDocument": {"root": {"nodeId": 1}},
            "DOM.querySelector": {"nodeId": 0},
        })

        assert await devtools.get_layout_tree_node(".missing") is None
        assert "DOM.getBoxModel" not in chrome.methods()

    @pytest.mark.asyncio
    async def test_get_layout_tree_node_not_rendered(self, chrome, devtools):
        chrome.responses.update({
            "DOM.getDocument": {"root": {"nodeId": 1}},
            "DOM.querySelector": {"nodeId": 9},
            "DOM.getBoxModel": ProtocolError(-32000, "Could not compute box model."),
        })

        assert await devtools.get_layout_tree_node("#hidden") is None


# =============================================================================
# Navigation
# =============================================================================

class TestNavigation:
    """Tests for navigate and the navigation waits."""

    @pytest.mark.asyncio
    async def test_navigate_is_noop_when_already_there(self, chrome, devtools):
        chrome.responses.update(page_responses(url="https://example.com"))

        still_loading = await devtools.navigate("https://example.com")

        assert still_loading is False
        assert "Page.navigate" not in chrome.methods()

    @pytest.mark.asyncio
    async def test_navigate_waits_for_stop_loading(self, chrome, devtools):
        def on_navigate(params):
            chrome.emit("Page.frameStartedLoading", {"frameId": "F1"}, delay=0.01)
            chrome.emit("Page.frameStoppedLoading", {"frameId": "F1"}, delay=0.05)
            return {"frameId": "F1", "loaderId": "L1"}

        chrome.responses["Page.navigate"] = on_navigate

        still_loading = await devtools.navigate("https://example.com/next")

        assert still_loading is False
        assert devtools.navigation_count == 1
        assert chrome.last("Page.navigate")["params"] == {"url": "https://example.com/next"}

    @pytest.mark.asyncio
    async def test_navigate_reply_sets_current_frame(self, chrome, session):
        devtools = await make_devtools(chrome, session, frame_id="F0")
        session.message_id = 6

        def on_navigate(params):
            chrome.emit("Page.frameStoppedLoading", {"frameId": "F1"}, delay=0.05)
            return {"frameId": "F1"}

        chrome.responses["Page.navigate"] = on_navigate

        await devtools.navigate("https://example.com", force=True)

        assert chrome.last("Page.navigate")["id"] == 7
        assert devtools.current_frame_id == "F1"
        assert devtools.is_loading is False

    @pytest.mark.asyncio
    async def test_navigate_error_text_raises(self, chrome, devtools):
        chrome.responses["Page.navigate"] = {"frameId": "F1", "errorText": "net::ERR_NAME_NOT_RESOLVED"}

        with pytest.raises(NavigationError) as exc_info:
            await devtools.navigate("https://does-not-exist.invalid")
        assert "ERR_NAME_NOT_RESOLVED" in str(exc_info.value)
        assert devtools.is_loading is False

    @pytest.mark.asyncio
    async def test_rejected_navigate_leaves_frame_idle(self, chrome, devtools):
        chrome.responses["Page.navigate"] = ProtocolError(-32000, "Cannot navigate to invalid URL")

        with pytest.raises(CommandError):
            await devtools.navigate("notaurl", force=True)

        assert devtools.is_loading is False
        assert await asyncio.wait_for(devtools.wait_for_current_navigation(timeout=1.0), timeout=0.5) is False
        state = await devtools.get_current_frame_state()
        assert state.is_loading is False

    @pytest.mark.asyncio
    async def test_rejected_navigate_keeps_load_in_progress(self, chrome, session):
        devtools = await make_devtools(chrome, session, ready_state="loading")
        chrome.responses["Page.navigate"] = ProtocolError(-32000, "Cannot navigate to invalid URL")

        with pytest.raises(CommandError):
            await devtools.navigate("notaurl", force=True)

        assert devtools.is_loading is True

    @pytest.mark.asyncio
    async def test_navigate_times_out_still_loading(self, chrome, devtools):
        chrome.responses["Page.navigate"] = {"frameId": "F1"}

        still_loading = await devtools.navigate("https://slow.example", timeout=0.05)

        assert still_loading is True

    @pytest.mark.asyncio
    async def test_wait_for_current_navigation_returns_when_idle(self, devtools):
        assert await devtools.wait_for_current_navigation(timeout=0.05) is False

    @pytest.mark.asyncio
    async def test_wait_for_next_navigation_needs_a_new_event(self, chrome, devtools):
        waiter = asyncio.create_task(devtools.wait_for_next_navigation(timeout=1.0))
        await settle()
        assert not waiter.done()

        chrome.emit("Page.frameStoppedLoading", {"frameId": "F1"})

        assert await waiter is False
        assert devtools.navigation_count == 1

    @pytest.mark.asyncio
    async def test_wait_for_next_navigation_times_out(self, devtools):
        assert await devtools.wait_for_next_navigation(timeout=0.05) is True


# =============================================================================
# Page manipulation
# =============================================================================

class TestPageManipulation:
    """Tests for injection, scrolling and screenshots."""

    @pytest.mark.asyncio
    async def test_inject_script_element(self, chrome, devtools):
        chrome.responses["Runtime.evaluate"] = {"result": {"type": "object", "objectId": "obj-1"}}
        chrome.responses["DOM.requestNode"] = {"nodeId": 42}

        node_id = await devtools.inject_script_element("https://cdn.example/lib.js")

        assert node_id == 42
        evaluate = chrome.last("Runtime.evaluate")["params"]
        assert evaluate["awaitPromise"] is True
        assert '"https://cdn.example/lib.js"' in evaluate["expression"]
        assert chrome.last("DOM.requestNode")["params"] == {"objectId": "obj-1"}

    @pytest.mark.asyncio
    async def test_inject_script_requires_source(self, devtools):
        with pytest.raises(ValueError):
            await devtools.inject_script_element()

    @pytest.mark.asyncio
    async def test_inject_style_element(self, chrome, devtools):
        chrome.responses["Runtime.evaluate"] = {"result": {"type": "object", "objectId": "obj-2"}}
        chrome.responses["DOM.requestNode"] = {"nodeId": 43}

        assert await devtools.inject_style_element("body { color: red; }") == 43
        assert "color: red" in chrome.last("Runtime.evaluate")["params"]["expression"]

    @pytest.mark.asyncio
    async def test_scroll_stops_when_position_stabilizes(self, chrome, devtools):
        chrome.responses["Runtime.evaluate"] = evaluate_responder([
            dimensions(scroll_y=0),
            dimensions(scroll_y=2280),
            dimensions(scroll_y=2280),
        ])

        scrolls = await devtools.scroll_to_absolute_bottom(max_scrolls=10, iterate_delay=0)

        assert scrolls == 2
        scroll_calls = [
            m for m in chrome.sent
            if m["method"] == "Runtime.evaluate" and "scrollTo" in m["params"]["expression"]
        ]
        assert len(scroll_calls) == 2

    @pytest.mark.asyncio
    async def test_scroll_never_exceeds_max_scrolls(self, chrome, devtools):
        chrome.responses["Runtime.evaluate"] = evaluate_responder(
            [dimensions(scroll_y=y) for y in range(0, 10000, 500)]
        )

        assert await devtools.scroll_to_absolute_bottom(max_scrolls=3, iterate_delay=0) == 3

    @pytest.mark.asyncio
    async def test_full_page_screenshot(self, chrome, devtools, tmp_path):
        chrome.responses["Runtime.evaluate"] = evaluate_responder([dimensions()])
        chrome.responses["Page.captureScreenshot"] = {"data": base64.b64encode(b"fake-png").decode()}
        output = tmp_path / "shots" / "page.png"

        written = await devtools.take_full_page_screenshot(output)

        assert written == output
        assert output.read_bytes() == b"fake-png"
        assert chrome.last("Page.captureScreenshot")["params"]["format"] == "png"
        overrides = [m["params"] for m in chrome.sent if m["method"] == "Emulation.setDeviceMetricsOverride"]
        assert len(overrides) == 1
        assert (overrides[0]["width"], overrides[0]["height"]) == (1280, 3000)
        methods = chrome.methods()
        assert methods.index("Emulation.clearDeviceMetricsOverride") > methods.index("Page.captureScreenshot")

    @pytest.mark.asyncio
    async def test_screenshot_failure_restores_viewport(self, chrome, devtools, tmp_path):
        chrome.responses["Runtime.evaluate"] = evaluate_responder([dimensions()])
        chrome.responses["Page.captureScreenshot"] = ProtocolError(-32000, "Unable to capture screenshot")

        with pytest.raises(CommandError):
            await devtools.take_full_page_screenshot(tmp_path / "page.png")

        overrides = [m["params"] for m in chrome.sent if m["method"] == "Emulation.setDeviceMetricsOverride"]
        assert len(overrides) == 1
        assert "Emulation.clearDeviceMetricsOverride" in chrome.methods()
        assert not (tmp_path / "page.png").exists()

    @pytest.mark.asyncio
    async def test_screenshot_failure_survives_failed_restore(self, chrome, devtools, tmp_path, caplog):
        chrome.responses["Runtime.evaluate"] = evaluate_responder([dimensions()])
        chrome.responses["Page.captureScreenshot"] = ProtocolError(-32000, "Unable to capture screenshot")
        chrome.responses["Emulation.clearDeviceMetricsOverride"] = ProtocolError(-32000, "Target closed")

        with caplog.at_level("ERROR", logger="skrapr"):
            with pytest.raises(CommandError) as exc_info:
                await devtools.take_full_page_screenshot(tmp_path / "page.png")

        assert "Unable to capture screenshot" in str(exc_info.value)
        assert "Target closed" in caplog.text

    @pytest.mark.asyncio
    async def test_screenshot_format_follows_suffix(self, chrome, devtools, tmp_path):
        chrome.responses["Runtime.evaluate"] = evaluate_responder([dimensions()])
        chrome.responses["Page.captureScreenshot"] = {"data": base64.b64encode(b"jpg").decode()}

        await devtools.take_full_page_screenshot(tmp_path / "page.jpg")

        assert chrome.last("Page.captureScreenshot")["params"]["format"] == "jpeg"

    @pytest.mark.asyncio
    async def test_dispose_releases_session(self, chrome, devtools):
        await devtools.dispose()

        assert devtools.session.is_closed
        assert devtools.session.subscriber_count("Page.frameStoppedLoading") == 0
