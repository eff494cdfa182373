"""
Skrapr Models - Data classes for targets, frames and page measurements.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class ChromeSessionInfo:
    """A debuggable target as listed by the browser's /json endpoint."""
    id: str
    type: str
    title: str = ""
    url: str = ""
    web_socket_debugger_url: str = ""
    devtools_frontend_url: str = ""
    description: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ChromeSessionInfo:
        return cls(
            id=data.get("id", ""),
            type=data.get("type", ""),
            title=data.get("title", ""),
            url=data.get("url", ""),
            web_socket_debugger_url=data.get("webSocketDebuggerUrl", ""),
            devtools_frontend_url=data.get("devtoolsFrontendUrl", ""),
            description=data.get("description", ""),
        )


@dataclass
class TargetInfo:
    """Information about a CDP target as reported by Target.getTargetInfo."""
    target_id: str
    type: str 
    url: str
    title: str
    attached: bool = False
    browser_context_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TargetInfo:
        return cls(
            target_id=data.get("targetId", ""),
            type=data.get("type", "unknown"),
            url=data.get("url", ""),
            title=data.get("title", ""),
            attached=bool(data.get("attached", False)),
            browser_context_id=data.get("browserContextId"),
        )


@dataclass
class ExecutionContextDescription:
    """A script-evaluation scope created by the browser for a frame."""
    id: int
    origin: str
    name: str
    frame_id: Optional[str] = None
    is_default: bool = False

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> ExecutionContextDescription:
        aux_data = data.get("auxData") or {}
        return cls(
            id=data["id"],
            origin=data.get("origin", ""),
            name=data.get("name", ""),
            frame_id=aux_data.get("frameId"),
            is_default=bool(aux_data.get("isDefault", False)),
        )


@dataclass
class PageDimensions:
    """
    Page geometry as measured by the page-side measurement script.

    Values are validated when parsed so callers never deal with the loosely
    typed JSON produced in the page.
    """
    scroll_x: float
    scroll_y: float
    full_width: float
    full_height: float
    window_width: float
    window_height: float
    device_pixel_ratio: float = 1.0
    original_overflow_style: str = ""

    _NUMERIC_FIELDS = {
        "scroll_x": "scrollX",
        "scroll_y": "scrollY",
        "full_width": "fullWidth",
        "full_height": "fullHeight",
        "window_width": "windowWidth",
        "window_height": "windowHeight",
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> PageDimensions:
        """
        Parse the measurement payload.

        Raises:
            ValueError: If a required field is missing or not numeric.
        """
        values: Dict[str, Any] = {}
        for attr, key in cls._NUMERIC_FIELDS.items():
            raw = data.get(key)
            if isinstance(raw, bool) or not isinstance(raw, (int, float)):
                raise ValueError(f"Page dimension {key!r} missing or not numeric: {raw!r}")
            values[attr] = float(raw)

        ratio = data.get("devicePixelRatio", 1.0)
        if isinstance(ratio, bool) or not isinstance(ratio, (int, float)):
            ratio = 1.0
        values["device_pixel_ratio"] = float(ratio)
        values["original_overflow_style"] = str(data.get("originalOverflowStyle") or "")
        return cls(**values)


@dataclass
class LayoutTreeNode:
    """Rendered box of a DOM element, in CSS pixels relative to the viewport."""
    node_id: int
    x: float
    y: float
    width: float
    height: float
    content: List[float] = field(default_factory=list)

    @classmethod
    def from_box_model(cls, node_id: int, model: Dict[str, Any]) -> LayoutTreeNode:
        # Quads are [x1, y1, x2, y2, x3, y3, x4, y4].
        quad = [float(v) for v in model.get("border") or model.get("content") or []]
        xs = quad[0::2] or [0.0]
        ys = quad[1::2] or [0.0]
        return cls(
            node_id=node_id,
            x=min(xs),
            y=min(ys),
            width=float(model.get("width", max(xs) - min(xs))),
            height=float(model.get("height", max(ys) - min(ys))),
            content=[float(v) for v in model.get("content") or []],
        )


@dataclass
class FrameState:
    """
    Snapshot of the current frame, the input rules are evaluated against.
    """
    frame_id: Optional[str]
    url: str
    title: str
    is_loading: bool
    navigation_count: int = 0
    frame_tree: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_loaded(self) -> bool:
        return not self.is_loading
