"""
Utils Module - helpers for building page-side scripts.
"""
from skrapr.utils.javascript import (
    PAGE_DIMENSIONS_SCRIPT,
    build_inject_script,
    build_inject_style,
    build_scroll_to,
    to_js_literal,
)

__all__ = [
    "PAGE_DIMENSIONS_SCRIPT",
    "build_inject_script",
    "build_inject_style",
    "build_scroll_to",
    "to_js_literal",
]
