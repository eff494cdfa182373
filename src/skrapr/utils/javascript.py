"""
Page-side scripts and safe literal encoding for values spliced into them.
"""
import json
from typing import Any, Optional


def to_js_literal(value: Any) -> str:
    """
    Encode a Python value as a JavaScript literal.

    JSON is a subset of JavaScript expression syntax once U+2028/U+2029 are
    escaped, which ensure_ascii does. None becomes null.
    """
    return json.dumps(value, ensure_ascii=True)


PAGE_DIMENSIONS_SCRIPT = """
(function() {
    'use strict';

    var max = function (nums) {
        return Math.max.apply(Math, nums.filter(function(x) { return x; }));
    };

    var body = document.body || document.documentElement;
    var root = document.documentElement;
    var originalOverflowStyle = root.style.overflow;

    root.style.overflow = 'hidden';

    var widths = [
        root.clientWidth,
        body.scrollWidth,
        root.scrollWidth,
        body.offsetWidth,
        root.offsetWidth
    ];
    var heights = [
        root.clientHeight,
        body.scrollHeight,
        root.scrollHeight,
        body.offsetHeight,
        root.offsetHeight
    ];

    var result = {
        scrollX: window.scrollX,
        scrollY: window.scrollY,
        fullWidth: max(widths),
        fullHeight: max(heights),
        windowWidth: window.innerWidth,
        windowHeight: window.innerHeight,
        devicePixelRatio: window.devicePixelRatio,
        originalOverflowStyle: originalOverflowStyle
    };

    root.style.overflow = originalOverflowStyle;
    return JSON.stringify(result);
})();
"""


def build_inject_script(
    url: Optional[str] = None,
    contents: Optional[str] = None,
    script_type: str = "text/javascript",
    is_async: bool = True,
) -> str:
    """
    Script that appends a <script> element and resolves with it.

    External scripts resolve on load and reject on error/abort. Inline scripts
    never fire load, so they resolve as soon as they are appended.
    """
    return f"""
new Promise(function (resolve, reject) {{
    'use strict';
    var done = false;
    var src = {to_js_literal(url)};
    var text = {to_js_literal(contents)};
    var s = document.createElement('script');
    s.type = {to_js_literal(script_type)};
    s.async = {to_js_literal(bool(is_async))};
    if (text !== null) {{
        s.text = text;
    }}
    var parent = document.body || document.head || document.documentElement;
    if (src === null) {{
        parent.appendChild(s);
        resolve(s);
        return;
    }}
    s.onload = s.onreadystatechange = function() {{
        if (!done && (!this.readyState || this.readyState == 'complete')) {{
            done = true;
            resolve(this);
        }}
    }};
    s.onerror = s.onabort = function() {{
        reject(new Error('Failed to load script ' + src));
    }};
    s.src = src;
    parent.appendChild(s);
}});
"""


def build_inject_style(styles: str, style_type: str = "text/css") -> str:
    """Script that appends a <style> element to the head and returns it."""
    return f"""
(function() {{
    'use strict';
    var s = document.createElement('style');
    s.type = {to_js_literal(style_type)};
    s.textContent = {to_js_literal(styles)};
    (document.head || document.documentElement).appendChild(s);
    return s;
}})();
"""


def build_scroll_to(x: float, y: float) -> str:
    return f"window.scrollTo({to_js_literal(x)}, {to_js_literal(y)});"
