"""
HTML sanitizing for strings interpolated into map markup.
"""

import json
from typing import Any

import bleach

ALLOWED_TAGS = set(bleach.sanitizer.ALLOWED_TAGS) | {"br", "p", "span"}

# Attribution may carry a hyperlink that opens outside the map frame
_BODY_ATTRIBUTES = {tag: list(attrs) for tag, attrs in bleach.sanitizer.ALLOWED_ATTRIBUTES.items()}
_BODY_ATTRIBUTES.setdefault("a", []).append("target")


def sanitize_html(value: Any, permit_body: bool = False) -> str:
    """
    Clean a value for safe insertion into popup, label or attribution HTML.

    Disallowed tags (script included) and event handler attributes are
    stripped. Curly braces are entity-encoded because rendered popups live
    inside JavaScript template literals.

    Args:
        value: Any cell value; None becomes an empty string
        permit_body: Keep link targets (used for map attribution)

    Returns:
        Sanitized HTML fragment
    """
    if value is None:
        return ""
    text = value if isinstance(value, str) else str(value)
    if permit_body:
        cleaned = bleach.clean(text, tags=ALLOWED_TAGS, attributes=_BODY_ATTRIBUTES, strip=True)
    else:
        cleaned = bleach.clean(text, tags=ALLOWED_TAGS, strip=True)
    return cleaned.replace("{", "&#123;").replace("}", "&#125;")


def to_js_literal(value: Any) -> str:
    """JSON-encode a value for embedding inside a <script> block."""
    return (
        json.dumps(value)
        .replace("<", "\\u003c")
        .replace(">", "\\u003e")
        .replace("&", "\\u0026")
    )
