"""Text sanitizer for content embedded as SVG text nodes.

Two passes: strip anything tag-shaped, then escape what is left. This is not
an HTML sanitizer; output is only safe as element content.
"""
from __future__ import annotations

import re
from typing import Any

MAX_TEXT_LENGTH = 10000

TAG_PATTERN = re.compile(r"<[^>]*>")
SCRIPT_SCHEME_PATTERN = re.compile(r"javascript:", re.IGNORECASE)
DATA_SCHEME_PATTERN = re.compile(r"data:", re.IGNORECASE)


def sanitize_text(text: Any) -> str:
    if not text or not isinstance(text, str):
        return ""

    cleaned = TAG_PATTERN.sub("", text)
    cleaned = cleaned.replace("<", "&lt;").replace(">", "&gt;")
    cleaned = SCRIPT_SCHEME_PATTERN.sub("", cleaned)
    cleaned = DATA_SCHEME_PATTERN.sub("", cleaned)
    return cleaned[:MAX_TEXT_LENGTH]
