"""Color resolution for template color fields."""
from __future__ import annotations

import re
from typing import Any, Optional

from render_engines.security.safe_lookup import get_own, is_missing
from render_engines.variables.context import RenderContext
from render_engines.variables.resolver import get_nested_value, stringify

DEFAULT_COLOR = "#000000"

BRAND_COLOR_DEFAULTS = {
    "primaryColor": "#0077ff",
    "secondaryColor": "#ffffff",
    "accentColor": "#ff6b00",
}

NAMED_COLORS = {
    "white",
    "black",
    "red",
    "green",
    "blue",
    "yellow",
    "orange",
    "purple",
    "pink",
    "gray",
    "grey",
    "transparent",
}

_HEX_COLOR = re.compile(r"^#([0-9A-Fa-f]{3}|[0-9A-Fa-f]{6}|[0-9A-Fa-f]{8})$")
_RGB_COLOR = re.compile(r"^rgba?\([^)]+\)$")
_HSL_COLOR = re.compile(r"^hsla?\([^)]+\)$")


def is_valid_color(color: Any) -> bool:
    if not color or not isinstance(color, str):
        return False
    if _HEX_COLOR.fullmatch(color) or _RGB_COLOR.fullmatch(color) or _HSL_COLOR.fullmatch(color):
        return True
    return color.lower() in NAMED_COLORS


def resolve_color(color: Optional[str], context: RenderContext) -> str:
    """Resolve a literal, {{variable}} or brand token to a usable color string."""
    if not color:
        return DEFAULT_COLOR
    color = str(color)

    if color.startswith("{{") and color.endswith("}}"):
        resolved = get_nested_value(color[2:-2].strip(), context)
        value = stringify(resolved) if resolved is not None else ""
        return value if is_valid_color(value) else DEFAULT_COLOR

    named = get_own(context.variables or {}, color)
    if not is_missing(named) and named is not None:
        value = stringify(named)
        if is_valid_color(value):
            return value

    brand = context.brand_kit_values()
    if brand is not None and color in BRAND_COLOR_DEFAULTS:
        value = brand.get(color)
        return value or BRAND_COLOR_DEFAULTS[color]

    if is_valid_color(color):
        return color
    return DEFAULT_COLOR
