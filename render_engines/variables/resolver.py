"""{{path}} placeholder substitution over a RenderContext.

Paths are resolved against a closed set of roots:

    price                 -> variables["price"]
    brandKit.agentName    -> brand kit field (single level)
    listing.address.city  -> listing data, walked with own-key lookups
    lifeHere.walkScore    -> neighborhood data
    agent.name            -> agent data
    a.b.c                 -> first source where the dotted walk succeeds

A span that cannot be resolved is left in the output untouched.
"""
from __future__ import annotations

import logging
import math
import re
from typing import Any, Callable, Dict, Optional

from render_engines.security.safe_lookup import get_deep_value, get_own, has_blocked_segment, is_missing, split_path
from render_engines.variables import formatters
from render_engines.variables.context import RenderContext

logger = logging.getLogger(__name__)

PLACEHOLDER_PATTERN = re.compile(r"\{\{([^}]+)\}\}")
HELPER_PATTERN = re.compile(r"^(\w+)\s+(.+)$")

_PREFIXED_SOURCES = (
    ("lifeHere.", "life_here_data"),
    ("listing.", "listing_data"),
    ("agent.", "agent_data"),
)


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float):
        return formatters.format_plain_number(value) if math.isfinite(value) else str(value)
    if isinstance(value, (list, tuple)):
        return ",".join(stringify(item) for item in value)
    return str(value)


HELPERS: Dict[str, Callable[[Any], str]] = {
    "formatPrice": formatters.format_price,
    "formatNumber": formatters.format_number,
    "formatDate": formatters.format_date,
    "uppercase": lambda value: stringify(value).upper(),
    "lowercase": lambda value: stringify(value).lower(),
    "capitalize": lambda value: formatters.capitalize(stringify(value)),
    "truncate": lambda value: formatters.truncate(stringify(value), 50),
}


def get_nested_value(path: str, context: RenderContext) -> Optional[Any]:
    parts = split_path(path)
    if has_blocked_segment(parts):
        logger.warning("Blocked access to dangerous property in path: %s", path)
        return None

    direct = get_own(context.variables or {}, path)
    if not is_missing(direct):
        return direct

    if path.startswith("brandKit."):
        brand = context.brand_kit_values()
        if brand is not None:
            value = get_own(brand, path[len("brandKit."):])
            return None if is_missing(value) else value

    for prefix, attr in _PREFIXED_SOURCES:
        source = getattr(context, attr)
        if path.startswith(prefix) and source:
            return get_deep_value(source, path[len(prefix):])

    if len(parts) > 1:
        for source in context.sources():
            if not source:
                continue
            value = get_deep_value(source, path)
            if value is not None:
                return value

    return None


def apply_helper(helper: str, value: Any) -> Optional[str]:
    func = HELPERS.get(helper)
    if func is None:
        return None
    return func(value)


def resolve_variables(text: Optional[str], context: RenderContext) -> str:
    """Substitute every {{...}} span in text; unresolvable spans stay verbatim."""
    if not text:
        return ""

    def _replace(match: re.Match) -> str:
        expression = match.group(1).strip()

        helper_match = HELPER_PATTERN.match(expression)
        if helper_match:
            helper, arg = helper_match.group(1), helper_match.group(2).strip()
            value = get_nested_value(arg, context)
            if value is None:
                return match.group(0)
            result = apply_helper(helper, value)
            return match.group(0) if result is None else result

        value = get_nested_value(expression, context)
        if value is None:
            return match.group(0)
        return stringify(value)

    return PLACEHOLDER_PATTERN.sub(_replace, text)
