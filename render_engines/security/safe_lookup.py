"""Own-key lookups over untrusted nested data.

Template variable bags can come from less-trusted input, so paths are walked
segment by segment over plain mappings and sequences only. Attribute access is
never used, which keeps dunder/reflection names out of reach even if a blocked
name slipped through.
"""
from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Optional, Sequence

logger = logging.getLogger(__name__)

BLOCKED_PROPERTIES = frozenset(
    {
        "__proto__",
        "constructor",
        "prototype",
        "__defineGetter__",
        "__defineSetter__",
        "__lookupGetter__",
        "__lookupSetter__",
    }
)

_MISSING = object()


def split_path(path: str) -> list[str]:
    return path.split(".")


def is_blocked_segment(segment: str) -> bool:
    return segment in BLOCKED_PROPERTIES or (segment.startswith("__") and segment.endswith("__"))


def has_blocked_segment(segments: Iterable[str]) -> bool:
    return any(is_blocked_segment(seg) for seg in segments)


def get_own(container: Any, key: str) -> Any:
    """Return container[key] only when key is an own entry, else a sentinel."""
    if isinstance(container, Mapping):
        if key in container:
            return container[key]
        return _MISSING
    if isinstance(container, Sequence) and not isinstance(container, (str, bytes)):
        if key.isdigit():
            index = int(key)
            if index < len(container):
                return container[index]
        return _MISSING
    return _MISSING


def get_deep_value(obj: Any, path: str) -> Optional[Any]:
    """Walk a dot path through nested mappings/sequences.

    Returns None when any segment is blocked, missing, or the walk hits a
    scalar before the path ends.
    """
    current = obj
    for part in split_path(path):
        if is_blocked_segment(part):
            logger.warning("Blocked access to dangerous property: %s", part)
            return None
        if current is None:
            return None
        value = get_own(current, part)
        if value is _MISSING:
            return None
        current = value
    return current


def is_missing(value: Any) -> bool:
    return value is _MISSING
