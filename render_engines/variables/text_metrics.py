"""Text sizing heuristics used before real layout happens."""
from __future__ import annotations

import math
from typing import Any, List, Mapping, Union

from render_engines.variables.models import AutoSizeConfig

DEFAULT_MIN_SIZE = 12
DEFAULT_MAX_SIZE = 48
AVG_CHAR_WIDTH = 0.6


def _coerce_config(config: Union[AutoSizeConfig, Mapping[str, Any]]) -> AutoSizeConfig:
    if isinstance(config, AutoSizeConfig):
        return config
    return AutoSizeConfig.model_validate(config)


def calculate_auto_size(
    text: str,
    config: Union[AutoSizeConfig, Mapping[str, Any]],
    container_width: float,
) -> float:
    """Pick a font size so that longer text renders smaller.

    Breakpoints, when given, win over the width-based estimate. Text longer
    than every breakpoint gets the minimum size.
    """
    cfg = _coerce_config(config)
    max_size = cfg.max_size or DEFAULT_MAX_SIZE
    if not cfg.enabled:
        return max_size

    min_size = cfg.min_size or DEFAULT_MIN_SIZE
    text_length = len(text or "")

    if cfg.breakpoints:
        for bp in sorted(cfg.breakpoints, key=lambda b: b.max_length):
            if text_length <= bp.max_length:
                return max(min_size, min(bp.font_size, max_size))
        return min_size

    target_chars_per_line = container_width / (max_size * AVG_CHAR_WIDTH)
    if text_length <= target_chars_per_line:
        return max_size

    scale = target_chars_per_line / text_length
    calculated = math.floor(max_size * math.sqrt(scale))
    return max(min_size, min(calculated, max_size))


def wrap_text(text: str, max_chars_per_line: int) -> List[str]:
    """Greedy word wrap; a word longer than the limit keeps a line to itself."""
    lines: List[str] = []
    current = ""
    for word in (text or "").split(" "):
        if len(current) + len(word) + 1 <= max_chars_per_line:
            current = f"{current} {word}" if current else word
        else:
            if current:
                lines.append(current)
            current = word
    if current:
        lines.append(current)
    return lines


def estimate_text_width(text: str, font_size: float, font_weight: int = 400) -> float:
    ratio = 0.58 if font_weight >= 600 else 0.54
    return len(text) * font_size * ratio
