"""Display formatters available as template helpers."""
from __future__ import annotations

import math
import re
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, localcontext
from typing import Any, Optional

_LEADING_NUMBER = re.compile(r"^\s*[+-]?(\d+\.?\d*|\.\d+)([eE][+-]?\d+)?")
_DATE_FORMATS = (
    "%m/%d/%Y",
    "%m/%d/%y",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%Y/%m/%d",
)


def parse_number(value: Any) -> Optional[float]:
    """Lenient numeric parse: numbers pass through, strings use their leading number."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    if value is None:
        return None
    match = _LEADING_NUMBER.match(str(value))
    if not match:
        return None
    return float(match.group(0))


def format_plain_number(num: float) -> str:
    """Render a number without grouping; whole numbers drop the trailing .0."""
    if not math.isfinite(num):
        return "0"
    if num == int(num):
        return str(int(num))
    return repr(num)


def _group(num: float, max_decimals: int = 3) -> str:
    text = f"{num:,.{max_decimals}f}"
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text


def format_price(value: Any) -> str:
    num = parse_number(value)
    if num is None or not math.isfinite(num):
        return "$0"

    if num >= 1_000_000:
        with localcontext() as ctx:
            ctx.prec = 64
            millions = Decimal(str(num)) / Decimal(1_000_000)
            rounded = millions.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
        text = str(rounded)
        if text.endswith(".0"):
            text = text[:-2]
        return f"${text}M"

    if num >= 1_000:
        return f"${num:,.0f}"

    return f"${format_plain_number(num)}"


def format_number(value: Any) -> str:
    num = parse_number(value)
    if num is None or not math.isfinite(num):
        return "0"
    return _group(num)


def _parse_date(text: str) -> Optional[date]:
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def format_date(value: Any) -> str:
    """Format as e.g. "Mar 15, 2024".

    Unparseable input comes back unchanged: dates are often pre-formatted
    display strings, unlike prices which fall back to "$0". Numbers are
    parsed as their text, so a bare epoch timestamp is not a date.
    """
    if not value:
        return ""
    parsed: Optional[date] = None
    if isinstance(value, (datetime, date)):
        parsed = value
    else:
        parsed = _parse_date(str(value).strip())
    if parsed is None:
        return str(value)
    return f"{parsed:%b} {parsed.day}, {parsed.year}"


_WORD_START = re.compile(r"\b\w")


def capitalize(text: str) -> str:
    """Capitalize the first letter of every word."""
    return _WORD_START.sub(lambda m: m.group(0).upper(), text)


def truncate(text: str, max_length: int = 50) -> str:
    if len(text) <= max_length:
        return text
    return text[: max_length - 3] + "..."
