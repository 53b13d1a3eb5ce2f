"""Element tree -> SVG.

A deliberately small flexbox subset: absolutely positioned boxes
(left/right/top/bottom plus -50% translates) and single-line flex flow
(direction, gap, padding, justify, align). Text is wrapped with real glyph
advances when the loaded font binary can be parsed by FreeType.
"""
from __future__ import annotations

import html
import io
import logging
import math
import re
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Sequence, Tuple

from PIL import ImageFont

from render_engines.fonts.models import LoadedFont
from render_engines.render_core.elements import Element
from render_engines.variables.formatters import format_plain_number
from render_engines.variables.text_metrics import estimate_text_width

logger = logging.getLogger(__name__)

ELLIPSIS = "…"
ASCENT_RATIO = 0.8

_GRADIENT_PATTERN = re.compile(r"^(linear|radial)-gradient\((.*)\)$", re.DOTALL)
_TRANSPARENT = {"", "none", "transparent"}

_ASPECT_X = {"left": "xMin", "right": "xMax"}
_ASPECT_Y = {"top": "YMin", "bottom": "YMax"}


@dataclass
class Box:
    x: float
    y: float
    width: float
    height: float


def _fmt(value: float) -> str:
    return format_plain_number(round(float(value), 3))


def _attr(value: Any) -> str:
    return html.escape(str(value), quote=True)


def parse_length(value: Any, reference: float) -> Optional[float]:
    """Numbers are px; strings may be "12px", "50%" or a bare number."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return float(value)
    text = str(value).strip().lower()
    try:
        if text.endswith("%"):
            return reference * float(text[:-1]) / 100
        if text.endswith("px"):
            return float(text[:-2])
        return float(text)
    except ValueError:
        return None


def split_top_level(value: str) -> List[str]:
    """Split on commas that are not inside parentheses (rgba(...) stays whole)."""
    parts: List[str] = []
    depth = 0
    current = []
    for char in value:
        if char == "(":
            depth += 1
        elif char == ")":
            depth = max(depth - 1, 0)
        if char == "," and depth == 0:
            parts.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    tail = "".join(current).strip()
    if tail:
        parts.append(tail)
    return parts


def parse_gradient(value: str) -> Optional[Tuple[str, float, List[Tuple[str, float]]]]:
    """'linear-gradient(180deg, #000 0%, rgba(0,0,0,.5) 100%)' -> (kind, angle, stops)."""
    match = _GRADIENT_PATTERN.match((value or "").strip())
    if not match:
        return None
    kind = match.group(1)
    args = split_top_level(match.group(2))
    angle = 180.0
    if args and args[0].endswith("deg"):
        try:
            angle = float(args[0][:-3])
        except ValueError:
            pass
        args = args[1:]

    stops: List[Tuple[str, float]] = []
    for index, arg in enumerate(args):
        color, _, offset = arg.rpartition(" ")
        if color and offset.endswith("%"):
            try:
                stops.append((color.strip(), float(offset[:-1]) / 100))
                continue
            except ValueError:
                pass
        fallback = index / (len(args) - 1) if len(args) > 1 else 0.0
        stops.append((arg, fallback))
    return kind, angle, stops


class TextMeasurer:
    """Glyph-advance measurement over the fonts loaded for one render."""

    def __init__(self, fonts: Sequence[LoadedFont] = (), cache_limit: int = 64):
        self._fonts: Dict[Tuple[str, int], bytes] = {}
        for font in fonts:
            self._fonts[(font.name.lower(), font.weight)] = font.data
        self._fallback = list(fonts)
        self._faces: OrderedDict[Tuple[str, int, int], Optional[ImageFont.FreeTypeFont]] = OrderedDict()
        self._cache_limit = cache_limit

    def _font_data(self, family: str, weight: int) -> Optional[bytes]:
        target = 700 if weight >= 600 else 400
        data = self._fonts.get((family.lower(), target))
        if data is not None:
            return data
        for font in self._fallback:
            if font.weight == target:
                return font.data
        return self._fallback[0].data if self._fallback else None

    def _face(self, family: str, size: float, weight: int) -> Optional[ImageFont.FreeTypeFont]:
        key = (family.lower(), int(weight), max(int(round(size)), 1))
        if key in self._faces:
            self._faces.move_to_end(key)
            return self._faces[key]

        face = None
        data = self._font_data(family, weight)
        if data:
            try:
                face = ImageFont.truetype(io.BytesIO(data), size=key[2])
            except OSError:
                logger.debug("Font %s is not parseable, estimating widths", family)
        self._faces[key] = face
        if len(self._faces) > self._cache_limit:
            self._faces.popitem(last=False)
        return face

    def measure(self, text: str, family: str, size: float, weight: int = 400, letter_spacing: float = 0) -> float:
        if not text:
            return 0.0
        face = self._face(family, size, weight)
        if face is None:
            width = estimate_text_width(text, size, weight)
        else:
            width = face.getlength(text)
        return width + max(len(text) - 1, 0) * letter_spacing

    def wrap(
        self,
        text: str,
        max_width: Optional[float],
        family: str,
        size: float,
        weight: int = 400,
        letter_spacing: float = 0,
    ) -> List[str]:
        lines: List[str] = []
        for raw_line in (text or "").split("\n"):
            if max_width is None:
                lines.append(raw_line)
                continue
            current: List[str] = []
            for word in raw_line.split(" "):
                candidate = " ".join(current + [word])
                if not current or self.measure(candidate, family, size, weight, letter_spacing) <= max_width:
                    current.append(word)
                else:
                    lines.append(" ".join(current))
                    current = [word]
            lines.append(" ".join(current))
        return lines or [""]

    def clamp(self, lines: List[str], max_lines: int, max_width: float, family: str, size: float, weight: int, letter_spacing: float) -> List[str]:
        if len(lines) <= max_lines:
            return lines
        kept = lines[:max_lines]
        last = kept[-1]
        while last and self.measure(last + ELLIPSIS, family, size, weight, letter_spacing) > max_width:
            last = last[:-1].rstrip()
        kept[-1] = last + ELLIPSIS
        return kept


class _TextStyle:
    def __init__(self, style: Dict[str, Any]):
        self.family = str(style.get("fontFamily") or "sans-serif")
        self.size = float(style.get("fontSize") or 16)
        self.weight = int(style.get("fontWeight") or 400)
        self.italic = style.get("fontStyle") == "italic"
        self.color = style.get("color") or "#000000"
        self.align = style.get("textAlign") or "left"
        self.line_height = float(style.get("lineHeight") or 1.3) * self.size
        self.letter_spacing = float(style.get("letterSpacing") or 0)
        self.clamp = style.get("WebkitLineClamp")


class _RenderPass:
    """Per-render state: the defs section and the id counter."""

    def __init__(self, measurer: TextMeasurer):
        self.measurer = measurer
        self.defs: List[str] = []
        self._next_id = 0

    def new_id(self, prefix: str) -> str:
        self._next_id += 1
        return f"{prefix}{self._next_id}"

    # sizing

    def _text_lines(self, element: Element, width: Optional[float]) -> List[str]:
        ts = _TextStyle(element.style)
        lines = self.measurer.wrap(element.text or "", width, ts.family, ts.size, ts.weight, ts.letter_spacing)
        if ts.clamp and width is not None:
            lines = self.measurer.clamp(lines, int(ts.clamp), width, ts.family, ts.size, ts.weight, ts.letter_spacing)
        return lines

    def intrinsic_size(self, element: Element, avail_width: float, avail_height: float) -> Tuple[float, float]:
        style = element.style
        width = parse_length(style.get("width"), avail_width)
        height = parse_length(style.get("height"), avail_height)

        if element.text is not None and element.type == "div":
            ts = _TextStyle(style)
            lines = self._text_lines(element, width if width is not None else avail_width)
            if width is None:
                width = max(
                    self.measurer.measure(line, ts.family, ts.size, ts.weight, ts.letter_spacing) for line in lines
                )
            if height is None:
                height = len(lines) * ts.line_height
            return width, height

        if element.children and (width is None or height is None):
            content_w, content_h = self._flow_content_size(element, width or avail_width, height or avail_height)
            width = content_w if width is None else width
            height = content_h if height is None else height

        return width or 0.0, height or 0.0

    def _padding(self, style: Dict[str, Any], box_width: float) -> Tuple[float, float, float, float]:
        base = parse_length(style.get("padding"), box_width) or 0.0
        return (
            parse_length(style.get("paddingTop"), box_width) or base,
            parse_length(style.get("paddingRight"), box_width) or base,
            parse_length(style.get("paddingBottom"), box_width) or base,
            parse_length(style.get("paddingLeft"), box_width) or base,
        )

    def _flow_children(self, element: Element) -> List[Element]:
        return [child for child in element.children if child.style.get("position") != "absolute"]

    def _flow_content_size(self, element: Element, avail_width: float, avail_height: float) -> Tuple[float, float]:
        top, right, bottom, left = self._padding(element.style, avail_width)
        inner_w = max(avail_width - left - right, 0)
        inner_h = max(avail_height - top - bottom, 0)
        children = self._flow_children(element)
        gap = parse_length(element.style.get("gap"), 0) or 0.0
        sizes = [self.intrinsic_size(child, inner_w, inner_h) for child in children]
        gaps = gap * max(len(sizes) - 1, 0)
        if element.style.get("flexDirection", "row") == "column":
            width = max((w for w, _ in sizes), default=0.0)
            height = sum(h for _, h in sizes) + gaps
        else:
            width = sum(w for w, _ in sizes) + gaps
            height = max((h for _, h in sizes), default=0.0)
        return width + left + right, height + top + bottom

    # placement

    def place_absolute(self, element: Element, parent: Box) -> Box:
        style = element.style
        left = parse_length(style.get("left"), parent.width)
        right = parse_length(style.get("right"), parent.width)
        top = parse_length(style.get("top"), parent.height)
        bottom = parse_length(style.get("bottom"), parent.height)

        avail = parent.width - (left or 0) - (right or 0)
        width, height = self.intrinsic_size(element, max(avail, 0), parent.height)

        if left is not None:
            x = parent.x + left
        elif right is not None:
            x = parent.x + parent.width - right - width
        else:
            x = parent.x
        if top is not None:
            y = parent.y + top
        elif bottom is not None:
            y = parent.y + parent.height - bottom - height
        else:
            y = parent.y

        transform = style.get("transform") or ""
        if transform in ("translate(-50%, -50%)", "translateX(-50%)"):
            x -= width / 2
        if transform in ("translate(-50%, -50%)", "translateY(-50%)"):
            y -= height / 2
        return Box(x, y, width, height)

    def place_flow(self, element: Element, box: Box) -> List[Tuple[Element, Box]]:
        style = element.style
        children = self._flow_children(element)
        if not children:
            return []

        top, right, bottom, left = self._padding(style, box.width)
        inner = Box(box.x + left, box.y + top, max(box.width - left - right, 0), max(box.height - top - bottom, 0))
        column = style.get("flexDirection", "row") == "column"
        gap = parse_length(style.get("gap"), 0) or 0.0
        justify = style.get("justifyContent") or "flex-start"
        align = style.get("alignItems") or "stretch"

        sizes = []
        for child in children:
            w, h = self.intrinsic_size(child, inner.width, inner.height)
            if align == "stretch":
                if column and child.style.get("width") is None:
                    w = inner.width
                if not column and child.style.get("height") is None:
                    h = inner.height
            sizes.append((w, h))

        main_total = sum(h if column else w for w, h in sizes) + gap * (len(sizes) - 1)
        free = (inner.height if column else inner.width) - main_total
        offset, spacing = 0.0, gap
        if justify == "center":
            offset = free / 2
        elif justify == "flex-end":
            offset = free
        elif justify == "space-between" and len(sizes) > 1:
            spacing = gap + max(free, 0) / (len(sizes) - 1)

        placed = []
        cursor = offset
        cross_extent = inner.width if column else inner.height
        for child, (w, h) in zip(children, sizes):
            cross_size = w if column else h
            cross = 0.0
            if align == "center":
                cross = (cross_extent - cross_size) / 2
            elif align == "flex-end":
                cross = cross_extent - cross_size
            if column:
                child_box = Box(inner.x + cross, inner.y + cursor, w, h)
                cursor += h + spacing
            else:
                child_box = Box(inner.x + cursor, inner.y + cross, w, h)
                cursor += w + spacing
            placed.append((child, child_box))
        return placed

    # drawing

    def draw(self, element: Element, box: Box) -> List[str]:
        style = element.style
        body: List[str] = []
        body.extend(self._draw_background(style, box))
        if element.type == "img" and element.src:
            body.extend(self._draw_image(element, box))
        elif element.text is not None:
            body.extend(self._draw_text(element, box))

        for child, child_box in self.place_flow(element, box):
            body.extend(self.draw(child, child_box))
        for child in element.children:
            if child.style.get("position") == "absolute":
                body.extend(self.draw(child, self.place_absolute(child, box)))

        opacity = style.get("opacity")
        if opacity is not None and float(opacity) < 1 and body:
            return [f'<g opacity="{_fmt(opacity)}">', *body, "</g>"]
        return body

    def _radius(self, style: Dict[str, Any], box: Box) -> Tuple[bool, float]:
        raw = style.get("borderRadius")
        if isinstance(raw, str) and raw.strip() == "50%":
            return True, 0.0
        return False, parse_length(raw, min(box.width, box.height)) or 0.0

    def _shape(self, box: Box, ellipse: bool, radius: float, attrs: str) -> str:
        if ellipse:
            return (
                f'<ellipse cx="{_fmt(box.x + box.width / 2)}" cy="{_fmt(box.y + box.height / 2)}" '
                f'rx="{_fmt(box.width / 2)}" ry="{_fmt(box.height / 2)}" {attrs} />'
            )
        rounded = f' rx="{_fmt(radius)}"' if radius else ""
        return (
            f'<rect x="{_fmt(box.x)}" y="{_fmt(box.y)}" width="{_fmt(box.width)}" '
            f'height="{_fmt(box.height)}"{rounded} {attrs} />'
        )

    def _draw_background(self, style: Dict[str, Any], box: Box) -> List[str]:
        if box.width <= 0 or box.height <= 0:
            return []
        lines: List[str] = []
        ellipse, radius = self._radius(style, box)

        fill = str(style.get("backgroundColor") or "").strip()
        if fill.lower() not in _TRANSPARENT:
            lines.append(self._shape(box, ellipse, radius, f'fill="{_attr(fill)}"'))

        gradient = parse_gradient(style.get("backgroundImage") or "")
        if gradient is not None:
            gradient_id = self._add_gradient(*gradient)
            lines.append(self._shape(box, ellipse, radius, f'fill="url(#{gradient_id})"'))

        border = style.get("border")
        if border:
            width, _, rest = str(border).partition(" ")
            stroke_width = parse_length(width, 0) or 0.0
            color = rest.replace("solid", "", 1).strip()
            if stroke_width > 0 and color:
                half = stroke_width / 2
                inset = Box(box.x + half, box.y + half, box.width - stroke_width, box.height - stroke_width)
                attrs = f'fill="none" stroke="{_attr(color)}" stroke-width="{_fmt(stroke_width)}"'
                lines.append(self._shape(inset, ellipse, max(radius - half, 0), attrs))
        return lines

    def _add_gradient(self, kind: str, angle: float, stops: List[Tuple[str, float]]) -> str:
        gradient_id = self.new_id("gradient")
        stop_tags = [
            f'<stop offset="{_fmt(max(0.0, min(offset, 1.0)))}" stop-color="{_attr(color)}" />'
            for color, offset in stops
        ]
        if kind == "radial":
            self.defs.append(f'<radialGradient id="{gradient_id}" cx="0.5" cy="0.5" r="0.5">')
            self.defs.extend(stop_tags)
            self.defs.append("</radialGradient>")
            return gradient_id

        # 0deg points up and angles run clockwise
        rad = math.radians(angle)
        dx, dy = math.sin(rad) / 2, -math.cos(rad) / 2
        self.defs.append(
            f'<linearGradient id="{gradient_id}" x1="{_fmt(0.5 - dx)}" y1="{_fmt(0.5 - dy)}" '
            f'x2="{_fmt(0.5 + dx)}" y2="{_fmt(0.5 + dy)}">'
        )
        self.defs.extend(stop_tags)
        self.defs.append("</linearGradient>")
        return gradient_id

    def _draw_text(self, element: Element, box: Box) -> List[str]:
        text = element.text or ""
        if not text.strip():
            return []
        ts = _TextStyle(element.style)
        lines = self._text_lines(element, box.width)

        if ts.align == "center":
            anchor, x = "middle", box.x + box.width / 2
        elif ts.align == "right":
            anchor, x = "end", box.x + box.width
        else:
            anchor, x = "start", box.x

        attrs = [
            f'font-family="{_attr(ts.family)}"',
            f'font-size="{_fmt(ts.size)}"',
            f'font-weight="{ts.weight}"',
            f'fill="{_attr(ts.color)}"',
            f'text-anchor="{anchor}"',
        ]
        if ts.italic:
            attrs.append('font-style="italic"')
        if ts.letter_spacing:
            attrs.append(f'letter-spacing="{_fmt(ts.letter_spacing)}"')

        half_leading = (ts.line_height - ts.size) / 2
        out = [f'<text {" ".join(attrs)}>']
        for index, line in enumerate(lines):
            baseline = box.y + index * ts.line_height + half_leading + ts.size * ASCENT_RATIO
            out.append(f'<tspan x="{_fmt(x)}" y="{_fmt(baseline)}">{html.escape(line)}</tspan>')
        out.append("</text>")
        return out

    def _aspect_ratio(self, style: Dict[str, Any]) -> str:
        fit = style.get("objectFit") or "cover"
        if fit == "fill":
            return "none"
        words = str(style.get("objectPosition") or "center").split()
        align_x = next((_ASPECT_X[w] for w in words if w in _ASPECT_X), "xMid")
        align_y = next((_ASPECT_Y[w] for w in words if w in _ASPECT_Y), "YMid")
        return f"{align_x}{align_y} {'meet' if fit == 'contain' else 'slice'}"

    def _add_filter(self, value: str) -> Optional[str]:
        primitives = []
        for name, arg in re.findall(r"(\w+)\(([^)]*)\)", value or ""):
            amount = parse_length(arg, 0)
            if amount is None:
                continue
            if name == "brightness":
                primitives.append(
                    "<feComponentTransfer>"
                    + "".join(f'<feFunc{c} type="linear" slope="{_fmt(amount)}" />' for c in "RGB")
                    + "</feComponentTransfer>"
                )
            elif name == "contrast":
                intercept = _fmt(0.5 - 0.5 * amount)
                primitives.append(
                    "<feComponentTransfer>"
                    + "".join(
                        f'<feFunc{c} type="linear" slope="{_fmt(amount)}" intercept="{intercept}" />' for c in "RGB"
                    )
                    + "</feComponentTransfer>"
                )
            elif name == "blur":
                primitives.append(f'<feGaussianBlur stdDeviation="{_fmt(amount)}" />')
            elif name == "grayscale":
                saturation = _fmt(max(0.0, 1 - min(amount, 1.0)))
                primitives.append(f'<feColorMatrix type="saturate" values="{saturation}" />')
        if not primitives:
            return None
        filter_id = self.new_id("filter")
        self.defs.append(f'<filter id="{filter_id}">{"".join(primitives)}</filter>')
        return filter_id

    def _draw_image(self, element: Element, box: Box) -> List[str]:
        if box.width <= 0 or box.height <= 0:
            return []
        style = element.style
        attrs = [
            f'x="{_fmt(box.x)}"',
            f'y="{_fmt(box.y)}"',
            f'width="{_fmt(box.width)}"',
            f'height="{_fmt(box.height)}"',
            f'preserveAspectRatio="{self._aspect_ratio(style)}"',
            f'xlink:href="{_attr(element.src)}"',
        ]
        filter_id = self._add_filter(style.get("filter") or "")
        if filter_id:
            attrs.append(f'filter="url(#{filter_id})"')

        ellipse, radius = self._radius(style, box)
        if ellipse or radius:
            clip_id = self.new_id("clip")
            self.defs.append(f'<clipPath id="{clip_id}">{self._shape(box, ellipse, radius, "")}</clipPath>')
            attrs.append(f'clip-path="url(#{clip_id})"')
        return [f'<image {" ".join(attrs)} />']


class SvgLayoutEngine:
    """Lays out an element tree and serialises it as one SVG document."""

    def render(self, root: Element, fonts: Sequence[LoadedFont], width: int, height: int) -> str:
        render_pass = _RenderPass(TextMeasurer(fonts))
        body = render_pass.draw(root, Box(0.0, 0.0, float(width), float(height)))

        lines = [
            f'<svg width="{width}" height="{height}" viewBox="0 0 {width} {height}" '
            'xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink">'
        ]
        if render_pass.defs:
            lines.append("<defs>")
            lines.extend(render_pass.defs)
            lines.append("</defs>")
        lines.extend(body)
        lines.append("</svg>")
        return "\n".join(lines)


_default_engine: Optional[SvgLayoutEngine] = None


def get_layout_engine() -> SvgLayoutEngine:
    global _default_engine
    if _default_engine is None:
        _default_engine = SvgLayoutEngine()
    return _default_engine
