"""Layer -> element tree conversion.

The element tree is what the layout engine consumes: ``div`` and ``img`` nodes
carrying CSS-like camelCase style dicts, the same shape a flexbox-to-SVG
engine expects. Every binding (text, colors, urls) is resolved here, so the
layout engine only ever sees concrete values.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence

from render_engines.fonts.catalog import DEFAULT_FONT
from render_engines.render_core.models import (
    Canvas,
    ContainerLayer,
    GradientLayer,
    ImageFilter,
    ImageLayer,
    LayerBase,
    Position,
    ShapeLayer,
    TextLayer,
)
from render_engines.security.safe_lookup import get_own, is_missing
from render_engines.security.text_sanitizer import sanitize_text
from render_engines.security.url_policy import is_valid_image_url
from render_engines.variables.colors import resolve_color
from render_engines.variables.context import RenderContext
from render_engines.variables.formatters import capitalize, format_plain_number
from render_engines.variables.resolver import resolve_variables, stringify
from render_engines.variables.text_metrics import calculate_auto_size

logger = logging.getLogger(__name__)

DEFAULT_LINE_HEIGHT = 1.3

_JUSTIFY = {
    "start": "flex-start",
    "end": "flex-end",
    "center": "center",
    "space-between": "space-between",
}

_ALIGN = {
    "start": "flex-start",
    "end": "flex-end",
    "center": "center",
    "stretch": "stretch",
}

_FONT_WEIGHT_NAMES = {"normal": 400, "bold": 700}


@dataclass
class Element:
    type: str
    style: Dict[str, Any] = field(default_factory=dict)
    children: List["Element"] = field(default_factory=list)
    text: Optional[str] = None
    src: Optional[str] = None
    layer_id: Optional[str] = None


def _number(value: float) -> str:
    return format_plain_number(float(value))


def _variable(context: RenderContext, name: Optional[str]) -> Any:
    if not name:
        return None
    value = get_own(context.variables or {}, name)
    return None if is_missing(value) else value


def map_justify(value: Optional[str]) -> str:
    return _JUSTIFY.get(value or "", "flex-start")


def map_align(value: Optional[str]) -> str:
    return _ALIGN.get(value or "", "flex-start")


def _split_anchor(anchor: str) -> tuple:
    """'top-left' -> ('top', 'left'); 'center' -> ('center', 'center')."""
    if anchor == "center":
        return "center", "center"
    vertical, _, horizontal = anchor.partition("-")
    return vertical, horizontal or "left"


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _finite(value: Any) -> bool:
    return _is_number(value) and math.isfinite(value)


def build_position_styles(position: Position) -> Dict[str, Any]:
    styles: Dict[str, Any] = {}

    if position.type in (None, "", "absolute"):
        styles["position"] = "absolute"
        vertical, horizontal = _split_anchor(position.anchor or "top-left")
        shift_x = shift_y = False

        if position.x not in (None, ""):
            if horizontal == "right":
                styles["right"] = position.x
            else:
                styles["left"] = position.x
                shift_x = horizontal == "center"

        if position.y not in (None, ""):
            if vertical == "bottom":
                styles["bottom"] = position.y
            else:
                styles["top"] = position.y
                shift_y = vertical == "center"

        if shift_x and shift_y:
            styles["transform"] = "translate(-50%, -50%)"
        elif shift_x:
            styles["transform"] = "translateX(-50%)"
        elif shift_y:
            styles["transform"] = "translateY(-50%)"
    else:
        styles["position"] = "relative"

    if position.width:
        styles["width"] = position.width
    if position.height:
        styles["height"] = position.height
    return styles


def build_filter_string(image_filter: Optional[ImageFilter]) -> str:
    if image_filter is None:
        return "none"
    parts = []
    if _finite(image_filter.brightness):
        parts.append(f"brightness({_number(image_filter.brightness)})")
    if _finite(image_filter.contrast):
        parts.append(f"contrast({_number(image_filter.contrast)})")
    if _finite(image_filter.blur):
        parts.append(f"blur({_number(image_filter.blur)}px)")
    if _finite(image_filter.grayscale):
        parts.append(f"grayscale({_number(image_filter.grayscale)})")
    return " ".join(parts) if parts else "none"


def _font_weight(weight: Any) -> int:
    if _is_number(weight):
        return int(weight)
    text = str(weight or "400").strip().lower()
    if text in _FONT_WEIGHT_NAMES:
        return _FONT_WEIGHT_NAMES[text]
    try:
        return int(text)
    except ValueError:
        return 400


def _apply_text_transform(text: str, transform: Optional[str]) -> str:
    if transform == "uppercase":
        return text.upper()
    if transform == "lowercase":
        return text.lower()
    if transform == "capitalize":
        return capitalize(text)
    return text


def build_text_element(layer: TextLayer, context: RenderContext, canvas_width: float) -> Element:
    content = layer.content
    font = content.font

    text = content.text or ""
    bound = _variable(context, content.variable)
    if bound is not None:
        text = stringify(bound)
    text = resolve_variables(text, context)
    # literal template text is as untrusted as variable data
    text = sanitize_text(text)
    text = _apply_text_transform(text, content.text_transform)

    if font.family_variable:
        brand = context.brand_kit_values() or {}
        family = stringify(_variable(context, font.family_variable)) or brand.get("fontFamily") or DEFAULT_FONT
    else:
        family = font.family or DEFAULT_FONT

    font_size = font.size
    if content.auto_size is not None and content.auto_size.enabled:
        font_size = calculate_auto_size(text, content.auto_size, canvas_width)

    if font.color_variable:
        color = resolve_color(_variable(context, font.color_variable), context)
    else:
        color = resolve_color(font.color, context)

    style = build_position_styles(layer.position)
    style.update(
        {
            "fontFamily": family,
            "fontSize": font_size,
            "fontWeight": _font_weight(font.weight),
            "fontStyle": font.style or "normal",
            "color": color,
            "textAlign": font.align or "left",
            "lineHeight": font.line_height or DEFAULT_LINE_HEIGHT,
            "letterSpacing": font.letter_spacing or 0,
            "opacity": layer.opacity,
        }
    )
    if content.line_clamp:
        style.update(
            {
                "overflow": "hidden",
                "display": "-webkit-box",
                "WebkitLineClamp": content.line_clamp,
                "WebkitBoxOrient": "vertical",
            }
        )
    return Element(type="div", style=style, text=text, layer_id=layer.id)


def build_image_element(layer: ImageLayer, context: RenderContext) -> Optional[Element]:
    content = layer.content

    url = content.url or ""
    bound = _variable(context, content.variable)
    if bound:
        url = stringify(bound)

    brand = context.brand_kit_values() or {}
    if content.variable in ("logoUrl", "headshotUrl") and brand.get(content.variable):
        url = brand[content.variable]

    url = resolve_variables(url, context).strip()
    if not url:
        return None
    if not is_valid_image_url(url):
        logger.warning("Blocked invalid image URL: %s", url[:100])
        return None

    style = build_position_styles(layer.position)
    style.update(
        {
            "objectFit": content.fit or "cover",
            "objectPosition": content.position or "center",
            "borderRadius": content.border_radius or 0,
            "opacity": layer.opacity,
        }
    )
    if content.filter is not None:
        style["filter"] = build_filter_string(content.filter)
    return Element(type="img", style=style, src=url, layer_id=layer.id)


def build_shape_element(layer: ShapeLayer, context: RenderContext) -> Element:
    content = layer.content

    if content.fill_variable:
        fill = resolve_color(_variable(context, content.fill_variable), context)
    elif content.fill:
        fill = resolve_color(content.fill, context)
    else:
        fill = "transparent"

    style = build_position_styles(layer.position)
    style["backgroundColor"] = fill
    style["opacity"] = layer.opacity
    if content.border_radius:
        style["borderRadius"] = content.border_radius
    if content.shape == "ellipse":
        style["borderRadius"] = "50%"
    if content.stroke is not None and _finite(content.stroke.width):
        stroke_color = resolve_color(content.stroke.color, context)
        style["border"] = f"{_number(content.stroke.width)}px solid {stroke_color}"
    return Element(type="div", style=style, layer_id=layer.id)


def build_gradient_element(layer: GradientLayer, context: RenderContext) -> Element:
    content = layer.content
    stops = ", ".join(f"{stop.color} {_number(stop.position * 100)}%" for stop in content.stops)

    if content.type == "radial":
        background = f"radial-gradient({stops})"
    else:
        angle = content.angle if _finite(content.angle) else 180
        background = f"linear-gradient({_number(angle)}deg, {stops})"

    style = build_position_styles(layer.position)
    style["backgroundImage"] = background
    style["opacity"] = layer.opacity
    return Element(type="div", style=style, layer_id=layer.id)


def build_container_element(
    layer: ContainerLayer, context: RenderContext, canvas_width: float, canvas_height: float
) -> Element:
    content = layer.content
    children = build_element_tree(content.children, context, canvas_width, canvas_height)

    style = build_position_styles(layer.position)
    style.update(
        {
            "display": "flex",
            "flexDirection": content.direction or "column",
            "justifyContent": map_justify(content.justify),
            "alignItems": map_align(content.align),
            "gap": content.gap or 0,
            "opacity": layer.opacity,
        }
    )
    padding = content.padding
    if padding:
        if _is_number(padding):
            style["padding"] = padding
        else:
            style["paddingTop"] = padding.top or 0
            style["paddingRight"] = padding.right or 0
            style["paddingBottom"] = padding.bottom or 0
            style["paddingLeft"] = padding.left or 0
    return Element(type="div", style=style, children=children, layer_id=layer.id)


def build_layer_element(
    layer: LayerBase, context: RenderContext, canvas_width: float, canvas_height: float
) -> Optional[Element]:
    if isinstance(layer, TextLayer):
        return build_text_element(layer, context, canvas_width)
    if isinstance(layer, ImageLayer):
        return build_image_element(layer, context)
    if isinstance(layer, ShapeLayer):
        return build_shape_element(layer, context)
    if isinstance(layer, GradientLayer):
        return build_gradient_element(layer, context)
    if isinstance(layer, ContainerLayer):
        return build_container_element(layer, context, canvas_width, canvas_height)
    return None


def build_element_tree(
    layers: Sequence[LayerBase], context: RenderContext, canvas_width: float, canvas_height: float
) -> List[Element]:
    """Visible layers in ascending zIndex order; sort is stable for ties."""
    visible = [layer for layer in layers if layer.visible is not False]
    ordered = sorted(visible, key=lambda layer: layer.z_order)
    elements = []
    for layer in ordered:
        element = build_layer_element(layer, context, canvas_width, canvas_height)
        if element is not None:
            elements.append(element)
    return elements


def build_background_image(canvas: Canvas, width: float, height: float) -> Optional[Element]:
    url = (canvas.background_image or "").strip()
    if not url:
        return None
    if not is_valid_image_url(url):
        logger.warning("Blocked invalid background image URL: %s", url[:100])
        return None
    style = {
        "position": "absolute",
        "left": 0,
        "top": 0,
        "width": width,
        "height": height,
        "objectFit": "cover",
        "objectPosition": "center",
    }
    return Element(type="img", style=style, src=url)


def create_root_element(
    canvas: Canvas, children: List[Element], context: RenderContext, width: float, height: float
) -> Element:
    background = resolve_color(canvas.background_color, context)
    nodes = list(children)
    background_image = build_background_image(canvas, width, height)
    if background_image is not None:
        nodes.insert(0, background_image)
    style = {
        "display": "flex",
        "width": "100%",
        "height": "100%",
        "backgroundColor": background,
        "position": "relative",
    }
    return Element(type="div", style=style, children=nodes)
