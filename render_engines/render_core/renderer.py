"""Template rendering entrypoint.

``render_with_satori`` never raises: every failure comes back as a
``RenderImageOutput`` with ``success=False`` and a message.
"""
from __future__ import annotations

import asyncio
import base64
import logging
import time
from typing import Any, Mapping, Optional, Union

from pydantic import ValidationError

from render_engines.fonts.catalog import DEFAULT_FONT
from render_engines.fonts.loader import FontLoader, get_font_loader
from render_engines.render_core.elements import build_element_tree, create_root_element
from render_engines.render_core.layout import SvgLayoutEngine, get_layout_engine
from render_engines.render_core.models import Canvas, RenderImageInput, RenderImageOutput, TemplateDefinition
from render_engines.render_core.raster import CairoSvgRasterEncoder, get_raster_encoder, normalize_output_format
from render_engines.variables.context import RenderContext

logger = logging.getLogger(__name__)

RENDER_ENGINE = "satori_sharp"
DEFAULT_CANVAS = Canvas(width=1080, height=1350, background_color="#000000")

RenderRequest = Union[RenderImageInput, Mapping[str, Any]]


def _elapsed_ms(started: float) -> int:
    return int((time.perf_counter() - started) * 1000)


def validation_message(exc: ValidationError) -> str:
    errors = exc.errors()
    if not errors:
        return "Invalid input"
    first = errors[0]
    location = [str(part) for part in first.get("loc", ())]
    detail = first.get("msg", "invalid value")
    if location and location[0] == "template":
        path = ".".join(location[1:])
        return f"Invalid template: {path + ': ' if path else ''}{detail}"
    return f"Invalid input: {'.'.join(location) + ': ' if location else ''}{detail}"


def merge_canvas(template: TemplateDefinition, request: RenderImageInput) -> Canvas:
    """Template values win over defaults; explicit request dimensions win over both."""
    provided = template.canvas.model_dump(exclude_unset=True, exclude_none=True)
    canvas = DEFAULT_CANVAS.model_copy(update=provided)
    if request.width:
        canvas = canvas.model_copy(update={"width": request.width})
    if request.height:
        canvas = canvas.model_copy(update={"height": request.height})
    return canvas


def resolve_font_family(template: TemplateDefinition, request: RenderImageInput) -> str:
    if request.brand_kit is not None and request.brand_kit.font_family:
        return request.brand_kit.font_family
    declared = template.variable_default("fontFamily")
    if isinstance(declared, str) and declared.strip():
        return declared.strip()
    return DEFAULT_FONT


class TemplateRenderer:
    def __init__(
        self,
        font_loader: Optional[FontLoader] = None,
        layout_engine: Optional[SvgLayoutEngine] = None,
        encoder: Optional[CairoSvgRasterEncoder] = None,
    ):
        self._font_loader = font_loader
        self.layout_engine = layout_engine or get_layout_engine()
        self.encoder = encoder or get_raster_encoder()

    @property
    def font_loader(self) -> FontLoader:
        return self._font_loader or get_font_loader()

    async def render(self, request: RenderRequest) -> RenderImageOutput:
        started = time.perf_counter()
        fmt = "png"
        try:
            if not isinstance(request, RenderImageInput):
                request = RenderImageInput.model_validate(request or {})
            fmt = normalize_output_format(request.output_format)

            template = request.template
            if template is None:
                return RenderImageOutput(success=False, format=fmt, render_time_ms=_elapsed_ms(started), error="Template is required")

            canvas = merge_canvas(template, request)
            family = resolve_font_family(template, request)
            fonts = await self.font_loader.load_fonts(family)

            context = RenderContext(
                variables=dict(request.variables or {}),
                brand_kit=request.brand_kit,
                listing_data=request.listing_data,
                agent_data=request.agent_data,
                life_here_data=request.life_here_data,
            )
            children = build_element_tree(template.layers, context, canvas.width, canvas.height)
            root = create_root_element(canvas, children, context, canvas.width, canvas.height)

            svg = await asyncio.to_thread(self.layout_engine.render, root, fonts, canvas.width, canvas.height)
            image = await asyncio.to_thread(
                self.encoder.encode, svg, fmt, request.quality, canvas.width, canvas.height
            )

            return RenderImageOutput(
                success=True,
                image_base64=base64.b64encode(image).decode("ascii"),
                width=canvas.width,
                height=canvas.height,
                format=fmt,
                render_time_ms=_elapsed_ms(started),
                render_engine=RENDER_ENGINE,
            )
        except ValidationError as exc:
            message = validation_message(exc)
            logger.warning("Render rejected: %s", message)
            return RenderImageOutput(success=False, format=fmt, render_time_ms=_elapsed_ms(started), error=message)
        except Exception as exc:
            logger.exception("Template render failed")
            return RenderImageOutput(
                success=False,
                format=fmt,
                render_time_ms=_elapsed_ms(started),
                error=str(exc) or "Render failed",
            )


_default_renderer: Optional[TemplateRenderer] = None


def get_template_renderer() -> TemplateRenderer:
    global _default_renderer
    if _default_renderer is None:
        _default_renderer = TemplateRenderer()
    return _default_renderer


async def render_with_satori(request: RenderRequest) -> RenderImageOutput:
    return await get_template_renderer().render(request)


render_template = render_with_satori
