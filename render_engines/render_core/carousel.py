"""Multi-slide carousel rendering on top of the single-template renderer."""
from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from pydantic import Field, ValidationError

from render_engines.render_core.models import BrandKit, RenderImageInput, TemplateDefinition
from render_engines.render_core.raster import normalize_output_format
from render_engines.render_core.renderer import TemplateRenderer, get_template_renderer, validation_message
from render_engines.variables.models import CamelModel

logger = logging.getLogger(__name__)

MAX_SLIDES = 10
DEFAULT_MAX_CONCURRENT = 4
MAX_CONCURRENT_LIMIT = 10
SLIDE_TIMEOUT_SECONDS = 15.0
DEFAULT_QUALITY = 90

TemplateFetcher = Callable[[Optional[str], Optional[str]], Awaitable[Optional[TemplateDefinition]]]


class ValidationIssue(CamelModel):
    field: str
    message: str
    code: str


class CarouselSlideInput(CamelModel):
    position: int = Field(..., ge=0)
    template: Optional[TemplateDefinition] = None
    template_id: Optional[str] = None
    template_slug: Optional[str] = None
    variables: Dict[str, Any] = Field(default_factory=dict)


class RenderCarouselInput(CamelModel):
    slides: List[CarouselSlideInput] = Field(default_factory=list)
    variables: Dict[str, Any] = Field(default_factory=dict, description="Shared by every slide")
    brand_kit: Optional[BrandKit] = None
    listing_data: Optional[Dict[str, Any]] = None
    agent_data: Optional[Dict[str, Any]] = None
    life_here_data: Optional[Dict[str, Any]] = None
    format: Optional[str] = None
    quality: Optional[int] = None
    parallel: bool = True
    max_concurrent: Optional[int] = None


class CarouselSlideOutput(CamelModel):
    position: int
    success: bool
    image_base64: Optional[str] = None
    width: Optional[int] = None
    height: Optional[int] = None
    render_time_ms: int = 0
    error: Optional[str] = None


class RenderCarouselOutput(CamelModel):
    success: bool
    slides: List[CarouselSlideOutput] = Field(default_factory=list)
    total_render_time_ms: int = 0
    slides_rendered: int = 0
    slides_failed: int = 0
    format: str = "png"
    error: Optional[str] = None
    validation_errors: List[ValidationIssue] = Field(default_factory=list)
    warnings: List[str] = Field(default_factory=list)


def validate_carousel_input(request: RenderCarouselInput) -> List[ValidationIssue]:
    issues: List[ValidationIssue] = []

    if not request.slides:
        issues.append(ValidationIssue(field="slides", message="At least one slide is required", code="REQUIRED"))
    elif len(request.slides) > MAX_SLIDES:
        issues.append(
            ValidationIssue(field="slides", message=f"Maximum {MAX_SLIDES} slides allowed", code="MAX_EXCEEDED")
        )
    else:
        for index, slide in enumerate(request.slides):
            if slide.template is None and not slide.template_id and not slide.template_slug:
                issues.append(
                    ValidationIssue(
                        field=f"slides[{index}]",
                        message="Slide must have templateId, templateSlug, or template",
                        code="REQUIRED",
                    )
                )

    if request.quality is not None and not 1 <= request.quality <= 100:
        issues.append(
            ValidationIssue(field="quality", message="Quality must be between 1 and 100", code="INVALID_RANGE")
        )
    if request.max_concurrent is not None and not 1 <= request.max_concurrent <= MAX_CONCURRENT_LIMIT:
        issues.append(
            ValidationIssue(
                field="maxConcurrent",
                message=f"maxConcurrent must be between 1 and {MAX_CONCURRENT_LIMIT}",
                code="INVALID_RANGE",
            )
        )
    return issues


class CarouselRenderer:
    def __init__(
        self,
        renderer: Optional[TemplateRenderer] = None,
        fetch_template: Optional[TemplateFetcher] = None,
        slide_timeout: float = SLIDE_TIMEOUT_SECONDS,
    ):
        self._renderer = renderer
        self.fetch_template = fetch_template
        self.slide_timeout = slide_timeout

    @property
    def renderer(self) -> TemplateRenderer:
        return self._renderer or get_template_renderer()

    async def _resolve_template(self, slide: CarouselSlideInput) -> Optional[TemplateDefinition]:
        if slide.template is not None:
            return slide.template
        if self.fetch_template is None or not (slide.template_id or slide.template_slug):
            return None
        return await self.fetch_template(slide.template_id, slide.template_slug)

    async def render_slide(
        self, slide: CarouselSlideInput, request: RenderCarouselInput, fmt: str, quality: int
    ) -> CarouselSlideOutput:
        started = time.perf_counter()

        def _failed(message: str) -> CarouselSlideOutput:
            logger.warning("Carousel slide %s failed: %s", slide.position, message)
            return CarouselSlideOutput(
                position=slide.position,
                success=False,
                render_time_ms=int((time.perf_counter() - started) * 1000),
                error=message,
            )

        try:
            template = await self._resolve_template(slide)
        except Exception as exc:
            return _failed(str(exc) or "Template lookup failed")
        if template is None:
            return _failed("Template not found")

        variables = {**request.variables, **slide.variables}
        variables["slidePosition"] = slide.position
        variables["slideNumber"] = slide.position + 1

        render_input = RenderImageInput(
            template=template,
            variables=variables,
            brand_kit=request.brand_kit,
            output_format=fmt,
            quality=quality,
            listing_data=request.listing_data,
            agent_data=request.agent_data,
            life_here_data=request.life_here_data,
        )
        try:
            result = await asyncio.wait_for(self.renderer.render(render_input), timeout=self.slide_timeout)
        except asyncio.TimeoutError:
            return _failed(f"Slide {slide.position} render timed out after {int(self.slide_timeout * 1000)}ms")

        if not result.success:
            return _failed(result.error or "Render failed")
        return CarouselSlideOutput(
            position=slide.position,
            success=True,
            image_base64=result.image_base64,
            width=result.width,
            height=result.height,
            render_time_ms=int((time.perf_counter() - started) * 1000),
        )

    async def render(self, request: Union[RenderCarouselInput, Mapping[str, Any]]) -> RenderCarouselOutput:
        started = time.perf_counter()
        try:
            if not isinstance(request, RenderCarouselInput):
                request = RenderCarouselInput.model_validate(request or {})
        except ValidationError as exc:
            return RenderCarouselOutput(success=False, error=validation_message(exc))

        fmt = normalize_output_format(request.format)
        issues = validate_carousel_input(request)
        if issues:
            return RenderCarouselOutput(
                success=False,
                format=fmt,
                error=issues[0].message,
                validation_errors=issues,
                total_render_time_ms=int((time.perf_counter() - started) * 1000),
            )

        quality = request.quality or DEFAULT_QUALITY
        if request.parallel:
            semaphore = asyncio.Semaphore(request.max_concurrent or DEFAULT_MAX_CONCURRENT)

            async def _limited(slide: CarouselSlideInput) -> CarouselSlideOutput:
                async with semaphore:
                    return await self.render_slide(slide, request, fmt, quality)

            results = list(await asyncio.gather(*(_limited(slide) for slide in request.slides)))
        else:
            results = []
            for slide in request.slides:
                results.append(await self.render_slide(slide, request, fmt, quality))

        results.sort(key=lambda result: result.position)
        failed = sum(1 for result in results if not result.success)
        return RenderCarouselOutput(
            success=failed == 0,
            slides=results,
            total_render_time_ms=int((time.perf_counter() - started) * 1000),
            slides_rendered=len(results) - failed,
            slides_failed=failed,
            format=fmt,
            warnings=[f"{failed} slide(s) failed to render"] if failed else [],
        )


_default_carousel: Optional[CarouselRenderer] = None


def get_carousel_renderer() -> CarouselRenderer:
    global _default_carousel
    if _default_carousel is None:
        _default_carousel = CarouselRenderer()
    return _default_carousel


async def render_carousel(request: Union[RenderCarouselInput, Mapping[str, Any]]) -> RenderCarouselOutput:
    return await get_carousel_renderer().render(request)
