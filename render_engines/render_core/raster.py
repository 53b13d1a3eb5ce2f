from __future__ import annotations

import io
import logging
from typing import Optional

from PIL import Image

from render_engines.render_core.images import ImageFetcher, get_image_fetcher

logger = logging.getLogger(__name__)

SUPPORTED_FORMATS = ("png", "jpg", "webp")

_FORMAT_ALIASES = {"jpeg": "jpg"}
_PIL_FORMATS = {"png": "PNG", "jpg": "JPEG", "webp": "WEBP"}


def normalize_output_format(value: Optional[str]) -> str:
    """Map a requested format onto png/jpg/webp; anything unknown becomes png."""
    fmt = (value or "png").strip().lower()
    fmt = _FORMAT_ALIASES.get(fmt, fmt)
    if fmt not in SUPPORTED_FORMATS:
        logger.debug("Unsupported output format %r, using png", value)
        return "png"
    return fmt


class CairoSvgRasterEncoder:
    """SVG -> PNG through cairo, then Pillow for the lossy formats."""

    def __init__(self, image_fetcher: Optional[ImageFetcher] = None):
        self._image_fetcher = image_fetcher

    @property
    def image_fetcher(self) -> ImageFetcher:
        return self._image_fetcher or get_image_fetcher()

    def rasterize(self, svg: str, width: int, height: int) -> bytes:
        from cairosvg import svg2png

        return svg2png(
            bytestring=svg.encode("utf-8"),
            output_width=width,
            output_height=height,
            url_fetcher=self.image_fetcher,
        )

    def encode(self, svg: str, fmt: str = "png", quality: int = 90, width: Optional[int] = None, height: Optional[int] = None) -> bytes:
        fmt = normalize_output_format(fmt)
        png_bytes = self.rasterize(svg, width, height)
        if fmt == "png":
            return png_bytes

        image = Image.open(io.BytesIO(png_bytes))
        buffer = io.BytesIO()
        if fmt == "jpg":
            image.convert("RGB").save(buffer, format=_PIL_FORMATS[fmt], quality=quality)
        else:
            image.save(buffer, format=_PIL_FORMATS[fmt], quality=quality)
        return buffer.getvalue()


_default_encoder: Optional[CairoSvgRasterEncoder] = None


def get_raster_encoder() -> CairoSvgRasterEncoder:
    global _default_encoder
    if _default_encoder is None:
        _default_encoder = CairoSvgRasterEncoder()
    return _default_encoder
