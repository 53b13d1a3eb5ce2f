from __future__ import annotations

import asyncio
import base64
import io
from typing import List

import httpx
import pytest

from render_engines.fonts.models import LoadedFont
from render_engines.render_core.images import (
    BLANK_IMAGE,
    IMAGE_FETCH_TIMEOUT,
    ImageFetcher,
    ImageSourceBlockedError,
    ImageTooLargeError,
)
from render_engines.render_core.raster import CairoSvgRasterEncoder
from render_engines.render_core.renderer import TemplateRenderer

PHOTO_URL = "https://cdn.aerialshots.media/listing/front.png"


def red_png(size: int = 8) -> bytes:
    from PIL import Image

    buffer = io.BytesIO()
    Image.new("RGB", (size, size), (255, 0, 0)).save(buffer, format="PNG")
    return buffer.getvalue()


class FakeCdn:
    def __init__(self, *responses: httpx.Response):
        self._responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self._responses:
            return httpx.Response(404)
        return self._responses.pop(0)


def make_fetcher(cdn: FakeCdn, **kwargs) -> ImageFetcher:
    return ImageFetcher(transport=httpx.MockTransport(cdn), **kwargs)


def test_fetches_allowed_image_with_timeout():
    cdn = FakeCdn(httpx.Response(200, content=b"\x89PNG-bytes"))
    fetcher = make_fetcher(cdn)

    assert fetcher(PHOTO_URL, "image/*") == b"\x89PNG-bytes"
    (request,) = cdn.requests
    assert str(request.url) == PHOTO_URL
    assert request.extensions["timeout"]["read"] == IMAGE_FETCH_TIMEOUT


@pytest.mark.parametrize(
    "url",
    [
        "https://evil.com/x.png",
        "http://169.254.169.254/latest/meta-data",
        "file:///etc/passwd",
        "data:image/png;base64,AAAA",
    ],
)
def test_disallowed_urls_are_never_requested(url):
    cdn = FakeCdn(httpx.Response(200, content=b"should-not-load"))
    fetcher = make_fetcher(cdn)

    with pytest.raises(ImageSourceBlockedError):
        fetcher.fetch(url)
    assert fetcher(url) == BLANK_IMAGE
    assert cdn.requests == []


def test_oversized_images_are_refused():
    declared = FakeCdn(httpx.Response(200, headers={"content-length": "5000"}, content=b"x" * 10))
    with pytest.raises(ImageTooLargeError):
        make_fetcher(declared, max_bytes=100).fetch(PHOTO_URL)

    lying = FakeCdn(httpx.Response(200, headers={"content-length": "10"}, content=b"x" * 500))
    with pytest.raises(ImageTooLargeError):
        make_fetcher(lying, max_bytes=100).fetch(PHOTO_URL)


def test_failed_fetch_draws_blank():
    assert make_fetcher(FakeCdn(httpx.Response(503)))(PHOTO_URL) == BLANK_IMAGE
    assert make_fetcher(FakeCdn(httpx.Response(200, content=b"")))(PHOTO_URL) == BLANK_IMAGE


def test_cairo_draws_fetched_image_pixels():
    try:
        import cairosvg  # noqa: F401
    except (ImportError, OSError):
        pytest.skip("cairo library not available")
    from PIL import Image

    cdn = FakeCdn(httpx.Response(200, headers={"content-type": "image/png"}, content=red_png()))
    encoder = CairoSvgRasterEncoder(image_fetcher=make_fetcher(cdn))
    svg = (
        '<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" '
        'width="40" height="40" viewBox="0 0 40 40">'
        '<rect x="0" y="0" width="40" height="40" fill="#ffffff" />'
        f'<image x="10" y="10" width="20" height="20" preserveAspectRatio="none" xlink:href="{PHOTO_URL}" />'
        "</svg>"
    )

    png = encoder.encode(svg, "png", width=40, height=40)
    image = Image.open(io.BytesIO(png)).convert("RGB")

    assert [str(r.url) for r in cdn.requests] == [PHOTO_URL]
    assert image.getpixel((20, 20)) == (255, 0, 0)
    assert image.getpixel((2, 2)) == (255, 255, 255)


def test_cairo_skips_blocked_image_without_failing():
    try:
        import cairosvg  # noqa: F401
    except (ImportError, OSError):
        pytest.skip("cairo library not available")
    from PIL import Image

    cdn = FakeCdn(httpx.Response(200, content=red_png()))
    encoder = CairoSvgRasterEncoder(image_fetcher=make_fetcher(cdn))
    svg = (
        '<svg xmlns="http://www.w3.org/2000/svg" xmlns:xlink="http://www.w3.org/1999/xlink" '
        'width="40" height="40"><rect width="40" height="40" fill="#ffffff" />'
        '<image x="10" y="10" width="20" height="20" xlink:href="http://127.0.0.1/x.png" />'
        "</svg>"
    )

    image = Image.open(io.BytesIO(encoder.encode(svg, "png", width=40, height=40))).convert("RGB")
    assert cdn.requests == []
    assert image.getpixel((20, 20)) == (255, 255, 255)


class StubFontLoader:
    async def load_fonts(self, family):
        return [LoadedFont(name=family, data=b"stub", weight=400), LoadedFont(name=family, data=b"stub", weight=700)]


def test_image_layer_lands_in_rendered_output():
    try:
        import cairosvg  # noqa: F401
    except (ImportError, OSError):
        pytest.skip("cairo library not available")
    from PIL import Image

    cdn = FakeCdn(httpx.Response(200, content=red_png()))
    renderer = TemplateRenderer(
        font_loader=StubFontLoader(),
        encoder=CairoSvgRasterEncoder(image_fetcher=make_fetcher(cdn)),
    )
    template = {
        "canvas": {"width": 200, "height": 200, "backgroundColor": "#ffffff"},
        "layers": [
            {
                "id": "photo",
                "type": "image",
                "position": {"x": 50, "y": 50, "width": 100, "height": 100},
                "content": {"url": PHOTO_URL, "fit": "fill"},
            }
        ],
    }

    result = asyncio.run(renderer.render({"template": template}))
    assert result.success is True, result.error
    image = Image.open(io.BytesIO(base64.b64decode(result.image_base64))).convert("RGB")

    assert [str(r.url) for r in cdn.requests] == [PHOTO_URL]
    assert image.getpixel((100, 100)) == (255, 0, 0)
    assert image.getpixel((10, 10)) == (255, 255, 255)
