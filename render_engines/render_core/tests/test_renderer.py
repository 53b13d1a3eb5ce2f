from __future__ import annotations

import asyncio
import base64
import io

import pytest

from render_engines.fonts.loader import FontLoadError
from render_engines.fonts.models import LoadedFont
from render_engines.render_core import renderer as renderer_module
from render_engines.render_core.raster import CairoSvgRasterEncoder, normalize_output_format
from render_engines.render_core.renderer import TemplateRenderer, render_template, render_with_satori

FAKE_IMAGE = b"\x89PNG fake image"


class FakeFontLoader:
    def __init__(self, error=None):
        self.families = []
        self.error = error

    async def load_fonts(self, family):
        self.families.append(family)
        if self.error:
            raise self.error
        return [
            LoadedFont(name=family, data=b"fake-regular", weight=400),
            LoadedFont(name=family, data=b"fake-bold", weight=700),
        ]


class FakeEncoder:
    def __init__(self, error=None):
        self.calls = []
        self.error = error

    def encode(self, svg, fmt="png", quality=90, width=None, height=None):
        self.calls.append({"svg": svg, "format": fmt, "quality": quality, "width": width, "height": height})
        if self.error:
            raise self.error
        return FAKE_IMAGE


def hello_template(**extra):
    return {
        "id": "tpl-hello",
        "slug": "hello",
        "canvas": {"width": 1080, "height": 1350, "backgroundColor": "#ffffff"},
        "layers": [
            {
                "id": "headline",
                "type": "text",
                "position": {"x": 80, "y": 120, "width": 920},
                "content": {"text": "Hello {{name}}!", "font": {"family": "Inter", "size": 48}},
            }
        ],
        **extra,
    }


def make_renderer(loader=None, encoder=None):
    return TemplateRenderer(font_loader=loader or FakeFontLoader(), encoder=encoder or FakeEncoder())


def test_hello_world_renders_png_by_default():
    encoder = FakeEncoder()
    renderer = make_renderer(encoder=encoder)

    result = asyncio.run(renderer.render({"template": hello_template(), "variables": {"name": "World"}}))

    assert result.success is True
    assert result.error is None
    assert result.width == 1080
    assert result.height == 1350
    assert result.format == "png"
    assert result.render_engine == "satori_sharp"
    assert result.render_time_ms >= 0
    assert base64.b64decode(result.image_base64) == FAKE_IMAGE

    (call,) = encoder.calls
    assert "Hello World!" in call["svg"]
    assert call["format"] == "png"
    assert call["quality"] == 90
    assert (call["width"], call["height"]) == (1080, 1350)


def test_untrusted_image_is_dropped_but_render_succeeds():
    encoder = FakeEncoder()
    template = {
        "id": "tpl-evil",
        "layers": [
            {
                "id": "photo",
                "type": "image",
                "position": {"x": 0, "y": 0, "width": 1080, "height": 720},
                "content": {"url": "https://evil.com/malicious.jpg"},
            }
        ],
    }
    result = asyncio.run(make_renderer(encoder=encoder).render({"template": template}))

    assert result.success is True
    assert result.image_base64
    assert "evil.com" not in encoder.calls[0]["svg"]
    assert "<image" not in encoder.calls[0]["svg"]


def test_missing_template_is_structured_failure():
    result = asyncio.run(make_renderer().render({"variables": {"name": "World"}}))
    assert result.success is False
    assert result.error == "Template is required"
    assert result.image_base64 is None
    assert result.render_time_ms >= 0


@pytest.mark.parametrize(
    "requested, expected",
    [(None, "png"), ("png", "png"), ("jpg", "jpg"), ("jpeg", "jpg"), ("JPEG", "jpg"), ("webp", "webp"), ("bmp", "png")],
)
def test_output_format_normalisation(requested, expected):
    assert normalize_output_format(requested) == expected

    encoder = FakeEncoder()
    result = asyncio.run(
        make_renderer(encoder=encoder).render({"template": hello_template(), "outputFormat": requested, "quality": 70})
    )
    assert result.format == expected
    assert encoder.calls[0]["format"] == expected
    assert encoder.calls[0]["quality"] == 70


def test_encoder_failure_is_reported_not_raised():
    renderer = make_renderer(encoder=FakeEncoder(error=RuntimeError("codec exploded")))
    result = asyncio.run(renderer.render({"template": hello_template()}))
    assert result.success is False
    assert result.error == "codec exploded"
    assert isinstance(result.render_time_ms, int)


def test_font_failure_is_reported_not_raised():
    renderer = make_renderer(loader=FakeFontLoader(error=FontLoadError("no fonts anywhere")))
    result = asyncio.run(renderer.render({"template": hello_template()}))
    assert result.success is False
    assert result.error == "no fonts anywhere"


def test_invalid_template_is_reported():
    template = {"id": "bad", "layers": [{"id": "x", "type": "hologram"}]}
    result = asyncio.run(make_renderer().render({"template": template}))
    assert result.success is False
    assert result.error.startswith("Invalid template:")


def test_out_of_range_quality_is_invalid_input():
    result = asyncio.run(make_renderer().render({"template": hello_template(), "quality": 0}))
    assert result.success is False
    assert result.error.startswith("Invalid input: quality")


def test_font_family_resolution_order():
    loader = FakeFontLoader()
    renderer = make_renderer(loader=loader)
    declared = hello_template(variables=[{"name": "fontFamily", "type": "font", "default": "Oswald"}])

    asyncio.run(renderer.render({"template": declared, "brandKit": {"fontFamily": "Lato"}}))
    asyncio.run(renderer.render({"template": declared}))
    asyncio.run(renderer.render({"template": hello_template()}))

    assert loader.families == ["Lato", "Oswald", "Inter"]


def test_dimension_overrides_and_canvas_defaults():
    encoder = FakeEncoder()
    template = hello_template()
    del template["canvas"]
    result = asyncio.run(make_renderer(encoder=encoder).render({"template": template, "width": 600}))

    assert (result.width, result.height) == (600, 1350)
    svg = encoder.calls[0]["svg"]
    assert svg.startswith('<svg width="600" height="1350"')
    assert 'fill="#000000"' in svg


def test_context_data_reaches_bindings():
    encoder = FakeEncoder()
    template = hello_template()
    template["layers"][0]["content"]["text"] = "{{listing.address.city}} / {{agent.name}} / {{formatPrice price}}"
    request = {
        "template": template,
        "variables": {"price": 1500000},
        "listingData": {"address": {"city": "Austin"}},
        "agentData": {"name": "Sam"},
    }
    result = asyncio.run(make_renderer(encoder=encoder).render(request))
    assert result.success is True
    assert "Austin / Sam / $1.5M" in encoder.calls[0]["svg"]


def test_module_entrypoint_uses_shared_renderer(monkeypatch):
    encoder = FakeEncoder()
    monkeypatch.setattr(renderer_module, "_default_renderer", make_renderer(encoder=encoder))

    result = asyncio.run(render_with_satori({"template": hello_template(), "variables": {"name": "there"}}))
    assert result.success is True
    assert render_template is render_with_satori
    assert "Hello there!" in encoder.calls[0]["svg"]


def test_real_cairo_pipeline_produces_images():
    try:
        import cairosvg  # noqa: F401
    except (ImportError, OSError):
        pytest.skip("cairo library not available")
    from PIL import Image

    template = hello_template()
    template["layers"] += [
        {
            "id": "band",
            "type": "gradient",
            "position": {"x": 0, "y": 1000, "width": 1080, "height": 350, "zIndex": -1},
            "content": {"stops": [{"color": "#000000", "position": 0}, {"color": "#333333", "position": 1}]},
        },
        {
            "id": "badge",
            "type": "shape",
            "position": {"x": 540, "y": 675, "width": 200, "height": 200, "anchor": "center"},
            "content": {"shape": "ellipse", "fill": "primaryColor"},
        },
    ]
    renderer = TemplateRenderer(font_loader=FakeFontLoader(), encoder=CairoSvgRasterEncoder())

    png = asyncio.run(renderer.render({"template": template, "variables": {"name": "World"}, "width": 540, "height": 675}))
    assert png.success is True, png.error
    image = Image.open(io.BytesIO(base64.b64decode(png.image_base64)))
    assert image.format == "PNG"
    assert image.size == (540, 675)

    jpg = asyncio.run(renderer.render({"template": template, "outputFormat": "jpeg", "quality": 80}))
    assert jpg.success is True, jpg.error
    assert Image.open(io.BytesIO(base64.b64decode(jpg.image_base64))).format == "JPEG"
