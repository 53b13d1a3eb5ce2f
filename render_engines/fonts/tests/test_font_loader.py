from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Callable, List
from unittest.mock import patch

import httpx
import pytest

from render_engines.fonts import loader as loader_module
from render_engines.fonts.cache import FontCache
from render_engines.fonts.catalog import AVAILABLE_FONTS, DEFAULT_FONT, get_font_catalog
from render_engines.fonts.loader import (
    FONT_CSS_TIMEOUT,
    FONT_FILE_TIMEOUT,
    FontLoader,
    FontTooLargeError,
    USER_AGENT,
)

GSTATIC_URL = "https://fonts.gstatic.com/s/inter/v12/test.ttf"


def css_for(url: str) -> str:
    return f"@font-face {{\n  font-family: 'X';\n  src: url({url}) format('truetype');\n}}\n"


class FakeProvider:
    """Serves CSS from fonts.googleapis.com and binaries from anywhere else."""

    def __init__(self, css: Callable[[httpx.Request], str], files: List[httpx.Response]):
        self._css = css
        self._files = list(files)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "fonts.googleapis.com":
            return httpx.Response(200, text=self._css(request))
        if not self._files:
            return httpx.Response(404)
        return self._files.pop(0)

    @property
    def css_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host == "fonts.googleapis.com"]

    @property
    def file_requests(self) -> List[httpx.Request]:
        return [r for r in self.requests if r.url.host != "fonts.googleapis.com"]


def offline(request: httpx.Request) -> httpx.Response:
    raise httpx.ConnectError("offline", request=request)


def make_loader(fonts_dir: Path, handler=offline, cache: FontCache = None) -> FontLoader:
    return FontLoader(
        cache=cache or FontCache(),
        fonts_dir=fonts_dir,
        transport=httpx.MockTransport(handler),
    )


def write_font(fonts_dir: Path, name: str, data: bytes) -> None:
    (fonts_dir / name).write_bytes(data)


def test_font_constants():
    assert DEFAULT_FONT == "Inter"
    for family in [
        "Inter",
        "Playfair Display",
        "Montserrat",
        "Roboto",
        "Poppins",
        "Open Sans",
        "Lato",
        "Oswald",
        "Raleway",
        "Merriweather",
    ]:
        assert family in AVAILABLE_FONTS
    assert len(AVAILABLE_FONTS) >= 10


def test_loads_local_font(tmp_path):
    write_font(tmp_path, "Inter-Regular.ttf", b"mock-font-data")
    loader = make_loader(tmp_path)
    assert asyncio.run(loader.load_font("Inter", "regular")) == b"mock-font-data"
    assert loader.cache_stats().size_bytes == len(b"mock-font-data")


def test_second_load_hits_cache(tmp_path):
    write_font(tmp_path, "Inter-Regular.ttf", b"mock-font-data")
    loader = make_loader(tmp_path)

    async def run():
        with patch.object(loader, "_read_file", wraps=loader._read_file) as read:
            await loader.load_font("Inter", "regular")
            first = loader.cache_stats()
            await loader.load_font("Inter", "regular")
            assert read.call_count == 1
            assert loader.cache_stats() == first

    asyncio.run(run())


def test_oversized_local_font_is_never_read(tmp_path):
    write_font(tmp_path, "Inter-Regular.ttf", b"x" * 100)
    provider = FakeProvider(lambda r: css_for(GSTATIC_URL), [httpx.Response(200, content=b"remote")])
    loader = make_loader(tmp_path, provider, cache=FontCache(max_entry_bytes=50))

    async def run():
        with patch.object(loader, "_read_file", wraps=loader._read_file) as read:
            assert await loader.load_font("Inter", "regular") == b"remote"
            read.assert_not_called()

    asyncio.run(run())


def test_missing_local_font_fetches_from_provider(tmp_path):
    provider = FakeProvider(lambda r: css_for(GSTATIC_URL), [httpx.Response(200, content=b"f" * 500)])
    loader = make_loader(tmp_path, provider)

    assert asyncio.run(loader.load_font("Inter", "bold")) == b"f" * 500
    css_request = provider.css_requests[0]
    assert css_request.url.host == "fonts.googleapis.com"
    assert css_request.url.params["family"] == "Inter:wght@700"
    assert css_request.headers["user-agent"] == USER_AGENT
    assert str(provider.file_requests[0].url) == GSTATIC_URL


def test_remote_font_is_cached_under_its_own_key(tmp_path):
    provider = FakeProvider(lambda r: css_for(GSTATIC_URL), [httpx.Response(200, content=b"remote")])
    loader = make_loader(tmp_path, provider)

    async def run():
        await loader.load_font("Inter", "regular")
        await loader.load_font("Inter", "regular")

    asyncio.run(run())
    assert len(provider.css_requests) == 1
    assert loader.cache.keys() == ["Inter-regular-remote"]


def test_requests_carry_timeouts(tmp_path):
    provider = FakeProvider(lambda r: css_for(GSTATIC_URL), [httpx.Response(200, content=b"remote")])
    loader = make_loader(tmp_path, provider)
    asyncio.run(loader.load_font("Inter", "regular"))

    assert provider.css_requests[0].extensions["timeout"]["read"] == FONT_CSS_TIMEOUT == 10.0
    assert provider.file_requests[0].extensions["timeout"]["read"] == FONT_FILE_TIMEOUT == 15.0


def test_untrusted_font_url_falls_back_to_default_family(tmp_path):
    write_font(tmp_path, "Inter-Regular.ttf", b"inter-font-data")

    def css(request: httpx.Request) -> str:
        return css_for("https://evil.com/malicious.woff2")

    provider = FakeProvider(css, [])
    loader = make_loader(tmp_path, provider)

    assert asyncio.run(loader.load_font("TestFont", "regular")) == b"inter-font-data"
    # the blocked URL was never requested
    assert provider.file_requests == []


def test_declared_oversize_remote_font_falls_back(tmp_path):
    provider = FakeProvider(
        lambda r: css_for(GSTATIC_URL),
        [
            httpx.Response(200, headers={"content-length": "10000000"}, content=b"x" * 50),
            httpx.Response(200, content=b"inter-remote"),
        ],
    )
    loader = make_loader(tmp_path, provider)

    assert asyncio.run(loader.load_font("TestFont", "regular")) == b"inter-remote"
    assert [r.url.params["family"] for r in provider.css_requests] == ["TestFont:wght@400", "Inter:wght@400"]


def test_lying_content_length_is_caught_after_reading(tmp_path):
    provider = FakeProvider(
        lambda r: css_for(GSTATIC_URL),
        [httpx.Response(200, headers={"content-length": "10"}, content=b"x" * 200)],
    )
    loader = make_loader(tmp_path, provider, cache=FontCache(max_entry_bytes=100))

    # default family has nowhere left to fall back to
    with pytest.raises(FontTooLargeError):
        asyncio.run(loader.load_font("Inter", "regular"))
    assert len(loader.cache) == 0


def test_default_family_failure_propagates(tmp_path):
    loader = make_loader(tmp_path)
    with pytest.raises(httpx.ConnectError):
        asyncio.run(loader.load_font("Inter", "regular"))


def test_unknown_family_uses_default_when_nothing_else_works(tmp_path):
    write_font(tmp_path, "Inter-Bold.ttf", b"inter-bold")
    loader = make_loader(tmp_path)
    assert asyncio.run(loader.load_font("UnknownFont", "bold")) == b"inter-bold"


def test_load_fonts_returns_both_weights(tmp_path):
    write_font(tmp_path, "Inter-Regular.ttf", b"regular")
    write_font(tmp_path, "Inter-Bold.ttf", b"bold")
    loader = make_loader(tmp_path)

    fonts = asyncio.run(loader.load_fonts("Inter"))
    assert [(f.name, f.weight, f.style) for f in fonts] == [("Inter", 400, "normal"), ("Inter", 700, "normal")]
    assert [f.data for f in fonts] == [b"regular", b"bold"]


def test_load_multiple_fonts(tmp_path):
    for name in ["Inter-Regular.ttf", "Inter-Bold.ttf", "Roboto-Regular.ttf", "Roboto-Bold.ttf"]:
        write_font(tmp_path, name, b"mock-font-data")
    loader = make_loader(tmp_path)

    fonts = asyncio.run(loader.load_multiple_fonts(["Inter", "Roboto"]))
    assert len(fonts) == 4
    assert len([f for f in fonts if f.name == "Inter"]) == 2
    assert len([f for f in fonts if f.name == "Roboto"]) == 2
    assert asyncio.run(loader.load_multiple_fonts([])) == []


def test_multi_word_family_file_name(tmp_path):
    write_font(tmp_path, "PlayfairDisplay-Regular.ttf", b"playfair")
    loader = make_loader(tmp_path)
    assert asyncio.run(loader.load_font("Playfair Display", "regular")) == b"playfair"


def test_family_names_cannot_reach_outside_fonts_dir(tmp_path):
    fonts_dir = tmp_path / "fonts"
    fonts_dir.mkdir()
    outside = tmp_path / "outside"
    outside.mkdir()
    write_font(outside, "secret-Regular.ttf", b"SECRET-BYTES")
    write_font(fonts_dir, "Inter-Regular.ttf", b"inter-font-data")
    loader = make_loader(fonts_dir)

    for family in [str(outside / "secret"), "../outside/secret", "..\\outside\\secret"]:
        assert asyncio.run(loader.load_font(family, "regular")) == b"inter-font-data"
    assert all(loader.cache.get(key) != b"SECRET-BYTES" for key in loader.cache.keys())


def test_local_file_names_for_unknown_families():
    catalog = get_font_catalog()
    assert catalog.local_filename("Open Sans", "bold") == "OpenSans-Bold.ttf"
    assert catalog.local_filename("My Brand Font 2", "regular") == "MyBrandFont2-Regular.ttf"
    assert catalog.local_filename("../etc/secret", "regular") is None
    assert catalog.local_filename("/abs/path/secret", "bold") is None
    assert catalog.local_filename("Inter\n", "regular") is None


def test_module_level_helpers_use_shared_loader(tmp_path):
    write_font(tmp_path, "Inter-Regular.ttf", b"a" * 1000)
    loader_module.set_font_loader(make_loader(tmp_path))
    try:
        loader_module.clear_font_cache()
        assert loader_module.get_font_cache_stats().size == 0

        asyncio.run(loader_module.load_font("Inter", "regular"))
        stats = loader_module.get_font_cache_stats()
        assert stats.size == 1
        assert stats.size_bytes == 1000

        loader_module.clear_font_cache()
        assert loader_module.get_font_cache_stats().size_bytes == 0
    finally:
        loader_module.set_font_loader(None)
