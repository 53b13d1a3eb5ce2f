"""Font loading for the render pipeline.

Lookup order for one family/weight:

1. cache (LRU + TTL)
2. bundled file under the fonts dir, size-checked before it is read
3. remote font provider CSS -> allowlisted font URL -> binary
4. the default family at the same weight, unless the default itself failed
"""
from __future__ import annotations

import asyncio
import logging
import re
from functools import partial
from pathlib import Path
from typing import Iterable, List, Optional

import httpx

from render_engines.config import runtime_config
from render_engines.fonts.cache import FontCache
from render_engines.fonts.catalog import DEFAULT_FONT, FontCatalog, get_font_catalog
from render_engines.fonts.fallback import first_successful
from render_engines.fonts.models import WEIGHT_VALUES, FontCacheStats, FontWeight, LoadedFont
from render_engines.security.url_policy import is_allowed_font_url

logger = logging.getLogger(__name__)

FONT_CSS_TIMEOUT = 10.0
FONT_FILE_TIMEOUT = 15.0
# Non-browser agent: the provider then serves plain TrueType URLs.
USER_AGENT = "render-engines/1.0"

CSS_FONT_URL_PATTERN = re.compile(r"src:\s*url\(\s*['\"]?([^'\")\s]+)['\"]?\s*\)")


class FontLoadError(RuntimeError):
    pass


class FontTooLargeError(FontLoadError):
    pass


class FontSourceBlockedError(FontLoadError):
    pass


class FontLoader:
    def __init__(
        self,
        cache: Optional[FontCache] = None,
        fonts_dir: Optional[Path] = None,
        css_url: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        catalog: Optional[FontCatalog] = None,
    ):
        self.cache = cache or FontCache()
        self.catalog = catalog or get_font_catalog()
        self._fonts_dir = fonts_dir
        self._css_url = css_url
        self._transport = transport

    @property
    def fonts_dir(self) -> Path:
        return Path(self._fonts_dir) if self._fonts_dir else runtime_config.get_fonts_dir()

    @property
    def css_url(self) -> str:
        return self._css_url or runtime_config.get_font_css_url()

    @property
    def max_font_bytes(self) -> int:
        return self.cache.max_entry_bytes

    @staticmethod
    def cache_key(family: str, weight: FontWeight, remote: bool = False) -> str:
        key = f"{family}-{weight}"
        return f"{key}-remote" if remote else key

    @staticmethod
    def is_default_family(family: str) -> bool:
        return family.lower() == DEFAULT_FONT.lower()

    async def load_font(self, family: str, weight: FontWeight = "regular") -> bytes:
        family = family or DEFAULT_FONT
        if weight not in WEIGHT_VALUES:
            raise ValueError(f"Unsupported font weight: {weight}")

        cached = self.cache.get(self.cache_key(family, weight))
        if cached is not None:
            return cached

        strategies = [
            partial(self._load_local, family, weight),
            partial(self._load_remote, family, weight),
        ]
        if not self.is_default_family(family):
            strategies.append(partial(self._load_default, family, weight))
        return await first_successful(strategies)

    async def load_fonts(self, family: str) -> List[LoadedFont]:
        """Both weights of one family, loaded concurrently."""
        family = family or DEFAULT_FONT
        regular, bold = await asyncio.gather(
            self.load_font(family, "regular"),
            self.load_font(family, "bold"),
        )
        return [
            LoadedFont(name=family, data=regular, weight=WEIGHT_VALUES["regular"]),
            LoadedFont(name=family, data=bold, weight=WEIGHT_VALUES["bold"]),
        ]

    async def load_multiple_fonts(self, families: Iterable[str]) -> List[LoadedFont]:
        batches = await asyncio.gather(*(self.load_fonts(family) for family in families))
        return [font for batch in batches for font in batch]

    def clear_cache(self) -> None:
        self.cache.clear()

    def cache_stats(self) -> FontCacheStats:
        return self.cache.stats()

    # strategies

    def _read_file(self, path: Path) -> bytes:
        return path.read_bytes()

    def _local_path(self, family: str, weight: FontWeight) -> Path:
        filename = self.catalog.local_filename(family, weight)
        if filename is None:
            raise FontSourceBlockedError(f"No local font file for family {family[:100]!r}")
        root = self.fonts_dir.resolve()
        path = (root / filename).resolve()
        try:
            path.relative_to(root)
        except ValueError:
            logger.warning("Local font path escapes fonts dir: %s", filename[:100])
            raise FontSourceBlockedError(f"Local font path outside {root}") from None
        return path

    async def _load_local(self, family: str, weight: FontWeight) -> bytes:
        path = self._local_path(family, weight)
        size = path.stat().st_size
        if size > self.max_font_bytes:
            logger.warning("Local font %s too large (%s bytes), skipping", path.name, size)
            raise FontTooLargeError(f"Local font {path.name} exceeds {self.max_font_bytes} bytes")

        data = self._read_file(path)
        if len(data) > self.max_font_bytes:
            raise FontTooLargeError(f"Local font {path.name} exceeds {self.max_font_bytes} bytes")
        logger.debug("Loaded font %s %s from %s", family, weight, path)
        self.cache.set(self.cache_key(family, weight), data)
        return data

    async def _load_remote(self, family: str, weight: FontWeight) -> bytes:
        key = self.cache_key(family, weight, remote=True)
        cached = self.cache.get(key)
        if cached is not None:
            return cached

        if not is_allowed_font_url(self.css_url):
            raise FontSourceBlockedError(f"Font CSS endpoint not allowed: {self.css_url}")

        async with httpx.AsyncClient(
            transport=self._transport,
            headers={"User-Agent": USER_AGENT},
        ) as client:
            css = await self._fetch_css(client, family, weight)
            font_url = self._extract_font_url(css)
            if not is_allowed_font_url(font_url):
                logger.warning("Blocked font URL from untrusted source: %s", font_url[:100])
                raise FontSourceBlockedError(f"Font URL not allowed: {font_url[:100]}")
            data = await self._fetch_font_file(client, font_url)

        logger.debug("Loaded font %s %s from %s", family, weight, font_url)
        self.cache.set(key, data)
        return data

    async def _load_default(self, family: str, weight: FontWeight) -> bytes:
        logger.warning("Failed to load font %s (%s), falling back to %s", family, weight, DEFAULT_FONT)
        return await self.load_font(DEFAULT_FONT, weight)

    async def _fetch_css(self, client: httpx.AsyncClient, family: str, weight: FontWeight) -> str:
        params = {"family": f"{family}:wght@{WEIGHT_VALUES[weight]}", "display": "swap"}
        response = await client.get(self.css_url, params=params, timeout=FONT_CSS_TIMEOUT)
        response.raise_for_status()
        return response.text

    @staticmethod
    def _extract_font_url(css: str) -> str:
        match = CSS_FONT_URL_PATTERN.search(css or "")
        if not match:
            raise FontLoadError("No font URL found in provider CSS")
        return match.group(1)

    async def _fetch_font_file(self, client: httpx.AsyncClient, url: str) -> bytes:
        limit = self.max_font_bytes
        async with client.stream("GET", url, timeout=FONT_FILE_TIMEOUT) as response:
            response.raise_for_status()
            declared = response.headers.get("content-length", "")
            if declared.isdigit() and int(declared) > limit:
                logger.warning("Remote font too large: %s bytes", declared)
                raise FontTooLargeError(f"Remote font declares {declared} bytes, limit is {limit}")

            buffer = bytearray()
            async for chunk in response.aiter_bytes():
                buffer.extend(chunk)
                if len(buffer) > limit:
                    logger.warning("Remote font exceeded %s bytes while downloading", limit)
                    raise FontTooLargeError(f"Remote font exceeds {limit} bytes")
        if not buffer:
            raise FontLoadError("Remote font response was empty")
        return bytes(buffer)


_default_loader: Optional[FontLoader] = None


def get_font_loader() -> FontLoader:
    global _default_loader
    if _default_loader is None:
        _default_loader = FontLoader()
    return _default_loader


def set_font_loader(loader: Optional[FontLoader]) -> None:
    global _default_loader
    _default_loader = loader


async def load_font(family: str, weight: FontWeight = "regular") -> bytes:
    return await get_font_loader().load_font(family, weight)


async def load_fonts(family: str) -> List[LoadedFont]:
    return await get_font_loader().load_fonts(family)


async def load_multiple_fonts(families: Iterable[str]) -> List[LoadedFont]:
    return await get_font_loader().load_multiple_fonts(families)


def clear_font_cache() -> None:
    get_font_loader().clear_cache()


def get_font_cache_stats() -> FontCacheStats:
    return get_font_loader().cache_stats()
