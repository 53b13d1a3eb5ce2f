"""Remote image fetching for the rasteriser.

cairo resolves every ``<image xlink:href>`` through a url fetcher. The fetcher
here re-applies the image URL policy at fetch time, so the SVG alone can never
point the rasteriser at a host the element builders would have refused.
"""
from __future__ import annotations

import logging
from typing import Optional

import httpx

from render_engines.security.url_policy import is_valid_image_url

logger = logging.getLogger(__name__)

IMAGE_FETCH_TIMEOUT = 10.0
MAX_IMAGE_BYTES = 20 * 1024 * 1024
USER_AGENT = "render-engines/1.0"

# What cairo draws in place of an image that could not be fetched.
BLANK_IMAGE = b'<svg xmlns="http://www.w3.org/2000/svg" width="1" height="1"></svg>'


class ImageFetchError(RuntimeError):
    pass


class ImageTooLargeError(ImageFetchError):
    pass


class ImageSourceBlockedError(ImageFetchError):
    pass


class ImageFetcher:
    def __init__(
        self,
        transport: Optional[httpx.BaseTransport] = None,
        timeout: float = IMAGE_FETCH_TIMEOUT,
        max_bytes: int = MAX_IMAGE_BYTES,
    ):
        self._transport = transport
        self.timeout = timeout
        self.max_bytes = max_bytes

    def fetch(self, url: str) -> bytes:
        if not is_valid_image_url(url):
            raise ImageSourceBlockedError(f"Image URL not allowed: {url[:100]}")

        limit = self.max_bytes
        with httpx.Client(transport=self._transport, headers={"User-Agent": USER_AGENT}) as client:
            with client.stream("GET", url, timeout=self.timeout) as response:
                response.raise_for_status()
                declared = response.headers.get("content-length", "")
                if declared.isdigit() and int(declared) > limit:
                    raise ImageTooLargeError(f"Image declares {declared} bytes, limit is {limit}")

                buffer = bytearray()
                for chunk in response.iter_bytes():
                    buffer.extend(chunk)
                    if len(buffer) > limit:
                        raise ImageTooLargeError(f"Image exceeds {limit} bytes")
        if not buffer:
            raise ImageFetchError("Image response was empty")
        return bytes(buffer)

    def __call__(self, url: str, resource_type: Optional[str] = None) -> bytes:
        """cairosvg ``url_fetcher`` hook; a failed image is drawn blank."""
        try:
            data = self.fetch(url)
        except (ImageFetchError, httpx.HTTPError) as exc:
            logger.warning("Image not rendered (%s): %s", url[:100], exc)
            return BLANK_IMAGE
        logger.debug("Fetched image %s (%s bytes)", url[:100], len(data))
        return data


_default_fetcher: Optional[ImageFetcher] = None


def get_image_fetcher() -> ImageFetcher:
    global _default_fetcher
    if _default_fetcher is None:
        _default_fetcher = ImageFetcher()
    return _default_fetcher
