"""URL allowlisting for anything the render pipeline may fetch (SSRF defense)."""
from __future__ import annotations

import logging
import re
from typing import Any, Iterable, List
from urllib.parse import urlsplit

from render_engines.config import runtime_config

logger = logging.getLogger(__name__)

ALLOWED_IMAGE_DOMAINS = (
    # Supabase storage
    "supabase.co",
    "supabase.in",
    # Own CDNs
    "cdn.aerialshots.media",
    "images.aerialshots.media",
    # Google Cloud Storage
    "storage.googleapis.com",
    # AWS S3
    "s3.amazonaws.com",
    # Cloudflare
    "imagedelivery.net",
    "cloudflare-ipfs.com",
    # Common CDNs
    "cloudinary.com",
    "res.cloudinary.com",
    "imgix.net",
    # Placeholder services
    "via.placeholder.com",
    "placehold.co",
    "picsum.photos",
)

ALLOWED_FONT_DOMAINS = (
    "fonts.googleapis.com",
    "fonts.gstatic.com",
)

DANGEROUS_SCHEMES = {"file", "javascript", "data", "vbscript"}

BLOCKED_HOST_PATTERNS = [
    re.compile(r"^127\."),  # loopback
    re.compile(r"^10\."),  # private class A
    re.compile(r"^172\.(1[6-9]|2[0-9]|3[01])\."),  # private class B
    re.compile(r"^192\.168\."),  # private class C
    re.compile(r"^169\.254\."),  # link-local
    re.compile(r"^0\."),  # current network
    re.compile(r"^100\.(6[4-9]|[7-9][0-9]|1[01][0-9]|12[0-7])\."),  # CGNAT
    re.compile(r"^localhost$", re.IGNORECASE),
    re.compile(r"^::1$"),  # IPv6 loopback
    re.compile(r"^f[cd][0-9a-f]{2}:", re.IGNORECASE),  # IPv6 unique local
    re.compile(r"^fe80:", re.IGNORECASE),  # IPv6 link-local
]


def is_blocked_host(hostname: str) -> bool:
    return any(pattern.search(hostname) for pattern in BLOCKED_HOST_PATTERNS)


def matches_domain(hostname: str, domains: Iterable[str]) -> bool:
    """Exact match or subdomain of an allowed domain."""
    return any(hostname == domain or hostname.endswith(f".{domain}") for domain in domains)


def allowed_image_domains() -> List[str]:
    return [*ALLOWED_IMAGE_DOMAINS, *runtime_config.get_dev_allowed_image_domains()]


def is_valid_image_url(url: Any) -> bool:
    if not url or not isinstance(url, str):
        return False

    try:
        parsed = urlsplit(url.strip())
        scheme = parsed.scheme.lower()
        if scheme in DANGEROUS_SCHEMES:
            return False

        dev_mode = runtime_config.is_development_mode()
        if scheme != "https" and not (scheme == "http" and dev_mode):
            return False

        hostname = (parsed.hostname or "").lower()
        if not hostname:
            return False
        if is_blocked_host(hostname):
            return False

        if not matches_domain(hostname, allowed_image_domains()):
            if dev_mode:
                logger.warning(
                    "Blocked image URL from non-whitelisted domain: %s. "
                    "Add it to DEV_ALLOW_IMAGE_DOMAINS if needed for testing.",
                    hostname,
                )
            return False
        return True
    except ValueError:
        return False


def is_allowed_font_url(url: Any) -> bool:
    """Remote font binaries must come over https from the font provider domains."""
    if not url or not isinstance(url, str):
        return False
    try:
        parsed = urlsplit(url.strip())
        if parsed.scheme.lower() != "https":
            return False
        hostname = (parsed.hostname or "").lower()
    except ValueError:
        return False
    if not hostname or is_blocked_host(hostname):
        return False
    return matches_domain(hostname, ALLOWED_FONT_DOMAINS)
