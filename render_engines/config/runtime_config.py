"""Runtime configuration helpers for the render engines."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

DEV_ENV_NAMES = {"dev", "development", "local"}
DEFAULT_FONT_CSS_URL = "https://fonts.googleapis.com/css2"
DEFAULT_FONTS_DIR = Path(__file__).resolve().parents[1] / "fonts" / "files"


def _get_env(name: str, default: Optional[str] = None) -> Optional[str]:
    return os.getenv(name, default)


def get_env() -> Optional[str]:
    return _get_env("ENV") or _get_env("APP_ENV") or _get_env("NODE_ENV")


def is_development_mode() -> bool:
    """Development mode must be opted into; an unset env is production."""
    env = (get_env() or "prod").strip().lower()
    return env in DEV_ENV_NAMES


def get_dev_allowed_image_domains() -> List[str]:
    """Extra image domains from DEV_ALLOW_IMAGE_DOMAINS, inert outside development mode."""
    if not is_development_mode():
        return []
    raw = _get_env("DEV_ALLOW_IMAGE_DOMAINS")
    if not raw:
        return []
    return [d.strip().lower() for d in raw.split(",") if d.strip()]


def get_fonts_dir() -> Path:
    value = _get_env("RENDER_FONTS_DIR")
    return Path(value) if value else DEFAULT_FONTS_DIR


def get_font_css_url() -> str:
    return _get_env("RENDER_FONT_CSS_URL") or DEFAULT_FONT_CSS_URL


@dataclass
class RenderSettings:
    env: Optional[str]
    development_mode: bool
    fonts_dir: Path
    font_css_url: str
    dev_allowed_image_domains: List[str] = field(default_factory=list)


def get_settings() -> RenderSettings:
    return RenderSettings(
        env=get_env(),
        development_mode=is_development_mode(),
        fonts_dir=get_fonts_dir(),
        font_css_url=get_font_css_url(),
        dev_allowed_image_domains=get_dev_allowed_image_domains(),
    )


def config_snapshot() -> dict:
    """Return a snapshot of the env-driven render config."""
    settings = get_settings()
    return {
        "env": settings.env,
        "development_mode": settings.development_mode,
        "fonts_dir": str(settings.fonts_dir),
        "font_css_url": settings.font_css_url,
        "dev_allowed_image_domains": list(settings.dev_allowed_image_domains),
    }
