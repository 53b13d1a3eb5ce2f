import sys
from pathlib import Path

import pytest

# Ensure repo root on sys.path for imports from anywhere in tests tree.
ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

MODE_ENV_VARS = (
    "ENV",
    "APP_ENV",
    "NODE_ENV",
    "DEV_ALLOW_IMAGE_DOMAINS",
    "RENDER_FONTS_DIR",
    "RENDER_FONT_CSS_URL",
)


@pytest.fixture(autouse=True)
def _production_mode(monkeypatch):
    """Every test starts in production mode with no local overrides."""
    for name in MODE_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
