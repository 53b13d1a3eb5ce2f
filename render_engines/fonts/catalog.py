from __future__ import annotations

import json
import re
from pathlib import Path
from typing import Dict, List, Optional

from render_engines.fonts.models import FontFamily, FontWeight

CATALOG_PATH = Path(__file__).with_name("catalog.json")

# Unknown families only map to a local file when the name is a plain word list.
LOCAL_FAMILY_NAME = re.compile(r"[A-Za-z0-9 ]+")


class FontCatalog:
    """Families the renderer knows how to load, and their bundled file names."""

    def __init__(self, catalog_path: Optional[Path] = None):
        self.catalog_path = catalog_path or CATALOG_PATH
        self._families: Dict[str, FontFamily] = {}
        self.default_family = "Inter"
        self._load()

    def _load(self) -> None:
        data = json.loads(self.catalog_path.read_text(encoding="utf-8"))
        self.default_family = data.get("default", self.default_family)
        for entry in data.get("families", []):
            family = FontFamily(**entry)
            self._families[family.family.lower()] = family

    def list_families(self) -> List[str]:
        return [family.family for family in self._families.values()]

    def get_family(self, name: str) -> Optional[FontFamily]:
        if not name:
            return None
        return self._families.get(name.lower())

    def local_filename(self, family: str, weight: FontWeight) -> Optional[str]:
        """Bundled file for family/weight; unknown families follow the Family-Weight.ttf convention."""
        known = self.get_family(family)
        if known and weight in known.files:
            return known.files[weight]
        if not LOCAL_FAMILY_NAME.fullmatch(family or ""):
            return None
        stem = "".join(family.split())
        return f"{stem}-{'Bold' if weight == 'bold' else 'Regular'}.ttf"


_CATALOG = FontCatalog()

AVAILABLE_FONTS: List[str] = _CATALOG.list_families()
DEFAULT_FONT: str = _CATALOG.default_family


def get_font_catalog() -> FontCatalog:
    return _CATALOG
