from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Literal

from pydantic import BaseModel, Field

FontWeight = Literal["regular", "bold"]

WEIGHT_VALUES: Dict[str, int] = {"regular": 400, "bold": 700}


class FontFamily(BaseModel):
    family: str
    files: Dict[str, str] = Field(default_factory=dict, description="Bundled file name per weight")


@dataclass(frozen=True)
class LoadedFont:
    """Font record handed to the layout engine."""

    name: str
    data: bytes
    weight: int
    style: str = "normal"


@dataclass(frozen=True)
class FontCacheStats:
    size: int
    size_bytes: int
    max_size: int
    max_size_bytes: int
    max_font_bytes: int
