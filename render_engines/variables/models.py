from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Template documents use camelCase keys on the wire."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class AutoSizeBreakpoint(CamelModel):
    max_length: int = Field(..., ge=0, description="Longest text (in characters) this size applies to")
    font_size: float = Field(..., gt=0)


class AutoSizeConfig(CamelModel):
    enabled: bool = False
    min_size: Optional[float] = Field(default=None, description="Smallest font size; 12 when unset")
    max_size: Optional[float] = Field(default=None, description="Largest font size; 48 when unset")
    breakpoints: List[AutoSizeBreakpoint] = Field(default_factory=list)
