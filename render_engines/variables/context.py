from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional


@dataclass
class RenderContext:
    """Data sources visible to {{...}} bindings during one render.

    Every source is treated as a read-only tree of plain mappings and lists.
    The brand kit may be given as a pydantic model or a mapping; lookups always
    go through its camelCase wire form.
    """

    variables: Dict[str, Any] = field(default_factory=dict)
    brand_kit: Any = None
    listing_data: Optional[Mapping[str, Any]] = None
    agent_data: Optional[Mapping[str, Any]] = None
    life_here_data: Optional[Mapping[str, Any]] = None

    def brand_kit_values(self) -> Optional[Dict[str, Any]]:
        if self.brand_kit is None:
            return None
        if hasattr(self.brand_kit, "model_dump"):
            return self.brand_kit.model_dump(by_alias=True, exclude_none=True)
        return dict(self.brand_kit)

    def sources(self) -> list:
        """All sources in deep-lookup order: variables, brand, lifeHere, listing, agent."""
        return [
            self.variables,
            self.brand_kit_values(),
            self.life_here_data,
            self.listing_data,
            self.agent_data,
        ]
