"""Template document and render request/response models.

Templates arrive as camelCase JSON; every model accepts either the wire key
(``zIndex``) or the attribute name (``z_index``).
"""
from __future__ import annotations

from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import ConfigDict, Field

from render_engines.variables.models import AutoSizeConfig, CamelModel

Length = Union[int, float, str]

Anchor = Literal[
    "top-left",
    "top-center",
    "top-right",
    "center-left",
    "center",
    "center-right",
    "bottom-left",
    "bottom-center",
    "bottom-right",
]


class Canvas(CamelModel):
    width: int = Field(default=1080, ge=1)
    height: int = Field(default=1350, ge=1)
    background_color: Optional[str] = None
    background_image: Optional[str] = None


class TemplateVariable(CamelModel):
    name: str
    type: str = "text"
    source: Optional[str] = None
    default: Any = None
    required: bool = False
    label: Optional[str] = None


class Position(CamelModel):
    type: Optional[str] = Field(default=None, description="absolute (default) or relative/flex")
    x: Optional[Length] = None
    y: Optional[Length] = None
    width: Optional[Length] = None
    height: Optional[Length] = None
    z_index: Optional[int] = None
    anchor: Optional[Anchor] = None


class FontSpec(CamelModel):
    family: Optional[str] = None
    family_variable: Optional[str] = None
    size: float = Field(default=48, gt=0)
    weight: Union[str, int] = "400"
    style: str = "normal"
    color: Optional[str] = None
    color_variable: Optional[str] = None
    align: Optional[Literal["left", "center", "right"]] = None
    line_height: Optional[float] = None
    letter_spacing: Optional[float] = None


class TextContent(CamelModel):
    text: Optional[str] = ""
    variable: Optional[str] = None
    font: FontSpec = Field(default_factory=FontSpec)
    auto_size: Optional[AutoSizeConfig] = None
    text_transform: Optional[Literal["none", "uppercase", "lowercase", "capitalize"]] = None
    line_clamp: Optional[int] = Field(default=None, ge=1)


class ImageFilter(CamelModel):
    brightness: Optional[float] = None
    contrast: Optional[float] = None
    blur: Optional[float] = None
    grayscale: Optional[float] = None


class ImageContent(CamelModel):
    url: Optional[str] = None
    variable: Optional[str] = None
    fit: Optional[Literal["cover", "contain", "fill"]] = None
    position: Optional[str] = Field(default=None, description="object-position keyword")
    border_radius: Optional[Length] = None
    filter: Optional[ImageFilter] = None


class Stroke(CamelModel):
    width: float = 1
    color: str = "#000000"


class ShapeContent(CamelModel):
    shape: Literal["rectangle", "ellipse", "line"] = "rectangle"
    fill: Optional[str] = None
    fill_variable: Optional[str] = None
    stroke: Optional[Stroke] = None
    border_radius: Optional[Length] = None


class GradientStop(CamelModel):
    color: str
    position: float = Field(..., ge=0, le=1)


class GradientContent(CamelModel):
    type: Literal["linear", "radial"] = "linear"
    angle: Optional[float] = None
    stops: List[GradientStop] = Field(default_factory=list)


class Padding(CamelModel):
    top: Optional[float] = None
    right: Optional[float] = None
    bottom: Optional[float] = None
    left: Optional[float] = None


class ContainerContent(CamelModel):
    direction: Literal["row", "column"] = "column"
    justify: Optional[str] = None
    align: Optional[str] = None
    gap: Optional[float] = None
    padding: Optional[Union[float, Padding]] = None
    children: List["Layer"] = Field(default_factory=list)


class LayerBase(CamelModel):
    id: str
    name: Optional[str] = None
    visible: bool = True
    opacity: float = Field(default=1, ge=0, le=1)
    position: Position = Field(default_factory=Position)

    @property
    def z_order(self) -> int:
        return self.position.z_index or 0


class TextLayer(LayerBase):
    type: Literal["text"] = "text"
    content: TextContent = Field(default_factory=TextContent)


class ImageLayer(LayerBase):
    type: Literal["image"] = "image"
    content: ImageContent = Field(default_factory=ImageContent)


class ShapeLayer(LayerBase):
    type: Literal["shape"] = "shape"
    content: ShapeContent = Field(default_factory=ShapeContent)


class GradientLayer(LayerBase):
    type: Literal["gradient"] = "gradient"
    content: GradientContent = Field(default_factory=GradientContent)


class ContainerLayer(LayerBase):
    type: Literal["container"] = "container"
    content: ContainerContent = Field(default_factory=ContainerContent)


Layer = Annotated[
    Union[TextLayer, ImageLayer, ShapeLayer, GradientLayer, ContainerLayer],
    Field(discriminator="type"),
]

ContainerContent.model_rebuild()
ContainerLayer.model_rebuild()


class TemplateMetadata(CamelModel):
    is_system: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class TemplateDefinition(CamelModel):
    id: Optional[str] = None
    slug: Optional[str] = None
    version: str = "1.0.0"
    name: Optional[str] = None
    category: Optional[str] = None
    subcategory: Optional[str] = None
    extends: Optional[str] = Field(default=None, description="Parent template slug; carried, not resolved")
    canvas: Canvas = Field(default_factory=Canvas)
    layers: List[Layer] = Field(default_factory=list)
    variables: List[TemplateVariable] = Field(default_factory=list)
    brand_kit_bindings: Dict[str, str] = Field(default_factory=dict)
    metadata: Optional[TemplateMetadata] = None

    def variable_default(self, name: str) -> Any:
        for variable in self.variables:
            if variable.name == name:
                return variable.default
        return None


class BrandKit(CamelModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    name: Optional[str] = None
    primary_color: Optional[str] = None
    secondary_color: Optional[str] = None
    accent_color: Optional[str] = None
    font_family: Optional[str] = None
    logo_url: Optional[str] = None
    headshot_url: Optional[str] = None
    agent_name: Optional[str] = None
    agent_title: Optional[str] = None
    agent_phone: Optional[str] = None
    agent_email: Optional[str] = None
    brokerage_name: Optional[str] = None
    brokerage_logo_url: Optional[str] = None


class RenderImageInput(CamelModel):
    template: Optional[TemplateDefinition] = None
    variables: Dict[str, Any] = Field(default_factory=dict)
    brand_kit: Optional[BrandKit] = None
    output_format: Optional[str] = None
    quality: int = Field(default=90, ge=1, le=100)
    listing_data: Optional[Dict[str, Any]] = None
    agent_data: Optional[Dict[str, Any]] = None
    life_here_data: Optional[Dict[str, Any]] = None
    width: Optional[int] = Field(default=None, ge=100, le=4096)
    height: Optional[int] = Field(default=None, ge=100, le=4096)


class RenderImageOutput(CamelModel):
    success: bool
    image_base64: Optional[str] = None
    width: int = 0
    height: int = 0
    format: str = "png"
    render_time_ms: int = 0
    render_engine: str = "satori_sharp"
    error: Optional[str] = None
