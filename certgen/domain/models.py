# certgen/domain/models.py
from datetime import datetime
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

LAYOUT_VERSION = "1.0"

SURFACE_CERTIFICATE = "certificate"
SURFACE_SCORE = "score"
SURFACE_KEYS = (SURFACE_CERTIFICATE, SURFACE_SCORE)

# Reserved layer ids per surface; these can be hidden but never deleted.
RESERVED_LAYER_IDS: Dict[str, tuple] = {
    SURFACE_CERTIFICATE: ("name", "certificate_no", "issue_date"),
    SURFACE_SCORE: ("issue_date",),
}
# Always left-anchored, never wrap.
SINGLE_LINE_LAYER_IDS = ("certificate_no", "issue_date")
# Supplied by the caller at generation time, never read from a record or auto-mapped.
CALLER_DATE_FIELDS = ("issue_date", "expired_date")

TextAlign = Literal["left", "center", "right", "justify"]
FitMode = Literal["contain", "cover", "fill", "none"]
MaskType = Literal["none", "circle", "ellipse", "roundedRect"]
STYLE_FIELDS = ("font_weight", "font_family", "font_size", "color")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TextSpan(CamelModel):
    """One styled run of a layer's text. Unset style fields inherit from the layer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    text: str
    font_weight: Optional[str] = None
    font_family: Optional[str] = None
    font_size: Optional[float] = None
    color: Optional[str] = None

    def style(self) -> Dict[str, object]:
        return {f: getattr(self, f) for f in STYLE_FIELDS}


class TextLayer(CamelModel):
    id: str
    x: float = 0.0
    y: float = 0.0
    x_percent: float = 0.0
    y_percent: float = 0.0
    font_size: float = 32
    font_family: str = "Arial"
    font_weight: str = "normal"
    color: str = "#000000"
    text_align: Optional[TextAlign] = None
    max_width: Optional[float] = None
    line_height: Optional[float] = 1.2
    visible: Optional[bool] = True
    default_text: Optional[str] = None
    use_default_text: Optional[bool] = None
    rich_text: Optional[List[TextSpan]] = None
    has_inline_formatting: Optional[bool] = None

    # editing state, never persisted
    is_editing: bool = Field(default=False, exclude=True)
    is_dragging: bool = Field(default=False, exclude=True)

    @property
    def is_visible(self) -> bool:
        return self.visible is not False

    @property
    def is_single_line(self) -> bool:
        return self.id in SINGLE_LINE_LAYER_IDS

    def base_style(self) -> Dict[str, object]:
        return {
            "font_weight": self.font_weight,
            "font_family": self.font_family,
            "font_size": self.font_size,
            "color": self.color,
        }

    def template_text(self) -> str:
        """The text an operator typed into the layer (not the per-recipient value)."""
        if self.rich_text:
            return "".join(span.text for span in self.rich_text)
        return self.default_text or ""


class PhotoMask(CamelModel):
    type: MaskType = "none"
    border_radius: Optional[float] = None


class PhotoCrop(CamelModel):
    x: float = 0.0
    y: float = 0.0
    width: float = 1.0
    height: float = 1.0


class PhotoLayer(CamelModel):
    id: str
    src: str
    storage_path: Optional[str] = None
    x_percent: float = 0.5
    y_percent: float = 0.3
    width_percent: float = 0.2
    height_percent: float = 0.2
    z_index: int = 0
    fit_mode: FitMode = "fill"
    opacity: float = Field(default=1.0, ge=0.0, le=1.0)
    rotation: float = 0.0
    maintain_aspect_ratio: bool = False
    mask: Optional[PhotoMask] = None
    crop: Optional[PhotoCrop] = None


class Surface(CamelModel):
    text_layers: List[TextLayer] = Field(default_factory=list)
    photo_layers: List[PhotoLayer] = Field(default_factory=list)

    def find_text_layer(self, layer_id: str) -> Optional[TextLayer]:
        return next((layer for layer in self.text_layers if layer.id == layer_id), None)

    def find_photo_layer(self, layer_id: str) -> Optional[PhotoLayer]:
        return next((layer for layer in self.photo_layers if layer.id == layer_id), None)

    def has_layer_id(self, layer_id: str) -> bool:
        return self.find_text_layer(layer_id) is not None or self.find_photo_layer(layer_id) is not None


class CanvasSize(CamelModel):
    width: int
    height: int


class LayoutDocument(CamelModel):
    version: str = LAYOUT_VERSION
    canvas: CanvasSize
    certificate: Surface = Field(default_factory=Surface)
    score: Optional[Surface] = None
    last_saved_at: Optional[datetime] = None

    @property
    def is_dual(self) -> bool:
        return self.score is not None

    def surfaces(self) -> Dict[str, Surface]:
        found = {SURFACE_CERTIFICATE: self.certificate}
        if self.score is not None:
            found[SURFACE_SCORE] = self.score
        return found
