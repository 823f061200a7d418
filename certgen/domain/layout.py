# certgen/domain/layout.py
"""
Layout document editing, migration and (de)serialization.

Surfaces are addressed by key (``"certificate"`` / ``"score"``) through one
accessor/mutator pair; every edit replaces the surface with a modified copy.
"""
import itertools
import time
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional

from pydantic import ValidationError as ModelValidationError

from certgen.config.logger import get_logger
from certgen.config.settings import settings
from certgen.domain.coordinates import (
    CoordinateNormalizer,
    Size,
    clamp,
    default_canvas_size,
    to_percent,
    to_pixels,
    validate_dimensions,
)
from certgen.domain.errors import (
    DuplicateLayerIdError,
    LayerNotFoundError,
    ReservedLayerError,
    ValidationError,
)
from certgen.domain.geometry import Measurer, realign_layer
from certgen.domain.models import (
    LAYOUT_VERSION,
    RESERVED_LAYER_IDS,
    SINGLE_LINE_LAYER_IDS,
    SURFACE_CERTIFICATE,
    SURFACE_KEYS,
    SURFACE_SCORE,
    CanvasSize,
    LayoutDocument,
    PhotoLayer,
    Surface,
    TextLayer,
)
from certgen.domain.rich_text import (
    apply_style_to_range,
    has_inline_formatting,
    plain_text_to_rich_text,
    rich_text_to_plain_text,
    strip_style_override,
)

logger = get_logger(__name__, "LAYOUT")

DESCRIPTION_TEXT = "Penghargaan diberikan kepada yang bersangkutan atas dedikasi dan kontribusinya"
TRANSIENT_KEYS = ("isEditing", "isDragging", "is_editing", "is_dragging")


# --- defaults ---

def _default_layer(layer_id: str, x_pct: float, y_pct: float, width: int, height: int, **style) -> TextLayer:
    x, y = to_pixels(x_pct, y_pct, width, height)
    return TextLayer(id=layer_id, x=x, y=y, x_percent=x_pct, y_percent=y_pct, visible=True, **style)


def initialize_default_layers(width: int, height: int, surface_key: str = SURFACE_CERTIFICATE) -> List[TextLayer]:
    """Starting layers for a freshly configured surface; ``max_width`` is in reference units."""
    validate_dimensions(width, height)
    ref = settings.REFERENCE_CANVAS_WIDTH
    if surface_key == SURFACE_SCORE:
        return [
            _default_layer("name", 0.5, 0.5, width, height, font_size=48, font_weight="bold",
                           text_align="center", max_width=round(ref * 0.8)),
            _default_layer("issue_date", 0.7, 0.85, width, height, font_size=20, max_width=round(ref * 0.2)),
        ]
    return [
        _default_layer("name", 0.5, 0.5, width, height, font_size=48, font_weight="bold",
                       text_align="center", max_width=round(ref * 0.15)),
        _default_layer("certificate_no", 0.1, 0.1, width, height, font_size=26, max_width=round(ref * 0.1)),
        _default_layer("issue_date", 0.7, 0.85, width, height, font_size=26, max_width=round(ref * 0.1)),
        _default_layer("description", 0.5, 0.65, width, height, font_size=30, text_align="center",
                       max_width=round(ref * 0.2), line_height=1.4,
                       default_text=DESCRIPTION_TEXT, use_default_text=True),
    ]


# --- migration ---

def _number(value, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def migrate_layer(raw: Mapping[str, Any], reference_size: Optional[Size] = None) -> TextLayer:
    """
    Upgrade one stored text layer to the current shape.

    Known historical shapes:
      * pixel-only (no ``xPercent``/``yPercent``): fractions derived from the
        pixels over the reference canvas;
      * percentage layers that carried ``fontSizePercent``, some of them with
        positions stored as 0-100 instead of 0-1;
      * the current shape.
    """
    ref_w, ref_h = reference_size or default_canvas_size()
    data = {k: v for k, v in raw.items() if k not in TRANSIENT_KEYS}

    x_pct = data.get("xPercent", data.get("x_percent"))
    y_pct = data.get("yPercent", data.get("y_percent"))

    if x_pct is None or y_pct is None:
        x_pct = _number(data.get("x")) / ref_w if x_pct is None else _number(x_pct)
        y_pct = _number(data.get("y")) / ref_h if y_pct is None else _number(y_pct)
    elif "fontSizePercent" in data or "font_size_percent" in data:
        x_pct, y_pct = _number(x_pct), _number(y_pct)
        if x_pct > 1 or y_pct > 1:
            x_pct, y_pct = x_pct / 100.0, y_pct / 100.0
    else:
        x_pct, y_pct = _number(x_pct), _number(y_pct)

    data.pop("fontSizePercent", None)
    data.pop("font_size_percent", None)
    for key in ("xPercent", "yPercent", "x_percent", "y_percent"):
        data.pop(key, None)
    if not data.get("lineHeight") and not data.get("line_height"):
        data["lineHeight"] = 1.2

    layer = TextLayer.model_validate({**data, "xPercent": x_pct, "yPercent": y_pct})
    if layer.rich_text is not None and layer.has_inline_formatting is None:
        layer = layer.model_copy(update={"has_inline_formatting": has_inline_formatting(layer.rich_text)})
    return layer


def migrate_photo_layer(raw: Mapping[str, Any]) -> PhotoLayer:
    data = {k: v for k, v in raw.items() if k not in TRANSIENT_KEYS}
    return PhotoLayer.model_validate(data)


def _migrate_surface(raw, reference_size: Size) -> Surface:
    if raw is None:
        return Surface()
    if isinstance(raw, list):
        # oldest documents stored only the text layer array
        return Surface(text_layers=[migrate_layer(item, reference_size) for item in raw])
    text = raw.get("textLayers", raw.get("text_layers")) or []
    photos = raw.get("photoLayers", raw.get("photo_layers")) or []
    return Surface(
        text_layers=[migrate_layer(item, reference_size) for item in text],
        photo_layers=[migrate_photo_layer(item) for item in photos],
    )


def load_document(raw: Optional[Mapping[str, Any]], fallback_size: Optional[Size] = None) -> LayoutDocument:
    """Rehydrate a stored layout, migrating every layer; ``None`` yields an empty document."""
    fallback = fallback_size or default_canvas_size()
    if not raw:
        return LayoutDocument(canvas=CanvasSize(width=fallback[0], height=fallback[1]))

    canvas = raw.get("canvas") or {}
    width = canvas.get("width") or raw.get("canvasWidth") or fallback[0]
    height = canvas.get("height") or raw.get("canvasHeight") or fallback[1]
    validate_dimensions(width, height)

    try:
        return LayoutDocument(
            version=LAYOUT_VERSION,
            canvas=CanvasSize(width=int(width), height=int(height)),
            certificate=_migrate_surface(raw.get(SURFACE_CERTIFICATE), fallback),
            score=_migrate_surface(raw[SURFACE_SCORE], fallback) if raw.get(SURFACE_SCORE) else None,
            last_saved_at=raw.get("lastSavedAt") or raw.get("last_saved_at"),
        )
    except ModelValidationError as e:
        first = e.errors()[0]
        loc = ".".join(str(part) for part in first.get("loc", ()))
        raise ValidationError(f"Layout tidak valid: {loc}: {first.get('msg')}", field=loc or None) from e


def dump_document(document: LayoutDocument) -> Dict[str, Any]:
    """JSON-ready layout; editing state and ``textAlign`` of single-line ids are dropped."""
    data = document.model_dump(mode="json", by_alias=True, exclude_none=True)
    for key in SURFACE_KEYS:
        for layer in (data.get(key) or {}).get("textLayers", []):
            if layer.get("id") in SINGLE_LINE_LAYER_IDS:
                layer.pop("textAlign", None)
    return data


def serialize_document(document: LayoutDocument, saved_at: Optional[datetime] = None) -> Dict[str, Any]:
    """``dump_document`` with ``lastSavedAt`` stamped, ready to be stored."""
    return dump_document(document.model_copy(update={"last_saved_at": saved_at or datetime.now(timezone.utc)}))


def validate_layout(document: LayoutDocument) -> Dict[str, Dict[str, List[str]]]:
    """``{"missing": {surface: ids}, "duplicates": {surface: ids}}``, only non-empty entries."""
    missing: Dict[str, List[str]] = {}
    duplicates: Dict[str, List[str]] = {}
    for key, surface in document.surfaces().items():
        ids = [layer.id for layer in surface.text_layers] + [layer.id for layer in surface.photo_layers]
        absent = [rid for rid in RESERVED_LAYER_IDS.get(key, ()) if rid not in ids]
        repeated = sorted({i for i in ids if ids.count(i) > 1})
        if absent:
            missing[key] = absent
        if repeated:
            duplicates[key] = repeated
    return {"missing": missing, "duplicates": duplicates}


def assert_valid_layout(document: LayoutDocument) -> None:
    problems = validate_layout(document)
    for key, ids in problems["duplicates"].items():
        raise DuplicateLayerIdError(f"Layer id '{ids[0]}' muncul lebih dari sekali di surface '{key}'.", field=ids[0])
    for key, ids in problems["missing"].items():
        raise ValidationError(f"Layer wajib {', '.join(ids)} tidak ada di surface '{key}'.", field=ids[0])


# --- editor ---

class LayoutEditor:
    """In-memory editing session over one ``LayoutDocument``."""

    def __init__(
        self,
        document: Optional[LayoutDocument] = None,
        measure: Optional[Measurer] = None,
        clock: Callable[[], float] = time.time,
    ):
        self.document = document or load_document(None)
        self.measure = measure
        self.normalizer = CoordinateNormalizer()
        self._clock = clock

    # --- surface access ---

    def surface(self, key: str) -> Surface:
        if key not in SURFACE_KEYS:
            raise ValidationError(f"Unknown surface '{key}'.", field="surface")
        found = self.document.surfaces().get(key)
        if found is None:
            raise ValidationError(f"Template ini tidak memiliki surface '{key}'.", field="surface")
        return found

    def _set_surface(self, key: str, surface: Surface) -> None:
        self.document = self.document.model_copy(update={key: surface})

    def _set_text_layers(self, key: str, layers: List[TextLayer]) -> None:
        self._set_surface(key, self.surface(key).model_copy(update={"text_layers": layers}))

    def _set_photo_layers(self, key: str, layers: List[PhotoLayer]) -> None:
        self._set_surface(key, self.surface(key).model_copy(update={"photo_layers": layers}))

    def size_of(self, key: str) -> Size:
        known = self.normalizer.last_normalized_size.get(key)
        if known:
            return known
        if key == SURFACE_CERTIFICATE:
            return self.document.canvas.width, self.document.canvas.height
        return default_canvas_size()

    def text_layer(self, key: str, layer_id: str) -> TextLayer:
        layer = self.surface(key).find_text_layer(layer_id)
        if layer is None:
            raise LayerNotFoundError(f"Layer '{layer_id}' tidak ditemukan di surface '{key}'.", field=layer_id)
        return layer

    def photo_layer(self, key: str, layer_id: str) -> PhotoLayer:
        layer = self.surface(key).find_photo_layer(layer_id)
        if layer is None:
            raise LayerNotFoundError(f"Photo layer '{layer_id}' tidak ditemukan di surface '{key}'.", field=layer_id)
        return layer

    def _replace_text_layer(self, key: str, updated: TextLayer, old_id: Optional[str] = None) -> TextLayer:
        target = old_id or updated.id
        self._set_text_layers(key, [updated if layer.id == target else layer for layer in self.surface(key).text_layers])
        return updated

    # --- image lifecycle ---

    def on_image_ready(self, key: str, width: int, height: int) -> List[TextLayer]:
        """
        Single callback for a surface image whose size became known, whether it
        came from cache or finished loading later.
        """
        validate_dimensions(width, height)
        if key == SURFACE_SCORE:
            self.ensure_score_surface()
        if key == SURFACE_CERTIFICATE:
            self.document = self.document.model_copy(update={"canvas": CanvasSize(width=int(width), height=int(height))})

        layers = self.surface(key).text_layers
        if not layers:
            self.normalizer.last_normalized_size[key] = (width, height)
            self._set_text_layers(key, initialize_default_layers(width, height, key))
            logger.info(f"Surface '{key}' kosong, layer default dibuat untuk {width}x{height}.")
        else:
            normalized = self.normalizer.normalize(key, layers, width, height)
            if normalized is not layers:
                self._set_text_layers(key, normalized)
        return self.surface(key).text_layers

    def ensure_score_surface(self) -> Surface:
        if self.document.score is None:
            width, height = default_canvas_size()
            self.document = self.document.model_copy(
                update={"score": Surface(text_layers=initialize_default_layers(width, height, SURFACE_SCORE))}
            )
        return self.document.score

    def remove_score_surface(self) -> None:
        self.document = self.document.model_copy(update={"score": None})
        self.normalizer.forget(SURFACE_SCORE)

    # --- text layers ---

    def _new_layer_id(self, key: str, prefix: str) -> str:
        base = int(self._clock() * 1000)
        surface = self.surface(key)
        for n in itertools.count():
            candidate = f"{prefix}_{base + n}"
            if not surface.has_layer_id(candidate):
                return candidate

    def add_text_layer(self, key: str, layer_id: Optional[str] = None, **fields) -> TextLayer:
        surface = self.surface(key)
        layer_id = (layer_id or "").strip() or self._new_layer_id(key, "custom")
        if surface.has_layer_id(layer_id):
            raise DuplicateLayerIdError(f"Layer id '{layer_id}' sudah ada di surface '{key}'.", field=layer_id)

        width, height = self.size_of(key)
        x_pct = fields.pop("x_percent", 0.25)
        y_pct = fields.pop("y_percent", 0.2)
        x, y = to_pixels(x_pct, y_pct, width, height)
        defaults = {
            "font_size": 32,
            "text_align": "center" if key == SURFACE_SCORE else "left",
            "max_width": 400,
            "line_height": 1.2,
        }
        layer = TextLayer(id=layer_id, x=x, y=y, x_percent=x_pct, y_percent=y_pct, **{**defaults, **fields})
        self._set_text_layers(key, surface.text_layers + [layer])
        return layer

    def remove_text_layer(self, key: str, layer_id: str) -> None:
        if layer_id in RESERVED_LAYER_IDS.get(key, ()):
            raise ReservedLayerError(f"Layer '{layer_id}' wajib dan tidak bisa dihapus, hanya disembunyikan.", field=layer_id)
        self.text_layer(key, layer_id)
        self._set_text_layers(key, [layer for layer in self.surface(key).text_layers if layer.id != layer_id])

    def rename_text_layer(self, key: str, old_id: str, new_id: str) -> TextLayer:
        new_id = (new_id or "").strip()
        layer = self.text_layer(key, old_id)
        if not new_id or new_id == old_id:
            return layer
        if old_id in RESERVED_LAYER_IDS.get(key, ()):
            raise ReservedLayerError(f"Layer '{old_id}' wajib dan tidak bisa diganti namanya.", field=old_id)
        if self.surface(key).has_layer_id(new_id):
            raise DuplicateLayerIdError(f"Layer id '{new_id}' sudah ada di surface '{key}'.", field=new_id)
        return self._replace_text_layer(key, layer.model_copy(update={"id": new_id}), old_id=old_id)

    def toggle_visibility(self, key: str, layer_id: str) -> TextLayer:
        layer = self.text_layer(key, layer_id)
        return self._replace_text_layer(key, layer.model_copy(update={"visible": not layer.is_visible}))

    def update_text_layer(self, key: str, layer_id: str, **updates) -> TextLayer:
        """
        Patch a layer. Alignment changes keep the visual center, a layer font
        size change drops per-span size overrides, and whichever of the pixel or
        percent position is given is mirrored into the other.
        """
        layer = self.text_layer(key, layer_id)
        width, height = self.size_of(key)

        new_align = updates.pop("text_align", None)
        if "font_size" in updates and layer.rich_text:
            updates["rich_text"] = strip_style_override(layer.rich_text, "font_size")
        if "rich_text" in updates and updates["rich_text"] is not None:
            updates["has_inline_formatting"] = has_inline_formatting(updates["rich_text"])

        if "x_percent" in updates or "y_percent" in updates:
            x_pct = updates.get("x_percent", layer.x_percent)
            y_pct = updates.get("y_percent", layer.y_percent)
            updates["x"], updates["y"] = to_pixels(x_pct, y_pct, width, height)
        elif "x" in updates or "y" in updates:
            updates["x_percent"], updates["y_percent"] = to_percent(
                updates.get("x", layer.x), updates.get("y", layer.y), width, height
            )

        updated = layer.model_copy(update=updates)
        if new_align is not None and new_align != (layer.text_align or "left"):
            if self.measure is None:
                updated = updated.model_copy(update={"text_align": new_align})
            else:
                updated = realign_layer(updated, new_align, (width, height), self.measure)
        elif new_align is not None:
            updated = updated.model_copy(update={"text_align": new_align})
        return self._replace_text_layer(key, updated)

    def set_layer_text(self, key: str, layer_id: str, text: str) -> TextLayer:
        """Replace a layer's fixed text; inline formatting is reset to the layer style."""
        layer = self.text_layer(key, layer_id)
        return self._replace_text_layer(key, layer.model_copy(update={
            "default_text": text, "rich_text": None, "has_inline_formatting": False,
        }))

    def apply_inline_style(self, key: str, layer_id: str, start: int, end: int, patch: Dict[str, Any]) -> TextLayer:
        layer = self.text_layer(key, layer_id)
        spans = layer.rich_text or plain_text_to_rich_text(layer.default_text or "")
        styled = apply_style_to_range(spans, start, end, patch)
        return self._replace_text_layer(key, layer.model_copy(update={
            "rich_text": styled,
            "default_text": rich_text_to_plain_text(styled),
            "has_inline_formatting": has_inline_formatting(styled),
        }))

    def move_text_layer(self, key: str, layer_id: str, x: float, y: float) -> TextLayer:
        layer = self.text_layer(key, layer_id)
        width, height = self.size_of(key)
        x, y = clamp(x, 0, width), clamp(y, 0, height)
        x_pct, y_pct = to_percent(x, y, width, height)
        return self._replace_text_layer(key, layer.model_copy(update={
            "x": x, "y": y, "x_percent": x_pct, "y_percent": y_pct,
        }))

    # --- photo layers ---

    def add_photo_layer(self, key: str, src: str, natural_size: Optional[Size] = None,
                        layer_id: Optional[str] = None, **fields) -> PhotoLayer:
        surface = self.surface(key)
        layer_id = (layer_id or "").strip() or self._new_layer_id(key, "photo")
        if surface.has_layer_id(layer_id):
            raise DuplicateLayerIdError(f"Layer id '{layer_id}' sudah ada di surface '{key}'.", field=layer_id)

        width_pct = fields.pop("width_percent", 0.2)
        if "height_percent" not in fields:
            if natural_size:
                nat_w, nat_h = validate_dimensions(*natural_size)
                width, height = self.size_of(key)
                # keep the photo's own aspect ratio on this surface
                fields["height_percent"] = width_pct * width * (nat_h / nat_w) / height
            else:
                fields["height_percent"] = width_pct
        z_index = fields.pop("z_index", max((p.z_index for p in surface.photo_layers), default=-1) + 1)
        layer = PhotoLayer(id=layer_id, src=src, width_percent=width_pct, z_index=z_index, **fields)
        self._set_photo_layers(key, surface.photo_layers + [layer])
        return layer

    def update_photo_layer(self, key: str, layer_id: str, **updates) -> PhotoLayer:
        layer = self.photo_layer(key, layer_id)
        if updates.get("maintain_aspect_ratio", layer.maintain_aspect_ratio) and "width_percent" in updates \
                and "height_percent" not in updates and layer.width_percent:
            updates["height_percent"] = layer.height_percent * updates["width_percent"] / layer.width_percent
        updated = PhotoLayer.model_validate({**layer.model_dump(), **updates})
        self._set_photo_layers(key, [updated if p.id == layer_id else p for p in self.surface(key).photo_layers])
        return updated

    def remove_photo_layer(self, key: str, layer_id: str) -> None:
        self.photo_layer(key, layer_id)
        self._set_photo_layers(key, [p for p in self.surface(key).photo_layers if p.id != layer_id])

    # --- persistence ---

    def serialize(self, saved_at: Optional[datetime] = None) -> Dict[str, Any]:
        return serialize_document(self.document, saved_at)
