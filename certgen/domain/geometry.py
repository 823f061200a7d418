# certgen/domain/geometry.py
"""
Shared geometry for the editor preview and the exported raster.

Both paths call the same functions; the only difference is the scale factor.
Export uses ``render_scale = W / B`` (``B`` is the reference canvas width the
layer font sizes are expressed in), the preview composes an extra
``preview_scale = container_width / W`` on top.

Text metrics are supplied by the caller as a ``Measurer``
(``measure(text, FontSpec) -> width in px``) so this module never touches a
font file.
"""
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from certgen.config.settings import settings
from certgen.domain.coordinates import Size, clamp, validate_dimensions
from certgen.domain.models import PhotoCrop, PhotoLayer, TextLayer, TextSpan
from certgen.domain.rich_text import extract_spans_for_range, plain_text_to_rich_text

ELLIPSIS = "…"
DEFAULT_MASK_RADIUS = 10.0

# fraction of the box width subtracted from the anchor x to reach the box's left edge
ANCHOR_OFFSETS: Dict[str, float] = {"left": 0.0, "center": -0.5, "right": -1.0}
# where a line sits inside the box, as a fraction of the unused width
LINE_OFFSETS: Dict[str, float] = {"left": 0.0, "center": 0.5, "right": 1.0, "justify": 0.0}


@dataclass(frozen=True)
class FontSpec:
    family: str
    weight: str
    size: float

    @property
    def is_bold(self) -> bool:
        return str(self.weight).lower() in ("bold", "bolder", "600", "700", "800", "900")


Measurer = Callable[[str, FontSpec], float]


@dataclass
class StyledRun:
    text: str
    font: FontSpec
    color: str
    width: float


@dataclass
class LaidOutLine:
    runs: List[StyledRun]
    width: float
    left: float = 0.0
    center_y: float = 0.0
    is_last_of_paragraph: bool = True

    @property
    def text(self) -> str:
        return "".join(run.text for run in self.runs)


@dataclass
class TextGeometry:
    layer_id: str
    anchor: str
    text_align: str
    anchor_x: float
    anchor_y: float
    scale: float
    font_size: float
    max_width: Optional[float]
    line_height_px: float
    box_left: float
    box_top: float
    box_width: float
    box_height: float
    lines: List[LaidOutLine] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(line.text for line in self.lines)


@dataclass
class FitBox:
    width: float
    height: float
    offset_x: float
    offset_y: float


@dataclass
class PhotoGeometry:
    layer_id: str
    left: float
    top: float
    width: float
    height: float
    rotation: float
    opacity: float
    fit_mode: str
    mask_type: str
    mask_radius: float
    crop: Optional[PhotoCrop]

    @property
    def box(self) -> Tuple[float, float, float, float]:
        return self.left, self.top, self.left + self.width, self.top + self.height


# --- scale ---

def render_scale(surface_width, reference_width: Optional[float] = None) -> float:
    validate_dimensions(surface_width, 1)
    return surface_width / float(reference_width or settings.REFERENCE_CANVAS_WIDTH)


def preview_scale(container_width, surface_width) -> float:
    validate_dimensions(surface_width, container_width)
    return container_width / float(surface_width)


def anchor_for(layer: TextLayer) -> str:
    """Horizontal anchor of the stored coordinate; single-line ids are always left."""
    if layer.is_single_line:
        return "left"
    align = layer.text_align or "left"
    return align if align in ANCHOR_OFFSETS else "left"


def scaled_font(layer: TextLayer, span: Optional[TextSpan], scale: float) -> FontSpec:
    size = span.font_size if span is not None and span.font_size is not None else layer.font_size
    return FontSpec(
        family=(span.font_family if span is not None and span.font_family else layer.font_family),
        weight=(span.font_weight if span is not None and span.font_weight else layer.font_weight),
        size=size * scale,
    )


# --- wrapping ---

def _measure_range(spans: Sequence[TextSpan], start: int, end: int, layer: TextLayer, scale: float,
                   measure: Measurer) -> float:
    return sum(measure(s.text, scaled_font(layer, s, scale)) for s in extract_spans_for_range(list(spans), start, end))


def wrap_ranges(text: str, max_width: Optional[float], measure_range: Callable[[int, int], float]) -> List[Tuple[int, int, bool]]:
    """
    Greedy word wrap over character offsets.

    Returns ``(start, end, ends_paragraph)`` per line. Explicit newlines always
    break; without ``max_width`` nothing else does. A single word wider than the
    box stays on its own line rather than being split.
    """
    ranges: List[Tuple[int, int, bool]] = []
    offset = 0
    for paragraph in text.split("\n"):
        words: List[Tuple[int, int]] = []
        cursor = offset
        for word in paragraph.split(" "):
            words.append((cursor, cursor + len(word)))
            cursor += len(word) + 1

        line_start, line_end = words[0]
        for start, end in words[1:]:
            if max_width is not None and measure_range(line_start, end) > max_width:
                ranges.append((line_start, line_end, False))
                line_start = start
            line_end = end
        ranges.append((line_start, line_end, True))
        offset += len(paragraph) + 1
    return ranges


def wrap_lines(text: str, max_width: Optional[float], measure: Callable[[str], float]) -> List[str]:
    """Plain-string convenience wrapper around ``wrap_ranges``."""
    return [text[s:e] for s, e, _ in wrap_ranges(text, max_width, lambda s, e: measure(text[s:e]))]


def _runs_for(spans: Sequence[TextSpan], start: int, end: int, layer: TextLayer, scale: float,
              measure: Measurer) -> List[StyledRun]:
    runs = []
    for span in extract_spans_for_range(list(spans), start, end):
        font = scaled_font(layer, span, scale)
        runs.append(StyledRun(text=span.text, font=font, color=span.color or layer.color,
                              width=measure(span.text, font)))
    return runs


def _truncate(spans: Sequence[TextSpan], text: str, max_width: float, layer: TextLayer, scale: float,
              measure: Measurer) -> List[StyledRun]:
    """Cut a single line to ``max_width`` and end it with an ellipsis in the last run's style."""
    end = len(text)
    runs = _runs_for(spans, 0, end, layer, scale, measure)
    if sum(r.width for r in runs) <= max_width:
        return runs
    while end > 0:
        end -= 1
        runs = _runs_for(spans, 0, end, layer, scale, measure)
        last = runs[-1] if runs else None
        font = last.font if last else scaled_font(layer, None, scale)
        color = last.color if last else layer.color
        ellipsis = StyledRun(text=ELLIPSIS, font=font, color=color, width=measure(ELLIPSIS, font))
        if sum(r.width for r in runs) + ellipsis.width <= max_width:
            return runs + [ellipsis]
    font = scaled_font(layer, None, scale)
    return [StyledRun(text=ELLIPSIS, font=font, color=layer.color, width=measure(ELLIPSIS, font))]


# --- text ---

def compute_text_geometry(
    layer: TextLayer,
    text: str,
    size: Size,
    measure: Measurer,
    spans: Optional[List[TextSpan]] = None,
    preview_width: Optional[float] = None,
    reference_width: Optional[float] = None,
) -> TextGeometry:
    """
    Box, lines and anchor point of one text layer on a ``size`` surface.

    ``spans`` (rich text) take precedence over ``text`` when given; their plain
    text must equal ``text``. With ``preview_width`` the result is in preview
    pixels, otherwise in native surface pixels.
    """
    width, height = validate_dimensions(*size)
    p_scale = preview_scale(preview_width, width) if preview_width else 1.0
    scale = render_scale(width, reference_width) * p_scale

    if spans:
        text = "".join(s.text for s in spans)
    else:
        spans = plain_text_to_rich_text(text)

    anchor = anchor_for(layer)
    text_align = "left" if layer.is_single_line else (layer.text_align or "left")
    font_size = layer.font_size * scale
    line_height_px = font_size * (layer.line_height or 1.2)
    max_width = layer.max_width * scale if layer.max_width else None

    def measure_range(start: int, end: int) -> float:
        return _measure_range(spans, start, end, layer, scale, measure)

    if layer.is_single_line:
        flat = text.replace("\n", " ")
        flat_spans = [s.model_copy(update={"text": s.text.replace("\n", " ")}) for s in spans]
        runs = (_truncate(flat_spans, flat, max_width, layer, scale, measure) if max_width
                else _runs_for(flat_spans, 0, len(flat), layer, scale, measure))
        lines = [LaidOutLine(runs=runs, width=sum(r.width for r in runs))]
    else:
        lines = [
            LaidOutLine(
                runs=_runs_for(spans, start, end, layer, scale, measure),
                width=measure_range(start, end),
                is_last_of_paragraph=last,
            )
            for start, end, last in wrap_ranges(text, max_width, measure_range)
        ]

    box_width = max((line.width for line in lines), default=0.0)
    if text_align == "justify" and max_width and len(lines) > 1:
        box_width = max(box_width, max_width)
    box_height = len(lines) * line_height_px

    anchor_x = layer.x_percent * width * p_scale
    anchor_y = layer.y_percent * height * p_scale
    box_left = anchor_x + ANCHOR_OFFSETS[anchor] * box_width
    box_top = anchor_y - box_height / 2

    for index, line in enumerate(lines):
        line.left = box_left + (box_width - line.width) * LINE_OFFSETS.get(text_align, 0.0)
        line.center_y = box_top + (index + 0.5) * line_height_px

    return TextGeometry(
        layer_id=layer.id,
        anchor=anchor,
        text_align=text_align,
        anchor_x=anchor_x,
        anchor_y=anchor_y,
        scale=scale,
        font_size=font_size,
        max_width=max_width,
        line_height_px=line_height_px,
        box_left=box_left,
        box_top=box_top,
        box_width=box_width,
        box_height=box_height,
        lines=lines,
    )


def measure_layer_width(layer: TextLayer, size: Size, measure: Measurer, text: Optional[str] = None) -> float:
    """Width of the widest rendered line at display scale, in native surface pixels."""
    content = text if text is not None else (layer.template_text() or layer.id)
    spans = layer.rich_text if text is None and layer.rich_text else None
    return compute_text_geometry(layer, content, size, measure, spans=spans).box_width


def realign_layer(layer: TextLayer, new_align: str, size: Size, measure: Measurer,
                  text: Optional[str] = None) -> TextLayer:
    """
    Change ``text_align`` while keeping the text's visual center where it was.

    Single-line ids only record the new value; they stay left-anchored so their
    position never moves.
    """
    if layer.is_single_line:
        return layer.model_copy(update={"text_align": new_align})

    width, height = validate_dimensions(*size)
    box_width = measure_layer_width(layer, size, measure, text)
    old_offset = ANCHOR_OFFSETS[anchor_for(layer)]
    new_offset = ANCHOR_OFFSETS.get(new_align, 0.0)

    x = layer.x_percent * width
    center = x + (old_offset + 0.5) * box_width
    new_x = clamp(center - (new_offset + 0.5) * box_width, 0, width)
    return layer.model_copy(update={
        "text_align": new_align,
        "x": new_x,
        "x_percent": new_x / width,
        "y": layer.y_percent * height,
    })


# --- photos ---

def order_photo_layers(layers: Sequence[PhotoLayer]) -> List[PhotoLayer]:
    """Ascending ``z_index``; ``sorted`` is stable so ties keep insertion order."""
    return sorted(layers, key=lambda layer: layer.z_index)


def calculate_fit_dimensions(source_width: float, source_height: float, target_width: float,
                             target_height: float, fit_mode: str) -> FitBox:
    if fit_mode == "fill" or source_width <= 0 or source_height <= 0:
        return FitBox(target_width, target_height, 0.0, 0.0)
    if fit_mode == "none":
        return FitBox(source_width, source_height,
                      (target_width - source_width) / 2, (target_height - source_height) / 2)

    source_aspect = source_width / source_height
    target_aspect = target_width / target_height
    wider = source_aspect > target_aspect
    if (fit_mode == "contain") == wider:
        scaled_height = target_width / source_aspect
        return FitBox(target_width, scaled_height, 0.0, (target_height - scaled_height) / 2)
    scaled_width = target_height * source_aspect
    return FitBox(scaled_width, target_height, (target_width - scaled_width) / 2, 0.0)


def crop_rect(crop: Optional[PhotoCrop], source_width: int, source_height: int) -> Tuple[int, int, int, int]:
    """Pixel box ``(left, top, right, bottom)`` of a normalised crop, clamped to the source."""
    if crop is None:
        return 0, 0, source_width, source_height
    left = clamp(crop.x, 0.0, 1.0) * source_width
    top = clamp(crop.y, 0.0, 1.0) * source_height
    right = clamp(crop.x + crop.width, 0.0, 1.0) * source_width
    bottom = clamp(crop.y + crop.height, 0.0, 1.0) * source_height
    if right - left < 1 or bottom - top < 1:
        return 0, 0, source_width, source_height
    return int(round(left)), int(round(top)), int(round(right)), int(round(bottom))


def compute_photo_geometry(
    layer: PhotoLayer,
    size: Size,
    preview_width: Optional[float] = None,
    reference_width: Optional[float] = None,
) -> PhotoGeometry:
    width, height = validate_dimensions(*size)
    p_scale = preview_scale(preview_width, width) if preview_width else 1.0
    mask_type = layer.mask.type if layer.mask else "none"
    radius = (layer.mask.border_radius if layer.mask and layer.mask.border_radius else DEFAULT_MASK_RADIUS)
    return PhotoGeometry(
        layer_id=layer.id,
        left=layer.x_percent * width * p_scale,
        top=layer.y_percent * height * p_scale,
        width=layer.width_percent * width * p_scale,
        height=layer.height_percent * height * p_scale,
        rotation=layer.rotation,
        opacity=clamp(layer.opacity, 0.0, 1.0),
        fit_mode=layer.fit_mode,
        mask_type=mask_type,
        mask_radius=radius * render_scale(width, reference_width) * p_scale,
        crop=layer.crop,
    )
