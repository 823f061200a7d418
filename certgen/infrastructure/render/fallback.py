# certgen/infrastructure/render/fallback.py
"""
Degraded direct-draw renderer, used when the full compositor fails.

Each visible layer is drawn as one left-anchored line at its stored position
with the scaled font size; alignment anchors, wrapping, inline formatting and
photos are not reproduced.
"""
from typing import Mapping, Optional, Tuple

from PIL import Image, ImageDraw

from certgen.domain.geometry import FontSpec, render_scale
from certgen.domain.models import Surface
from certgen.infrastructure.render.compositor import parse_color
from certgen.infrastructure.render.fonts import FontRegistry


def draw_fallback(
    template: Optional[Image.Image],
    size: Tuple[int, int],
    surface: Surface,
    texts: Mapping[str, str],
    fonts: FontRegistry,
    background: str = "#ffffff",
) -> Image.Image:
    width, height = size
    canvas = Image.new("RGB", (width, height), parse_color(background, (255, 255, 255))[:3])
    if template is not None:
        resized = template.convert("RGB").resize((width, height), Image.Resampling.LANCZOS)
        canvas.paste(resized, (0, 0))
        resized.close()

    scale = render_scale(width)
    draw = ImageDraw.Draw(canvas)
    for layer in surface.text_layers:
        text = texts.get(layer.id, "")
        if not layer.is_visible or not text:
            continue
        spec = FontSpec(layer.font_family, layer.font_weight, layer.font_size * scale)
        draw.text(
            (layer.x_percent * width, layer.y_percent * height),
            text.replace("\n", " "),
            font=fonts.get(spec).font,
            fill=parse_color(layer.color)[:3],
            anchor="lm",
        )
    return canvas
