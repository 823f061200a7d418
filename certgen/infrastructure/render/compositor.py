# certgen/infrastructure/render/compositor.py
"""
Full-fidelity surface renderer.

Draws at the template's native pixel size using the same geometry the editor
preview uses, so the output matches the preview up to the preview scale.
"""
import re
from typing import List, Mapping, Optional, Tuple

import numpy as np
from PIL import Image, ImageChops, ImageColor, ImageDraw

from certgen.config.logger import get_logger
from certgen.domain.errors import FontLoadError, RenderError
from certgen.domain.geometry import (
    PhotoGeometry,
    TextGeometry,
    calculate_fit_dimensions,
    compute_photo_geometry,
    compute_text_geometry,
    crop_rect,
    order_photo_layers,
)
from certgen.domain.models import Surface, TextSpan
from certgen.infrastructure.render.fonts import FontRegistry

logger = get_logger(__name__, "RENDER")

MASK_SUPERSAMPLE = 4
_SPACES = re.compile(r"( )")


def parse_color(value: Optional[str], default: Tuple[int, int, int] = (0, 0, 0)) -> Tuple[int, int, int, int]:
    try:
        rgb = ImageColor.getrgb(value or "")
    except ValueError:
        logger.warning(f"Warna '{value}' tidak valid, memakai hitam.")
        rgb = default
    return rgb if len(rgb) == 4 else (*rgb, 255)


# --- photos ---

def build_mask(mask_type: str, size: Tuple[int, int], radius: float = 0.0) -> Optional[Image.Image]:
    """Anti-aliased ``L`` mask; circle and ellipse both fill the box's inscribed ellipse."""
    if mask_type not in ("circle", "ellipse", "roundedRect"):
        return None
    width, height = size
    big = (width * MASK_SUPERSAMPLE, height * MASK_SUPERSAMPLE)
    mask = Image.new("L", big, 0)
    draw = ImageDraw.Draw(mask)
    box = (0, 0, big[0] - 1, big[1] - 1)
    if mask_type == "roundedRect":
        r = min(radius, width / 2, height / 2) * MASK_SUPERSAMPLE
        draw.rounded_rectangle(box, radius=r, fill=255)
    else:
        draw.ellipse(box, fill=255)
    return mask.resize(size, Image.Resampling.LANCZOS)


def apply_opacity(img: Image.Image, opacity: float) -> Image.Image:
    if opacity >= 1.0:
        return img
    arr = np.array(img.convert("RGBA"))
    arr[..., 3] = np.round(arr[..., 3].astype(np.float32) * max(opacity, 0.0)).astype(np.uint8)
    return Image.fromarray(arr, "RGBA")


def render_photo_tile(photo: Image.Image, geometry: PhotoGeometry) -> Image.Image:
    """The photo cropped, fitted into its box, masked and faded (unrotated)."""
    box_w, box_h = max(1, round(geometry.width)), max(1, round(geometry.height))
    source = photo.convert("RGBA").crop(crop_rect(geometry.crop, *photo.size))

    fit = calculate_fit_dimensions(source.width, source.height, box_w, box_h, geometry.fit_mode)
    fitted = source.resize((max(1, round(fit.width)), max(1, round(fit.height))), Image.Resampling.LANCZOS)
    tile = Image.new("RGBA", (box_w, box_h), (0, 0, 0, 0))
    # negative offsets (cover / none) are clipped to the box by paste
    tile.paste(fitted, (round(fit.offset_x), round(fit.offset_y)))
    fitted.close()
    source.close()

    mask = build_mask(geometry.mask_type, (box_w, box_h), geometry.mask_radius)
    if mask is not None:
        tile.putalpha(ImageChops.multiply(tile.getchannel("A"), mask))
    return apply_opacity(tile, geometry.opacity)


def draw_photo(canvas: Image.Image, photo: Image.Image, geometry: PhotoGeometry) -> None:
    tile = render_photo_tile(photo, geometry)
    if geometry.rotation:
        # positive degrees turn clockwise on screen, Pillow turns counter-clockwise
        tile = tile.rotate(-geometry.rotation, resample=Image.Resampling.BICUBIC, expand=True)
    center_x = geometry.left + geometry.width / 2
    center_y = geometry.top + geometry.height / 2
    dest = (round(center_x - tile.width / 2), round(center_y - tile.height / 2))

    overlay = Image.new("RGBA", canvas.size, (0, 0, 0, 0))
    overlay.paste(tile, dest)
    canvas.alpha_composite(overlay)
    overlay.close()
    tile.close()


# --- text ---

def draw_text(canvas: Image.Image, geometry: TextGeometry, fonts: FontRegistry) -> None:
    draw = ImageDraw.Draw(canvas)
    for line in geometry.lines:
        if not line.runs:
            continue
        metrics = [fonts.metrics(run.font) for run in line.runs]
        ascent = max(m[0] for m in metrics)
        descent = max(m[1] for m in metrics)
        baseline = line.center_y + (ascent - descent) / 2

        extra_per_space = 0.0
        if geometry.text_align == "justify" and not line.is_last_of_paragraph:
            spaces = line.text.count(" ")
            if spaces:
                extra_per_space = max(0.0, geometry.box_width - line.width) / spaces

        x = line.left
        for run in line.runs:
            loaded = fonts.get(run.font)
            fill = parse_color(run.color)
            stroke = max(1, round(run.font.size / 40)) if loaded.synthetic_bold else 0
            pieces = _SPACES.split(run.text) if extra_per_space else [run.text]
            for piece in pieces:
                if not piece:
                    continue
                draw.text((x, baseline), piece, font=loaded.font, fill=fill, anchor="ls",
                          stroke_width=stroke, stroke_fill=fill)
                x += fonts.measure(piece, run.font)
                if piece == " ":
                    x += extra_per_space


# --- surface ---

def compose_surface(
    template: Image.Image,
    surface: Surface,
    texts: Mapping[str, str],
    rich_texts: Optional[Mapping[str, List[TextSpan]]],
    photos: Mapping[str, Image.Image],
    fonts: FontRegistry,
    background: str = "#ffffff",
) -> Image.Image:
    """
    One surface at ``template.size``: background, template image, photos in
    z order, then visible text layers.
    """
    rich_texts = rich_texts or {}
    size = template.size
    try:
        canvas = Image.new("RGBA", size, parse_color(background, (255, 255, 255)))
        base = template.convert("RGBA")
        canvas.alpha_composite(base)
        if base is not template:
            base.close()

        geometries: List[TextGeometry] = [
            compute_text_geometry(layer, texts.get(layer.id, ""), size, fonts.measure, spans=rich_texts.get(layer.id))
            for layer in surface.text_layers
            if layer.is_visible
        ]
        fonts.ensure_loaded(run.font for g in geometries for line in g.lines for run in line.runs)

        for layer in order_photo_layers(surface.photo_layers):
            photo = photos.get(layer.id)
            if photo is None:
                logger.warning(f"Foto untuk layer '{layer.id}' tidak tersedia, dilewati.")
                continue
            draw_photo(canvas, photo, compute_photo_geometry(layer, size))

        for geometry in geometries:
            draw_text(canvas, geometry, fonts)
        return canvas
    except FontLoadError:
        raise
    except (OSError, ValueError, TypeError) as e:
        raise RenderError(f"Render surface gagal: {type(e).__name__}: {e}") from e

