# certgen/infrastructure/render/exporter.py
from dataclasses import dataclass
from io import BytesIO
from typing import List, Mapping, Optional, Tuple

from PIL import Image

from certgen.config.logger import get_logger
from certgen.config.settings import settings
from certgen.domain.errors import RenderError
from certgen.domain.models import Surface, TextSpan
from certgen.infrastructure.render.compositor import compose_surface
from certgen.infrastructure.render.fallback import draw_fallback
from certgen.infrastructure.render.fonts import FontRegistry

logger = get_logger(__name__, "EXPORT")


@dataclass
class RenderedSurface:
    image: Image.Image
    degraded: bool = False

    def close(self) -> None:
        self.image.close()


def encode_image(img: Image.Image, fmt: Optional[str] = None, quality: Optional[int] = None) -> Tuple[bytes, str]:
    """Encoded bytes and the normalised format name (``jpg`` / ``png`` / ...)."""
    fmt = (fmt or settings.SAVE_FORMAT or "jpg").lower()
    quality = quality or settings.JPEG_QUALITY
    if fmt in ("jpg", "jpeg"):
        fmt = "jpg"
        # JPEG can't have alpha
        if img.mode != "RGB":
            img = img.convert("RGB")
        save_kwargs = dict(format="JPEG", quality=quality, optimize=True)
    elif fmt == "png":
        save_kwargs = dict(format="PNG", optimize=True)
    else:
        save_kwargs = dict(format=fmt.upper())

    buf = BytesIO()
    img.save(buf, **save_kwargs)
    return buf.getvalue(), fmt


class RasterExporter:
    """Renders one surface for one recipient, dropping to the direct-draw path when needed."""

    def __init__(self, fonts: Optional[FontRegistry] = None):
        self.fonts = fonts or FontRegistry()

    def render_surface(
        self,
        template: Optional[Image.Image],
        surface: Surface,
        texts: Mapping[str, str],
        rich_texts: Optional[Mapping[str, List[TextSpan]]] = None,
        photos: Optional[Mapping[str, Image.Image]] = None,
        fallback_size: Optional[Tuple[int, int]] = None,
        label: str = "",
    ) -> RenderedSurface:
        if template is None:
            size = fallback_size or (settings.REFERENCE_CANVAS_WIDTH, settings.REFERENCE_CANVAS_HEIGHT)
            logger.warning(f"{label}: gambar template tidak tersedia, memakai render fallback {size[0]}x{size[1]}.")
        else:
            size = template.size
            try:
                return RenderedSurface(compose_surface(template, surface, texts, rich_texts, photos or {}, self.fonts))
            except RenderError as e:
                logger.warning(f"{label}: render utama gagal ({e.detail}), memakai render fallback.")

        try:
            return RenderedSurface(draw_fallback(template, size, surface, texts, self.fonts), degraded=True)
        except (OSError, ValueError, TypeError) as e:
            raise RenderError(f"Render fallback juga gagal: {type(e).__name__}: {e}") from e
