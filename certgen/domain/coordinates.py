# certgen/domain/coordinates.py
"""
Pixel <-> fractional coordinate conversion.

Fractions (``x_percent`` / ``y_percent`` in 0..1) are the durable position of a
text layer; ``x`` / ``y`` are a cached projection onto whatever image currently
backs the surface and are recomputed whenever that image's size changes.
"""
import math
from typing import Dict, List, Optional, Tuple

from certgen.config.logger import get_logger
from certgen.config.settings import settings
from certgen.domain.errors import InvalidDimensionsError
from certgen.domain.models import TextLayer

logger = get_logger(__name__, "COORD")

Size = Tuple[int, int]


def default_canvas_size() -> Size:
    return settings.REFERENCE_CANVAS_WIDTH, settings.REFERENCE_CANVAS_HEIGHT


def validate_dimensions(width, height) -> Size:
    for label, value in (("width", width), ("height", height)):
        if value is None or isinstance(value, bool):
            raise InvalidDimensionsError(f"Surface {label} is missing.", field=label)
        try:
            number = float(value)
        except (TypeError, ValueError) as e:
            raise InvalidDimensionsError(f"Surface {label} must be a number, got {value!r}.", field=label) from e
        if not math.isfinite(number) or number <= 0:
            raise InvalidDimensionsError(f"Surface {label} must be a positive finite number, got {value!r}.", field=label)
    return width, height


def to_percent(x: float, y: float, surface_width, surface_height) -> Tuple[float, float]:
    validate_dimensions(surface_width, surface_height)
    return x / surface_width, y / surface_height


def to_pixels(x_percent: float, y_percent: float, surface_width, surface_height) -> Tuple[float, float]:
    validate_dimensions(surface_width, surface_height)
    return x_percent * surface_width, y_percent * surface_height


def clamp(value: float, low: float, high: float) -> float:
    return max(low, min(high, value))


def _has_percent(layer: TextLayer) -> bool:
    return "x_percent" in layer.model_fields_set and "y_percent" in layer.model_fields_set


class CoordinateNormalizer:
    """
    Re-projects text layers onto a surface's current pixel size.

    ``last_normalized_size`` remembers, per surface key, the size the layers were
    last projected against; re-normalizing against the same size is a no-op, so
    a late image-metadata callback cannot start an update loop.
    """

    def __init__(self, fallback_size: Optional[Size] = None):
        self.last_normalized_size: Dict[str, Size] = {}
        self.fallback_size = fallback_size or default_canvas_size()

    def is_current(self, surface_key: str, width: int, height: int) -> bool:
        return self.last_normalized_size.get(surface_key) == (width, height)

    def forget(self, surface_key: str) -> None:
        self.last_normalized_size.pop(surface_key, None)

    def normalize(self, surface_key: str, layers: List[TextLayer], width: int, height: int) -> List[TextLayer]:
        """
        Returns the re-projected layers, or ``layers`` itself (same object) when the
        surface was already normalized against ``(width, height)``.
        """
        validate_dimensions(width, height)
        previous = self.last_normalized_size.get(surface_key)
        if previous == (width, height):
            return layers
        # Record first so a re-entrant call with the same size short-circuits.
        self.last_normalized_size[surface_key] = (width, height)

        prev_w, prev_h = previous or self.fallback_size
        projected = []
        for layer in layers:
            if _has_percent(layer):
                x_pct, y_pct = layer.x_percent, layer.y_percent
            else:
                x_pct, y_pct = layer.x / prev_w, layer.y / prev_h
            x, y = to_pixels(x_pct, y_pct, width, height)
            projected.append(layer.model_copy(update={
                "x": x, "y": y, "x_percent": x_pct, "y_percent": y_pct,
            }))
        logger.info(
            f"Surface '{surface_key}': {len(projected)} layer diproyeksikan ulang "
            f"dari {previous or 'default'} ke {(width, height)}."
        )
        return projected
