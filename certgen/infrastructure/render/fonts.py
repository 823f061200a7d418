# certgen/infrastructure/render/fonts.py
import os
import re
import threading
from dataclasses import dataclass
from typing import Dict, Iterable, Optional, Tuple

from PIL import ImageFont

from certgen.config.logger import get_logger
from certgen.config.settings import settings
from certgen.domain.errors import FontLoadError
from certgen.domain.geometry import FontSpec

logger = get_logger(__name__, "FONT")

FONT_EXTENSIONS = (".ttf", ".otf", ".ttc")
BOLD_SUFFIXES = ("bold", "bd", "b", "semibold", "heavy", "black")
REGULAR_SUFFIXES = ("", "regular", "book", "normal", "roman")

_NON_ALNUM = re.compile(r"[^0-9a-z]+")


def _normalize(name: str) -> str:
    return _NON_ALNUM.sub("", str(name).lower())


@dataclass
class LoadedFont:
    font: ImageFont.ImageFont
    # no bold face was found, the renderer thickens the regular face instead
    synthetic_bold: bool = False
    fallback: bool = False


class FontRegistry:
    """
    Resolves ``(family, weight, size)`` to a Pillow font.

    Lookup order: a file under ``FONTS_DIR`` whose normalised name matches the
    family (plus a bold suffix for bold weights), a font the system resolves by
    file name, the configured default family, and finally Pillow's built-in
    font. Every face a surface needs is loaded before drawing starts.
    """

    def __init__(self, fonts_dir: Optional[str] = None, default_family: Optional[str] = None):
        self.fonts_dir = fonts_dir if fonts_dir is not None else settings.FONTS_DIR
        self.default_family = default_family or settings.DEFAULT_FONT_FAMILY
        self._index: Optional[Dict[str, str]] = None
        self._cache: Dict[Tuple[str, bool, int], LoadedFont] = {}
        self._warned = set()
        self._lock = threading.Lock()

    # --- discovery ---

    def _build_index(self) -> Dict[str, str]:
        index: Dict[str, str] = {}
        if self.fonts_dir and os.path.isdir(self.fonts_dir):
            for root, _, files in os.walk(self.fonts_dir):
                for filename in sorted(files):
                    stem, ext = os.path.splitext(filename)
                    if ext.lower() in FONT_EXTENSIONS:
                        index.setdefault(_normalize(stem), os.path.join(root, filename))
            logger.info(f"{len(index)} font ditemukan di '{self.fonts_dir}'.")
        return index

    @property
    def index(self) -> Dict[str, str]:
        if self._index is None:
            self._index = self._build_index()
        return self._index

    def _find_file(self, family: str, bold: bool) -> Optional[str]:
        base = _normalize(family)
        for suffix in (BOLD_SUFFIXES if bold else REGULAR_SUFFIXES):
            path = self.index.get(base + suffix)
            if path:
                return path
        return None

    def _truetype(self, source: str, size: int) -> Optional[ImageFont.FreeTypeFont]:
        try:
            return ImageFont.truetype(source, size)
        except OSError:
            return None

    def _load_family(self, family: str, bold: bool, size: int) -> Optional[LoadedFont]:
        path = self._find_file(family, bold)
        if path:
            font = self._truetype(path, size)
            return LoadedFont(font) if font is not None else None

        system_names = [f"{family}-Bold.ttf", f"{family}bd.ttf"] if bold else [f"{family}.ttf"]
        for name in system_names:
            font = self._truetype(name, size)
            if font is not None:
                return LoadedFont(font)
        if bold:
            regular = self._load_family(family, False, size)
            if regular is not None:
                return LoadedFont(regular.font, synthetic_bold=True)
        return None

    def _warn_once(self, key: str, message: str) -> None:
        if key not in self._warned:
            self._warned.add(key)
            logger.warning(message)

    # --- public ---

    def get(self, spec: FontSpec) -> LoadedFont:
        size = max(1, int(round(spec.size)))
        key = (_normalize(spec.family), spec.is_bold, size)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached

            loaded = self._load_family(spec.family, spec.is_bold, size)
            if loaded is None and _normalize(spec.family) != _normalize(self.default_family):
                self._warn_once(spec.family, f"Font '{spec.family}' tidak ditemukan, memakai '{self.default_family}'.")
                loaded = self._load_family(self.default_family, spec.is_bold, size)
                if loaded is not None:
                    loaded.fallback = True
            if loaded is None:
                self._warn_once("__builtin__", "Tidak ada font TrueType yang tersedia, memakai font bawaan Pillow.")
                try:
                    loaded = LoadedFont(ImageFont.load_default(size), synthetic_bold=spec.is_bold, fallback=True)
                except (OSError, TypeError) as e:
                    raise FontLoadError(f"Tidak bisa memuat font untuk '{spec.family}'.", field="font_family") from e

            self._cache[key] = loaded
            return loaded

    def ensure_loaded(self, specs: Iterable[FontSpec]) -> Dict[FontSpec, LoadedFont]:
        """Load every face up front so no text is drawn with a face that is still missing."""
        return {spec: self.get(spec) for spec in set(specs)}

    def measure(self, text: str, spec: FontSpec) -> float:
        if not text:
            return 0.0
        return float(self.get(spec).font.getlength(text))

    def metrics(self, spec: FontSpec) -> Tuple[int, int]:
        """``(ascent, descent)`` in pixels."""
        font = self.get(spec).font
        if hasattr(font, "getmetrics"):
            return font.getmetrics()
        left, top, right, bottom = font.getbbox("Ag")
        return -top if top < 0 else bottom, 0
