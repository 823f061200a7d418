# certgen/domain/variables.py
import re
from datetime import date
from typing import Dict, Iterable, List, Mapping, Optional

from certgen.domain.models import LayoutDocument, TextLayer, TextSpan

VARIABLE_PATTERN = re.compile(r"\{([A-Za-z0-9_]+)\}")


def _dedupe(names: Iterable[str]) -> List[str]:
    found: List[str] = []
    for name in names:
        if name not in found:
            found.append(name)
    return found


def extract_variables(text: Optional[str]) -> List[str]:
    """Distinct ``{name}`` tokens in order of first appearance."""
    if not text:
        return []
    return _dedupe(VARIABLE_PATTERN.findall(text))


def is_valid_variable_name(name: str) -> bool:
    return VARIABLE_PATTERN.fullmatch("{" + name + "}") is not None


def extract_variables_from_layer(layer: TextLayer) -> List[str]:
    names = extract_variables(layer.default_text)
    if layer.rich_text:
        # tokens can straddle span boundaries, so scan the joined text
        names += extract_variables("".join(span.text for span in layer.rich_text))
    return _dedupe(names)


def extract_document_variables(document: LayoutDocument, include_hidden: bool = False) -> List[str]:
    """Variables across every layer of every surface (certificate first, then score)."""
    names: List[str] = []
    for surface in document.surfaces().values():
        for layer in surface.text_layers:
            if not include_hidden and not layer.is_visible:
                continue
            names.extend(extract_variables_from_layer(layer))
    return _dedupe(names)


def _usable(value) -> bool:
    return value is not None and str(value).strip() != ""


def replace_variables(text: str, data: Mapping[str, object]) -> str:
    """Substitute known non-blank values; unknown tokens are left as typed."""

    def _replace(match) -> str:
        value = data.get(match.group(1))
        return str(value) if _usable(value) else match.group(0)

    return VARIABLE_PATTERN.sub(_replace, text)


def replace_variables_in_rich_text(spans: List[TextSpan], data: Mapping[str, object]) -> List[TextSpan]:
    """
    Each substituted value takes the style of the span holding the first
    character of its placeholder. Tokens are matched on the joined text, so a
    placeholder split across styled spans is still replaced; the rest of the
    token is trimmed from the spans that follow.
    """
    joined = "".join(span.text for span in spans)
    bounds = []
    offset = 0
    for span in spans:
        bounds.append((offset, offset + len(span.text)))
        offset += len(span.text)

    pieces: List[List[str]] = [[] for _ in spans]

    def _copy(start: int, end: int) -> None:
        for i, (s0, s1) in enumerate(bounds):
            lo, hi = max(start, s0), min(end, s1)
            if lo < hi:
                pieces[i].append(joined[lo:hi])

    cursor = 0
    for match in VARIABLE_PATTERN.finditer(joined):
        value = data.get(match.group(1))
        if not _usable(value):
            continue
        _copy(cursor, match.start())
        owner = next(i for i, (s0, s1) in enumerate(bounds) if s0 <= match.start() < s1)
        pieces[owner].append(str(value))
        cursor = match.end()
    _copy(cursor, len(joined))

    replaced: List[TextSpan] = []
    for span, parts in zip(spans, pieces):
        text = "".join(parts)
        if text == span.text:
            replaced.append(span)
        elif text:
            replaced.append(span.model_copy(update={"text": text}))
    return replaced


def unresolved_variables(text: str, data: Mapping[str, object]) -> List[str]:
    return [name for name in extract_variables(text) if not _usable(data.get(name))]


def merge_variable_data(*sources: Optional[Mapping[str, object]]) -> Dict[str, object]:
    """Earlier sources win over later ones."""
    merged: Dict[str, object] = {}
    for source in reversed(sources):
        if source:
            merged.update(source)
    return merged


def generate_sample_data(variables: Iterable[str]) -> Dict[str, str]:
    samples: Dict[str, str] = {}
    for variable in variables:
        lower = variable.lower()
        if "name" in lower or "nama" in lower:
            samples[variable] = "John Doe"
        elif "score" in lower or "nilai" in lower:
            samples[variable] = "85"
        elif "grade" in lower:
            samples[variable] = "A"
        elif "date" in lower or "tanggal" in lower:
            samples[variable] = date.today().strftime("%d-%m-%Y")
        elif "status" in lower:
            samples[variable] = "Lulus"
        elif "disiplin" in lower:
            samples[variable] = "Baik"
        elif "kreativ" in lower:
            samples[variable] = "Sangat Baik"
        elif "inisiatif" in lower:
            samples[variable] = "Cukup"
        else:
            samples[variable] = f"[{variable}]"
    return samples
