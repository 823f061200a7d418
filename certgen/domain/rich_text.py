# certgen/domain/rich_text.py
"""
Inline formatting for text layers.

A layer's content is an ordered list of ``TextSpan``; concatenating the span
texts yields the plain text. Lists are never mutated in place, every edit
returns a new list.
"""
from typing import Dict, List, Optional

from certgen.domain.models import STYLE_FIELDS, TextSpan

MIXED = "mixed"


def plain_text_to_rich_text(text: str, base_style: Optional[Dict[str, object]] = None) -> List[TextSpan]:
    style = {k: v for k, v in (base_style or {}).items() if k in STYLE_FIELDS}
    return [TextSpan(text=text, **style)]


def rich_text_to_plain_text(spans: List[TextSpan]) -> str:
    return "".join(span.text for span in spans)


def _same_style(a: TextSpan, b: TextSpan) -> bool:
    return a.style() == b.style()


def merge_adjacent_spans(spans: List[TextSpan]) -> List[TextSpan]:
    merged: List[TextSpan] = []
    for span in spans:
        if not span.text:
            continue
        if merged and _same_style(merged[-1], span):
            merged[-1] = merged[-1].model_copy(update={"text": merged[-1].text + span.text})
        else:
            merged.append(span)
    if not merged and spans:
        # keep one (empty) span so the layer still carries its style
        merged.append(spans[0])
    return merged


def _patched(span: TextSpan, patch: Dict[str, object], text: str) -> TextSpan:
    update: Dict[str, object] = {"text": text}
    for key, value in patch.items():
        if key not in STYLE_FIELDS:
            raise KeyError(f"Unknown style field '{key}'")
        update[key] = value  # None clears the override
    return span.model_copy(update=update)


def apply_style_to_range(spans: List[TextSpan], start: int, end: int, patch: Dict[str, object]) -> List[TextSpan]:
    """Apply ``patch`` to characters in ``[start, end)``; spans are split at the bounds and re-merged."""
    total = len(rich_text_to_plain_text(spans))
    start, end = max(0, min(start, total)), max(0, min(end, total))
    if start >= end:
        return list(spans)

    result: List[TextSpan] = []
    offset = 0
    for span in spans:
        span_start, span_end = offset, offset + len(span.text)
        offset = span_end
        if span_end <= start or span_start >= end:
            result.append(span)
            continue

        overlap_start = max(span_start, start) - span_start
        overlap_end = min(span_end, end) - span_start
        if overlap_start > 0:
            result.append(span.model_copy(update={"text": span.text[:overlap_start]}))
        result.append(_patched(span, patch, span.text[overlap_start:overlap_end]))
        if overlap_end < len(span.text):
            result.append(span.model_copy(update={"text": span.text[overlap_end:]}))

    return merge_adjacent_spans(result)


def extract_spans_for_range(spans: List[TextSpan], start: int, end: int) -> List[TextSpan]:
    found: List[TextSpan] = []
    offset = 0
    for span in spans:
        span_start, span_end = offset, offset + len(span.text)
        offset = span_end
        if span_end <= start or span_start >= end:
            continue
        lo = max(span_start, start) - span_start
        hi = min(span_end, end) - span_start
        found.append(span.model_copy(update={"text": span.text[lo:hi]}))
    return found


def get_common_style_value(spans: List[TextSpan], start: int, end: int, field: str):
    """
    The value of ``field`` shared by every span touching ``[start, end)``.

    Returns ``MIXED`` when spans disagree and ``None`` when the range is empty
    or no span sets the field.
    """
    if field not in STYLE_FIELDS:
        raise KeyError(f"Unknown style field '{field}'")
    if start == end:
        return None

    seen = False
    common = None
    offset = 0
    for span in spans:
        span_start, span_end = offset, offset + len(span.text)
        offset = span_end
        if span_end <= start or span_start >= end:
            continue
        value = getattr(span, field)
        if not seen:
            common, seen = value, True
        elif value != common:
            return MIXED
    return common


def has_mixed_style(spans: List[TextSpan], field: str) -> bool:
    if field not in STYLE_FIELDS:
        raise KeyError(f"Unknown style field '{field}'")
    values = {getattr(span, field) for span in spans if getattr(span, field) is not None}
    return len(values) > 1


def strip_style_override(spans: List[TextSpan], field: str) -> List[TextSpan]:
    """Drop a per-span override so every span inherits the layer value again."""
    if field not in STYLE_FIELDS:
        raise KeyError(f"Unknown style field '{field}'")
    return merge_adjacent_spans([span.model_copy(update={field: None}) for span in spans])


def has_inline_formatting(spans: Optional[List[TextSpan]]) -> bool:
    if not spans:
        return False
    return any(value is not None for span in spans for value in span.style().values())
