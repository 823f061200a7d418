import pytest

from certgen.domain.models import TextSpan
from certgen.domain.rich_text import (
    MIXED,
    apply_style_to_range,
    extract_spans_for_range,
    get_common_style_value,
    has_inline_formatting,
    has_mixed_style,
    merge_adjacent_spans,
    plain_text_to_rich_text,
    rich_text_to_plain_text,
    strip_style_override,
)


def test_apply_style_splits_at_range_bounds():
    spans = plain_text_to_rich_text("Hello World")
    styled = apply_style_to_range(spans, 0, 5, {"font_weight": "bold"})

    assert [s.text for s in styled] == ["Hello", " World"]
    assert styled[0].font_weight == "bold"
    assert styled[1].font_weight is None
    assert rich_text_to_plain_text(styled) == "Hello World"
    # input untouched
    assert len(spans) == 1


def test_restyling_the_rest_merges_back_into_one_span():
    spans = apply_style_to_range(plain_text_to_rich_text("Hello World"), 0, 5, {"font_weight": "bold"})
    merged = apply_style_to_range(spans, 5, 11, {"font_weight": "bold"})

    assert merged == [TextSpan(text="Hello World", font_weight="bold")]


def test_same_patch_twice_is_idempotent():
    spans = plain_text_to_rich_text("Selamat datang peserta")
    once = apply_style_to_range(spans, 8, 14, {"font_weight": "bold", "color": "#ff0000"})
    twice = apply_style_to_range(once, 8, 14, {"font_weight": "bold", "color": "#ff0000"})

    assert twice == once
    assert [s.text for s in twice] == ["Selamat ", "datang", " peserta"]


def test_range_is_clamped_and_empty_range_changes_nothing():
    spans = plain_text_to_rich_text("abc")
    assert apply_style_to_range(spans, 2, 2, {"color": "#ff0000"}) == spans
    clamped = apply_style_to_range(spans, -5, 99, {"color": "#ff0000"})
    assert clamped == [TextSpan(text="abc", color="#ff0000")]


def test_common_style_value():
    spans = apply_style_to_range(plain_text_to_rich_text("Hello World"), 0, 5, {"font_weight": "bold"})

    assert get_common_style_value(spans, 0, 5, "font_weight") == "bold"
    assert get_common_style_value(spans, 0, 11, "font_weight") == MIXED
    assert get_common_style_value(spans, 3, 3, "font_weight") is None
    assert has_mixed_style(spans, "font_weight") is False


def test_unknown_style_field_is_rejected():
    spans = plain_text_to_rich_text("abc")
    with pytest.raises(KeyError):
        apply_style_to_range(spans, 0, 1, {"underline": True})
    with pytest.raises(KeyError):
        get_common_style_value(spans, 0, 1, "underline")


def test_strip_override_and_inline_formatting_flag():
    spans = apply_style_to_range(plain_text_to_rich_text("big small"), 0, 3, {"font_size": 60})
    assert has_inline_formatting(spans)

    stripped = strip_style_override(spans, "font_size")
    assert stripped == [TextSpan(text="big small")]
    assert not has_inline_formatting(stripped)


def test_extract_and_merge():
    spans = [TextSpan(text="ab"), TextSpan(text="cd", color="#111111"), TextSpan(text="ef", color="#111111")]

    assert [s.text for s in extract_spans_for_range(spans, 1, 5)] == ["b", "cd", "e"]
    assert [s.text for s in merge_adjacent_spans(spans)] == ["ab", "cdef"]
    assert merge_adjacent_spans([TextSpan(text="", color="#222222")]) == [TextSpan(text="", color="#222222")]
