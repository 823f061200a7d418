import pytest

from certgen.domain.errors import InvalidDimensionsError
from certgen.domain.geometry import (
    DEFAULT_MASK_RADIUS,
    ELLIPSIS,
    calculate_fit_dimensions,
    compute_photo_geometry,
    compute_text_geometry,
    crop_rect,
    order_photo_layers,
    preview_scale,
    realign_layer,
    render_scale,
    wrap_lines,
)
from certgen.domain.models import PhotoCrop, PhotoLayer, PhotoMask, TextLayer, TextSpan


def _layer(**fields):
    defaults = {"id": "custom", "x_percent": 0.5, "y_percent": 0.5, "font_size": 30, "max_width": None}
    return TextLayer(**{**defaults, **fields})


# --- scale ---

def test_font_size_scales_with_surface_width(measure):
    geometry = compute_text_geometry(_layer(), "abc", (6250, 8838), measure)

    assert render_scale(6250) == pytest.approx(6250 / 1500)
    assert geometry.font_size == pytest.approx(125)


def test_preview_is_the_export_scaled_down(measure):
    layer = _layer(text_align="center", max_width=300)
    export = compute_text_geometry(layer, "one two three", (6250, 8838), measure)
    preview = compute_text_geometry(layer, "one two three", (6250, 8838), measure, preview_width=625)

    assert preview_scale(625, 6250) == pytest.approx(0.1)
    assert preview.font_size == pytest.approx(export.font_size * 0.1)
    assert preview.box_left == pytest.approx(export.box_left * 0.1)
    assert [line.text for line in preview.lines] == [line.text for line in export.lines]


def test_zero_width_surface_is_rejected(measure):
    with pytest.raises(InvalidDimensionsError):
        compute_text_geometry(_layer(), "abc", (0, 100), measure)


# --- anchors ---

@pytest.mark.parametrize("align,left", [("left", 750), ("center", 720), ("right", 690)])
def test_anchor_offsets(measure, align, left):
    # "abcd" at 30px is 60px wide
    geometry = compute_text_geometry(_layer(text_align=align), "abcd", (1500, 2121), measure)

    assert geometry.box_width == pytest.approx(60)
    assert geometry.box_left == pytest.approx(left)
    assert geometry.anchor_y == pytest.approx(1060.5)


def test_missing_alignment_defaults_to_left(measure):
    geometry = compute_text_geometry(_layer(text_align=None), "abcd", (1500, 2121), measure)
    assert geometry.anchor == "left"
    assert geometry.box_left == pytest.approx(750)


def test_box_is_vertically_centred_on_anchor(measure):
    geometry = compute_text_geometry(_layer(line_height=1.5), "ab\ncd", (1500, 2121), measure)

    assert len(geometry.lines) == 2
    assert geometry.box_height == pytest.approx(90)
    assert geometry.box_top == pytest.approx(1060.5 - 45)
    assert geometry.lines[0].center_y == pytest.approx(1060.5 - 22.5)


# --- single-line layers ---

def test_single_line_layers_are_left_anchored(measure):
    layer = _layer(id="certificate_no", text_align="center")
    geometry = compute_text_geometry(layer, "No. 1", (1500, 2121), measure)

    assert geometry.anchor == "left"
    assert geometry.box_left == pytest.approx(750)


def test_single_line_is_truncated_with_ellipsis(measure):
    # 10px per glyph, 100px box: nine glyphs plus the ellipsis
    layer = _layer(id="certificate_no", font_size=20, max_width=100)
    geometry = compute_text_geometry(layer, "ABCDEFGHIJKLMNOP", (1500, 2121), measure)

    assert len(geometry.lines) == 1
    assert geometry.text == "ABCDEFGHI" + ELLIPSIS
    assert geometry.box_width <= 100


def test_single_line_never_breaks(measure):
    layer = _layer(id="issue_date", font_size=20, max_width=1000)
    geometry = compute_text_geometry(layer, "30 Oktober\n2025", (1500, 2121), measure)
    assert geometry.text == "30 Oktober 2025"


# --- wrapping ---

def test_words_wrap_at_max_width(measure):
    layer = _layer(id="description", font_size=20, max_width=100)
    geometry = compute_text_geometry(layer, "aaa bbb ccc", (1500, 2121), measure)

    assert [line.text for line in geometry.lines] == ["aaa bbb", "ccc"]
    assert geometry.box_width == pytest.approx(70)
    assert geometry.lines[0].is_last_of_paragraph is False
    assert geometry.lines[1].is_last_of_paragraph is True


def test_name_layer_wraps_at_max_width(measure):
    layer = _layer(id="name", font_size=20, max_width=100)
    geometry = compute_text_geometry(layer, "aaa bbb ccc", (1500, 2121), measure)

    assert [line.text for line in geometry.lines] == ["aaa bbb", "ccc"]
    assert geometry.box_width <= 100


def test_lines_are_aligned_inside_the_box(measure):
    layer = _layer(id="description", font_size=20, max_width=100, text_align="right")
    geometry = compute_text_geometry(layer, "aaa bbb ccc", (1500, 2121), measure)

    # box right edge sits on the anchor, the short line hugs it
    assert geometry.box_left + geometry.box_width == pytest.approx(750)
    assert geometry.lines[1].left == pytest.approx(750 - 30)


def test_justify_uses_full_width(measure):
    layer = _layer(id="description", font_size=20, max_width=100, text_align="justify")
    geometry = compute_text_geometry(layer, "aaa bbb ccc", (1500, 2121), measure)
    assert geometry.box_width == pytest.approx(100)


def test_rich_text_runs_carry_their_own_style(measure):
    spans = [TextSpan(text="big", font_size=60, font_weight="bold"), TextSpan(text=" small")]
    geometry = compute_text_geometry(_layer(), "big small", (3000, 4242), measure, spans=spans)

    runs = geometry.lines[0].runs
    assert [run.text for run in runs] == ["big", " small"]
    assert runs[0].font.size == pytest.approx(120)
    assert runs[0].font.is_bold
    assert runs[1].font.size == pytest.approx(60)
    assert geometry.lines[0].width == pytest.approx(3 * 60 + 6 * 30)


def test_wrap_lines_helper():
    assert wrap_lines("aa bb cc", 5, len) == ["aa bb", "cc"]
    assert wrap_lines("averyveryverylongword x", 5, len) == ["averyveryverylongword", "x"]
    assert wrap_lines("", None, len) == [""]


# --- realign ---

def test_realign_round_trip(measure):
    layer = _layer(text_align="center", x_percent=0.4)
    size = (1500, 2121)

    right = realign_layer(layer, "right", size, measure, text="abcd")
    # centre stays at 600: right edge moves to 630
    assert right.x == pytest.approx(630)

    back = realign_layer(right, "center", size, measure, text="abcd")
    assert back.x_percent == pytest.approx(0.4)
    assert back.text_align == "center"


def test_realign_measures_the_widest_wrapped_line(measure):
    layer = _layer(text_align="center", x_percent=0.4, font_size=20, max_width=100)

    # wraps to "aaa bbb" (70) and "ccc" (30); centre stays at 600
    moved = realign_layer(layer, "right", (1500, 2121), measure, text="aaa bbb ccc")
    assert moved.x == pytest.approx(635)


def test_realign_is_clamped(measure):
    layer = _layer(text_align="right", x_percent=0.0)
    moved = realign_layer(layer, "left", (1500, 2121), measure, text="abcd")
    assert moved.x_percent == 0


def test_realign_single_line_only_records_alignment(measure):
    layer = _layer(id="issue_date", x_percent=0.7)
    moved = realign_layer(layer, "right", (1500, 2121), measure)

    assert moved.text_align == "right"
    assert moved.x_percent == 0.7


# --- photos ---

def test_photo_order_is_stable_by_z_index():
    layers = [
        PhotoLayer(id="a", src="a", z_index=1),
        PhotoLayer(id="b", src="b", z_index=0),
        PhotoLayer(id="c", src="c", z_index=1),
    ]
    assert [p.id for p in order_photo_layers(layers)] == ["b", "a", "c"]


@pytest.mark.parametrize("mode,expected", [
    ("contain", (100, 50, 0, 25)),
    ("cover", (200, 100, -50, 0)),
    ("fill", (100, 100, 0, 0)),
    ("none", (200, 100, -50, 0)),
])
def test_fit_dimensions(mode, expected):
    fit = calculate_fit_dimensions(200, 100, 100, 100, mode)
    assert (fit.width, fit.height, fit.offset_x, fit.offset_y) == pytest.approx(expected)


def test_crop_rect():
    assert crop_rect(PhotoCrop(x=0.25, y=0, width=0.5, height=1), 400, 200) == (100, 0, 300, 200)
    assert crop_rect(None, 400, 200) == (0, 0, 400, 200)
    # degenerate crop falls back to the whole source
    assert crop_rect(PhotoCrop(x=1, y=1, width=0.5, height=0.5), 400, 200) == (0, 0, 400, 200)


def test_photo_geometry_is_top_left_positioned():
    layer = PhotoLayer(
        id="logo", src="x", x_percent=0.1, y_percent=0.2, width_percent=0.5, height_percent=0.25,
        mask=PhotoMask(type="roundedRect"),
    )
    geometry = compute_photo_geometry(layer, (3000, 4000))

    assert geometry.box == pytest.approx((300, 800, 1800, 1800))
    assert geometry.mask_type == "roundedRect"
    assert geometry.mask_radius == pytest.approx(DEFAULT_MASK_RADIUS * 2)

    preview = compute_photo_geometry(layer, (3000, 4000), preview_width=300)
    assert preview.left == pytest.approx(30)
