import pytest

from certgen.domain.layout import LayoutEditor


def fake_measure(text, font):
    # every glyph is half an em wide
    return len(text) * font.size * 0.5


@pytest.fixture()
def measure():
    return fake_measure


@pytest.fixture()
def editor():
    """Editor over a fresh 1500x2121 certificate with the default layers."""
    ed = LayoutEditor(measure=fake_measure, clock=lambda: 1000.0)
    ed.on_image_ready("certificate", 1500, 2121)
    return ed
