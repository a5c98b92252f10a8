"""Tests for the PyMuPDF-backed renderer helpers."""
import pytest
from PIL import Image

from anonymizer_geometry import quad_to_bbox
from anonymizer_render import PageRenderer, rotate_image
from anonymizer_types import DocumentOpenError, SOURCE_NATIVE

from conftest import make_pdf


def test_structured_text_and_literal_search(email_pdf):
    renderer = PageRenderer(email_pdf)
    assert renderer.page_count == 1
    assert renderer.page_size(0) == pytest.approx((612, 792))

    blocks = renderer.extract_structured_text(0)
    lines = [b for b in blocks if 'jan@example.com' in b.text]
    assert len(lines) == 1
    assert lines[0].source == SOURCE_NATIVE
    assert lines[0].words is None
    x0, y0, x1, y1 = lines[0].bbox
    assert x0 == pytest.approx(72, abs=1)
    assert y0 < 100 < y1 + 3

    quads = renderer.search_literal(0, 'example')
    assert len(quads) == 1
    bbox = quad_to_bbox(quads[0])
    assert x0 < bbox[0] < bbox[2] < x1
    renderer.close()


def test_blank_pages_have_no_text():
    renderer = PageRenderer(make_pdf([[]]))
    assert renderer.extract_structured_text(0) == []
    assert renderer.search_literal(0, 'anything') == []


def test_unreadable_document():
    with pytest.raises(DocumentOpenError):
        PageRenderer(b'this is not a pdf')


@pytest.mark.parametrize("rotation,size", [(0, (30, 20)), (90, (20, 30)),
                                           (180, (30, 20)), (270, (20, 30))])
def test_rotate_image(rotation, size):
    img = Image.new('RGB', (30, 20))
    assert rotate_image(img, rotation).size == size


def test_rotate_image_is_clockwise():
    img = Image.new('L', (30, 20), 255)
    img.putpixel((0, 0), 0)
    # Top-left corner ends up top-right after a clockwise quarter turn
    assert rotate_image(img, 90).getpixel((19, 0)) == 0
    assert rotate_image(img, 270).getpixel((0, 29)) == 0


def test_rotate_image_rejects_odd_angles():
    with pytest.raises(ValueError):
        rotate_image(Image.new('RGB', (2, 2)), 45)


def test_text_outside_the_page_is_ignored():
    renderer = PageRenderer(make_pdf([[(72, 100, 'visible line here'),
                                       (700, 200, 'hidden@example.com')]]))
    texts = [b.text for b in renderer.extract_structured_text(0)]
    assert any('visible line here' in t for t in texts)
    assert not any('hidden' in t for t in texts)
