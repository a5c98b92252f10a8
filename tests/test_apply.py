"""Tests for burning redactions and assembling the output document."""
import io
import logging

import pytest
from PIL import Image
from pypdf import PdfReader

from anonymizer_apply import RedactionApplier, burn_boxes
from anonymizer_render import PdfDocumentWriter
from anonymizer_types import Match

from conftest import FakePage, FakeRenderer, FakeWriter, make_pdf


def test_burn_boxes_zeroes_every_channel():
    img = Image.new('RGBA', (40, 40), (255, 255, 255, 255))
    burned = burn_boxes(img, [(5, 5, 10, 10), (100, 100, 120, 120)], 2.0)
    assert burned == 1
    assert img.getpixel((10, 10)) == (0, 0, 0, 0)
    assert img.getpixel((19, 19)) == (0, 0, 0, 0)
    assert img.getpixel((20, 20)) == (255, 255, 255, 255)
    assert img.getpixel((9, 9)) == (255, 255, 255, 255)


def test_burn_boxes_grayscale():
    img = Image.new('L', (10, 10), 255)
    burn_boxes(img, [(0, 0, 3, 3)], 1.0)
    assert img.getpixel((2, 2)) == 0
    assert img.getpixel((3, 3)) == 255


def _apply(renderer, matches, writer=None, rotations=None, config=None):
    writer = writer or FakeWriter()
    applier = RedactionApplier(renderer, config, writer_factory=lambda source: writer)
    assert applier.apply(b'%PDF', matches, rotations) == b'%PDF-fake'
    return writer


def test_pages_with_matches_are_rasterized_and_burned():
    renderer = FakeRenderer([FakePage((600, 800)), FakePage((600, 800))])
    match = Match('jan', '<email>', (100, 100, 200, 120), 0)
    writer = _apply(renderer, [match])

    first, second = writer.pages
    assert first['dimensions'] == (600, 800)
    image = first['image']
    # min(3, 4000 / 800)
    assert renderer.render_calls[0] == (0, 3.0, 0)
    assert image.getpixel((450, 330)) == (0, 0, 0)
    assert image.getpixel((299, 330)) == (255, 255, 255)
    assert second['copied'] == 1
    assert second['image'] is None


def test_redaction_scale_is_capped_for_large_pages():
    renderer = FakeRenderer([FakePage((2000, 3000))])
    _apply(renderer, [Match('x', 'x', (0, 0, 10, 10), 0)])
    _, scale, _ = renderer.render_calls[0]
    assert scale == pytest.approx(4000 / 3000)
    assert 3000 * scale <= 4000 + 1e-9


def test_rotation_swaps_dimensions():
    renderer = FakeRenderer([FakePage((600, 800)), FakePage((600, 800))])
    writer = _apply(renderer, [Match('x', 'x', (0, 0, 10, 10), 0)], rotations={0: 90, 1: 270})
    assert writer.pages[0]['dimensions'] == (800, 600)
    assert renderer.render_calls[0][2] == 90
    assert writer.pages[1]['dimensions'] == (800, 600)
    assert writer.pages[1]['rotation'] == 270


def test_copy_failure_falls_back_to_raster(caplog):
    renderer = FakeRenderer([FakePage(), FakePage()])
    writer = FakeWriter(fail_copy={1})
    with caplog.at_level(logging.WARNING, logger='anonymizer_apply'):
        _apply(renderer, [], writer=writer)
    assert writer.pages[0]['copied'] == 0
    assert writer.pages[1]['image'] is not None
    assert 'could not be copied' in caplog.text


def test_render_failure_on_matched_page_blacks_out_page():
    renderer = FakeRenderer([FakePage((100, 100), fail_render=True), FakePage()])
    writer = _apply(renderer, [Match('x', 'x', (0, 0, 10, 10), 0)])
    image = writer.pages[0]['image']
    assert image.getextrema() == ((0, 0), (0, 0), (0, 0))
    assert len(writer.pages) == 2


def test_pdf_writer_assembles_raster_and_copied_pages():
    source = make_pdf([[(72, 100, 'first page')], [(72, 100, 'second page')]])
    writer = PdfDocumentWriter(source)

    raster = writer.begin_page((612, 792))
    writer.draw_image(raster, Image.new('RGB', (306, 396), (0, 0, 0)))
    copied = writer.begin_page((792, 612))
    assert writer.copy_page_content(copied, 1, rotation=90)

    reader = PdfReader(io.BytesIO(writer.finalize()))
    assert len(reader.pages) == 2
    assert float(reader.pages[0].mediabox.width) == pytest.approx(612)
    assert float(reader.pages[0].mediabox.height) == pytest.approx(792)
    assert 'first page' not in reader.pages[0].extract_text()
    assert 'second page' in reader.pages[1].extract_text()
    assert reader.pages[1].rotation == 90


def test_pdf_writer_reports_copy_failure():
    writer = PdfDocumentWriter(b'not a pdf')
    handle = writer.begin_page((612, 792))
    assert not writer.copy_page_content(handle, 0)


def test_pdf_writer_rejects_empty_page():
    writer = PdfDocumentWriter(None)
    writer.begin_page((10, 10))
    with pytest.raises(ValueError):
        writer.finalize()


def test_boxes_are_moved_into_the_page_rotation():
    renderer = FakeRenderer([FakePage((600, 800))])
    # Found on the upright page, written with a quarter turn
    writer = _apply(renderer, [Match('x', 'x', (100, 100, 200, 120), 0)], rotations={0: 90})
    image = writer.pages[0]['image']
    assert image.size == (2400, 1800)
    assert image.getpixel((690 * 3, 150 * 3)) == (0, 0, 0)
    assert image.getpixel((150 * 3, 110 * 3)) == (255, 255, 255)


def test_page_rotation_defaults_to_match_rotation():
    renderer = FakeRenderer([FakePage((600, 800)), FakePage((600, 800))])
    writer = _apply(renderer, [Match('x', 'x', (66, 100, 140, 112), 0, rotation=90)])
    assert renderer.render_calls[0] == (0, 3.0, 90)
    assert writer.pages[0]['dimensions'] == (800, 600)
    assert writer.pages[0]['image'].getpixel((100 * 3, 105 * 3)) == (0, 0, 0)
    assert writer.pages[1]['rotation'] == 0


def test_match_on_missing_page_is_rejected():
    renderer = FakeRenderer([FakePage()])
    writer = FakeWriter()
    applier = RedactionApplier(renderer, writer_factory=lambda source: writer)
    with pytest.raises(IndexError):
        applier.apply(b'%PDF', [Match('secret', 'x', (0, 0, 10, 10), 5)])
    with pytest.raises(IndexError):
        applier.apply(b'%PDF', [Match('secret', 'x', (0, 0, 10, 10), -1)])
    assert writer.pages == []
