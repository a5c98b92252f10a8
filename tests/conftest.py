"""Shared fakes and fixtures for the anonymizer tests."""
import io
import threading
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

import pytest
import pytesseract
from PIL import Image
from reportlab.pdfgen import canvas

from anonymizer_config import AnonymizerConfig
from anonymizer_coords import rotated_size, scale_bbox
from anonymizer_types import OCRLine, TextBlock, WordBox


@dataclass
class FakePage:
    size: Tuple[float, float] = (600.0, 800.0)
    blocks: List[TextBlock] = field(default_factory=list)
    quads: Dict[str, list] = field(default_factory=dict)
    fail_render: bool = False


class FakeRenderer:
    """Page Renderer stand-in; rendered images remember page and scale."""

    def __init__(self, pages: List[FakePage]):
        self.pages = pages
        self.render_calls = []
        self.search_calls = []
        self._lock = threading.Lock()

    @property
    def page_count(self) -> int:
        return len(self.pages)

    def page_size(self, page_num):
        return self.pages[page_num].size

    def render_page(self, page_num, scale, rotation=0):
        with self._lock:
            self.render_calls.append((page_num, scale, rotation))
        page = self.pages[page_num]
        if page.fail_render:
            raise RuntimeError("render failed")
        width, height = rotated_size(*page.size, rotation)
        img = Image.new('RGB', (round(width * scale), round(height * scale)), (255, 255, 255))
        img.info['page'] = page_num
        img.info['scale'] = scale
        return img

    def extract_structured_text(self, page_num):
        return list(self.pages[page_num].blocks)

    def search_literal(self, page_num, text):
        self.search_calls.append((page_num, text))
        return list(self.pages[page_num].quads.get(text, []))


class FakeEngine:
    """
    OCR Engine stand-in.

    `lines` are given in page units per page and scaled to the image the
    engine receives, the way a real engine reports pixels.
    """

    def __init__(self, lines: Optional[Dict[int, List[OCRLine]]] = None,
                 rotations: Optional[Dict[int, int]] = None,
                 osd_error: bool = False, fail_pages=(), delay: float = 0.0):
        self.lines = lines or {}
        self.rotations = rotations or {}
        self.osd_error = osd_error
        self.fail_pages = set(fail_pages)
        self.delay = delay
        self.recognized = []
        self.busy = 0
        self.max_busy = 0
        self._lock = threading.Lock()

    def recognize(self, image):
        with self._lock:
            self.busy += 1
            self.max_busy = max(self.max_busy, self.busy)
        try:
            if self.delay:
                threading.Event().wait(self.delay)
            page = image.info['page']
            self.recognized.append(page)
            if page in self.fail_pages:
                raise RuntimeError("engine crashed")
            scale = image.info['scale']
            return [
                OCRLine(
                    text=line.text,
                    bbox=scale_bbox(line.bbox, scale),
                    confidence=line.confidence,
                    words=[WordBox(w.text, scale_bbox(w.bbox, scale)) for w in line.words],
                )
                for line in self.lines.get(page, [])
            ]
        finally:
            with self._lock:
                self.busy -= 1

    def detect_orientation(self, image):
        if self.osd_error:
            raise pytesseract.TesseractError(1, 'osd.traineddata not found')
        return self.rotations.get(image.info['page'], 0), 10.0


class FakeWriter:
    """Document Writer stand-in recording what each page became."""

    def __init__(self, source=None, fail_copy=()):
        self.source = source
        self.fail_copy = set(fail_copy)
        self.pages = []

    def begin_page(self, dimensions):
        handle = {'dimensions': dimensions, 'image': None, 'copied': None, 'rotation': 0}
        self.pages.append(handle)
        return handle

    def draw_image(self, handle, image):
        handle['image'] = image

    def copy_page_content(self, handle, source_page, rotation=0):
        if source_page in self.fail_copy:
            return False
        handle['copied'] = source_page
        handle['rotation'] = rotation
        return True

    def finalize(self):
        return b'%PDF-fake'


def invoice_line() -> OCRLine:
    """OCR line 'Invoice 12-05-2024 Amount' in page units."""
    words = [
        WordBox('Invoice', (10.0, 100.0, 60.0, 112.0)),
        WordBox('12-05-2024', (66.0, 100.0, 140.0, 112.0)),
        WordBox('Amount', (146.0, 100.0, 196.0, 112.0)),
    ]
    return OCRLine('Invoice 12-05-2024 Amount', (10.0, 100.0, 196.0, 112.0), 91.0, words)


def make_pdf(pages: List[List[Tuple[float, float, str]]],
             pagesize=(612, 792)) -> bytes:
    """Build a PDF with reportlab; each page is a list of (x, y_top, text)."""
    buf = io.BytesIO()
    c = canvas.Canvas(buf, pagesize=pagesize)
    for lines in pages:
        c.setFont('Helvetica', 12)
        for x, y_top, text in lines:
            c.drawString(x, pagesize[1] - y_top, text)
        c.showPage()
    c.save()
    return buf.getvalue()


@pytest.fixture
def config() -> AnonymizerConfig:
    return AnonymizerConfig(pool_size=2)


@pytest.fixture
def email_pdf() -> bytes:
    return make_pdf([[(72, 100, 'jan@example.com')]])
