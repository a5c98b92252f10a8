"""
PDF collaborators: page rendering, native text geometry and output writing.

PageRenderer reads the native text layer and glyph geometry with PyMuPDF and
rasterizes pages through pdf2image/poppler. PdfDocumentWriter assembles the
output with pypdf, drawing raster pages with reportlab.
"""

import io
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

import fitz
from pdf2image import convert_from_bytes
from PIL import Image
from pypdf import PdfReader, PdfWriter
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from anonymizer_coords import VALID_ROTATIONS
from anonymizer_types import BBox, DocumentOpenError, Point, SOURCE_NATIVE, TextBlock

logger = logging.getLogger(__name__)

Quad = Tuple[Point, Point, Point, Point]

_TRANSPOSE = {
    90: Image.Transpose.ROTATE_270,
    180: Image.Transpose.ROTATE_180,
    270: Image.Transpose.ROTATE_90,
}


def rotate_image(img: Image.Image, rotation: int) -> Image.Image:
    """Rotate an image clockwise by a multiple of 90 degrees"""
    rotation = int(rotation) % 360
    if rotation not in VALID_ROTATIONS:
        raise ValueError(f"Rotation must be a multiple of 90 degrees, got {rotation}")
    if rotation == 0:
        return img
    return img.transpose(_TRANSPOSE[rotation])


class PageRenderer:
    """Page Renderer over one open PDF"""

    def __init__(self, data: bytes, poppler_path: Optional[str] = None):
        try:
            self._doc = fitz.open(stream=data, filetype='pdf')
        except Exception as e:
            raise DocumentOpenError(f"Error loading PDF: {e}") from e
        if self._doc.page_count == 0:
            self._doc.close()
            raise DocumentOpenError("Error loading PDF: document has no pages")
        self.data = data
        self.poppler_path = poppler_path

    @property
    def page_count(self) -> int:
        return self._doc.page_count

    def close(self):
        self._doc.close()

    def page_size(self, page_num: int) -> Tuple[float, float]:
        rect = self._doc[page_num].rect
        return rect.width, rect.height

    def render_page(self, page_num: int, scale: float, rotation: int = 0) -> Image.Image:
        """Rasterize one page at `scale` pixels per unit, rotated clockwise"""
        images = convert_from_bytes(
            self.data,
            dpi=scale * 72.0,
            first_page=page_num + 1,
            last_page=page_num + 1,
            poppler_path=self.poppler_path,
        )
        img = images[0]
        if img.mode != 'RGB':
            img = img.convert('RGB')
        return rotate_image(img, rotation)

    def extract_structured_text(self, page_num: int) -> List[TextBlock]:
        """Native text lines with their boxes (no OCR)"""
        page = self._doc[page_num]
        matrix = page.rotation_matrix if page.rotation else None
        flags = (fitz.TEXT_PRESERVE_WHITESPACE | fitz.TEXT_PRESERVE_LIGATURES
                 | fitz.TEXT_MEDIABOX_CLIP)
        textpage = page.get_text('dict', flags=flags)

        blocks = []
        for block in textpage.get('blocks', []):
            # Image blocks carry no lines
            if block.get('type', 0) != 0:
                continue
            for line in block.get('lines', []):
                text = ''.join(span.get('text', '') for span in line.get('spans', []))
                if not text:
                    continue
                rect = fitz.Rect(line['bbox'])
                if matrix is not None:
                    rect = rect * matrix
                blocks.append(TextBlock(
                    text=text,
                    bbox=(rect.x0, rect.y0, rect.x1, rect.y1),
                    source=SOURCE_NATIVE,
                ))
        return blocks

    def search_literal(self, page_num: int, text: str) -> List[Quad]:
        """Glyph quads of every literal occurrence of `text` on the page"""
        page = self._doc[page_num]
        matrix = page.rotation_matrix if page.rotation else None
        quads = []
        for quad in page.search_for(text, quads=True):
            if matrix is not None:
                quad = quad * matrix
            quads.append((tuple(quad.ul), tuple(quad.ur), tuple(quad.ll), tuple(quad.lr)))
        return quads


@dataclass
class PageHandle:
    """An output page under construction"""
    width: float
    height: float
    image: Optional[Image.Image] = None
    source: object = None
    rotation: int = 0


class PdfDocumentWriter:
    """Document Writer producing a PDF from raster and pass-through pages"""

    def __init__(self, source: Optional[bytes] = None):
        self.source = source
        self._reader: Optional[PdfReader] = None
        self._pages: List[PageHandle] = []

    @property
    def pages(self) -> List[PageHandle]:
        return list(self._pages)

    def begin_page(self, dimensions: Tuple[float, float]) -> PageHandle:
        width, height = dimensions
        handle = PageHandle(width=float(width), height=float(height))
        self._pages.append(handle)
        return handle

    def draw_image(self, handle: PageHandle, image: Image.Image):
        handle.image = image
        handle.source = None

    def _source_reader(self) -> PdfReader:
        if self._reader is None:
            if self.source is None:
                raise ValueError("Writer has no source document")
            self._reader = PdfReader(io.BytesIO(self.source))
        return self._reader

    def copy_page_content(self, handle: PageHandle, source_page: int, rotation: int = 0) -> bool:
        """
        Carry a source page over unchanged.

        Returns False if the page cannot be read; the caller rasterizes it
        instead.
        """
        try:
            page = self._source_reader().pages[source_page]
            # Force the content streams to parse now rather than at write time
            page.get_contents()
            _ = page.mediabox
        except Exception as e:
            logger.warning("Page copy failed on page %d: %s", source_page + 1, e)
            return False
        handle.source = page
        handle.rotation = rotation
        return True

    def _raster_page(self, handle: PageHandle):
        buf = io.BytesIO()
        c = canvas.Canvas(buf, pagesize=(handle.width, handle.height))
        c.drawImage(ImageReader(handle.image), 0, 0,
                    width=handle.width, height=handle.height)
        c.showPage()
        c.save()
        buf.seek(0)
        return PdfReader(buf).pages[0]

    def finalize(self) -> bytes:
        writer = PdfWriter()
        for number, handle in enumerate(self._pages, 1):
            if handle.image is not None:
                writer.add_page(self._raster_page(handle))
            elif handle.source is not None:
                page = writer.add_page(handle.source)
                if handle.rotation:
                    page.rotate(handle.rotation)
            else:
                raise ValueError(f"Output page {number} has no content")

        out = io.BytesIO()
        writer.write(out)
        return out.getvalue()
