"""
Burning redactions into the output document.

Pages with matches are rasterized and every covered pixel is zeroed, so no
text layer or original image stream survives under a redaction. Pages
without matches are copied through unchanged when possible.
"""

import logging
from typing import Callable, Dict, Iterable, List, Optional

from PIL import Image

from anonymizer_config import AnonymizerConfig
from anonymizer_coords import bbox_to_pixels, rotate_bbox, rotated_size, unrotate_bbox
from anonymizer_render import PdfDocumentWriter
from anonymizer_types import BBox, Match

logger = logging.getLogger(__name__)


def burn_boxes(image: Image.Image, boxes: Iterable[BBox], scale: float) -> int:
    """
    Set every channel of every pixel under each box to zero.

    Boxes are in page units; returns the number of non-empty boxes burned.
    """
    bands = len(image.getbands())
    fill = 0 if bands == 1 else (0,) * bands
    burned = 0
    for bbox in boxes:
        px0, py0, px1, py1 = bbox_to_pixels(bbox, scale, image.width, image.height)
        if px1 <= px0 or py1 <= py0:
            continue
        image.paste(fill, (px0, py0, px1, py1))
        burned += 1
    return burned


class RedactionApplier:
    """Produces the redacted document from a match list"""

    def __init__(self, renderer, config: Optional[AnonymizerConfig] = None,
                 writer_factory: Optional[Callable[[bytes], object]] = None):
        self.renderer = renderer
        self.config = config or AnonymizerConfig()
        self.writer_factory = writer_factory or PdfDocumentWriter

    def _page_dimensions(self, page_num: int, rotation: int):
        width, height = self.renderer.page_size(page_num)
        return rotated_size(width, height, rotation)

    def _blank(self, width: float, height: float, scale: float, color) -> Image.Image:
        size = (max(1, round(width * scale)), max(1, round(height * scale)))
        return Image.new('RGB', size, color)

    def _redact_page(self, writer, page_num: int, boxes: List[BBox], rotation: int):
        width, height = self._page_dimensions(page_num, rotation)
        scale = self.config.redaction_scale(width, height)
        try:
            image = self.renderer.render_page(page_num, scale, rotation)
        except Exception as e:
            # Nothing of a page that has matches may leak
            logger.error("Rendering failed on page %d, blacking out the whole page: %s",
                         page_num + 1, e)
            image = self._blank(width, height, scale, (0, 0, 0))
        else:
            burned = burn_boxes(image, boxes, scale)
            logger.debug("Page %d: burned %d region(s)", page_num + 1, burned)

        handle = writer.begin_page((width, height))
        writer.draw_image(handle, image)

    def _pass_through(self, writer, page_num: int, rotation: int):
        width, height = self._page_dimensions(page_num, rotation)
        handle = writer.begin_page((width, height))
        if writer.copy_page_content(handle, page_num, rotation=rotation):
            return

        logger.warning("Page %d could not be copied, rasterizing", page_num + 1)
        scale = self.config.redaction_scale(width, height)
        try:
            image = self.renderer.render_page(page_num, scale, rotation)
        except Exception as e:
            logger.error("Rendering failed on page %d, writing a blank page: %s",
                         page_num + 1, e)
            image = self._blank(width, height, scale, (255, 255, 255))
        writer.draw_image(handle, image)

    def _page_boxes(self, page_num: int, matches: List[Match], rotation: int) -> List[BBox]:
        """Match boxes moved into the frame of the page rotated by `rotation`"""
        width, height = self.renderer.page_size(page_num)
        boxes = []
        for m in matches:
            bbox = m.bbox
            if m.rotation != rotation:
                bbox = rotate_bbox(unrotate_bbox(bbox, width, height, m.rotation),
                                   width, height, rotation)
            boxes.append(bbox)
        return boxes

    def apply(self, source: bytes, matches: Iterable[Match],
              rotations: Optional[Dict[int, int]] = None,
              on_progress: Optional[Callable[[int, int], None]] = None) -> bytes:
        """
        Redact `source` and return the new document bytes.

        `rotations` fixes the orientation correction of a page; other pages
        take the rotation of their first match, or none.
        """
        rotations = rotations or {}
        total = self.renderer.page_count
        by_page: Dict[int, List[Match]] = {}
        for m in matches:
            if not 0 <= m.page_num < total:
                raise IndexError(f"Match on page {m.page_num + 1}, "
                                 f"document has {total} page(s)")
            by_page.setdefault(m.page_num, []).append(m)

        writer = self.writer_factory(source)
        for page_num in range(total):
            if on_progress:
                on_progress(page_num, total)
            page_matches = by_page.get(page_num)
            if page_num in rotations:
                rotation = rotations[page_num]
            else:
                rotation = page_matches[0].rotation if page_matches else 0
            if page_matches:
                boxes = self._page_boxes(page_num, page_matches, rotation)
                self._redact_page(writer, page_num, boxes, rotation)
            else:
                self._pass_through(writer, page_num, rotation)

        logger.info("Redacted %d region(s) on %d page(s)",
                    sum(len(v) for v in by_page.values()), len(by_page))
        return writer.finalize()
