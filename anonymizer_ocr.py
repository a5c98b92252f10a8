"""
OCR for scanned pages.

TesseractEngine wraps pytesseract. OCRWorkerPool owns a fixed set of engine
instances and feeds pages to them from a work queue. OCROrchestrator renders
pages, corrects their orientation, converts engine output back into page
units and keeps the per-document block and rotation caches.
"""

import logging
import queue
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from enum import Enum
from functools import partial
from typing import Callable, Dict, Iterable, List, Optional, Tuple

import pytesseract
from PIL import Image, ImageEnhance

from anonymizer_config import AnonymizerConfig
from anonymizer_coords import scale_bbox
from anonymizer_types import (
    AnonymizerError, OCRError, OCRInitError, OCRLine, SOURCE_OCR, TextBlock, WordBox,
)

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[int, int], None]


def preprocess_for_ocr(img: Image.Image) -> Image.Image:
    """
    Grayscale, contrast and sharpen an image for Tesseract.

    Geometry is untouched so boxes from the processed image apply to the
    original.
    """
    gray = img.convert('L')
    gray = ImageEnhance.Contrast(gray).enhance(1.5)
    gray = ImageEnhance.Sharpness(gray).enhance(1.3)

    # Find the 5th and 95th percentile brightness values
    hist = gray.histogram()
    total_pixels = sum(hist)
    cumsum = 0
    p5, p95 = None, None
    for i, count in enumerate(hist):
        cumsum += count
        if p5 is None and cumsum >= total_pixels * 0.05:
            p5 = i
        if p95 is None and cumsum >= total_pixels * 0.95:
            p95 = i
            break
    p5 = p5 if p5 is not None else 0
    p95 = p95 if p95 is not None else 255

    # Only threshold truly flat/low-contrast scans (e.g. faded faxes)
    if (p95 - p5) < 40 and p95 < 200:
        threshold = (p5 + p95) // 2
        gray = gray.point(lambda x: 255 if x > threshold else 0)

    return gray


class TesseractEngine:
    """OCR Engine backed by the tesseract binary"""

    def __init__(self, lang: str = 'eng', tesseract_cmd: Optional[str] = None,
                 preprocess: bool = True):
        self.lang = lang
        self.tesseract_cmd = tesseract_cmd
        self.preprocess = preprocess

    @classmethod
    def from_config(cls, config: AnonymizerConfig) -> 'TesseractEngine':
        return cls(lang=config.tesseract_lang,
                   tesseract_cmd=config.tesseract_cmd,
                   preprocess=config.preprocess_ocr)

    def initialize(self):
        """Check that tesseract runs and has the requested languages"""
        if self.tesseract_cmd:
            pytesseract.pytesseract.tesseract_cmd = self.tesseract_cmd

        version = pytesseract.get_tesseract_version()
        available = set(pytesseract.get_languages(config=''))
        missing = [lang for lang in self.lang.split('+') if lang not in available]
        if missing:
            raise OCRInitError(
                f"Tesseract {version} has no language data for: {', '.join(missing)}"
            )

    def recognize(self, image: Image.Image) -> List[OCRLine]:
        """Recognize lines and words; boxes are in image pixels"""
        if self.preprocess:
            image = preprocess_for_ocr(image)
        data = pytesseract.image_to_data(
            image, lang=self.lang, output_type=pytesseract.Output.DICT
        )

        lines: Dict[Tuple[int, int, int], List[Tuple[WordBox, float]]] = {}
        for i in range(len(data['text'])):
            word_text = (data['text'][i] or '').strip()
            conf = float(data['conf'][i])
            # Structural rows have conf -1 and no text
            if conf < 0 or not word_text:
                continue
            key = (data['block_num'][i], data['par_num'][i], data['line_num'][i])
            left, top = data['left'][i], data['top'][i]
            word = WordBox(word_text, (left, top,
                                       left + data['width'][i], top + data['height'][i]))
            lines.setdefault(key, []).append((word, conf))

        result = []
        for entries in lines.values():
            words = [w for w, _ in entries]
            result.append(OCRLine(
                text=' '.join(w.text for w in words),
                bbox=(min(w.bbox[0] for w in words), min(w.bbox[1] for w in words),
                      max(w.bbox[2] for w in words), max(w.bbox[3] for w in words)),
                confidence=sum(c for _, c in entries) / len(entries),
                words=words,
            ))
        return result

    def detect_orientation(self, image: Image.Image) -> Tuple[int, float]:
        """
        Clockwise correction in degrees and its confidence.

        Tesseract reports the page orientation counter-clockwise.
        """
        osd = pytesseract.image_to_osd(image, output_type=pytesseract.Output.DICT)
        orientation = int(osd.get('orientation', 0))
        return (360 - orientation) % 360, float(osd.get('orientation_conf', 0.0))


class PoolState(Enum):
    UNINITIALIZED = 'uninitialized'
    INITIALIZING = 'initializing'
    READY = 'ready'


class OCRWorkerPool:
    """
    A fixed number of OCR engines served from a work queue.

    Each engine handles one page at a time; a page goes to whichever engine
    frees up first.
    """

    def __init__(self, engine_factory: Callable[[], object], size: int):
        if size < 1:
            raise ValueError("Pool size must be at least 1")
        self.engine_factory = engine_factory
        self.size = size
        self.state = PoolState.UNINITIALIZED
        self._slots: Optional[queue.Queue] = None

    def _create_engine(self, _):
        engine = self.engine_factory()
        init = getattr(engine, 'initialize', None)
        if init is not None:
            init()
        return engine

    def initialize(self):
        if self.state is PoolState.READY:
            return

        self.state = PoolState.INITIALIZING
        logger.info("Initializing %d OCR workers...", self.size)
        try:
            with ThreadPoolExecutor(max_workers=self.size) as executor:
                engines = list(executor.map(self._create_engine, range(self.size)))
        except Exception as e:
            self.state = PoolState.UNINITIALIZED
            if isinstance(e, OCRInitError):
                raise
            raise OCRInitError(f"Failed to initialize OCR workers: {e}") from e

        slots = queue.Queue(maxsize=self.size)
        for engine in engines:
            slots.put(engine)
        self._slots = slots
        self.state = PoolState.READY
        logger.info("OCR workers ready")

    def _run_on_slot(self, task, item):
        engine = self._slots.get()
        try:
            return task(engine, item)
        finally:
            self._slots.put(engine)

    def run(self, items: Iterable, task: Callable, on_progress: Optional[ProgressCallback] = None) -> dict:
        """
        Run task(engine, item) for every item and return {item: result}.

        The first failure cancels pending items and is re-raised.
        """
        if self.state is not PoolState.READY:
            raise RuntimeError("OCR worker pool is not initialized")

        items = list(items)
        results = {}
        with ThreadPoolExecutor(max_workers=self.size, thread_name_prefix='ocr') as executor:
            futures = {executor.submit(self._run_on_slot, task, item): item for item in items}
            try:
                for done, future in enumerate(as_completed(futures), 1):
                    results[futures[future]] = future.result()
                    if on_progress:
                        on_progress(done, len(items))
            except BaseException:
                for future in futures:
                    future.cancel()
                raise
        return results


@dataclass
class PageOCRResult:
    """What one worker sends back for one page"""
    page_num: int
    rotation: int
    blocks: List[TextBlock]
    osd_failed: bool = False


def lines_to_blocks(lines: Iterable[OCRLine], scale: float) -> List[TextBlock]:
    """Convert engine lines in pixels to OCR TextBlocks in page units"""
    blocks = []
    inv = 1.0 / scale
    for line in lines:
        words = tuple(WordBox(w.text, scale_bbox(w.bbox, inv)) for w in line.words if w.text)
        text = ' '.join(w.text for w in words) if words else line.text
        if not text.strip():
            continue
        blocks.append(TextBlock(
            text=text,
            bbox=scale_bbox(line.bbox, inv),
            source=SOURCE_OCR,
            words=words or None,
            confidence=line.confidence,
        ))
    return blocks


class OCROrchestrator:
    """Runs OCR over pages of the open document and caches the results"""

    def __init__(self, renderer, config: Optional[AnonymizerConfig] = None,
                 engine_factory: Optional[Callable[[], object]] = None,
                 pool: Optional[OCRWorkerPool] = None):
        self.renderer = renderer
        self.config = config or AnonymizerConfig()
        if pool is None:
            factory = engine_factory or partial(TesseractEngine.from_config, self.config)
            pool = OCRWorkerPool(factory, self.config.pool_size)
        self.pool = pool
        self.block_cache: Dict[int, List[TextBlock]] = {}
        self.rotation_cache: Dict[int, int] = {}
        self.osd_available = True

    def reset(self, renderer=None):
        """Forget everything about the previous document"""
        if renderer is not None:
            self.renderer = renderer
        self.block_cache.clear()
        self.rotation_cache.clear()
        self.osd_available = True

    def has_blocks(self, page_num: int) -> bool:
        return page_num in self.block_cache

    def blocks(self, page_num: int) -> List[TextBlock]:
        return self.block_cache.get(page_num, [])

    def rotation(self, page_num: int) -> int:
        return self.rotation_cache.get(page_num, 0)

    def ocr_pages(self, pages: Iterable[int],
                  on_progress: Optional[ProgressCallback] = None) -> Dict[int, List[TextBlock]]:
        """OCR every uncached page and return blocks for all requested pages"""
        pages = sorted(set(pages))
        uncached = [p for p in pages if p not in self.block_cache]

        if uncached:
            self.pool.initialize()
            logger.info("Running OCR on %d page(s)", len(uncached))
            task = partial(self._ocr_page,
                           known_rotations=dict(self.rotation_cache),
                           detect=self.osd_available)
            results = self.pool.run(uncached, task, on_progress)

            for page_num in sorted(results):
                result = results[page_num]
                if result.osd_failed and self.osd_available:
                    logger.warning("Orientation detection unavailable, assuming upright pages")
                    self.osd_available = False
                self.rotation_cache.setdefault(page_num, result.rotation)
                self.block_cache[page_num] = result.blocks

        return {p: self.block_cache[p] for p in pages}

    def _detect_rotation(self, engine, page_num: int) -> Tuple[int, bool]:
        detector = getattr(engine, 'detect_orientation', None)
        if detector is None:
            return 0, True
        image = self.renderer.render_page(page_num, self.config.osd_scale, 0)
        try:
            rotation, confidence = detector(image)
        except (pytesseract.TesseractError, NotImplementedError) as e:
            logger.debug("Orientation detection failed on page %d: %s", page_num + 1, e)
            return 0, True
        logger.debug("Page %d orientation: rotate %d (confidence %.2f)",
                     page_num + 1, rotation, confidence)
        return int(rotation) % 360, False

    def _ocr_page(self, engine, page_num: int, known_rotations: Dict[int, int],
                  detect: bool) -> PageOCRResult:
        try:
            osd_failed = False
            rotation = known_rotations.get(page_num)
            if rotation is None:
                if detect:
                    rotation, osd_failed = self._detect_rotation(engine, page_num)
                else:
                    rotation = 0

            scale = self.config.ocr_scale
            image = self.renderer.render_page(page_num, scale, rotation)
            lines = engine.recognize(image)
        except AnonymizerError:
            raise
        except Exception as e:
            raise OCRError(f"OCR failed on page {page_num + 1}: {e}") from e

        blocks = lines_to_blocks(lines, scale)
        logger.debug("Page %d: %d OCR line(s)", page_num + 1, len(blocks))
        return PageOCRResult(page_num, rotation, blocks, osd_failed)
