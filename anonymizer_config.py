"""
Configuration for the PDF Anonymizer.

AnonymizerConfig carries every tunable used by the scan and redaction paths.
configure_environment() points pytesseract and pdf2image at Tesseract and
Poppler builds shipped next to the executable, when there are any.
"""

import os
import sys
import logging
from dataclasses import dataclass, field
from typing import Optional

logger = logging.getLogger(__name__)

MAX_OCR_WORKERS = 4


def default_pool_size() -> int:
    return min(os.cpu_count() or MAX_OCR_WORKERS, MAX_OCR_WORKERS)


@dataclass
class AnonymizerConfig:
    """Tunables for scanning, OCR and redaction"""

    # OCR renders at no less than 300 DPI (and never below 2x)
    ocr_dpi: float = 300.0
    ocr_min_scale: float = 2.0
    # Orientation detection only needs a coarse raster
    osd_dpi: float = 150.0

    preview_max_width: float = 800.0
    preview_max_scale: float = 1.5

    redaction_max_scale: float = 3.0
    redaction_max_pixels: float = 4000.0

    pool_size: int = field(default_factory=default_pool_size)
    # A page whose longest native line is this short is treated as scanned
    native_text_min_chars: int = 10
    min_drag_size: float = 5.0

    tesseract_lang: str = 'eng'
    tesseract_cmd: Optional[str] = None
    poppler_path: Optional[str] = None
    preprocess_ocr: bool = True

    @property
    def ocr_scale(self) -> float:
        return max(self.ocr_dpi / 72.0, self.ocr_min_scale)

    @property
    def osd_scale(self) -> float:
        return self.osd_dpi / 72.0

    def preview_scale(self, width: float) -> float:
        return min(self.preview_max_width / width, self.preview_max_scale)

    def redaction_scale(self, width: float, height: float) -> float:
        return min(self.redaction_max_scale,
                   self.redaction_max_pixels / max(width, height))


def get_bundle_dir() -> str:
    """Get the directory where the bundled app is located"""
    if getattr(sys, 'frozen', False):
        return os.path.dirname(sys.executable)
    return os.path.dirname(os.path.abspath(__file__))


def configure_environment(config: AnonymizerConfig,
                          bundle_dir: Optional[str] = None) -> AnonymizerConfig:
    """
    Fill in tesseract/poppler locations from a bundle directory.

    Explicitly configured paths are left alone. Returns the same config.
    """
    bundle_dir = bundle_dir or get_bundle_dir()

    if sys.platform == 'win32':
        tesseract_path = os.path.join(bundle_dir, 'tesseract', 'tesseract.exe')
        tessdata_path = os.path.join(bundle_dir, 'tesseract', 'tessdata')
        poppler_path = os.path.join(bundle_dir, 'poppler')
    elif sys.platform == 'darwin':
        tesseract_path = os.path.join(bundle_dir, 'tesseract', 'bin', 'tesseract')
        tessdata_path = os.path.join(bundle_dir, 'tesseract', 'share', 'tessdata')
        poppler_path = os.path.join(bundle_dir, 'poppler', 'bin')
    else:  # Linux
        tesseract_path = os.path.join(bundle_dir, 'tesseract', 'tesseract')
        tessdata_path = os.path.join(bundle_dir, 'tesseract', 'tessdata')
        poppler_path = os.path.join(bundle_dir, 'poppler')

    if config.tesseract_cmd is None and os.path.exists(tesseract_path):
        config.tesseract_cmd = tesseract_path
        os.environ['TESSDATA_PREFIX'] = tessdata_path
        logger.debug("Using bundled tesseract at %s", tesseract_path)

    if config.poppler_path is None and os.path.exists(poppler_path):
        config.poppler_path = poppler_path
        logger.debug("Using bundled poppler at %s", poppler_path)

    return config
