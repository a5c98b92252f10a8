"""
Shared data types for the PDF Anonymizer.

Boxes are plain (x0, y0, x1, y1) tuples in page-user-space units unless a
function says otherwise.
"""

from dataclasses import dataclass, field
from typing import List, Optional, Tuple, Union

BBox = Tuple[float, float, float, float]
Point = Tuple[float, float]

SOURCE_NATIVE = 'native'
SOURCE_OCR = 'ocr'

MANUAL_TERM = '__manual__'
MANUAL_TEXT = '[Manual Redaction]'


class AnonymizerError(Exception):
    """Base class for errors surfaced to the caller"""


class DocumentOpenError(AnonymizerError):
    """The document could not be opened or parsed"""


class OCRInitError(AnonymizerError):
    """The OCR worker pool failed to start"""


class OCRError(AnonymizerError):
    """Recognition failed on a page during a scan"""


@dataclass(frozen=True)
class WordBox:
    """A single recognized word and its box"""
    text: str
    bbox: BBox


@dataclass(frozen=True)
class Uniform:
    """Block geometry known only at block level"""
    bbox: BBox


@dataclass(frozen=True)
class WordLevel:
    """Block geometry with per-word boxes in reading order"""
    words: Tuple[WordBox, ...]


BlockGeometry = Union[Uniform, WordLevel]


@dataclass(frozen=True)
class TextBlock:
    """A line of recognized or extracted text on one page"""
    text: str
    bbox: BBox
    source: str = SOURCE_NATIVE
    words: Optional[Tuple[WordBox, ...]] = None
    confidence: float = 1.0

    @property
    def geometry(self) -> BlockGeometry:
        if self.words:
            return WordLevel(self.words)
        return Uniform(self.bbox)


@dataclass
class PageGeometry:
    """
    Per-page preview record.

    width/height are page units after orientation correction, render_scale is
    the pixels-per-unit of the last preview render and rotation the clockwise
    correction applied to the raster.
    """
    width: float
    height: float
    render_scale: float
    rotation: int = 0


@dataclass
class Match:
    """
    A region to redact on one page.

    bbox is in page units of the page turned clockwise by `rotation`, the
    orientation correction in effect when the match was found.
    """
    text: str
    term: str
    bbox: BBox
    page_num: int
    is_manual: bool = False
    rotation: int = 0

    def to_dict(self) -> dict:
        return {
            'text': self.text,
            'term': self.term,
            'bbox': list(self.bbox),
            'page_num': self.page_num,
            'is_manual': self.is_manual,
            'rotation': self.rotation,
        }

    @classmethod
    def from_dict(cls, data: dict) -> 'Match':
        return cls(
            text=data['text'],
            term=data['term'],
            bbox=tuple(float(v) for v in data['bbox']),
            page_num=int(data['page_num']),
            is_manual=bool(data.get('is_manual', False)),
            rotation=int(data.get('rotation', 0)) % 360,
        )


@dataclass
class OCRLine:
    """A line as returned by the OCR Engine, in raster pixels"""
    text: str
    bbox: BBox
    confidence: float
    words: List[WordBox] = field(default_factory=list)
