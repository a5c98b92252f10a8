"""
Match-to-geometry correlation.

Turns a regex hit inside a block into a bounding box. OCR blocks carry
per-word boxes and are interpolated word by word; blocks with only a line
box assume a uniform character width. For native text the estimate is then
paired with the exact glyph rectangles returned by a literal search of the
page.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from anonymizer_types import BBox, Point, TextBlock, Uniform, WordBox, WordLevel

logger = logging.getLogger(__name__)

# (word index, offset within word) per character; None for separators
CharMap = List[Optional[Tuple[int, int]]]


def uniform_bbox(text: str, bbox: BBox, char_index: int, length: int) -> BBox:
    """Box of a substring assuming every character has the same width"""
    if not text:
        return bbox
    x0, y0, x1, y1 = bbox
    char_width = (x1 - x0) / len(text)
    return (x0 + char_index * char_width, y0,
            x0 + (char_index + length) * char_width, y1)


def build_char_map(text: str, words: Sequence[WordBox]) -> CharMap:
    """
    Map every character of `text` to the word it belongs to.

    Words are located left to right; anything between them (spaces, or text
    the OCR engine put on the line but not in a word) maps to None.
    """
    char_map: CharMap = [None] * len(text)
    pos = 0
    for word_index, word in enumerate(words):
        if not word.text:
            continue
        start = text.find(word.text, pos)
        if start < 0:
            continue
        for offset in range(len(word.text)):
            char_map[start + offset] = (word_index, offset)
        pos = start + len(word.text)
    return char_map


def word_level_bbox(text: str, words: Sequence[WordBox],
                    char_index: int, length: int) -> Optional[BBox]:
    """
    Box of a substring from per-word geometry.

    Fully covered words contribute their whole box; partially covered words
    are interpolated across their width. Returns None if the range touches
    no word.
    """
    char_map = build_char_map(text, words)
    touched: Dict[int, List[int]] = {}
    for entry in char_map[char_index:char_index + length]:
        if entry is None:
            continue
        word_index, offset = entry
        span = touched.setdefault(word_index, [offset, offset])
        span[0] = min(span[0], offset)
        span[1] = max(span[1], offset)

    if not touched:
        return None

    boxes = []
    for word_index in sorted(touched):
        word = words[word_index]
        first, last = touched[word_index]
        wx0, wy0, wx1, wy1 = word.bbox
        n = len(word.text)
        if first == 0 and last == n - 1:
            boxes.append(word.bbox)
            continue
        char_width = (wx1 - wx0) / n
        boxes.append((wx0 + first * char_width, wy0,
                      wx0 + (last + 1) * char_width, wy1))

    return (min(b[0] for b in boxes), min(b[1] for b in boxes),
            max(b[2] for b in boxes), max(b[3] for b in boxes))


def estimate_bbox(block: TextBlock, char_index: int, length: int) -> BBox:
    geometry = block.geometry
    if isinstance(geometry, WordLevel):
        bbox = word_level_bbox(block.text, geometry.words, char_index, length)
        if bbox is not None:
            return bbox
        logger.debug("Match at %d in %r touches no word, using line box",
                     char_index, block.text)
        return uniform_bbox(block.text, block.bbox, char_index, length)
    if isinstance(geometry, Uniform):
        return uniform_bbox(block.text, geometry.bbox, char_index, length)
    raise TypeError(f"Unknown block geometry: {geometry!r}")


def quad_to_bbox(quad: Iterable[Point]) -> BBox:
    """Axis-aligned rectangle around the four corners of a quad"""
    points = list(quad)
    xs = [p[0] for p in points]
    ys = [p[1] for p in points]
    return (min(xs), min(ys), max(xs), max(ys))


@dataclass
class EstimatedHit:
    """A regex hit with its estimated box and the block it came from"""
    text: str
    term: str
    est_bbox: BBox
    block_bbox: BBox


class QuadCorrelator:
    """
    Pairs estimated hits with authoritative glyph rectangles.

    A rectangle is consumed at most once, so two hits of the same literal
    text on a page never collapse onto one glyph run.
    """

    def __init__(self):
        self._used: Set[BBox] = set()

    def pick(self, hit: EstimatedHit, candidates: Sequence[BBox]) -> BBox:
        best = None
        best_dist = float('inf')
        _, by0, _, by1 = hit.block_bbox

        for bbox in candidates:
            if bbox in self._used:
                continue
            # Same line
            if not (bbox[1] < by1 and bbox[3] > by0):
                continue
            dist = abs(bbox[0] - hit.est_bbox[0])
            if dist < best_dist:
                best_dist = dist
                best = bbox

        if best is None:
            logger.debug("No glyph rectangle for %r, keeping estimate", hit.text)
            return hit.est_bbox

        self._used.add(best)
        return best

    def correlate(self, hits: Sequence[EstimatedHit],
                  rects_by_text: Dict[str, Sequence[BBox]]) -> List[BBox]:
        return [self.pick(hit, rects_by_text.get(hit.text, ())) for hit in hits]
