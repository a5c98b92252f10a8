"""
The collection of regions to redact.

MatchStore holds engine-found and user-drawn matches. DragTracker turns a
press/move/release gesture over a page preview into a manual match.
"""

import logging
from enum import Enum
from typing import Dict, Iterable, List, Optional

from anonymizer_coords import display_to_pdf, normalize_bbox
from anonymizer_types import BBox, MANUAL_TERM, MANUAL_TEXT, Match, PageGeometry, Point

logger = logging.getLogger(__name__)


class MatchStore:
    """Ordered matches for the open document"""

    def __init__(self, page_count: int = 0):
        self.page_count = page_count
        self._matches: List[Match] = []

    def __len__(self):
        return len(self._matches)

    def __iter__(self):
        return iter(self._matches)

    def __getitem__(self, index):
        return self._matches[index]

    @property
    def matches(self) -> List[Match]:
        return list(self._matches)

    @property
    def manual(self) -> List[Match]:
        return [m for m in self._matches if m.is_manual]

    @property
    def automatic(self) -> List[Match]:
        return [m for m in self._matches if not m.is_manual]

    def _check_page(self, page_num: int):
        if not 0 <= page_num < self.page_count:
            raise IndexError(f"Page {page_num} out of range (document has {self.page_count})")

    def reset(self, page_count: int):
        self.page_count = page_count
        self._matches = []

    def replace_automatic(self, matches: Iterable[Match]) -> List[Match]:
        """Drop all automatic matches and append `matches` after the manual ones"""
        new = list(matches)
        for m in new:
            self._check_page(m.page_num)
        self._matches = self.manual + new
        return self.matches

    def add(self, match: Match) -> Match:
        self._check_page(match.page_num)
        self._matches.append(match)
        return match

    def add_manual(self, page_num: int, bbox: BBox, rotation: int = 0) -> Match:
        return self.add(Match(
            text=MANUAL_TEXT,
            term=MANUAL_TERM,
            bbox=normalize_bbox(bbox),
            page_num=page_num,
            is_manual=True,
            rotation=rotation,
        ))

    def remove(self, index: int) -> Match:
        if not 0 <= index < len(self._matches):
            raise IndexError(f"No match at index {index}")
        return self._matches.pop(index)

    def clear(self):
        self._matches = []

    def by_page(self) -> Dict[int, List[Match]]:
        pages: Dict[int, List[Match]] = {}
        for m in self._matches:
            pages.setdefault(m.page_num, []).append(m)
        return pages


def drag_to_bbox(start: Point, end: Point, geometry: PageGeometry,
                 disp_scale: float, min_size: float = 5.0) -> Optional[BBox]:
    """
    PDF-space box for a drag between two display points.

    Returns None when the box is smaller than `min_size` display pixels on
    either axis.
    """
    left, top, right, bottom = normalize_bbox((start[0], start[1], end[0], end[1]))
    if right - left < min_size or bottom - top < min_size:
        return None
    return display_to_pdf((left, top, right, bottom), geometry.render_scale, disp_scale)


class DragState(Enum):
    IDLE = 'idle'
    DRAGGING = 'dragging'
    COMMITTED = 'committed'


class DragTracker:
    """
    Idle -> Dragging -> Committed state machine for one page preview.

    release() returns the committed PDF-space box, or None when the drag was
    too small; either way the tracker is ready for the next press.
    """

    def __init__(self, geometry: PageGeometry, disp_scale: float, min_size: float = 5.0):
        self.geometry = geometry
        self.disp_scale = disp_scale
        self.min_size = min_size
        self.state = DragState.IDLE
        self.start: Optional[Point] = None
        self.current: Optional[Point] = None

    def press(self, x: float, y: float):
        self.state = DragState.DRAGGING
        self.start = self.current = (x, y)

    def move(self, x: float, y: float) -> Optional[BBox]:
        """Update the drag; returns the preview rectangle in display space"""
        if self.state is not DragState.DRAGGING:
            return None
        self.current = (x, y)
        return normalize_bbox(self.start + self.current)

    def release(self, x: float, y: float) -> Optional[BBox]:
        if self.state is not DragState.DRAGGING:
            return None
        bbox = drag_to_bbox(self.start, (x, y), self.geometry, self.disp_scale, self.min_size)
        if bbox is None:
            logger.debug("Drag below %.0fpx ignored", self.min_size)
            self.cancel()
            return None
        self.state = DragState.COMMITTED
        self.start = self.current = None
        return bbox

    def cancel(self):
        self.state = DragState.IDLE
        self.start = self.current = None
