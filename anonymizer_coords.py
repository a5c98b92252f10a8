"""
Coordinate transforms between the four page spaces.

PDF user space  <->  render pixels (x renderScale)
                <->  rotation-corrected pixels (clockwise 0/90/180/270)
                <->  display pixels (x displayScale)

Everything here is pure: the caller supplies render scale, display scale and
page size.
"""

import math
from typing import Tuple

from anonymizer_types import BBox, Point

VALID_ROTATIONS = (0, 90, 180, 270)


def _check_rotation(rotation: int) -> int:
    rotation = int(rotation) % 360
    if rotation not in VALID_ROTATIONS:
        raise ValueError(f"Rotation must be a multiple of 90 degrees, got {rotation}")
    return rotation


def normalize_bbox(bbox: BBox) -> BBox:
    """Order each axis so that x0 <= x1 and y0 <= y1"""
    x0, y0, x1, y1 = bbox
    return (min(x0, x1), min(y0, y1), max(x0, x1), max(y0, y1))


def scale_bbox(bbox: BBox, factor: float) -> BBox:
    return tuple(v * factor for v in bbox)


def pdf_to_render(bbox: BBox, render_scale: float) -> BBox:
    return scale_bbox(bbox, render_scale)


def render_to_pdf(bbox: BBox, render_scale: float) -> BBox:
    return scale_bbox(bbox, 1.0 / render_scale)


def display_scale(onscreen_width: float, pixel_width: float) -> float:
    """Ratio of on-screen width to the underlying raster width"""
    return onscreen_width / pixel_width


def render_to_display(bbox: BBox, scale: float) -> BBox:
    return scale_bbox(bbox, scale)


def display_to_render(bbox: BBox, scale: float) -> BBox:
    return scale_bbox(bbox, 1.0 / scale)


def pdf_to_display(bbox: BBox, render_scale: float, disp_scale: float) -> BBox:
    return render_to_display(pdf_to_render(bbox, render_scale), disp_scale)


def display_to_pdf(bbox: BBox, render_scale: float, disp_scale: float) -> BBox:
    return normalize_bbox(render_to_pdf(display_to_render(bbox, disp_scale), render_scale))


def rotated_size(width: float, height: float, rotation: int) -> Tuple[float, float]:
    """Size of a width x height page after a clockwise rotation"""
    if _check_rotation(rotation) in (90, 270):
        return height, width
    return width, height


def rotate_point(point: Point, width: float, height: float, rotation: int) -> Point:
    """
    Map a point on an unrotated width x height page into the page rotated
    clockwise by `rotation`.
    """
    x, y = point
    rotation = _check_rotation(rotation)
    if rotation == 90:
        return height - y, x
    if rotation == 180:
        return width - x, height - y
    if rotation == 270:
        return y, width - x
    return x, y


def unrotate_point(point: Point, width: float, height: float, rotation: int) -> Point:
    """Inverse of rotate_point; width/height are the unrotated page size"""
    rotation = _check_rotation(rotation)
    rw, rh = rotated_size(width, height, rotation)
    return rotate_point(point, rw, rh, (360 - rotation) % 360)


def rotate_bbox(bbox: BBox, width: float, height: float, rotation: int) -> BBox:
    x0, y0, x1, y1 = bbox
    ax, ay = rotate_point((x0, y0), width, height, rotation)
    bx, by = rotate_point((x1, y1), width, height, rotation)
    return normalize_bbox((ax, ay, bx, by))


def unrotate_bbox(bbox: BBox, width: float, height: float, rotation: int) -> BBox:
    x0, y0, x1, y1 = bbox
    ax, ay = unrotate_point((x0, y0), width, height, rotation)
    bx, by = unrotate_point((x1, y1), width, height, rotation)
    return normalize_bbox((ax, ay, bx, by))


def bbox_to_pixels(bbox: BBox, scale: float,
                   pixel_width: int, pixel_height: int) -> Tuple[int, int, int, int]:
    """
    Pixel rectangle covering a page-space box at `scale`.

    Edges are rounded outward and clamped to the raster; the result is
    end-exclusive and may be empty.
    """
    x0, y0, x1, y1 = normalize_bbox(bbox)
    px0 = max(0, min(pixel_width, math.floor(x0 * scale)))
    py0 = max(0, min(pixel_height, math.floor(y0 * scale)))
    px1 = max(0, min(pixel_width, math.ceil(x1 * scale)))
    py1 = max(0, min(pixel_height, math.ceil(y1 * scale)))
    return px0, py0, px1, py1
