"""
placement.py – Pure geometry for placing source video inside the screen rect.

Fit policies:
  - fit:     uniform scale, whole source visible (letterbox)
  - fill:    uniform scale, source covers the target (crop)
  - stretch: independent X/Y scale (distort)

Zoom multiplies the base scale for every policy, stretch included.
Offsets are fractions of HALF the target dimension, so ±1.0 moves the
content centre onto the target edge.
"""

from typing import Tuple

from config import config
from models import FitMode, Origin, PixelRect, PlacementTransform, ScreenRect


def upright_size(width: float, height: float, rotation: float = 0) -> Tuple[float, float]:
    """Apply a rotation (degrees) to a natural size, returning the displayed size."""
    if int(round(rotation)) % 180 != 0:
        return abs(height), abs(width)
    return abs(width), abs(height)


def clamp_zoom(zoom: float) -> float:
    return max(config.ZOOM_MIN, float(zoom))


def clamp_offset(value: float) -> float:
    return min(1.0, max(-1.0, float(value)))


def screen_rect_to_pixels(rect: ScreenRect, frame_rect: PixelRect) -> PixelRect:
    """Convert a percent rect of the frame artwork into canvas pixels (top-left origin)."""
    return PixelRect(
        x=frame_rect.x + rect.x / 100.0 * frame_rect.width,
        y=frame_rect.y + rect.y / 100.0 * frame_rect.height,
        width=rect.w / 100.0 * frame_rect.width,
        height=rect.h / 100.0 * frame_rect.height,
    )


def to_bottom_left(rect: PixelRect, canvas_height: float) -> PixelRect:
    """Top-left origin rect -> bottom-left origin rect: y' = H - y - h."""
    return rect.to_bottom_left(canvas_height)


def compute_placement(
    source_size: Tuple[float, float],
    rotation: float,
    target: PixelRect,
    fit_mode: FitMode,
    zoom: float = 1.0,
    offset_x: float = 0.0,
    offset_y: float = 0.0,
    origin: Origin = Origin.TOP_LEFT,
) -> PlacementTransform:
    """Compute the scale+translate that puts the upright source into `target`.

    `target` must already be expressed in the `origin` coordinate space. A
    positive offset_y always moves content visually down, whichever origin
    is used.
    """
    src_w, src_h = upright_size(source_size[0], source_size[1], rotation)
    src_w = max(1.0, src_w)
    src_h = max(1.0, src_h)
    target_w = max(1.0, target.width)
    target_h = max(1.0, target.height)

    zoom = clamp_zoom(zoom)
    ox = clamp_offset(offset_x)
    oy = clamp_offset(offset_y)

    if fit_mode == FitMode.STRETCH:
        scale_x = target_w / src_w * zoom
        scale_y = target_h / src_h * zoom
    else:
        if fit_mode == FitMode.FILL:
            base = max(target_w / src_w, target_h / src_h)
        else:
            base = min(target_w / src_w, target_h / src_h)
        scale_x = scale_y = base * zoom

    scaled_w = src_w * scale_x
    scaled_h = src_h * scale_y

    dx = ox * (target_w / 2.0)
    dy = oy * (target_h / 2.0)
    if origin == Origin.BOTTOM_LEFT:
        dy = -dy

    tx = target.x + (target_w - scaled_w) / 2.0 + dx
    ty = target.y + (target_h - scaled_h) / 2.0 + dy

    return PlacementTransform(scale_x=scale_x, scale_y=scale_y, translate_x=tx, translate_y=ty)
