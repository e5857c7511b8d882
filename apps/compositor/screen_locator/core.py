"""
core.py – Locate the transparent screen hole inside device-frame artwork.

Detection strategy:
  1. Downsample so the longest edge is DETECTION_WORKING_SIZE px
  2. Search square rings outward from the centre for the first alpha == 0 pixel
  3. 4-connected flood fill (explicit stack + visited bitmap) over alpha == 0
  4. Bounding box -> percentages of the working image
  5. Inset each edge by DETECTION_INSET_PCT to drop anti-aliased border pixels

Percentages are resolution independent, so the result is valid against the
full-resolution trimmed image.
"""

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from config import config
from models import ScreenRect
from screen_locator.image import FrameImage

log = logging.getLogger(__name__)


def downsample_alpha(alpha: np.ndarray, working_size: int) -> np.ndarray:
    """Resize an alpha plane so its longest edge is at most `working_size`."""
    h, w = alpha.shape[:2]
    longest = max(w, h)
    if longest <= working_size:
        return alpha
    scale = working_size / longest
    new_w = max(1, int(round(w * scale)))
    new_h = max(1, int(round(h * scale)))
    return cv2.resize(alpha, (new_w, new_h), interpolation=cv2.INTER_AREA)


def find_center_seed(alpha: np.ndarray) -> Optional[Tuple[int, int]]:
    """First (x, y) with alpha == 0 found in square rings around the centre."""
    h, w = alpha.shape[:2]
    cx, cy = w // 2, h // 2
    max_radius = max(cx, cy, w - cx, h - cy)

    for r in range(max_radius + 1):
        x0, x1 = max(0, cx - r), min(w - 1, cx + r)
        y0, y1 = max(0, cy - r), min(h - 1, cy + r)

        # Ring sides, each only if it lies inside the image
        if cy - r >= 0:
            hits = np.flatnonzero(alpha[cy - r, x0:x1 + 1] == 0)
            if hits.size:
                return x0 + int(hits[0]), cy - r
        if cy + r < h:
            hits = np.flatnonzero(alpha[cy + r, x0:x1 + 1] == 0)
            if hits.size:
                return x0 + int(hits[0]), cy + r
        if cx - r >= 0:
            hits = np.flatnonzero(alpha[y0:y1 + 1, cx - r] == 0)
            if hits.size:
                return cx - r, y0 + int(hits[0])
        if cx + r < w:
            hits = np.flatnonzero(alpha[y0:y1 + 1, cx + r] == 0)
            if hits.size:
                return cx + r, y0 + int(hits[0])

    return None


def flood_fill_bounds(alpha: np.ndarray, seed: Tuple[int, int]) -> Tuple[int, int, int, int]:
    """Bounding box (x0, y0, x1, y1) of the alpha == 0 region 4-connected to `seed`."""
    h, w = alpha.shape[:2]
    hole = alpha == 0
    visited = np.zeros((h, w), dtype=bool)

    sx, sy = seed
    min_x = max_x = sx
    min_y = max_y = sy

    stack = [(sx, sy)]
    visited[sy, sx] = True
    while stack:
        x, y = stack.pop()
        if x < min_x:
            min_x = x
        elif x > max_x:
            max_x = x
        if y < min_y:
            min_y = y
        elif y > max_y:
            max_y = y

        for nx, ny in ((x + 1, y), (x - 1, y), (x, y + 1), (x, y - 1)):
            if 0 <= nx < w and 0 <= ny < h and not visited[ny, nx] and hole[ny, nx]:
                visited[ny, nx] = True
                stack.append((nx, ny))

    return min_x, min_y, max_x, max_y


def bounds_to_screen_rect(
    bounds: Tuple[int, int, int, int],
    width: int,
    height: int,
    inset_pct: float = 0.0,
) -> ScreenRect:
    """Pixel bounds (inclusive) -> percent rect, shrunk by `inset_pct` per edge when it fits."""
    x0, y0, x1, y1 = bounds
    x = x0 / width * 100.0
    y = y0 / height * 100.0
    w = (x1 - x0 + 1) / width * 100.0
    h = (y1 - y0 + 1) / height * 100.0

    if inset_pct > 0 and w > 4 * inset_pct and h > 4 * inset_pct:
        x += inset_pct
        y += inset_pct
        w -= 2 * inset_pct
        h -= 2 * inset_pct

    return ScreenRect(x, y, w, h).clamped()


def detect_screen_rect(
    image: FrameImage,
    *,
    working_size: Optional[int] = None,
    inset_pct: Optional[float] = None,
) -> Optional[ScreenRect]:
    """Detect the screen hole of an already-trimmed frame image.

    Returns None when the image has no fully transparent pixel.
    """
    working_size = working_size or config.DETECTION_WORKING_SIZE
    inset_pct = config.DETECTION_INSET_PCT if inset_pct is None else inset_pct

    small = downsample_alpha(image.alpha, working_size)
    seed = find_center_seed(small)
    if seed is None:
        log.info("No transparent pixel in frame image, keeping previous screen rect")
        return None

    bounds = flood_fill_bounds(small, seed)
    small_h, small_w = small.shape[:2]
    rect = bounds_to_screen_rect(bounds, small_w, small_h, inset_pct)

    log.info(
        "Detected screen (seed=%s, working=%dx%d): x=%.2f y=%.2f w=%.2f h=%.2f",
        seed, small_w, small_h, rect.x, rect.y, rect.w, rect.h,
    )
    return rect
