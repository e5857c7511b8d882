"""
image.py – Frame artwork loading and transparent-padding trim.

Frame images are BGRA numpy arrays (OpenCV channel order). They are never
modified in place: trimming returns a new FrameImage.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Tuple

import cv2
import numpy as np

log = logging.getLogger(__name__)


class FrameImageError(Exception):
    """Frame image could not be decoded."""
    pass


@dataclass(frozen=True, eq=False)
class FrameImage:
    """A decoded BGRA raster of device-frame artwork."""
    pixels: np.ndarray
    source_path: Optional[str] = None

    def __post_init__(self):
        if self.pixels.ndim != 3 or self.pixels.shape[2] != 4:
            raise FrameImageError(f"Frame image must be BGRA, got shape {self.pixels.shape}")
        self.pixels.flags.writeable = False

    @property
    def width(self) -> int:
        return int(self.pixels.shape[1])

    @property
    def height(self) -> int:
        return int(self.pixels.shape[0])

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def alpha(self) -> np.ndarray:
        return self.pixels[:, :, 3]

    @property
    def aspect_ratio(self) -> float:
        return self.width / self.height

    def save(self, path: str) -> str:
        if not cv2.imwrite(str(path), self.pixels):
            raise FrameImageError(f"Cannot write image: {path}")
        return str(path)


def to_bgra(image: np.ndarray) -> np.ndarray:
    """Promote gray/BGR images to BGRA with an opaque alpha."""
    if image.ndim == 2:
        return cv2.cvtColor(image, cv2.COLOR_GRAY2BGRA)
    if image.shape[2] == 3:
        return cv2.cvtColor(image, cv2.COLOR_BGR2BGRA)
    return image


def load_frame_image(path: str) -> FrameImage:
    """Decode a PNG (keeping its alpha channel) into a FrameImage."""
    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise FrameImageError(f"Cannot read image: {path}")
    if img.dtype != np.uint8:
        # 16-bit PNGs
        img = (img / 257).astype(np.uint8)
    return FrameImage(pixels=to_bgra(img), source_path=str(Path(path)))


def visible_bounds(alpha: np.ndarray) -> Optional[Tuple[int, int, int, int]]:
    """Minimal (x, y, w, h) box containing any pixel with alpha > 0."""
    rows = np.flatnonzero(alpha.max(axis=1) > 0)
    if rows.size == 0:
        return None
    cols = np.flatnonzero(alpha.max(axis=0) > 0)
    y0, y1 = int(rows[0]), int(rows[-1])
    x0, x1 = int(cols[0]), int(cols[-1])
    return x0, y0, x1 - x0 + 1, y1 - y0 + 1


def trim_transparent(image: FrameImage) -> FrameImage:
    """Crop fully-transparent padding. A fully transparent image is returned unchanged."""
    bounds = visible_bounds(image.alpha)
    if bounds is None:
        log.warning("Frame image is fully transparent, skipping trim: %s", image.source_path)
        return image

    x, y, w, h = bounds
    if (w, h) == image.size:
        return image

    log.info("Trimmed frame %dx%d -> %dx%d at (%d,%d)", image.width, image.height, w, h, x, y)
    cropped = image.pixels[y:y + h, x:x + w].copy()
    return FrameImage(pixels=cropped, source_path=image.source_path)
