"""
debug.py – Save debug artifacts for visual inspection.

When --debug-dir is set, saves per-image:
  <stem>_trimmed.png, <stem>_alpha.png, <stem>_final.png, <stem>_debug.json
"""

import json
import logging
from pathlib import Path
from typing import Optional

import cv2
import numpy as np

from models import ScreenRect
from screen_locator.image import FrameImage

log = logging.getLogger(__name__)


def draw_screen_rect(image_bgr: np.ndarray, rect: ScreenRect, color=(0, 255, 0), thickness: int = 3) -> np.ndarray:
    """Return a copy of `image_bgr` with the percent rect outlined."""
    h, w = image_bgr.shape[:2]
    out = image_bgr.copy()
    x0 = int(round(rect.x / 100.0 * w))
    y0 = int(round(rect.y / 100.0 * h))
    x1 = int(round((rect.x + rect.w) / 100.0 * w))
    y1 = int(round((rect.y + rect.h) / 100.0 * h))
    cv2.rectangle(out, (x0, y0), (x1, y1), color, thickness)
    return out


def save_debug_artifacts(
    debug_dir: Path,
    stem: str,
    image: FrameImage,
    rect: Optional[ScreenRect],
) -> None:
    """Write debug images and JSON for one frame image."""
    debug_dir.mkdir(parents=True, exist_ok=True)

    # 1. Trimmed artwork
    cv2.imwrite(str(debug_dir / f"{stem}_trimmed.png"), image.pixels)

    # 2. Alpha plane
    cv2.imwrite(str(debug_dir / f"{stem}_alpha.png"), image.alpha)

    # 3. Final result over a checkerboard so the hole is visible
    board = _checkerboard(image.width, image.height)
    alpha = image.alpha[:, :, None].astype(np.float32) / 255.0
    flat = (image.pixels[:, :, :3] * alpha + board * (1.0 - alpha)).astype(np.uint8)
    if rect is not None:
        flat = draw_screen_rect(flat, rect)
        label = f"x={rect.x:.1f} y={rect.y:.1f} w={rect.w:.1f} h={rect.h:.1f}"
        cv2.putText(flat, label, (20, 40), cv2.FONT_HERSHEY_SIMPLEX, 1.0, (0, 255, 0), 2)
    else:
        cv2.putText(flat, "NO SCREEN", (20, 40), cv2.FONT_HERSHEY_SIMPLEX, 1.0, (0, 0, 255), 2)
    cv2.imwrite(str(debug_dir / f"{stem}_final.png"), flat)

    # 4. Debug JSON
    debug_data = {
        "source": image.source_path,
        "trimmed_size": [image.width, image.height],
        "found": rect is not None,
        "screen_rect": rect.to_dict() if rect else None,
    }
    with open(debug_dir / f"{stem}_debug.json", "w") as fh:
        json.dump(debug_data, fh, indent=2)

    log.debug("Debug artifacts written for %s", stem)


def _checkerboard(width: int, height: int, cell: int = 16) -> np.ndarray:
    ys, xs = np.indices((height, width))
    light = ((xs // cell + ys // cell) % 2 == 0)
    board = np.where(light, 200, 120).astype(np.uint8)
    return np.repeat(board[:, :, None], 3, axis=2)
