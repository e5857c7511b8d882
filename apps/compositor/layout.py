"""
layout.py – Canvas geometry shared by the live preview and the export pipeline.

Layers, bottom to top:
  1. black background (canvas size)
  2. source video, placed by the PlacementTransform and clipped by the screen mask
  3. frame overlay, aspect-fit inside the canvas

Mask strategies:
  - inverted_alpha: the see-through component of the frame around the screen
    hole, fully open (follows notches and real corner radii; partially
    transparent edge pixels are blended by the overlay alone)
  - rounded_rect: fallback when there is no frame or the rect centre is opaque
"""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from config import config
from models import FULL_SCREEN_RECT, CompositionConfig, PixelRect, PlacementTransform, ScreenRect
from placement import compute_placement, screen_rect_to_pixels, upright_size
from presets import DEFAULT_SCREEN_RECT
from screen_locator.image import FrameImage

log = logging.getLogger(__name__)

MASK_INVERTED_ALPHA = "inverted_alpha"
MASK_ROUNDED_RECT = "rounded_rect"


def even(n: float) -> int:
    """Largest even integer <= n (video encoders require even dimensions)."""
    n = int(n)
    return max(2, n - (n % 2))


def resolve_canvas_size(config_: CompositionConfig, frame: Optional[FrameImage]) -> Tuple[int, int]:
    """Frame set: fixed width, height from the frame aspect. Otherwise the configured canvas."""
    width = even(config_.canvas_width)
    if frame is None:
        return width, even(config_.canvas_height)
    return width, even(round(width * frame.height / frame.width))


def fit_rect(inner_size: Tuple[int, int], outer_size: Tuple[int, int]) -> PixelRect:
    """Aspect-fit `inner_size` centred in `outer_size`, in whole pixels."""
    inner_w, inner_h = inner_size
    outer_w, outer_h = outer_size
    scale = min(outer_w / inner_w, outer_h / inner_h)
    w = max(1, int(round(inner_w * scale)))
    h = max(1, int(round(inner_h * scale)))
    return PixelRect((outer_w - w) // 2, (outer_h - h) // 2, w, h)


def rounded_rect_mask(canvas_size: Tuple[int, int], rect: PixelRect, radius_ratio: Optional[float] = None) -> np.ndarray:
    """Filled rounded rectangle, radius = ratio * min(w, h)."""
    radius_ratio = config.MASK_CORNER_RATIO if radius_ratio is None else radius_ratio
    canvas_w, canvas_h = canvas_size
    mask = np.zeros((canvas_h, canvas_w), dtype=np.uint8)

    x, y, w, h = rect.rounded()
    if w <= 0 or h <= 0:
        return mask
    x1, y1 = x + w - 1, y + h - 1
    r = int(round(min(w, h) * radius_ratio))
    r = min(r, w // 2, h // 2)

    if r <= 0:
        cv2.rectangle(mask, (x, y), (x1, y1), 255, thickness=-1)
        return mask

    cv2.rectangle(mask, (x + r, y), (x1 - r, y1), 255, thickness=-1)
    cv2.rectangle(mask, (x, y + r), (x1, y1 - r), 255, thickness=-1)
    for cx, cy in ((x + r, y + r), (x1 - r, y + r), (x + r, y1 - r), (x1 - r, y1 - r)):
        cv2.circle(mask, (cx, cy), r, 255, thickness=-1)
    return mask


def inverted_alpha_mask(canvas_alpha: np.ndarray, screen_px: PixelRect, margin_px: Tuple[int, int]) -> Optional[np.ndarray]:
    """Mask = 255 over the see-through component that contains the screen centre.

    Every pixel of the component is fully open, including anti-aliased edge
    pixels, so those are blended once by the overlay alpha and not attenuated
    twice.

    The component is bounded by the screen rect grown by `margin_px` so a hole
    that leaks into the artwork's outer transparency cannot unmask the canvas.
    Returns None when the screen centre is opaque.
    """
    canvas_h, canvas_w = canvas_alpha.shape[:2]
    cx = min(max(int(screen_px.mid_x), 0), canvas_w - 1)
    cy = min(max(int(screen_px.mid_y), 0), canvas_h - 1)
    if canvas_alpha[cy, cx] == 255:
        return None

    see_through = np.where(canvas_alpha < 255, 255, 0).astype(np.uint8)
    component = np.zeros((canvas_h + 2, canvas_w + 2), dtype=np.uint8)
    cv2.floodFill(
        see_through, component, (cx, cy), 0,
        loDiff=0, upDiff=0,
        flags=4 | cv2.FLOODFILL_MASK_ONLY | (255 << 8),
    )
    inside = component[1:-1, 1:-1] > 0

    mx, my = margin_px
    x, y, w, h = screen_px.rounded()
    bounded = np.zeros_like(inside)
    bounded[max(0, y - my):min(canvas_h, y + h + my), max(0, x - mx):min(canvas_w, x + w + mx)] = True

    return np.where(inside & bounded, 255, 0).astype(np.uint8)


def build_screen_mask(
    canvas_size: Tuple[int, int],
    screen_px: PixelRect,
    canvas_alpha: Optional[np.ndarray] = None,
    frame_size: Optional[Tuple[int, int]] = None,
) -> Tuple[np.ndarray, str]:
    """Screen mask for the canvas and the strategy that produced it.

    With frame artwork (`canvas_alpha` + placed `frame_size`) the hole's own
    transparency is used; otherwise, or when the rect centre is opaque, a
    rounded rectangle.
    """
    if canvas_alpha is not None:
        fw, fh = frame_size or canvas_size
        margin = (
            int(round(fw * config.MASK_MARGIN_PCT / 100.0)),
            int(round(fh * config.MASK_MARGIN_PCT / 100.0)),
        )
        mask = inverted_alpha_mask(canvas_alpha, screen_px, margin)
        if mask is not None:
            return mask, MASK_INVERTED_ALPHA
        log.info("Screen centre is opaque in the frame artwork, using rounded-rect mask")
    return rounded_rect_mask(canvas_size, screen_px), MASK_ROUNDED_RECT


@dataclass(frozen=True, eq=False)
class CanvasLayers:
    """Static (per frame image + rect) part of a layout."""
    canvas_size: Tuple[int, int]
    frame_rect: PixelRect
    screen_px: PixelRect
    mask: np.ndarray                # uint8, canvas sized, 255 = video visible
    overlay: Optional[np.ndarray]   # BGRA, canvas sized, frame artwork in place
    mask_strategy: str

    @property
    def visible_bounds(self) -> Tuple[int, int, int, int]:
        """(x, y, w, h) bounding box of the open mask pixels, (0, 0, 0, 0) when none."""
        return tuple(int(v) for v in cv2.boundingRect(self.mask))


def build_layers(
    canvas_size: Tuple[int, int],
    screen_rect: ScreenRect,
    frame: Optional[FrameImage] = None,
) -> CanvasLayers:
    """Place the frame artwork on the canvas and derive the screen mask."""
    canvas_w, canvas_h = canvas_size

    if frame is None:
        frame_rect = PixelRect(0, 0, canvas_w, canvas_h)
        screen_px = screen_rect_to_pixels(screen_rect.clamped(), frame_rect)
        mask, strategy = build_screen_mask(canvas_size, screen_px)
        return CanvasLayers(canvas_size, frame_rect, screen_px, mask, None, strategy)

    frame_rect = fit_rect(frame.size, canvas_size)
    screen_px = screen_rect_to_pixels(screen_rect.clamped(), frame_rect)

    fx, fy, fw, fh = frame_rect.rounded()
    interpolation = cv2.INTER_AREA if fw < frame.width else cv2.INTER_LINEAR
    scaled = cv2.resize(frame.pixels, (fw, fh), interpolation=interpolation)
    overlay = np.zeros((canvas_h, canvas_w, 4), dtype=np.uint8)
    overlay[fy:fy + fh, fx:fx + fw] = scaled

    mask, strategy = build_screen_mask(canvas_size, screen_px, overlay[:, :, 3], (fw, fh))
    return CanvasLayers(canvas_size, frame_rect, screen_px, mask, overlay, strategy)


@dataclass(frozen=True, eq=False)
class CompositionLayout:
    """Everything needed to render one composited frame."""
    layers: CanvasLayers
    source_size: Tuple[float, float]  # upright
    placement: PlacementTransform

    @property
    def canvas_size(self) -> Tuple[int, int]:
        return self.layers.canvas_size

    @property
    def screen_px(self) -> PixelRect:
        return self.layers.screen_px

    @property
    def mask(self) -> np.ndarray:
        return self.layers.mask

    @property
    def overlay(self) -> Optional[np.ndarray]:
        return self.layers.overlay

    def placed_pixels(self) -> Tuple[int, int, int, int]:
        """(width, height, x, y) of the scaled source on the canvas."""
        return self.placement.to_pixels(self.source_size)

    def source_window(self) -> "SourceWindow":
        """The part of the source that can show through the mask.

        Renderers crop the source to `crop` and scale it into `target`; the
        rest of the placed source is never rendered.
        """
        src_w, src_h = (max(1, int(round(v))) for v in self.source_size)
        placed_w, placed_h, placed_x, placed_y = self.placed_pixels()

        clip_x, clip_y, clip_w, clip_h = self.layers.visible_bounds
        if clip_w == 0 or clip_h == 0:
            clip_x, clip_y = 0, 0
            clip_w, clip_h = self.canvas_size

        crop_x, crop_w, target_x, target_w = _visible_span(src_w, placed_w, placed_x, clip_x, clip_w)
        crop_y, crop_h, target_y, target_h = _visible_span(src_h, placed_h, placed_y, clip_y, clip_h)
        return SourceWindow((crop_x, crop_y, crop_w, crop_h), (target_x, target_y, target_w, target_h))


@dataclass(frozen=True)
class SourceWindow:
    """Source crop (upright source pixels) and where it lands on the canvas, both (x, y, w, h)."""
    crop: Tuple[int, int, int, int]
    target: Tuple[int, int, int, int]


def _visible_span(src_len: int, placed_len: int, placed_pos: int, clip_pos: int, clip_len: int) -> Tuple[int, int, int, int]:
    """One axis of SourceWindow: (crop_pos, crop_len, target_pos, target_len)."""
    start = max(placed_pos, clip_pos)
    end = min(placed_pos + placed_len, clip_pos + clip_len)
    if end <= start:
        # Nothing visible on this axis; keep the full placement
        return 0, src_len, placed_pos, placed_len

    scale = placed_len / src_len
    # One source pixel of slack on each side, so edge sampling stays on real pixels
    crop_start = min(src_len - 1, max(0, int(math.floor((start - placed_pos) / scale)) - 1))
    crop_end = max(crop_start + 1, min(src_len, int(math.ceil((end - placed_pos) / scale)) + 1))

    target_start = placed_pos + int(round(crop_start * scale))
    target_end = placed_pos + int(round(crop_end * scale))
    return crop_start, crop_end - crop_start, target_start, max(1, target_end - target_start)


def effective_screen_rect(config_: CompositionConfig, frame: Optional[FrameImage]) -> ScreenRect:
    """No frame: the whole canvas is the screen. Frame: configured rect or the preset default."""
    if frame is None:
        return FULL_SCREEN_RECT
    return (config_.screen_rect or DEFAULT_SCREEN_RECT).clamped()


def build_layout(
    config_: CompositionConfig,
    source_size: Tuple[float, float],
    rotation: float = 0,
    frame: Optional[FrameImage] = None,
    layers: Optional[CanvasLayers] = None,
) -> CompositionLayout:
    """Compute the canvas layers (unless given) and the placement for one source."""
    if layers is None:
        canvas_size = resolve_canvas_size(config_, frame)
        layers = build_layers(canvas_size, effective_screen_rect(config_, frame), frame)

    placement = compute_placement(
        source_size=source_size,
        rotation=rotation,
        target=layers.screen_px,
        fit_mode=config_.fit_mode,
        zoom=config_.zoom,
        offset_x=config_.offset_x,
        offset_y=config_.offset_y,
    )
    return CompositionLayout(
        layers=layers,
        source_size=upright_size(source_size[0], source_size[1], rotation),
        placement=placement,
    )
