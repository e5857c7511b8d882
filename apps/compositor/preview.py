"""Live preview of the composition on single decoded video frames.

Runs the same layout as the export pipeline (canvas sizing, placement,
masking, layering) but renders with numpy/OpenCV instead of encoding, so a
preview frame matches the exported frame at the same timestamp.
"""

import logging
from typing import Optional, Tuple

import cv2
import numpy as np

from config import config
from layout import CanvasLayers, CompositionLayout, build_layers, build_layout, effective_screen_rect, resolve_canvas_size
from models import CompositionConfig, PixelRect
from screen_locator.image import FrameImage, trim_transparent

log = logging.getLogger(__name__)

GUIDE_COLOR = (0, 200, 0)


class PreviewError(Exception):
    """Preview frame could not be produced."""
    pass


def grab_frame(video_path: str, at_seconds: float = 0.0) -> np.ndarray:
    """Decode one (upright) BGR frame at `at_seconds`."""
    cap = cv2.VideoCapture(str(video_path))
    try:
        if not cap.isOpened():
            raise PreviewError(f"Cannot open video: {video_path}")
        cap.set(cv2.CAP_PROP_POS_MSEC, max(0.0, at_seconds) * 1000.0)
        ok, frame = cap.read()
        if not ok or frame is None:
            raise PreviewError(f"No frame at {at_seconds:.2f}s in {video_path}")
        return frame
    finally:
        cap.release()


def draw_dashed_rect(image: np.ndarray, rect: PixelRect, color=GUIDE_COLOR, dash: int = 12, gap: int = 8) -> None:
    x, y, w, h = rect.rounded()
    corners = [(x, y), (x + w, y), (x + w, y + h), (x, y + h), (x, y)]
    for (ax, ay), (bx, by) in zip(corners, corners[1:]):
        length = int(max(abs(bx - ax), abs(by - ay)))
        for start in range(0, length, dash + gap):
            end = min(start + dash, length)
            p0 = (ax + (bx - ax) * start // max(length, 1), ay + (by - ay) * start // max(length, 1))
            p1 = (ax + (bx - ax) * end // max(length, 1), ay + (by - ay) * end // max(length, 1))
            cv2.line(image, p0, p1, color, 2)


class PreviewRenderer:
    """Re-renders the composition whenever the config or the video frame changes."""

    def __init__(self, frame: Optional[FrameImage] = None):
        self._frame = trim_transparent(frame) if frame is not None else None
        self._cache_key = None
        self._cached_layers: Optional[CanvasLayers] = None

    @property
    def frame(self) -> Optional[FrameImage]:
        return self._frame

    def set_frame(self, frame: Optional[FrameImage]) -> None:
        self._frame = trim_transparent(frame) if frame is not None else None
        self._cache_key = None
        self._cached_layers = None

    def canvas_size(self, config_: CompositionConfig) -> Tuple[int, int]:
        return resolve_canvas_size(config_, self._frame)

    def layers_for(self, config_: CompositionConfig) -> CanvasLayers:
        """Frame placement and mask, rebuilt only when canvas size or screen rect change."""
        canvas_size = self.canvas_size(config_)
        rect = effective_screen_rect(config_, self._frame)
        key = (canvas_size, rect)
        if key != self._cache_key or self._cached_layers is None:
            self._cached_layers = build_layers(canvas_size, rect, self._frame)
            self._cache_key = key
        return self._cached_layers

    def layout_for(self, config_: CompositionConfig, source_size: Tuple[int, int]) -> CompositionLayout:
        return build_layout(config_, source_size, 0, self._frame, layers=self.layers_for(config_))

    def render(
        self,
        video_frame: np.ndarray,
        config_: CompositionConfig,
        *,
        show_guides: bool = False,
        display_width: Optional[int] = None,
    ) -> np.ndarray:
        """Composite one BGR video frame. Returns a BGR image at canvas (or display) size."""
        if video_frame.ndim == 2:
            video_frame = cv2.cvtColor(video_frame, cv2.COLOR_GRAY2BGR)
        video_frame = video_frame[:, :, :3]
        src_h, src_w = video_frame.shape[:2]

        layout = self.layout_for(config_, (src_w, src_h))
        canvas_w, canvas_h = layout.canvas_size
        window = layout.source_window()
        crop_x, crop_y, crop_w, crop_h = window.crop
        target_x, target_y, target_w, target_h = window.target

        # Video layer, same crop and whole-pixel placement the encoder uses
        matrix = np.float32([
            [target_w / crop_w, 0, target_x],
            [0, target_h / crop_h, target_y],
        ])
        placed = cv2.warpAffine(
            video_frame[crop_y:crop_y + crop_h, crop_x:crop_x + crop_w], matrix, (canvas_w, canvas_h),
            flags=cv2.INTER_LINEAR,
            borderMode=cv2.BORDER_CONSTANT,
            borderValue=(0, 0, 0),
        )

        mask = layout.mask.astype(np.float32)[:, :, None] / 255.0
        out = placed.astype(np.float32) * mask

        # Frame layer
        if layout.overlay is not None:
            alpha = layout.overlay[:, :, 3:4].astype(np.float32) / 255.0
            out = layout.overlay[:, :, :3].astype(np.float32) * alpha + out * (1.0 - alpha)

        result = np.clip(out + 0.5, 0, 255).astype(np.uint8)

        if show_guides:
            draw_dashed_rect(result, layout.screen_px)

        display_width = display_width or config.PREVIEW_DISPLAY_WIDTH
        if display_width and display_width != canvas_w:
            display_h = max(1, int(round(canvas_h * display_width / canvas_w)))
            result = cv2.resize(result, (display_width, display_h), interpolation=cv2.INTER_AREA)

        return result
