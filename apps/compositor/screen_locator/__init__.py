"""screen_locator – Find the transparent screen hole in device-frame artwork."""

from screen_locator.core import detect_screen_rect
from screen_locator.image import FrameImage, FrameImageError, load_frame_image, trim_transparent

__all__ = ["detect_screen_rect", "FrameImage", "FrameImageError", "load_frame_image", "trim_transparent"]
