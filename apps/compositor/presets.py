"""Device frame preset registry.

Presets are resolved once from a directory of PNGs. Lookup has a single
fallback order: exact id -> first preset -> custom.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from config import config
from models import ScreenRect
from screen_locator import FrameImage, detect_screen_rect

log = logging.getLogger(__name__)

CUSTOM_PRESET_ID = "custom"
DEFAULT_SCREEN_RECT = ScreenRect(x=6.5, y=3.0, w=87.0, h=94.0)


@dataclass(frozen=True)
class FramePreset:
    """A device frame choice."""
    id: str
    label: str
    image_path: Optional[str]
    default_screen: ScreenRect = DEFAULT_SCREEN_RECT

    @property
    def is_custom(self) -> bool:
        return self.image_path is None


CUSTOM_PRESET = FramePreset(
    id=CUSTOM_PRESET_ID,
    label="Custom (Upload PNG)",
    image_path=None,
)


def make_title(stem: str) -> str:
    """'iphone16_pro-black' -> 'Iphone 16 Pro Black'."""
    if not stem:
        return "Untitled"
    s = stem.replace("_", " ").replace("-", " ")
    s = re.sub(r"(?<=[A-Za-z])(?=\d)|(?<=\d)(?=[A-Za-z])", " ", s)
    return " ".join(word.capitalize() for word in s.split())


class PresetRegistry:
    """Ordered, immutable list of frame presets."""

    def __init__(self, presets: List[FramePreset]):
        self._presets = list(presets)

    def __iter__(self):
        return iter(self._presets)

    def __len__(self) -> int:
        return len(self._presets)

    @property
    def presets(self) -> List[FramePreset]:
        return list(self._presets)

    def resolve(self, preset_id: Optional[str]) -> FramePreset:
        """Exact id, else the first preset, else custom."""
        for preset in self._presets:
            if preset.id == preset_id:
                return preset
        if preset_id and self._presets:
            log.warning("Unknown frame preset %r, using %r", preset_id, self._presets[0].id)
        return self._presets[0] if self._presets else CUSTOM_PRESET


def load_presets(frames_dir: Optional[str] = None) -> PresetRegistry:
    """Scan `frames_dir` for *.png (sorted by filename) and append the custom preset."""
    frames_path = Path(frames_dir or config.FRAMES_DIR)
    presets: List[FramePreset] = []

    if frames_path.is_dir():
        for png in sorted(frames_path.glob("*.png"), key=lambda p: p.name):
            presets.append(
                FramePreset(
                    id=png.stem,
                    label=make_title(png.stem),
                    image_path=str(png),
                )
            )
    else:
        log.info("Frames directory not found: %s", frames_path)

    presets.append(CUSTOM_PRESET)
    return PresetRegistry(presets)


def resolve_screen_rect(
    preset: FramePreset,
    image: Optional[FrameImage],
    current: Optional[ScreenRect] = None,
) -> ScreenRect:
    """Auto-detect the screen rect of `image`, keeping `current` (or the preset default) on failure."""
    fallback = current or preset.default_screen
    if image is None:
        return fallback
    detected = detect_screen_rect(image)
    if detected is None:
        log.info("Screen detection failed for %s, keeping %s", preset.id, fallback)
        return fallback
    return detected
