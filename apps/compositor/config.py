"""Configuration for the Framecast compositor."""

import os
import shutil
from pathlib import Path
from dotenv import load_dotenv

# Load environment variables from root .env
env_path = Path(__file__).parent.parent.parent / ".env"
load_dotenv(env_path)


class Config:
    """Compositor configuration."""

    # External tools
    FFMPEG_BIN: str = os.getenv("FFMPEG_BIN", "ffmpeg")
    FFPROBE_BIN: str = os.getenv("FFPROBE_BIN", "ffprobe")

    # Device frame presets (directory of PNGs with a transparent screen hole)
    FRAMES_DIR: str = os.getenv("FRAMES_DIR", str(Path(__file__).parent / "frames"))

    # Per-export scratch space
    TEMP_DIR: str = os.getenv("TEMP_DIR", "/tmp/framecast")
    CLEANUP_TEMP: bool = os.getenv("CLEANUP_TEMP", "true").lower() == "true"
    MIN_DISK_SPACE_GB: float = float(os.getenv("MIN_DISK_SPACE_GB", "0.5"))

    # Screen detection
    DETECTION_WORKING_SIZE: int = int(os.getenv("DETECTION_WORKING_SIZE", "600"))  # longest edge, px
    DETECTION_INSET_PCT: float = float(os.getenv("DETECTION_INSET_PCT", "1.0"))  # per edge, percent points

    # Masking
    MASK_MARGIN_PCT: float = float(os.getenv("MASK_MARGIN_PCT", "2.0"))  # hole may exceed the rect by this much
    MASK_CORNER_RATIO: float = 0.12

    # Placement
    ZOOM_MIN: float = 0.1

    # Encoding
    DEFAULT_FPS: float = float(os.getenv("DEFAULT_FPS", "30"))
    VIDEO_PRESET: str = os.getenv("VIDEO_PRESET", "veryslow")  # Maximum quality encoding
    VIDEO_CRF: int = int(os.getenv("VIDEO_CRF", "16"))

    # Preview
    PREVIEW_DISPLAY_WIDTH: int = int(os.getenv("PREVIEW_DISPLAY_WIDTH", "0"))  # 0 = canvas size

    @classmethod
    def validate(cls) -> list[str]:
        """Validate required executables. Returns list of missing tools."""
        required = [
            ("FFMPEG_BIN", cls.FFMPEG_BIN),
            ("FFPROBE_BIN", cls.FFPROBE_BIN),
        ]
        return [f"{name}={value}" for name, value in required if shutil.which(value) is None]


config = Config()
