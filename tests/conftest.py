import shutil
import subprocess

import numpy as np
import pytest

from config import config
from screen_locator.image import FrameImage

BODY_BGR = (90, 90, 90)

requires_ffmpeg = pytest.mark.skipif(
    shutil.which("ffmpeg") is None or shutil.which("ffprobe") is None,
    reason="ffmpeg/ffprobe not on PATH",
)


def make_frame_pixels(width, height, hole=None, padding=0, body=BODY_BGR, corners=0):
    """Opaque device body with an optional fully transparent hole (x0, y0, x1, y1 exclusive).

    `corners` cuts a fully transparent square of that size out of each outer
    corner, like the rounded corners of a device outline. `padding` adds a
    fully transparent border around the whole artwork.
    """
    pixels = np.zeros((height, width, 4), dtype=np.uint8)
    pixels[:, :, :3] = body
    pixels[:, :, 3] = 255
    if hole is not None:
        x0, y0, x1, y1 = hole
        pixels[y0:y1, x0:x1] = 0
    if corners:
        for ys in (slice(0, corners), slice(height - corners, height)):
            for xs in (slice(0, corners), slice(width - corners, width)):
                pixels[ys, xs] = 0
    if padding:
        padded = np.zeros((height + 2 * padding, width + 2 * padding, 4), dtype=np.uint8)
        padded[padding:padding + height, padding:padding + width] = pixels
        pixels = padded
    return pixels


@pytest.fixture
def make_frame():
    def _make(width, height, hole=None, padding=0, source_path=None, corners=0):
        pixels = make_frame_pixels(width, height, hole, padding, corners=corners)
        return FrameImage(pixels=pixels, source_path=source_path)
    return _make


@pytest.fixture
def phone_frame(make_frame):
    """540x1080 artwork whose hole is exactly {x:10, y:5, w:80, h:90}."""
    return make_frame(540, 1080, hole=(54, 54, 486, 1026))


@pytest.fixture
def cornered_phone(make_frame):
    """phone_frame with 30px transparent cut-outs at the four outer corners."""
    return make_frame(540, 1080, hole=(54, 54, 486, 1026), corners=30)


@pytest.fixture(autouse=True)
def temp_root(tmp_path, monkeypatch):
    temp_dir = tmp_path / "framecast-tmp"
    monkeypatch.setattr(config, "TEMP_DIR", str(temp_dir))
    monkeypatch.setattr(config, "MIN_DISK_SPACE_GB", 0.0)
    return temp_dir


@pytest.fixture
def fast_encode(monkeypatch):
    monkeypatch.setattr(config, "VIDEO_PRESET", "ultrafast")
    monkeypatch.setattr(config, "VIDEO_CRF", 18)


@pytest.fixture(scope="session")
def source_video(tmp_path_factory):
    """8s 320x240 @ 30fps test pattern with a sine audio track."""
    if shutil.which("ffmpeg") is None:
        pytest.skip("ffmpeg not on PATH")
    path = tmp_path_factory.mktemp("media") / "source.mp4"
    subprocess.run(
        [
            "ffmpeg", "-y", "-hide_banner", "-loglevel", "error",
            "-f", "lavfi", "-i", "testsrc=size=320x240:rate=30:duration=8",
            "-f", "lavfi", "-i", "sine=frequency=440:duration=8",
            "-c:v", "libx264", "-preset", "ultrafast", "-pix_fmt", "yuv420p",
            "-c:a", "aac", "-shortest",
            str(path),
        ],
        check=True,
    )
    return path
