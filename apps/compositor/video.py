"""Video probing and export using FFmpeg for the Framecast compositor."""

import json
import logging
import os
import subprocess
import threading
from fractions import Fraction
from pathlib import Path
from typing import Callable, List, Optional

import cv2

from config import config
from disk_utils import DiskSpaceError, export_temp_directory, remove_partial_output
from layout import CompositionLayout, build_layout
from models import CompositionConfig, OutputFormat, TrimRange, VideoInfo
from screen_locator.image import FrameImage, trim_transparent

log = logging.getLogger(__name__)

# Allowed overshoot of trim end past the probed duration (container rounding)
TRIM_TOLERANCE = 0.001

ProgressCallback = Callable[[float], None]


class CompositionError(Exception):
    """Base class for export failures. All are terminal for one export attempt."""
    pass


class AssetUnreadableError(CompositionError):
    """Source video cannot be opened or probed."""
    pass


class NoVideoTrackError(CompositionError):
    """Source file has no video stream."""
    pass


class InvalidTrimRangeError(CompositionError):
    """Trim range is empty or outside the source duration."""
    pass


class ExportSessionCreationError(CompositionError):
    """Encoder could not be started (missing FFmpeg, temp files, disk space)."""
    pass


class EncodeError(CompositionError):
    """FFmpeg failed while encoding."""

    def __init__(self, message: str, stderr: str = ""):
        super().__init__(message)
        self.stderr = stderr


class ExportCancelledError(CompositionError):
    """Export was cancelled; partial output has been removed."""
    pass


class ExportInProgressError(CompositionError):
    """An export is already running on this session."""
    pass


def _parse_rate(rate: Optional[str]) -> float:
    """'30000/1001' -> 29.97. Returns 0.0 for missing or 0/0 rates."""
    if not rate:
        return 0.0
    try:
        value = Fraction(rate)
    except (ValueError, ZeroDivisionError):
        return 0.0
    return float(value) if value > 0 else 0.0


def _stream_rotation(stream: dict) -> int:
    """Rotation in degrees from the display matrix side data or the legacy rotate tag."""
    for side_data in stream.get("side_data_list", []) or []:
        if "rotation" in side_data:
            try:
                return int(round(float(side_data["rotation"]))) % 360
            except (TypeError, ValueError):
                pass
    rotate = stream.get("tags", {}).get("rotate")
    if rotate is not None:
        try:
            return int(rotate) % 360
        except ValueError:
            pass
    return 0


def probe_video(video_path: str) -> VideoInfo:
    """
    Get video information using FFprobe.

    Args:
        video_path: Path to video file

    Returns:
        VideoInfo with natural size, rotation, fps, duration and audio presence

    Raises:
        AssetUnreadableError: If the file cannot be opened or probed
        NoVideoTrackError: If the file has no video stream
        ExportSessionCreationError: If ffprobe is not installed
    """
    if not os.path.isfile(video_path):
        raise AssetUnreadableError(f"Video not found: {video_path}")

    cmd = [
        config.FFPROBE_BIN,
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        video_path,
    ]

    try:
        result = subprocess.run(cmd, capture_output=True, text=True, check=True)
    except FileNotFoundError:
        raise ExportSessionCreationError(f"ffprobe not found: {config.FFPROBE_BIN}")
    except subprocess.CalledProcessError as e:
        raise AssetUnreadableError(f"Could not probe {video_path}: {e.stderr.strip()}")

    try:
        data = json.loads(result.stdout)
    except json.JSONDecodeError as e:
        raise AssetUnreadableError(f"Invalid ffprobe output for {video_path}: {e}")

    streams = data.get("streams", [])
    video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
    if video_stream is None:
        raise NoVideoTrackError(f"No video track in {video_path}")

    width = int(video_stream.get("width", 0) or 0)
    height = int(video_stream.get("height", 0) or 0)
    if width <= 0 or height <= 0:
        raise AssetUnreadableError(f"Video track has no dimensions: {video_path}")

    fps = _parse_rate(video_stream.get("avg_frame_rate")) or _parse_rate(video_stream.get("r_frame_rate"))

    duration = float(video_stream.get("duration", 0) or 0)
    if duration == 0:
        # Stream duration is missing for some containers (mkv, webm)
        duration = float(data.get("format", {}).get("duration", 0) or 0)

    return VideoInfo(
        path=video_path,
        width=width,
        height=height,
        duration=duration,
        fps=fps,
        rotation=_stream_rotation(video_stream),
        has_audio=any(s.get("codec_type") == "audio" for s in streams),
        codec=video_stream.get("codec_name", ""),
    )


def resolve_trim(trim: TrimRange, duration: float) -> TrimRange:
    """
    Resolve an open-ended trim and validate it against the source duration.

    Raises:
        InvalidTrimRangeError: If end <= start or the range leaves the source
    """
    end = duration if trim.end is None else trim.end
    if trim.start < 0:
        raise InvalidTrimRangeError(f"Trim start must be >= 0, got {trim.start:.3f}s")
    if end <= trim.start:
        raise InvalidTrimRangeError(f"Trim end ({end:.3f}s) must be after start ({trim.start:.3f}s)")
    if end > duration + TRIM_TOLERANCE:
        raise InvalidTrimRangeError(f"Trim end ({end:.3f}s) is past the source duration ({duration:.3f}s)")
    return TrimRange(start=trim.start, end=min(end, duration) if duration > 0 else end)


def _rate_arg(fps: float) -> str:
    """Exact-ish rational for FFmpeg rate options (29.97 -> 30000/1001)."""
    rate = Fraction(fps).limit_denominator(1001)
    return str(rate.numerator) if rate.denominator == 1 else f"{rate.numerator}/{rate.denominator}"


def build_filter_graph(layout: CompositionLayout, fps: float, duration: float) -> str:
    """
    Build the filter_complex that composites one source into the canvas.

    Inputs: 0 = source video, 1 = screen mask (gray PNG), 2 = frame overlay (BGRA PNG, optional)

    Graph:
    ┌─────────┐  crop/scale    ┌────────┐  alphamerge(mask)   ┌────────┐
    │ 0:v     │ ─────────────> │ placed │ ──────────────────> │ masked │
    └─────────┘                └────────┘                     └────────┘
    [bg] + [masked] -> [base] + [2:v] frame -> [out]

    Only the source window that can show through the mask is cropped and
    scaled (see CompositionLayout.source_window).
    """
    canvas_w, canvas_h = layout.canvas_size
    window = layout.source_window()
    crop_x, crop_y, crop_w, crop_h = window.crop
    target_x, target_y, target_w, target_h = window.target
    rate = _rate_arg(fps)

    filter_parts = [
        f"color=c=black:s={canvas_w}x{canvas_h}:r={rate}:d={duration:.3f}[bg]",
        f"color=c=black:s={canvas_w}x{canvas_h}:r={rate}:d={duration:.3f}[screen]",
        # ffmpeg autorotates the input, so the source arrives upright
        f"[0:v]setpts=PTS-STARTPTS,fps={rate},"
        f"crop={crop_w}:{crop_h}:{crop_x}:{crop_y}:exact=1,"
        f"scale={target_w}:{target_h}:flags=bilinear,setsar=1[src]",
        f"[screen][src]overlay=x={target_x}:y={target_y}:shortest=1,format=rgba[placed]",
        "[1:v]format=gray[mask]",
        "[placed][mask]alphamerge[masked]",
        "[bg][masked]overlay=x=0:y=0:shortest=1[base]",
    ]

    if layout.overlay is not None:
        filter_parts.append("[base][2:v]overlay=x=0:y=0:shortest=1,format=yuv420p,setsar=1[out]")
    else:
        filter_parts.append("[base]format=yuv420p,setsar=1[out]")

    return ";".join(filter_parts)


def build_ffmpeg_command(
    source_path: str,
    output_path: str,
    layout: CompositionLayout,
    trim: TrimRange,
    fps: float,
    output_format: OutputFormat,
    has_audio: bool,
    mask_path: str,
    overlay_path: Optional[str] = None,
) -> List[str]:
    """Full FFmpeg argv for one export."""
    duration = trim.end - trim.start
    rate = _rate_arg(fps)

    cmd = [
        config.FFMPEG_BIN,
        "-y",  # Overwrite output
        "-hide_banner",
        "-nostats",
        "-progress", "pipe:1",
        "-ss", f"{trim.start:.3f}",
        "-t", f"{duration:.3f}",
        "-i", source_path,
        "-loop", "1", "-framerate", rate, "-i", mask_path,
    ]
    if layout.overlay is not None and overlay_path:
        cmd.extend(["-loop", "1", "-framerate", rate, "-i", overlay_path])

    cmd.extend([
        "-filter_complex", build_filter_graph(layout, fps, duration),
        "-map", "[out]",
    ])

    if has_audio:
        # Passthrough only: same range, no transcoding
        cmd.extend(["-map", "0:a:0", "-c:a", "copy"])
    else:
        cmd.append("-an")

    cmd.extend([
        "-c:v", "libx264",
        "-preset", config.VIDEO_PRESET,
        "-crf", str(config.VIDEO_CRF),
        "-pix_fmt", "yuv420p",
        "-r", rate,
        "-t", f"{duration:.3f}",
        "-movflags", "+faststart",
        "-f", output_format.value,
        output_path,
    ])
    return cmd


def _progress_seconds(line: str) -> Optional[float]:
    """Parse an `-progress` line into seconds of output written."""
    key, _, value = line.strip().partition("=")
    # out_time_ms is in microseconds as well
    if key in ("out_time_us", "out_time_ms"):
        try:
            return int(value) / 1_000_000
        except ValueError:
            return None
    return None


class ExportSession:
    """
    One export of a source video into the device frame.

    Steps (strictly sequential, any failure aborts the export):
    1. Probe & validate the source
    2. Resolve and validate the trim range
    3. Canvas sizing, placement and masking (shared layout)
    4. Write mask / overlay layers to a temp directory
    5. Encode with FFmpeg

    `cancel()` may be called from another thread; the encoder is terminated
    and the partial output removed before `run()` raises ExportCancelledError.
    A `cancel()` issued before `run()` stops that run before anything is
    written; the request is consumed when the run finishes.
    """

    def __init__(
        self,
        source_path: str,
        output_path: str,
        config_: CompositionConfig,
        frame: Optional[FrameImage] = None,
        progress: Optional[ProgressCallback] = None,
    ):
        self.source_path = str(source_path)
        self.output_path = str(output_path)
        self.config = config_
        self.frame = trim_transparent(frame) if frame is not None else None
        self.progress = progress

        self._lock = threading.Lock()
        self._running = False
        self._cancel_event = threading.Event()
        self._process: Optional[subprocess.Popen] = None

    @property
    def is_running(self) -> bool:
        return self._running

    def cancel(self) -> None:
        """Request cancellation. Safe to call from any thread, and when idle."""
        self._cancel_event.set()
        process = self._process
        if process is not None and process.poll() is None:
            log.info("Cancelling export: %s", self.output_path)
            process.terminate()

    def run(self) -> str:
        """
        Run the export.

        Returns:
            Path to the encoded output

        Raises:
            CompositionError: One of the categorized export failures
        """
        with self._lock:
            if self._running:
                raise ExportInProgressError(f"Export already running: {self.output_path}")
            self._running = True

        log.info("🎬 Exporting %s -> %s", self.source_path, self.output_path)
        output_started = False
        try:
            # 1. Load & validate source
            info = probe_video(self.source_path)
            log.info(
                "   Source: %dx%d rot=%d fps=%.3f duration=%.3fs audio=%s",
                info.width, info.height, info.rotation, info.fps, info.duration, info.has_audio,
            )

            # 2. Trim
            trim = resolve_trim(self.config.trim, info.duration)
            fps = info.fps if info.fps > 0 else config.DEFAULT_FPS

            # 3. Canvas, placement, mask
            layout = build_layout(self.config, info.natural_size, info.rotation, self.frame)
            placed_w, placed_h, placed_x, placed_y = layout.placed_pixels()
            log.info(
                "   Canvas %dx%d, screen %s, placed %dx%d at (%d,%d), mask=%s",
                *layout.canvas_size, layout.screen_px.rounded(),
                placed_w, placed_h, placed_x, placed_y, layout.layers.mask_strategy,
            )

            self._check_cancelled()

            # 4 + 5. Layers and encode
            try:
                with export_temp_directory() as temp_dir:
                    mask_path, overlay_path = self._write_layers(layout, temp_dir)
                    cmd = build_ffmpeg_command(
                        self.source_path,
                        self.output_path,
                        layout,
                        trim,
                        fps,
                        self.config.output_format,
                        info.has_audio,
                        mask_path,
                        overlay_path,
                    )
                    output_started = True
                    self._encode(cmd, trim.end - trim.start, temp_dir)
            except (DiskSpaceError, OSError) as e:
                raise ExportSessionCreationError(f"Cannot prepare export workspace: {e}")
            log.info("✅ Export complete: %s", self.output_path)
            return self.output_path

        except CompositionError:
            if output_started:
                self._discard_output()
            raise
        finally:
            self._process = None
            with self._lock:
                self._running = False
                self._cancel_event.clear()

    def _check_cancelled(self) -> None:
        if self._cancel_event.is_set():
            raise ExportCancelledError("Export cancelled")

    def _discard_output(self) -> None:
        try:
            remove_partial_output(self.output_path)
        except OSError as e:
            log.warning("⚠️ Could not remove partial output %s: %s", self.output_path, e)

    def _write_layers(self, layout: CompositionLayout, temp_dir: Path) -> tuple[str, Optional[str]]:
        mask_path = str(temp_dir / "mask.png")
        if not cv2.imwrite(mask_path, layout.mask):
            raise ExportSessionCreationError(f"Cannot write mask: {mask_path}")

        overlay_path = None
        if layout.overlay is not None:
            overlay_path = str(temp_dir / "frame.png")
            if not cv2.imwrite(overlay_path, layout.overlay):
                raise ExportSessionCreationError(f"Cannot write frame overlay: {overlay_path}")
        return mask_path, overlay_path

    def _encode(self, cmd: List[str], duration: float, temp_dir: Path) -> None:
        # Existing destination is replaced
        try:
            remove_partial_output(self.output_path)
            Path(self.output_path).parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise ExportSessionCreationError(f"Cannot write destination {self.output_path}: {e}")

        log.info("🔧 Running: %s", " ".join(cmd))
        stderr_path = temp_dir / "ffmpeg.log"

        with open(stderr_path, "w") as stderr_file:
            try:
                process = subprocess.Popen(
                    cmd,
                    stdout=subprocess.PIPE,
                    stderr=stderr_file,
                    text=True,
                )
            except OSError as e:
                raise ExportSessionCreationError(f"Cannot start FFmpeg ({config.FFMPEG_BIN}): {e}")

            self._process = process
            if self._cancel_event.is_set():
                process.terminate()

            try:
                for line in process.stdout:
                    seconds = _progress_seconds(line)
                    if seconds is not None and self.progress and duration > 0:
                        self.progress(min(1.0, max(0.0, seconds / duration)))
            except BaseException:
                process.kill()
                process.wait()
                raise
            returncode = process.wait()

        if self._cancel_event.is_set():
            raise ExportCancelledError(f"Export cancelled: {self.output_path}")

        if returncode != 0:
            stderr = stderr_path.read_text(errors="replace")
            tail = stderr[-2000:]
            log.error("❌ FFmpeg failed (exit %d): %s", returncode, tail)
            raise EncodeError(f"FFmpeg failed (exit {returncode}): {tail}", stderr=stderr)

        if not os.path.exists(self.output_path):
            raise EncodeError("FFmpeg exited cleanly but wrote no output")

        if self.progress:
            self.progress(1.0)


def export_video(
    source_path: str,
    output_path: str,
    config_: CompositionConfig,
    frame: Optional[FrameImage] = None,
    progress: Optional[ProgressCallback] = None,
) -> str:
    """Export in one call. See ExportSession."""
    return ExportSession(source_path, output_path, config_, frame=frame, progress=progress).run()
