#!/usr/bin/env python3
"""Framecast Compositor - Main entry point.

Composites a screen recording into a device-frame PNG and exports it with
FFmpeg, or renders a single preview frame of the same composition.

Usage:
    python main.py export --video rec.mov --out out.mp4 --preset iphone_15_pro --auto-detect
    python main.py preview --video rec.mov --out snap.png --frame phone.png --at 2.5 --guides
    python main.py presets
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional, Tuple

import cv2

from config import config
from disk_utils import cleanup_old_temp_directories, remove_partial_output
from models import CompositionConfig, ConfigValidationError
from presets import FramePreset, load_presets, resolve_screen_rect
from preview import PreviewError, PreviewRenderer, grab_frame
from screen_locator.image import FrameImage, FrameImageError, load_frame_image, trim_transparent
from video import (
    AssetUnreadableError,
    CompositionError,
    EncodeError,
    ExportCancelledError,
    ExportSession,
    ExportSessionCreationError,
    InvalidTrimRangeError,
    NoVideoTrackError,
)

log = logging.getLogger("framecast")

ERROR_MESSAGES = {
    AssetUnreadableError: "❌ Could not read the source video",
    NoVideoTrackError: "❌ The source file has no video track",
    InvalidTrimRangeError: "❌ Invalid trim range",
    ExportSessionCreationError: "❌ Could not start the export",
    EncodeError: "❌ Encoding failed",
    ExportCancelledError: "🛑 Export cancelled",
}


def load_config(path: Optional[Path]) -> CompositionConfig:
    """Read a composition config JSON file (or defaults when no path)."""
    if path is None:
        return CompositionConfig()
    try:
        with open(path) as fh:
            data = json.load(fh)
    except (OSError, json.JSONDecodeError) as e:
        raise ConfigValidationError(f"Cannot read config {path}: {e}")
    return CompositionConfig.from_dict(data)


def load_frame(args: argparse.Namespace, config_: CompositionConfig) -> Tuple[Optional[FrameImage], CompositionConfig]:
    """Resolve --frame / --preset into a trimmed frame image and the screen rect to use."""
    preset: Optional[FramePreset] = None
    frame_path = args.frame

    if frame_path is None and args.preset:
        preset = load_presets(config.FRAMES_DIR).resolve(args.preset)
        if preset.is_custom:
            log.info("Preset %r has no artwork, exporting without a frame", args.preset)
            return None, config_
        frame_path = preset.image_path
        log.info("🖼️ Using preset: %s (%s)", preset.label, preset.id)

    if frame_path is None:
        return None, config_

    frame = trim_transparent(load_frame_image(str(frame_path)))

    if args.auto_detect:
        fallback_preset = preset or FramePreset(id="file", label=Path(frame_path).stem, image_path=str(frame_path))
        rect = resolve_screen_rect(fallback_preset, frame, config_.screen_rect)
        log.info("📐 Screen rect: x=%.2f y=%.2f w=%.2f h=%.2f", rect.x, rect.y, rect.w, rect.h)
        config_ = config_.with_screen_rect(rect)
    elif config_.screen_rect is None and preset is not None:
        config_ = config_.with_screen_rect(preset.default_screen)

    return frame, config_


def _print_progress(fraction: float) -> None:
    print(f"\r   Encoding... {fraction * 100:5.1f}%", end="", flush=True)
    if fraction >= 1.0:
        print()


def cmd_export(args: argparse.Namespace) -> None:
    config_ = load_config(args.config)
    frame, config_ = load_frame(args, config_)

    session = ExportSession(
        str(args.video),
        str(args.out),
        config_,
        frame=frame,
        progress=None if args.quiet else _print_progress,
    )
    try:
        output = session.run()
    except KeyboardInterrupt:
        session.cancel()
        remove_partial_output(str(args.out))
        raise ExportCancelledError("Interrupted by user")
    print(f"✅ Exported: {output}")


def cmd_preview(args: argparse.Namespace) -> None:
    config_ = load_config(args.config)
    frame, config_ = load_frame(args, config_)

    video_frame = grab_frame(str(args.video), args.at)
    renderer = PreviewRenderer(frame)
    image = renderer.render(
        video_frame,
        config_,
        show_guides=args.guides,
        display_width=args.display_width,
    )

    Path(args.out).parent.mkdir(parents=True, exist_ok=True)
    if not cv2.imwrite(str(args.out), image):
        raise PreviewError(f"Cannot write preview: {args.out}")
    print(f"✅ Preview saved: {args.out} ({image.shape[1]}x{image.shape[0]})")


def cmd_presets(args: argparse.Namespace) -> None:
    registry = load_presets(args.frames_dir or config.FRAMES_DIR)
    for preset in registry:
        rect = preset.default_screen
        source = preset.image_path or "-"
        print(f"  {preset.id:<24} {preset.label:<28} {source}")
        print(f"  {'':<24} screen x={rect.x} y={rect.y} w={rect.w} h={rect.h}")


def _add_frame_args(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("--video", required=True, type=Path, help="Source video")
    parser.add_argument("--out", required=True, type=Path, help="Output path")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--frame", type=Path, help="Device frame PNG")
    group.add_argument("--preset", help="Frame preset id (see `presets`)")
    parser.add_argument("--config", type=Path, help="Composition config JSON")
    parser.add_argument("--auto-detect", action="store_true", help="Detect the screen rect from the frame")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="framecast",
        description="Composite screen recordings into device frames",
    )
    sub = parser.add_subparsers(dest="command")

    # export
    p_export = sub.add_parser("export", help="Export the composited video")
    _add_frame_args(p_export)
    p_export.add_argument("--quiet", action="store_true", help="No progress output")

    # preview
    p_preview = sub.add_parser("preview", help="Render one composited frame to PNG")
    _add_frame_args(p_preview)
    p_preview.add_argument("--at", type=float, default=0.0, help="Timestamp in seconds")
    p_preview.add_argument("--guides", action="store_true", help="Draw the screen rect guide")
    p_preview.add_argument("--display-width", type=int, help="Resize the snapshot to this width")

    # presets
    p_presets = sub.add_parser("presets", help="List frame presets")
    p_presets.add_argument("--frames-dir", help=f"Presets directory (default {config.FRAMES_DIR})")

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command is None:
        parser.print_help()
        sys.exit(1)

    if args.command == "export":
        missing = config.validate()
        if missing:
            print(f"❌ Missing required tools: {', '.join(missing)}")
            sys.exit(1)
        stale_cleaned = cleanup_old_temp_directories(max_age_hours=24)
        if stale_cleaned > 0:
            print(f"🧹 Cleaned {stale_cleaned} stale temp directories from previous runs")

    handlers = {
        "export": cmd_export,
        "preview": cmd_preview,
        "presets": cmd_presets,
    }
    try:
        handlers[args.command](args)
    except CompositionError as e:
        headline = next(
            (msg for cls, msg in ERROR_MESSAGES.items() if isinstance(e, cls)),
            "❌ Export failed",
        )
        print(f"{headline}: {e}")
        sys.exit(1)
    except ConfigValidationError as e:
        print(f"❌ Invalid composition config: {e}")
        sys.exit(1)
    except FrameImageError as e:
        print(f"❌ Invalid frame image: {e}")
        sys.exit(1)
    except PreviewError as e:
        print(f"❌ Preview failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
