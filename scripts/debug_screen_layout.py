#!/usr/bin/env python3
"""
Debug script for screen detection and placement.

Detects the screen hole of a device frame, then renders preview frames of a
video in every fit mode with the screen guide drawn, so detection, masking and
placement can be checked by eye before running a full export.

Usage:
    python scripts/debug_screen_layout.py <video_path> <frame_png> [--timestamps 1,3,5] [--output-dir /tmp/debug]

Example:
    python scripts/debug_screen_layout.py /path/to/recording.mov frames/iphone16_pro.png --zoom 120
"""

import argparse
import os
import sys
from pathlib import Path

# Add the compositor directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'apps', 'compositor'))

import cv2

from layout import build_layout
from models import CompositionConfig, FitMode
from presets import DEFAULT_SCREEN_RECT
from preview import PreviewError, PreviewRenderer, grab_frame
from screen_locator import FrameImageError, detect_screen_rect, load_frame_image, trim_transparent
from screen_locator.debug import save_debug_artifacts


def main():
    parser = argparse.ArgumentParser(description='Debug screen detection and placement')
    parser.add_argument('video_path', help='Path to video file')
    parser.add_argument('frame_path', help='Path to device frame PNG')
    parser.add_argument('--timestamps', default='1,3,5',
                        help='Comma-separated timestamps to sample (default: 1,3,5)')
    parser.add_argument('--output-dir', default='/tmp/debug_screen',
                        help='Output directory for debug images')
    parser.add_argument('--zoom', type=float, default=100.0, help='Zoom percent (default: 100)')
    parser.add_argument('--canvas-width', type=int, default=1080, help='Canvas width (default: 1080)')

    args = parser.parse_args()

    if not os.path.exists(args.video_path):
        print(f"❌ Video not found: {args.video_path}")
        return 1

    os.makedirs(args.output_dir, exist_ok=True)
    print(f"📁 Output directory: {args.output_dir}")

    timestamps = [float(t.strip()) for t in args.timestamps.split(',')]
    print(f"⏱️ Timestamps: {timestamps}")

    # Load + trim frame
    try:
        frame = trim_transparent(load_frame_image(args.frame_path))
    except FrameImageError as e:
        print(f"❌ {e}")
        return 1
    print(f"🖼️ Frame (trimmed): {frame.width}x{frame.height}")

    # Detect screen
    rect = detect_screen_rect(frame)
    if rect is None:
        print(f"⚠️ No screen hole detected, using default {DEFAULT_SCREEN_RECT}")
        rect = DEFAULT_SCREEN_RECT
    else:
        print(f"📦 Screen rect: x={rect.x:.2f} y={rect.y:.2f} w={rect.w:.2f} h={rect.h:.2f}")
    save_debug_artifacts(Path(args.output_dir), 'frame', frame, rect)

    renderer = PreviewRenderer(frame)

    print("\n" + "=" * 60)
    print("RENDERING FIT MODES")
    print("=" * 60)

    for ts in timestamps:
        try:
            video_frame = grab_frame(args.video_path, ts)
        except PreviewError as e:
            print(f"❌ {e}")
            continue

        src_h, src_w = video_frame.shape[:2]
        for mode in FitMode:
            config_ = CompositionConfig(
                canvas_width=args.canvas_width,
                screen_rect=rect,
                fit_mode=mode,
                zoom=args.zoom / 100.0,
            )
            layout = build_layout(config_, (src_w, src_h), 0, frame, layers=renderer.layers_for(config_))
            w, h, x, y = layout.placed_pixels()

            image = renderer.render(video_frame, config_, show_guides=True)
            out_path = os.path.join(args.output_dir, f"t{ts:05.2f}_{mode.value}.jpg")
            cv2.imwrite(out_path, image)
            print(f"  {ts:6.2f}s {mode.label:<8} placed {w}x{h} at ({x},{y}) mask={layout.layers.mask_strategy}")

    print(f"\n📁 Debug images saved to: {args.output_dir}")

    return 0


if __name__ == '__main__':
    sys.exit(main())
