"""
__main__.py – CLI entry point for screen_locator.

Usage:
    python -m screen_locator detect --images frame1.png frame2.png
    python -m screen_locator detect --images frame.png --out result.json --debug-dir ./debug
    python -m screen_locator trim --image frame.png --out trimmed.png
"""

import argparse
import json
import logging
import sys
from pathlib import Path

log = logging.getLogger("screen_locator")


def cmd_detect(args: argparse.Namespace) -> None:
    """Run screen detection on each image."""
    from screen_locator.core import detect_screen_rect
    from screen_locator.debug import save_debug_artifacts
    from screen_locator.image import FrameImageError, load_frame_image, trim_transparent

    results = {}
    for img_path in args.images:
        try:
            image = trim_transparent(load_frame_image(str(img_path)))
        except FrameImageError as exc:
            log.error("%s", exc)
            continue

        rect = detect_screen_rect(image)
        results[str(img_path)] = {
            "found": rect is not None,
            "trimmed_size": [image.width, image.height],
            "screen_rect": rect.to_dict() if rect else None,
        }
        _print_result(str(img_path), rect)

        if args.debug_dir:
            save_debug_artifacts(Path(args.debug_dir), Path(img_path).stem, image, rect)

    if args.out:
        with open(args.out, "w") as fh:
            json.dump(results, fh, indent=2)
        log.info("Results saved to %s", args.out)

    if not any(r["found"] for r in results.values()):
        sys.exit(1)


def cmd_trim(args: argparse.Namespace) -> None:
    """Write a copy of the image with transparent padding removed."""
    from screen_locator.image import FrameImageError, load_frame_image, trim_transparent

    try:
        image = load_frame_image(str(args.image))
        trimmed = trim_transparent(image)
        trimmed.save(str(args.out))
    except FrameImageError as exc:
        log.error("%s", exc)
        sys.exit(1)
    log.info("Trimmed %dx%d -> %dx%d: %s", image.width, image.height, trimmed.width, trimmed.height, args.out)


def _print_result(label: str, rect) -> None:
    if rect is not None:
        print(f"  {label}: x={rect.x:.2f} y={rect.y:.2f} w={rect.w:.2f} h={rect.h:.2f}")
    else:
        print(f"  {label}: no screen hole")


def main() -> None:
    parser = argparse.ArgumentParser(
        prog="screen_locator",
        description="Screen hole detection for device-frame PNGs",
    )
    sub = parser.add_subparsers(dest="command")

    # detect
    p_detect = sub.add_parser("detect", help="Detect the screen rect")
    p_detect.add_argument("--images", nargs="+", required=True, type=Path, help="Frame PNG paths")
    p_detect.add_argument("--out", type=Path, help="Output JSON path")
    p_detect.add_argument("--debug-dir", type=Path, help="Debug artifacts directory")

    # trim
    p_trim = sub.add_parser("trim", help="Trim transparent padding")
    p_trim.add_argument("--image", required=True, type=Path)
    p_trim.add_argument("--out", required=True, type=Path)

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    if args.command == "detect":
        cmd_detect(args)
    elif args.command == "trim":
        cmd_trim(args)
    else:
        parser.print_help()
        sys.exit(1)


if __name__ == "__main__":
    main()
