# gif2flipper.py
"""
Convert a GIF (or a folder of stills) into a device animation or icons.

Examples:
    gif2flipper anim dolphin.gif -o "assets/My Dolphin" --frame-rate 8 --threshold 0.5
    gif2flipper anim frames/ -o out/L1_Wave --no-filter --strict --on-frame-error skip
    gif2flipper anim cat.gif -o out/Cat --bubble-text "Hi\\nthere" --bubble-locale topright
    gif2flipper icon icons/ -o out/icons --size 10x10
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from converter import ConversionSession, resolve_output_dir
from errors import ConversionError
from magick import MagickFilter, PotraceTracer
from packer import FormatVariant
from settings import ConvertSettings, FrameErrorPolicy, load_settings, merge_overrides

logger = logging.getLogger("gif2flipper")

LOG_FORMAT = "[%(name)s] %(levelname)s %(message)s"


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format=LOG_FORMAT,
        stream=sys.stdout,
        force=True,
    )


def parse_size(text: str) -> Tuple[int, int]:
    try:
        w, h = (int(v) for v in text.lower().split("x"))
    except ValueError:
        raise argparse.ArgumentTypeError(f"size must look like 128x64, got {text!r}")
    if w <= 0 or h <= 0:
        raise argparse.ArgumentTypeError(f"size must be positive, got {text!r}")
    return w, h


# ------------------------------------------------------------------
# Arguments
# ------------------------------------------------------------------

def _add_common(p: argparse.ArgumentParser) -> None:
    p.add_argument("source", nargs="?", help="GIF / image file or folder of stills")
    p.add_argument("-o", "--output", help="Output folder")
    p.add_argument("-c", "--config", help="YAML settings file")
    p.add_argument("--strict", action="store_true", default=None,
                   help="Require 1-bit frames")
    p.add_argument("--on-frame-error", choices=[e.value for e in FrameErrorPolicy],
                   help="What to do with a frame that is not 1-bit in strict mode")
    p.add_argument("--trace", metavar="DIR", help="Also trace frames to SVG into DIR")
    p.add_argument("--no-filter", action="store_true",
                   help="Pack source frames as they are, without ImageMagick")

    f = p.add_argument_group("filters")
    f.add_argument("--edge", type=int, help="Edge detection radius")
    f.add_argument("--invert", action="store_true", default=None)
    f.add_argument("--monochrome", action="store_true", default=None)
    f.add_argument("--grayscale", action="store_true", default=None)
    f.add_argument("--sharpen", help='Sharpen amount, e.g. "0x1.0"')
    f.add_argument("--dither", action="store_true", default=None)
    f.add_argument("--contrast-stretch", help='e.g. "2%%x1%%"')
    f.add_argument("--threshold", type=float, help="0.1 .. 0.9")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gif2flipper",
        description="Convert images to packed 1-bit device bitmaps",
    )
    parser.add_argument("--log-level", default="INFO",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR"])
    sub = parser.add_subparsers(dest="command", required=True)

    anim = sub.add_parser("anim", help="Animation frames + meta.txt")
    _add_common(anim)
    anim.add_argument("--size", type=parse_size, help="Frame size, default 128x64")
    anim.add_argument("--active-cycles", type=int)
    anim.add_argument("--frame-rate", type=int)
    anim.add_argument("--duration", type=int)
    anim.add_argument("--cooldown", type=int)
    anim.add_argument("--active-frames", type=int)
    anim.add_argument("--wraparound", action="store_true", default=None,
                      help="End the frame order with 0")

    b = anim.add_argument_group("bubble")
    b.add_argument("--bubble-text", help=r'Use "\n" for line breaks')
    b.add_argument("--bubble-locale", help="center, topleft, bottomright, ...")
    b.add_argument("--bubble-start", type=int)
    b.add_argument("--bubble-end", type=int)

    icon = sub.add_parser("icon", help="Icon bitmaps with a size header")
    _add_common(icon)
    icon.add_argument("--size", type=parse_size, help="Icon size, e.g. 10x10")

    return parser


def _overrides(args: argparse.Namespace) -> Dict[str, Any]:
    out: Dict[str, Any] = {
        "strict": args.strict,
        "on_frame_error": args.on_frame_error,
        "filters": {
            "edge": args.edge,
            "invert": args.invert,
            "monochrome": args.monochrome,
            "grayscale": args.grayscale,
            "sharpen": args.sharpen,
            "dither": args.dither,
            "contrast_stretch": args.contrast_stretch,
            "threshold": args.threshold,
        },
    }
    if args.command == "anim":
        width, height = args.size if args.size else (None, None)
        out["wraparound"] = args.wraparound
        out["animation"] = {
            "width": width,
            "height": height,
            "active_cycles": args.active_cycles,
            "frame_rate": args.frame_rate,
            "duration": args.duration,
            "cooldown": args.cooldown,
            "active_frames": args.active_frames,
        }
        out["bubble"] = {
            "text": args.bubble_text,
            "locale": args.bubble_locale,
            "start_frame": args.bubble_start,
            "end_frame": args.bubble_end,
        }
    return out


# ------------------------------------------------------------------
# Main
# ------------------------------------------------------------------

def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config) if args.config else ConvertSettings()
    settings = merge_overrides(settings, _overrides(args))

    if args.command == "anim":
        variant = FormatVariant.ANIMATION
        anim = settings.animation
        output_dir = resolve_output_dir(args.output, anim.width, anim.height)
    else:
        variant = FormatVariant.ICON
        output_dir = Path(args.output)

    image_filter = None
    if not args.no_filter:
        image_filter = MagickFilter(settings.filters, bilevel=settings.strict)

    session = ConversionSession(
        output_dir,
        variant=variant,
        settings=settings,
        image_filter=image_filter,
        tracer=PotraceTracer() if args.trace else None,
        trace_dir=args.trace,
        icon_size=args.size if variant is FormatVariant.ICON else None,
    )
    result = session.run(args.source)

    print(f"Done: {result.frame_count} frames -> {result.output_dir}")
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(args.log_level)

    if not args.source:
        parser.error("a source file or folder is required")
    if not args.output:
        parser.error("an output folder is required (-o/--output)")

    try:
        return run(args)
    except ConversionError as exc:
        logger.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
