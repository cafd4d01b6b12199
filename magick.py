# magick.py
"""
Wrappers around the external image tools.

ImageMagick does all decoding, filtering, resizing and thresholding;
potrace does vector tracing. Both are black boxes driven through their
command lines, so the packer never sees anything but finished rasters.
"""
import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import List, Optional, Sequence, Tuple

from PIL import Image
from pydantic import BaseModel, Field, field_validator

from errors import DependencyError, ToolError, ValidationError

logger = logging.getLogger(__name__)

THRESHOLDS = tuple(round(0.1 * i, 1) for i in range(1, 10))
TOOL_TIMEOUT = 300  # seconds


class FilterOptions(BaseModel):
    edge: int = Field(default=0, ge=0, description="Edge detect radius, 0 = off")
    invert: bool = False
    monochrome: bool = False
    grayscale: bool = False
    sharpen: Optional[str] = None  # e.g. "0x1.0"
    dither: bool = False
    contrast_stretch: Optional[str] = None  # e.g. "2%x1%"
    threshold: Optional[float] = None

    @field_validator("threshold")
    @classmethod
    def validate_threshold(cls, value: Optional[float]) -> Optional[float]:
        if value is None:
            return value
        rounded = round(value, 1)
        if rounded not in THRESHOLDS or abs(rounded - value) > 1e-9:
            raise ValueError(f"threshold must be one of {THRESHOLDS}, got {value}")
        return rounded


def require_tool(*names: str) -> str:
    """Return the first of `names` found on PATH."""
    for name in names:
        found = shutil.which(name)
        if found:
            return found
    raise DependencyError(f"Required tool not found on PATH: {' or '.join(names)}")


def run_tool(cmd: Sequence[str]) -> subprocess.CompletedProcess:
    logger.debug("Running %s", " ".join(str(c) for c in cmd))
    try:
        return subprocess.run(
            [str(c) for c in cmd],
            check=True,
            capture_output=True,
            text=True,
            timeout=TOOL_TIMEOUT,
        )
    except subprocess.CalledProcessError as exc:
        details = (exc.stderr or exc.stdout or "").strip()
        raise ToolError(f"{Path(cmd[0]).name} failed (exit {exc.returncode}): {details}") from exc
    except subprocess.TimeoutExpired as exc:
        raise ToolError(f"{Path(cmd[0]).name} timed out after {TOOL_TIMEOUT}s") from exc


# ------------------------------------------------------------------
# ImageMagick
# ------------------------------------------------------------------

class MagickFilter:
    """Runs sources through ImageMagick and lands them on the target size."""

    def __init__(self, options: Optional[FilterOptions] = None, bilevel: bool = False):
        self.options = options or FilterOptions()
        self.bilevel = bilevel
        self._binary: Optional[str] = None

    def check(self) -> str:
        """Locate the binary (IM7 `magick`, else IM6 `convert`)."""
        if self._binary is None:
            self._binary = require_tool("magick", "convert")
        return self._binary

    def build_args(self, size: Tuple[int, int]) -> List[str]:
        opts = self.options
        width, height = size
        args: List[str] = []

        if opts.edge:
            args += ["-edge", str(opts.edge)]
        if opts.invert:
            args.append("-negate")
        if opts.grayscale:
            args += ["-colorspace", "Gray"]
        if opts.sharpen:
            args += ["-sharpen", opts.sharpen]
        if opts.contrast_stretch:
            args += ["-contrast-stretch", opts.contrast_stretch]

        args += [
            "-resize", f"{width}x{height}",
            "-background", "white",
            "-gravity", "center",
            "-extent", f"{width}x{height}",
        ]

        if opts.dither:
            args += ["-dither", "FloydSteinberg"]
        else:
            args.append("+dither")
        if opts.monochrome:
            args.append("-monochrome")
        if opts.threshold is not None:
            args += ["-threshold", f"{round(opts.threshold * 100)}%"]
        if self.bilevel:
            args += ["-type", "Bilevel", "-define", "png:bit-depth=1"]

        return args

    def apply(self, src, dest, size: Tuple[int, int]) -> Path:
        """Filter one still image into `dest`."""
        src, dest = Path(src), Path(dest)
        if not src.is_file():
            raise ValidationError(f"Source image not found: {src}")

        # [0] keeps only the first frame of multi-frame stills
        run_tool([self.check(), f"{src}[0]", *self.build_args(size), str(dest)])
        return dest

    def apply_batch(self, src, workdir, size: Tuple[int, int]) -> List[Path]:
        """Split an animated source into filtered frame_<n>.png files."""
        src, workdir = Path(src), Path(workdir)
        if not src.is_file():
            raise ValidationError(f"Source animation not found: {src}")

        pattern = workdir / "frame_%d.png"
        run_tool([
            self.check(), str(src), "-coalesce",
            *self.build_args(size),
            "+adjoin", str(pattern),
        ])

        frames = sorted(workdir.glob("frame_*.png"), key=lambda p: int(p.stem.split("_")[1]))
        logger.info("Extracted %d frames from %s", len(frames), src.name)
        return frames


# ------------------------------------------------------------------
# potrace
# ------------------------------------------------------------------

class PotraceTracer:
    """Traces 1-bit rasters to SVG with potrace."""

    def __init__(self):
        self._binary: Optional[str] = None

    def check(self) -> str:
        if self._binary is None:
            self._binary = require_tool("potrace")
        return self._binary

    def trace(self, src, dest) -> Path:
        src, dest = Path(src), Path(dest)
        # potrace wants PBM/BMP input; Pillow writes mode "1" as PBM
        with tempfile.TemporaryDirectory() as tmp:
            pbm = Path(tmp) / (src.stem + ".pbm")
            try:
                with Image.open(src) as img:
                    img.convert("1").save(pbm)
            except OSError as exc:
                raise ValidationError(f"Cannot prepare {src} for tracing: {exc}") from exc
            run_tool([self.check(), str(pbm), "-s", "-o", str(dest)])
        return dest
