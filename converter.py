# converter.py
import logging
import os
import re
import shutil
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from errors import FrameFormatError, OutputError, ValidationError
from metafile import compose_meta, frame_order, write_meta
from packer import FormatVariant, load_frame, pack_frame, write_output
from settings import ConvertSettings, FrameErrorPolicy

logger = logging.getLogger(__name__)

IMAGE_SUFFIXES = {".png", ".bmp", ".gif", ".jpg", ".jpeg", ".pbm", ".tif", ".tiff", ".webp"}
META_NAME = "meta.txt"
BITMAP_SUFFIX = ".bm"


def natural_key(path: Path):
    return [int(part) if part.isdigit() else part.lower() for part in re.split(r"(\d+)", path.name)]


def list_source_frames(path) -> List[Path]:
    """Image files of a directory in playback order, or the file itself."""
    path = Path(path)
    if path.is_file():
        return [path]
    if not path.is_dir():
        raise ValidationError(f"Source not found: {path}")

    frames = sorted(
        (p for p in path.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES),
        key=natural_key,
    )
    if not frames:
        raise ValidationError(f"No image files found in {path}")
    return frames


def resolve_output_dir(path, width: int, height: int) -> Path:
    """Underscores for whitespace, and a _WxH suffix if it is missing."""
    path = Path(path).expanduser().resolve()
    name = re.sub(r"\s", "_", path.name)
    suffix = f"_{width}x{height}"
    if not name.endswith(suffix):
        name += suffix
    return path.with_name(name)


@dataclass
class ConversionResult:
    output_dir: Path
    files: List[Path] = field(default_factory=list)
    order: List[int] = field(default_factory=list)
    skipped: List[Path] = field(default_factory=list)
    meta_path: Optional[Path] = None

    @property
    def frame_count(self) -> int:
        return len([f for f in self.files if f.suffix == BITMAP_SUFFIX])


class ConversionSession:
    """One batch run: source frames in, packed bitmaps (+ meta.txt) out.

    `image_filter` and `tracer` are optional collaborators exposing
    check() plus apply()/apply_batch() and trace() respectively. Without
    a filter the source frames are packed as they are.
    """

    def __init__(
        self,
        output_dir,
        variant: FormatVariant = FormatVariant.ANIMATION,
        settings: Optional[ConvertSettings] = None,
        image_filter=None,
        tracer=None,
        trace_dir=None,
        icon_size: Optional[Tuple[int, int]] = None,
        progress_every: int = 50,
    ):
        self.output_dir = Path(output_dir)
        self.variant = variant
        self.settings = settings or ConvertSettings()
        self.image_filter = image_filter
        self.tracer = tracer
        self.trace_dir = Path(trace_dir) if trace_dir else None
        self.progress_every = progress_every

        if variant is FormatVariant.ANIMATION:
            anim = self.settings.animation
            self.frame_size: Optional[Tuple[int, int]] = (anim.width, anim.height)
        else:
            self.frame_size = tuple(icon_size) if icon_size else None

        # Per-run state
        self.frame_index = 0
        self.order: List[int] = []
        self.skipped: List[Path] = []
        self.staged: Dict[str, Path] = {}

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    def run(self, source) -> ConversionResult:
        source = Path(source)
        if not source.exists():
            raise ValidationError(f"Source not found: {source}")
        if self.tracer is not None and self.trace_dir is None:
            raise ValidationError("Tracing needs an output directory for SVG files")
        if self.image_filter is not None and self.frame_size is None:
            raise ValidationError("Filtering icons needs a target size")

        # Fail before any work if a tool is missing
        if self.image_filter is not None:
            self.image_filter.check()
        if self.tracer is not None:
            self.tracer.check()

        self.frame_index = 0
        self.order = []
        self.skipped = []
        self.staged = {}

        staging = self._make_staging()
        try:
            with tempfile.TemporaryDirectory(prefix="gif2flipper-") as workdir:
                frames = self._prepare_frames(source, Path(workdir))
                total = len(frames)
                logger.info("Converting %d frames from %s", total, source)

                for i, path in enumerate(frames):
                    self._convert_frame(path, staging)
                    if i % self.progress_every == 0:
                        logger.info("Packed %d/%d frames", i, total)

            if self.frame_index == 0:
                raise ValidationError(f"No frames converted from {source}")

            meta_path = None
            if self.variant is FormatVariant.ANIMATION:
                meta_path = self._write_meta(staging)

            files = self._commit(staging)
        finally:
            shutil.rmtree(staging, ignore_errors=True)

        if self.skipped:
            logger.warning("Skipped %d frame(s): %s", len(self.skipped),
                           ", ".join(p.name for p in self.skipped))
        logger.info("Wrote %d frames to %s", self.frame_index, self.output_dir)

        return ConversionResult(
            output_dir=self.output_dir,
            files=files,
            order=list(self.order),
            skipped=list(self.skipped),
            meta_path=self.output_dir / META_NAME if meta_path else None,
        )

    # ------------------------------------------------------------------
    # Steps
    # ------------------------------------------------------------------

    def _make_staging(self) -> Path:
        parent = self.output_dir.parent
        try:
            parent.mkdir(parents=True, exist_ok=True)
            return Path(tempfile.mkdtemp(
                prefix=f".{self.output_dir.name}.", suffix=".partial", dir=parent
            ))
        except OSError as exc:
            raise OutputError(f"Cannot create staging directory in {parent}: {exc}") from exc

    def _prepare_frames(self, source: Path, workdir: Path) -> List[Path]:
        if self.image_filter is None:
            return list_source_frames(source)

        if source.is_file():
            frames = self.image_filter.apply_batch(source, workdir, self.frame_size)
        else:
            frames = []
            sources: Dict[str, Path] = {}
            for i, path in enumerate(list_source_frames(source)):
                # icons keep their source names
                name = path.stem if self.variant is FormatVariant.ICON else f"frame_{i}"
                if name in sources:
                    raise ValidationError(
                        f"{path} and {sources[name]} would both be written as {name}{BITMAP_SUFFIX}"
                    )
                sources[name] = path
                dest = workdir / f"{name}.png"
                frames.append(self.image_filter.apply(path, dest, self.frame_size))

        if not frames:
            raise ValidationError(f"Image filter produced no frames from {source}")
        return frames

    def _output_name(self, path: Path) -> str:
        if self.variant is FormatVariant.ANIMATION:
            return f"frame_{self.frame_index}{BITMAP_SUFFIX}"
        return path.stem + BITMAP_SUFFIX

    def _convert_frame(self, path: Path, staging: Path) -> None:
        index = self.frame_index
        try:
            red = load_frame(path, strict=self.settings.strict)
        except FrameFormatError as exc:
            if self.settings.on_frame_error is FrameErrorPolicy.SKIP:
                logger.warning("Skipping %s: %s", path.name, exc)
                self.skipped.append(path)
                return
            raise FrameFormatError(f"Frame {index}: {exc}", index=index) from exc

        try:
            data = pack_frame(red, self.variant, expected_size=self.frame_size)
        except ValidationError as exc:
            raise ValidationError(f"Frame {index} ({path}): {exc}") from exc

        name = self._output_name(path)
        if name in self.staged:
            raise ValidationError(
                f"{path} and {self.staged[name]} would both be written as {name}"
            )
        write_output(staging / name, data)
        self.staged[name] = path

        if self.tracer is not None:
            svg_dir = staging / "svg"
            try:
                svg_dir.mkdir(exist_ok=True)
            except OSError as exc:
                raise OutputError(f"Cannot create {svg_dir}: {exc}") from exc
            self.tracer.trace(path, svg_dir / f"{index}.svg")

        self.order.append(index)
        self.frame_index += 1

    def _write_meta(self, staging: Path) -> Path:
        order = frame_order(self.frame_index, self.settings.wraparound)

        bubble = self.settings.bubble if self.settings.bubble.text else None
        text = compose_meta(self.frame_index, order, self.settings.animation, bubble)
        return write_meta(staging / META_NAME, text)

    def _commit(self, staging: Path) -> List[Path]:
        """Move staged files into their final place."""
        files = []
        try:
            self.output_dir.mkdir(parents=True, exist_ok=True)
            self._clear_previous()
            for item in sorted(staging.iterdir(), key=natural_key):
                if item.is_file():
                    target = self.output_dir / item.name
                    os.replace(item, target)
                    files.append(target)

            svg_dir = staging / "svg"
            if svg_dir.is_dir():
                self.trace_dir.mkdir(parents=True, exist_ok=True)
                for item in sorted(svg_dir.iterdir(), key=natural_key):
                    shutil.move(str(item), str(self.trace_dir / item.name))
        except OSError as exc:
            raise OutputError(f"Cannot write output to {self.output_dir}: {exc}") from exc
        return files

    def _clear_previous(self) -> None:
        """Drop an earlier animation's frames so the folder matches the new meta.txt.

        Icon folders are shared, so only names about to be replaced go away
        (os.replace does that).
        """
        if self.variant is not FormatVariant.ANIMATION:
            return
        for item in self.output_dir.iterdir():
            if item.is_file() and (item.suffix == BITMAP_SUFFIX or item.name == META_NAME):
                logger.debug("Removing previous output %s", item)
                item.unlink()
