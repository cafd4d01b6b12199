# metafile.py
"""
meta.txt composer for device animations.

The file is a fixed key/value block. When a bubble is configured a
single bubble slot is appended, anchored by a named locale and nudged
up / left so longer text still fits on screen.
"""
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import List, NamedTuple, Optional, Sequence

from pydantic import BaseModel, Field, field_validator

from packer import ANIM_H, ANIM_W, write_output

logger = logging.getLogger(__name__)

# Marker for a line break inside bubble text (two characters, not "\n")
NEWLINE_MARKER = "\\n"

LINE_STEP = 12  # px moved up per extra line
# Per-character step. Older tooling documented 5 here but applied 6; 6 wins.
CHAR_STEP = 6


class AnimationConfig(BaseModel):
    width: int = Field(default=ANIM_W, gt=0)
    height: int = Field(default=ANIM_H, gt=0)
    active_cycles: int = Field(default=1, ge=0, description="Active block repeats")
    frame_rate: int = Field(default=4, gt=0, description="Frames per second")
    duration: int = Field(default=3600, gt=0, description="Seconds before the pack cycles")
    cooldown: int = Field(default=5, ge=0, description="Seconds before active can retrigger")
    active_frames: int = Field(default=0, ge=0)


class BubbleConfig(BaseModel):
    text: str = ""
    locale: str = "center"
    start_frame: int = Field(default=0, ge=0)
    end_frame: int = Field(default=0, ge=0)

    @field_validator("text")
    @classmethod
    def validate_text(cls, value: str) -> str:
        """Line breaks must be written as the two-character marker."""
        if "\n" in value or "\r" in value:
            raise ValueError(f"text must use {NEWLINE_MARKER!r} for line breaks, not a real newline")
        return value


class Anchor(NamedTuple):
    x: int
    y: int
    align_h: str
    align_v: str


CENTER = Anchor(64, 32, "Center", "Bottom")

BUBBLE_LOCALES = {
    "center": CENTER,
    "bottomcenter": Anchor(64, 49, "Center", "Top"),
    "topcenter": Anchor(64, 0, "Center", "Bottom"),
    "leftcenter": Anchor(0, 32, "Right", "Center"),
    "rightcenter": Anchor(115, 32, "Left", "Center"),
    "bottomright": Anchor(115, 49, "Left", "Top"),
    "topright": Anchor(115, 0, "Left", "Bottom"),
    "bottomleft": Anchor(0, 49, "Right", "Top"),
    "topleft": Anchor(0, 0, "Right", "Bottom"),
}


@dataclass(frozen=True)
class BubblePlacement:
    x: int
    y: int
    text: str
    align_h: str
    align_v: str
    start: int
    end: int


def lookup_anchor(locale: str) -> Anchor:
    key = (locale or "").strip().lower()
    anchor = BUBBLE_LOCALES.get(key)
    if anchor is None:
        if key:
            logger.warning("Unknown bubble locale %r, using center", locale)
        return CENTER
    return anchor


def place_bubble(bubble: BubbleConfig, frame_count: int) -> BubblePlacement:
    anchor = lookup_anchor(bubble.locale)

    lines = bubble.text.split(NEWLINE_MARKER)
    chars = len(bubble.text.replace(NEWLINE_MARKER, ""))

    y = max(0, anchor.y - LINE_STEP * (len(lines) - 1))
    x = max(0, anchor.x - CHAR_STEP * max(0, chars - 1))

    start, end = bubble.start_frame, bubble.end_frame
    if start == 0 and end == 0:
        end = frame_count

    return BubblePlacement(
        x=x,
        y=y,
        text=bubble.text,
        align_h=anchor.align_h,
        align_v=anchor.align_v,
        start=start,
        end=end,
    )


def frame_order(count: int, wraparound: bool = False) -> List[int]:
    order = list(range(count))
    if wraparound:
        order.append(0)
    return order


def compose_meta(
    frame_count: int,
    order: Sequence[int],
    config: AnimationConfig,
    bubble: Optional[BubbleConfig] = None,
) -> str:
    has_bubble = bubble is not None and bool(bubble.text)

    lines = [
        "Filetype: Flipper Animation",
        "Version: 1",
        "",
        f"Width: {config.width}",
        f"Height: {config.height}",
        f"Passive frames: {frame_count}",
        f"Active frames: {config.active_frames}",
        f"Frames order: {' '.join(str(i) for i in order)}",
        f"Active cycles: {config.active_cycles}",
        f"Frame rate: {config.frame_rate}",
        f"Duration: {config.duration}",
        f"Active cooldown: {config.cooldown}",
        "",
        f"Bubble slots: {1 if has_bubble else 0}",
    ]

    if has_bubble:
        p = place_bubble(bubble, frame_count)
        lines += [
            "",
            "Slot: 0",
            f"X: {p.x}",
            f"Y: {p.y}",
            f"Text: {p.text}",
            f"AlignH: {p.align_h}",
            f"AlignV: {p.align_v}",
            f"StartFrame: {p.start}",
            f"EndFrame: {p.end}",
        ]

    return "\n".join(lines) + "\n"


def write_meta(path, text: str) -> Path:
    # utf-8 codec never emits a BOM
    return write_output(path, text.encode("utf-8"))
