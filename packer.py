# packer.py
import logging
import os
import struct
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

import cv2
import numpy as np
from PIL import Image

from errors import FrameFormatError, OutputError, ValidationError

logger = logging.getLogger(__name__)

# Red channel value that counts as black
BLACK = 0

ANIM_W, ANIM_H = 128, 64


class FormatVariant(Enum):
    """Packed bitmap layouts understood by the device.

    ANIMATION: 1-byte 0x00 header, LSB-first, white pixels are 1.
    ICON: little-endian u32 width + u32 height header, MSB-first,
    black pixels are 1.
    """

    ANIMATION = ("little", False, 1)
    ICON = ("big", True, 8)

    def __init__(self, bitorder: str, black_is_one: bool, header_size: int):
        self.bitorder = bitorder
        self.black_is_one = black_is_one
        self.header_size = header_size

    def header(self, width: int, height: int) -> bytes:
        if self is FormatVariant.ANIMATION:
            return b"\x00"
        return struct.pack("<II", width, height)


# ------------------------------------------------------------------
# Decoding
# ------------------------------------------------------------------

def load_frame(path, strict: bool = False) -> np.ndarray:
    """Return the red channel (H x W) of an image file.

    In strict mode the file must already be a 1-bit image.
    """
    path = Path(path)

    if strict:
        try:
            with Image.open(path) as img:
                if img.mode != "1":
                    raise FrameFormatError(
                        f"{path}: expected a 1-bit image, got mode {img.mode!r}"
                    )
                # "1" -> "L" maps pixels to 0 / 255
                return np.asarray(img.convert("L"), dtype=np.uint8)
        except OSError as exc:
            raise ValidationError(f"Cannot read frame {path}: {exc}") from exc

    img = cv2.imread(str(path), cv2.IMREAD_UNCHANGED)
    if img is None:
        raise ValidationError(f"Cannot read frame {path}")

    if img.ndim == 2:
        return img
    # OpenCV keeps channels as BGR(A)
    return img[:, :, 2]


# ------------------------------------------------------------------
# Packing
# ------------------------------------------------------------------

def pixel_bits(red: np.ndarray, variant: FormatVariant) -> np.ndarray:
    black = red == BLACK
    bits = black if variant.black_is_one else ~black
    return bits.astype(np.uint8)


def packed_size(width: int, height: int, variant: FormatVariant) -> int:
    return variant.header_size + height * ((width + 7) // 8)


def pack_frame(
    red: np.ndarray,
    variant: FormatVariant,
    expected_size: Optional[Tuple[int, int]] = None,
) -> bytes:
    """Pack one frame into header + row-major bitstream.

    Each row is packed on its own, so a width that is not a multiple
    of 8 leaves the spare bits of the last byte at zero.
    """
    if red.ndim != 2:
        raise ValidationError(f"Frame must be a 2-D pixel grid, got shape {red.shape}")

    height, width = red.shape
    if width == 0 or height == 0:
        raise ValidationError(f"Frame has zero size ({width}x{height})")

    if expected_size is not None and (width, height) != tuple(expected_size):
        exp_w, exp_h = expected_size
        raise ValidationError(
            f"Frame is {width}x{height}, expected {exp_w}x{exp_h}"
        )

    bits = pixel_bits(red, variant)
    rows = np.packbits(bits, axis=1, bitorder=variant.bitorder)
    return variant.header(width, height) + rows.tobytes()


def read_icon_header(data: bytes) -> Tuple[int, int]:
    """Width and height stored in an ICON blob."""
    if len(data) < FormatVariant.ICON.header_size:
        raise ValidationError(f"Icon data too short for header ({len(data)} bytes)")
    return struct.unpack_from("<II", data)


# ------------------------------------------------------------------
# Output
# ------------------------------------------------------------------

def write_output(path, data: bytes) -> Path:
    """Write a finished buffer in one go; nothing is left behind on failure."""
    path = Path(path)
    tmp = path.with_name(path.name + ".tmp")
    try:
        with open(tmp, "wb") as f:
            f.write(data)
        os.replace(tmp, path)
    except OSError as exc:
        tmp.unlink(missing_ok=True)
        raise OutputError(f"Cannot write {path}: {exc}") from exc

    logger.debug("Wrote %s (%d bytes)", path, len(data))
    return path
