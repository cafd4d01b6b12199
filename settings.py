# settings.py
"""
Conversion settings.

Settings can come from a YAML file; command line flags are layered on
top of it. Example file:

    animation:
      frame_rate: 8
      duration: 600
    bubble:
      text: "Hello\\nworld"
      locale: bottomcenter
    filters:
      threshold: 0.5
      dither: true
    strict: false
    on_frame_error: abort
"""
import logging
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Optional

import pydantic
import yaml
from pydantic import BaseModel, Field

from errors import ValidationError
from magick import FilterOptions
from metafile import AnimationConfig, BubbleConfig

logger = logging.getLogger(__name__)


class FrameErrorPolicy(str, Enum):
    ABORT = "abort"
    SKIP = "skip"


class ConvertSettings(BaseModel):
    animation: AnimationConfig = Field(default_factory=AnimationConfig)
    bubble: BubbleConfig = Field(default_factory=BubbleConfig)
    filters: FilterOptions = Field(default_factory=FilterOptions)
    strict: bool = False
    on_frame_error: FrameErrorPolicy = FrameErrorPolicy.ABORT
    wraparound: bool = False


def _format_errors(exc: pydantic.ValidationError) -> str:
    parts = []
    for err in exc.errors():
        where = ".".join(str(p) for p in err["loc"])
        parts.append(f"{where}: {err['msg']}")
    return "; ".join(parts)


def build_settings(data: Optional[Dict[str, Any]] = None, source: str = "settings") -> ConvertSettings:
    try:
        return ConvertSettings.model_validate(data or {})
    except pydantic.ValidationError as exc:
        raise ValidationError(f"Invalid {source}: {_format_errors(exc)}") from exc


def load_settings(path) -> ConvertSettings:
    path = Path(path)
    if not path.is_file():
        raise ValidationError(f"Config file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as exc:
        raise ValidationError(f"Cannot parse {path}: {exc}") from exc

    if data is not None and not isinstance(data, dict):
        raise ValidationError(f"{path}: top level must be a mapping")

    logger.info("Loaded settings from %s", path)
    return build_settings(data, source=str(path))


def merge_overrides(settings: ConvertSettings, overrides: Dict[str, Any]) -> ConvertSettings:
    """Apply {section: {field: value}} overrides; None values are ignored."""
    data = settings.model_dump()
    for key, value in overrides.items():
        if isinstance(value, dict):
            section = data.setdefault(key, {})
            section.update({k: v for k, v in value.items() if v is not None})
        elif value is not None:
            data[key] = value
    return build_settings(data, source="options")
