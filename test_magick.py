import subprocess
from pathlib import Path

import pydantic
import pytest
from PIL import Image

import magick
from errors import DependencyError, ToolError, ValidationError
from magick import FilterOptions, MagickFilter, PotraceTracer, require_tool, run_tool


def test_default_args_resize_and_extent():
    args = MagickFilter().build_args((128, 64))
    assert args == [
        "-resize", "128x64",
        "-background", "white",
        "-gravity", "center",
        "-extent", "128x64",
        "+dither",
    ]


def test_all_options():
    opts = FilterOptions(
        edge=2, invert=True, monochrome=True, grayscale=True,
        sharpen="0x1.0", dither=True, contrast_stretch="2%x1%", threshold=0.4,
    )
    args = MagickFilter(opts, bilevel=True).build_args((10, 10))

    assert args[:2] == ["-edge", "2"]
    assert "-negate" in args
    assert args[args.index("-colorspace") + 1] == "Gray"
    assert args[args.index("-sharpen") + 1] == "0x1.0"
    assert args[args.index("-contrast-stretch") + 1] == "2%x1%"
    assert args[args.index("-dither") + 1] == "FloydSteinberg"
    assert "-monochrome" in args
    assert args[args.index("-threshold") + 1] == "40%"
    assert args[-4:] == ["-type", "Bilevel", "-define", "png:bit-depth=1"]
    # filters run before the resize, thresholding after it
    assert args.index("-edge") < args.index("-resize") < args.index("-threshold")


@pytest.mark.parametrize("value", [0.0, 0.05, 1.0, 0.95])
def test_threshold_steps(value):
    with pytest.raises(pydantic.ValidationError):
        FilterOptions(threshold=value)


def test_threshold_accepts_float_noise():
    assert FilterOptions(threshold=0.1 * 3).threshold == 0.3


def test_require_tool_prefers_first(monkeypatch):
    found = {"convert": "/usr/bin/convert"}
    monkeypatch.setattr(magick.shutil, "which", found.get)
    assert require_tool("magick", "convert") == "/usr/bin/convert"


def test_require_tool_missing(monkeypatch):
    monkeypatch.setattr(magick.shutil, "which", lambda name: None)
    with pytest.raises(DependencyError, match="magick or convert"):
        require_tool("magick", "convert")


def test_run_tool_failure(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise subprocess.CalledProcessError(1, cmd, stderr="no decode delegate")

    monkeypatch.setattr(magick.subprocess, "run", fake_run)
    with pytest.raises(ToolError, match="no decode delegate"):
        run_tool(["/usr/bin/magick", "x.gif", "out.png"])


def test_run_tool_timeout(monkeypatch):
    def fake_run(cmd, **kwargs):
        raise subprocess.TimeoutExpired(cmd, kwargs["timeout"])

    monkeypatch.setattr(magick.subprocess, "run", fake_run)
    with pytest.raises(ToolError, match="timed out"):
        run_tool(["potrace"])


def test_apply_missing_source(tmp_path):
    with pytest.raises(ValidationError):
        MagickFilter().apply(tmp_path / "nope.png", tmp_path / "out.png", (128, 64))


def test_apply_batch_collects_frames(tmp_path, monkeypatch):
    src = tmp_path / "a.gif"
    src.write_bytes(b"GIF89a")
    workdir = tmp_path / "work"
    workdir.mkdir()
    seen = []

    def fake_run_tool(cmd):
        seen.append(cmd)
        for i in (0, 1, 2, 10):
            (workdir / f"frame_{i}.png").write_bytes(b"")

    monkeypatch.setattr(magick, "run_tool", fake_run_tool)
    f = MagickFilter()
    f._binary = "magick"
    frames = f.apply_batch(src, workdir, (128, 64))

    assert [p.name for p in frames] == [
        "frame_0.png", "frame_1.png", "frame_2.png", "frame_10.png",
    ]
    cmd = seen[0]
    assert cmd[:3] == ["magick", str(src), "-coalesce"]
    assert cmd[-2:] == ["+adjoin", str(workdir / "frame_%d.png")]


def test_apply_reads_first_frame(tmp_path, monkeypatch):
    src = tmp_path / "still.png"
    src.write_bytes(b"")
    seen = []
    monkeypatch.setattr(magick, "run_tool", seen.append)
    f = MagickFilter()
    f._binary = "convert"

    dest = f.apply(src, tmp_path / "frame_0.png", (10, 10))

    assert dest == tmp_path / "frame_0.png"
    assert seen[0][1] == f"{src}[0]"
    assert seen[0][-1] == str(dest)


def test_trace_converts_to_pbm(tmp_path, monkeypatch):
    src = tmp_path / "frame.png"
    Image.new("L", (8, 8), 255).save(src)
    seen = []

    def fake_run_tool(cmd):
        pbm = Path(cmd[1])
        assert pbm.suffix == ".pbm"
        with Image.open(pbm) as img:
            assert img.mode == "1"
        seen.append(cmd)

    monkeypatch.setattr(magick, "run_tool", fake_run_tool)
    tracer = PotraceTracer()
    tracer._binary = "potrace"
    tracer.trace(src, tmp_path / "frame.svg")

    assert seen[0][0] == "potrace"
    assert seen[0][2:] == ["-s", "-o", str(tmp_path / "frame.svg")]


def test_trace_unreadable_frame(tmp_path, monkeypatch):
    src = tmp_path / "frame.png"
    src.write_bytes(b"not an image")
    monkeypatch.setattr(magick, "run_tool", lambda cmd: None)
    tracer = PotraceTracer()
    tracer._binary = "potrace"

    with pytest.raises(ValidationError, match="frame.png"):
        tracer.trace(src, tmp_path / "frame.svg")
