import argparse

import pytest
from PIL import Image

import gif2flipper
from gif2flipper import build_parser, main, parse_size


def make_frames(folder, count, size=(128, 64)):
    folder.mkdir(parents=True, exist_ok=True)
    for i in range(count):
        Image.new("1", size, 1).save(folder / f"frame{i}.png")


def test_parse_size():
    assert parse_size("128x64") == (128, 64)
    assert parse_size("10X10") == (10, 10)


@pytest.mark.parametrize("text", ["128", "axb", "0x64", "1x2x3"])
def test_parse_size_rejects(text):
    with pytest.raises(argparse.ArgumentTypeError):
        parse_size(text)


def test_anim_defaults_are_unset():
    args = build_parser().parse_args(["anim", "in.gif", "-o", "out"])
    assert args.frame_rate is None
    assert args.invert is None
    assert not args.no_filter


def test_anim_without_filter(tmp_path, capsys):
    src = tmp_path / "src"
    make_frames(src, 3)

    code = main([
        "anim", str(src), "-o", str(tmp_path / "My Anim"),
        "--no-filter", "--frame-rate", "8", "--wraparound",
        "--bubble-text", "Hello", "--bubble-locale", "topcenter",
    ])

    assert code == 0
    out = tmp_path / "My_Anim_128x64"
    meta = (out / "meta.txt").read_text(encoding="utf-8")
    assert "Frame rate: 8\n" in meta
    assert "Frames order: 0 1 2 0\n" in meta
    assert "X: 40\n" in meta
    assert "Done: 3 frames" in capsys.readouterr().out


def test_anim_with_config_file(tmp_path):
    src = tmp_path / "src"
    make_frames(src, 2)
    config = tmp_path / "settings.yaml"
    config.write_text("animation:\n  duration: 30\n  cooldown: 2\n", encoding="utf-8")

    code = main([
        "anim", str(src), "-o", str(tmp_path / "out"), "--no-filter",
        "-c", str(config), "--cooldown", "9",
    ])

    assert code == 0
    meta = (tmp_path / "out_128x64" / "meta.txt").read_text(encoding="utf-8")
    assert "Duration: 30\n" in meta
    assert "Active cooldown: 9\n" in meta


def test_icon_command(tmp_path):
    src = tmp_path / "icons"
    make_frames(src, 2, size=(10, 10))
    assert main(["icon", str(src), "-o", str(tmp_path / "out"), "--no-filter"]) == 0
    assert sorted(p.name for p in (tmp_path / "out").iterdir()) == ["frame0.bm", "frame1.bm"]


def test_missing_output_exits(tmp_path):
    with pytest.raises(SystemExit) as info:
        main(["anim", str(tmp_path)])
    assert info.value.code == 2


def test_missing_source_exits():
    with pytest.raises(SystemExit) as info:
        main(["anim", "-o", "out"])
    assert info.value.code == 2


def test_conversion_error_returns_1(tmp_path):
    code = main(["anim", str(tmp_path / "missing"), "-o", str(tmp_path / "out"), "--no-filter"])
    assert code == 1


def test_missing_magick_returns_1(tmp_path, monkeypatch):
    src = tmp_path / "src"
    make_frames(src, 1)
    monkeypatch.setattr(gif2flipper.MagickFilter, "check", _raise_missing)
    assert main(["anim", str(src), "-o", str(tmp_path / "out")]) == 1
    assert not (tmp_path / "out_128x64").exists()


def _raise_missing(self):
    from errors import DependencyError
    raise DependencyError("Required tool not found on PATH: magick or convert")
