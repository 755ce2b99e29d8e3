"""Tests for thumbnails.py - poster and scrub preview extraction."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from ffmpeg_command import SourceMedia
from thumbnails import (
    generate_all,
    generate_preview_thumbnails,
    generate_thumbnail,
    preview_timestamps,
)

import ffmpeg_command


def _source(duration: float) -> SourceMedia:
    return SourceMedia("/videos/in.mp4", "mp4", "h264", "aac", 1920, 1080, duration, 6000)


def _ok():
    result = MagicMock()
    result.returncode = 0
    result.stderr = ""
    return result


@pytest.fixture(autouse=True)
def settings():
    values: dict = {}
    ffmpeg_command.init(lambda: values)
    yield values
    ffmpeg_command.init(dict)


def _seek_times(run_mock) -> list[str]:
    return [c.args[0][c.args[0].index("-ss") + 1] for c in run_mock.call_args_list]


class TestPreviewTimestamps:
    def test_even_spacing(self):
        assert preview_timestamps(110, 10) == [float(10 * i) for i in range(1, 11)]

    def test_interval_floors(self):
        assert preview_timestamps(100, 10) == [float(9 * i) for i in range(1, 11)]

    def test_too_short(self):
        assert preview_timestamps(5, 10) == []

    def test_degenerate(self):
        assert preview_timestamps(0, 10) == []
        assert preview_timestamps(100, 0) == []


class TestGenerateThumbnail:
    def test_poster_offset(self, tmp_path: Path):
        with patch("subprocess.run", return_value=_ok()) as run:
            path = generate_thumbnail(_source(600), tmp_path / "v1" / "thumbnail.jpg")
        assert path.parent.is_dir()
        assert _seek_times(run) == ["5.000"]
        assert "scale=1280:720" in " ".join(run.call_args.args[0])

    def test_short_clip_uses_first_frame(self, tmp_path: Path):
        with patch("subprocess.run", return_value=_ok()) as run:
            generate_thumbnail(_source(3), tmp_path / "thumbnail.jpg")
        assert _seek_times(run) == ["0.000"]

    def test_failure_raises(self, tmp_path: Path):
        failed = _ok()
        failed.returncode = 1
        failed.stderr = "Invalid data found"
        with patch("subprocess.run", return_value=failed):
            with pytest.raises(RuntimeError, match="Invalid data"):
                generate_thumbnail(_source(600), tmp_path / "thumbnail.jpg")


class TestGeneratePreviews:
    def test_count_and_names(self, tmp_path: Path):
        with patch("subprocess.run", return_value=_ok()) as run:
            paths = generate_preview_thumbnails(_source(44), tmp_path / "previews", count=3)
        assert [p.name for p in paths] == ["preview_1.jpg", "preview_2.jpg", "preview_3.jpg"]
        assert _seek_times(run) == ["11.000", "22.000", "33.000"]
        assert "scale=320:180" in " ".join(run.call_args.args[0])

    def test_generate_all_uses_configured_count(self, tmp_path: Path, settings):
        settings["preview_thumbnail_count"] = 2
        with patch("subprocess.run", return_value=_ok()) as run:
            generate_all(_source(90), tmp_path)
        # poster + 2 previews
        assert run.call_count == 3
        assert (tmp_path / "previews").is_dir()


if __name__ == "__main__":
    from testing import run_tests

    run_tests(__file__)
