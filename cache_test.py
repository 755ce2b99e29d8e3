"""Tests for cache.py - settings file and TTL cache."""

from __future__ import annotations

from pathlib import Path
from unittest.mock import patch

import json

import pytest

import cache


@pytest.fixture(autouse=True)
def clean_cache():
    cache.get_cache().clear()
    yield
    cache.get_cache().clear()


class TestServerSettings:
    def test_defaults_when_missing(self, tmp_path: Path):
        with patch("cache.SERVER_SETTINGS_FILE", tmp_path / "server_settings.json"):
            settings = cache.load_server_settings()
        assert settings["ffmpeg_path"] == "ffmpeg"
        assert settings["encode_timeout_multiplier"] == 10.0
        assert settings["max_concurrent_encodes"] >= 1

    def test_file_overrides_defaults(self, tmp_path: Path):
        path = tmp_path / "server_settings.json"
        path.write_text(json.dumps({"max_concurrent_encodes": 7}))
        with patch("cache.SERVER_SETTINGS_FILE", path):
            settings = cache.load_server_settings()
        assert settings["max_concurrent_encodes"] == 7
        assert settings["ffprobe_path"] == "ffprobe"

    def test_corrupt_file_uses_defaults(self, tmp_path: Path):
        path = tmp_path / "server_settings.json"
        path.write_text("{not json")
        with patch("cache.SERVER_SETTINGS_FILE", path):
            settings = cache.load_server_settings()
        assert settings["progress_queue_size"] == 64

    def test_save_roundtrip(self, tmp_path: Path):
        path = tmp_path / "nested" / "server_settings.json"
        with patch("cache.SERVER_SETTINGS_FILE", path):
            cache.save_server_settings({"generate_thumbnails": False})
            assert cache.load_server_settings()["generate_thumbnails"] is False


class TestTtlCache:
    def test_get_set(self):
        cache.cache_set("stream:v1", {"id": "v1"}, ttl=60)
        assert cache.cache_get("stream:v1") == {"id": "v1"}

    def test_missing(self):
        assert cache.cache_get("nope") is None

    def test_expired(self):
        with patch("cache.time.time", return_value=1000.0):
            cache.cache_set("k", "v", ttl=10)
        with patch("cache.time.time", return_value=1010.0):
            assert cache.cache_get("k") is None
        assert "k" not in cache.get_cache()

    def test_invalidate_exact(self):
        cache.cache_set("stream:v1", 1, ttl=60)
        cache.cache_set("stream:v10", 2, ttl=60)
        assert cache.invalidate("stream:v1") == 1
        assert cache.cache_get("stream:v10") == 2

    def test_invalidate_pattern(self):
        cache.cache_set("continue-watching:u1:all", [], ttl=60)
        cache.cache_set("continue-watching:u1:p1", [], ttl=60)
        cache.cache_set("continue-watching:u2:all", [], ttl=60)
        assert cache.invalidate("continue-watching:u1:*") == 2
        assert cache.cache_get("continue-watching:u2:all") == []

    def test_invalidate_missing(self):
        assert cache.invalidate("stream:none") == 0
        assert cache.invalidate("manifest:none:*") == 0


if __name__ == "__main__":
    from testing import run_tests

    run_tests(__file__)
