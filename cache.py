"""App cache directory, server settings and in-process TTL cache."""

from __future__ import annotations

from typing import Any

import fnmatch
import json
import logging
import os
import pathlib
import threading
import time


log = logging.getLogger(__name__)

APP_DIR = pathlib.Path(__file__).parent
# Use old "cache" if it exists (backwards compat), otherwise ".cache"
_OLD_CACHE = APP_DIR / "cache"
CACHE_DIR = _OLD_CACHE if _OLD_CACHE.exists() else APP_DIR / ".cache"
SERVER_SETTINGS_FILE = CACHE_DIR / "server_settings.json"

# TTLs (seconds)
STREAM_INFO_TTL = 3_600
CONTINUE_WATCHING_TTL = 300

_cache: dict[str, tuple[float, Any]] = {}
_cache_lock = threading.Lock()


# ===========================================================================
# Server Settings
# ===========================================================================


def default_settings() -> dict[str, Any]:
    """Defaults for every setting; the settings file overrides these."""
    return {
        "transcode_dir": str(CACHE_DIR / "transcoded"),
        "ffmpeg_path": "ffmpeg",
        "ffprobe_path": "ffprobe",
        "max_concurrent_encodes": max(1, (os.cpu_count() or 2) // 2),
        "encode_timeout_multiplier": 10.0,
        "encode_timeout_min_secs": 300,
        "encode_timeout_max_secs": 6 * 3_600,
        "progress_queue_size": 64,
        "generate_thumbnails": True,
        "preview_thumbnail_count": 10,
    }


def load_server_settings() -> dict[str, Any]:
    """Load settings file merged over defaults. Missing/corrupt file = defaults."""
    settings = default_settings()
    if SERVER_SETTINGS_FILE.exists():
        try:
            settings.update(json.loads(SERVER_SETTINGS_FILE.read_text()))
        except (OSError, json.JSONDecodeError) as e:
            log.warning("Ignoring unreadable settings file %s: %s", SERVER_SETTINGS_FILE, e)
    return settings


def save_server_settings(settings: dict[str, Any]) -> None:
    """Persist settings (only keys that differ from defaults are meaningful)."""
    SERVER_SETTINGS_FILE.parent.mkdir(parents=True, exist_ok=True)
    SERVER_SETTINGS_FILE.write_text(json.dumps(settings, indent=2))


# ===========================================================================
# TTL Cache
# ===========================================================================


def get_cache() -> dict[str, tuple[float, Any]]:
    """Raw cache dict of key -> (expires_at, value). Hold get_cache_lock() to mutate."""
    return _cache


def get_cache_lock() -> threading.Lock:
    return _cache_lock


def cache_get(key: str) -> Any | None:
    """Get cached value, or None if missing/expired."""
    with _cache_lock:
        entry = _cache.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if time.time() >= expires_at:
            _cache.pop(key, None)
            return None
        return value


def cache_set(key: str, value: Any, ttl: float) -> None:
    with _cache_lock:
        _cache[key] = (time.time() + ttl, value)


def invalidate(key_or_pattern: str) -> int:
    """Drop a key, or every key matching a glob pattern. Returns number removed."""
    with _cache_lock:
        if not any(c in key_or_pattern for c in "*?["):
            return 1 if _cache.pop(key_or_pattern, None) is not None else 0
        keys = [k for k in _cache if fnmatch.fnmatchcase(k, key_or_pattern)]
        for k in keys:
            del _cache[k]
    if keys:
        log.debug("Invalidated %d cache keys matching %s", len(keys), key_or_pattern)
    return len(keys)
