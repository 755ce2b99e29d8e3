"""Watch progress tracking and continue-watching lists."""

from __future__ import annotations

from typing import Any

import logging
import math
import time

from catalog import WatchProgress

import cache
import catalog
import errors


log = logging.getLogger(__name__)

COMPLETION_THRESHOLD = 0.9
DEFAULT_CONTINUE_LIMIT = 20
PLAYBACK_EVENTS = frozenset(
    {"play", "pause", "seek", "quality_change", "buffer", "error", "complete"}
)


def is_completed(position: float, duration: float) -> bool:
    """Watched at least 90% of a known duration."""
    return duration > 0 and position >= COMPLETION_THRESHOLD * duration


def _validate_seconds(name: str, value: Any) -> float:
    # bool is an int subclass but never a meaningful position
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise errors.InvalidProgress(f"{name} must be a number")
    if not math.isfinite(value) or value < 0:
        raise errors.InvalidProgress(f"{name} must be a non-negative finite number")
    return float(value)


def update_progress(
    user_id: str,
    video_id: str,
    position: Any,
    duration: Any,
    profile_id: str | None = None,
) -> dict[str, Any]:
    """Upsert the user's progress on a video. Returns {position, completed}."""
    position = _validate_seconds("position", position)
    duration = _validate_seconds("duration", duration)
    video = catalog.get_video(video_id)
    if video is None:
        raise errors.NotFound("Video not found")

    completed = is_completed(position, duration)
    catalog.upsert_watch_progress(
        WatchProgress(
            user_id=user_id,
            video_id=video_id,
            content_id=video.content_id,
            position=position,
            duration=duration,
            completed=completed,
            updated_at=time.time(),
            profile_id=profile_id,
        )
    )
    cache.invalidate(f"continue-watching:{user_id}:*")
    log.debug(
        "Updated watch progress for user %s, video %s: %.1f/%.1f",
        user_id,
        video_id,
        position,
        duration,
    )
    return {"position": position, "completed": completed}


def get_continue_watching(
    user_id: str,
    limit: int = DEFAULT_CONTINUE_LIMIT,
    profile_id: str | None = None,
) -> list[dict[str, Any]]:
    """Started-but-unfinished videos, most recently watched first."""
    limit = max(0, int(limit))
    cache_key = f"continue-watching:{user_id}:{profile_id or 'all'}"
    # A list fetched with a larger limit has every shorter list as its prefix
    cached = cache.cache_get(cache_key)
    if cached is not None and cached["limit"] >= limit:
        return cached["items"][:limit]

    items = []
    for row in catalog.list_in_progress(user_id, limit, profile_id):
        progress: WatchProgress = row["progress"]
        items.append(
            {
                "video_id": progress.video_id,
                "content_id": progress.content_id,
                "profile_id": progress.profile_id,
                "position": progress.position,
                "duration": progress.duration,
                "completed": progress.completed,
                "updated_at": progress.updated_at,
                "progress_percent": (
                    round(progress.position / progress.duration * 100)
                    if progress.duration > 0
                    else 0
                ),
                "content": row["content"],
                "video": row["video"],
            }
        )
    cache.cache_set(cache_key, {"limit": limit, "items": items}, cache.CONTINUE_WATCHING_TTL)
    return items


def record_playback_event(
    user_id: str,
    video_id: str,
    event: str,
    data: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Log a player analytics event (play, pause, seek, ...)."""
    if event not in PLAYBACK_EVENTS:
        raise errors.InvalidProgress(f"Unknown playback event: {event}")
    record = {
        **(data or {}),
        "user_id": user_id,
        "video_id": video_id,
        "event": event,
        "timestamp": time.time(),
    }
    log.info("Playback event: user=%s video=%s event=%s", user_id, video_id, event)
    return record
