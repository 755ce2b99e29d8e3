"""Catalog storage: videos, quality variants, subtitles, watch history."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

import logging
import sqlite3
import threading
import time


log = logging.getLogger(__name__)


# =============================================================================
# Data Types
# =============================================================================


class VideoStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    READY = "READY"
    FAILED = "FAILED"


@dataclass(slots=True)
class QualityVariant:
    quality: str
    width: int
    height: int
    bitrate: int  # kbps
    file_path: str  # relative to transcode dir, e.g. "<video_id>/HD_720"
    file_size: int = 0


@dataclass(slots=True)
class Subtitle:
    language: str
    label: str
    file_path: str
    is_default: bool = False


@dataclass(slots=True)
class Content:
    id: str
    title: str
    type: str = "movie"
    poster_url: str = ""
    backdrop_url: str = ""
    runtime: int = 0


@dataclass(slots=True)
class Video:
    """Persistent transcode state for one video."""

    id: str
    content_id: str
    title: str
    status: VideoStatus
    duration: float = 0.0
    hls_path: str = ""
    source_path: str = ""
    qualities: list[QualityVariant] = field(default_factory=list)

    @property
    def playable(self) -> bool:
        """READY, or re-transcoding while the last published ladder is still served."""
        if self.status == VideoStatus.READY:
            return True
        return self.status == VideoStatus.PROCESSING and bool(self.hls_path)


@dataclass(slots=True)
class WatchProgress:
    user_id: str
    video_id: str
    content_id: str
    position: float
    duration: float
    completed: bool
    updated_at: float
    profile_id: str | None = None


# =============================================================================
# SQLite Storage
# =============================================================================

_DB_PATH: Path | None = None
_local = threading.local()


def init(cache_dir: Path) -> None:
    """Initialize catalog database."""
    global _DB_PATH
    cache_dir.mkdir(parents=True, exist_ok=True)
    _DB_PATH = cache_dir / "catalog.db"
    close()
    conn = _get_conn()
    conn.executescript("""
        CREATE TABLE IF NOT EXISTS content (
            id TEXT PRIMARY KEY,
            title TEXT,
            type TEXT,
            poster_url TEXT,
            backdrop_url TEXT,
            runtime INTEGER
        );
        CREATE TABLE IF NOT EXISTS videos (
            id TEXT PRIMARY KEY,
            content_id TEXT,
            title TEXT,
            status TEXT NOT NULL,
            duration REAL DEFAULT 0,
            hls_path TEXT DEFAULT '',
            source_path TEXT DEFAULT '',
            created_at REAL,
            updated_at REAL
        );
        CREATE TABLE IF NOT EXISTS video_qualities (
            id INTEGER PRIMARY KEY,
            video_id TEXT NOT NULL,
            quality TEXT NOT NULL,
            width INTEGER,
            height INTEGER,
            bitrate INTEGER,
            file_path TEXT,
            file_size INTEGER,
            UNIQUE (video_id, quality)
        );
        CREATE TABLE IF NOT EXISTS subtitles (
            id INTEGER PRIMARY KEY,
            video_id TEXT NOT NULL,
            language TEXT,
            label TEXT,
            file_path TEXT,
            is_default INTEGER DEFAULT 0
        );
        CREATE TABLE IF NOT EXISTS watch_history (
            user_id TEXT NOT NULL,
            video_id TEXT NOT NULL,
            content_id TEXT,
            profile_id TEXT,
            position REAL,
            duration REAL,
            completed INTEGER,
            updated_at REAL,
            PRIMARY KEY (user_id, video_id)
        );
        CREATE INDEX IF NOT EXISTS idx_watch_history_user_time
            ON watch_history(user_id, updated_at);
    """)
    conn.commit()


def _get_conn() -> sqlite3.Connection:
    """Get thread-local database connection (reopened if init() moved the db)."""
    if getattr(_local, "conn", None) is not None and _local.path != _DB_PATH:
        close()
    if getattr(_local, "conn", None) is None:
        if _DB_PATH is None:
            raise RuntimeError("Catalog database not initialized")
        _local.path = _DB_PATH
        _local.conn = sqlite3.connect(_DB_PATH, timeout=30.0)
        _local.conn.row_factory = sqlite3.Row
        _local.conn.execute("PRAGMA journal_mode=WAL")
    return _local.conn


def close() -> None:
    """Close this thread's connection (if any)."""
    conn = getattr(_local, "conn", None)
    if conn is not None:
        conn.close()
        _local.conn = None


def commit() -> None:
    """Commit current transaction."""
    _get_conn().commit()


def rollback() -> None:
    _get_conn().rollback()


# =============================================================================
# Content & Videos
# =============================================================================


def create_content(content: Content) -> None:
    conn = _get_conn()
    conn.execute(
        "INSERT OR REPLACE INTO content (id, title, type, poster_url, backdrop_url, runtime) "
        "VALUES (?, ?, ?, ?, ?, ?)",
        (
            content.id,
            content.title,
            content.type,
            content.poster_url,
            content.backdrop_url,
            content.runtime,
        ),
    )
    conn.commit()


def get_content(content_id: str) -> Content | None:
    row = _get_conn().execute("SELECT * FROM content WHERE id = ?", (content_id,)).fetchone()
    if not row:
        return None
    return Content(
        id=row["id"],
        title=row["title"] or "",
        type=row["type"] or "movie",
        poster_url=row["poster_url"] or "",
        backdrop_url=row["backdrop_url"] or "",
        runtime=row["runtime"] or 0,
    )


def create_video(video_id: str, content_id: str, title: str = "", source_path: str = "") -> Video:
    """Register an uploaded video in PENDING state."""
    now = time.time()
    conn = _get_conn()
    conn.execute(
        "INSERT INTO videos (id, content_id, title, status, source_path, created_at, updated_at) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (video_id, content_id, title, VideoStatus.PENDING.value, source_path, now, now),
    )
    conn.commit()
    return Video(
        id=video_id,
        content_id=content_id,
        title=title,
        status=VideoStatus.PENDING,
        source_path=source_path,
    )


def get_video(video_id: str) -> Video | None:
    """Get video with its quality variants, or None if unknown."""
    row = _get_conn().execute("SELECT * FROM videos WHERE id = ?", (video_id,)).fetchone()
    if not row:
        return None
    return Video(
        id=row["id"],
        content_id=row["content_id"] or "",
        title=row["title"] or "",
        status=VideoStatus(row["status"]),
        duration=row["duration"] or 0.0,
        hls_path=row["hls_path"] or "",
        source_path=row["source_path"] or "",
        qualities=get_quality_records(video_id),
    )


_UPDATABLE_VIDEO_FIELDS = {"duration", "hls_path", "source_path", "title"}


def update_video_status(video_id: str, status: VideoStatus, **fields: Any) -> None:
    """Set status (plus optional fields) and commit the current transaction."""
    unknown = set(fields) - _UPDATABLE_VIDEO_FIELDS
    if unknown:
        raise ValueError(f"Cannot update video fields: {sorted(unknown)}")
    assignments = ["status = ?", "updated_at = ?"]
    params: list[Any] = [VideoStatus(status).value, time.time()]
    for name, value in fields.items():
        assignments.append(f"{name} = ?")
        params.append(value)
    params.append(video_id)
    conn = _get_conn()
    conn.execute(f"UPDATE videos SET {', '.join(assignments)} WHERE id = ?", params)
    conn.commit()
    log.debug("Video %s -> %s %s", video_id, VideoStatus(status).value, fields or "")


def delete_video(video_id: str) -> bool:
    """Remove a video and everything keyed by it. Returns True if it existed."""
    conn = _get_conn()
    cur = conn.execute("DELETE FROM videos WHERE id = ?", (video_id,))
    conn.execute("DELETE FROM video_qualities WHERE video_id = ?", (video_id,))
    conn.execute("DELETE FROM subtitles WHERE video_id = ?", (video_id,))
    conn.execute("DELETE FROM watch_history WHERE video_id = ?", (video_id,))
    conn.commit()
    return cur.rowcount > 0


# =============================================================================
# Quality Records
# =============================================================================


def create_quality_record(video_id: str, variant: QualityVariant) -> None:
    """Insert or replace a quality variant. Not committed; see commit()."""
    _get_conn().execute(
        "INSERT OR REPLACE INTO video_qualities "
        "(video_id, quality, width, height, bitrate, file_path, file_size) "
        "VALUES (?, ?, ?, ?, ?, ?, ?)",
        (
            video_id,
            variant.quality,
            variant.width,
            variant.height,
            variant.bitrate,
            variant.file_path,
            variant.file_size,
        ),
    )


def delete_quality_records(video_id: str) -> None:
    """Remove all quality variants of a video. Not committed."""
    _get_conn().execute("DELETE FROM video_qualities WHERE video_id = ?", (video_id,))


def get_quality_records(video_id: str) -> list[QualityVariant]:
    rows = _get_conn().execute(
        "SELECT quality, width, height, bitrate, file_path, file_size "
        "FROM video_qualities WHERE video_id = ? ORDER BY bitrate",
        (video_id,),
    ).fetchall()
    return [
        QualityVariant(
            quality=row["quality"],
            width=row["width"],
            height=row["height"],
            bitrate=row["bitrate"],
            file_path=row["file_path"] or "",
            file_size=row["file_size"] or 0,
        )
        for row in rows
    ]


# =============================================================================
# Subtitles
# =============================================================================


def add_subtitle(video_id: str, subtitle: Subtitle) -> None:
    conn = _get_conn()
    conn.execute(
        "INSERT INTO subtitles (video_id, language, label, file_path, is_default) "
        "VALUES (?, ?, ?, ?, ?)",
        (video_id, subtitle.language, subtitle.label, subtitle.file_path, int(subtitle.is_default)),
    )
    conn.commit()


def get_subtitles(video_id: str) -> list[Subtitle]:
    rows = _get_conn().execute(
        "SELECT language, label, file_path, is_default FROM subtitles WHERE video_id = ? "
        "ORDER BY id",
        (video_id,),
    ).fetchall()
    return [
        Subtitle(
            language=row["language"] or "und",
            label=row["label"] or "",
            file_path=row["file_path"] or "",
            is_default=bool(row["is_default"]),
        )
        for row in rows
    ]


# =============================================================================
# Watch History
# =============================================================================


def _row_to_progress(row: sqlite3.Row) -> WatchProgress:
    return WatchProgress(
        user_id=row["user_id"],
        video_id=row["video_id"],
        content_id=row["content_id"] or "",
        position=row["position"] or 0.0,
        duration=row["duration"] or 0.0,
        completed=bool(row["completed"]),
        updated_at=row["updated_at"] or 0.0,
        profile_id=row["profile_id"],
    )


def upsert_watch_progress(progress: WatchProgress) -> None:
    """Create or update the single watch row for (user_id, video_id)."""
    conn = _get_conn()
    conn.execute(
        """
        INSERT INTO watch_history
            (user_id, video_id, content_id, profile_id, position, duration, completed, updated_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT (user_id, video_id) DO UPDATE SET
            position = excluded.position,
            duration = excluded.duration,
            completed = excluded.completed,
            updated_at = excluded.updated_at,
            profile_id = COALESCE(excluded.profile_id, watch_history.profile_id)
        """,
        (
            progress.user_id,
            progress.video_id,
            progress.content_id,
            progress.profile_id,
            progress.position,
            progress.duration,
            int(progress.completed),
            progress.updated_at,
        ),
    )
    conn.commit()


def get_watch_progress(user_id: str, video_id: str) -> WatchProgress | None:
    row = _get_conn().execute(
        "SELECT * FROM watch_history WHERE user_id = ? AND video_id = ?",
        (user_id, video_id),
    ).fetchone()
    return _row_to_progress(row) if row else None


def list_in_progress(
    user_id: str,
    limit: int,
    profile_id: str | None = None,
) -> list[dict[str, Any]]:
    """Unfinished, started watch rows joined with content/video, newest first."""
    query = """
        SELECT w.*, c.title AS content_title, c.type AS content_type,
               c.poster_url, c.backdrop_url, c.runtime,
               v.title AS video_title, v.duration AS video_duration
        FROM watch_history w
        LEFT JOIN content c ON c.id = w.content_id
        LEFT JOIN videos v ON v.id = w.video_id
        WHERE w.user_id = ? AND w.completed = 0 AND w.position > 0
    """
    params: list[Any] = [user_id]
    if profile_id:
        query += " AND w.profile_id = ?"
        params.append(profile_id)
    query += " ORDER BY w.updated_at DESC LIMIT ?"
    params.append(limit)
    rows = _get_conn().execute(query, params).fetchall()
    return [
        {
            "progress": _row_to_progress(row),
            "content": {
                "id": row["content_id"] or "",
                "title": row["content_title"] or "",
                "type": row["content_type"] or "",
                "poster_url": row["poster_url"] or "",
                "backdrop_url": row["backdrop_url"] or "",
                "runtime": row["runtime"] or 0,
            },
            "video": {
                "id": row["video_id"],
                "title": row["video_title"] or "",
                "duration": row["video_duration"] or 0.0,
            },
        }
        for row in rows
    ]
