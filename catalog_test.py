"""Tests for catalog.py - video, quality, subtitle and watch-history storage."""

from __future__ import annotations

from pathlib import Path

import pytest

from catalog import Content, QualityVariant, Subtitle, VideoStatus, WatchProgress

import catalog


@pytest.fixture
def db(tmp_path: Path):
    """Initialize catalog database in temp directory."""
    catalog.init(tmp_path)
    yield catalog
    catalog.close()


def _variant(quality: str, bitrate: int) -> QualityVariant:
    return QualityVariant(
        quality=quality,
        width=1280,
        height=720,
        bitrate=bitrate,
        file_path=f"v1/{quality}",
        file_size=1000,
    )


def _progress(user: str, video: str, position: float, updated_at: float, **kw) -> WatchProgress:
    return WatchProgress(
        user_id=user,
        video_id=video,
        content_id=kw.pop("content_id", "c1"),
        position=position,
        duration=kw.pop("duration", 100.0),
        completed=kw.pop("completed", False),
        updated_at=updated_at,
        **kw,
    )


class TestInit:
    def test_init_creates_tables(self, db):
        conn = db._get_conn()
        tables = conn.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        table_names = {t["name"] for t in tables}
        assert {"content", "videos", "video_qualities", "subtitles", "watch_history"} <= table_names

    def test_init_is_idempotent(self, db, tmp_path: Path):
        db.create_video("v1", "c1")
        db.init(tmp_path)
        assert db.get_video("v1") is not None


class TestVideos:
    def test_create_and_get(self, db):
        db.create_video("v1", "c1", title="Pilot", source_path="/up/v1.mp4")
        video = db.get_video("v1")
        assert video.status == VideoStatus.PENDING
        assert video.title == "Pilot"
        assert video.source_path == "/up/v1.mp4"
        assert video.qualities == []

    def test_get_unknown(self, db):
        assert db.get_video("missing") is None

    def test_update_status_with_fields(self, db):
        db.create_video("v1", "c1")
        db.update_video_status("v1", VideoStatus.READY, duration=61.5, hls_path="v1/master.m3u8")
        video = db.get_video("v1")
        assert video.status == VideoStatus.READY
        assert video.duration == 61.5
        assert video.hls_path == "v1/master.m3u8"

    def test_update_rejects_unknown_field(self, db):
        db.create_video("v1", "c1")
        with pytest.raises(ValueError):
            db.update_video_status("v1", VideoStatus.READY, status="READY")

    def test_playable(self, db):
        db.create_video("v1", "c1")
        assert db.get_video("v1").playable is False
        db.update_video_status("v1", VideoStatus.PROCESSING)
        assert db.get_video("v1").playable is False
        db.update_video_status("v1", VideoStatus.READY, hls_path="v1/session-a/master.m3u8")
        assert db.get_video("v1").playable is True
        db.update_video_status("v1", VideoStatus.PROCESSING)
        assert db.get_video("v1").playable is True
        db.update_video_status("v1", VideoStatus.FAILED)
        assert db.get_video("v1").playable is False

    def test_delete(self, db):
        db.create_video("v1", "c1")
        db.create_quality_record("v1", _variant("SD_360", 800))
        db.commit()
        assert db.delete_video("v1") is True
        assert db.get_video("v1") is None
        assert db.get_quality_records("v1") == []
        assert db.delete_video("v1") is False


class TestQualityRecords:
    def test_records_sorted_by_bitrate(self, db):
        db.create_video("v1", "c1")
        db.create_quality_record("v1", _variant("HD_720", 2500))
        db.create_quality_record("v1", _variant("SD_360", 800))
        db.commit()
        assert [q.quality for q in db.get_video("v1").qualities] == ["SD_360", "HD_720"]

    def test_replace_same_quality(self, db):
        db.create_video("v1", "c1")
        db.create_quality_record("v1", _variant("SD_360", 800))
        db.create_quality_record("v1", _variant("SD_360", 900))
        db.commit()
        records = db.get_quality_records("v1")
        assert len(records) == 1
        assert records[0].bitrate == 900

    def test_rollback_discards_uncommitted(self, db):
        db.create_video("v1", "c1")
        db.create_quality_record("v1", _variant("SD_360", 800))
        db.rollback()
        assert db.get_quality_records("v1") == []

    def test_delete_records(self, db):
        db.create_video("v1", "c1")
        db.create_quality_record("v1", _variant("SD_360", 800))
        db.delete_quality_records("v1")
        db.commit()
        assert db.get_quality_records("v1") == []


class TestContentAndSubtitles:
    def test_content(self, db):
        db.create_content(Content(id="c1", title="Show", poster_url="/p.jpg"))
        content = db.get_content("c1")
        assert content.title == "Show"
        assert content.poster_url == "/p.jpg"
        assert db.get_content("c2") is None

    def test_subtitles_in_insert_order(self, db):
        db.add_subtitle("v1", Subtitle("en", "English", "v1/en.vtt", is_default=True))
        db.add_subtitle("v1", Subtitle("es", "Español", "v1/es.vtt"))
        subs = db.get_subtitles("v1")
        assert [s.language for s in subs] == ["en", "es"]
        assert subs[0].is_default is True


class TestWatchHistory:
    def test_upsert_creates_then_updates(self, db):
        db.upsert_watch_progress(_progress("u1", "v1", 10.0, 1.0))
        db.upsert_watch_progress(_progress("u1", "v1", 95.0, 2.0, completed=True))
        row = db.get_watch_progress("u1", "v1")
        assert row.position == 95.0
        assert row.completed is True
        assert row.updated_at == 2.0
        count = db._get_conn().execute("SELECT COUNT(*) FROM watch_history").fetchone()[0]
        assert count == 1

    def test_upsert_keeps_profile_when_omitted(self, db):
        db.upsert_watch_progress(_progress("u1", "v1", 10.0, 1.0, profile_id="kids"))
        db.upsert_watch_progress(_progress("u1", "v1", 20.0, 2.0))
        assert db.get_watch_progress("u1", "v1").profile_id == "kids"

    def test_list_in_progress_filters_and_orders(self, db):
        db.create_content(Content(id="c1", title="Show"))
        for vid in ("v1", "v2", "v3", "v4"):
            db.create_video(vid, "c1", title=vid.upper())
        db.upsert_watch_progress(_progress("u1", "v1", 10.0, 1.0))
        db.upsert_watch_progress(_progress("u1", "v2", 20.0, 3.0))
        db.upsert_watch_progress(_progress("u1", "v3", 0.0, 4.0))  # not started
        db.upsert_watch_progress(_progress("u1", "v4", 99.0, 5.0, completed=True))
        db.upsert_watch_progress(_progress("u2", "v1", 50.0, 6.0))

        rows = db.list_in_progress("u1", 10)
        assert [r["progress"].video_id for r in rows] == ["v2", "v1"]
        assert rows[0]["content"]["title"] == "Show"
        assert rows[0]["video"]["title"] == "V2"

    def test_list_in_progress_limit_and_profile(self, db):
        db.upsert_watch_progress(_progress("u1", "v1", 10.0, 1.0, profile_id="a"))
        db.upsert_watch_progress(_progress("u1", "v2", 10.0, 2.0, profile_id="b"))
        db.upsert_watch_progress(_progress("u1", "v3", 10.0, 3.0, profile_id="a"))
        assert len(db.list_in_progress("u1", 1)) == 1
        rows = db.list_in_progress("u1", 10, profile_id="a")
        assert [r["progress"].video_id for r in rows] == ["v3", "v1"]


if __name__ == "__main__":
    from testing import run_tests

    run_tests(__file__)
