"""Transcode orchestration: inspect source, plan, parallel encodes, publish."""

from __future__ import annotations

from dataclasses import dataclass, field

import asyncio
import logging
import pathlib
import shutil
import uuid

from catalog import Video, VideoStatus
from encode_job import EncodeFailed, QualityResult, run_encode_job
from events import ProgressChannel, ProgressEvent, ProgressSink
from ffmpeg_command import (
    MASTER_PLAYLIST,
    ProbeError,
    SourceMedia,
    get_settings,
    get_transcode_dir,
    probe_source,
)
from manifest import variants_from_results, write_master_manifest
from quality import QualityProfile, plan_qualities

import cache
import catalog
import errors
import thumbnails


log = logging.getLogger(__name__)


def _new_session_id() -> str:
    return f"session-{uuid.uuid4().hex[:8]}"


@dataclass(slots=True)
class TranscodeSession:
    """State of one transcode run, shared by reference with its jobs.

    Every run encodes into its own <video_id>/<session_id> dir, so a
    re-transcode never writes over the ladder that is currently served.
    """

    video_id: str
    source: SourceMedia
    output_root: pathlib.Path
    channel: ProgressChannel
    session_id: str = field(default_factory=_new_session_id)
    profiles: list[QualityProfile] = field(default_factory=list)
    progress: dict[str, float] = field(default_factory=dict)
    results: list[QualityResult] = field(default_factory=list)
    failures: dict[str, str] = field(default_factory=dict)

    @property
    def video_dir(self) -> pathlib.Path:
        return self.output_root / self.video_id

    @property
    def session_dir(self) -> pathlib.Path:
        return self.video_dir / self.session_id

    @property
    def hls_path(self) -> str:
        return f"{self.video_id}/{self.session_id}/{MASTER_PLAYLIST}"

    def publish(self, event: ProgressEvent) -> None:
        self.progress[event.quality] = event.percent
        self.channel.publish(event)


def invalidate_video_cache(video_id: str) -> None:
    """Drop cached playback data derived from a video's transcode state."""
    cache.invalidate(f"stream:{video_id}")


def _remove_previous_session(previous: Video, session: TranscodeSession) -> None:
    """Delete the ladder a successful re-transcode has just replaced."""
    if not previous.hls_path:
        return
    old_dir = session.output_root / pathlib.PurePosixPath(previous.hls_path).parent
    # Only session dirs; a ladder written straight into <video_id>/ is left alone
    if old_dir == session.session_dir or old_dir.parent != session.video_dir:
        return
    try:
        shutil.rmtree(old_dir)
    except OSError as e:
        log.warning("Cannot remove replaced ladder %s: %s", old_dir, e)
        return
    log.info("Removed replaced ladder %s", old_dir)


class Transcoder:
    """Runs transcode sessions with a bound on concurrent encoder processes.

    The bound is shared by every session started through this instance, so
    one Transcoder per node caps total encoder load.
    """

    def __init__(self, max_concurrent_jobs: int | None = None) -> None:
        limit = max_concurrent_jobs or int(get_settings().get("max_concurrent_encodes", 2))
        self.max_concurrent_jobs = max(1, limit)
        self._encode_slots = asyncio.Semaphore(self.max_concurrent_jobs)

    async def _run_job(self, session: TranscodeSession, profile: QualityProfile) -> QualityResult:
        async with self._encode_slots:
            return await run_encode_job(
                session.video_id,
                session.source,
                profile,
                session.publish,
                output_root=session.output_root,
                session_dir=session.session_id,
            )

    async def _run_all(self, session: TranscodeSession) -> None:
        """Run every planned job to a terminal state; failures are collected, not raised."""
        outcomes = await asyncio.gather(
            *(self._run_job(session, p) for p in session.profiles),
            return_exceptions=True,
        )
        for profile, outcome in zip(session.profiles, outcomes, strict=True):
            if isinstance(outcome, QualityResult):
                session.results.append(outcome)
            elif isinstance(outcome, EncodeFailed):
                session.failures[profile.name] = outcome.reason
            elif isinstance(outcome, Exception):
                log.exception(
                    "Unexpected error encoding %s/%s",
                    session.video_id,
                    profile.name,
                    exc_info=outcome,
                )
                session.failures[profile.name] = str(outcome)
            else:
                raise outcome

    def _publish(self, session: TranscodeSession) -> pathlib.Path:
        """Write the session's master manifest, then swap quality records and mark READY.

        The catalog commit is the switch-over point: until it lands, readers
        keep getting the previous records and manifest.
        """
        variants = variants_from_results(session.results)
        manifest_path = write_master_manifest(session.session_dir, variants)
        try:
            catalog.delete_quality_records(session.video_id)
            for variant in variants:
                catalog.create_quality_record(session.video_id, variant)
            catalog.update_video_status(
                session.video_id,
                VideoStatus.READY,
                hls_path=session.hls_path,
            )
        except Exception:
            catalog.rollback()
            raise
        return manifest_path

    def _mark_failed(self, previous: Video) -> None:
        """End a session that produced nothing usable.

        A video that was already published goes back to READY with its old
        ladder; anything else becomes FAILED.
        """
        if previous.status == VideoStatus.READY and previous.hls_path:
            catalog.update_video_status(
                previous.id,
                VideoStatus.READY,
                duration=previous.duration,
                source_path=previous.source_path,
            )
            log.warning("Transcode %s: keeping previously published ladder", previous.id)
        else:
            catalog.update_video_status(previous.id, VideoStatus.FAILED)

    def claim(self, video_id: str, source_path: str) -> Video:
        """Mark a video PROCESSING, or raise if it can't start a session now.

        Synchronous so callers can answer a second request for the same
        video with AlreadyInProgress before anything is scheduled. Returns
        the video as it was before the claim.
        """
        video = catalog.get_video(video_id)
        if video is None:
            raise errors.NotFound("Video not found")
        if video.status == VideoStatus.PROCESSING:
            raise errors.AlreadyInProgress(f"Video {video_id} is already being transcoded")
        catalog.update_video_status(video_id, VideoStatus.PROCESSING, source_path=str(source_path))
        log.info("Transcode %s claimed for %s", video_id, source_path)
        return video

    async def start_transcode(
        self,
        video_id: str,
        source_path: str,
        progress_sink: ProgressSink | None = None,
    ) -> list[QualityResult]:
        """Transcode an uploaded video into an HLS ladder and publish it.

        Degrades to fewer renditions when some encodes fail; raises
        AllEncodesFailed only when none succeed.
        """
        previous = self.claim(video_id, source_path)
        return await self.run(previous, source_path, progress_sink)

    async def run(
        self,
        previous: Video,
        source_path: str,
        progress_sink: ProgressSink | None = None,
    ) -> list[QualityResult]:
        """Run a session claimed with claim(). `previous` is what claim() returned."""
        video_id = previous.id
        log.info("Transcode %s started from %s", video_id, source_path)
        try:
            try:
                source = await asyncio.to_thread(probe_source, source_path)
            except ProbeError as e:
                log.error("Transcode %s failed: unreadable source: %s", video_id, e)
                self._mark_failed(previous)
                raise errors.ProbeFailed(str(e)) from e

            catalog.update_video_status(video_id, VideoStatus.PROCESSING, duration=source.duration)
            profiles = plan_qualities(source.width, source.height)
            log.info(
                "Transcode %s: %dx%d %.0fs -> %s",
                video_id,
                source.width,
                source.height,
                source.duration,
                ", ".join(p.name for p in profiles),
            )

            channel = ProgressChannel(
                progress_sink,
                maxsize=int(get_settings().get("progress_queue_size", 64)),
            )
            session = TranscodeSession(
                video_id=video_id,
                source=source,
                output_root=get_transcode_dir(),
                channel=channel,
                profiles=profiles,
            )
            channel.start()
            try:
                await self._run_all(session)
            finally:
                await channel.close()

            if not session.results:
                log.error(
                    "Transcode %s failed: all %d encodes failed", video_id, len(profiles)
                )
                self._mark_failed(previous)
                raise errors.AllEncodesFailed(
                    f"All encodes failed for {video_id}: "
                    + "; ".join(f"{k}: {v}" for k, v in session.failures.items())
                )

            try:
                self._publish(session)
            except Exception:
                log.exception("Transcode %s failed to publish", video_id)
                self._mark_failed(previous)
                raise
            if session.failures:
                log.warning(
                    "Transcode %s degraded: %d/%d renditions (failed: %s)",
                    video_id,
                    len(session.results),
                    len(profiles),
                    ", ".join(sorted(session.failures)),
                )
            log.info("Transcode %s completed: READY (%s)", video_id, session.session_id)
        except asyncio.CancelledError:
            # Host is shutting down mid-session; don't leave the video stuck in PROCESSING
            self._mark_failed(previous)
            raise
        finally:
            invalidate_video_cache(video_id)

        _remove_previous_session(previous, session)
        if get_settings().get("generate_thumbnails", True):
            await self._generate_thumbnails(session)
        return sorted(session.results, key=lambda r: r.bitrate)

    async def _generate_thumbnails(self, session: TranscodeSession) -> None:
        try:
            await asyncio.to_thread(thumbnails.generate_all, session.source, session.session_dir)
        except Exception as e:
            log.warning("Thumbnail generation failed for %s: %s", session.video_id, e)
