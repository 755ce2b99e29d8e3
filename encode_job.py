"""Single-rendition encode job: one ffmpeg process per quality profile."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

import asyncio
import collections
import contextlib
import logging
import os
import pathlib
import signal

from events import ProgressEvent
from ffmpeg_command import (
    VARIANT_PLAYLIST,
    SourceMedia,
    build_encode_cmd,
    get_encode_timeout,
    get_transcode_dir,
)
from quality import QualityProfile


log = logging.getLogger(__name__)

# Timing constants
_KILL_GRACE_SEC = 5.0
_STDERR_TAIL_LINES = 20


class JobState(str, Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


class EncodeFailed(Exception):
    """One rendition failed (encoder error, timeout, spawn/disk failure)."""

    def __init__(self, profile: str, reason: str) -> None:
        super().__init__(f"{profile}: {reason}")
        self.profile = profile
        self.reason = reason


@dataclass(slots=True)
class TranscodeJob:
    video_id: str
    profile: QualityProfile
    output_dir: pathlib.Path
    state: JobState = JobState.PENDING
    percent: float = 0.0
    current_kbps: float | None = None
    segment_count: int = 0
    byte_size: int = 0
    error: str = ""

    @property
    def tag(self) -> str:
        return f"{self.video_id}/{self.profile.name}"


@dataclass(frozen=True, slots=True)
class QualityResult:
    profile: str
    width: int
    height: int
    bitrate: int  # kbps
    output_path: str  # relative to transcode dir
    byte_size: int
    segment_count: int = 0


# ===========================================================================
# Process Helpers
# ===========================================================================


def _signal_group(process: Any, sig: int) -> None:
    """Signal the encoder's process group, falling back to the process itself."""
    try:
        os.killpg(process.pid, sig)
    except (OSError, TypeError):
        with contextlib.suppress(ProcessLookupError, OSError):
            process.send_signal(sig)


async def _kill_process(process: Any) -> None:
    """Stop encoder and its children: SIGTERM, then SIGKILL after a grace period."""
    if process.returncode is not None:
        return
    _signal_group(process, signal.SIGTERM)
    try:
        await asyncio.wait_for(process.wait(), timeout=_KILL_GRACE_SEC)
        return
    except TimeoutError:
        pass
    _signal_group(process, signal.SIGKILL)
    with contextlib.suppress(TimeoutError):
        await asyncio.wait_for(process.wait(), timeout=_KILL_GRACE_SEC)


async def _monitor_encoder_stderr(
    process: Any,
    tag: str,
    stderr_lines: collections.deque[str],
) -> None:
    if process.stderr is None:
        return
    while True:
        line = await process.stderr.readline()
        if not line:
            break
        text = line.decode(errors="replace").rstrip()
        stderr_lines.append(text)
        log.debug("ffmpeg:%s %s", tag, text)


# ===========================================================================
# Progress Parsing
# ===========================================================================


def parse_progress_line(line: str, state: dict[str, float]) -> bool:
    """Fold one `-progress` key=value line into state. True at a block end."""
    key, sep, value = line.strip().partition("=")
    if not sep:
        return False
    value = value.strip()
    if key in ("out_time_us", "out_time_ms"):
        # Both are microseconds in ffmpeg's progress output
        with contextlib.suppress(ValueError):
            state["out_time"] = int(value) / 1_000_000
    elif key == "bitrate":
        with contextlib.suppress(ValueError):
            state["kbps"] = float(value.removesuffix("kbits/s"))
    elif key == "progress":
        state["ended"] = 1.0 if value == "end" else 0.0
        return True
    return False


def _percent(out_time: float, duration: float) -> float:
    if duration <= 0:
        return 0.0
    return max(0.0, min(100.0, out_time / duration * 100))


def _emit(
    progress_sink: Callable[[ProgressEvent], Any] | None,
    job: TranscodeJob,
) -> None:
    if progress_sink is None:
        return
    event = ProgressEvent(
        video_id=job.video_id,
        quality=job.profile.name,
        percent=job.percent,
        current_kbps=job.current_kbps,
    )
    try:
        progress_sink(event)
    except Exception as e:
        log.debug("Dropping progress for %s: %s", job.tag, e)


async def _read_progress(
    process: Any,
    job: TranscodeJob,
    duration: float,
    progress_sink: Callable[[ProgressEvent], Any] | None,
) -> None:
    assert process.stdout is not None
    state: dict[str, float] = {}
    while True:
        line = await process.stdout.readline()
        if not line:
            break
        if not parse_progress_line(line.decode(errors="replace"), state):
            continue
        if state.get("ended"):
            job.percent = 100.0
        elif "out_time" in state:
            job.percent = _percent(state["out_time"], duration)
        job.current_kbps = state.get("kbps")
        _emit(progress_sink, job)


# ===========================================================================
# Output Inventory
# ===========================================================================


def measure_output(output_dir: pathlib.Path) -> tuple[int, int]:
    """Return (segment_count, total_segment_bytes) for the segments the playlist lists.

    Stray segment files from an earlier encode into the same dir are not counted.
    """
    playlist = (output_dir / VARIANT_PLAYLIST).read_text()
    segments = [
        output_dir / line.strip()
        for line in playlist.splitlines()
        if line.strip() and not line.startswith("#")
    ]
    return len(segments), sum(seg.stat().st_size for seg in segments)


# ===========================================================================
# Job Runner
# ===========================================================================


async def run_encode_job(
    video_id: str,
    source: SourceMedia,
    profile: QualityProfile,
    progress_sink: Callable[[ProgressEvent], Any] | None = None,
    *,
    output_root: pathlib.Path | None = None,
    session_dir: str = "",
    timeout: float | None = None,
) -> QualityResult:
    """Encode one rendition into <root>/<video_id>/[<session_dir>/]<PROFILE>.

    Raises EncodeFailed; never touches sibling jobs. Partial output is left
    on disk for the content-deletion flow to collect.
    """
    root = output_root if output_root is not None else get_transcode_dir()
    rel_path = pathlib.PurePosixPath(video_id, session_dir, profile.name)
    job = TranscodeJob(
        video_id=video_id,
        profile=profile,
        output_dir=root / rel_path,
    )

    def fail(reason: str) -> EncodeFailed:
        job.state = JobState.FAILED
        job.error = reason
        log.warning("Encode %s failed: %s", job.tag, reason)
        return EncodeFailed(profile.name, reason)

    try:
        job.output_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise fail(f"cannot create output dir: {e}") from e

    cmd = build_encode_cmd(source.path, profile, job.output_dir)
    limit = timeout if timeout is not None else get_encode_timeout(source.duration)
    log.info(
        "Starting encode %s (%dx%d @%dk, timeout %.0fs)",
        job.tag,
        profile.width,
        profile.height,
        profile.video_bitrate,
        limit,
    )
    log.debug("ffmpeg:%s %s", job.tag, " ".join(cmd))

    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            start_new_session=True,
        )
    except OSError as e:
        raise fail(f"cannot spawn encoder: {e}") from e

    job.state = JobState.RUNNING
    stderr_lines: collections.deque[str] = collections.deque(maxlen=_STDERR_TAIL_LINES)
    stderr_task = asyncio.create_task(_monitor_encoder_stderr(process, job.tag, stderr_lines))

    async def drain_and_wait() -> None:
        await _read_progress(process, job, source.duration, progress_sink)
        await process.wait()

    timed_out = False
    try:
        await asyncio.wait_for(drain_and_wait(), timeout=limit)
    except TimeoutError:
        timed_out = True
    finally:
        # Also runs on cancellation so no encoder outlives its session
        await _kill_process(process)
        with contextlib.suppress(TimeoutError):
            await asyncio.wait_for(stderr_task, timeout=1.0)

    tail = " | ".join(stderr_lines) or "no stderr"
    if timed_out:
        raise fail(f"timed out after {limit:.0f}s ({tail})")
    if process.returncode != 0:
        raise fail(f"encoder exited with code {process.returncode} ({tail})")
    if not (job.output_dir / VARIANT_PLAYLIST).exists():
        raise fail("encoder produced no playlist")

    try:
        job.segment_count, job.byte_size = measure_output(job.output_dir)
    except OSError as e:
        raise fail(f"cannot measure output: {e}") from e
    job.state = JobState.SUCCEEDED
    job.percent = 100.0
    log.info(
        "Completed encode %s: %d segments, %.1fMB",
        job.tag,
        job.segment_count,
        job.byte_size / 1_048_576,
    )
    return QualityResult(
        profile=profile.name,
        width=profile.width,
        height=profile.height,
        bitrate=profile.video_bitrate,
        output_path=str(rel_path),
        byte_size=job.byte_size,
        segment_count=job.segment_count,
    )
