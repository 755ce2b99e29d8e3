"""HTTP API: playback manifests, stream info, watch progress, transcode control."""

from __future__ import annotations

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from typing import Any

import asyncio
import logging
import re

from fastapi import Body, FastAPI, Header, Request
from fastapi.responses import FileResponse, JSONResponse, Response

from catalog import Video
from quality import HIGHEST_TIER

import cache
import catalog
import errors
import ffmpeg_command
import manifest
import transcoder
import watch


log = logging.getLogger(__name__)

# Variant playlist or segment, never a path
_VARIANT_FILE_RE = re.compile(r"^[A-Za-z0-9_.-]+\.(m3u8|ts)$")

_background_tasks: set[asyncio.Task[Any]] = set()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    ffmpeg_command.init(cache.load_server_settings)
    catalog.init(cache.CACHE_DIR)
    app.state.transcoder = transcoder.Transcoder()
    log.info(
        "Started (transcode_dir=%s, max_concurrent_encodes=%d)",
        ffmpeg_command.get_transcode_dir(),
        app.state.transcoder.max_concurrent_jobs,
    )
    yield


app = FastAPI(lifespan=lifespan)


@app.exception_handler(errors.StreamingError)
async def streaming_error_handler(request: Request, exc: errors.StreamingError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"status": "fail", "message": exc.message},
    )


def _spawn_background_task(coro: Any) -> None:
    task = asyncio.create_task(coro)
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)


# ===========================================================================
# Health
# ===========================================================================


@app.get("/health")
async def health_check() -> dict[str, str]:
    return {"status": "healthy"}


# ===========================================================================
# Playback
# ===========================================================================


@app.get("/stream/continue-watching")
def continue_watching(
    limit: int = watch.DEFAULT_CONTINUE_LIMIT,
    profile_id: str | None = None,
    x_user_id: str = Header(...),
) -> dict[str, Any]:
    items = watch.get_continue_watching(x_user_id, limit, profile_id)
    return {"status": "success", "data": items}


@app.get("/stream/{video_id}")
def stream_info(
    video_id: str,
    x_user_id: str | None = Header(None),
    x_max_quality: str = Header(HIGHEST_TIER),
) -> dict[str, Any]:
    info = manifest.get_stream_info(video_id, x_user_id, x_max_quality)
    return {"status": "success", "data": info.to_dict()}


@app.get("/stream/{video_id}/master.m3u8")
def master_manifest(
    video_id: str,
    x_max_quality: str = Header(HIGHEST_TIER),
) -> Response:
    playlist = manifest.get_master_manifest(video_id, x_max_quality)
    return Response(
        content=playlist,
        media_type=manifest.MANIFEST_CONTENT_TYPE,
        headers={"Cache-Control": "no-cache"},
    )


@app.get("/stream/{video_id}/{quality}/{filename}")
def variant_file(
    video_id: str,
    quality: str,
    filename: str,
    x_max_quality: str = Header(HIGHEST_TIER),
) -> FileResponse:
    if not _VARIANT_FILE_RE.match(filename):
        raise errors.NotFound("File not found")
    path = manifest.get_variant_dir(video_id, quality, x_max_quality) / filename
    if not path.is_file():
        raise errors.NotFound("File not found")
    media_type = manifest.MANIFEST_CONTENT_TYPE if filename.endswith(".m3u8") else "video/mp2t"
    return FileResponse(path, media_type=media_type)


@app.post("/stream/{video_id}/progress")
def update_progress(
    video_id: str,
    body: dict[str, Any] = Body(...),
    x_user_id: str = Header(...),
) -> dict[str, Any]:
    result = watch.update_progress(
        x_user_id,
        video_id,
        body.get("position"),
        body.get("duration"),
        body.get("profile_id"),
    )
    return {"status": "success", "data": result}


@app.post("/stream/{video_id}/analytics")
def playback_event(
    video_id: str,
    body: dict[str, Any] = Body(...),
    x_user_id: str = Header(...),
) -> dict[str, Any]:
    result = watch.record_playback_event(
        x_user_id, video_id, str(body.get("event", "")), body.get("data")
    )
    return {"status": "success", "data": result}


# ===========================================================================
# Transcode Control
# ===========================================================================


async def _run_transcode(tc: transcoder.Transcoder, previous: Video, source_path: str) -> None:
    try:
        await tc.run(previous, source_path)
    except errors.StreamingError as e:
        log.error("Transcode %s ended with %s: %s", previous.id, type(e).__name__, e.message)
    except Exception:
        log.exception("Transcode %s crashed", previous.id)


@app.post("/transcode/{video_id}", status_code=202)
async def start_transcode(
    video_id: str,
    request: Request,
    body: dict[str, Any] = Body(...),
) -> dict[str, Any]:
    source_path = body.get("source_path")
    if not isinstance(source_path, str) or not source_path:
        raise errors.InvalidProgress("source_path is required")
    tc: transcoder.Transcoder = request.app.state.transcoder
    # Claimed before spawning so a second request sees PROCESSING
    previous = tc.claim(video_id, source_path)
    _spawn_background_task(_run_transcode(tc, previous, source_path))
    return {"status": "success", "data": {"video_id": video_id, "status": "accepted"}}


@app.get("/transcode/{video_id}")
def transcode_status(video_id: str) -> dict[str, Any]:
    video = catalog.get_video(video_id)
    if video is None:
        raise errors.NotFound("Video not found")
    return {
        "status": "success",
        "data": {
            "video_id": video.id,
            "state": video.status.value,
            "duration": video.duration,
            "hls_path": video.hls_path,
            "qualities": [q.quality for q in video.qualities],
        },
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("main:app", host="127.0.0.1", port=8000)
