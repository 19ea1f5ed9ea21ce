import re
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from fastapi import APIRouter, Body, Request
from fastapi.responses import FileResponse, Response, StreamingResponse

from cliptr.src.errors import InvalidArgument, NotFound

from ..adapters.export_adapter import ExportAdapter
from ..schemas import (
    CreateClipRequest,
    CreateCompilationRequest,
    ExportSessionRequest,
    FavoriteRequest,
)

router = APIRouter()

CHUNK_SIZE = 1024 * 1024
_RANGE = re.compile(r"bytes=(\d*)-(\d*)$")


def parse_range(header: str, size: int) -> Optional[Tuple[int, int]]:
    """
    Resolve a single ``bytes=`` range against a file size.

    Returns:
        Inclusive ``(start, end)`` or None if the range cannot be satisfied.
    """
    match = _RANGE.match(header.strip())
    if not match or size == 0:
        return None
    first, last = match.groups()
    if not first and not last:
        return None
    if not first:
        length = int(last)
        if length == 0:
            return None
        return max(0, size - length), size - 1
    start = int(first)
    end = int(last) if last else size - 1
    if start >= size or end < start:
        return None
    return start, min(end, size - 1)


def _iter_file(path: Path, start: int, end: int):
    with open(path, "rb") as f:
        f.seek(start)
        remaining = end - start + 1
        while remaining > 0:
            data = f.read(min(CHUNK_SIZE, remaining))
            if not data:
                break
            remaining -= len(data)
            yield data


def _clip_file(request: Request, clip_id: str) -> Path:
    clip = request.app.state.services.store.require_clip(clip_id)
    path = Path(clip.path)
    if not path.exists():
        raise NotFound(f"Clip file not found: {clip_id}")
    return path


# --- Captures ---


@router.get("/captures")
def list_captures(request: Request):
    return request.app.state.services.store.list_sessions()


@router.patch("/captures/{session_id}")
def update_capture(request: Request, session_id: str, updates: Dict[str, Any] = Body(...)):
    return request.app.state.services.store.patch_session(session_id, updates)


@router.delete("/captures/{session_id}")
def delete_capture(request: Request, session_id: str):
    request.app.state.services.supervisor.delete_session(session_id)
    return {"success": True}


@router.post("/captures/{session_id}/export")
def export_capture(request: Request, session_id: str, body: ExportSessionRequest = Body(default=None)):
    services = request.app.state.services
    services.store.require_session(session_id)
    name = body.name if body else None
    job = request.app.state.job_manager.create_job("export", session_id, {"name": name})
    request.app.state.executor.submit(ExportAdapter.run_export, job, services.exporter, session_id, name)
    return {"jobId": job.id}


# --- Clips ---


@router.get("/clips")
def list_clips(request: Request):
    return request.app.state.services.store.list_clips()


@router.post("/clips/create")
def create_clip(request: Request, body: CreateClipRequest):
    if body.startTime is None or body.endTime is None:
        raise InvalidArgument("startTime and endTime are required")
    clip = request.app.state.services.clips.create_clip(
        body.sessionId, body.startTime, body.endTime, name=body.name, reencode=body.reencode
    )
    return {"clipId": clip.clip_id, "clip": clip.to_dict()}


@router.get("/clips/{clip_id}")
def get_clip(request: Request, clip_id: str):
    return request.app.state.services.store.require_clip(clip_id).to_dict()


@router.get("/clips/{clip_id}/download")
def download_clip(request: Request, clip_id: str):
    path = _clip_file(request, clip_id)
    return FileResponse(path, media_type="video/mp4", filename=path.name)


@router.get("/clips/stream/{clip_id}")
def stream_clip(request: Request, clip_id: str):
    path = _clip_file(request, clip_id)
    size = path.stat().st_size
    range_header = request.headers.get("range")

    if not range_header:
        return StreamingResponse(
            _iter_file(path, 0, size - 1),
            media_type="video/mp4",
            headers={"Accept-Ranges": "bytes", "Content-Length": str(size)},
        )

    byte_range = parse_range(range_header, size)
    if byte_range is None:
        return Response(
            status_code=416,
            headers={"Content-Range": f"bytes */{size}", "Accept-Ranges": "bytes"},
        )

    start, end = byte_range
    return StreamingResponse(
        _iter_file(path, start, end),
        status_code=206,
        media_type="video/mp4",
        headers={
            "Content-Range": f"bytes {start}-{end}/{size}",
            "Accept-Ranges": "bytes",
            "Content-Length": str(end - start + 1),
        },
    )


# --- Compilations and jobs ---


@router.post("/compilations/create")
def create_compilation(request: Request, body: CreateCompilationRequest):
    services = request.app.state.services
    if not body.clipIds:
        raise InvalidArgument("No clip IDs provided")
    for clip_id in body.clipIds:
        services.store.require_clip(clip_id)
    job = request.app.state.job_manager.create_job(
        "compilation", ",".join(body.clipIds), {"name": body.name}
    )
    request.app.state.executor.submit(
        ExportAdapter.run_compilation, job, services.exporter, body.clipIds, body.name
    )
    return {"jobId": job.id}


@router.get("/jobs/{job_id}")
def get_job(request: Request, job_id: str):
    job = request.app.state.job_manager.get_job(job_id)
    if not job:
        raise NotFound(f"Job not found: {job_id}")
    return job.to_dict()


# --- History ---


@router.get("/history")
def get_history(request: Request):
    return request.app.state.services.store.get_history()


@router.post("/history/favorite")
def set_favorite(request: Request, body: FavoriteRequest):
    if not body.url:
        raise InvalidArgument("url is required")
    return request.app.state.services.store.set_favorite(body.url, body.isFavorite)


# --- Stream liveness ---


@router.get("/stream-status")
def stream_statuses(request: Request):
    return request.app.state.services.stream_status.get_all()


@router.get("/stream-status/live")
def live_streams(request: Request):
    return request.app.state.services.stream_status.get_live()


@router.post("/stream-status/refresh")
def refresh_stream_statuses(request: Request):
    return request.app.state.services.stream_status.refresh_all()


@router.get("/stream-status/check")
def check_stream(request: Request, url: str = ""):
    if not url:
        raise InvalidArgument("url is required")
    return request.app.state.services.stream_status.check(url)
