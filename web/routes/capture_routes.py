import asyncio

from fastapi import APIRouter, Request
from sse_starlette.sse import EventSourceResponse

from cliptr.src.errors import InvalidArgument

from ..schemas import StartCaptureRequest, StopCaptureRequest

router = APIRouter()


@router.post("/start")
def start_capture(request: Request, body: StartCaptureRequest):
    supervisor = request.app.state.services.supervisor
    session_id = supervisor.start_capture(
        body.sourceUrl,
        display_name=body.displayName,
        transcode_options=body.transcodeOptions,
        auto_transcribe=body.autoTranscribe,
    )
    return {"sessionId": session_id}


@router.post("/stop")
def stop_capture(request: Request, body: StopCaptureRequest):
    if not body.sessionId:
        raise InvalidArgument("sessionId is required")
    request.app.state.services.supervisor.stop_capture(body.sessionId)
    return {"success": True}


@router.get("/status")
def active_captures(request: Request):
    captures = request.app.state.services.supervisor.get_active_captures()
    return {"activeCaptures": captures, "count": len(captures)}


@router.get("/{session_id}/status")
def capture_status(request: Request, session_id: str):
    return request.app.state.services.supervisor.get_capture_status(session_id)


@router.get("/{session_id}/logs")
def capture_logs(request: Request, session_id: str):
    return {"logs": request.app.state.services.store.read_session_logs(session_id)}


def read_log_from(log_path, position: int):
    """Return the log text after ``position`` and the new position."""
    if not log_path.exists():
        return "", position
    with open(log_path, "r", encoding="utf-8", errors="replace") as f:
        f.seek(position)
        chunk = f.read()
        return chunk, f.tell()


@router.get("/{session_id}/logs/stream")
async def capture_logs_stream(request: Request, session_id: str):
    services = request.app.state.services
    _, session_dir = await asyncio.to_thread(services.store.require_session, session_id)
    log_path = services.store.capture_log_path(session_dir)

    async def event_generator():
        position = 0
        while True:
            if await request.is_disconnected():
                break

            chunk, position = await asyncio.to_thread(read_log_from, log_path, position)
            for line in chunk.splitlines():
                if line:
                    yield {"event": "log", "data": line}

            if not services.supervisor.is_active(session_id):
                status = await asyncio.to_thread(services.supervisor.get_capture_status, session_id)
                yield {"event": "complete", "data": status["status"]}
                break

            await asyncio.sleep(1)

    return EventSourceResponse(event_generator())
