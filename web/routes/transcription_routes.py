from fastapi import APIRouter, Request

from ..schemas import StartTranscriptionRequest

router = APIRouter()


@router.post("/start")
def start_transcription(request: Request, body: StartTranscriptionRequest):
    coordinator = request.app.state.services.coordinator
    transcription_id = coordinator.start_transcription(session_id=body.sessionId, clip_id=body.clipId)
    return {"transcriptionId": transcription_id}


@router.get("/status/{transcription_id}")
def transcription_status(request: Request, transcription_id: str):
    return request.app.state.services.coordinator.get_transcription_status(transcription_id)


@router.get("/all")
def all_transcriptions(request: Request):
    return request.app.state.services.store.list_transcripts()


@router.get("/clip/{clip_id}")
def clip_transcript(request: Request, clip_id: str):
    transcript = request.app.state.services.coordinator.get_clip_transcript(clip_id)
    return transcript.to_dict()


@router.get("/{session_id}")
def session_transcript(request: Request, session_id: str):
    return request.app.state.services.coordinator.get_transcript(session_id).to_dict()
