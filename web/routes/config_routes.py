import math
from typing import Any, Dict

from fastapi import APIRouter, Body, Request

from cliptr.src.config import WHISPER_MODELS, check_ffmpeg
from cliptr.src.errors import InvalidArgument
from cliptr.src.services import apply_settings

router = APIRouter()

# Applied to the running service immediately.
LIVE_FIELDS = {
    "segment_duration": float,
    "video_codec": str,
    "audio_codec": str,
    "stop_timeout": float,
    "whisper_model": str,
    "whisper_language": str,
    "python_bin": str,
    "keep_audio": bool,
    "ffmpeg_bin": str,
}
# Saved to cliptr.conf; take effect on restart.
RESTART_FIELDS = {
    "library_dir": str,
    "data_dir": str,
    "host": str,
    "port": int,
}


def _coerce(key: str, value: Any, kind: type) -> Any:
    if kind is bool:
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    try:
        return kind(value)
    except (TypeError, ValueError):
        raise InvalidArgument(f"Invalid value for {key}: {value!r}")


@router.get("")
def get_config(request: Request):
    return request.app.state.settings.to_dict()


@router.post("")
def update_config(request: Request, updates: Dict[str, Any] = Body(...)):
    settings = request.app.state.settings
    fields = {**LIVE_FIELDS, **RESTART_FIELDS}

    unknown = set(updates) - set(fields)
    if unknown:
        raise InvalidArgument(f"Unknown settings: {', '.join(sorted(unknown))}")

    changes = {key: _coerce(key, value, fields[key]) for key, value in updates.items()}
    if "whisper_model" in changes and changes["whisper_model"] not in WHISPER_MODELS:
        raise InvalidArgument(f"Unknown Whisper model: {changes['whisper_model']}")
    for key in ("segment_duration", "stop_timeout"):
        if key in changes and not (math.isfinite(changes[key]) and changes[key] > 0):
            raise InvalidArgument(f"{key} must be positive")

    settings.update(**changes)
    settings.save()
    apply_settings(request.app.state.services, settings)

    return {
        "config": settings.to_dict(),
        "restartRequired": any(key in RESTART_FIELDS for key in changes),
    }


@router.get("/whisper/status")
def whisper_status(request: Request):
    coordinator = request.app.state.services.coordinator
    return {"installed": coordinator.engine_available(), "model": coordinator.model}


@router.get("/ffmpeg/status")
def ffmpeg_status(request: Request):
    return check_ffmpeg(request.app.state.settings.ffmpeg_bin)
