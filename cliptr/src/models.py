"""
Records persisted by the metadata store.

Every record serialises to the camelCase JSON layout written into the
library (``metadata.json``, ``clips/<id>_metadata.json``, transcript files).
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

DEFAULT_SEGMENT_DURATION = 60


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def isoformat(moment: datetime) -> str:
    """Format like JavaScript's toISOString (millisecond precision, Z suffix)."""
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def format_seconds(value: float) -> str:
    """Render seconds without a trailing ``.0`` for whole numbers."""
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def format_file_size(size: int) -> str:
    """Format a byte count as a human-readable size (e.g. ``1.5 MB``)."""
    if size <= 0:
        return "0 Bytes"
    units = ["Bytes", "KB", "MB", "GB", "TB"]
    index = 0
    value = float(size)
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"


class TranscriptionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    NOT_FOUND = "not_found"


@dataclass
class TranscodeOptions:
    """FFmpeg settings for a capture run."""
    segment_duration: float = DEFAULT_SEGMENT_DURATION
    video_codec: str = "copy"
    audio_codec: str = "copy"

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]], defaults: Optional["TranscodeOptions"] = None) -> "TranscodeOptions":
        base = defaults or cls()
        data = data or {}
        duration = data.get("segmentDuration", data.get("segment_duration", base.segment_duration))
        try:
            duration = float(duration)
        except (TypeError, ValueError):
            duration = 0
        return cls(
            segment_duration=duration,
            video_codec=data.get("videoCodec", data.get("video_codec", base.video_codec)) or base.video_codec,
            audio_codec=data.get("audioCodec", data.get("audio_codec", base.audio_codec)) or base.audio_codec,
        )

    def to_dict(self) -> dict:
        return {
            "segmentDuration": self.segment_duration,
            "videoCodec": self.video_codec,
            "audioCodec": self.audio_codec,
        }


# Keys owned by the supervisor; metadata patches may not touch them.
PROTECTED_SESSION_KEYS = {"sessionId", "timestamp", "createdAt", "status", "segmentDurationSeconds"}


@dataclass
class Session:
    """One capture run."""
    session_id: str
    source_url: str
    timestamp: str
    created_at: str
    status: SessionStatus = SessionStatus.ACTIVE
    display_name: Optional[str] = None
    segment_duration: float = DEFAULT_SEGMENT_DURATION
    auto_transcribe: bool = False
    transcode_options: Dict[str, Any] = field(default_factory=dict)
    ended_at: Optional[str] = None
    exit_code: Optional[int] = None
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict:
        data = dict(self.extra)
        data.update({
            "sessionId": self.session_id,
            "sourceUrl": self.source_url,
            "displayName": self.display_name,
            "timestamp": self.timestamp,
            "createdAt": self.created_at,
            "status": self.status.value,
            "segmentDurationSeconds": self.segment_duration,
            "autoTranscribe": self.auto_transcribe,
            "transcodeOptions": self.transcode_options,
            "endedAt": self.ended_at,
            "exitCode": self.exit_code,
        })
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Session":
        known = {
            "sessionId", "sourceUrl", "m3u8Url", "displayName", "streamerName",
            "timestamp", "createdAt", "status", "segmentDurationSeconds",
            "autoTranscribe", "transcodeOptions", "endedAt", "exitCode",
        }
        try:
            status = SessionStatus(data.get("status", SessionStatus.ACTIVE.value))
        except ValueError:
            status = SessionStatus.COMPLETED
        return cls(
            session_id=data["sessionId"],
            source_url=data.get("sourceUrl") or data.get("m3u8Url") or "",
            display_name=data.get("displayName", data.get("streamerName")),
            timestamp=data.get("timestamp", ""),
            created_at=data.get("createdAt") or data.get("timestamp", ""),
            status=status,
            segment_duration=data.get("segmentDurationSeconds") or DEFAULT_SEGMENT_DURATION,
            auto_transcribe=bool(data.get("autoTranscribe", False)),
            transcode_options=data.get("transcodeOptions") or {},
            ended_at=data.get("endedAt"),
            exit_code=data.get("exitCode"),
            extra={k: v for k, v in data.items() if k not in known},
        )


@dataclass
class Clip:
    """A time-bounded extract of a session's segments."""
    clip_id: str
    session_id: str
    name: str
    start_time: float
    end_time: float
    path: str
    created_at: str

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time

    def to_dict(self) -> dict:
        return {
            "clipId": self.clip_id,
            "sessionId": self.session_id,
            "name": self.name,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": self.duration,
            "path": self.path,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Clip":
        return cls(
            clip_id=data["clipId"],
            session_id=data.get("sessionId", ""),
            name=data.get("name", ""),
            start_time=data.get("startTime", 0),
            end_time=data.get("endTime", 0),
            path=data.get("path", ""),
            created_at=data.get("createdAt", ""),
        )


@dataclass
class Compilation:
    compilation_id: str
    name: str
    clip_ids: List[str]
    duration: float
    path: str
    created_at: str

    def to_dict(self) -> dict:
        return {
            "compilationId": self.compilation_id,
            "name": self.name,
            "clipIds": list(self.clip_ids),
            "duration": self.duration,
            "path": self.path,
            "createdAt": self.created_at,
        }


@dataclass
class SessionExport:
    export_id: str
    session_id: str
    name: str
    path: str
    created_at: str
    size: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.export_id,
            "sessionId": self.session_id,
            "name": self.name,
            "path": self.path,
            "createdAt": self.created_at,
            "size": self.size,
            "displaySize": format_file_size(self.size),
        }


@dataclass
class SpeechSegment:
    """A span of transcribed speech with timing information."""
    start: float  # seconds
    end: float    # seconds
    text: str
    id: Optional[int] = None

    @property
    def duration(self) -> float:
        return self.end - self.start

    def overlaps(self, start: float, end: float) -> bool:
        """True if this segment shares any instant with ``[start, end]``."""
        return self.start <= end and self.end >= start

    def to_dict(self) -> dict:
        data = {"start": self.start, "end": self.end, "text": self.text}
        if self.id is not None:
            data["id"] = self.id
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SpeechSegment":
        return cls(
            start=float(data.get("start", 0) or 0),
            end=float(data.get("end", 0) or 0),
            text=(data.get("text") or "").strip(),
            id=data.get("id"),
        )


@dataclass
class Transcript:
    """Speech-to-text output for a session or a clip."""
    transcription_id: str
    text: str
    segments: List[SpeechSegment] = field(default_factory=list)
    language: Optional[str] = None
    model: Optional[str] = None
    created_at: Optional[str] = None

    @property
    def search_text(self) -> str:
        """Lowercase blob used for substring search."""
        if self.segments:
            return " ".join(s.text for s in self.segments).lower()
        return self.text.lower()

    @property
    def word_count(self) -> int:
        return len(self.text.split())

    def to_dict(self) -> dict:
        return {
            "transcriptionId": self.transcription_id,
            "text": self.text,
            "segments": [s.to_dict() for s in self.segments],
            "language": self.language,
            "model": self.model,
            "createdAt": self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], transcription_id: Optional[str] = None) -> "Transcript":
        segments = [SpeechSegment.from_dict(s) for s in data.get("segments") or []]
        text = data.get("text")
        if not text:
            text = " ".join(s.text for s in segments)
        return cls(
            transcription_id=transcription_id or data.get("transcriptionId", ""),
            text=text.strip(),
            segments=segments,
            language=data.get("language"),
            model=data.get("model"),
            created_at=data.get("createdAt"),
        )


@dataclass
class HistoryEntry:
    """One distinct source URL ever captured."""
    url: str
    display_name: Optional[str]
    added: str
    last_used: str
    use_count: int = 1
    is_favorite: bool = False

    def to_dict(self) -> dict:
        return {
            "url": self.url,
            "displayName": self.display_name,
            "added": self.added,
            "lastUsed": self.last_used,
            "useCount": self.use_count,
            "isFavorite": self.is_favorite,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "HistoryEntry":
        return cls(
            url=data["url"],
            display_name=data.get("displayName", data.get("streamerName")),
            added=data.get("added") or data.get("lastUsed", ""),
            last_used=data.get("lastUsed", ""),
            use_count=int(data.get("useCount") or 0),
            is_favorite=bool(data.get("isFavorite", False)),
        )
