"""
Filesystem-backed metadata store.

Library layout::

    <library>/<streamer-or-url-hash>/<timestamp>/
        metadata.json
        capture_logs.txt
        segments/      segment_000.ts ... segments.txt
        clips/         <name>_<clipId>.mp4, <clipId>_metadata.json
        transcripts/   <id>_transcript.json|.txt, <id>_transcript_index.json
        compilations/  <name>_<id>.mp4, <id>_metadata.json
        full_exports/  <name>_<id>.mp4, <id>_metadata.json

The history of captured URLs lives in ``<data>/m3u8_history.json``.

Records are read-modify-written as whole JSON files. Concurrent patches to
the same record are last-writer-wins: nothing serialises two updates of one
session's ``metadata.json``. The supervisor is the only writer of ``status``,
``endedAt`` and ``exitCode`` so those fields never race in practice; user
patches (display name, notes) may overwrite each other.
"""

import hashlib
import json
import logging
import os
import re
import secrets
import shutil
import threading
from pathlib import Path
from typing import Any, Dict, Iterator, List, Optional, Tuple, Union

from .errors import InvalidArgument, NotFound
from .models import (
    PROTECTED_SESSION_KEYS,
    Clip,
    Compilation,
    HistoryEntry,
    Session,
    SessionExport,
    SessionStatus,
    Transcript,
    format_file_size,
    isoformat,
    utc_now,
)

logger = logging.getLogger(__name__)

SESSION_SUBDIRS = ("segments", "clips", "transcripts", "compilations")
SESSION_METADATA = "metadata.json"
CAPTURE_LOG = "capture_logs.txt"
HISTORY_FILE = "m3u8_history.json"


def sanitize_name(name: str) -> str:
    """Lowercase, replacing every non-alphanumeric character with ``_``."""
    return re.sub(r"[^a-z0-9]", "_", name, flags=re.IGNORECASE).lower()


def streamer_dir_name(display_name: Optional[str], source_url: str) -> str:
    if display_name:
        return sanitize_name(display_name)
    return hashlib.md5(source_url.encode("utf-8")).hexdigest()[:10]


def timestamp_dir_name(moment) -> str:
    """ISO-8601 timestamp with ``:`` and ``.`` replaced by ``-``."""
    return re.sub(r"[:.]", "-", isoformat(moment))


def new_id() -> str:
    return secrets.token_hex(8)


def _read_json(path: Path) -> Any:
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def _write_json(path: Path, data: Any) -> None:
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        json.dump(data, f, indent=2)
    os.replace(tmp, path)


def _dir_size(path: Path) -> int:
    total = 0
    for entry in path.rglob("*"):
        try:
            if entry.is_file():
                total += entry.stat().st_size
        except OSError:
            continue
    return total


class FileMetadataStore:
    """Sessions, clips, transcripts and history stored as JSON files."""

    def __init__(self, library_dir: Union[str, Path], data_dir: Union[str, Path]):
        self.library_dir = Path(library_dir)
        self.data_dir = Path(data_dir)
        self.library_dir.mkdir(parents=True, exist_ok=True)
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self._history_lock = threading.Lock()

    @property
    def history_path(self) -> Path:
        return self.data_dir / HISTORY_FILE

    # --- Sessions ---

    def create_session(self, session_id: str, source_url: str, display_name: Optional[str] = None,
                       segment_duration: float = 60, auto_transcribe: bool = False,
                       transcode_options: Optional[dict] = None) -> Tuple[Session, Path]:
        """Create the session directory layout and its ``metadata.json``."""
        now = utc_now()
        timestamp = timestamp_dir_name(now)
        streamer_dir = self.library_dir / streamer_dir_name(display_name, source_url)
        session_dir = streamer_dir / timestamp
        if session_dir.exists():
            session_dir = streamer_dir / f"{timestamp}-{session_id[:4]}"
        for sub in SESSION_SUBDIRS:
            (session_dir / sub).mkdir(parents=True, exist_ok=True)

        session = Session(
            session_id=session_id,
            source_url=source_url,
            display_name=display_name,
            timestamp=session_dir.name,
            created_at=isoformat(now),
            status=SessionStatus.ACTIVE,
            segment_duration=segment_duration,
            auto_transcribe=auto_transcribe,
            transcode_options=transcode_options or {},
        )
        self.save_session(session_dir, session)
        return session, session_dir

    def save_session(self, session_dir: Path, session: Session) -> None:
        _write_json(Path(session_dir) / SESSION_METADATA, session.to_dict())

    def write_metadata(self, session_dir: Path, data: dict) -> None:
        """Overwrite a session's raw ``metadata.json``."""
        _write_json(Path(session_dir) / SESSION_METADATA, data)

    def iter_session_dirs(self) -> Iterator[Tuple[Path, dict]]:
        """Yield ``(session_dir, raw metadata)`` for every session in the library."""
        if not self.library_dir.exists():
            return
        for streamer_dir in sorted(self.library_dir.iterdir()):
            if not streamer_dir.is_dir():
                continue
            for session_dir in sorted(streamer_dir.iterdir()):
                metadata_path = session_dir / SESSION_METADATA
                if not session_dir.is_dir() or not metadata_path.exists():
                    continue
                try:
                    yield session_dir, _read_json(metadata_path)
                except (OSError, ValueError) as e:
                    logger.warning(f"Skipping unreadable session metadata {metadata_path}: {e}")

    def session_dir(self, session_id: str) -> Optional[Path]:
        for session_dir, data in self.iter_session_dirs():
            if data.get("sessionId") == session_id:
                return session_dir
        return None

    def get_session(self, session_id: str) -> Optional[Session]:
        session_dir = self.session_dir(session_id)
        if session_dir is None:
            return None
        return Session.from_dict(_read_json(session_dir / SESSION_METADATA))

    def require_session(self, session_id: str) -> Tuple[Session, Path]:
        session_dir = self.session_dir(session_id)
        if session_dir is None:
            raise NotFound(f"Session not found: {session_id}")
        return Session.from_dict(_read_json(session_dir / SESSION_METADATA)), session_dir

    def update_session(self, session_id: str, **changes) -> Session:
        """Set dataclass fields on a session record (supervisor-owned fields)."""
        session, session_dir = self.require_session(session_id)
        for key, value in changes.items():
            setattr(session, key, value)
        self.save_session(session_dir, session)
        return session

    def patch_session(self, session_id: str, updates: Dict[str, Any]) -> dict:
        """Shallow-merge user updates into ``metadata.json``."""
        if not updates:
            raise InvalidArgument("No updates provided")
        protected = PROTECTED_SESSION_KEYS.intersection(updates)
        if protected:
            raise InvalidArgument(f"Fields cannot be modified: {', '.join(sorted(protected))}")
        session_dir = self.session_dir(session_id)
        if session_dir is None:
            raise NotFound(f"Session not found: {session_id}")
        metadata_path = session_dir / SESSION_METADATA
        data = _read_json(metadata_path)
        data.update(updates)
        _write_json(metadata_path, data)
        return data

    def list_sessions(self) -> List[dict]:
        """All sessions with their on-disk size, newest first."""
        captures = []
        for session_dir, data in self.iter_session_dirs():
            size = _dir_size(session_dir)
            record = Session.from_dict(data).to_dict()
            record.update({"path": str(session_dir), "size": size, "displaySize": format_file_size(size)})
            captures.append(record)
        captures.sort(key=lambda c: c.get("createdAt") or "", reverse=True)
        return captures

    def delete_session(self, session_id: str) -> None:
        """Remove a session with all of its segments, clips and transcripts."""
        session_dir = self.session_dir(session_id)
        if session_dir is None:
            raise NotFound(f"Session not found: {session_id}")
        shutil.rmtree(session_dir)
        try:
            session_dir.parent.rmdir()
        except OSError:
            pass  # other sessions still live under this streamer
        logger.info(f"Deleted session {session_id} ({session_dir})")

    def capture_log_path(self, session_dir: Path) -> Path:
        return Path(session_dir) / CAPTURE_LOG

    def read_session_logs(self, session_id: str) -> str:
        _, session_dir = self.require_session(session_id)
        log_path = self.capture_log_path(session_dir)
        if not log_path.exists():
            return ""
        return log_path.read_text(encoding="utf-8", errors="replace")

    def id_in_use(self, candidate: str) -> bool:
        return self.session_dir(candidate) is not None or self.get_clip(candidate) is not None

    def allocate_id(self) -> str:
        """Draw a fresh id unused by any session or clip."""
        candidate = new_id()
        while self.id_in_use(candidate):
            candidate = new_id()
        return candidate

    # --- Clips ---

    def save_clip(self, session_dir: Path, clip: Clip) -> None:
        _write_json(Path(session_dir) / "clips" / f"{clip.clip_id}_metadata.json", clip.to_dict())

    def _find_clip_file(self, clip_id: str) -> Optional[Path]:
        name = f"{clip_id}_metadata.json"
        for session_dir, _ in self.iter_session_dirs():
            candidate = session_dir / "clips" / name
            if candidate.exists():
                return candidate
        return None

    def get_clip(self, clip_id: str) -> Optional[Clip]:
        path = self._find_clip_file(clip_id)
        if path is None:
            return None
        return Clip.from_dict(_read_json(path))

    def require_clip(self, clip_id: str) -> Clip:
        clip = self.get_clip(clip_id)
        if clip is None:
            raise NotFound(f"Clip not found: {clip_id}")
        return clip

    def clip_session_dir(self, clip: Clip) -> Path:
        """The session directory owning a clip (derived from the clip path)."""
        return Path(clip.path).parent.parent

    def list_clips(self) -> List[dict]:
        clips = []
        for session_dir, _ in self.iter_session_dirs():
            clips_dir = session_dir / "clips"
            if not clips_dir.is_dir():
                continue
            for metadata_file in clips_dir.glob("*_metadata.json"):
                try:
                    clips.append(_read_json(metadata_file))
                except (OSError, ValueError) as e:
                    logger.warning(f"Skipping unreadable clip metadata {metadata_file}: {e}")
        clips.sort(key=lambda c: c.get("createdAt") or "", reverse=True)
        return clips

    # --- Compilations and exports ---

    def save_compilation(self, session_dir: Path, compilation: Compilation) -> None:
        _write_json(
            Path(session_dir) / "compilations" / f"{compilation.compilation_id}_metadata.json",
            compilation.to_dict(),
        )

    def save_export(self, export_dir: Path, export: SessionExport) -> None:
        _write_json(Path(export_dir) / f"{export.export_id}_metadata.json", export.to_dict())

    # --- Transcripts ---

    def transcripts_dir(self, transcription_id: str) -> Optional[Path]:
        """Where transcripts for a session id or clip id are kept."""
        session_dir = self.session_dir(transcription_id)
        if session_dir is None:
            clip = self.get_clip(transcription_id)
            if clip is None:
                return None
            session_dir = self.clip_session_dir(clip)
        return session_dir / "transcripts"

    def transcript_path(self, transcription_id: str) -> Optional[Path]:
        transcripts_dir = self.transcripts_dir(transcription_id)
        if transcripts_dir is None:
            return None
        path = transcripts_dir / f"{transcription_id}_transcript.json"
        return path if path.exists() else None

    def save_transcript(self, transcripts_dir: Path, transcript: Transcript) -> Path:
        """Persist transcript JSON, plain text and the search index."""
        transcripts_dir = Path(transcripts_dir)
        tid = transcript.transcription_id
        data = transcript.to_dict()
        _write_json(transcripts_dir / f"{tid}_transcript.json", data)
        (transcripts_dir / f"{tid}_transcript.txt").write_text(transcript.text, encoding="utf-8")
        index = dict(data, searchableText=transcript.search_text)
        _write_json(transcripts_dir / f"{tid}_transcript_index.json", index)
        return transcripts_dir / f"{tid}_transcript.json"

    def get_transcript(self, transcription_id: str) -> Optional[Transcript]:
        path = self.transcript_path(transcription_id)
        if path is None:
            return None
        return Transcript.from_dict(_read_json(path), transcription_id=transcription_id)

    def save_transcription_failure(self, transcripts_dir: Path, transcription_id: str, error: str) -> None:
        _write_json(Path(transcripts_dir) / f"{transcription_id}_status.json", {
            "transcriptionId": transcription_id,
            "status": "failed",
            "error": error,
            "failedAt": isoformat(utc_now()),
        })

    def get_transcription_failure(self, transcription_id: str) -> Optional[dict]:
        transcripts_dir = self.transcripts_dir(transcription_id)
        if transcripts_dir is None:
            return None
        path = transcripts_dir / f"{transcription_id}_status.json"
        return _read_json(path) if path.exists() else None

    def clear_transcription_failure(self, transcripts_dir: Path, transcription_id: str) -> None:
        path = Path(transcripts_dir) / f"{transcription_id}_status.json"
        if path.exists():
            path.unlink()

    def list_transcripts(self) -> List[dict]:
        """Every persisted transcript with what it describes, newest first."""
        sessions = {data.get("sessionId"): Session.from_dict(data) for _, data in self.iter_session_dirs()}
        clips = {c["clipId"]: c for c in self.list_clips()}
        results = []
        for session_dir, _ in self.iter_session_dirs():
            for path in sorted((session_dir / "transcripts").glob("*_transcript.json")):
                tid = path.name[: -len("_transcript.json")]
                if tid in sessions:
                    session = sessions[tid]
                    entry = {
                        "type": "session",
                        "name": session.display_name or "Unnamed Session",
                        "source": session.source_url,
                        "duration": session.extra.get("duration", 0),
                        "timestamp": session.created_at,
                    }
                elif tid in clips:
                    clip = clips[tid]
                    owner = sessions.get(clip.get("sessionId"))
                    entry = {
                        "type": "clip",
                        "name": clip.get("name") or "Unnamed Clip",
                        "source": owner.source_url if owner else "Unknown Source",
                        "duration": clip.get("duration", 0),
                        "timestamp": clip.get("createdAt", ""),
                    }
                else:
                    continue
                try:
                    transcript = Transcript.from_dict(_read_json(path), transcription_id=tid)
                except (OSError, ValueError) as e:
                    logger.warning(f"Skipping unreadable transcript {path}: {e}")
                    continue
                entry.update({"id": tid, "text": transcript.text, "segments": [s.to_dict() for s in transcript.segments]})
                results.append(entry)
        results.sort(key=lambda t: t.get("timestamp") or "", reverse=True)
        return results

    # --- History ---

    def _load_history(self) -> List[HistoryEntry]:
        if not self.history_path.exists():
            return []
        return [HistoryEntry.from_dict(item) for item in _read_json(self.history_path)]

    def _save_history(self, entries: List[HistoryEntry]) -> None:
        entries.sort(key=lambda e: e.last_used, reverse=True)
        _write_json(self.history_path, [e.to_dict() for e in entries])

    def record_history(self, url: str, display_name: Optional[str] = None) -> HistoryEntry:
        """Add a URL to history, or bump its use count and last-used time."""
        now = isoformat(utc_now())
        with self._history_lock:
            entries = self._load_history()
            entry = next((e for e in entries if e.url == url), None)
            if entry is None:
                entry = HistoryEntry(url=url, display_name=display_name, added=now, last_used=now)
                entries.append(entry)
            else:
                entry.last_used = now
                entry.use_count += 1
                if display_name and not entry.display_name:
                    entry.display_name = display_name
            self._save_history(entries)
            return entry

    def get_history(self) -> List[dict]:
        with self._history_lock:
            return [e.to_dict() for e in self._load_history()]

    def set_favorite(self, url: str, is_favorite: bool) -> dict:
        with self._history_lock:
            entries = self._load_history()
            entry = next((e for e in entries if e.url == url), None)
            if entry is None:
                raise NotFound(f"URL not found in history: {url}")
            entry.is_favorite = bool(is_favorite)
            self._save_history(entries)
            return entry.to_dict()
