"""
Transcription coordinator.

Runs speech-to-text for a session (all of its segments) or for a single clip.
At most one transcription per id is in flight: the id is claimed in the
running registry before any work starts and released only after the outcome
has been persisted, so a status poll never observes a gap between "running"
and "completed"/"failed".

The engine itself (``cliptr.src.engine``) runs as a child process. It writes
to ``<id>_transcript.partial.json``; the real transcript files are replaced
only after that output parses, so a failed re-run leaves the previous
transcript readable.
"""

import json
import logging
import sys
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .errors import (
    AlreadyInProgress,
    CliptrError,
    InvalidArgument,
    NotFound,
    PreconditionFailed,
    ProcessFailed,
)
from .metadata import FileMetadataStore
from .models import Clip, Transcript, TranscriptionStatus, isoformat, utc_now
from .process import ManagedProcess, ProcessRunner, append_log
from .registry import Registry
from .segments import read_manifest, write_concat_list

logger = logging.getLogger(__name__)

ENGINE_IMPORT_CHECK = "import whisper, cliptr.src.engine"

AUDIO_ARGS = ["-vn", "-ar", "16000", "-ac", "1", "-c:a", "pcm_s16le"]


@dataclass
class RunningTranscription:
    transcription_id: str
    kind: str  # "session" or "clip"
    started_at: datetime = field(default_factory=datetime.now)
    transcripts_dir: Optional[Path] = None
    audio_path: Optional[Path] = None
    process: Optional[ManagedProcess] = None

    def to_dict(self) -> dict:
        return {
            "transcriptionId": self.transcription_id,
            "status": TranscriptionStatus.RUNNING.value,
            "type": self.kind,
            "startTime": self.started_at.isoformat(),
            "elapsedSeconds": int((datetime.now() - self.started_at).total_seconds()),
        }


def derive_clip_transcript(clip: Clip, session_transcript: Transcript) -> Optional[Transcript]:
    """
    Clip-scoped view of a session transcript.

    Keeps the speech segments overlapping ``[clip.start_time, clip.end_time]``
    with their session-relative timestamps. Returns None when nothing overlaps.
    """
    segments = [s for s in session_transcript.segments if s.overlaps(clip.start_time, clip.end_time)]
    if not segments:
        return None
    return Transcript(
        transcription_id=clip.clip_id,
        text=" ".join(s.text for s in segments),
        segments=segments,
        language=session_transcript.language,
        model=session_transcript.model,
        created_at=session_transcript.created_at,
    )


class TranscriptionCoordinator:
    """Start, track and persist Whisper transcriptions."""

    def __init__(self, store: FileMetadataStore, runner: Optional[ProcessRunner] = None,
                 ffmpeg_bin: str = "ffmpeg", python_bin: Optional[str] = None,
                 model: str = "base", language: Optional[str] = None, keep_audio: bool = False,
                 engine_check: Optional[Callable[[], bool]] = None):
        self.store = store
        self.runner = runner or ProcessRunner()
        self.ffmpeg_bin = ffmpeg_bin
        self.python_bin = python_bin or sys.executable
        self.model = model
        self.language = language
        self.keep_audio = keep_audio
        self._engine_check = engine_check
        self.running = Registry("transcriptions")

    # --- Engine availability ---

    def engine_available(self) -> bool:
        """True if the worker interpreter can import both Whisper and the engine module."""
        if self._engine_check is not None:
            return self._engine_check()
        try:
            result = self.runner.run([self.python_bin, "-c", ENGINE_IMPORT_CHECK], timeout=60)
        except ProcessFailed:
            return False
        return result.returncode == 0

    # --- Start ---

    def start_transcription(self, session_id: Optional[str] = None, clip_id: Optional[str] = None) -> str:
        """
        Begin transcribing a session or a clip.

        Exactly one of ``session_id`` / ``clip_id`` must be given; it becomes
        the transcription id. Returns once the engine has been launched.

        Raises:
            InvalidArgument: Neither or both ids given.
            NotFound: Unknown session or clip, or nothing to transcribe.
            PreconditionFailed: Whisper is not installed.
            AlreadyInProgress: A transcription for this id is running.
            ProcessFailed: Audio extraction or engine launch failed.
        """
        if bool(session_id) == bool(clip_id):
            raise InvalidArgument("Exactly one of sessionId or clipId is required")

        if session_id:
            transcription_id, kind = session_id, "session"
            _, session_dir = self.store.require_session(session_id)
            transcripts_dir = session_dir / "transcripts"
            source = session_dir / "segments"
        else:
            transcription_id, kind = clip_id, "clip"
            clip = self.store.require_clip(clip_id)
            transcripts_dir = self.store.clip_session_dir(clip) / "transcripts"
            source = Path(clip.path)
            if not source.exists():
                raise NotFound(f"Clip file not found: {source}")

        if not self.engine_available():
            raise PreconditionFailed(
                "Whisper is not installed. Install it with: pip install openai-whisper"
            )

        entry = RunningTranscription(transcription_id, kind, transcripts_dir=transcripts_dir)
        if not self.running.claim(transcription_id, entry):
            raise AlreadyInProgress(f"Transcription already in progress for {transcription_id}")

        transcripts_dir.mkdir(parents=True, exist_ok=True)
        log_path = transcripts_dir / f"{transcription_id}_whisper_logs.txt"
        try:
            entry.audio_path = self._extract_audio(kind, source, transcripts_dir, transcription_id)
            entry.process = self.runner.spawn(self._engine_args(entry), log_path=log_path)
        except CliptrError as e:
            append_log(log_path, "ERROR", str(e))
            self.store.save_transcription_failure(transcripts_dir, transcription_id, str(e))
            self._remove_audio(entry)
            self.running.release(transcription_id)
            raise

        logger.info(f"Transcription {transcription_id} started ({kind}, model {self.model})")
        entry.process.done.add_done_callback(lambda done: self._on_engine_exit(entry, done))
        return transcription_id

    def _extract_audio(self, kind: str, source: Path, transcripts_dir: Path, transcription_id: str) -> Path:
        """Write the 16 kHz mono PCM intermediate Whisper reads."""
        audio_path = transcripts_dir / f"{transcription_id}_audio.wav"
        list_path = None
        if kind == "session":
            manifest = read_manifest(source)
            if not manifest:
                raise NotFound(f"No segments captured for session {transcription_id}")
            list_path = write_concat_list(transcripts_dir / f"temp_filelist_{transcription_id}.txt", manifest)
            args = [self.ffmpeg_bin, "-y", "-f", "concat", "-safe", "0", "-i", str(list_path)]
        else:
            args = [self.ffmpeg_bin, "-y", "-i", str(source)]
        args += AUDIO_ARGS + [str(audio_path)]

        try:
            result = self.runner.run(args)
        finally:
            if list_path is not None and list_path.exists():
                list_path.unlink()
        if result.returncode != 0:
            if audio_path.exists():
                audio_path.unlink()
            raise ProcessFailed(
                f"Audio extraction failed (exit code {result.returncode})",
                diagnostics=result.stderr,
                exit_code=result.returncode,
            )
        return audio_path

    def _partial_path(self, entry: RunningTranscription) -> Path:
        return entry.transcripts_dir / f"{entry.transcription_id}_transcript.partial.json"

    def _engine_args(self, entry: RunningTranscription) -> list:
        args = [
            self.python_bin, "-m", "cliptr.src.engine",
            "--audio", str(entry.audio_path),
            "--output", str(self._partial_path(entry)),
            "--model", self.model,
        ]
        if self.language:
            args += ["--language", self.language]
        return args

    # --- Completion ---

    def _on_engine_exit(self, entry: RunningTranscription, done) -> None:
        tid = entry.transcription_id
        log_path = entry.transcripts_dir / f"{tid}_whisper_logs.txt"
        partial = self._partial_path(entry)
        try:
            code = done.result()
            if code != 0:
                error = f"Whisper exited with code {code}"
                tail = entry.process.stderr_tail() if entry.process else ""
                if tail:
                    error = f"{error}: {tail}"
                self._record_failure(entry, log_path, error)
                return

            try:
                with open(partial, "r", encoding="utf-8") as f:
                    data = json.load(f)
                transcript = Transcript.from_dict(data, transcription_id=tid)
            except (OSError, ValueError) as e:
                self._record_failure(entry, log_path, f"Could not read Whisper output: {e}")
                return

            transcript.model = transcript.model or self.model
            transcript.created_at = isoformat(utc_now())
            self.store.save_transcript(entry.transcripts_dir, transcript)
            self.store.clear_transcription_failure(entry.transcripts_dir, tid)
            append_log(log_path, "INFO", f"Transcription completed: {transcript.word_count} words, "
                                         f"{len(transcript.segments)} segments")
            logger.info(f"Transcription {tid} completed")
        except Exception as e:
            logger.exception(f"Transcription {tid} could not be finalised")
            self._record_failure(entry, log_path, str(e))
        finally:
            if partial.exists():
                partial.unlink()
            self._remove_audio(entry)
            self.running.release(tid)

    def _record_failure(self, entry: RunningTranscription, log_path: Path, error: str) -> None:
        logger.error(f"Transcription {entry.transcription_id} failed: {error}")
        append_log(log_path, "ERROR", error)
        self.store.save_transcription_failure(entry.transcripts_dir, entry.transcription_id, error)

    def _remove_audio(self, entry: RunningTranscription) -> None:
        if self.keep_audio or entry.audio_path is None:
            return
        if entry.audio_path.exists():
            entry.audio_path.unlink()

    # --- Queries ---

    def get_transcription_status(self, transcription_id: str) -> dict:
        """``running`` while registered; else ``failed``, ``completed`` or ``not_found``."""
        entry = self.running.get(transcription_id)
        if entry is not None:
            return entry.to_dict()

        has_transcript = self.store.transcript_path(transcription_id) is not None
        failure = self.store.get_transcription_failure(transcription_id)
        if failure is not None:
            return {
                "transcriptionId": transcription_id,
                "status": TranscriptionStatus.FAILED.value,
                "error": failure.get("error"),
                "failedAt": failure.get("failedAt"),
                "hasTranscript": has_transcript,
            }
        if has_transcript:
            return {"transcriptionId": transcription_id, "status": TranscriptionStatus.COMPLETED.value}
        return {"transcriptionId": transcription_id, "status": TranscriptionStatus.NOT_FOUND.value}

    def get_transcript(self, session_id: str) -> Transcript:
        transcript = self.store.get_transcript(session_id)
        if transcript is None:
            raise NotFound(f"Transcript not found: {session_id}")
        return transcript

    def get_clip_transcript(self, clip_id: str) -> Transcript:
        """The clip's own transcript, or one derived from its session's transcript."""
        clip = self.store.require_clip(clip_id)
        transcript = self.store.get_transcript(clip_id)
        if transcript is not None:
            return transcript
        session_transcript = self.store.get_transcript(clip.session_id) if clip.session_id else None
        if session_transcript is not None:
            derived = derive_clip_transcript(clip, session_transcript)
            if derived is not None:
                return derived
        raise NotFound(f"Transcript not found for clip: {clip_id}")
