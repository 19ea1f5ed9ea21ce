"""
Capture process supervisor.

Each capture is one FFmpeg process writing fixed-duration segments for a
session. Running captures are held in ``self.active`` keyed by session id;
an entry is added once FFmpeg has been spawned and removed only after the
session's final status has been written, so a caller that sees a capture
disappear from the active list can rely on its persisted status.

If the service dies mid-capture, the session stays ``active`` on disk with no
process behind it; ``reconcile_orphaned_sessions`` closes those at startup.
"""

import logging
import math
from concurrent.futures import Executor
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .errors import CliptrError, InvalidArgument, NotFound, StopTimedOut
from .metadata import FileMetadataStore
from .models import SessionStatus, TranscodeOptions, isoformat, utc_now
from .process import ManagedProcess, ProcessRunner, append_log
from .registry import Registry
from .segments import MANIFEST_NAME, SEGMENT_PATTERN, list_segment_files

logger = logging.getLogger(__name__)

DEFAULT_STOP_TIMEOUT = 30.0


def build_capture_args(ffmpeg_bin: str, source_url: str, segments_dir: Path,
                       options: TranscodeOptions) -> List[str]:
    """FFmpeg command line for segmented capture with a generated manifest."""
    return [
        ffmpeg_bin,
        "-i", source_url,
        "-c:v", options.video_codec,
        "-c:a", options.audio_codec,
        "-f", "segment",
        "-segment_time", f"{options.segment_duration:g}",
        "-segment_list", str(segments_dir / MANIFEST_NAME),
        "-segment_format", "mpegts",
        "-reset_timestamps", "1",
        str(segments_dir / SEGMENT_PATTERN),
    ]


@dataclass
class ActiveCapture:
    session_id: str
    source_url: str
    display_name: Optional[str]
    session_dir: Path
    process: ManagedProcess
    auto_transcribe: bool = False
    started_at: datetime = field(default_factory=datetime.now)
    stop_requested: bool = False

    @property
    def log_path(self) -> Path:
        return self.session_dir / "capture_logs.txt"

    def to_dict(self) -> dict:
        return {
            "sessionId": self.session_id,
            "sourceUrl": self.source_url,
            "displayName": self.display_name,
            "startTime": self.started_at.isoformat(),
            "elapsedSeconds": int((datetime.now() - self.started_at).total_seconds()),
        }


class CaptureSupervisor:
    """Start, track and stop FFmpeg capture processes."""

    def __init__(self, store: FileMetadataStore, runner: Optional[ProcessRunner] = None,
                 coordinator=None, executor: Optional[Executor] = None,
                 ffmpeg_bin: str = "ffmpeg", stop_timeout: float = DEFAULT_STOP_TIMEOUT,
                 defaults: Optional[TranscodeOptions] = None):
        """
        Args:
            store: Metadata store owning the library.
            runner: Process runner used to spawn FFmpeg.
            coordinator: TranscriptionCoordinator for auto-transcription.
            executor: Where auto-transcriptions are started; inline if None.
            ffmpeg_bin: FFmpeg executable.
            stop_timeout: Seconds ``stop_capture`` waits for FFmpeg to exit.
            defaults: Transcode options used when a request omits them.
        """
        self.store = store
        self.runner = runner or ProcessRunner()
        self.coordinator = coordinator
        self.executor = executor
        self.ffmpeg_bin = ffmpeg_bin
        self.stop_timeout = stop_timeout
        self.defaults = defaults or TranscodeOptions()
        self.active = Registry("captures")

    def start_capture(self, source_url: str, display_name: Optional[str] = None,
                      transcode_options: Optional[dict] = None, auto_transcribe: bool = False) -> str:
        """
        Start capturing ``source_url`` into a new session.

        Returns as soon as FFmpeg is running.

        Raises:
            InvalidArgument: Empty URL or non-positive segment duration.
            ProcessFailed: FFmpeg could not be launched (session marked failed).
        """
        source_url = (source_url or "").strip()
        if not source_url:
            raise InvalidArgument("sourceUrl is required")
        options = TranscodeOptions.from_dict(transcode_options, self.defaults)
        if not math.isfinite(options.segment_duration) or options.segment_duration <= 0:
            raise InvalidArgument("segmentDuration must be a positive number of seconds")

        session_id = self.store.allocate_id()
        _, session_dir = self.store.create_session(
            session_id,
            source_url,
            display_name=display_name,
            segment_duration=options.segment_duration,
            auto_transcribe=auto_transcribe,
            transcode_options=options.to_dict(),
        )
        self.store.record_history(source_url, display_name)

        log_path = session_dir / "capture_logs.txt"
        args = build_capture_args(self.ffmpeg_bin, source_url, session_dir / "segments", options)
        append_log(log_path, "INFO", f"Starting capture: {' '.join(args)}")
        try:
            process = self.runner.spawn(args, log_path=log_path)
        except CliptrError as e:
            append_log(log_path, "ERROR", str(e))
            self.store.update_session(
                session_id, status=SessionStatus.FAILED, ended_at=isoformat(utc_now())
            )
            raise

        entry = ActiveCapture(
            session_id=session_id,
            source_url=source_url,
            display_name=display_name,
            session_dir=session_dir,
            process=process,
            auto_transcribe=auto_transcribe,
        )
        self.active.claim(session_id, entry)
        process.done.add_done_callback(lambda done: self._on_exit(entry, done))
        logger.info(f"Capture {session_id} started (pid {process.pid}) for {source_url}")
        return session_id

    def _on_exit(self, entry: ActiveCapture, done) -> None:
        exception = done.exception()
        code = None if exception else done.result()
        has_segments = bool(list_segment_files(entry.session_dir / "segments"))
        if entry.stop_requested or code == 0 or has_segments:
            status = SessionStatus.COMPLETED
        else:
            status = SessionStatus.FAILED

        try:
            self.store.update_session(
                entry.session_id, status=status, ended_at=isoformat(utc_now()), exit_code=code
            )
        except (CliptrError, OSError):
            logger.exception(f"Could not record final status of capture {entry.session_id}")
        finally:
            self.active.release(entry.session_id)
        logger.info(f"Capture {entry.session_id} ended with code {code}: {status.value}")

        if entry.auto_transcribe and status == SessionStatus.COMPLETED and self.coordinator is not None:
            if self.executor is not None:
                self.executor.submit(self._auto_transcribe, entry)
            else:
                self._auto_transcribe(entry)

    def _auto_transcribe(self, entry: ActiveCapture) -> None:
        append_log(entry.log_path, "INFO", "Starting auto-transcription")
        try:
            self.coordinator.start_transcription(session_id=entry.session_id)
        except CliptrError as e:
            logger.error(f"Auto-transcription of {entry.session_id} failed: {e}")
            append_log(entry.log_path, "ERROR", f"Auto-transcription failed: {e}")
            try:
                self.store.patch_session(entry.session_id, {"autoTranscribeError": str(e)})
            except (CliptrError, OSError):
                logger.exception(f"Could not record auto-transcription failure for {entry.session_id}")

    def stop_capture(self, session_id: str, timeout: Optional[float] = None) -> bool:
        """
        Stop a capture and wait for FFmpeg to exit.

        Raises:
            NotFound: The session is not an active capture.
            StopTimedOut: FFmpeg is still running after ``timeout`` seconds.
                The capture stays registered; the call may be retried.
        """
        entry = self.active.get(session_id)
        if entry is None:
            raise NotFound(f"No active capture for session {session_id}")

        timeout = self.stop_timeout if timeout is None else timeout
        entry.stop_requested = True
        logger.info(f"Stopping capture {session_id}")
        entry.process.terminate()
        if not self.active.wait_released(session_id, timeout):
            raise StopTimedOut(f"Capture {session_id} did not exit within {timeout:g}s")
        return True

    def is_active(self, session_id: str) -> bool:
        return session_id in self.active

    def get_active_captures(self) -> List[dict]:
        return [entry.to_dict() for _, entry in self.active.snapshot()]

    def get_capture_status(self, session_id: str) -> dict:
        entry = self.active.get(session_id)
        if entry is not None:
            return dict(entry.to_dict(), status=SessionStatus.ACTIVE.value, active=True)
        session = self.store.get_session(session_id)
        if session is None:
            raise NotFound(f"Session not found: {session_id}")
        return {
            "sessionId": session.session_id,
            "status": session.status.value,
            "active": False,
            "endedAt": session.ended_at,
            "exitCode": session.exit_code,
        }

    def delete_session(self, session_id: str) -> None:
        if self.is_active(session_id):
            raise InvalidArgument("Stop the capture before deleting its session")
        self.store.delete_session(session_id)

    def reconcile_orphaned_sessions(self) -> List[str]:
        """Close out sessions left ``active`` on disk with no process behind them."""
        reconciled = []
        for session_dir, data in self.store.iter_session_dirs():
            session_id = data.get("sessionId")
            if data.get("status") != SessionStatus.ACTIVE.value or session_id in self.active:
                continue
            has_segments = bool(list_segment_files(session_dir / "segments"))
            data["status"] = (SessionStatus.COMPLETED if has_segments else SessionStatus.FAILED).value
            data["reconciled"] = True
            self.store.write_metadata(session_dir, data)
            append_log(session_dir / "capture_logs.txt", "WARN",
                       f"Session was still marked active at startup; set to {data['status']}")
            reconciled.append(session_id)
        if reconciled:
            logger.warning(f"Reconciled {len(reconciled)} orphaned capture session(s)")
        return reconciled

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Stop every active capture, killing any that outlive the timeout."""
        timeout = self.stop_timeout if timeout is None else timeout
        for session_id, entry in self.active.snapshot():
            entry.stop_requested = True
            entry.process.terminate()
        for session_id, entry in self.active.snapshot():
            if not self.active.wait_released(session_id, timeout):
                logger.warning(f"Capture {session_id} ignored SIGTERM; killing it")
                entry.process.kill()
                self.active.wait_released(session_id, 5)
