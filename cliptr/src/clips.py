"""
Clip extractor.

Cuts ``[start, end)`` seconds out of a session by concatenating the segments
covering that range and trimming inside the concatenated window. Clips are
independent of one another: segments are immutable, so concurrent clip
requests on the same session need no locking.
"""

import logging
from pathlib import Path
from typing import List, Optional

from .errors import ExtractionFailed, InvalidArgument
from .metadata import FileMetadataStore, sanitize_name
from .models import Clip, format_seconds, isoformat, utc_now
from .process import ProcessRunner
from .segments import SegmentWindow, read_manifest, select_window, validate_range, write_concat_list

logger = logging.getLogger(__name__)

REENCODE_ARGS = ["-c:v", "libx264", "-preset", "veryfast", "-c:a", "aac"]


def build_clip_args(ffmpeg_bin: str, list_path: Path, window: SegmentWindow, output_path: Path,
                    reencode: bool = False) -> List[str]:
    args = [
        ffmpeg_bin,
        "-f", "concat",
        "-safe", "0",
        "-i", str(list_path),
        "-ss", format_seconds(window.seek),
        "-to", format_seconds(window.cutoff),
    ]
    args += REENCODE_ARGS if reencode else ["-c", "copy"]
    args.append(str(output_path))
    return args


class ClipExtractor:
    """Produce standalone clip files from captured segments."""

    def __init__(self, store: FileMetadataStore, runner: Optional[ProcessRunner] = None,
                 ffmpeg_bin: str = "ffmpeg"):
        self.store = store
        self.runner = runner or ProcessRunner()
        self.ffmpeg_bin = ffmpeg_bin

    def create_clip(self, session_id: str, start_time: float, end_time: float,
                    name: Optional[str] = None, reencode: bool = False) -> Clip:
        """
        Extract a clip and register its metadata.

        Args:
            session_id: Owning session.
            start_time: Seconds from session start, >= 0.
            end_time: Seconds from session start, > start_time.
            name: Display name; defaults to ``clip_<start>_<end>``.
            reencode: Re-encode to H.264/AAC instead of stream copy.

        Returns:
            The persisted Clip.

        Raises:
            InvalidArgument: Missing session id or non-numeric times.
            InvalidRange: ``end_time <= start_time`` or ``start_time < 0``.
            NotFound: Unknown session.
            RangeNotFound: The range lies beyond the captured segments.
            ExtractionFailed: FFmpeg exited non-zero (nothing is registered).
        """
        if not session_id:
            raise InvalidArgument("sessionId is required")
        try:
            start_time = float(start_time)
            end_time = float(end_time)
        except (TypeError, ValueError):
            raise InvalidArgument("startTime and endTime must be numbers")
        validate_range(start_time, end_time)

        session, session_dir = self.store.require_session(session_id)
        manifest = read_manifest(session_dir / "segments")
        window = select_window(manifest, start_time, end_time, float(session.segment_duration))

        clip_id = self.store.allocate_id()
        clip_name = name or f"clip_{format_seconds(start_time)}_{format_seconds(end_time)}"
        clips_dir = session_dir / "clips"
        clips_dir.mkdir(parents=True, exist_ok=True)
        output_path = clips_dir / f"{sanitize_name(clip_name)}_{clip_id}.mp4"
        list_path = write_concat_list(clips_dir / f"temp_filelist_{clip_id}.txt", window.paths)

        args = build_clip_args(self.ffmpeg_bin, list_path, window, output_path, reencode=reencode)
        logger.info(
            f"Extracting clip {clip_id} from session {session_id}: "
            f"segments {window.start_index}-{window.end_index}, {start_time:g}-{end_time:g}s"
        )
        try:
            result = self.runner.run(args)
        finally:
            if list_path.exists():
                list_path.unlink()

        if result.returncode != 0 or not output_path.exists():
            if output_path.exists():
                output_path.unlink()
            raise ExtractionFailed(
                f"FFmpeg exited with code {result.returncode} while extracting clip",
                diagnostics=result.stderr,
                exit_code=result.returncode,
            )

        clip = Clip(
            clip_id=clip_id,
            session_id=session_id,
            name=clip_name,
            start_time=start_time,
            end_time=end_time,
            path=str(output_path),
            created_at=isoformat(utc_now()),
        )
        self.store.save_clip(session_dir, clip)
        return clip
