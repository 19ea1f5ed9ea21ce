"""
Whole-session exports and clip compilations.

Both concatenate existing media with FFmpeg's concat demuxer and can take a
while for long sessions; the web layer runs them as background jobs.
"""

import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from .errors import InvalidArgument, NotFound, ProcessFailed
from .metadata import FileMetadataStore, new_id, sanitize_name
from .models import Compilation, SessionExport, isoformat, utc_now
from .process import ProcessRunner
from .segments import read_manifest, write_concat_list

logger = logging.getLogger(__name__)


class MediaExporter:
    """Build full-session MP4s and multi-clip compilations."""

    def __init__(self, store: FileMetadataStore, runner: Optional[ProcessRunner] = None,
                 ffmpeg_bin: str = "ffmpeg"):
        self.store = store
        self.runner = runner or ProcessRunner()
        self.ffmpeg_bin = ffmpeg_bin

    def _concat(self, list_path: Path, output_path: Path, codec_args: List[str], what: str) -> None:
        args = [self.ffmpeg_bin, "-f", "concat", "-safe", "0", "-i", str(list_path)]
        args += codec_args + [str(output_path)]
        try:
            result = self.runner.run(args)
        finally:
            if list_path.exists():
                list_path.unlink()
        if result.returncode != 0 or not output_path.exists():
            if output_path.exists():
                output_path.unlink()
            raise ProcessFailed(
                f"FFmpeg exited with code {result.returncode} while creating {what}",
                diagnostics=result.stderr,
                exit_code=result.returncode,
            )

    def export_session(self, session_id: str, name: Optional[str] = None) -> SessionExport:
        """
        Concatenate every segment of a session into one MP4.

        Video is stream-copied; audio is re-encoded to AAC for MP4 compatibility.
        """
        session, session_dir = self.store.require_session(session_id)
        manifest = read_manifest(session_dir / "segments")
        if not manifest:
            raise NotFound(f"No segments captured for session {session_id}")

        if not name:
            streamer = session.display_name or "unknown"
            name = f"{streamer}_full_{datetime.now().strftime('%Y_%m_%d_%H_%M')}"
        sanitized = sanitize_name(name)
        export_id = new_id()

        export_dir = session_dir / "full_exports"
        export_dir.mkdir(parents=True, exist_ok=True)
        output_path = export_dir / f"{sanitized}_{export_id}.mp4"
        list_path = write_concat_list(export_dir / f"temp_filelist_{export_id}.txt", manifest)

        logger.info(f"Exporting session {session_id} ({len(manifest)} segments) to {output_path}")
        self._concat(list_path, output_path, ["-c:v", "copy", "-c:a", "aac", "-strict", "experimental"],
                     "session export")

        export = SessionExport(
            export_id=export_id,
            session_id=session_id,
            name=sanitized,
            path=str(output_path),
            created_at=isoformat(utc_now()),
            size=output_path.stat().st_size,
        )
        self.store.save_export(export_dir, export)
        return export

    def create_compilation(self, clip_ids: List[str], name: Optional[str] = None) -> Compilation:
        """
        Join clips, in the given order, into one file.

        The compilation is stored under the first clip's session.
        """
        if not clip_ids:
            raise InvalidArgument("No clip IDs provided")
        clips = [self.store.require_clip(clip_id) for clip_id in clip_ids]
        for clip in clips:
            if not Path(clip.path).exists():
                raise NotFound(f"Clip file not found: {clip.path}")

        session_dir = self.store.clip_session_dir(clips[0])
        compilation_id = new_id()
        name = name or f"compilation_{compilation_id}"
        compilations_dir = session_dir / "compilations"
        compilations_dir.mkdir(parents=True, exist_ok=True)
        output_path = compilations_dir / f"{sanitize_name(name)}_{compilation_id}.mp4"
        list_path = write_concat_list(
            compilations_dir / f"temp_filelist_{compilation_id}.txt",
            [Path(c.path) for c in clips],
        )

        logger.info(f"Creating compilation {compilation_id} from {len(clips)} clips")
        self._concat(list_path, output_path, ["-c", "copy"], "compilation")

        compilation = Compilation(
            compilation_id=compilation_id,
            name=name,
            clip_ids=list(clip_ids),
            duration=sum(c.duration for c in clips),
            path=str(output_path),
            created_at=isoformat(utc_now()),
        )
        self.store.save_compilation(session_dir, compilation)
        return compilation
