"""
Segment store: the ``segments/`` directory of a session.

FFmpeg writes fixed-duration MPEG-TS chunks named ``segment_000.ts``,
``segment_001.ts``, ... plus a ``segments.txt`` manifest listing them in
capture order. Segment ``n`` is assumed to cover
``[n * D, (n + 1) * D)`` seconds from session start, where ``D`` is the
session's configured segment duration. FFmpeg cuts on keyframes, so real
boundaries can drift from that grid; no correction is applied and clip edges
inherit that inaccuracy.
"""

import logging
import math
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Union

from .errors import InvalidRange, RangeNotFound

logger = logging.getLogger(__name__)

SEGMENT_PATTERN = "segment_%03d.ts"
MANIFEST_NAME = "segments.txt"

_SEGMENT_INDEX = re.compile(r"segment_(\d+)")


def segment_index(path: Union[str, Path]) -> int:
    """Embedded index of a segment file name (``segment_012.ts`` -> 12)."""
    match = _SEGMENT_INDEX.search(Path(path).name)
    return int(match.group(1)) if match else 0


def list_segment_files(segments_dir: Union[str, Path]) -> List[Path]:
    segments_dir = Path(segments_dir)
    if not segments_dir.is_dir():
        return []
    return sorted(segments_dir.glob("*.ts"), key=segment_index)


def regenerate_manifest(segments_dir: Union[str, Path]) -> List[Path]:
    """
    Rebuild ``segments.txt`` from the segment files present on disk.

    This is the recovery path for captures that were interrupted before FFmpeg
    flushed its manifest. Files are ordered by their embedded index and written
    as absolute paths, one per line.

    Returns:
        The ordered segment paths (empty if there are none).
    """
    segments_dir = Path(segments_dir)
    files = [p.resolve() for p in list_segment_files(segments_dir)]
    if not files:
        return []
    (segments_dir / MANIFEST_NAME).write_text("\n".join(str(p) for p in files), encoding="utf-8")
    logger.info(f"Regenerated manifest with {len(files)} segments in {segments_dir}")
    return files


def read_manifest(segments_dir: Union[str, Path]) -> List[Path]:
    """
    Ordered segment paths for a session.

    FFmpeg's manifest holds bare file names; regenerated manifests hold absolute
    paths. Both resolve inside ``segments_dir``. A missing or empty manifest is
    regenerated from the directory listing.
    """
    segments_dir = Path(segments_dir)
    manifest = segments_dir / MANIFEST_NAME
    entries: List[Path] = []
    if manifest.exists():
        for line in manifest.read_text(encoding="utf-8", errors="replace").splitlines():
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            path = Path(line)
            entries.append(path if path.is_absolute() else segments_dir / path.name)
    if not entries:
        entries = regenerate_manifest(segments_dir)
    return entries


@dataclass
class SegmentWindow:
    """The run of segments covering a clip range, with in-window trim points."""
    start_index: int
    end_index: int  # inclusive
    paths: List[Path]
    seek: float     # offset into the first selected segment
    cutoff: float   # end offset measured from the start of the window


def validate_range(start_time: float, end_time: float) -> None:
    if not (math.isfinite(start_time) and math.isfinite(end_time)):
        raise InvalidRange("startTime and endTime must be finite numbers")
    if start_time < 0:
        raise InvalidRange("startTime must be >= 0")
    if end_time <= start_time:
        raise InvalidRange("endTime must be greater than startTime")


def select_window(manifest: List[Path], start_time: float, end_time: float,
                  segment_duration: float) -> SegmentWindow:
    """
    Select every segment whose span intersects ``[start_time, end_time)``.

    That is ``floor(start / D)`` up to but excluding ``ceil(end / D)``, the
    first segment starting at or after ``end_time``. The slice is clamped to
    the segments available.

    Raises:
        InvalidRange: Malformed range or non-positive duration.
        RangeNotFound: The range begins after the last captured segment.
    """
    validate_range(start_time, end_time)
    if not math.isfinite(segment_duration) or segment_duration <= 0:
        raise InvalidRange("segment duration must be positive")

    start_index = int(math.floor(start_time / segment_duration))
    end_bound = int(math.ceil(end_time / segment_duration))
    selected = manifest[start_index:end_bound]
    if not selected:
        raise RangeNotFound(
            f"Requested range {start_time}-{end_time}s is beyond the "
            f"{len(manifest) * segment_duration:g}s captured"
        )

    return SegmentWindow(
        start_index=start_index,
        end_index=start_index + len(selected) - 1,
        paths=list(selected),
        seek=start_time % segment_duration,
        cutoff=end_time - start_index * segment_duration,
    )


def write_concat_list(list_path: Union[str, Path], paths: List[Path]) -> Path:
    """Write an FFmpeg concat demuxer file list."""
    list_path = Path(list_path)
    lines = []
    for p in paths:
        escaped = str(Path(p).resolve()).replace("'", "'\\''")
        lines.append(f"file '{escaped}'")
    list_path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    return list_path
