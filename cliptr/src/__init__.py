"""
Clip Transcriber - Capture live streams, cut clips and transcribe them.

Records HLS/M3U8 streams into fixed-duration segments via FFmpeg, extracts
clips by time range and transcribes sessions or clips with OpenAI Whisper.
"""

__version__ = "1.0.0"
__author__ = "Clip Transcriber Team"

from .capture import CaptureSupervisor
from .clips import ClipExtractor
from .export import MediaExporter
from .metadata import FileMetadataStore
from .search import SearchService
from .transcription import TranscriptionCoordinator

__all__ = [
    "CaptureSupervisor",
    "ClipExtractor",
    "MediaExporter",
    "FileMetadataStore",
    "SearchService",
    "TranscriptionCoordinator",
]
