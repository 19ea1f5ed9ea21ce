"""
Error taxonomy for capture, clip and transcription operations.

Each error carries the HTTP status the web layer answers with.
"""

from typing import Optional


class CliptrError(Exception):
    """Base class for all cliptr errors."""
    status_code = 500


class InvalidArgument(CliptrError):
    """A request field is missing or malformed."""
    status_code = 400


class NotFound(CliptrError):
    """Unknown session, clip, transcript or history entry."""
    status_code = 404


class InvalidRange(CliptrError):
    """Clip range is malformed (end <= start, negative start)."""
    status_code = 400


class RangeNotFound(InvalidRange):
    """Requested range lies entirely beyond the captured data."""
    status_code = 416


class AlreadyInProgress(CliptrError):
    """A transcription for the same object id is already running."""
    status_code = 409


class PreconditionFailed(CliptrError):
    """A required external tool is not installed."""
    status_code = 503


class ProcessFailed(CliptrError):
    """An external process could not be launched or exited non-zero."""
    status_code = 500

    def __init__(self, message: str, diagnostics: Optional[str] = None, exit_code: Optional[int] = None):
        super().__init__(message)
        self.diagnostics = diagnostics or ""
        self.exit_code = exit_code


class ExtractionFailed(ProcessFailed):
    """FFmpeg failed while cutting a clip."""
    pass


class StopTimedOut(CliptrError):
    """A capture did not exit within the graceful stop bound."""
    status_code = 504
