"""Pydantic request bodies for the cliptr API.

Field names follow the camelCase JSON the web client sends. Required fields are
left optional here and validated by the core so a missing value answers 400
with the same ``{"error": ...}`` body as every other domain error.
"""

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# --- Capture ---


class StartCaptureRequest(BaseModel):
    sourceUrl: Optional[str] = None
    displayName: Optional[str] = None
    transcodeOptions: Optional[Dict[str, Any]] = None
    autoTranscribe: bool = False


class StopCaptureRequest(BaseModel):
    sessionId: Optional[str] = None


# --- Media ---


class CreateClipRequest(BaseModel):
    sessionId: Optional[str] = None
    startTime: Optional[float] = None
    endTime: Optional[float] = None
    name: Optional[str] = None
    reencode: bool = False


class CreateCompilationRequest(BaseModel):
    clipIds: List[str] = Field(default_factory=list)
    name: Optional[str] = None


class ExportSessionRequest(BaseModel):
    name: Optional[str] = None


class FavoriteRequest(BaseModel):
    url: Optional[str] = None
    isFavorite: bool = True


# --- Transcription ---


class StartTranscriptionRequest(BaseModel):
    sessionId: Optional[str] = None
    clipId: Optional[str] = None


# --- Search ---


class SearchFilters(BaseModel):
    displayName: Optional[str] = None
    startDate: Optional[str] = None
    endDate: Optional[str] = None
    type: Optional[str] = None


class SearchRequest(BaseModel):
    query: Optional[str] = None
    filters: SearchFilters = Field(default_factory=SearchFilters)
