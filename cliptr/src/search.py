"""
Transcript and media search.

Both searches are case-insensitive substring matches over what the metadata
store holds; there is no separate index beyond the ``searchableText`` blob
written next to every transcript.
"""

import logging
from datetime import timedelta
from typing import Optional

from .errors import InvalidArgument
from .metadata import FileMetadataStore
from .models import Session, parse_iso

logger = logging.getLogger(__name__)


class DateRange:
    """Inclusive ``[startDate, endDate]`` filter; a bare date as ``endDate`` covers that whole day."""

    def __init__(self, start: Optional[str] = None, end: Optional[str] = None):
        self.start = parse_iso(start) if start else None
        self.end = parse_iso(end) if end else None
        if start and self.start is None:
            raise InvalidArgument(f"Invalid startDate: {start}")
        if end and self.end is None:
            raise InvalidArgument(f"Invalid endDate: {end}")
        if end and self.end is not None and len(end.strip()) == 10:
            self.end = self.end + timedelta(days=1) - timedelta(microseconds=1)

    def __contains__(self, value: Optional[str]) -> bool:
        if self.start is None and self.end is None:
            return True
        moment = parse_iso(value)
        if moment is None:
            return False
        if self.start is not None and moment < self.start:
            return False
        if self.end is not None and moment > self.end:
            return False
        return True


def _require_query(query: Optional[str]) -> str:
    query = (query or "").strip()
    if not query:
        raise InvalidArgument("Search query is required")
    return query.lower()


class SearchService:

    def __init__(self, store: FileMetadataStore):
        self.store = store

    def search_transcripts(self, query: str, filters: Optional[dict] = None) -> list:
        """
        Find transcripts containing ``query``.

        Filters:
            displayName: substring of the owning session's display name.
            startDate / endDate: bounds on the owning session's creation time.

        Returns:
            One result per matching transcript with the speech segments that
            contain the query.
        """
        needle = _require_query(query)
        filters = filters or {}
        name_filter = (filters.get("displayName") or filters.get("streamer") or "").lower()
        dates = DateRange(filters.get("startDate"), filters.get("endDate"))

        results = []
        for session_dir, data in self.store.iter_session_dirs():
            session = Session.from_dict(data)
            if name_filter and name_filter not in (session.display_name or "").lower():
                continue
            if session.created_at not in dates:
                continue

            for path in sorted((session_dir / "transcripts").glob("*_transcript.json")):
                tid = path.name[: -len("_transcript.json")]
                transcript = self.store.get_transcript(tid)
                if transcript is None or needle not in transcript.search_text:
                    continue
                matches = [s.to_dict() for s in transcript.segments if needle in s.text.lower()]
                if not matches and not transcript.segments:
                    matches = [{"start": 0, "end": 0, "text": transcript.text}]
                results.append({
                    "transcriptionId": tid,
                    "type": "session" if tid == session.session_id else "clip",
                    "sessionId": session.session_id,
                    "displayName": session.display_name,
                    "timestamp": session.created_at,
                    "matches": matches,
                })
        return results

    def search_media(self, query: str, filters: Optional[dict] = None) -> list:
        """
        Find captures by display name or URL and clips by name.

        Filters:
            type: ``capture`` or ``clip`` to restrict the result kind.
            displayName: substring of a capture's display name.
            startDate / endDate: creation-time bounds.
        """
        needle = _require_query(query)
        filters = filters or {}
        kind = filters.get("type")
        if kind not in (None, "", "capture", "clip"):
            raise InvalidArgument(f"Unknown media type: {kind}")
        name_filter = (filters.get("displayName") or filters.get("streamer") or "").lower()
        dates = DateRange(filters.get("startDate"), filters.get("endDate"))

        results = []
        if kind in (None, "", "capture"):
            for capture in self.store.list_sessions():
                name = (capture.get("displayName") or "").lower()
                url = (capture.get("sourceUrl") or "").lower()
                if needle not in name and needle not in url:
                    continue
                if name_filter and name_filter not in name:
                    continue
                if capture.get("createdAt") not in dates:
                    continue
                results.append(dict(capture, type="capture"))

        if kind in (None, "", "clip"):
            for clip in self.store.list_clips():
                if needle not in (clip.get("name") or "").lower():
                    continue
                if clip.get("createdAt") not in dates:
                    continue
                results.append(dict(clip, type="clip"))

        results.sort(key=lambda r: r.get("createdAt") or "", reverse=True)
        return results
