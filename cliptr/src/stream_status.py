"""
Stream liveness checks.

A URL counts as live when an HTTP HEAD request answers 2xx or 3xx within ten
seconds. Results are cached per URL; ``start`` refreshes every URL in the
capture history on a background thread.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional

import requests

from .metadata import FileMetadataStore
from .models import isoformat, utc_now

logger = logging.getLogger(__name__)

CHECK_TIMEOUT = 10
REFRESH_INTERVAL = 60
USER_AGENT = "cliptr/1.0"


class StreamStatusChecker:
    """Cached HEAD probes for the URLs in the capture history."""

    def __init__(self, store: FileMetadataStore, interval: float = REFRESH_INTERVAL,
                 session: Optional[requests.Session] = None):
        self.store = store
        self.interval = interval
        self.http = session or requests.Session()
        self._cache: Dict[str, dict] = {}
        self._lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def check(self, url: str) -> dict:
        """Probe ``url`` now and cache the result."""
        status = {"url": url, "lastChecked": isoformat(utc_now())}
        try:
            response = self.http.head(
                url,
                timeout=CHECK_TIMEOUT,
                allow_redirects=False,
                headers={"User-Agent": USER_AGENT},
            )
            status["isLive"] = 200 <= response.status_code < 400
            status["statusCode"] = response.status_code
        except requests.RequestException as e:
            status["isLive"] = False
            status["error"] = str(e)
        with self._lock:
            previous = self._cache.get(url, {})
            if previous.get("displayName"):
                status["displayName"] = previous["displayName"]
            self._cache[url] = status
        return status

    def get_cached(self, url: str) -> Optional[dict]:
        with self._lock:
            return self._cache.get(url)

    def get_all(self) -> List[dict]:
        with self._lock:
            return list(self._cache.values())

    def get_live(self) -> List[dict]:
        return [s for s in self.get_all() if s.get("isLive")]

    def refresh_all(self) -> List[dict]:
        """Re-check every URL in the capture history."""
        history = self.store.get_history()
        if not history:
            return []
        with ThreadPoolExecutor(max_workers=min(8, len(history))) as pool:
            results = list(pool.map(lambda entry: self.check(entry["url"]), history))
        names = {entry["url"]: entry.get("displayName") for entry in history}
        with self._lock:
            for result in results:
                if names.get(result["url"]):
                    result["displayName"] = names[result["url"]]
        logger.info(f"Checked {len(results)} streams, {sum(1 for r in results if r['isLive'])} are live")
        return results

    def start(self) -> None:
        """Refresh now and then every ``interval`` seconds until ``stop``."""
        if self._thread is not None:
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="stream-status", daemon=True)
        self._thread.start()
        logger.info("Stream status checking started")

    def stop(self) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=CHECK_TIMEOUT + 1)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                self.refresh_all()
            except (OSError, ValueError):
                logger.exception("Stream status refresh failed")
            self._stop.wait(self.interval)
