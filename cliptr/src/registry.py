"""
Process-wide registries of in-flight work keyed by id.

A registry is created once at service startup (see ``web/app.py``) and owned
by the supervisor or coordinator using it. Entries are inserted with
``claim`` and removed with ``release``; both are atomic with respect to other
callers using the same key, which is what makes "at most one in flight per id"
hold when a new request races a completion callback.
"""

import threading
from typing import Any, Dict, List, Optional, Tuple


class Registry:
    """Thread-safe map of id -> in-flight entry."""

    def __init__(self, name: str = "registry"):
        self.name = name
        self._entries: Dict[str, Any] = {}
        self._cond = threading.Condition()

    def claim(self, key: str, entry: Any) -> bool:
        """Insert ``entry`` under ``key`` unless the key is already held.

        Returns:
            True if the entry was inserted, False if the key was taken.
        """
        with self._cond:
            if key in self._entries:
                return False
            self._entries[key] = entry
            return True

    def release(self, key: str) -> Optional[Any]:
        """Remove ``key`` and wake anyone waiting for it."""
        with self._cond:
            entry = self._entries.pop(key, None)
            self._cond.notify_all()
            return entry

    def get(self, key: str) -> Optional[Any]:
        with self._cond:
            return self._entries.get(key)

    def snapshot(self) -> List[Tuple[str, Any]]:
        with self._cond:
            return list(self._entries.items())

    def wait_released(self, key: str, timeout: Optional[float]) -> bool:
        """Block until ``key`` is no longer registered.

        Returns:
            True if the key was released, False if ``timeout`` expired first.
        """
        with self._cond:
            return self._cond.wait_for(lambda: key not in self._entries, timeout=timeout)

    def __contains__(self, key: str) -> bool:
        with self._cond:
            return key in self._entries

    def __len__(self) -> int:
        with self._cond:
            return len(self._entries)
