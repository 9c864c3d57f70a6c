"""In-process page cache keyed by request path.

Rendered admin pages are cached until a mutation invalidates their path.

Usage::

    from portal.cache import page_cache

    html = page_cache.get("/admin/applications/7")
    page_cache.invalidate("/admin/applications/7")
"""
from __future__ import annotations

import logging
import threading
import time
from typing import Any

log = logging.getLogger(__name__)

DEFAULT_TTL = 300.0


class PageCache:
    def __init__(self, ttl: float = DEFAULT_TTL):
        self.ttl = ttl
        self._lock = threading.Lock()
        self._entries: dict[str, tuple[float, Any]] = {}

    def get(self, path: str) -> Any | None:
        with self._lock:
            entry = self._entries.get(path)
            if entry is None:
                return None
            expires, value = entry
            if expires < time.monotonic():
                del self._entries[path]
                return None
            return value

    def set(self, path: str, value: Any, ttl: float | None = None) -> None:
        with self._lock:
            self._entries[path] = (time.monotonic() + (ttl or self.ttl), value)

    def invalidate(self, *paths: str) -> None:
        with self._lock:
            for path in paths:
                self._entries.pop(path, None)
        log.debug("Invalidated %s", ", ".join(paths))

    def invalidate_prefix(self, prefix: str) -> int:
        with self._lock:
            stale = [p for p in self._entries if p.startswith(prefix)]
            for path in stale:
                del self._entries[path]
        return len(stale)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()


page_cache = PageCache()


def revalidate_application(application_id: int) -> None:
    """Drop every cached page showing this application."""
    page_cache.invalidate(
        f"/admin/applications/{application_id}",
        "/admin/applications",
        "/admin",
    )
