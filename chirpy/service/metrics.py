from __future__ import annotations

import threading


class HitCounter:
    """Thread-safe request counter injected wherever hits are recorded."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._hits = 0

    def increment(self) -> int:
        with self._lock:
            self._hits += 1
            return self._hits

    @property
    def value(self) -> int:
        with self._lock:
            return self._hits

    def reset(self) -> None:
        with self._lock:
            self._hits = 0
