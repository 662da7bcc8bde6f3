"""In-memory counters for registry operations.

Counter names are dotted (``ewma.create.success``, ``ewma.buffer.released``),
so a prefix selects one family of counters.
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import Dict


class MetricsRegistry:
    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counters: Counter[str] = Counter()

    def increment(self, name: str, value: int = 1) -> None:
        with self._lock:
            self._counters[name] += value

    def get(self, name: str) -> int:
        with self._lock:
            return self._counters[name]

    def snapshot(self, prefix: str | None = None) -> Dict[str, int]:
        """Copy the counters, keeping only names equal to or under ``prefix`` when given."""

        with self._lock:
            if not prefix:
                return dict(self._counters)
            stem = prefix.rstrip(".")
            return {
                name: count
                for name, count in self._counters.items()
                if name == stem or name.startswith(stem + ".")
            }

    def total(self, prefix: str) -> int:
        return sum(self.snapshot(prefix).values())

    def reset(self) -> None:
        with self._lock:
            self._counters.clear()


METRICS = MetricsRegistry()
