"""Ledger of serialized-state buffers handed to callers.

Every text returned by ``serialize_state`` stays on the ledger until the
caller releases it exactly once. The ledger is bounded; once full, new
buffers are refused until older ones are released.
"""

from __future__ import annotations

import itertools
import threading


class StateText(str):
    """Serialized state text tagged with the ledger id it must be released under."""

    buffer_id: int

    def __new__(cls, text: str, buffer_id: int) -> "StateText":
        instance = super().__new__(cls, text)
        instance.buffer_id = buffer_id
        return instance


class BufferLedger:
    def __init__(self, capacity: int) -> None:
        self._lock = threading.Lock()
        self._capacity = capacity
        self._ids = itertools.count(1)
        self._outstanding: dict[int, StateText] = {}

    def issue(self, text: str) -> StateText | None:
        """Register ``text`` as a new buffer, or return ``None`` when full."""

        with self._lock:
            if len(self._outstanding) >= self._capacity:
                return None
            buffer = StateText(text, next(self._ids))
            self._outstanding[buffer.buffer_id] = buffer
            return buffer

    def release(self, buffer: StateText | int) -> bool:
        """Drop a buffer from the ledger; ``False`` if unknown or already released."""

        if isinstance(buffer, StateText):
            buffer_id = buffer.buffer_id
        elif isinstance(buffer, int) and not isinstance(buffer, bool):
            buffer_id = buffer
        else:
            return False

        with self._lock:
            issued = self._outstanding.get(buffer_id)
            # A StateText must be the very object that was issued, not a copy.
            if issued is None or (isinstance(buffer, StateText) and issued is not buffer):
                return False
            del self._outstanding[buffer_id]
            return True

    def outstanding(self) -> int:
        with self._lock:
            return len(self._outstanding)

    def clear(self) -> int:
        with self._lock:
            dropped = len(self._outstanding)
            self._outstanding.clear()
            return dropped
