"""Bounded, time-limited cache of model responses.

Best-effort only: callers must behave identically on a miss. Eviction is
FIFO by insertion order, not LRU; reads never refresh an entry.
"""

import hashlib
import json
import threading
import time
from collections import OrderedDict
from typing import Any, Callable, Optional


class ResponseCache:
    """Thread-safe FIFO cache with a per-entry time-to-live.

    Args:
        max_entries: Hard bound on stored entries.
        ttl_seconds: Age after which an entry is treated as absent.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        max_entries: int = 50,
        ttl_seconds: float = 600.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_entries < 1:
            raise ValueError("max_entries must be at least 1")
        self.max_entries = max_entries
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: "OrderedDict[str, tuple[float, Any]]" = OrderedDict()
        self._lock = threading.Lock()

    @staticmethod
    def make_key(model_id: str, payload: dict) -> str:
        """Deterministic key over the model id and the normalized payload."""
        normalized = json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str)
        return hashlib.sha256(f"{model_id}\x00{normalized}".encode()).hexdigest()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            stored_at, value = entry
            if self._clock() - stored_at > self.ttl_seconds:
                del self._entries[key]
                return None
            return value

    def set(self, key: str, value: Any) -> None:
        """Store *value*. Overwriting keeps the key's original queue position."""
        with self._lock:
            if key not in self._entries:
                while len(self._entries) >= self.max_entries:
                    self._entries.popitem(last=False)
            self._entries[key] = (self._clock(), value)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None
