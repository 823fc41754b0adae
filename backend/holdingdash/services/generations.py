"""Request-generation counter.

Every dependent reload (month, rates or enterprise set changed) takes a new
generation for its key.  A load that finishes after a newer generation was
issued is stale and must be discarded instead of returned.

Only the most recently used ``max_keys`` keys are remembered.
"""
from __future__ import annotations

import threading
from collections import OrderedDict
from collections.abc import Hashable

from holdingdash.errors import ConflictError

DEFAULT_MAX_KEYS = 4096


class RequestGenerations:
    def __init__(self, max_keys: int = DEFAULT_MAX_KEYS):
        self._lock = threading.Lock()
        self._latest: OrderedDict[Hashable, int] = OrderedDict()
        self.max_keys = max_keys

    def __len__(self) -> int:
        return len(self._latest)

    def issue(self, key: Hashable) -> int:
        with self._lock:
            generation = self._latest.pop(key, 0) + 1
            self._latest[key] = generation
            while len(self._latest) > self.max_keys:
                self._latest.popitem(last=False)
            return generation

    def latest(self, key: Hashable) -> int:
        with self._lock:
            return self._latest.get(key, 0)

    def is_current(self, key: Hashable, generation: int) -> bool:
        return self.latest(key) == generation

    def ensure_current(self, key: Hashable, generation: int) -> None:
        if not self.is_current(key, generation):
            raise ConflictError("A newer request superseded this one; its result was discarded.")

    def forget(self, key: Hashable) -> None:
        with self._lock:
            self._latest.pop(key, None)


# Process-wide counter used by the dashboard routes
dashboard_generations = RequestGenerations()
