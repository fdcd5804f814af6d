"""
LRU cache of filter-stage decisions.

Only decisions computed without a record are cached: they depend on the
compiled policy set and the context's static inputs, which together make up
the key.
"""

import threading
from collections import OrderedDict
from typing import Any, Hashable, Optional, Tuple

from ..core.types import EvaluationContext
from .types import Decision


class DecisionCache:
    """Thread-safe LRU mapping (entity, context key) to a Decision."""

    def __init__(self, capacity: int = 1024):
        if capacity < 1:
            raise ValueError("Cache capacity must be positive")
        self.capacity = capacity
        self._entries: "OrderedDict[Hashable, Decision]" = OrderedDict()
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @staticmethod
    def key_for(entity: str, context: EvaluationContext) -> Tuple[Any, ...]:
        if context.has_record:
            raise ValueError("Record-level decisions are not cacheable")
        return (entity,) + context.cache_key()

    def get(self, key: Hashable) -> Optional[Decision]:
        with self._lock:
            decision = self._entries.get(key)
            if decision is None:
                self.misses += 1
                return None
            self._entries.move_to_end(key)
            self.hits += 1
            return decision

    def put(self, key: Hashable, decision: Decision) -> None:
        with self._lock:
            if key in self._entries:
                self._entries.move_to_end(key)
            self._entries[key] = decision
            while len(self._entries) > self.capacity:
                self._entries.popitem(last=False)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)
