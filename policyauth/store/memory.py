"""
In-memory data layer.

Stores plain dict records per entity and evaluates filters row by row. It is
the reference storage collaborator for tests and single-process use.

Note: All data is lost when the process terminates.
"""

import copy
import logging
import threading
from typing import Any, Dict, List, Mapping, Optional

from ..errors import RecordNotFoundError, StorageError
from ..expr.expression import Predicate, evaluate_record
from .types import DataLayer, Record


logger = logging.getLogger(__name__)


class MemoryDataLayer(DataLayer):
    """
    In-memory data layer keyed by entity name and primary key.

    Relationship values are stored inline: a dict for to-one, a list of dicts
    for to-many.
    """

    def __init__(self, primary_keys: Optional[Mapping[str, str]] = None):
        # entity -> key -> record
        self._tables: Dict[str, Dict[Any, Dict[str, Any]]] = {}
        self._primary_keys: Dict[str, str] = dict(primary_keys or {})
        self._lock = threading.RLock()
        self._queries_count = 0

    def primary_key(self, entity: str) -> str:
        return self._primary_keys.get(entity, "id")

    def insert(self, entity: str, record: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert or replace a record; returns the stored copy."""
        key_field = self.primary_key(entity)
        if key_field not in record:
            raise StorageError(f"{entity} record is missing primary key {key_field!r}")
        stored = copy.deepcopy(dict(record))
        with self._lock:
            self._tables.setdefault(entity, {})[stored[key_field]] = stored
        return copy.deepcopy(stored)

    def delete(self, entity: str, key: Any) -> bool:
        with self._lock:
            return self._tables.get(entity, {}).pop(key, None) is not None

    async def run_query(self, entity: str, filter: Optional[Predicate] = None) -> List[Record]:
        """Return copies of every record matching ``filter``, in insertion order."""
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._tables.get(entity, {}).values()]
            self._queries_count += 1

        if filter is None:
            return rows

        compiled = self.compile_filter(filter)
        matched = [row for row in rows if evaluate_record(compiled, row)]
        logger.debug(f"{entity}: filter {compiled} matched {len(matched)}/{len(rows)} records")
        return matched

    async def get(self, entity: str, key: Any) -> Record:
        with self._lock:
            record = self._tables.get(entity, {}).get(key)
        if record is None:
            raise RecordNotFoundError(entity, key)
        return copy.deepcopy(record)

    def count(self, entity: str) -> int:
        with self._lock:
            return len(self._tables.get(entity, {}))

    @property
    def queries_count(self) -> int:
        return self._queries_count
