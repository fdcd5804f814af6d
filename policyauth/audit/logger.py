"""
Decision audit logging.

The authorizer records one DecisionEvent per decision through the
synchronous ``record`` method; retrieval is async like the rest of the I/O
facing API.
"""

import asyncio
import json
import logging
import queue
import threading
import uuid
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DecisionEvent:
    """One authorization decision as written to the audit trail."""
    entity: str
    action: str
    outcome: str
    actor_id: Optional[str] = None
    tenant: Optional[str] = None
    reasons: Tuple[str, ...] = ()
    policies_evaluated: Tuple[str, ...] = ()
    details: Dict[str, Any] = field(default_factory=dict)
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            'event_id': self.event_id,
            'entity': self.entity,
            'action': self.action,
            'outcome': self.outcome,
            'actor_id': self.actor_id,
            'tenant': self.tenant,
            'reasons': list(self.reasons),
            'policies_evaluated': list(self.policies_evaluated),
            'details': self.details,
            'timestamp': self.timestamp.isoformat()
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'DecisionEvent':
        """Create from dictionary representation."""
        return cls(
            entity=data['entity'],
            action=data['action'],
            outcome=data['outcome'],
            actor_id=data.get('actor_id'),
            tenant=data.get('tenant'),
            reasons=tuple(data.get('reasons', ())),
            policies_evaluated=tuple(data.get('policies_evaluated', ())),
            details=dict(data.get('details', {})),
            event_id=data['event_id'],
            timestamp=datetime.fromisoformat(data['timestamp'])
        )

    def matches(self, entity: Optional[str] = None, actor_id: Optional[str] = None,
                outcome: Optional[str] = None, start_time: Optional[datetime] = None,
                end_time: Optional[datetime] = None) -> bool:
        if entity and self.entity != entity:
            return False
        if actor_id and self.actor_id != actor_id:
            return False
        if outcome and self.outcome != outcome:
            return False
        if start_time and self.timestamp < start_time:
            return False
        if end_time and self.timestamp > end_time:
            return False
        return True


class AuditLogger(ABC):
    """Abstract base class for decision audit logging"""

    @abstractmethod
    def record(self, event: DecisionEvent) -> None:
        """Record an audit event"""
        pass

    async def log(self, event: DecisionEvent) -> None:
        """Record an audit event from async code"""
        self.record(event)

    @abstractmethod
    async def get_events(
        self,
        entity: Optional[str] = None,
        actor_id: Optional[str] = None,
        outcome: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[DecisionEvent]:
        """Retrieve audit events with optional filtering"""
        pass

    async def close(self) -> None:
        """Close the audit logger and release resources"""
        pass


class MemoryAuditLogger(AuditLogger):
    """In-memory audit logger for development and testing"""

    def __init__(self, max_entries: int = 1000):
        self.max_entries = max_entries
        self.events: deque = deque(maxlen=max_entries)
        self._lock = threading.Lock()

    def record(self, event: DecisionEvent) -> None:
        with self._lock:
            self.events.append(event)

    async def get_events(
        self,
        entity: Optional[str] = None,
        actor_id: Optional[str] = None,
        outcome: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[DecisionEvent]:
        with self._lock:
            snapshot = list(self.events)
        return [
            event for event in snapshot
            if event.matches(entity, actor_id, outcome, start_time, end_time)
        ]


class FileAuditLogger(AuditLogger):
    """
    File-based audit logger writing one JSON object per line.

    ``record`` only serializes the event and queues the line; a daemon
    writer thread appends queued lines to the file, so the decision path
    never waits on disk. ``flush`` blocks until every queued line is
    written; ``get_events`` and ``close`` flush first.
    """

    def __init__(self, file_path: str):
        self.file_path = file_path
        self._queue: "queue.Queue[Optional[str]]" = queue.Queue()
        self._closed = threading.Event()
        self._lock = threading.Lock()
        self._worker = threading.Thread(target=self._run, name="policyauth-audit-writer", daemon=True)
        self._worker.start()

    def record(self, event: DecisionEvent) -> None:
        line = json.dumps(event.to_dict(), default=str)
        with self._lock:
            if not self._closed.is_set():
                self._queue.put(line)
                return
        # Writer is gone; keep the event anyway
        self._write(line)

    def flush(self) -> None:
        """Block until every queued event is on disk."""
        self._queue.join()

    def _write(self, line: str) -> None:
        try:
            with open(self.file_path, "a") as f:
                f.write(line + "\n")
        except OSError as e:
            # The decision already stands
            logger.error(f"Failed to write audit log {self.file_path}: {e}")

    def _run(self) -> None:
        while True:
            line = self._queue.get()
            try:
                if line is None:
                    return
                self._write(line)
            finally:
                self._queue.task_done()

    async def get_events(
        self,
        entity: Optional[str] = None,
        actor_id: Optional[str] = None,
        outcome: Optional[str] = None,
        start_time: Optional[datetime] = None,
        end_time: Optional[datetime] = None,
    ) -> List[DecisionEvent]:
        await asyncio.get_running_loop().run_in_executor(None, self.flush)
        events = []

        try:
            with open(self.file_path, "r") as f:
                for line in f:
                    try:
                        event = DecisionEvent.from_dict(json.loads(line.strip()))
                    except (json.JSONDecodeError, KeyError, ValueError):
                        logger.warning(f"Skipping malformed audit line in {self.file_path}")
                        continue

                    if event.matches(entity, actor_id, outcome, start_time, end_time):
                        events.append(event)
        except FileNotFoundError:
            pass

        return events

    def shutdown(self) -> None:
        """Write out the queue and stop the writer thread."""
        with self._lock:
            if self._closed.is_set():
                return
            self._closed.set()
            self._queue.put(None)
        self._worker.join()

    async def close(self) -> None:
        await asyncio.get_running_loop().run_in_executor(None, self.shutdown)


def create_audit_logger(logger_type: str = "memory", **kwargs) -> AuditLogger:
    """
    Factory function to create audit loggers

    Args:
        logger_type: Type of logger ("memory" or "file")
        **kwargs: Additional arguments for the logger

    Returns:
        AuditLogger instance
    """
    if logger_type == "memory":
        max_entries = kwargs.get("max_entries", 1000)
        return MemoryAuditLogger(max_entries)
    elif logger_type == "file":
        file_path = kwargs.get("file_path", "policyauth-audit.log")
        return FileAuditLogger(file_path)
    else:
        raise ValueError(f"Unknown logger type: {logger_type}")
