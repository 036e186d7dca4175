"""
In-memory store for emitted events.

The worker itself never reads it back: the history is there for tests and
for inspecting a session from a debugger or REPL attached to the worker
process. Production consumers read the JSON event lines on stdout instead.

Bounded so a long-running worker does not grow without limit; the oldest
events are dropped first.
"""

from __future__ import annotations

from collections import deque
from typing import Any, Dict, List, Optional


class EventStore:
    """Bounded FIFO of event dicts, queryable by session and event type."""

    def __init__(self, max_events: int = 10000):
        self._events: deque[Dict[str, Any]] = deque(maxlen=max_events)
        self._max_events = max_events

    def store(self, event: Dict[str, Any]) -> None:
        self._events.append(dict(event))

    def query(
        self,
        session_id: Optional[str] = None,
        event_type: Optional[str] = None,
        correlation_id: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Events matching every given filter, oldest first.

        Args:
            session_id: Only events of this session
            event_type: Exact event type match
            correlation_id: Only events of this turn
            limit: Maximum number of events returned
        """
        results: List[Dict[str, Any]] = []
        for event in self._events:
            if session_id and event.get("session_id") != session_id:
                continue
            if event_type and event.get("event_type") != event_type:
                continue
            if correlation_id and event.get("correlation_id") != correlation_id:
                continue
            results.append(event)
            if limit and len(results) >= limit:
                break
        return results

    def clear(self) -> None:
        self._events.clear()

    def __len__(self) -> int:
        return len(self._events)


# Global event store instance
event_store = EventStore()
