"""
Session context derived from the LiveKit job.

LiveKit job metadata is a freeform string, commonly JSON. From it (and the
room) we resolve the session id used to correlate logs and events, and the
scenario that picks the prompt and greeting.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional


@dataclass(frozen=True)
class SessionContext:
    session_id: str
    scenario: Optional[str] = None


def parse_job_metadata(metadata: Optional[str]) -> dict[str, Any]:
    """Returns {} if metadata is missing or not a JSON object."""
    if not metadata:
        return {}
    try:
        parsed = json.loads(metadata)
    except json.JSONDecodeError:
        return {}
    if not isinstance(parsed, dict):
        return {}
    return parsed


def _non_empty(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def resolve_session_id(*, room_name: str, job_metadata: Optional[str]) -> str:
    """Job metadata JSON key "session_id", else the room name."""
    md_session_id = _non_empty(parse_job_metadata(job_metadata).get("session_id"))
    return md_session_id or room_name or "unknown"


def build_session_context(*, room_name: str, job_metadata: Optional[str]) -> SessionContext:
    md = parse_job_metadata(job_metadata)
    return SessionContext(
        session_id=resolve_session_id(room_name=room_name, job_metadata=job_metadata),
        scenario=_non_empty(md.get("flow")),
    )
