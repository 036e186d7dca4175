"""
Turn-level observability for one session.

The orchestrator reports what happens in a turn; this module turns it into
structured events (stdout + event store) and log lines. Transcript and
response text are only carried on events flagged as PII.

Event types:
- session.started / session.ended
- turn.state_changed / turn.started / turn.abandoned
- stt.final
- llm.request / llm.response
- tool.called / tool.loop_exceeded
- barge_in.detected
- tts.started / tts.stopped / tts.failed
"""

from __future__ import annotations

import time
from typing import Any, Callable, Optional

from logging_setup import Component as LogComponent, get_logger
from observability.events import Component as EventComponent, EventEmitter, Severity, pii_fields

from .tools import ToolResult


class TurnObserver:
    """Emits turn lifecycle events for one session."""

    def __init__(self, session_id: str, *, now: Callable[[], float] = time.perf_counter):
        self.session_id = session_id
        self.emitter = EventEmitter(EventComponent.ORCHESTRATOR)
        self.logger = get_logger(LogComponent.ORCHESTRATOR, session_id=session_id)
        self._now = now

        self.current_turn_id: Optional[str] = None
        self._turn_count = 0
        self._llm_request_ts: Optional[float] = None
        self._barge_in_ts: Optional[float] = None

    def _emit(self, event_type: str, severity: Severity = Severity.INFO, **fields: Any) -> None:
        fields.setdefault("correlation_id", self.current_turn_id or self.session_id)
        self.emitter.emit(event_type, session_id=self.session_id, severity=severity, **fields)

    def elapsed_ms(self, since: float) -> int:
        return int((self._now() - since) * 1000)

    def mark(self) -> float:
        return self._now()

    # --- Session ---

    def session_started(self, participant_identity: Optional[str]) -> None:
        self._emit("session.started", participant=participant_identity)

    def session_ended(self, reason: str) -> None:
        self._emit("session.ended", reason=reason)

    # --- Turns ---

    def new_turn(self) -> str:
        self._turn_count += 1
        self.current_turn_id = f"turn_{self._turn_count}"
        self._emit("turn.started", segment_count=self._turn_count)
        return self.current_turn_id

    def state_changed(self, from_state: str, to_state: str) -> None:
        self.logger.debug("Turn state changed", from_state=from_state, to_state=to_state)
        self._emit(
            "turn.state_changed",
            severity=Severity.DEBUG,
            from_state=from_state,
            to_state=to_state,
        )

    def turn_abandoned(self, reason: str, error: Optional[BaseException] = None) -> None:
        extra: dict[str, Any] = {"reason": reason}
        if error is not None:
            extra["error"] = str(error)
            extra["error_type"] = type(error).__name__
        self.logger.warning("Turn abandoned", turn_id=self.current_turn_id, **extra)
        self._emit("turn.abandoned", severity=Severity.WARN, **extra)

    # --- STT ---

    def stt_final(self, text: str, latency_ms: int) -> None:
        self.logger.info(
            "STT call completed",
            turn_id=self.current_turn_id,
            transcript_length=len(text),
            latency_ms=latency_ms,
        )
        self._emit(
            "stt.final",
            pii=pii_fields("transcript_text"),
            transcript_text=text,
            transcript_length=len(text),
            latency_ms=latency_ms,
        )

    # --- LLM ---

    def llm_request(self, round_number: int, allow_tools: bool) -> None:
        self._llm_request_ts = self._now()
        self._emit("llm.request", round=round_number, allow_tools=allow_tools)

    def llm_response(self, *, text: Optional[str] = None, tool_calls: int = 0, error: Optional[BaseException] = None) -> None:
        extra: dict[str, Any] = {"tool_calls": tool_calls}
        if self._llm_request_ts is not None:
            extra["latency_ms"] = self.elapsed_ms(self._llm_request_ts)
            self._llm_request_ts = None
        if error is not None:
            extra["error"] = str(error)
            extra["error_type"] = type(error).__name__
            self.logger.error("LLM call failed", turn_id=self.current_turn_id, **extra)
            self._emit("llm.response", severity=Severity.ERROR, **extra)
            return
        pii = None
        if text:
            extra["output_text"] = text
            pii = pii_fields("output_text")
        self.logger.info(
            "LLM call completed",
            turn_id=self.current_turn_id,
            tool_calls=tool_calls,
            latency_ms=extra.get("latency_ms"),
        )
        self._emit("llm.response", pii=pii, **extra)

    # --- Tools ---

    def tool_called(self, result: ToolResult) -> None:
        self._emit(
            "tool.called",
            severity=Severity.WARN if result.is_error else Severity.INFO,
            tool=result.intent.name,
            call_id=result.intent.call_id,
            is_error=result.is_error,
            latency_ms=result.latency_ms,
        )

    def tool_loop_exceeded(self, limit: int) -> None:
        self.logger.warning("Tool call limit reached; answering directly", turn_id=self.current_turn_id, limit=limit)
        self._emit("tool.loop_exceeded", severity=Severity.WARN, limit=limit)

    # --- TTS ---

    def barge_in_detected(self) -> None:
        self._barge_in_ts = self._now()
        self.logger.info("Barge-in detected", turn_id=self.current_turn_id)
        self._emit("barge_in.detected")

    def tts_started(self, text: str, interrupt: bool) -> float:
        self._emit(
            "tts.started",
            pii=pii_fields("text"),
            text=text,
            text_length=len(text),
            interrupt=interrupt,
        )
        return self._now()

    def tts_stopped(self, *, started_at: float, interrupted: bool) -> None:
        cause = "completed"
        extra: dict[str, Any] = {}
        if interrupted:
            cause = "barge_in" if self._barge_in_ts is not None else "interrupted"
            if self._barge_in_ts is not None:
                extra["time_to_tts_stop_ms"] = self.elapsed_ms(self._barge_in_ts)
                self._barge_in_ts = None
        extra["latency_ms"] = self.elapsed_ms(started_at)
        self.logger.info("TTS call stopped", turn_id=self.current_turn_id, cause=cause, **extra)
        self._emit("tts.stopped", cause=cause, **extra)

    def tts_failed(self, error: BaseException) -> None:
        self.logger.error(
            "TTS call failed",
            turn_id=self.current_turn_id,
            error=str(error),
            error_type=type(error).__name__,
        )
        self._emit(
            "tts.failed",
            severity=Severity.ERROR,
            error=str(error),
            error_type=type(error).__name__,
        )
