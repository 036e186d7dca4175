"""
Session orchestrator: one conversation, end to end.

    participant joins -> greeting
    Detector ──segments──> queue ──> turn loop:
        TRANSCRIBING -> RESPONDING (<-> TOOL_CALLING) -> SYNTHESIZING -> IDLE

The detector is consumed by its own task for the whole session so the user
can barge in while a reply is still playing: a segment that arrives during
playback interrupts it before the segment is queued, and the next utterance
is sent with interrupt=True.

Only the orchestrator task touches the ConversationState and the
ToolRegistry, so no locks are needed.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, AsyncIterator, Awaitable, Optional

from logging_setup import Component, get_logger

from .config import SessionSettings
from .conversation import ConversationState
from .errors import (
    GenerationError,
    PrewarmError,
    SynthesisError,
    ToolLoopExceeded,
    TranscriptionError,
    TransportConnectionError,
    get_user_message,
)
from .observability import TurnObserver
from .stages import (
    AssistantReply,
    Detector,
    Playback,
    Responder,
    SpeechSegment,
    Synthesizer,
    Transcriber,
    Transport,
    UtteranceRequest,
)
from .tools import ToolInvoker, ToolRegistry


class TurnState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    TRANSCRIBING = "transcribing"
    RESPONDING = "responding"
    TOOL_CALLING = "tool_calling"
    SYNTHESIZING = "synthesizing"
    ENDED = "ended"


class SessionOrchestrator:
    """
    Drives one session: prewarm, wait for a participant, greet, then run the
    turn loop until the participant leaves or aclose() is called.
    """

    def __init__(
        self,
        settings: SessionSettings,
        *,
        detector: Detector,
        transcriber: Transcriber,
        responder: Responder,
        synthesizer: Synthesizer,
        tools: Optional[ToolRegistry] = None,
        session_id: str = "unknown",
        observer: Optional[TurnObserver] = None,
    ):
        self.settings = settings
        self.session_id = session_id
        self.conversation = ConversationState(settings.system_prompt)
        self.tools = tools if tools is not None else ToolRegistry()

        self._detector = detector
        self._transcriber = transcriber
        self._responder = responder
        self._synthesizer = synthesizer

        self.logger = get_logger(Component.ORCHESTRATOR, session_id=session_id)
        self.observer = observer or TurnObserver(session_id)
        self._invoker = ToolInvoker(self.tools, logger=get_logger(Component.TOOLS, session_id=session_id))

        self._state = TurnState.IDLE
        self._segments: asyncio.Queue[SpeechSegment] = asyncio.Queue()
        self._playback: Optional[Playback] = None
        self._barge_in_pending = False

        self._prewarm_task: Optional[asyncio.Future] = None
        self._closing = asyncio.Event()
        self._ended = asyncio.Event()
        self._running = False

    @property
    def state(self) -> TurnState:
        return self._state

    def _transition(self, new_state: TurnState) -> None:
        if new_state == self._state:
            return
        old_state = self._state
        self._state = new_state
        self.observer.state_changed(old_state.value, new_state.value)

    # --- Lifecycle ---

    async def prewarm(self) -> None:
        """
        Load the detector model ahead of the first participant.

        Concurrent callers share one load. Failure is fatal (PrewarmError).
        """
        if self._prewarm_task is None:
            self._prewarm_task = asyncio.ensure_future(self._load_detector())
        await self._prewarm_task

    async def _load_detector(self) -> None:
        t_start = self.observer.mark()
        try:
            await self._detector.load()
        except Exception as e:
            self.logger.critical(
                "Detector prewarm failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            raise PrewarmError(f"detector failed to load: {e}") from e
        self.logger.info("Detector prewarmed", latency_ms=self.observer.elapsed_ms(t_start))

    async def run(self, transport: Transport) -> None:
        """Run the session until the participant leaves or aclose() is called."""
        self.tools.freeze()
        self._running = True
        tasks: list[asyncio.Task] = []
        reason = "shutdown"
        try:
            await self.prewarm()

            await transport.connect()
            self.logger.info("Waiting for participant")
            participant = await self._unless_closing(transport.wait_for_participant())
            if participant is None:
                return

            identity = getattr(participant, "identity", None)
            self.logger.info("Starting assistant", participant_identity=identity)
            self.observer.session_started(identity)

            # Fixed opening line; may race with the first user utterance
            self._speak(self.settings.greeting, interrupt=True)

            listener = asyncio.create_task(self._listen(transport.audio_input(participant)))
            turn_loop = asyncio.create_task(self._turn_loop())
            disconnect = asyncio.create_task(transport.wait_for_disconnect())
            closing = asyncio.create_task(self._closing.wait())
            tasks = [listener, turn_loop, disconnect, closing]

            done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
            if disconnect in done:
                reason = "participant_disconnected"
            elif listener in done:
                reason = "audio_ended"
            for task in (listener, turn_loop, disconnect):
                if task in done and not task.cancelled() and task.exception() is not None:
                    raise task.exception()
        except TransportConnectionError as e:
            reason = "connection_lost"
            self.logger.warning(
                "Transport connection lost; ending session",
                error=str(e),
                error_type=type(e).__name__,
            )
        finally:
            await self._teardown(tasks, transport)
            self.logger.info("Session ended", reason=reason, turns=len(self.conversation))
            self.observer.session_ended(reason)
            self._ended.set()

    async def aclose(self) -> None:
        """Request shutdown and wait for teardown. Safe to call more than once."""
        self._closing.set()
        if self._running:
            await self._ended.wait()
        else:
            self._transition(TurnState.ENDED)

    async def _unless_closing(self, aw: Awaitable[Any]) -> Optional[Any]:
        """Await `aw` unless shutdown is requested first (then returns None)."""
        task = asyncio.ensure_future(aw)
        closing = asyncio.create_task(self._closing.wait())
        try:
            await asyncio.wait({task, closing}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for t in (task, closing):
                if not t.done():
                    t.cancel()
            await asyncio.gather(task, closing, return_exceptions=True)
        if task.cancelled():
            return None
        return task.result()

    async def _teardown(self, tasks: list[asyncio.Task], transport: Transport) -> None:
        for task in tasks:
            if not task.done():
                task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._playback is not None:
            self._playback.interrupt()
            await self._playback.finished()

        for name, close in (
            ("detector", self._detector.aclose),
            ("transcriber", self._transcriber.aclose),
            ("responder", self._responder.aclose),
            ("synthesizer", self._synthesizer.aclose),
            ("transport", transport.aclose),
        ):
            try:
                await close()
            except Exception as e:
                self.logger.warning(
                    "Failed to close stage",
                    stage=name,
                    error=str(e),
                    error_type=type(e).__name__,
                )

        self._transition(TurnState.ENDED)
        self._running = False

    # --- Listener (always on) ---

    async def _listen(self, audio: AsyncIterator[Any]) -> None:
        async for segment in self._detector.stream(audio):
            if self._playback is not None and not self._playback.done():
                self.observer.barge_in_detected()
                self._playback.interrupt()
                self._barge_in_pending = True
            self._segments.put_nowait(segment)
        self.logger.info("Inbound audio ended")

    # --- Turn loop ---

    async def _turn_loop(self) -> None:
        while True:
            self._transition(TurnState.IDLE)
            segment = await self._segments.get()
            self._transition(TurnState.LISTENING)
            await self._handle_segment(segment)

    async def _handle_segment(self, segment: SpeechSegment) -> None:
        self.observer.new_turn()

        # An interrupted utterance must be fully stopped before anything new is said
        if self._playback is not None and self._playback.interrupted:
            await self._playback.finished()

        self._transition(TurnState.TRANSCRIBING)
        t_start = self.observer.mark()
        try:
            text = (await self._transcriber.transcribe(segment)).strip()
        except TranscriptionError as e:
            self.observer.turn_abandoned("transcription_failed", e)
            await self._say(get_user_message(e))
            return
        if not text:
            self.observer.turn_abandoned("empty_transcript")
            return
        self.observer.stt_final(text, self.observer.elapsed_ms(t_start))
        self.logger.debug_pii("User turn", transcript=text)

        self.conversation.append_user(text)
        self._transition(TurnState.RESPONDING)
        reply = await self._respond()
        self.conversation.append_assistant(reply)

        await self._say(reply)

    async def _respond(self) -> str:
        """Run the responder, executing tool rounds until it answers in text."""
        rounds = 0
        while True:
            allow_tools = len(self.tools) > 0
            self.observer.llm_request(rounds + 1, allow_tools)
            try:
                output = await self._responder.generate(
                    self.conversation, self.tools, allow_tools=allow_tools
                )
                if isinstance(output, AssistantReply) and not output.text.strip():
                    raise GenerationError("responder returned an empty reply")
            except GenerationError as e:
                self.observer.llm_response(error=e)
                return get_user_message(e)

            if isinstance(output, AssistantReply):
                self.observer.llm_response(text=output.text)
                return output.text.strip()

            intents = list(output)
            self.observer.llm_response(tool_calls=len(intents))
            if not intents:
                e = GenerationError("responder returned neither text nor tool calls")
                self.logger.warning("Empty responder output", error=str(e))
                return get_user_message(e)

            if rounds >= self.settings.max_tool_rounds:
                exceeded = ToolLoopExceeded(self.settings.max_tool_rounds)
                self.observer.tool_loop_exceeded(exceeded.limit)
                return get_user_message(exceeded)
            rounds += 1

            self._transition(TurnState.TOOL_CALLING)
            results = await self._invoker.invoke_all(intents)
            for result in results:
                self.conversation.append_tool(result.intent, result.output, is_error=result.is_error)
                self.observer.tool_called(result)
            self._transition(TurnState.RESPONDING)

    # --- Speech output ---

    def _speak(self, text: str, *, interrupt: bool) -> Playback:
        request = UtteranceRequest(text=text, interrupt=interrupt)
        started_at = self.observer.tts_started(text, interrupt)
        playback = self._synthesizer.speak(request)
        self._playback = playback
        playback.add_done_callback(lambda p: self._on_playback_done(p, started_at))
        return playback

    def _on_playback_done(self, playback: Playback, started_at: float) -> None:
        if playback.interrupted or playback.cancelled():
            self.observer.tts_stopped(started_at=started_at, interrupted=True)
        elif playback.error is not None:
            self.observer.tts_failed(playback.error)
        else:
            self.observer.tts_stopped(started_at=started_at, interrupted=False)

    async def _say(self, text: str) -> None:
        """Speak `text` as the answer of the current turn and wait until it ends."""
        self._transition(TurnState.SYNTHESIZING)
        interrupt = self._barge_in_pending
        self._barge_in_pending = False
        playback = self._speak(text, interrupt=interrupt)
        try:
            await playback.wait()
        except SynthesisError as e:
            self.logger.warning(
                "Utterance not played; continuing",
                error=str(e),
                error_type=type(e).__name__,
            )
