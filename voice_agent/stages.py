"""
Capability stage interfaces.

The orchestrator only talks to these shapes; which engine sits behind each
one (Silero, Deepgram, OpenAI, ElevenLabs, ... or a test fake) is decided
when the session is built.

    Detector     audio frames  -> SpeechSegment*
    Transcriber  SpeechSegment -> text
    Responder    transcript    -> AssistantReply | [ToolCallIntent]
    Synthesizer  UtteranceRequest -> Playback
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any, AsyncIterator, Callable, Optional, Protocol, Union

from .conversation import ConversationState
from .errors import SynthesisError
from .tools import ToolCallIntent, ToolRegistry


@dataclass(frozen=True)
class SpeechSegment:
    """A contiguous span of detected speech. Frames are opaque to the pipeline."""

    start_time: float
    end_time: float
    frames: tuple[Any, ...] = ()


@dataclass(frozen=True)
class UtteranceRequest:
    text: str
    interrupt: bool = False


@dataclass(frozen=True)
class AssistantReply:
    text: str


ResponderOutput = Union[AssistantReply, list[ToolCallIntent]]


class Detector(Protocol):
    async def load(self) -> None:
        """Load the model. Called from prewarm, before any audio flows."""
        ...

    def stream(self, audio: AsyncIterator[Any]) -> AsyncIterator[SpeechSegment]:
        """Segments detected in `audio`, one per end of speech."""
        ...

    async def aclose(self) -> None:
        ...


class Transcriber(Protocol):
    async def transcribe(self, segment: SpeechSegment) -> str:
        """Final transcript of `segment`. Raises TranscriptionError."""
        ...

    async def aclose(self) -> None:
        ...


class Responder(Protocol):
    async def generate(
        self,
        conversation: ConversationState,
        tools: ToolRegistry,
        *,
        allow_tools: bool = True,
    ) -> ResponderOutput:
        """Reply text, or tool calls to run first. Raises GenerationError."""
        ...

    async def aclose(self) -> None:
        ...


class Synthesizer(Protocol):
    def speak(self, request: UtteranceRequest) -> "Playback":
        ...

    async def aclose(self) -> None:
        ...


class Transport(Protocol):
    async def connect(self) -> None:
        ...

    async def wait_for_participant(self) -> Any:
        ...

    def audio_input(self, participant: Any) -> AsyncIterator[Any]:
        ...

    async def wait_for_disconnect(self) -> None:
        """Return once the participant or the room is gone."""
        ...

    async def aclose(self) -> None:
        ...


class Playback:
    """
    Handle on one utterance being synthesized and played.

    interrupt() cancels it; wait() returns once it finished or was
    interrupted and raises SynthesisError if it failed.
    """

    def __init__(self, request: UtteranceRequest, task: asyncio.Task):
        self.request = request
        self._task = task
        self._interrupted = False
        task.add_done_callback(self._retrieve)

    @staticmethod
    def _retrieve(task: asyncio.Task) -> None:
        # Failures are reported through wait() and done callbacks
        if not task.cancelled():
            task.exception()

    @property
    def interrupted(self) -> bool:
        return self._interrupted

    @property
    def error(self) -> Optional[BaseException]:
        if not self._task.done() or self._task.cancelled():
            return None
        return self._task.exception()

    def done(self) -> bool:
        return self._task.done()

    def cancelled(self) -> bool:
        return self._task.cancelled()

    def interrupt(self) -> bool:
        """Cancel playback. Returns False if it had already finished."""
        if self._task.done():
            return False
        self._interrupted = True
        self._task.cancel()
        return True

    def add_done_callback(self, fn: Callable[["Playback"], None]) -> None:
        self._task.add_done_callback(lambda _task: fn(self))

    async def finished(self) -> None:
        """Wait for the playback to end, whatever the outcome."""
        if not self._task.done():
            await asyncio.wait({self._task})

    async def wait(self) -> None:
        await self.finished()
        if self._task.cancelled():
            return
        exc = self._task.exception()
        if exc is None:
            return
        if isinstance(exc, SynthesisError):
            raise exc
        raise SynthesisError(str(exc) or type(exc).__name__) from exc


class BaseSynthesizer:
    """
    Interruption policy shared by synthesizers.

    interrupt=True requests cancel the current playback and start at once;
    interrupt=False requests queue behind it. Subclasses implement _play().
    """

    def __init__(self) -> None:
        self._current: Optional[Playback] = None

    @property
    def current(self) -> Optional[Playback]:
        return self._current

    def speak(self, request: UtteranceRequest) -> Playback:
        previous = self._current
        if request.interrupt and previous is not None:
            previous.interrupt()
            previous = None
        task = asyncio.create_task(self._run(request, previous))
        playback = Playback(request, task)
        self._current = playback
        return playback

    async def _run(self, request: UtteranceRequest, previous: Optional[Playback]) -> None:
        if previous is not None:
            await previous.finished()
        try:
            await self._play(request)
        except SynthesisError:
            raise
        except Exception as e:
            raise SynthesisError(str(e) or type(e).__name__) from e

    async def _play(self, request: UtteranceRequest) -> None:
        raise NotImplementedError

    async def aclose(self) -> None:
        if self._current is not None:
            self._current.interrupt()
            await self._current.finished()
