"""
LiveKit-backed transport and capability stages.

Each class adapts one LiveKit Agents building block to the stage interfaces
in stages.py:

- LiveKitTransport    JobContext / rtc.Room (inbound audio, published track)
- SileroDetector      silero.VAD
- PluginTranscriber   any stt.STT (Deepgram, Groq Whisper)
- PluginResponder     any llm.LLM (OpenAI, Groq), tools as raw JSON schemas
- PluginSynthesizer   any tts.TTS (ElevenLabs, Azure)

Provider errors are mapped to the stage's error type here, so the
orchestrator never sees SDK exceptions.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, AsyncIterator, Optional

from livekit import rtc
from livekit.agents import APIError, AutoSubscribe, JobContext, llm, stt, tts
from livekit.agents import vad as agents_vad
from livekit.plugins import azure, deepgram, elevenlabs, groq, openai, silero

from logging_setup import Component, get_logger

from .config import AgentConfig
from .conversation import ChatRole, ConversationState
from .errors import (
    GenerationError,
    PrewarmError,
    SynthesisError,
    TranscriptionError,
    TransportConnectionError,
)
from .stages import (
    AssistantReply,
    BaseSynthesizer,
    ResponderOutput,
    SpeechSegment,
    UtteranceRequest,
)
from .tools import ToolCallIntent, ToolDescriptor, ToolRegistry

INPUT_SAMPLE_RATE = 16000


class LiveKitTransport:
    """Room connection, the participant's microphone in, one audio track out."""

    def __init__(self, ctx: JobContext, *, output_sample_rate: int, output_channels: int = 1):
        self._ctx = ctx
        self._output_sample_rate = output_sample_rate
        self._output_channels = output_channels
        self._participant: Optional[rtc.RemoteParticipant] = None
        self._disconnected = asyncio.Event()
        self.audio_source: Optional[rtc.AudioSource] = None
        self.logger = get_logger(Component.TRANSPORT)

    async def connect(self) -> None:
        try:
            await self._ctx.connect(auto_subscribe=AutoSubscribe.AUDIO_ONLY)
        except Exception as e:
            raise TransportConnectionError(f"failed to connect to room: {e}") from e
        self._ctx.room.on("participant_disconnected", self._on_participant_disconnected)
        self._ctx.room.on("disconnected", self._on_room_disconnected)
        self.logger.debug("Connected to room", room=self._ctx.room.name)

    async def wait_for_participant(self) -> rtc.RemoteParticipant:
        participant = await self._ctx.wait_for_participant()
        self._participant = participant
        await self._publish_output()
        return participant

    async def _publish_output(self) -> None:
        self.audio_source = rtc.AudioSource(self._output_sample_rate, self._output_channels)
        track = rtc.LocalAudioTrack.create_audio_track("assistant-voice", self.audio_source)
        options = rtc.TrackPublishOptions(source=rtc.TrackSource.SOURCE_MICROPHONE)
        try:
            await self._ctx.room.local_participant.publish_track(track, options)
        except Exception as e:
            raise TransportConnectionError(f"failed to publish audio track: {e}") from e
        self.logger.debug(
            "Audio track published",
            sample_rate=self._output_sample_rate,
            num_channels=self._output_channels,
        )

    def _on_participant_disconnected(self, participant: rtc.RemoteParticipant) -> None:
        if self._participant is not None and participant.identity == self._participant.identity:
            self.logger.info("Participant disconnected", participant_identity=participant.identity)
            self._disconnected.set()

    def _on_room_disconnected(self, *_args: Any) -> None:
        self.logger.info("Room disconnected")
        self._disconnected.set()

    async def audio_input(self, participant: rtc.RemoteParticipant) -> AsyncIterator[rtc.AudioFrame]:
        stream = rtc.AudioStream.from_participant(
            participant=participant,
            track_source=rtc.TrackSource.SOURCE_MICROPHONE,
            sample_rate=INPUT_SAMPLE_RATE,
            num_channels=1,
        )
        try:
            async for event in stream:
                yield event.frame
        finally:
            await stream.aclose()

    async def wait_for_disconnect(self) -> None:
        await self._disconnected.wait()

    async def aclose(self) -> None:
        if self.audio_source is not None:
            await self.audio_source.aclose()
            self.audio_source = None


class SileroDetector:
    """Silero VAD; yields one SpeechSegment per END_OF_SPEECH event."""

    def __init__(
        self,
        *,
        activation_threshold: float = 0.5,
        min_silence_duration: float = 0.55,
        vad: Optional[silero.VAD] = None,
    ):
        self._activation_threshold = activation_threshold
        self._min_silence_duration = min_silence_duration
        self._vad = vad
        self.logger = get_logger(Component.DETECTOR)

    async def load(self) -> None:
        if self._vad is not None:
            return
        self._vad = await asyncio.to_thread(
            silero.VAD.load,
            activation_threshold=self._activation_threshold,
            min_silence_duration=self._min_silence_duration,
        )
        self.logger.debug(
            "Silero VAD loaded",
            activation_threshold=self._activation_threshold,
            min_silence_duration=self._min_silence_duration,
        )

    async def stream(self, audio: AsyncIterator[rtc.AudioFrame]) -> AsyncIterator[SpeechSegment]:
        if self._vad is None:
            raise PrewarmError("detector used before load()")
        vad_stream = self._vad.stream()

        async def _forward() -> None:
            try:
                async for frame in audio:
                    vad_stream.push_frame(frame)
            finally:
                vad_stream.end_input()

        forward = asyncio.create_task(_forward())
        try:
            async for event in vad_stream:
                if event.type == agents_vad.VADEventType.START_OF_SPEECH:
                    self.logger.debug("Speech started", timestamp=event.timestamp)
                elif event.type == agents_vad.VADEventType.END_OF_SPEECH:
                    self.logger.debug(
                        "Speech ended",
                        timestamp=event.timestamp,
                        speech_duration=event.speech_duration,
                    )
                    yield SpeechSegment(
                        start_time=max(0.0, event.timestamp - event.speech_duration),
                        end_time=event.timestamp,
                        frames=tuple(event.frames),
                    )
            # Surface failures of the inbound audio side
            await forward
        finally:
            if not forward.done():
                forward.cancel()
            await asyncio.gather(forward, return_exceptions=True)
            await vad_stream.aclose()

    async def aclose(self) -> None:
        # The model is shared by the worker process; nothing to release per session
        return None


class PluginTranscriber:
    """Non-streaming recognition of one segment with a LiveKit STT plugin."""

    def __init__(self, engine: stt.STT):
        self._stt = engine
        self.logger = get_logger(Component.TRANSCRIBER)

    async def transcribe(self, segment: SpeechSegment) -> str:
        if not segment.frames:
            raise TranscriptionError("speech segment contains no audio")
        try:
            event = await self._stt.recognize(buffer=list(segment.frames))
        except APIError as e:
            raise TranscriptionError(f"STT provider error: {e}") from e
        except Exception as e:
            raise TranscriptionError(f"STT failed: {type(e).__name__}: {e}") from e
        if not event.alternatives:
            return ""
        return event.alternatives[0].text

    async def aclose(self) -> None:
        await self._stt.aclose()


def _raw_function_tool(descriptor: ToolDescriptor) -> llm.RawFunctionTool:
    async def _call(raw_arguments: dict[str, object]) -> str:
        return await descriptor.handler(dict(raw_arguments))

    return llm.function_tool(
        _call,
        raw_schema={
            "name": descriptor.name,
            "description": descriptor.description,
            "parameters": descriptor.json_schema(),
        },
    )


def to_chat_context(conversation: ConversationState) -> llm.ChatContext:
    """Render the transcript in LiveKit's chat format."""
    chat_ctx = llm.ChatContext.empty()
    for turn in conversation:
        if turn.role == ChatRole.TOOL:
            call = turn.tool_call
            chat_ctx.items.append(
                llm.FunctionCall(
                    call_id=call.call_id,
                    name=call.name,
                    arguments=json.dumps(dict(call.arguments)) if isinstance(call.arguments, dict) else str(call.arguments),
                )
            )
            chat_ctx.items.append(
                llm.FunctionCallOutput(
                    call_id=call.call_id,
                    name=call.name,
                    output=turn.content,
                    is_error=turn.is_error,
                )
            )
        else:
            chat_ctx.add_message(role=turn.role.value, content=turn.content)
    return chat_ctx


class PluginResponder:
    """One LLM round: either reply text or the tool calls it asked for."""

    def __init__(self, engine: llm.LLM):
        self._llm = engine
        self.logger = get_logger(Component.RESPONDER)

    async def generate(
        self,
        conversation: ConversationState,
        tools: ToolRegistry,
        *,
        allow_tools: bool = True,
    ) -> ResponderOutput:
        chat_ctx = to_chat_context(conversation)
        function_tools = [_raw_function_tool(t) for t in tools] if allow_tools else []

        parts: list[str] = []
        intents: list[ToolCallIntent] = []
        try:
            async with self._llm.chat(chat_ctx=chat_ctx, tools=function_tools) as stream:
                async for chunk in stream:
                    if chunk.delta is None:
                        continue
                    if chunk.delta.content:
                        parts.append(chunk.delta.content)
                    for call in chunk.delta.tool_calls or []:
                        intents.append(self._intent(call))
        except APIError as e:
            raise GenerationError(f"LLM provider error: {e}") from e
        except Exception as e:
            raise GenerationError(f"LLM failed: {type(e).__name__}: {e}") from e

        if intents:
            return intents
        return AssistantReply(text="".join(parts))

    def _intent(self, call: llm.FunctionToolCall) -> ToolCallIntent:
        try:
            arguments = json.loads(call.arguments or "{}")
        except json.JSONDecodeError:
            self.logger.warning("Tool call arguments are not valid JSON", tool=call.name)
            # Left as the raw string; validation rejects it as a non-object
            arguments = call.arguments
        return ToolCallIntent(name=call.name, arguments=arguments, call_id=call.call_id)

    async def aclose(self) -> None:
        await self._llm.aclose()


class PluginSynthesizer(BaseSynthesizer):
    """Synthesizes with a LiveKit TTS plugin into the transport's audio track."""

    def __init__(self, engine: tts.TTS, transport: LiveKitTransport):
        super().__init__()
        self._tts = engine
        self._transport = transport
        self.logger = get_logger(Component.SYNTHESIZER)

    async def _play(self, request: UtteranceRequest) -> None:
        source = self._transport.audio_source
        if source is None:
            raise SynthesisError("no audio track published")
        try:
            async with self._tts.synthesize(request.text) as stream:
                async for audio in stream:
                    await source.capture_frame(audio.frame)
            await source.wait_for_playout()
        except asyncio.CancelledError:
            source.clear_queue()
            raise
        except APIError as e:
            raise SynthesisError(f"TTS provider error: {e}") from e

    async def aclose(self) -> None:
        try:
            await super().aclose()
        finally:
            await self._tts.aclose()


# --- Provider selection ---

def build_stt(config: AgentConfig) -> stt.STT:
    if config.stt_provider == "groq":
        return groq.STT(model=config.groq_model_stt, api_key=config.groq_api_key)
    return deepgram.STT(api_key=config.deepgram_api_key)


def build_llm(config: AgentConfig) -> llm.LLM:
    if config.llm_provider == "groq":
        return groq.LLM(model=config.groq_model_llm, api_key=config.groq_api_key)
    return openai.LLM(model=config.openai_model, api_key=config.openai_api_key)


def build_tts(config: AgentConfig) -> tts.TTS:
    if config.tts_provider == "azure":
        return azure.TTS(
            speech_key=config.azure_speech_key,
            speech_region=config.azure_speech_region,
            voice=config.azure_speech_voice,
        )
    return elevenlabs.TTS(api_key=config.eleven_api_key)


@dataclass
class LiveKitStages:
    transport: LiveKitTransport
    detector: SileroDetector
    transcriber: PluginTranscriber
    responder: PluginResponder
    synthesizer: PluginSynthesizer


def build_stages(
    config: AgentConfig,
    ctx: JobContext,
    *,
    vad: Optional[silero.VAD] = None,
) -> LiveKitStages:
    """Wire the providers selected in `config` to the room in `ctx`."""
    tts_engine = build_tts(config)
    transport = LiveKitTransport(
        ctx,
        output_sample_rate=tts_engine.sample_rate,
        output_channels=tts_engine.num_channels,
    )
    return LiveKitStages(
        transport=transport,
        detector=SileroDetector(
            activation_threshold=config.vad_activation_threshold,
            min_silence_duration=config.vad_min_silence_duration,
            vad=vad,
        ),
        transcriber=PluginTranscriber(build_stt(config)),
        responder=PluginResponder(build_llm(config)),
        synthesizer=PluginSynthesizer(tts_engine, transport),
    )
