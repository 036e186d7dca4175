"""
LiveKit worker for the voice assistant.

Silero (VAD) is loaded once per worker process in prewarm; each job then
builds its STT / LLM / TTS stages from the configured providers and hands
them to a SessionOrchestrator.
"""
import sys

from livekit.agents import JobContext, JobProcess, WorkerOptions, cli
from livekit.plugins import silero

from logging_setup import Component, get_logger, setup_logging
from .config import get_config, load_env_files
from .context import build_session_context
from .errors import ConfigurationError
from .instructions import get_greeting_text, get_instructions
from .livekit_stages import build_stages
from .observability import TurnObserver
from .orchestrator import SessionOrchestrator
from .tools import ToolRegistry
from .weather import weather_tool

load_env_files()

logger = get_logger(Component.VOICE_AGENT)


def prewarm(proc: JobProcess):
    """
    Load the VAD model once per worker process.

    LiveKit Agents runs this before the process accepts jobs.
    """
    config = get_config()
    proc.userdata["vad"] = silero.VAD.load(
        activation_threshold=config.vad_activation_threshold,
        min_silence_duration=config.vad_min_silence_duration,
    )


async def entrypoint(ctx: JobContext):
    """Run one assistant session in the job's room."""
    config = get_config()

    session_ctx = build_session_context(
        room_name=ctx.room.name or "unknown",
        job_metadata=getattr(ctx.job, "metadata", None),
    )
    session_id = session_ctx.session_id
    session_logger = logger.with_session(session_id)

    # Enrich LiveKit's own job logs with correlation context
    ctx.log_context_fields = {
        "room_name": ctx.room.name,
        "session_id": session_id,
        "scenario": session_ctx.scenario,
    }

    session_logger.debug(
        "Voice agent starting",
        room=ctx.room.name,
        job_id=ctx.job.id,
        scenario=session_ctx.scenario or config.scenario,
        stt_provider=config.stt_provider,
        llm_provider=config.llm_provider,
        tts_provider=config.tts_provider,
    )

    stages = build_stages(config, ctx, vad=ctx.proc.userdata.get("vad"))

    tools = ToolRegistry()
    tools.register(weather_tool(config.weather_api_url))

    settings = config.session_settings(
        system_prompt=get_instructions(flow=session_ctx.scenario),
        greeting=get_greeting_text(flow=session_ctx.scenario),
    )
    orchestrator = SessionOrchestrator(
        settings,
        detector=stages.detector,
        transcriber=stages.transcriber,
        responder=stages.responder,
        synthesizer=stages.synthesizer,
        tools=tools,
        session_id=session_id,
        observer=TurnObserver(session_id),
    )
    ctx.add_shutdown_callback(orchestrator.aclose)

    await orchestrator.run(stages.transport)


def main() -> None:
    setup_logging(level="INFO", use_json=True)
    try:
        config = get_config()
    except ConfigurationError as e:
        logger.critical("Invalid configuration", error=str(e), missing=e.missing)
        sys.exit(1)
    setup_logging(level=config.log_level, use_json=True)

    cli.run_app(
        WorkerOptions(
            entrypoint_fnc=entrypoint,
            prewarm_fnc=prewarm,
            # Must match the agentName of explicit dispatch rules, if any
            agent_name=config.agent_name,
        )
    )


if __name__ == "__main__":
    main()
