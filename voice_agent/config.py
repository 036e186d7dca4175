"""
Voice agent configuration.

Loads transport credentials, provider selection and one credential per
selected AI provider from environment variables. Validation happens once, at
startup: anything missing is reported in a single ConfigurationError.
"""
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

from .errors import ConfigurationError

STT_PROVIDERS = ("deepgram", "groq")
LLM_PROVIDERS = ("openai", "groq")
TTS_PROVIDERS = ("elevenlabs", "azure")

# Credentials each provider needs, by environment variable
PROVIDER_CREDENTIALS = {
    ("stt", "deepgram"): ("DEEPGRAM_API_KEY",),
    ("stt", "groq"): ("GROQ_API_KEY",),
    ("llm", "openai"): ("OPENAI_API_KEY",),
    ("llm", "groq"): ("GROQ_API_KEY",),
    ("tts", "elevenlabs"): ("ELEVEN_API_KEY",),
    ("tts", "azure"): ("AZURE_SPEECH_KEY", "AZURE_SPEECH_REGION"),
}


def load_env_files(root: Optional[Path] = None) -> None:
    """
    Load .env.local / .env_local from the repo root (local dev convenience).

    Never overrides variables that are already exported.
    """
    root = root or Path(__file__).parent.parent
    for name in (".env.local", ".env_local"):
        p = root / name
        if p.exists():
            load_dotenv(p, override=False)


def _strip_comment(value: Optional[str]) -> str:
    """'300  # comment' -> '300'"""
    if not value:
        return ""
    if "#" in value:
        value = value.split("#")[0]
    return value.strip()


def _parse_int_env(key: str, default: int) -> int:
    value = _strip_comment(os.environ.get(key))
    if not value:
        return default
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be an integer, got {value!r}")


def _parse_float_env(key: str, default: float) -> float:
    value = _strip_comment(os.environ.get(key))
    if not value:
        return default
    try:
        return float(value)
    except ValueError:
        raise ConfigurationError(f"{key} must be a number, got {value!r}")


def _provider_env(key: str, default: str, choices: tuple[str, ...]) -> str:
    value = _strip_comment(os.environ.get(key)).lower() or default
    if value not in choices:
        raise ConfigurationError(
            f"{key} must be one of {', '.join(choices)}, got {value!r}"
        )
    return value


@dataclass(frozen=True)
class SessionSettings:
    """What the orchestrator needs to run one session."""

    system_prompt: str
    greeting: str = "Hey, how can I help you today"
    max_tool_rounds: int = 5

    def __post_init__(self):
        if self.max_tool_rounds < 1:
            raise ConfigurationError("max_tool_rounds must be at least 1")


@dataclass
class AgentConfig:
    """Voice agent configuration."""

    # LiveKit
    livekit_url: str
    livekit_api_key: str
    livekit_api_secret: str

    # Provider selection
    stt_provider: str = "deepgram"
    llm_provider: str = "openai"
    tts_provider: str = "elevenlabs"

    # Provider credentials (only the selected ones are required)
    deepgram_api_key: Optional[str] = None
    openai_api_key: Optional[str] = None
    groq_api_key: Optional[str] = None
    eleven_api_key: Optional[str] = None
    azure_speech_key: Optional[str] = None
    azure_speech_region: Optional[str] = None

    # Models / voices
    openai_model: str = "gpt-4o-mini"
    groq_model_llm: str = "qwen/qwen3-32b"
    groq_model_stt: str = "whisper-large-v3"
    azure_speech_voice: str = "en-US-JennyNeural"

    # Detector sensitivity and hangover (seconds of silence ending a segment)
    vad_activation_threshold: float = 0.5
    vad_min_silence_duration: float = 0.55

    # Turn loop
    max_tool_rounds: int = 5

    # Tools
    weather_api_url: str = "https://wttr.in"

    # Worker
    agent_name: str = ""
    scenario: str = "default"
    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "AgentConfig":
        """Load and validate configuration from environment variables."""
        stt_provider = _provider_env("STT_PROVIDER", "deepgram", STT_PROVIDERS)
        llm_provider = _provider_env("LLM_PROVIDER", "openai", LLM_PROVIDERS)
        tts_provider = _provider_env("TTS_PROVIDER", "elevenlabs", TTS_PROVIDERS)

        required = ["LIVEKIT_URL", "LIVEKIT_API_KEY", "LIVEKIT_API_SECRET"]
        for capability, provider in (
            ("stt", stt_provider),
            ("llm", llm_provider),
            ("tts", tts_provider),
        ):
            for key in PROVIDER_CREDENTIALS[(capability, provider)]:
                if key not in required:
                    required.append(key)

        missing = [key for key in required if not os.environ.get(key, "").strip()]
        if missing:
            raise ConfigurationError(
                f"Missing required configuration: {', '.join(missing)}",
                missing=missing,
            )

        return cls(
            livekit_url=os.environ["LIVEKIT_URL"],
            livekit_api_key=os.environ["LIVEKIT_API_KEY"],
            livekit_api_secret=os.environ["LIVEKIT_API_SECRET"],
            stt_provider=stt_provider,
            llm_provider=llm_provider,
            tts_provider=tts_provider,
            deepgram_api_key=os.environ.get("DEEPGRAM_API_KEY"),
            openai_api_key=os.environ.get("OPENAI_API_KEY"),
            groq_api_key=os.environ.get("GROQ_API_KEY"),
            eleven_api_key=os.environ.get("ELEVEN_API_KEY"),
            azure_speech_key=os.environ.get("AZURE_SPEECH_KEY"),
            azure_speech_region=os.environ.get("AZURE_SPEECH_REGION"),
            openai_model=os.environ.get("OPENAI_MODEL", "gpt-4o-mini"),
            groq_model_llm=os.environ.get("GROQ_MODEL_LLM", "qwen/qwen3-32b"),
            groq_model_stt=os.environ.get("GROQ_MODEL_STT", "whisper-large-v3"),
            azure_speech_voice=os.environ.get("AZURE_SPEECH_VOICE", "en-US-JennyNeural"),
            vad_activation_threshold=_parse_float_env("VAD_ACTIVATION_THRESHOLD", 0.5),
            vad_min_silence_duration=_parse_float_env("VAD_MIN_SILENCE_DURATION", 0.55),
            max_tool_rounds=max(1, _parse_int_env("MAX_TOOL_ROUNDS", 5)),
            weather_api_url=os.environ.get("WEATHER_API_URL", "https://wttr.in"),
            agent_name=os.environ.get("LIVEKIT_AGENT_NAME", ""),
            scenario=os.environ.get("AGENT_SCENARIO", "default"),
            log_level=os.environ.get("LOG_LEVEL", "INFO"),
        )

    def session_settings(self, *, system_prompt: str, greeting: str) -> SessionSettings:
        return SessionSettings(
            system_prompt=system_prompt,
            greeting=greeting,
            max_tool_rounds=self.max_tool_rounds,
        )


def get_config() -> AgentConfig:
    """Get or create global config instance."""
    global _config
    if _config is None:
        _config = AgentConfig.from_env()
    return _config


# Global config instance (lazy loaded)
_config: Optional[AgentConfig] = None
